# log_utils.py -- Logging utilities for gitwire
# Copyright (C) 2010 Google, Inc.
#
# SPDX-License-Identifier: Apache-2.0 OR GPL-2.0-or-later
# Dulwich is dual-licensed under the Apache License, Version 2.0 and the GNU
# General Public License as published by the Free Software Foundation; version 2.0
# or (at your option) any later version. You can redistribute it and/or
# modify it under the terms of either of these two licenses.
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
# You should have received a copy of the licenses; if not, see
# <http://www.gnu.org/licenses/> for a copy of the GNU General Public License
# and <http://www.apache.org/licenses/LICENSE-2.0> for a copy of the Apache
# License, Version 2.0.
#

"""Logging utilities for gitwire.

gitwire is a library, so by default nothing is logged: a null handler sits
on the ``gitwire`` logger. Applications that want output call
default_logging_config(), which honours the same environment variables as
git itself:

- ``GIT_TRACE`` turns on debug logging for all gitwire modules.
- ``GIT_TRACE_PACKET`` additionally logs every pkt-line that is read or
  written, on the ``gitwire.packet`` logger.
"""

import logging
import os
import sys
from typing import Optional, Union

getLogger = logging.getLogger


class _NullHandler(logging.Handler):
    """No-op logging handler to avoid unexpected logging warnings."""

    def emit(self, record: logging.LogRecord) -> None:
        pass


_NULL_HANDLER = _NullHandler()
_GITWIRE_LOGGER = getLogger("gitwire")
_GITWIRE_LOGGER.addHandler(_NULL_HANDLER)

PACKET_LOGGER_NAME = "gitwire.packet"
_PACKET_LOGGER = getLogger(PACKET_LOGGER_NAME)
# Packet traces stay off under GIT_TRACE alone.
_PACKET_LOGGER.setLevel(logging.INFO)

_DISABLED_VALUES = ("", "0", "false")


def _trace_value(variable: str) -> str:
    return os.environ.get(variable, "")


def _should_trace(variable: str = "GIT_TRACE") -> bool:
    """Check if a GIT_TRACE style variable is enabled."""
    return _trace_value(variable).lower() not in _DISABLED_VALUES


def _get_trace_target(variable: str = "GIT_TRACE") -> Optional[Union[str, int]]:
    """Get the trace target from a GIT_TRACE style environment variable.

    Returns:
        - None if tracing is disabled
        - 2 for stderr output (values "1", "2", "true")
        - int (3-9) for file descriptor
        - str for file path (absolute paths or directories)
    """
    trace_value = _trace_value(variable)

    if trace_value.lower() in _DISABLED_VALUES:
        return None

    if trace_value.lower() in ("1", "2", "true"):
        return 2

    try:
        fd = int(trace_value)
    except ValueError:
        pass
    else:
        if 3 <= fd <= 9:
            return fd
        return None

    if os.path.isabs(trace_value):
        return trace_value

    return None


def _open_trace_handler(
    trace_target: Union[str, int], variable: str
) -> Optional[logging.Handler]:
    if trace_target == 2:
        return logging.StreamHandler(sys.stderr)

    if isinstance(trace_target, int):
        try:
            stream = os.fdopen(trace_target, "w", buffering=1)
        except OSError as e:
            sys.stderr.write(f"Warning: Failed to open {variable} fd {trace_target}: {e}\n")
            return None
        return logging.StreamHandler(stream)

    if os.path.isdir(trace_target):
        # One file per process, as git does.
        filename = os.path.join(trace_target, f"trace.{os.getpid()}")
    else:
        filename = trace_target
    try:
        return logging.FileHandler(filename, mode="a")
    except OSError as e:
        sys.stderr.write(f"Warning: Failed to open {variable} file {trace_target}: {e}\n")
        return None


_TRACE_FORMAT = "%(asctime)s %(name)s %(levelname)s: %(message)s"


def _configure_logging_from_trace() -> bool:
    """Configure logging based on the GIT_TRACE environment variable.

    Returns True if trace configuration was successful, False otherwise.
    """
    trace_target = _get_trace_target("GIT_TRACE")
    if trace_target is None:
        return False
    handler = _open_trace_handler(trace_target, "GIT_TRACE")
    if handler is None:
        return False
    handler.setFormatter(logging.Formatter(_TRACE_FORMAT))
    logging.basicConfig(level=logging.DEBUG, handlers=[handler])
    return True


def _configure_packet_trace() -> bool:
    """Send pkt-line traces to the GIT_TRACE_PACKET target."""
    trace_target = _get_trace_target("GIT_TRACE_PACKET")
    if trace_target is None:
        return False
    handler = _open_trace_handler(trace_target, "GIT_TRACE_PACKET")
    if handler is None:
        return False
    handler.setFormatter(logging.Formatter(_TRACE_FORMAT))
    _PACKET_LOGGER.addHandler(handler)
    _PACKET_LOGGER.setLevel(logging.DEBUG)
    _PACKET_LOGGER.propagate = False
    return True


def packet_trace_enabled() -> bool:
    """Check whether pkt-line tracing should be emitted."""
    return _PACKET_LOGGER.isEnabledFor(logging.DEBUG)


def default_logging_config() -> None:
    """Set up the default gitwire loggers.

    Respects the GIT_TRACE environment variable for trace output:
    - If GIT_TRACE is set to "1", "2", or "true", trace to stderr
    - If GIT_TRACE is set to an integer 3-9, trace to that file descriptor
    - If GIT_TRACE is set to an absolute path, trace to that file
    - If the path is a directory, trace to files in that directory (per process)
    - Otherwise, use default stderr output

    GIT_TRACE_PACKET accepts the same values and controls the packet logger.
    """
    remove_null_handler()

    if not _configure_logging_from_trace():
        logging.basicConfig(
            level=logging.INFO,
            stream=sys.stderr,
            format="%(asctime)s %(levelname)s: %(message)s",
        )
    _configure_packet_trace()


def remove_null_handler() -> None:
    """Remove the null handler from the gitwire loggers.

    If a caller wants to set up logging using something other than
    default_logging_config, calling this function first is a minor optimization
    to avoid the overhead of using the _NullHandler.
    """
    _GITWIRE_LOGGER.removeHandler(_NULL_HANDLER)
