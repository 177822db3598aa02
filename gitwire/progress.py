# progress.py -- Structured progress events
# Copyright (C) 2025 Jelmer Vernooij <jelmer@jelmer.uk>
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

"""Structured progress events.

Servers report progress as free text on side-band channel 2, typically
``Counting objects:  33% (1/3)\\r`` with carriage returns between updates.
gitwire does not render that text. It hands each complete message to a
sink as a :class:`ProgressEvent`, and the negotiation engine emits events
of its own (phase ``negotiate``) for each round.
"""

import re
from collections.abc import Callable
from typing import NamedTuple, Optional


class ProgressEvent(NamedTuple):
    """A progress update: phase, message text and completion ratio if known."""

    phase: str
    message: str
    ratio: Optional[float] = None


ProgressSink = Callable[[ProgressEvent], None]

_PERCENT_RE = re.compile(
    r"^(?P<phase>[^:]+):\s+(?P<percent>\d{1,3})%(?:\s+\((?P<current>\d+)/(?P<total>\d+)\))?"
)
_COUNT_RE = re.compile(r"^(?P<phase>[^:]+):\s+\d+")

REMOTE_PHASE = "remote"


def parse_progress(text: str) -> ProgressEvent:
    """Turn one line of server progress text into an event."""
    text = text.strip()
    m = _PERCENT_RE.match(text)
    if m:
        current, total = m.group("current"), m.group("total")
        if current is not None and int(total) > 0:
            ratio = int(current) / int(total)
        else:
            ratio = int(m.group("percent")) / 100
        return ProgressEvent(m.group("phase").strip(), text, min(ratio, 1.0))
    m = _COUNT_RE.match(text)
    if m:
        return ProgressEvent(m.group("phase").strip(), text, None)
    return ProgressEvent(REMOTE_PHASE, text, None)


class ProgressReporter:
    """Split server progress bytes into messages and forward them as events."""

    def __init__(self, sink: Optional[ProgressSink] = None) -> None:
        self.sink = sink
        self._pending = b""

    def emit(self, phase: str, message: str, ratio: Optional[float] = None) -> None:
        if self.sink is not None:
            self.sink(ProgressEvent(phase, message, ratio))

    def feed(self, data: bytes) -> None:
        """Accept a chunk of progress text, which may end mid-message."""
        if self.sink is None:
            return
        data = self._pending + data
        segments = re.split(rb"[\r\n]", data)
        self._pending = segments.pop()
        for segment in segments:
            self._deliver(segment)

    def close(self) -> None:
        """Deliver whatever text is still buffered."""
        if self._pending:
            pending, self._pending = self._pending, b""
            self._deliver(pending)

    def _deliver(self, segment: bytes) -> None:
        if not segment.strip():
            return
        assert self.sink is not None
        self.sink(parse_progress(segment.decode("utf-8", "replace")))
