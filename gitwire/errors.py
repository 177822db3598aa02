# errors.py -- errors for gitwire
# Copyright (C) 2007 James Westby <jw+debian@jameswestby.net>
# Copyright (C) 2009-2012 Jelmer Vernooij <jelmer@jelmer.uk>
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

"""Exception classes raised by the gitwire protocol engine."""

from collections.abc import Sequence
from typing import Optional


class GitProtocolError(Exception):
    """Git protocol exception."""

    def __init__(self, *args: object) -> None:
        """Initialize a GitProtocolError.

        Args:
            *args: Error message and optional details.
        """
        Exception.__init__(self, *args)

    def __eq__(self, other: object) -> bool:
        """Check equality between GitProtocolError instances.

        Args:
            other: The object to compare with.

        Returns:
            True if both are GitProtocolError instances with same args, False otherwise.
        """
        return isinstance(other, type(self)) and self.args == other.args

    __hash__ = Exception.__hash__


class MalformedCapability(GitProtocolError):
    """A capability token could not be parsed."""

    def __init__(self, token: bytes) -> None:
        """Initialize a MalformedCapability exception.

        Args:
            token: The offending capability token.
        """
        self.token = token
        super().__init__(f"Malformed capability: {token!r}")


class UnsupportedCapability(GitProtocolError):
    """A required capability is not advertised by the server."""

    def __init__(self, name: bytes) -> None:
        """Initialize an UnsupportedCapability exception.

        Args:
            name: Name of the capability the server lacks.
        """
        self.name = name
        super().__init__(f"Server does not support capability {name!r}")


class MalformedRef(GitProtocolError):
    """A ref advertisement line could not be split into hash and name."""

    def __init__(self, line: bytes, reason: Optional[str] = None) -> None:
        self.line = line
        message = f"Malformed ref line: {line!r}"
        if reason is not None:
            message += f" ({reason})"
        super().__init__(message)


class InvalidHash(GitProtocolError):
    """A hash does not decode to the expected object id width."""

    def __init__(self, value: bytes, line: Optional[bytes] = None) -> None:
        self.value = value
        self.line = line
        message = f"Invalid object id {value!r}"
        if line is not None:
            message += f" in line {line!r}"
        super().__init__(message)


class ProtocolViolation(GitProtocolError):
    """The server sent a line with an unexpected shape or ordering."""

    def __init__(self, message: str, line: Optional[bytes] = None) -> None:
        """Initialize a ProtocolViolation.

        Args:
            message: Description of what was expected.
            line: The offending line, if any.
        """
        self.line = line
        if line is not None:
            message = f"{message}: {line!r}"
        super().__init__(message)


class OutOfOrderChannel(ProtocolViolation):
    """Pack data arrived on the side-band after a fatal error chunk."""


class RemoteError(GitProtocolError):
    """The server reported an error (ERR line or fatal side-band message)."""

    def __init__(self, message: bytes) -> None:
        self.message = message
        super().__init__(message.decode("utf-8", "replace").rstrip("\n"))


class SendPackError(GitProtocolError):
    """An error occurred during send_pack."""


class TransportError(GitProtocolError):
    """The underlying transport failed."""


class HangupException(TransportError):
    """Hangup exception."""

    def __init__(self, stderr_lines: Optional[Sequence[bytes]] = None) -> None:
        """Initialize a HangupException.

        Args:
            stderr_lines: Optional list of stderr output lines from the remote server.
        """
        if stderr_lines:
            super().__init__(
                "\n".join(
                    line.decode("utf-8", "surrogateescape") for line in stderr_lines
                )
            )
        else:
            super().__init__("The remote server unexpectedly closed the connection.")
        self.stderr_lines = stderr_lines

    def __eq__(self, other: object) -> bool:
        """Check equality between HangupException instances.

        Args:
            other: The object to compare with.

        Returns:
            True if both are HangupException instances with same stderr_lines, False otherwise.
        """
        return (
            isinstance(other, HangupException)
            and self.stderr_lines == other.stderr_lines
        )

    __hash__ = Exception.__hash__


class NotGitRepository(TransportError):
    """The remote location does not hold a git repository."""


class HTTPUnauthorized(TransportError):
    """Raised when authentication fails."""

    def __init__(self, www_authenticate: Optional[str], url: str) -> None:
        """Initialize HTTPUnauthorized exception.

        Args:
            www_authenticate: Value of WWW-Authenticate header
            url: URL that requires authentication
        """
        super().__init__("No valid credentials provided")
        self.www_authenticate = www_authenticate
        self.url = url


class NothingToNegotiate(Exception):
    """A fetch was requested without anything to want.

    This is a terminal outcome rather than a failure: the local side is
    already up to date with what was asked for.
    """


class EndOfStream(Exception):
    """A multiplexed stream ended cleanly with a flush packet."""
