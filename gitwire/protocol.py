# protocol.py -- Shared parts of the git protocols
# Copyright (C) 2008 John Carr <john.carr@unrouted.co.uk>
# Copyright (C) 2008-2012 Jelmer Vernooij <jelmer@jelmer.uk>
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

"""Generic functions for talking the git smart protocol.

This module holds the pkt-line codec and the constants shared by the rest
of gitwire. A packet is represented as:

- ``bytes`` for a data line (payload without the length prefix),
- ``None`` for a flush packet (``0000``),
- :data:`DELIM_PKT` for a delimiter packet (``0001``, protocol v2),
- :data:`RESPONSE_END_PKT` for a response-end packet (``0002``, protocol v2).
"""

from collections.abc import Callable, Iterable
from typing import Optional, Union

import gitwire

from .errors import HangupException, ProtocolViolation, TransportError
from .log_utils import PACKET_LOGGER_NAME, getLogger, packet_trace_enabled

packet_logger = getLogger(PACKET_LOGGER_NAME)

TCP_GIT_PORT = 9418

ZERO_SHA = b"0" * 40

SINGLE_ACK = 0
MULTI_ACK = 1
MULTI_ACK_DETAILED = 2

# pack data
SIDE_BAND_CHANNEL_DATA = 1
# progress messages
SIDE_BAND_CHANNEL_PROGRESS = 2
# fatal error message just before stream aborts
SIDE_BAND_CHANNEL_FATAL = 3

CAPABILITY_ATOMIC = b"atomic"
CAPABILITY_DEEPEN_SINCE = b"deepen-since"
CAPABILITY_DEEPEN_NOT = b"deepen-not"
CAPABILITY_DEEPEN_RELATIVE = b"deepen-relative"
CAPABILITY_DELETE_REFS = b"delete-refs"
CAPABILITY_INCLUDE_TAG = b"include-tag"
CAPABILITY_MULTI_ACK = b"multi_ack"
CAPABILITY_MULTI_ACK_DETAILED = b"multi_ack_detailed"
CAPABILITY_NO_DONE = b"no-done"
CAPABILITY_NO_PROGRESS = b"no-progress"
CAPABILITY_OFS_DELTA = b"ofs-delta"
CAPABILITY_QUIET = b"quiet"
CAPABILITY_REPORT_STATUS = b"report-status"
CAPABILITY_SHALLOW = b"shallow"
CAPABILITY_SIDE_BAND = b"side-band"
CAPABILITY_SIDE_BAND_64K = b"side-band-64k"
CAPABILITY_THIN_PACK = b"thin-pack"
CAPABILITY_AGENT = b"agent"
CAPABILITY_SYMREF = b"symref"
CAPABILITY_ALLOW_TIP_SHA1_IN_WANT = b"allow-tip-sha1-in-want"
CAPABILITY_ALLOW_REACHABLE_SHA1_IN_WANT = b"allow-reachable-sha1-in-want"
CAPABILITY_FETCH = b"fetch"
CAPABILITY_FILTER = b"filter"
CAPABILITY_LS_REFS = b"ls-refs"
CAPABILITY_OBJECT_FORMAT = b"object-format"
CAPABILITY_PUSH_OPTIONS = b"push-options"

COMMON_CAPABILITIES = [CAPABILITY_OFS_DELTA, CAPABILITY_SIDE_BAND_64K]
KNOWN_UPLOAD_CAPABILITIES = set(
    [
        *COMMON_CAPABILITIES,
        CAPABILITY_THIN_PACK,
        CAPABILITY_MULTI_ACK,
        CAPABILITY_MULTI_ACK_DETAILED,
        CAPABILITY_INCLUDE_TAG,
        CAPABILITY_DEEPEN_SINCE,
        CAPABILITY_SYMREF,
        CAPABILITY_SHALLOW,
        CAPABILITY_DEEPEN_NOT,
        CAPABILITY_DEEPEN_RELATIVE,
        CAPABILITY_ALLOW_TIP_SHA1_IN_WANT,
        CAPABILITY_ALLOW_REACHABLE_SHA1_IN_WANT,
        CAPABILITY_FETCH,
        CAPABILITY_FILTER,
        CAPABILITY_NO_DONE,
        CAPABILITY_NO_PROGRESS,
    ]
)
KNOWN_RECEIVE_CAPABILITIES = set(
    [
        *COMMON_CAPABILITIES,
        CAPABILITY_REPORT_STATUS,
        CAPABILITY_DELETE_REFS,
        CAPABILITY_QUIET,
        CAPABILITY_ATOMIC,
        CAPABILITY_PUSH_OPTIONS,
    ]
)

COMMAND_DEEPEN = b"deepen"
COMMAND_DEEPEN_SINCE = b"deepen-since"
COMMAND_DEEPEN_NOT = b"deepen-not"
COMMAND_DEEPEN_RELATIVE = b"deepen-relative"
COMMAND_SHALLOW = b"shallow"
COMMAND_UNSHALLOW = b"unshallow"
COMMAND_DONE = b"done"
COMMAND_WANT = b"want"
COMMAND_WANT_REF = b"want-ref"
COMMAND_HAVE = b"have"
COMMAND_FILTER = b"filter"

NAK_LINE = b"NAK"
ACK_PREFIX = b"ACK "
ERR_PREFIX = b"ERR "

# Largest payload a single pkt-line may carry.
MAX_PKT_PAYLOAD = 65516

GIT_PROTOCOL_VERSIONS = (0, 1, 2)

_HEX_DIGITS = frozenset(b"0123456789abcdefABCDEF")


class _SpecialPacket:
    """A length-only packet that carries no payload."""

    def __init__(self, name: str, wire: bytes) -> None:
        self.name = name
        self.wire = wire

    def __repr__(self) -> str:
        return f"<{self.name}-pkt>"


DELIM_PKT = _SpecialPacket("delim", b"0001")
RESPONSE_END_PKT = _SpecialPacket("response-end", b"0002")

Packet = Union[bytes, None, _SpecialPacket]


def agent_string() -> bytes:
    """Generate the agent string for gitwire.

    Returns:
        Agent string as bytes
    """
    return ("gitwire/" + ".".join(map(str, gitwire.__version__))).encode("ascii")


def capability_agent() -> bytes:
    """Generate the agent capability string.

    Returns:
        Agent capability with gitwire version
    """
    return CAPABILITY_AGENT + b"=" + agent_string()


def ack_type(capabilities: Iterable[bytes]) -> int:
    """Extract the ack type from a capabilities list."""
    if CAPABILITY_MULTI_ACK_DETAILED in capabilities:
        return MULTI_ACK_DETAILED
    elif CAPABILITY_MULTI_ACK in capabilities:
        return MULTI_ACK
    return SINGLE_ACK


def pkt_line(data: Packet) -> bytes:
    """Wrap data in a pkt-line.

    Args:
        data: The data to wrap, as a bytes, None for a flush-pkt, or one of
            the special packets
    Returns: The data prefixed with its length in pkt-line format; if data
        was None, returns the flush-pkt ('0000').
    """
    if data is None:
        return b"0000"
    if isinstance(data, _SpecialPacket):
        return data.wire
    if len(data) > MAX_PKT_PAYLOAD:
        raise ValueError(f"pkt-line payload too long: {len(data)} bytes")
    return ("%04x" % (len(data) + 4)).encode("ascii") + data


def pkt_seq(*seq: Packet) -> bytes:
    """Wrap a sequence of packets and terminate it with a flush-pkt."""
    return b"".join([pkt_line(s) for s in seq]) + pkt_line(None)


def parse_pkt_length(header: bytes) -> int:
    """Decode the four hex digits that prefix every pkt-line.

    Returns: The total packet length, including the prefix. Zero, one and
        two denote flush, delim and response-end packets.

    Raises:
      ProtocolViolation: if the header is not a valid length
    """
    if len(header) != 4 or not all(c in _HEX_DIGITS for c in header):
        raise ProtocolViolation("Invalid pkt-line length prefix", header)
    size = int(header, 16)
    if size == 3:
        raise ProtocolViolation("Invalid pkt-line length prefix", header)
    return size


def _special_packet(size: int) -> Packet:
    if size == 0:
        return None
    elif size == 1:
        return DELIM_PKT
    return RESPONSE_END_PKT


def strip_line(pkt: bytes) -> bytes:
    """Remove the optional line terminator from a data packet."""
    if pkt.endswith(b"\n"):
        return pkt[:-1]
    return pkt


def format_pkt_trace(direction: str, pkt: Packet) -> str:
    if pkt is None:
        return f"{direction} 0000"
    if isinstance(pkt, _SpecialPacket):
        return f"{direction} {pkt.wire.decode('ascii')}"
    return f"{direction} {pkt!r}"


class PktLineParser:
    """Packet line parser that hands completed packets to a callback."""

    def __init__(self, handle_pkt: Callable[[Packet], None]) -> None:
        """Initialize PktLineParser.

        Args:
            handle_pkt: Callback function to handle completed packets
        """
        self.handle_pkt = handle_pkt
        self._readahead = bytearray()

    def parse(self, data: bytes) -> None:
        """Parse a fragment of data and call back for any completed packets."""
        self._readahead.extend(data)
        while len(self._readahead) >= 4:
            size = parse_pkt_length(bytes(self._readahead[:4]))
            if size < 4:
                del self._readahead[:4]
                self.handle_pkt(_special_packet(size))
                continue
            if len(self._readahead) < size:
                break
            pkt = bytes(self._readahead[4:size])
            del self._readahead[:size]
            self.handle_pkt(pkt)

    def get_tail(self) -> bytes:
        """Read back any unused data."""
        return bytes(self._readahead)


class Protocol:
    """Class for interacting with a remote git process over the wire.

    Parts of the git wire protocol use 'pkt-lines' to communicate. A pkt-line
    consists of the length of the line as a 4-byte hex string, followed by the
    payload data. The length includes the 4-byte header. The special line
    '0000' indicates the end of a section of input and is called a 'flush-pkt'.

    For details on the pkt-line format, see the cgit distribution:
        Documentation/technical/protocol-common.txt
    """

    stateless = False
    # Version requested when the connection was opened, if known.
    protocol_version: Optional[int] = None

    def __init__(
        self,
        read: Callable[[int], bytes],
        write: Callable[[bytes], Optional[int]],
        close: Optional[Callable[[], None]] = None,
        report_activity: Optional[Callable[[int, str], None]] = None,
    ) -> None:
        """Initialize Protocol.

        Args:
            read: Function to read bytes from the transport
            write: Function to write bytes to the transport
            close: Optional function to close the transport
            report_activity: Optional function to report activity
        """
        self._read = read
        self._write = write
        self._close = close
        self.report_activity = report_activity
        self._readahead: list[Packet] = []

    def close(self) -> None:
        """Close the underlying transport if a close function was provided."""
        if self._close:
            self._close()

    def __enter__(self) -> "Protocol":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def _read_exact(self, size: int) -> bytes:
        try:
            data = self._read(size)
        except OSError as e:
            raise TransportError(e) from e
        while data and len(data) < size:
            try:
                more = self._read(size - len(data))
            except OSError as e:
                raise TransportError(e) from e
            if not more:
                break
            data += more
        if len(data) != size:
            raise HangupException()
        return data

    def read_line(self) -> Packet:
        """Read the next packet from the remote side.

        Returns: The payload of the next packet, None for a flush-pkt or one
            of the special packets.

        Raises:
          HangupException: if the remote side closed the connection
          ProtocolViolation: if the length prefix is invalid
        """
        if self._readahead:
            return self._readahead.pop()
        size = parse_pkt_length(self._read_exact(4))
        if size < 4:
            pkt = _special_packet(size)
            if self.report_activity:
                self.report_activity(4, "read")
        else:
            if self.report_activity:
                self.report_activity(size, "read")
            pkt = self._read_exact(size - 4)
        if packet_trace_enabled():
            packet_logger.debug(format_pkt_trace("<", pkt))
        return pkt

    def unread_line(self, pkt: Packet) -> None:
        """Push a packet back so the next read_line returns it."""
        self._readahead.append(pkt)

    def read_until_flush(self) -> list[bytes]:
        """Read data packets until a flush-pkt.

        Raises:
          ProtocolViolation: if a delimiter shows up in the section
        """
        lines = []
        while True:
            pkt = self.read_line()
            if pkt is None:
                return lines
            if not isinstance(pkt, bytes):
                raise ProtocolViolation("Unexpected special packet", pkt.wire)
            lines.append(pkt)

    def read(self, size: int) -> bytes:
        """Read raw, unframed bytes; returns b"" at end of stream."""
        try:
            return self._read(size)
        except OSError as e:
            raise TransportError(e) from e

    def write(self, data: bytes) -> None:
        """Write raw, unframed bytes."""
        try:
            self._write(data)
        except OSError as e:
            raise TransportError(e) from e
        if self.report_activity:
            self.report_activity(len(data), "write")

    def write_line(self, line: Packet) -> None:
        """Send a pkt-line to the remote git process.

        Args:
            line: A bytes object containing the data to send, or None to
                send a flush-pkt.
        """
        if packet_trace_enabled():
            packet_logger.debug(format_pkt_trace(">", line))
        self.write(pkt_line(line))

    def write_delim(self) -> None:
        """Send a delimiter packet."""
        self.write_line(DELIM_PKT)

    def flush(self) -> None:
        """Mark the end of a request; a no-op on bidirectional streams."""

    def send_cmd(self, cmd: bytes, *args: bytes) -> None:
        """Send a command and some arguments to a git server.

        Only used for git://.

        Args:
          cmd: The remote service to access.
          args: List of arguments to send to remove service.
        """
        self.write_line(cmd + b" " + b"".join([(a + b"\0") for a in args]))
