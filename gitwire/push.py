# push.py -- The update-refs direction of the git protocol
# Copyright (C) 2008-2013 Jelmer Vernooij <jelmer@jelmer.uk>
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

"""Pushing: ref update commands, pack upload and status report.

A push mirrors a fetch: the server advertises its refs, the client sends
``<old> <new> <ref>`` commands (capabilities on the first one), uploads a
pack holding the objects the server lacks and reads the ``report-status``
answer.
"""

from collections.abc import Callable, Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from typing import NamedTuple, Optional

from .capabilities import CapabilitySet
from .errors import (
    EndOfStream,
    GitProtocolError,
    ProtocolViolation,
    RemoteError,
    SendPackError,
)
from .log_utils import getLogger
from .object_format import DEFAULT_OBJECT_FORMAT, ObjectFormat
from .progress import ProgressReporter
from .protocol import (
    CAPABILITY_ATOMIC,
    CAPABILITY_DELETE_REFS,
    CAPABILITY_OFS_DELTA,
    CAPABILITY_PUSH_OPTIONS,
    CAPABILITY_QUIET,
    CAPABILITY_REPORT_STATUS,
    CAPABILITY_SIDE_BAND_64K,
    SIDE_BAND_CHANNEL_DATA,
    SIDE_BAND_CHANNEL_FATAL,
    SIDE_BAND_CHANNEL_PROGRESS,
    Packet,
    PktLineParser,
    capability_agent,
)
from .refs import RemoteRef
from .sideband import SideBandDemultiplexer
from .steps import Step, flush, read_line, write, write_packets
from .versions import ProtocolVersion, frame_push

logger = getLogger(__name__)

UpdateRefsFunc = Callable[[dict[bytes, bytes]], Mapping[bytes, bytes]]
GeneratePackDataFunc = Callable[[set[bytes], set[bytes]], Iterable[bytes]]


class RefUpdate(NamedTuple):
    """A single ref update command."""

    name: bytes
    old_sha: bytes
    new_sha: bytes


@dataclass
class PushOutcome:
    """Result of a push.

    ``ref_status`` maps each ref the client tried to update to None on
    success, or to the error message.
    """

    updates: list[RefUpdate] = field(default_factory=list)
    ref_status: dict[bytes, Optional[str]] = field(default_factory=dict)
    agent: Optional[bytes] = None
    pack_sent: bool = False


class ReportStatusParser:
    """Handle status as reported by servers with 'report-status' capability."""

    def __init__(self) -> None:
        """Initialize ReportStatusParser."""
        self._done = False
        self._pack_status: Optional[bytes] = None
        self._ref_statuses: list[bytes] = []

    def check(self) -> Iterator[tuple[bytes, Optional[str]]]:
        """Check if there were any errors and, if so, raise exceptions.

        Raises:
          SendPackError: Raised when the server could not unpack
        Returns:
          iterator over refs
        """
        if self._pack_status not in (b"unpack ok", None):
            raise SendPackError(self._pack_status)
        for status in self._ref_statuses:
            try:
                status, rest = status.split(b" ", 1)
            except ValueError as e:
                raise ProtocolViolation("Malformed ref status", status) from e
            if status == b"ng":
                ref, _, error = rest.partition(b" ")
                yield ref, error.decode("utf-8", "replace")
            elif status == b"ok":
                yield rest, None
            else:
                raise GitProtocolError(f"invalid ref status {status!r}")

    def handle_packet(self, pkt: Packet) -> None:
        """Handle a packet.

        Raises:
          GitProtocolError: Raised when packets are received after a flush
          packet.
        """
        if self._done:
            raise GitProtocolError("received more data after status report")
        if pkt is None:
            self._done = True
            return
        if not isinstance(pkt, bytes):
            raise ProtocolViolation("Unexpected special packet in status report")
        if self._pack_status is None:
            self._pack_status = pkt.strip()
        else:
            self._ref_statuses.append(pkt.strip())

    @property
    def done(self) -> bool:
        return self._done


class Pusher:
    """Drive one push over a session whose ref advertisement has been read."""

    def __init__(
        self,
        version: ProtocolVersion,
        server_capabilities: CapabilitySet,
        refs: Sequence[RemoteRef],
        update_refs: UpdateRefsFunc,
        generate_pack_data: GeneratePackDataFunc,
        *,
        push_options: Sequence[bytes] = (),
        atomic: bool = False,
        quiet: bool = False,
        agent: Optional[bytes] = None,
        object_format: Optional[ObjectFormat] = None,
        progress: Optional[ProgressReporter] = None,
    ) -> None:
        """Initialize a Pusher.

        Args:
          version: Protocol version of the session (v0 or v1)
          server_capabilities: Capabilities the server advertised
          refs: Refs the server advertised
          update_refs: Called with the advertised refs, returns the refs
            as they should be after the push
          generate_pack_data: Called with (have, want) sets of object ids,
            returns the pack as an iterable of byte chunks
          push_options: Push options to send
          atomic: Request an all-or-nothing update
          quiet: Ask the server not to send progress
          agent: Agent capability value to send
          object_format: Object format of the remote repository
          progress: Receives the server's progress messages
        """
        self.version = version
        self.server_capabilities = server_capabilities
        self.refs = refs
        self.update_refs = update_refs
        self.generate_pack_data = generate_pack_data
        self.push_options = list(push_options)
        self.atomic = atomic
        self.quiet = quiet
        self.agent = agent
        self.object_format = object_format or DEFAULT_OBJECT_FORMAT
        self.progress = progress or ProgressReporter()

    def client_capabilities(self) -> CapabilitySet:
        """Select the capabilities to send with the first command.

        Raises:
          UnsupportedCapability: if atomic or push options were requested
            but the server lacks them
        """
        required = []
        if self.atomic:
            required.append(CAPABILITY_ATOMIC)
        if self.push_options:
            required.append(CAPABILITY_PUSH_OPTIONS)
        self.server_capabilities.assert_supported(required)
        requested = [
            CAPABILITY_REPORT_STATUS,
            CAPABILITY_SIDE_BAND_64K,
            CAPABILITY_DELETE_REFS,
            CAPABILITY_OFS_DELTA,
            *required,
        ]
        if self.quiet:
            requested.append(CAPABILITY_QUIET)
        if self.agent is not None:
            requested.append(b"agent=" + self.agent)
        else:
            requested.append(capability_agent())
        return self.server_capabilities.negotiate(requested)

    def plan(
        self, capabilities: CapabilitySet
    ) -> tuple[list[RefUpdate], dict[bytes, Optional[str]]]:
        """Work out the update commands and the updates refused locally."""
        zero = self.object_format.zero_oid
        old_refs = {ref.name: ref.sha for ref in self.refs if ref.sha is not None}
        new_refs = self.update_refs(dict(old_refs))
        updates = []
        refused: dict[bytes, Optional[str]] = {}
        for name, new_sha in new_refs.items():
            if not isinstance(name, bytes):
                raise TypeError(f"refname is not a bytestring: {name!r}")
            old_sha = old_refs.get(name, zero)
            if old_sha == new_sha:
                continue
            if new_sha != zero:
                self.object_format.check_hexsha(new_sha)
            elif CAPABILITY_DELETE_REFS not in capabilities:
                refused[name] = "remote does not support deleting refs"
                continue
            logger.debug("Sending updated ref %r: %r -> %r", name, old_sha, new_sha)
            updates.append(RefUpdate(name, old_sha, new_sha))
        return updates, refused

    def run(self) -> Step[PushOutcome]:
        """Send the commands and the pack, then read the status report.

        Raises:
          SendPackError: if the server failed to unpack
          RemoteError: on a fatal side-band message
        """
        capabilities = self.client_capabilities()
        updates, refused = self.plan(capabilities)
        outcome = PushOutcome(
            updates=updates, ref_status=dict(refused), agent=self.server_capabilities.agent
        )
        if not updates:
            yield from write_packets([None])
            yield flush()
            return outcome

        commands = [(u.old_sha, u.new_sha, u.name) for u in updates]
        options = self.push_options if CAPABILITY_PUSH_OPTIONS in capabilities else []
        yield from write_packets(
            frame_push(self.version, [bytes(c) for c in capabilities], commands, options)
        )

        zero = self.object_format.zero_oid
        have = {ref.sha for ref in self.refs if ref.sha is not None and ref.sha != zero}
        want = {u.new_sha for u in updates if u.new_sha != zero and u.new_sha not in have}
        if any(u.new_sha != zero for u in updates):
            for chunk in self.generate_pack_data(have, want):
                yield write(chunk)
            outcome.pack_sent = True
        yield flush()

        if CAPABILITY_REPORT_STATUS in capabilities:
            parser = ReportStatusParser()
            if CAPABILITY_SIDE_BAND_64K in capabilities:
                yield from self._read_sideband_status(parser)
            else:
                while not parser.done:
                    pkt = yield read_line()
                    parser.handle_packet(pkt)
            for name, status in parser.check():
                outcome.ref_status[name] = status
        else:
            for update in updates:
                outcome.ref_status.setdefault(update.name, None)
        return outcome

    def _read_sideband_status(self, parser: ReportStatusParser) -> Step[None]:
        # The status report is itself pkt-line framed inside channel 1.
        demux = SideBandDemultiplexer(True)
        pkt_parser = PktLineParser(parser.handle_packet)
        while True:
            try:
                chunk = yield from demux.next_chunk()
            except EndOfStream:
                break
            if chunk.channel == SIDE_BAND_CHANNEL_DATA:
                pkt_parser.parse(chunk.data)
            elif chunk.channel == SIDE_BAND_CHANNEL_PROGRESS:
                self.progress.feed(chunk.data)
            elif chunk.channel == SIDE_BAND_CHANNEL_FATAL:
                raise RemoteError(chunk.data)
        self.progress.close()
        if not parser.done:
            raise ProtocolViolation("Status report ended before its flush")
