# negotiate.py -- want/have negotiation
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

"""The want/have negotiation that precedes a fetch.

The client names the objects it wants, then offers the objects it already
has in batches ("have rounds") until the server has found enough common
history to build a minimal pack, the client runs out of haves, or a round
limit is reached. The client then sends ``done`` and the server answers
with a final ACK or NAK before the pack data.

How the server acknowledges haves depends on the ACK mode negotiated with
the capabilities (protocol v0/v1):

- single ACK: ``ACK <sha>`` for the first common commit, after which the
  server stays silent until ``done``. ``NAK`` for rounds without one.
- ``multi_ack``: ``ACK <sha> continue`` per common commit, ``NAK`` after
  every round, a bare ``ACK <sha>`` after ``done``.
- ``multi_ack_detailed``: like ``multi_ack`` with ``common`` and ``ready``
  qualifiers; ``ready`` means the server can build a pack already.

Protocol v2 has no ACK modes: each round is a complete ``fetch`` command
answered by an ``acknowledgments`` section.
"""

from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, NamedTuple, NoReturn, Optional

from .capabilities import CapabilitySet, parse_capability
from .errors import (
    NothingToNegotiate,
    ProtocolViolation,
    RemoteError,
    UnsupportedCapability,
)
from .log_utils import getLogger
from .object_format import DEFAULT_OBJECT_FORMAT, ObjectFormat
from .progress import ProgressReporter
from .protocol import (
    ACK_PREFIX,
    CAPABILITY_DEEPEN_NOT,
    CAPABILITY_DEEPEN_RELATIVE,
    CAPABILITY_DEEPEN_SINCE,
    CAPABILITY_FETCH,
    CAPABILITY_FILTER,
    CAPABILITY_SHALLOW,
    COMMAND_DEEPEN,
    COMMAND_DEEPEN_NOT,
    COMMAND_DEEPEN_RELATIVE,
    COMMAND_DEEPEN_SINCE,
    COMMAND_FILTER,
    COMMAND_SHALLOW,
    COMMAND_UNSHALLOW,
    DELIM_PKT,
    ERR_PREFIX,
    MULTI_ACK,
    MULTI_ACK_DETAILED,
    NAK_LINE,
    SINGLE_ACK,
    Packet,
    ack_type,
    strip_line,
)
from .steps import Step, flush, read_line, read_until_flush, write_packets
from .versions import ProtocolVersion, frame_fetch

logger = getLogger(__name__)

DEFAULT_BATCH_SIZE = 16
DEFAULT_MAX_ROUNDS = 256

NEGOTIATION_ALGORITHMS = ("consecutive", "skipping", "none")

ACK_CONTINUE = b"continue"
ACK_COMMON = b"common"
ACK_READY = b"ready"

# Qualifiers each ACK mode allows on an ACK line during have rounds.
ALLOWED_QUALIFIERS = {
    SINGLE_ACK: frozenset(),
    MULTI_ACK: frozenset([ACK_CONTINUE]),
    MULTI_ACK_DETAILED: frozenset([ACK_CONTINUE, ACK_COMMON, ACK_READY]),
}

SECTION_ACKNOWLEDGMENTS = b"acknowledgments"
SECTION_SHALLOW_INFO = b"shallow-info"
SECTION_WANTED_REFS = b"wanted-refs"
SECTION_PACKFILE_URIS = b"packfile-uris"
SECTION_PACKFILE = b"packfile"


class Disposition(Enum):
    """What the server will do once negotiation is over."""

    READY_FOR_PACK = "ready-for-pack"
    NO_COMMON_ANCESTOR = "no-common-ancestor"
    NOTHING_TO_SEND = "nothing-to-send"


class State(Enum):
    START = "start"
    WANTS_SENT = "wants-sent"
    HAVE_ROUND = "have-round"
    DONE_SENT = "done-sent"
    ACK_RECEIVED = "ack-received"
    COMPLETE = "complete"
    ABORTED = "aborted"


class Ack(NamedTuple):
    """An acknowledgment; status is None for a bare ``ACK <sha>``."""

    sha: bytes
    status: Optional[bytes] = None


def parse_ack_line(
    pkt: Packet, object_format: ObjectFormat = DEFAULT_OBJECT_FORMAT
) -> Optional[Ack]:
    """Parse an ACK or NAK line.

    Returns: An Ack, or None for NAK
    Raises:
      RemoteError: for an ``ERR`` line
      ProtocolViolation: for anything that is not ACK or NAK
    """
    if not isinstance(pkt, bytes):
        raise ProtocolViolation("Expected ACK or NAK, got a flush or delimiter")
    line = strip_line(pkt)
    if line == NAK_LINE:
        return None
    if line.startswith(ERR_PREFIX):
        raise RemoteError(line[len(ERR_PREFIX) :])
    if not line.startswith(ACK_PREFIX):
        raise ProtocolViolation("Expected ACK or NAK", pkt)
    parts = line[len(ACK_PREFIX) :].split(b" ")
    if len(parts) > 2 or not parts[0]:
        raise ProtocolViolation("Malformed ACK line", pkt)
    sha = object_format.check_hexsha(parts[0], pkt)
    if len(parts) == 2:
        return Ack(sha, parts[1])
    return Ack(sha)


def parse_shallow_line(
    pkt: bytes, object_format: ObjectFormat = DEFAULT_OBJECT_FORMAT
) -> tuple[bytes, bytes]:
    """Parse a ``shallow <sha>`` or ``unshallow <sha>`` line."""
    line = strip_line(pkt)
    if line.startswith(ERR_PREFIX):
        raise RemoteError(line[len(ERR_PREFIX) :])
    cmd, sep, sha = line.partition(b" ")
    if not sep or cmd not in (COMMAND_SHALLOW, COMMAND_UNSHALLOW):
        raise ProtocolViolation("Expected shallow or unshallow", pkt)
    return cmd, object_format.check_hexsha(sha, pkt)


@dataclass
class NegotiationRequest:
    """What to fetch and what the client already has.

    ``haves`` is consumed lazily, one batch per round. It may be any
    iterable of hex object ids, or a graph walker: an iterator that returns
    None when exhausted and has ``ack(sha)`` (called for every commit the
    server reports as common) and optionally ``update_shallow(new_shallow,
    new_unshallow)``.
    """

    wants: Sequence[bytes] = ()
    haves: Iterable[bytes] = ()
    shallow: Sequence[bytes] = ()
    depth: Optional[int] = None
    deepen_since: Optional[bytes] = None
    deepen_not: Sequence[bytes] = ()
    deepen_relative: bool = False
    want_refs: Sequence[bytes] = ()
    filter_spec: Optional[bytes] = None

    @property
    def deepening(self) -> bool:
        return bool(self.depth or self.deepen_since is not None or self.deepen_not)


@dataclass
class NegotiationOutcome:
    """Result of a negotiation, handed to the caller."""

    acks: list[Ack] = field(default_factory=list)
    common: list[bytes] = field(default_factory=list)
    disposition: Disposition = Disposition.NO_COMMON_ANCESTOR
    new_shallow: set[bytes] = field(default_factory=set)
    new_unshallow: set[bytes] = field(default_factory=set)
    rounds: int = 0
    ready: bool = False
    wanted_refs: dict[bytes, bytes] = field(default_factory=dict)
    packfile_uris: list[bytes] = field(default_factory=list)


class _HaveSource:
    """Pull haves from an iterable or a graph walker, batch by batch."""

    def __init__(self, haves: Iterable[bytes]) -> None:
        self.walker: Any = haves
        if hasattr(haves, "__next__"):
            self._it: Iterator[Optional[bytes]] = haves  # type: ignore[assignment]
        else:
            self._it = iter(haves)
        self.exhausted = False

    def take(self, count: int) -> list[bytes]:
        batch: list[bytes] = []
        while len(batch) < count and not self.exhausted:
            sha = next(self._it, None)
            if sha is None:
                self.exhausted = True
            else:
                batch.append(sha)
        return batch

    def ack(self, sha: bytes) -> None:
        ack = getattr(self.walker, "ack", None)
        if ack is not None:
            ack(sha)

    def update_shallow(self, new_shallow: set[bytes], new_unshallow: set[bytes]) -> None:
        update = getattr(self.walker, "update_shallow", None)
        if update is not None:
            update(new_shallow, new_unshallow)


class Negotiator:
    """State machine for one fetch negotiation.

    The negotiation itself is the :meth:`run` step; run it with
    :func:`gitwire.steps.run_blocking` or :func:`gitwire.steps.run_async`.
    """

    def __init__(
        self,
        version: ProtocolVersion,
        server_capabilities: CapabilitySet,
        request: NegotiationRequest,
        client_capabilities: Sequence[bytes] = (),
        features: Sequence[bytes] = (),
        *,
        stateless: bool = False,
        batch_size: int = DEFAULT_BATCH_SIZE,
        max_rounds: int = DEFAULT_MAX_ROUNDS,
        algorithm: str = "consecutive",
        object_format: Optional[ObjectFormat] = None,
        progress: Optional[ProgressReporter] = None,
    ) -> None:
        """Initialize a Negotiator.

        Args:
          version: Protocol version of the session
          server_capabilities: Capabilities the server advertised
          request: What to fetch
          client_capabilities: Capabilities to send; for v0/v1 these ride on
            the first want line and determine the ACK mode, for v2 they are
            the command's capability lines
          features: v2 fetch arguments such as ``ofs-delta``
          stateless: Whether each request gets an independent response
          batch_size: Number of haves per round
          max_rounds: Maximum number of have rounds
          algorithm: ``consecutive``, ``skipping`` or ``none``
          object_format: Object format of the remote repository
          progress: Receives ``negotiate`` progress events
        """
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if algorithm not in NEGOTIATION_ALGORITHMS:
            raise ValueError(f"Unknown negotiation algorithm {algorithm!r}")
        self.version = version
        self.server_capabilities = server_capabilities
        self.request = request
        self.client_capabilities = list(client_capabilities)
        self.features = list(features)
        self.stateless = stateless
        self.batch_size = batch_size
        self.max_rounds = max_rounds
        self.algorithm = algorithm
        self.object_format = object_format or DEFAULT_OBJECT_FORMAT
        self.progress = progress or ProgressReporter()
        self.ack_mode = ack_type(
            [parse_capability(c).name for c in self.client_capabilities]
        )
        self.state = State.START
        self.abort_reason: Optional[BaseException] = None
        self._outcome = NegotiationOutcome()
        self._common: dict[bytes, None] = {}
        self._sent_haves: set[bytes] = set()
        self._final_ack = False

    def _transition(self, state: State) -> None:
        logger.debug("negotiation %s -> %s", self.state.value, state.value)
        self.state = state

    def _abort(self, reason: BaseException) -> None:
        if self.state not in (State.COMPLETE, State.ABORTED):
            self.abort_reason = reason
            self._transition(State.ABORTED)

    def _check_fmt(self, shas: Iterable[bytes]) -> list[bytes]:
        return [self.object_format.check_hexsha(sha) for sha in shas]

    def _supports_fetch_feature(self, feature: bytes) -> bool:
        return self.server_capabilities.supports_feature(CAPABILITY_FETCH, feature)

    def _require(self, v0_capability: bytes, v2_feature: bytes) -> None:
        if self.version == ProtocolVersion.V2:
            if not self._supports_fetch_feature(v2_feature):
                raise UnsupportedCapability(CAPABILITY_FETCH + b"=" + v2_feature)
        else:
            self.server_capabilities.assert_supported([v0_capability])

    def shallow_arguments(self) -> list[bytes]:
        """Build the shallow, deepen and filter lines of the want block.

        Raises:
          UnsupportedCapability: if the server cannot honour them
        """
        request = self.request
        args = []
        if request.shallow or request.deepening:
            self._require(CAPABILITY_SHALLOW, CAPABILITY_SHALLOW)
        args.extend(COMMAND_SHALLOW + b" " + sha for sha in self._check_fmt(request.shallow))
        if request.depth:
            args.append(COMMAND_DEEPEN + b" " + str(request.depth).encode("ascii"))
        if request.deepen_since is not None:
            self._require(CAPABILITY_DEEPEN_SINCE, CAPABILITY_SHALLOW)
            args.append(COMMAND_DEEPEN_SINCE + b" " + request.deepen_since)
        if request.deepen_not:
            self._require(CAPABILITY_DEEPEN_NOT, CAPABILITY_SHALLOW)
            args.extend(COMMAND_DEEPEN_NOT + b" " + ref for ref in request.deepen_not)
        if request.deepen_relative:
            self._require(CAPABILITY_DEEPEN_RELATIVE, CAPABILITY_SHALLOW)
            args.append(COMMAND_DEEPEN_RELATIVE)
        if request.filter_spec is not None:
            self._require(CAPABILITY_FILTER, CAPABILITY_FILTER)
            args.append(COMMAND_FILTER + b" " + request.filter_spec)
        return args

    def run(self) -> Step[NegotiationOutcome]:
        """Negotiate; returns once the pack data is about to follow.

        Raises:
          NothingToNegotiate: if the request wants nothing
          ProtocolViolation: if the server's replies are malformed
          TransportError: if the transport fails
        """
        try:
            if not self.request.wants and not self.request.want_refs:
                raise NothingToNegotiate()
            wants = self._check_fmt(self.request.wants)
            arguments = self.shallow_arguments()
            haves = _HaveSource(self.request.haves)
            if self.version == ProtocolVersion.V2:
                yield from self._run_v2(wants, arguments, haves)
            elif self.stateless:
                yield from self._run_v0_stateless(wants, arguments, haves)
            else:
                yield from self._run_v0(wants, arguments, haves)
            outcome = self._finish(wants, haves)
        except BaseException as e:
            self._abort(e)
            raise
        self._transition(State.COMPLETE)
        return outcome

    def _next_batch(self, haves: _HaveSource) -> list[bytes]:
        if self.algorithm == "none" or self._outcome.rounds >= self.max_rounds:
            return []
        batch = self._check_fmt(haves.take(self.batch_size))
        self._sent_haves.update(batch)
        return batch

    def _record_ack(self, ack: Ack, haves: _HaveSource) -> None:
        self._outcome.acks.append(ack)
        if ack.sha not in self._common:
            self._common[ack.sha] = None
            haves.ack(ack.sha)

    def _check_qualifier(self, ack: Ack, pkt: bytes) -> None:
        if ack.status is not None and ack.status not in ALLOWED_QUALIFIERS[self.ack_mode]:
            raise ProtocolViolation(
                f"ACK qualifier {ack.status!r} not valid in this ACK mode", pkt
            )

    def _read_shallow_update(self, haves: _HaveSource) -> Step[None]:
        lines = yield read_until_flush()
        self._apply_shallow_lines(lines, haves)

    def _apply_shallow_lines(self, lines: Iterable[bytes], haves: _HaveSource) -> None:
        new_shallow: set[bytes] = set()
        new_unshallow: set[bytes] = set()
        for pkt in lines:
            cmd, sha = parse_shallow_line(pkt, self.object_format)
            if cmd == COMMAND_SHALLOW:
                new_shallow.add(sha)
            else:
                new_unshallow.add(sha)
        self._outcome.new_shallow |= new_shallow
        self._outcome.new_unshallow |= new_unshallow
        if new_shallow or new_unshallow:
            haves.update_shallow(new_shallow, new_unshallow)

    def _run_v0(
        self, wants: list[bytes], arguments: list[bytes], haves: _HaveSource
    ) -> Step[None]:
        yield from write_packets(
            frame_fetch(
                self.version, self.client_capabilities, wants=wants, arguments=arguments
            )
        )
        yield flush()
        self._transition(State.WANTS_SENT)
        if self.request.deepening:
            yield from self._read_shallow_update(haves)

        server_done = False
        while not server_done:
            batch = self._next_batch(haves)
            if not batch:
                break
            self._outcome.rounds += 1
            self._transition(State.HAVE_ROUND)
            yield from write_packets(
                frame_fetch(self.version, (), haves=batch, include_wants=False)
            )
            yield flush()
            self.progress.emit(
                "negotiate", f"round {self._outcome.rounds}: {len(batch)} haves"
            )
            server_done = yield from self._read_round_acks(haves)

        yield from write_packets(
            frame_fetch(self.version, (), done=True, include_wants=False)
        )
        yield flush()
        self._transition(State.DONE_SENT)
        if self._final_ack:
            # A single-ACK server already acknowledged and sends no more.
            self._transition(State.ACK_RECEIVED)
            return
        yield from self._read_final_ack(haves)

    def _read_round_acks(self, haves: _HaveSource) -> Step[bool]:
        """Read the reply to one have round; True once negotiation is over."""
        while True:
            pkt = yield read_line()
            ack = parse_ack_line(pkt, self.object_format)
            if ack is None:
                return self._outcome.ready
            self._check_qualifier(ack, pkt)
            self._record_ack(ack, haves)
            if ack.status is None:
                if self.ack_mode != SINGLE_ACK:
                    raise ProtocolViolation("Unqualified ACK during have round", pkt)
                # The server found a common commit and sends nothing more
                # until the pack.
                self._final_ack = True
                return True
            if ack.status == ACK_READY:
                self._outcome.ready = True

    def _read_final_ack(self, haves: _HaveSource) -> Step[None]:
        while True:
            pkt = yield read_line()
            ack = parse_ack_line(pkt, self.object_format)
            if ack is None:
                break
            self._check_qualifier(ack, pkt)
            self._record_ack(ack, haves)
            if ack.status is None:
                self._final_ack = True
                break
            if ack.status == ACK_READY:
                self._outcome.ready = True
        self._transition(State.ACK_RECEIVED)

    def _take_all(self, haves: _HaveSource) -> list[bytes]:
        batch: list[bytes] = []
        while len(batch) < self.batch_size * self.max_rounds:
            more = self._next_batch(haves)
            if not more:
                break
            batch.extend(more)
        return batch

    def _run_v0_stateless(
        self, wants: list[bytes], arguments: list[bytes], haves: _HaveSource
    ) -> Step[None]:
        batch = self._take_all(haves)
        packets = frame_fetch(
            self.version, self.client_capabilities, wants=wants, arguments=arguments
        )
        packets.extend(
            frame_fetch(self.version, (), haves=batch, done=True, include_wants=False)
        )
        yield from write_packets(packets)
        yield flush()
        self._transition(State.WANTS_SENT)
        if batch:
            self._outcome.rounds = 1
            self._transition(State.HAVE_ROUND)
        self._transition(State.DONE_SENT)
        if self.request.deepening:
            yield from self._read_shallow_update(haves)
        if self.ack_mode != SINGLE_ACK:
            yield from self._read_final_ack(haves)
            return
        pkt = yield read_line()
        ack = parse_ack_line(pkt, self.object_format)
        if ack is not None:
            self._check_qualifier(ack, pkt)
            self._record_ack(ack, haves)
            self._final_ack = True
        self._transition(State.ACK_RECEIVED)

    def _run_v2(
        self, wants: list[bytes], arguments: list[bytes], haves: _HaveSource
    ) -> Step[None]:
        # Each request is a complete command, so the wants and every common
        # commit found so far are repeated in every round.
        arguments = self.features + arguments
        while True:
            batch = self._next_batch(haves)
            done = not batch
            yield from write_packets(
                frame_fetch(
                    self.version,
                    self.client_capabilities,
                    wants=wants,
                    want_refs=self.request.want_refs,
                    arguments=arguments,
                    haves=list(self._common) + batch,
                    done=done,
                )
            )
            yield flush()
            if self.state == State.START:
                self._transition(State.WANTS_SENT)
            if done:
                self._transition(State.DONE_SENT)
                break
            self._outcome.rounds += 1
            self._transition(State.HAVE_ROUND)
            self.progress.emit(
                "negotiate", f"round {self._outcome.rounds}: {len(batch)} haves"
            )
            if (yield from self._read_acknowledgments(haves)):
                break
        yield from self._read_v2_sections(haves)

    def _read_acknowledgments(self, haves: _HaveSource) -> Step[bool]:
        """Read a v2 acknowledgments section; True if the pack follows."""
        pkt = yield read_line()
        if not isinstance(pkt, bytes) or strip_line(pkt) != SECTION_ACKNOWLEDGMENTS:
            self._raise_unexpected(pkt, "Expected acknowledgments section")
        while True:
            pkt = yield read_line()
            if pkt is None:
                if self._outcome.ready:
                    raise ProtocolViolation("Flush after ready, expected delimiter")
                return False
            if pkt is DELIM_PKT:
                if not self._outcome.ready:
                    raise ProtocolViolation("Delimiter without ready in acknowledgments")
                self._transition(State.ACK_RECEIVED)
                return True
            if not isinstance(pkt, bytes):
                self._raise_unexpected(
                    pkt, "Unexpected special packet in acknowledgments"
                )
            if strip_line(pkt) == ACK_READY:
                self._outcome.ready = True
                continue
            ack = parse_ack_line(pkt, self.object_format)
            if ack is None:
                continue
            if ack.status is not None:
                raise ProtocolViolation("Qualified ACK in protocol v2", pkt)
            self._record_ack(ack, haves)

    def _raise_unexpected(self, pkt: Packet, message: str) -> NoReturn:
        if isinstance(pkt, bytes):
            line = strip_line(pkt)
            if line.startswith(ERR_PREFIX):
                raise RemoteError(line[len(ERR_PREFIX) :])
            raise ProtocolViolation(message, pkt)
        raise ProtocolViolation(message, repr(pkt).encode("ascii"))

    def _read_v2_sections(self, haves: _HaveSource) -> Step[None]:
        """Read response sections up to the ``packfile`` header."""
        while True:
            pkt = yield read_line()
            if not isinstance(pkt, bytes):
                self._raise_unexpected(pkt, "Expected response section header")
            header = strip_line(pkt)
            if header.startswith(ERR_PREFIX):
                raise RemoteError(header[len(ERR_PREFIX) :])
            if header == SECTION_PACKFILE:
                if self.state != State.ACK_RECEIVED:
                    self._transition(State.ACK_RECEIVED)
                return
            lines, terminator = yield from self._read_section()
            if header == SECTION_SHALLOW_INFO:
                self._apply_shallow_lines(lines, haves)
            elif header == SECTION_WANTED_REFS:
                for line in lines:
                    sha, sep, name = strip_line(line).partition(b" ")
                    if not sep:
                        raise ProtocolViolation("Malformed wanted-refs line", line)
                    self._outcome.wanted_refs[name] = self.object_format.check_hexsha(
                        sha, line
                    )
            elif header == SECTION_PACKFILE_URIS:
                self._outcome.packfile_uris.extend(strip_line(line) for line in lines)
            else:
                self._raise_unexpected(pkt, "Unknown response section")
            if terminator is None:
                raise ProtocolViolation("Response ended without a packfile section")

    def _read_section(self) -> Step[tuple[list[bytes], Packet]]:
        lines = []
        while True:
            pkt = yield read_line()
            if pkt is None or pkt is DELIM_PKT:
                return lines, pkt
            if not isinstance(pkt, bytes):
                raise ProtocolViolation("Unexpected special packet in section")
            lines.append(pkt)

    def _finish(self, wants: list[bytes], haves: _HaveSource) -> NegotiationOutcome:
        outcome = self._outcome
        outcome.common = list(self._common)
        if wants and all(w in self._common or w in self._sent_haves for w in wants):
            outcome.disposition = Disposition.NOTHING_TO_SEND
        elif self._common or self._final_ack:
            outcome.disposition = Disposition.READY_FOR_PACK
        else:
            outcome.disposition = Disposition.NO_COMMON_ANCESTOR
        logger.debug(
            "negotiation finished after %d rounds: %s",
            outcome.rounds,
            outcome.disposition.value,
        )
        return outcome
