# client.py -- Implementation of the client side git protocols
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

"""Client side support for the Git protocol.

The client is split in two layers:

* :class:`GitSession` knows the protocol. Every operation is a step (see
  :mod:`gitwire.steps`): it describes the reads and writes to perform but
  does not perform them.
* :class:`Connection` runs those steps against a blocking transport, such
  as the ones returned by :func:`gitwire.transport.connect_tcp`. The
  asyncio equivalent is :class:`gitwire.aio.AsyncConnection`.

Known capabilities that are not supported:

* ``no-done``
* ``sideband-all``
* ``session-id``
"""

from collections.abc import Iterable, Iterator, Sequence
from typing import Any, Optional

from .capabilities import CapabilitySet
from .config import TransferSettings
from .errors import GitProtocolError, NothingToNegotiate, TransportError
from .log_utils import getLogger
from .negotiate import NegotiationOutcome, NegotiationRequest, Negotiator
from .object_format import DEFAULT_OBJECT_FORMAT, ObjectFormat
from .progress import ProgressReporter, ProgressSink
from .protocol import (
    CAPABILITY_DEEPEN_RELATIVE,
    CAPABILITY_FETCH,
    CAPABILITY_FILTER,
    CAPABILITY_INCLUDE_TAG,
    CAPABILITY_LS_REFS,
    CAPABILITY_MULTI_ACK,
    CAPABILITY_MULTI_ACK_DETAILED,
    CAPABILITY_NO_PROGRESS,
    CAPABILITY_OBJECT_FORMAT,
    CAPABILITY_OFS_DELTA,
    CAPABILITY_SHALLOW,
    CAPABILITY_SIDE_BAND,
    CAPABILITY_SIDE_BAND_64K,
    CAPABILITY_THIN_PACK,
    SIDE_BAND_CHANNEL_DATA,
    SIDE_BAND_CHANNEL_PROGRESS,
    capability_agent,
)
from .push import GeneratePackDataFunc, Pusher, PushOutcome, UpdateRefsFunc
from .refs import (
    RemoteRef,
    filter_ref_prefix,
    parse_v1_advertisement,
    parse_v2_ls_refs,
    select_object_format,
)
from .sideband import ChannelRouter, SideBandDemultiplexer
from .steps import (
    Step,
    flush,
    read_until_flush,
    run_blocking,
    write_line,
    write_packets,
)
from .versions import ProtocolVersion, frame_ls_refs, read_protocol_version

logger = getLogger(__name__)

UPLOAD_CAPABILITIES = [
    CAPABILITY_MULTI_ACK,
    CAPABILITY_MULTI_ACK_DETAILED,
    CAPABILITY_OFS_DELTA,
]


class GitSession:
    """Protocol state of one conversation with a git server.

    The protocol version is decided once, by :meth:`handshake`, and stays
    fixed for the lifetime of the session. Each public method returns a
    step; run it with :func:`gitwire.steps.run_blocking` or
    :func:`gitwire.steps.run_async`.
    """

    def __init__(
        self,
        protocol_version: Optional[int] = None,
        *,
        stateless: bool = False,
        settings: Optional[TransferSettings] = None,
        progress: Optional[ProgressSink] = None,
        object_format: Optional[ObjectFormat] = None,
    ) -> None:
        """Initialize a GitSession.

        Args:
          protocol_version: Highest protocol version the server may answer
            with; None accepts whatever the server speaks
          stateless: Whether every request gets an independent response
            (smart HTTP)
          settings: Negotiation tunables
          progress: Receives structured progress events
          object_format: Object format to assume when the server does not
            advertise one
        """
        self.settings = settings or TransferSettings()
        if protocol_version is None:
            protocol_version = self.settings.protocol_version
        self.requested_version = (
            ProtocolVersion(protocol_version) if protocol_version is not None else None
        )
        self.stateless = stateless
        self.reporter = ProgressReporter(progress)
        self.version: Optional[ProtocolVersion] = None
        self.server_capabilities = CapabilitySet()
        self.advertised_refs: list[RemoteRef] = []
        self.shallow: list[bytes] = []
        self.object_format = object_format or DEFAULT_OBJECT_FORMAT
        self.pack_router: Optional[ChannelRouter] = None
        self.finished = False

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(version={self.version!r}, "
            f"stateless={self.stateless!r})"
        )

    def _agent(self) -> bytes:
        if self.settings.agent is not None:
            return b"agent=" + self.settings.agent
        return capability_agent()

    def _check_open(self) -> None:
        if self.finished:
            raise GitProtocolError("the session has ended")
        if self.pack_router is not None and not self.pack_router.ended:
            raise GitProtocolError("the previous pack stream was not consumed")

    def handshake(self) -> Step[ProtocolVersion]:
        """Read the server's greeting: version line, capabilities and refs.

        Returns: The protocol version of the session
        """
        if self.version is not None:
            return self.version
        version = yield from read_protocol_version(self.requested_version)
        lines = yield read_until_flush()
        if version == ProtocolVersion.V2:
            self.server_capabilities = CapabilitySet.from_v2_lines(lines)
        else:
            advertisement = parse_v1_advertisement(lines, self.object_format)
            self.server_capabilities = advertisement.capabilities
            self.advertised_refs = advertisement.refs
            self.shallow = advertisement.shallow
        self.object_format = select_object_format(
            self.server_capabilities, self.object_format
        )
        self.version = version
        logger.debug(
            "protocol v%d session, server capabilities: %r",
            version,
            self.server_capabilities,
        )
        return version

    def _v2_capability_lines(self) -> list[bytes]:
        lines = [self._agent()]
        if CAPABILITY_OBJECT_FORMAT in self.server_capabilities:
            lines.append(self.object_format.capability)
        return lines

    def list_refs(
        self,
        capability_requirements: Iterable[bytes] = (),
        ref_prefixes: Sequence[bytes] = (),
        *,
        unborn: bool = False,
    ) -> Step[list[RemoteRef]]:
        """List the refs of the remote.

        For protocol v0/v1 the refs are those of the advertisement, filtered
        by prefix on the client side; for v2 an ``ls-refs`` command is sent.

        Args:
          capability_requirements: Capabilities the server must advertise
          ref_prefixes: Only list refs starting with one of these
          unborn: Ask a v2 server for unborn symbolic refs too
        Raises:
          UnsupportedCapability: if a required capability is missing
        """
        yield from self.handshake()
        self.server_capabilities.assert_supported(capability_requirements)
        if self.version != ProtocolVersion.V2:
            return filter_ref_prefix(self.advertised_refs, ref_prefixes)
        self._check_open()
        self.server_capabilities.assert_supported([CAPABILITY_LS_REFS])
        unborn = unborn and self.server_capabilities.supports_feature(
            CAPABILITY_LS_REFS, b"unborn"
        )
        yield from write_packets(
            frame_ls_refs(
                self.version,
                self._v2_capability_lines(),
                unborn=unborn,
                ref_prefixes=ref_prefixes,
            )
        )
        yield flush()
        lines = yield read_until_flush()
        refs = parse_v2_ls_refs(lines, self.object_format)
        self.advertised_refs = refs
        return refs

    def upload_capabilities(self, request: NegotiationRequest) -> CapabilitySet:
        """Select the v0/v1 capabilities to send with the first want line."""
        requested = list(UPLOAD_CAPABILITIES)
        if self.settings.thin_pack:
            requested.append(CAPABILITY_THIN_PACK)
        if CAPABILITY_SIDE_BAND_64K in self.server_capabilities:
            requested.append(CAPABILITY_SIDE_BAND_64K)
        else:
            requested.append(CAPABILITY_SIDE_BAND)
        if request.shallow or request.deepening:
            requested.append(CAPABILITY_SHALLOW)
        if request.deepen_relative:
            requested.append(CAPABILITY_DEEPEN_RELATIVE)
        if request.filter_spec is not None:
            requested.append(CAPABILITY_FILTER)
        if self.settings.no_progress:
            requested.append(CAPABILITY_NO_PROGRESS)
        if self.settings.include_tag:
            requested.append(CAPABILITY_INCLUDE_TAG)
        if CAPABILITY_OBJECT_FORMAT in self.server_capabilities:
            requested.append(self.object_format.capability)
        requested.append(self._agent())
        return self.server_capabilities.negotiate(requested)

    def _v2_fetch_features(self) -> list[bytes]:
        features = []
        if self.settings.thin_pack:
            features.append(CAPABILITY_THIN_PACK)
        if self.settings.ofs_delta:
            features.append(CAPABILITY_OFS_DELTA)
        if self.settings.no_progress:
            features.append(CAPABILITY_NO_PROGRESS)
        if self.settings.include_tag:
            features.append(CAPABILITY_INCLUDE_TAG)
        return features

    def _negotiator(self, request: NegotiationRequest) -> tuple[Negotiator, bool]:
        assert self.version is not None
        if self.version == ProtocolVersion.V2:
            self.server_capabilities.assert_supported([CAPABILITY_FETCH])
            client_capabilities = self._v2_capability_lines()
            features = self._v2_fetch_features()
            # The v2 packfile section is always multiplexed.
            sideband = True
        else:
            negotiated = self.upload_capabilities(request)
            client_capabilities = [bytes(c) for c in negotiated]
            features = []
            sideband = (
                CAPABILITY_SIDE_BAND_64K in negotiated or CAPABILITY_SIDE_BAND in negotiated
            )
        negotiator = Negotiator(
            self.version,
            self.server_capabilities,
            request,
            client_capabilities,
            features,
            stateless=self.stateless,
            batch_size=self.settings.batch_size,
            max_rounds=self.settings.max_rounds,
            algorithm=self.settings.algorithm,
            object_format=self.object_format,
            progress=self.reporter,
        )
        return negotiator, sideband

    def fetch(self, request: NegotiationRequest) -> Step[NegotiationOutcome]:
        """Negotiate a fetch.

        Once the step returns, :attr:`pack_router` is ready to stream the
        pack data and progress that follow.

        Raises:
          NothingToNegotiate: if the request wants nothing
          UnsupportedCapability: if the request needs something the server
            does not advertise
        """
        yield from self.handshake()
        self._check_open()
        negotiator, sideband = self._negotiator(request)
        try:
            outcome = yield from negotiator.run()
        except NothingToNegotiate:
            if self.version != ProtocolVersion.V2 and not self.stateless:
                # Tell the server we do not want anything.
                yield write_line(None)
                yield flush()
                self.finished = True
            raise
        if self.version != ProtocolVersion.V2:
            self.finished = True
        self.pack_router = ChannelRouter(SideBandDemultiplexer(sideband), self.reporter)
        return outcome

    def push(
        self,
        update_refs: UpdateRefsFunc,
        generate_pack_data: GeneratePackDataFunc,
        push_options: Sequence[bytes] = (),
        *,
        atomic: bool = False,
    ) -> Step[PushOutcome]:
        """Update refs on the remote, uploading a pack when needed.

        Raises:
          GitProtocolError: for a protocol v2 session
          SendPackError: if the server could not unpack
        """
        yield from self.handshake()
        self._check_open()
        assert self.version is not None
        if self.version == ProtocolVersion.V2:
            raise GitProtocolError("push is not available in protocol v2")
        pusher = Pusher(
            self.version,
            self.server_capabilities,
            self.advertised_refs,
            update_refs,
            generate_pack_data,
            push_options=push_options,
            atomic=atomic,
            quiet=self.settings.no_progress,
            agent=self.settings.agent,
            object_format=self.object_format,
            progress=self.reporter,
        )
        self.finished = True
        return (yield from pusher.run())

    def end(self) -> Step[None]:
        """Tell the server that no further commands follow."""
        if self.finished or self.stateless or self.version is None:
            self.finished = True
            return
        self.finished = True
        if self.pack_router is not None and not self.pack_router.ended:
            # Mid-stream; the server notices the hangup.
            return
        yield write_line(None)
        yield flush()


class FetchResult:
    """Result of a fetch negotiation.

    Chunks for one stream are buffered without limit while the other is
    being read, so consume pack_data before progress to the end.

    Attributes:
      outcome: NegotiationOutcome of the negotiation
      pack_data: Lazy iterator over the pack data
      progress: Lazy iterator over the raw progress messages
    """

    def __init__(
        self,
        outcome: NegotiationOutcome,
        pack_data: Iterator[bytes],
        progress: Iterator[bytes],
    ) -> None:
        self.outcome = outcome
        self.pack_data = pack_data
        self.progress = progress

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.outcome!r})"


class Connection:
    """A session running over a blocking transport.

    Any error escaping an operation leaves the connection unusable: later
    operations raise TransportError and the caller has to reconnect.
    """

    def __init__(
        self,
        transport: Any,
        protocol_version: Optional[int] = None,
        *,
        settings: Optional[TransferSettings] = None,
        progress: Optional[ProgressSink] = None,
        object_format: Optional[ObjectFormat] = None,
    ) -> None:
        """Initialize a Connection.

        Args:
          transport: Blocking transport, e.g. a gitwire.protocol.Protocol
          protocol_version: Highest protocol version to accept; defaults to
            the version the transport requested
          settings: Negotiation tunables
          progress: Receives structured progress events
          object_format: Object format to assume
        """
        self.transport = transport
        if protocol_version is None:
            protocol_version = getattr(transport, "protocol_version", None)
        self.session = GitSession(
            protocol_version,
            stateless=getattr(transport, "stateless", False),
            settings=settings,
            progress=progress,
            object_format=object_format,
        )
        self._broken: Optional[BaseException] = None

    def __enter__(self) -> "Connection":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def _run(self, step: Step[Any]) -> Any:
        if self._broken is not None:
            step.close()
            raise TransportError(
                "connection is unusable after an earlier error"
            ) from self._broken
        try:
            return run_blocking(step, self.transport)
        except NothingToNegotiate:
            raise
        except BaseException as e:
            self._broken = e
            raise

    @property
    def capabilities(self) -> CapabilitySet:
        return self.session.server_capabilities

    @property
    def protocol_version(self) -> Optional[ProtocolVersion]:
        return self.session.version

    def handshake(self) -> ProtocolVersion:
        return self._run(self.session.handshake())

    def list_refs(
        self,
        capability_requirements: Iterable[bytes] = (),
        ref_prefixes: Sequence[bytes] = (),
        *,
        unborn: bool = False,
    ) -> list[RemoteRef]:
        """Retrieve the refs of the remote.

        Args:
          capability_requirements: Capabilities the server must advertise
          ref_prefixes: Only return refs starting with one of these
          unborn: Include unborn symbolic refs (protocol v2)
        Returns: List of RemoteRef, in the order the server sent them
        """
        return self._run(
            self.session.list_refs(capability_requirements, ref_prefixes, unborn=unborn)
        )

    def negotiate_fetch(self, request: NegotiationRequest) -> FetchResult:
        """Negotiate a fetch and return the streams that follow.

        The pack data and progress iterators are forward-only and read from
        the connection as they are consumed.

        Raises:
          NothingToNegotiate: if the request wants nothing
        """
        outcome = self._run(self.session.fetch(request))
        return FetchResult(
            outcome,
            self._stream(SIDE_BAND_CHANNEL_DATA),
            self._stream(SIDE_BAND_CHANNEL_PROGRESS),
        )

    def _stream(self, channel: int) -> Iterator[bytes]:
        router = self.session.pack_router
        assert router is not None
        while True:
            data = self._run(router.pump(channel))
            if data is None:
                return
            yield data

    def negotiate_push(
        self,
        update_refs: UpdateRefsFunc,
        generate_pack_data: GeneratePackDataFunc,
        push_options: Sequence[bytes] = (),
        *,
        atomic: bool = False,
    ) -> PushOutcome:
        """Update refs on the remote.

        Args:
          update_refs: Called with the advertised refs, returns the refs as
            they should be after the push (zero id to delete)
          generate_pack_data: Called with (have, want) sets of object ids,
            returns the pack as an iterable of byte chunks
          push_options: Push options to send
          atomic: Request an all-or-nothing update
        Returns: PushOutcome with the per-ref status
        """
        return self._run(
            self.session.push(update_refs, generate_pack_data, push_options, atomic=atomic)
        )

    def end(self) -> None:
        """End the session without closing the transport."""
        if self._broken is None:
            self._run(self.session.end())

    def close(self) -> None:
        try:
            self.end()
        finally:
            self.transport.close()


def list_refs(
    transport: Any,
    version_hint: Optional[int] = None,
    capability_requirements: Iterable[bytes] = (),
    ref_prefixes: Sequence[bytes] = (),
    **kwargs: Any,
) -> list[RemoteRef]:
    """List the refs of a remote over a freshly opened transport.

    The session is ended afterwards; the transport is left open.
    """
    conn = Connection(transport, version_hint, **kwargs)
    refs = conn.list_refs(capability_requirements, ref_prefixes)
    conn.end()
    return refs


def negotiate_fetch(
    transport: Any,
    request: NegotiationRequest,
    version_hint: Optional[int] = None,
    **kwargs: Any,
) -> FetchResult:
    """Negotiate a fetch over a freshly opened transport."""
    return Connection(transport, version_hint, **kwargs).negotiate_fetch(request)


def negotiate_push(
    transport: Any,
    update_refs: UpdateRefsFunc,
    generate_pack_data: GeneratePackDataFunc,
    push_options: Sequence[bytes] = (),
    version_hint: Optional[int] = None,
    **kwargs: Any,
) -> PushOutcome:
    """Push over a freshly opened transport to a receive-pack service."""
    return Connection(transport, version_hint, **kwargs).negotiate_push(
        update_refs, generate_pack_data, push_options
    )
