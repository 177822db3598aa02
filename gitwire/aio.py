# aio.py -- asyncio transports and connections
# Copyright (C) 2022 Jelmer Vernooij <jelmer@jelmer.uk>
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

"""asyncio support.

The protocol logic is shared with the blocking client: the same
:class:`gitwire.client.GitSession` steps are run by
:func:`gitwire.steps.run_async` against the cooperative transports defined
here.
"""

import asyncio
import os
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable, Sequence
from typing import Any, Optional, Union

import aiohttp

from .capabilities import CapabilitySet
from .client import GitSession
from .config import TransferSettings
from .errors import (
    GitProtocolError,
    HangupException,
    HTTPUnauthorized,
    NothingToNegotiate,
    NotGitRepository,
    ProtocolViolation,
    TransportError,
)
from .log_utils import getLogger, packet_trace_enabled
from .negotiate import NegotiationOutcome, NegotiationRequest
from .object_format import ObjectFormat
from .progress import ProgressSink
from .protocol import (
    DELIM_PKT,
    SIDE_BAND_CHANNEL_DATA,
    SIDE_BAND_CHANNEL_PROGRESS,
    TCP_GIT_PORT,
    Packet,
    _special_packet,
    format_pkt_trace,
    parse_pkt_length,
    pkt_line,
    strip_line,
)
from .push import GeneratePackDataFunc, PushOutcome, UpdateRefsFunc
from .refs import RemoteRef
from .steps import Step, run_async
from .transport import (
    UPLOAD_PACK,
    _default_version,
    _hangup_from_stderr_lines,
    _subprocess_env,
    default_user_agent_string,
    find_git_command,
)
from .versions import ProtocolVersion, git_protocol_parameter

logger = getLogger(__name__)
packet_logger = getLogger("gitwire.packet")


class AsyncProtocol:
    """pkt-line stream over an asyncio reader.

    The methods mirror those of :class:`gitwire.protocol.Protocol` as
    coroutines. A read that exceeds ``timeout`` raises TransportError.
    """

    stateless = False
    protocol_version: Optional[int] = None

    def __init__(
        self,
        reader: Any,
        write: Callable[[bytes], Any],
        drain: Optional[Callable[[], Awaitable[None]]] = None,
        close: Optional[Callable[[], Awaitable[None]]] = None,
        timeout: Optional[float] = None,
    ) -> None:
        """Initialize AsyncProtocol.

        Args:
          reader: Object with ``readexactly(n)`` and ``read(n)`` coroutines,
            such as an asyncio.StreamReader
          write: Function to write bytes to the transport
          drain: Coroutine function waiting until written data is sent
          close: Coroutine function closing the transport
          timeout: Read timeout in seconds
        """
        self._reader = reader
        self._write = write
        self._drain = drain
        self._close = close
        self.timeout = timeout
        self._readahead: list[Packet] = []

    async def _wait(self, awaitable: Awaitable[bytes]) -> bytes:
        try:
            if self.timeout is None:
                return await awaitable
            return await asyncio.wait_for(awaitable, self.timeout)
        except asyncio.TimeoutError as e:
            raise TransportError(f"read timed out after {self.timeout} seconds") from e
        except asyncio.IncompleteReadError as e:
            raise HangupException() from e
        except (OSError, aiohttp.ClientError) as e:
            raise TransportError(e) from e

    async def read_line(self) -> Packet:
        """Read the next packet.

        Raises:
          HangupException: if the remote side closed the connection
          ProtocolViolation: if the length prefix is invalid
        """
        if self._readahead:
            return self._readahead.pop()
        size = parse_pkt_length(await self._wait(self._reader.readexactly(4)))
        if size < 4:
            pkt = _special_packet(size)
        else:
            pkt = await self._wait(self._reader.readexactly(size - 4))
        if packet_trace_enabled():
            packet_logger.debug(format_pkt_trace("<", pkt))
        return pkt

    async def unread_line(self, pkt: Packet) -> None:
        self._readahead.append(pkt)

    async def read_until_flush(self) -> list[bytes]:
        lines = []
        while True:
            pkt = await self.read_line()
            if pkt is None:
                return lines
            if not isinstance(pkt, bytes):
                raise ProtocolViolation("Unexpected special packet", pkt.wire)
            lines.append(pkt)

    async def read(self, size: int) -> bytes:
        """Read raw, unframed bytes; returns b"" at end of stream."""
        return await self._wait(self._reader.read(size))

    async def write(self, data: bytes) -> None:
        try:
            self._write(data)
        except OSError as e:
            raise TransportError(e) from e

    async def write_line(self, line: Packet) -> None:
        if packet_trace_enabled():
            packet_logger.debug(format_pkt_trace(">", line))
        await self.write(pkt_line(line))

    async def write_delim(self) -> None:
        await self.write_line(DELIM_PKT)

    async def flush(self) -> None:
        if self._drain is None:
            return
        try:
            await self._drain()
        except OSError as e:
            raise TransportError(e) from e

    async def send_cmd(self, cmd: bytes, *args: bytes) -> None:
        """Send the git:// request line."""
        await self.write_line(cmd + b" " + b"".join([(a + b"\0") for a in args]))
        await self.flush()

    async def close(self) -> None:
        if self._close is not None:
            await self._close()

    async def __aenter__(self) -> "AsyncProtocol":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


class AsyncSubprocessProtocol(AsyncProtocol):
    """AsyncProtocol over the pipes of an asyncio subprocess.

    A hangup is reported with whatever the process wrote to stderr.
    """

    def __init__(
        self, proc: asyncio.subprocess.Process, timeout: Optional[float] = None
    ) -> None:
        assert proc.stdin is not None
        super().__init__(
            proc.stdout, proc.stdin.write, proc.stdin.drain, self._close_proc, timeout
        )
        self.proc = proc

    async def read_line(self) -> Packet:
        try:
            return await super().read_line()
        except HangupException as exc:
            if self.proc.stderr is None:
                raise
            stderr = await self._wait(self.proc.stderr.read())
            raise _hangup_from_stderr_lines(stderr.splitlines()) from exc

    async def _close_proc(self) -> None:
        assert self.proc.stdin is not None
        self.proc.stdin.close()
        await self.proc.wait()


async def open_tcp(
    host: str,
    path: Union[str, bytes],
    port: Optional[int] = None,
    service: bytes = UPLOAD_PACK,
    protocol_version: Optional[int] = None,
    timeout: Optional[float] = None,
) -> AsyncProtocol:
    """Connect to a ``git://`` server with asyncio streams."""
    if port is None:
        port = TCP_GIT_PORT
    if not isinstance(path, bytes):
        path = path.encode("utf-8")
    version = _default_version(service, protocol_version)
    try:
        reader, writer = await asyncio.wait_for(
            asyncio.open_connection(host, port), timeout
        )
    except asyncio.TimeoutError as e:
        raise TransportError(f"connecting to {host}:{port} timed out") from e
    except OSError as e:
        raise TransportError(e) from e

    async def close() -> None:
        writer.close()
        await writer.wait_closed()

    proto = AsyncProtocol(reader, writer.write, writer.drain, close, timeout=timeout)
    proto.protocol_version = version
    if path.startswith(b"/~"):
        path = path[1:]
    parameter = git_protocol_parameter(version)
    extra = b"\0\0" + parameter if parameter is not None else b""
    await proto.send_cmd(service, path, b"host=" + host.encode("ascii") + extra)
    return proto


async def open_local(
    path: Union[str, bytes],
    service: bytes = UPLOAD_PACK,
    protocol_version: Optional[int] = None,
    git_command: Optional[list[str]] = None,
    timeout: Optional[float] = None,
) -> AsyncSubprocessProtocol:
    """Run a git service against a local repository as an asyncio subprocess."""
    if isinstance(path, bytes):
        path = os.fsdecode(path)
    version = _default_version(service, protocol_version)
    if git_command is None:
        git_command = find_git_command()
    argv = [*git_command, service.decode("ascii")[len("git-") :], path]
    logger.debug("Running %r", argv)
    proc = await asyncio.create_subprocess_exec(
        *argv,
        stdin=asyncio.subprocess.PIPE,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        env=_subprocess_env(version),
    )
    proto = AsyncSubprocessProtocol(proc, timeout=timeout)
    proto.protocol_version = version
    return proto


class AiohttpTransport:
    """Smart HTTP transport on aiohttp.

    Like :class:`gitwire.transport.HttpTransport`, every request is buffered
    until it is flushed and then sent as one POST.
    """

    stateless = True

    def __init__(
        self,
        base_url: str,
        service: bytes = UPLOAD_PACK,
        protocol_version: Optional[int] = None,
        session: Optional[aiohttp.ClientSession] = None,
        headers: Optional[dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/") + "/"
        self.service = service
        self.protocol_version = _default_version(service, protocol_version)
        self._session = session
        self._owns_session = session is None
        self._headers = {"User-Agent": default_user_agent_string(), **(headers or {})}
        self._response: Optional[aiohttp.ClientResponse] = None
        self._buffer: list[bytes] = []
        self._proto = AsyncProtocol(self, self._buffer.append, timeout=timeout)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._base_url!r}, {self.service!r})"

    @classmethod
    async def discover(
        cls, base_url: str, service: bytes = UPLOAD_PACK, **kwargs: Any
    ) -> "AiohttpTransport":
        """Open a smart HTTP transport and fetch the service advertisement."""
        transport = cls(base_url, service, **kwargs)
        try:
            await transport.discover_refs()
        except BaseException:
            await transport.close()
            raise
        return transport

    async def readexactly(self, n: int) -> bytes:
        if self._response is None:
            raise asyncio.IncompleteReadError(b"", n)
        return await self._response.content.readexactly(n)

    async def _read_body(self, n: int) -> bytes:
        if self._response is None:
            return b""
        return await self._response.content.read(n)

    def _git_protocol_headers(self) -> dict[str, str]:
        parameter = git_protocol_parameter(self.protocol_version)
        if parameter is None:
            return {}
        return {"Git-Protocol": parameter.decode("ascii")}

    async def _request(
        self, method: str, url: str, headers: dict[str, str], data: Optional[bytes] = None
    ) -> aiohttp.ClientResponse:
        if self._session is None:
            self._session = aiohttp.ClientSession()
        req_headers = {**self._headers, **headers, "Pragma": "no-cache"}
        try:
            resp = await self._session.request(method, url, headers=req_headers, data=data)
        except aiohttp.ClientError as e:
            raise TransportError(str(e)) from e
        if resp.status == 404:
            resp.release()
            raise NotGitRepository(f"repository not found at {url}")
        if resp.status == 401:
            resp.release()
            raise HTTPUnauthorized(resp.headers.get("WWW-Authenticate"), url)
        if resp.status != 200:
            resp.release()
            raise TransportError(f"unexpected http resp {resp.status} for {url}")
        return resp

    def _set_response(self, resp: Optional[aiohttp.ClientResponse]) -> None:
        if self._response is not None:
            self._response.release()
        self._response = resp

    async def discover_refs(self) -> None:
        """Request ``info/refs`` and position the stream at the greeting."""
        tail = "info/refs"
        url = self._base_url + tail + "?service=" + self.service.decode("ascii")
        resp = await self._request(
            "GET", url, {"Accept": "*/*", **self._git_protocol_headers()}
        )
        final_url = str(resp.url).split("?", 1)[0]
        if final_url != url.split("?", 1)[0]:
            if not final_url.endswith(tail):
                resp.release()
                raise GitProtocolError(
                    f"Redirected from URL {url} to URL {final_url} without {tail}"
                )
            self._base_url = final_url[: -len(tail)]
        if not resp.content_type.startswith("application/x-git-"):
            resp.release()
            raise GitProtocolError(
                f"{self._base_url} does not speak the smart HTTP protocol"
            )
        self._set_response(resp)
        pkt = await self._proto.read_line()
        if isinstance(pkt, bytes) and pkt.startswith(b"# service="):
            if strip_line(pkt) != b"# service=" + self.service:
                raise ProtocolViolation("unexpected first line from smart server", pkt)
            if await self._proto.read_until_flush():
                raise ProtocolViolation("expected flush after service announcement")
        else:
            await self._proto.unread_line(pkt)

    async def read_line(self) -> Packet:
        return await self._proto.read_line()

    async def unread_line(self, pkt: Packet) -> None:
        await self._proto.unread_line(pkt)

    async def read_until_flush(self) -> list[bytes]:
        return await self._proto.read_until_flush()

    async def read(self, size: int) -> bytes:
        return await self._proto._wait(self._read_body(size))

    async def write(self, data: bytes) -> None:
        await self._proto.write(data)

    async def write_line(self, line: Packet) -> None:
        await self._proto.write_line(line)

    async def write_delim(self) -> None:
        await self._proto.write_delim()

    async def flush(self) -> None:
        """Send the buffered request and switch reads to its response."""
        if not self._buffer:
            return
        body = b"".join(self._buffer)
        self._buffer.clear()
        self._set_response(None)
        service = self.service.decode("ascii")
        result_content_type = f"application/x-{service}-result"
        resp = await self._request(
            "POST",
            self._base_url + service,
            {
                "Content-Type": f"application/x-{service}-request",
                "Accept": result_content_type,
                **self._git_protocol_headers(),
            },
            body,
        )
        if resp.content_type != result_content_type:
            resp.release()
            raise ProtocolViolation(
                f"Invalid content-type from server: {resp.content_type}"
            )
        self._set_response(resp)

    async def close(self) -> None:
        self._buffer.clear()
        self._set_response(None)
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> "AiohttpTransport":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


class AsyncFetchResult:
    """Result of a fetch negotiation with asynchronous streams.

    Chunks for one stream are buffered without limit while the other is
    being read, so consume pack_data before progress to the end.

    Attributes:
      outcome: NegotiationOutcome of the negotiation
      pack_data: Lazy async iterator over the pack data
      progress: Lazy async iterator over the raw progress messages
    """

    def __init__(
        self,
        outcome: NegotiationOutcome,
        pack_data: AsyncIterator[bytes],
        progress: AsyncIterator[bytes],
    ) -> None:
        self.outcome = outcome
        self.pack_data = pack_data
        self.progress = progress

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.outcome!r})"


class AsyncConnection:
    """A session running over a cooperative transport.

    Any error escaping an operation, cancellation included, leaves the
    connection unusable.
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

    async def __aenter__(self) -> "AsyncConnection":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _run(self, step: Step[Any]) -> Any:
        if self._broken is not None:
            step.close()
            raise TransportError(
                "connection is unusable after an earlier error"
            ) from self._broken
        try:
            return await run_async(step, self.transport)
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

    async def handshake(self) -> ProtocolVersion:
        return await self._run(self.session.handshake())

    async def list_refs(
        self,
        capability_requirements: Iterable[bytes] = (),
        ref_prefixes: Sequence[bytes] = (),
        *,
        unborn: bool = False,
    ) -> list[RemoteRef]:
        return await self._run(
            self.session.list_refs(capability_requirements, ref_prefixes, unborn=unborn)
        )

    async def negotiate_fetch(self, request: NegotiationRequest) -> AsyncFetchResult:
        outcome = await self._run(self.session.fetch(request))
        return AsyncFetchResult(
            outcome,
            self._stream(SIDE_BAND_CHANNEL_DATA),
            self._stream(SIDE_BAND_CHANNEL_PROGRESS),
        )

    async def _stream(self, channel: int) -> AsyncIterator[bytes]:
        router = self.session.pack_router
        assert router is not None
        while True:
            data = await self._run(router.pump(channel))
            if data is None:
                return
            yield data

    async def negotiate_push(
        self,
        update_refs: UpdateRefsFunc,
        generate_pack_data: GeneratePackDataFunc,
        push_options: Sequence[bytes] = (),
        *,
        atomic: bool = False,
    ) -> PushOutcome:
        return await self._run(
            self.session.push(update_refs, generate_pack_data, push_options, atomic=atomic)
        )

    async def end(self) -> None:
        if self._broken is None:
            await self._run(self.session.end())

    async def close(self) -> None:
        try:
            await self.end()
        finally:
            await self.transport.close()


async def list_refs(
    transport: Any,
    version_hint: Optional[int] = None,
    capability_requirements: Iterable[bytes] = (),
    ref_prefixes: Sequence[bytes] = (),
    **kwargs: Any,
) -> list[RemoteRef]:
    """List the refs of a remote; the transport is left open."""
    conn = AsyncConnection(transport, version_hint, **kwargs)
    refs = await conn.list_refs(capability_requirements, ref_prefixes)
    await conn.end()
    return refs


async def negotiate_fetch(
    transport: Any,
    request: NegotiationRequest,
    version_hint: Optional[int] = None,
    **kwargs: Any,
) -> AsyncFetchResult:
    return await AsyncConnection(transport, version_hint, **kwargs).negotiate_fetch(
        request
    )


async def negotiate_push(
    transport: Any,
    update_refs: UpdateRefsFunc,
    generate_pack_data: GeneratePackDataFunc,
    push_options: Sequence[bytes] = (),
    version_hint: Optional[int] = None,
    **kwargs: Any,
) -> PushOutcome:
    return await AsyncConnection(transport, version_hint, **kwargs).negotiate_push(
        update_refs, generate_pack_data, push_options
    )
