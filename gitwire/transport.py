# transport.py -- Blocking transports for the git protocol
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

"""Blocking transports.

Each helper opens a connection to a git service and returns a transport
that :class:`gitwire.client.Connection` can drive:

* :func:`connect_tcp` speaks ``git://``
* :func:`connect_local` runs ``git upload-pack`` (or ``receive-pack``)
* :func:`connect_ssh` runs the service on a remote host through ``ssh``
* :meth:`HttpTransport.discover` speaks smart HTTP using urllib3
"""

import os
import socket
import subprocess
import sys
from collections.abc import Callable
from io import BufferedReader
from typing import IO, TYPE_CHECKING, Optional, Union
from urllib.parse import urljoin, urlparse

import gitwire

from .config import Config
from .errors import (
    GitProtocolError,
    HangupException,
    HTTPUnauthorized,
    NotGitRepository,
    ProtocolViolation,
    TransportError,
)
from .log_utils import getLogger
from .protocol import TCP_GIT_PORT, Packet, Protocol, strip_line
from .versions import (
    DEFAULT_PROTOCOL_VERSION_FETCH,
    DEFAULT_PROTOCOL_VERSION_SEND,
    ProtocolVersion,
    git_protocol_parameter,
)

if TYPE_CHECKING:
    import urllib3
    from urllib3.response import HTTPResponse

logger = getLogger(__name__)

UPLOAD_PACK = b"git-upload-pack"
RECEIVE_PACK = b"git-receive-pack"


def _default_version(service: bytes, protocol_version: Optional[int]) -> ProtocolVersion:
    if protocol_version is not None:
        return ProtocolVersion(protocol_version)
    if service == UPLOAD_PACK:
        return DEFAULT_PROTOCOL_VERSION_FETCH
    # Pushing is not available in protocol v2.
    return DEFAULT_PROTOCOL_VERSION_SEND


def _hangup_from_stderr_lines(lines: list[bytes]) -> HangupException:
    for line in lines:
        if line.startswith(b"ERROR: "):
            return HangupException([line[len(b"ERROR: ") :]])
    return HangupException(lines)


def _remote_error_from_stderr(stderr: Optional[IO[bytes]]) -> HangupException:
    if stderr is None:
        return HangupException()
    return _hangup_from_stderr_lines(
        [line.rstrip(b"\n") for line in stderr.readlines()]
    )


class SubprocessProtocol(Protocol):
    """Protocol over the pipes of a subprocess.

    A hangup is reported with whatever the process wrote to stderr.
    """

    def __init__(self, wrapper: "SubprocessWrapper") -> None:
        super().__init__(wrapper.read, wrapper.write, wrapper.close)
        self._stderr = wrapper.stderr

    def read_line(self) -> Packet:
        try:
            return super().read_line()
        except HangupException as exc:
            raise _remote_error_from_stderr(self._stderr) from exc


class SubprocessWrapper:
    """A socket-like object that talks to a subprocess via pipes."""

    def __init__(self, proc: "subprocess.Popen[bytes]") -> None:
        """Initialize a SubprocessWrapper.

        Args:
          proc: Subprocess.Popen instance to wrap
        """
        self.proc = proc
        assert proc.stdout is not None
        assert proc.stdin is not None
        self.read = BufferedReader(proc.stdout).read  # type: ignore[type-var]
        self.write = proc.stdin.write

    @property
    def stderr(self) -> Optional[IO[bytes]]:
        """Return the stderr stream of the subprocess."""
        return self.proc.stderr

    def close(self, timeout: Optional[int] = 60) -> None:
        """Close the subprocess and wait for it to terminate.

        Args:
          timeout: Maximum time to wait for subprocess to terminate (seconds)

        Raises:
          TransportError: If subprocess doesn't terminate within timeout
        """
        if self.proc.stdin:
            self.proc.stdin.close()
        if self.proc.stdout:
            self.proc.stdout.close()
        if self.proc.stderr:
            self.proc.stderr.close()
        try:
            self.proc.wait(timeout=timeout)
        except subprocess.TimeoutExpired as e:
            self.proc.kill()
            self.proc.wait()
            raise TransportError(
                f"Git subprocess did not terminate within {timeout} seconds; killed it."
            ) from e


def find_git_command() -> list[str]:
    """Find command to run for system Git (usually C Git)."""
    if sys.platform == "win32":
        return ["cmd", "/c", "git"]
    return ["git"]


def connect_tcp(
    host: str,
    path: Union[str, bytes],
    port: Optional[int] = None,
    service: bytes = UPLOAD_PACK,
    protocol_version: Optional[int] = None,
    timeout: Optional[float] = None,
    report_activity: Optional[Callable[[int, str], None]] = None,
) -> Protocol:
    """Connect to a ``git://`` server.

    Args:
      host: Hostname or IP address to connect to
      path: Repository path on the server
      port: Port number (defaults to TCP_GIT_PORT)
      service: ``git-upload-pack`` or ``git-receive-pack``
      protocol_version: Protocol version to request
      timeout: Socket timeout in seconds; a timeout surfaces as TransportError
      report_activity: Optional callback for reporting transport activity
    Returns: A Protocol ready for the server's greeting
    """
    if port is None:
        port = TCP_GIT_PORT
    if not isinstance(path, bytes):
        path = path.encode("utf-8")
    version = _default_version(service, protocol_version)
    sockaddrs = socket.getaddrinfo(host, port, socket.AF_UNSPEC, socket.SOCK_STREAM)
    s = None
    err: OSError = OSError(f"no address found for {host}")
    for family, socktype, protof, canonname, sockaddr in sockaddrs:
        s = socket.socket(family, socktype, protof)
        s.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        if timeout is not None:
            s.settimeout(timeout)
        try:
            s.connect(sockaddr)
            break
        except OSError as e:
            err = e
            if s is not None:
                s.close()
            s = None
    if s is None:
        raise TransportError(err) from err
    # -1 means system default buffering
    rfile = s.makefile("rb", -1)
    # 0 means unbuffered
    wfile = s.makefile("wb", 0)

    def close() -> None:
        rfile.close()
        wfile.close()
        s.close()

    proto = Protocol(rfile.read, wfile.write, close, report_activity=report_activity)
    proto.protocol_version = version
    if path.startswith(b"/~"):
        path = path[1:]
    parameter = git_protocol_parameter(version)
    if parameter is not None:
        # The version is hidden behind two NUL bytes for older servers, which
        # would choke on anything but "host=" after the first one.
        extra = b"\0\0" + parameter
    else:
        extra = b""
    proto.send_cmd(service, path, b"host=" + host.encode("ascii") + extra)
    return proto


def _subprocess_env(version: ProtocolVersion) -> Optional[dict[str, str]]:
    parameter = git_protocol_parameter(version)
    if parameter is None:
        return None
    env = dict(os.environ)
    env["GIT_PROTOCOL"] = parameter.decode("ascii")
    return env


def connect_local(
    path: Union[str, bytes],
    service: bytes = UPLOAD_PACK,
    protocol_version: Optional[int] = None,
    git_command: Optional[list[str]] = None,
) -> SubprocessProtocol:
    """Run a git service against a local repository.

    Args:
      path: Path of the repository
      service: ``git-upload-pack`` or ``git-receive-pack``
      protocol_version: Protocol version to request through GIT_PROTOCOL
      git_command: Command to run git, defaults to find_git_command()
    """
    if isinstance(path, bytes):
        path = os.fsdecode(path)
    version = _default_version(service, protocol_version)
    if git_command is None:
        git_command = find_git_command()
    argv = [*git_command, service.decode("ascii")[len("git-") :], path]
    logger.debug("Running %r", argv)
    p = subprocess.Popen(
        argv,
        bufsize=0,
        stdin=subprocess.PIPE,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        env=_subprocess_env(version),
    )
    proto = SubprocessProtocol(SubprocessWrapper(p))
    proto.protocol_version = version
    return proto


class StrangeHostname(Exception):
    """Refusing to connect to strange SSH hostname."""

    def __init__(self, hostname: str) -> None:
        """Initialize StrangeHostname exception.

        Args:
            hostname: The strange hostname that was rejected
        """
        super().__init__(hostname)


class SSHVendor:
    """A client side SSH implementation."""

    def run_command(
        self,
        host: str,
        command: str,
        username: Optional[str] = None,
        port: Optional[int] = None,
        key_filename: Optional[str] = None,
        ssh_command: Optional[str] = None,
        protocol_version: Optional[int] = None,
    ) -> SubprocessWrapper:
        """Connect to an SSH server.

        Run a command remotely and return a file-like object for interaction
        with the remote command.

        Args:
          host: Host name
          command: Command to run on the remote host
          username: Optional name of user to log in as
          port: Optional SSH port to use
          key_filename: Optional path to private keyfile
          ssh_command: Optional SSH command
          protocol_version: Git protocol version to request
        """
        raise NotImplementedError(self.run_command)


class SubprocessSSHVendor(SSHVendor):
    """SSH vendor that shells out to the local 'ssh' command."""

    def build_args(
        self,
        host: str,
        command: str,
        username: Optional[str] = None,
        port: Optional[int] = None,
        key_filename: Optional[str] = None,
        ssh_command: Optional[str] = None,
        protocol_version: Optional[int] = None,
    ) -> list[str]:
        if ssh_command:
            import shlex

            args = [*shlex.split(ssh_command, posix=sys.platform != "win32"), "-x"]
        else:
            args = ["ssh", "-x"]

        if port:
            args.extend(["-p", str(port)])

        if key_filename:
            args.extend(["-i", str(key_filename)])

        if protocol_version:
            args.extend(["-o", f"SetEnv GIT_PROTOCOL=version={protocol_version}"])

        if username:
            host = f"{username}@{host}"
        if host.startswith("-"):
            raise StrangeHostname(hostname=host)
        args.append(host)
        args.append(command)
        return args

    def run_command(
        self,
        host: str,
        command: str,
        username: Optional[str] = None,
        port: Optional[int] = None,
        key_filename: Optional[str] = None,
        ssh_command: Optional[str] = None,
        protocol_version: Optional[int] = None,
    ) -> SubprocessWrapper:
        args = self.build_args(
            host,
            command,
            username=username,
            port=port,
            key_filename=key_filename,
            ssh_command=ssh_command,
            protocol_version=protocol_version,
        )
        proc = subprocess.Popen(
            args,
            bufsize=0,
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )
        return SubprocessWrapper(proc)


def _quote_path(path: str) -> str:
    return "'" + path.replace("'", "'\\''") + "'"


def connect_ssh(
    host: str,
    path: Union[str, bytes],
    service: bytes = UPLOAD_PACK,
    username: Optional[str] = None,
    port: Optional[int] = None,
    key_filename: Optional[str] = None,
    protocol_version: Optional[int] = None,
    vendor: Optional[SSHVendor] = None,
) -> SubprocessProtocol:
    """Run a git service on a remote host over ssh.

    The ``GIT_SSH_COMMAND`` environment variable overrides the ssh command.
    """
    if isinstance(path, bytes):
        path = path.decode("utf-8")
    if path.startswith("/~"):
        path = path[1:]
    version = _default_version(service, protocol_version)
    if vendor is None:
        vendor = SubprocessSSHVendor()
    command = service.decode("ascii") + " " + _quote_path(path)
    wrapper = vendor.run_command(
        host,
        command,
        username=username,
        port=port,
        key_filename=key_filename,
        ssh_command=os.environ.get("GIT_SSH_COMMAND"),
        protocol_version=int(version),
    )
    proto = SubprocessProtocol(wrapper)
    proto.protocol_version = version
    return proto


def default_user_agent_string() -> str:
    # Start user agent with "git/", because GitHub requires this. :-(
    return "git/gitwire/{}".format(".".join([str(x) for x in gitwire.__version__]))


def _urlmatch_http_sections(
    config: Config, url: Optional[str]
) -> list[tuple[bytes, ...]]:
    """Return the http config sections matching url, least specific first."""
    matching: list[tuple[int, tuple[bytes, ...]]] = []
    for section in config.sections():
        if section[0].lower() != b"http":
            continue
        if len(section) < 2:
            matching.append((0, section))
        elif url is not None:
            config_url = section[1].decode("utf-8", "replace").rstrip("/")
            if url == config_url or url.startswith(config_url + "/"):
                matching.append((len(config_url), section))
    matching.sort(key=lambda x: x[0])
    return [section for _, section in matching]


def check_for_proxy_bypass(base_url: Optional[str]) -> bool:
    """Check if proxy should be bypassed for the given URL."""
    # Check if a proxy bypass is defined with the no_proxy environment variable
    if base_url:
        no_proxy_str = os.environ.get("no_proxy")
        if no_proxy_str:
            # implementation based on curl behavior: https://curl.se/libcurl/c/CURLOPT_NOPROXY.html
            hostname = urlparse(base_url).hostname
            if hostname:
                for no_proxy_value in no_proxy_str.split(","):
                    no_proxy_value = no_proxy_value.strip().lower().lstrip(".")
                    if not no_proxy_value:
                        continue
                    if no_proxy_value == "*":
                        return True
                    if hostname == no_proxy_value:
                        return True
                    if hostname.endswith("." + no_proxy_value):
                        return True
    return False


def default_urllib3_manager(
    config: Optional[Config],
    pool_manager_cls: Optional[type] = None,
    proxy_manager_cls: Optional[type] = None,
    base_url: Optional[str] = None,
    timeout: Optional[float] = None,
) -> Union["urllib3.ProxyManager", "urllib3.PoolManager"]:
    """Return urllib3 connection pool manager.

    Honour detected proxy configurations.

    Args:
      config: `gitwire.config.Config` instance with Git configuration.
      pool_manager_cls: Pool manager class to use
      proxy_manager_cls: Proxy manager class to use
      base_url: Base URL for proxy bypass checks and http.<url>.* sections
      timeout: Timeout for HTTP requests in seconds

    Returns:
      Either pool_manager_cls (defaults to `urllib3.ProxyManager`) instance for
      proxy configurations, proxy_manager_cls
      (defaults to `urllib3.PoolManager`) instance otherwise
    """
    proxy_server: Optional[str] = None
    user_agent: Optional[str] = None
    ca_certs: Optional[str] = None
    ssl_verify = True

    for proxyname in ("https_proxy", "http_proxy", "all_proxy"):
        proxy_server = os.environ.get(proxyname)
        if proxy_server:
            break

    if proxy_server and check_for_proxy_bypass(base_url):
        proxy_server = None

    if config is not None:
        # More specific sections override less specific ones.
        for section in _urlmatch_http_sections(config, base_url):
            if proxy_server is None:
                try:
                    proxy_server = config.get(section, b"proxy").decode("utf-8")
                except KeyError:
                    pass
            try:
                user_agent = config.get(section, b"useragent").decode("utf-8")
            except KeyError:
                pass
            verify = config.get_boolean(section, b"sslVerify")
            if verify is not None:
                ssl_verify = verify
            try:
                ca_certs = config.get(section, b"sslCAInfo").decode("utf-8")
            except KeyError:
                pass
            if timeout is None:
                try:
                    timeout = float(config.get(section, b"timeout").decode("utf-8"))
                except KeyError:
                    pass

    if user_agent is None:
        user_agent = default_user_agent_string()

    headers = {"User-agent": user_agent}

    kwargs: dict[str, Union[str, float, None]] = {
        "ca_certs": ca_certs,
        "cert_reqs": "CERT_REQUIRED" if ssl_verify else "CERT_NONE",
    }
    if timeout is not None:
        kwargs["timeout"] = timeout

    import urllib3

    manager: Union[urllib3.ProxyManager, urllib3.PoolManager]
    if proxy_server is not None:
        if proxy_manager_cls is None:
            proxy_manager_cls = urllib3.ProxyManager
        proxy_server_url = urlparse(proxy_server)
        if proxy_server_url.username is not None:
            proxy_headers = urllib3.make_headers(
                proxy_basic_auth=f"{proxy_server_url.username}:{proxy_server_url.password or ''}"
            )
        else:
            proxy_headers = {}
        manager = proxy_manager_cls(
            proxy_server, proxy_headers=proxy_headers, headers=headers, **kwargs
        )
    else:
        if pool_manager_cls is None:
            pool_manager_cls = urllib3.PoolManager
        manager = pool_manager_cls(headers=headers, **kwargs)

    return manager


class HttpTransport:
    """Smart HTTP transport on urllib3.

    HTTP is stateless: the packets written for one request are buffered and
    sent as the body of a POST when the request is flushed, and reads are
    served from the response to that POST.
    """

    stateless = True

    def __init__(
        self,
        base_url: str,
        service: bytes = UPLOAD_PACK,
        protocol_version: Optional[int] = None,
        pool_manager: Optional["urllib3.PoolManager"] = None,
        config: Optional[Config] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        timeout: Optional[float] = None,
        extra_headers: Optional[dict[str, str]] = None,
    ) -> None:
        """Initialize HttpTransport.

        Args:
          base_url: URL of the repository
          service: ``git-upload-pack`` or ``git-receive-pack``
          protocol_version: Protocol version to request
          pool_manager: urllib3 pool manager; by default one is created from
            config by default_urllib3_manager
          config: Git configuration for http.* settings
          username: Username for basic authentication
          password: Password for basic authentication
          timeout: Timeout for HTTP requests in seconds
          extra_headers: Headers to add to every request
        """
        self._base_url = base_url.rstrip("/") + "/"
        self.service = service
        self.protocol_version = _default_version(service, protocol_version)
        self._timeout = timeout
        self._extra_headers = extra_headers or {}
        if pool_manager is None:
            self.pool_manager = default_urllib3_manager(
                config, base_url=base_url, timeout=timeout
            )
        else:
            self.pool_manager = pool_manager

        if username is not None:
            # No escaping needed: ":" is not allowed in username:
            # https://tools.ietf.org/html/rfc2617#section-2
            credentials = f"{username}:{password or ''}"
            import urllib3.util

            basic_auth = urllib3.util.make_headers(basic_auth=credentials)
            self.pool_manager.headers.update(basic_auth)  # type: ignore

        self._response: Optional["HTTPResponse"] = None
        self._buffer: list[bytes] = []
        self._proto = Protocol(self._read_response, self._buffer.append)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._base_url!r}, {self.service!r})"

    @property
    def base_url(self) -> str:
        return self._base_url

    @classmethod
    def discover(
        cls, base_url: str, service: bytes = UPLOAD_PACK, **kwargs: object
    ) -> "HttpTransport":
        """Open a smart HTTP transport and fetch the service advertisement."""
        transport = cls(base_url, service, **kwargs)  # type: ignore[arg-type]
        transport.discover_refs()
        return transport

    def _http_request(
        self,
        url: str,
        headers: Optional[dict[str, str]] = None,
        data: Optional[bytes] = None,
    ) -> "HTTPResponse":
        """Perform HTTP request.

        Raises:
          NotGitRepository: on a 404
          HTTPUnauthorized: on a 401
          TransportError: on any other failure
        """
        import urllib3.exceptions

        req_headers = dict(self.pool_manager.headers)
        req_headers.update(self._extra_headers)
        if headers is not None:
            req_headers.update(headers)
        req_headers["Pragma"] = "no-cache"

        request_kwargs: dict[str, object] = {
            "headers": req_headers,
            "preload_content": False,
        }
        if self._timeout is not None:
            request_kwargs["timeout"] = self._timeout
        try:
            if data is None:
                resp = self.pool_manager.request("GET", url, **request_kwargs)  # type: ignore[arg-type]
            else:
                request_kwargs["body"] = data
                resp = self.pool_manager.request("POST", url, **request_kwargs)  # type: ignore[arg-type]
        except urllib3.exceptions.HTTPError as e:
            raise TransportError(str(e)) from e

        if resp.status == 404:
            raise NotGitRepository(f"repository not found at {url}")
        if resp.status == 401:
            raise HTTPUnauthorized(resp.headers.get("WWW-Authenticate"), url)
        if resp.status != 200:
            raise TransportError(f"unexpected http resp {resp.status} for {url}")
        return resp

    def _set_response(self, resp: Optional["HTTPResponse"]) -> None:
        if self._response is not None:
            self._response.close()
        self._response = resp

    def _read_response(self, size: int) -> bytes:
        from urllib3.exceptions import HTTPError

        if self._response is None:
            return b""
        try:
            return self._response.read(size)
        except HTTPError as e:
            raise TransportError(str(e)) from e

    def _git_protocol_headers(self) -> dict[str, str]:
        parameter = git_protocol_parameter(self.protocol_version)
        if parameter is None:
            return {}
        return {"Git-Protocol": parameter.decode("ascii")}

    def discover_refs(self) -> None:
        """Request ``info/refs`` and position the stream at the greeting.

        Raises:
          GitProtocolError: if the server only speaks the dumb protocol
          ProtocolViolation: if the service announcement is wrong
        """
        tail = "info/refs"
        url = urljoin(self._base_url, tail + "?service=" + self.service.decode("ascii"))
        headers = {"Accept": "*/*", **self._git_protocol_headers()}
        resp = self._http_request(url, headers)

        redirect_path = urljoin(url, resp.geturl() or url).split("?", 1)[0]
        if redirect_path != url.split("?", 1)[0]:
            # Something changed (redirect!), so let's update the base URL
            if not redirect_path.endswith(tail):
                raise GitProtocolError(
                    f"Redirected from URL {url} to URL {redirect_path} without {tail}"
                )
            self._base_url = urljoin(url, redirect_path[: -len(tail)])

        content_type = resp.headers.get("Content-Type")
        if not content_type or not content_type.startswith("application/x-git-"):
            resp.close()
            raise GitProtocolError(
                f"{self._base_url} does not speak the smart HTTP protocol"
            )
        self._set_response(resp)
        pkt = self._proto.read_line()
        if isinstance(pkt, bytes) and pkt.startswith(b"# service="):
            if strip_line(pkt) != b"# service=" + self.service:
                raise ProtocolViolation("unexpected first line from smart server", pkt)
            if self._proto.read_until_flush():
                raise ProtocolViolation("expected flush after service announcement")
        else:
            # Servers answering in protocol v2 skip the announcement.
            self._proto.unread_line(pkt)

    def _smart_request(self, data: bytes) -> "HTTPResponse":
        """Send a 'smart' HTTP request to the service endpoint."""
        service = self.service.decode("ascii")
        url = urljoin(self._base_url, service)
        result_content_type = f"application/x-{service}-result"
        headers = {
            "Content-Type": f"application/x-{service}-request",
            "Accept": result_content_type,
            "Content-Length": str(len(data)),
            **self._git_protocol_headers(),
        }
        resp = self._http_request(url, headers, data)
        content_type = resp.headers.get("Content-Type")
        if not content_type or content_type.split(";")[0] != result_content_type:
            resp.close()
            raise ProtocolViolation(f"Invalid content-type from server: {content_type}")
        return resp

    def read_line(self) -> Packet:
        return self._proto.read_line()

    def unread_line(self, pkt: Packet) -> None:
        self._proto.unread_line(pkt)

    def read_until_flush(self) -> list[bytes]:
        return self._proto.read_until_flush()

    def read(self, size: int) -> bytes:
        return self._proto.read(size)

    def write(self, data: bytes) -> None:
        self._proto.write(data)

    def write_line(self, line: Packet) -> None:
        self._proto.write_line(line)

    def write_delim(self) -> None:
        self._proto.write_delim()

    def flush(self) -> None:
        """Send the buffered request and switch reads to its response."""
        if not self._buffer:
            return
        body = b"".join(self._buffer)
        self._buffer.clear()
        self._set_response(None)
        self._set_response(self._smart_request(body))

    def close(self) -> None:
        self._buffer.clear()
        self._set_response(None)

    def __enter__(self) -> "HttpTransport":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
