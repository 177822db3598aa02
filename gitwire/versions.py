# versions.py -- Protocol version detection and request framing
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

"""Protocol versions and the wire framing of each request.

The framing functions are pure: they turn an operation and its arguments
into the list of packets to send (bytes, None for a flush, DELIM_PKT for a
v2 delimiter). The negotiation engine and the session decide what to send;
only this module knows how each protocol version spells it.
"""

from collections.abc import Iterable, Sequence
from enum import IntEnum
from typing import Optional

from .errors import GitProtocolError, ProtocolViolation
from .protocol import (
    COMMAND_DONE,
    COMMAND_HAVE,
    COMMAND_WANT,
    COMMAND_WANT_REF,
    DELIM_PKT,
    Packet,
    strip_line,
)
from .steps import Step, read_line, unread_line


class ProtocolVersion(IntEnum):
    """Git wire protocol version."""

    V0 = 0
    V1 = 1
    V2 = 2


DEFAULT_PROTOCOL_VERSION_FETCH = ProtocolVersion.V2
DEFAULT_PROTOCOL_VERSION_SEND = ProtocolVersion.V0

_VERSION_PREFIX = b"version "


def detect_protocol_version(pkt: Packet) -> ProtocolVersion:
    """Determine the protocol version from the first packet a server sends.

    A ``version N`` line announces v1 or v2; anything else is the start of a
    v0 ref advertisement.

    Raises:
      ProtocolViolation: if the server announces a version gitwire does
        not speak
    """
    if not isinstance(pkt, bytes):
        return ProtocolVersion.V0
    line = strip_line(pkt)
    if not line.startswith(_VERSION_PREFIX):
        return ProtocolVersion.V0
    try:
        return ProtocolVersion(int(line[len(_VERSION_PREFIX) :]))
    except ValueError:
        raise ProtocolViolation("Unsupported protocol version", pkt)


def read_protocol_version(
    requested: Optional[ProtocolVersion] = None,
) -> Step[ProtocolVersion]:
    """Read the server's first packet and decide the session's version.

    The version line itself is consumed; for v0 the packet belongs to the
    ref advertisement and is pushed back.
    """
    pkt = yield read_line()
    version = detect_protocol_version(pkt)
    if version == ProtocolVersion.V0:
        yield unread_line(pkt)
    if requested is not None and version > requested:
        raise ProtocolViolation(
            f"Server answered with protocol v{int(version)}, "
            f"but only v{int(requested)} was requested"
        )
    return version


def git_protocol_parameter(version: ProtocolVersion) -> Optional[bytes]:
    """Value for the GIT_PROTOCOL environment/extra parameter, if any."""
    if version == ProtocolVersion.V0:
        return None
    return b"version=%d" % version


def _line(*parts: bytes) -> bytes:
    return b" ".join(parts) + b"\n"


def frame_command(
    command: bytes, capabilities: Iterable[bytes], arguments: Iterable[bytes]
) -> list[Packet]:
    """Frame a protocol v2 command request."""
    packets: list[Packet] = [b"command=" + command + b"\n"]
    packets.extend(c + b"\n" for c in capabilities)
    packets.append(DELIM_PKT)
    packets.extend(a + b"\n" for a in arguments)
    packets.append(None)
    return packets


def frame_ls_refs(
    version: ProtocolVersion,
    capabilities: Iterable[bytes] = (),
    *,
    symrefs: bool = True,
    peel: bool = True,
    unborn: bool = False,
    ref_prefixes: Sequence[bytes] = (),
) -> list[Packet]:
    """Frame an ``ls-refs`` request.

    Raises:
      GitProtocolError: for v0/v1, where refs are advertised unprompted
    """
    if version != ProtocolVersion.V2:
        raise GitProtocolError("ls-refs is only available in protocol v2")
    arguments = []
    if symrefs:
        arguments.append(b"symrefs")
    if peel:
        arguments.append(b"peel")
    if unborn:
        arguments.append(b"unborn")
    arguments.extend(b"ref-prefix " + prefix for prefix in ref_prefixes)
    return frame_command(b"ls-refs", capabilities, arguments)


def frame_fetch(
    version: ProtocolVersion,
    capabilities: Sequence[bytes],
    *,
    wants: Sequence[bytes] = (),
    want_refs: Sequence[bytes] = (),
    arguments: Sequence[bytes] = (),
    haves: Sequence[bytes] = (),
    done: bool = False,
    include_wants: bool = True,
) -> list[Packet]:
    """Frame (part of) a fetch request.

    For v0/v1 the want block carries the capabilities on its first line and
    ends with a flush; a have batch ends with a flush unless ``done``
    follows. ``include_wants=False`` frames a later have round on a
    stateful connection.

    For v2 every request is a complete ``command=fetch``: capabilities,
    delimiter, then ``arguments`` (features such as ``ofs-delta`` followed
    by shallow and deepen lines), wants, haves and optionally ``done``.

    Args:
      version: Protocol version of the session
      capabilities: v0/v1 capabilities for the first want line, or v2
        capability lines (agent, object-format)
      wants: Object ids to fetch
      want_refs: Ref names to fetch (v2 only)
      arguments: Shallow/deepen/filter lines and v2 features, without
        line terminators
      haves: Object ids the client has, for this round
      done: Whether to end negotiation with this request
      include_wants: Whether to include the want block (v0/v1)
    """
    if version == ProtocolVersion.V2:
        body = list(arguments)
        body.extend(COMMAND_WANT + b" " + w for w in wants)
        body.extend(COMMAND_WANT_REF + b" " + r for r in want_refs)
        body.extend(COMMAND_HAVE + b" " + h for h in haves)
        if done:
            body.append(COMMAND_DONE)
        return frame_command(b"fetch", capabilities, body)

    if want_refs:
        raise GitProtocolError("want-ref requires protocol v2")
    packets: list[Packet] = []
    if include_wants:
        if not wants:
            raise GitProtocolError("a fetch request needs at least one want")
        caps = b" ".join(capabilities)
        if caps:
            packets.append(_line(COMMAND_WANT, wants[0], caps))
        else:
            packets.append(_line(COMMAND_WANT, wants[0]))
        packets.extend(_line(COMMAND_WANT, w) for w in wants[1:])
        packets.extend(a + b"\n" for a in arguments)
        packets.append(None)
    packets.extend(_line(COMMAND_HAVE, h) for h in haves)
    if done:
        packets.append(COMMAND_DONE + b"\n")
    elif haves:
        packets.append(None)
    return packets


def frame_push(
    version: ProtocolVersion,
    capabilities: Sequence[bytes],
    commands: Sequence[tuple[bytes, bytes, bytes]],
    push_options: Sequence[bytes] = (),
) -> list[Packet]:
    """Frame the command block of a push.

    Args:
      version: Protocol version of the session
      capabilities: Capabilities to send on the first command line
      commands: (old_sha, new_sha, ref_name) tuples
      push_options: Lines to send when push-options was negotiated
    Raises:
      GitProtocolError: for v2, which has no push command
    """
    if version == ProtocolVersion.V2:
        raise GitProtocolError("push is not available in protocol v2")
    packets: list[Packet] = []
    for i, (old_sha, new_sha, name) in enumerate(commands):
        line = old_sha + b" " + new_sha + b" " + name
        if i == 0:
            line += b"\0" + b" ".join(capabilities)
        packets.append(line)
    packets.append(None)
    if commands and push_options:
        packets.extend(push_options)
        packets.append(None)
    return packets
