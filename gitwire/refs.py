# refs.py -- Parsing of remote ref advertisements
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

"""Parsing of the refs a server advertises.

Protocol v0 and v1 servers advertise their refs unprompted, the first line
carrying the capability list after a NUL byte. Protocol v2 servers send
refs in answer to an ``ls-refs`` command. Both parsers take the data lines
of the advertisement, without the terminating flush.
"""

from collections.abc import Iterable, Sequence
from typing import NamedTuple, Optional

from .capabilities import CapabilitySet
from .errors import MalformedRef, RemoteError
from .log_utils import getLogger
from .object_format import DEFAULT_OBJECT_FORMAT, ObjectFormat, get_object_format
from .protocol import ERR_PREFIX, strip_line

logger = getLogger(__name__)

CAPABILITIES_REF = b"capabilities^{}"
PEELED_TAG_SUFFIX = b"^{}"
SHALLOW_PREFIX = b"shallow "
UNBORN = b"unborn"
PEELED_ATTRIBUTE = b"peeled:"
SYMREF_TARGET_ATTRIBUTE = b"symref-target:"


class RemoteRef(NamedTuple):
    """A ref as advertised by a remote.

    ``sha`` is None for an unborn ref (protocol v2 ``unborn`` entries).
    """

    name: bytes
    sha: Optional[bytes]
    peeled: Optional[bytes] = None
    symref_target: Optional[bytes] = None


class RefAdvertisement(NamedTuple):
    """The result of parsing a v0/v1 ref advertisement."""

    refs: list[RemoteRef]
    capabilities: CapabilitySet
    shallow: list[bytes]


def _split_ref_line(line: bytes) -> tuple[bytes, bytes]:
    sha, sep, name = line.partition(b" ")
    if not sep or not sha or not name:
        raise MalformedRef(line)
    return sha, name


def select_object_format(
    capabilities: CapabilitySet, object_format: Optional[ObjectFormat]
) -> ObjectFormat:
    advertised = capabilities.object_format
    if advertised is not None:
        try:
            return get_object_format(advertised.decode("ascii"))
        except (UnicodeDecodeError, ValueError):
            logger.warning("server advertised unknown object format %r", advertised)
    return object_format or DEFAULT_OBJECT_FORMAT


def parse_v1_advertisement(
    lines: Iterable[bytes], object_format: Optional[ObjectFormat] = None
) -> RefAdvertisement:
    """Parse a protocol v0/v1 ref advertisement.

    Args:
      lines: Data packets of the advertisement
      object_format: Object format to assume when the server does not
        advertise one
    Returns: RefAdvertisement with refs in the order received
    Raises:
      RemoteError: if the server sent an ``ERR`` line
      MalformedRef: if a line cannot be split into hash and name
      InvalidHash: if a hash is not of the expected width
    """
    refs: list[RemoteRef] = []
    shallow: list[bytes] = []
    capabilities: Optional[CapabilitySet] = None
    fmt = object_format or DEFAULT_OBJECT_FORMAT
    saw_capabilities_ref = False

    for pkt in lines:
        line = strip_line(pkt)
        if line.startswith(ERR_PREFIX):
            raise RemoteError(line[len(ERR_PREFIX) :])
        if capabilities is None:
            if line == b"version 1":
                continue
            head, sep, caps = line.partition(b"\0")
            capabilities = CapabilitySet.parse(caps)
            fmt = select_object_format(capabilities, object_format)
            line = head
        if line.startswith(SHALLOW_PREFIX):
            shallow.append(fmt.check_hexsha(line[len(SHALLOW_PREFIX) :], pkt))
            continue
        sha, name = _split_ref_line(line)
        sha = fmt.check_hexsha(sha, pkt)
        if name == CAPABILITIES_REF:
            if refs or saw_capabilities_ref or sha != fmt.zero_oid:
                raise MalformedRef(pkt, "unexpected capabilities^{} entry")
            saw_capabilities_ref = True
            continue
        if name.endswith(PEELED_TAG_SUFFIX):
            base = name[: -len(PEELED_TAG_SUFFIX)]
            if not refs or refs[-1].name != base or refs[-1].peeled is not None:
                raise MalformedRef(pkt, "peeled entry without its tag")
            refs[-1] = refs[-1]._replace(peeled=sha)
            continue
        if saw_capabilities_ref:
            raise MalformedRef(pkt, "ref after capabilities^{} entry")
        refs.append(RemoteRef(name, sha))

    if capabilities is None:
        return RefAdvertisement([], CapabilitySet(), [])
    symrefs = capabilities.symrefs()
    if symrefs:
        refs = [
            ref._replace(symref_target=symrefs[ref.name]) if ref.name in symrefs else ref
            for ref in refs
        ]
    return RefAdvertisement(refs, capabilities, shallow)


def parse_v2_ls_refs(
    lines: Iterable[bytes], object_format: Optional[ObjectFormat] = None
) -> list[RemoteRef]:
    """Parse the response to a protocol v2 ``ls-refs`` command.

    Lines look like ``<sha> <name>[ symref-target:<target>][ peeled:<sha>]``;
    ``<sha>`` is the word ``unborn`` for a symref pointing at a branch that
    does not exist yet.
    """
    fmt = object_format or DEFAULT_OBJECT_FORMAT
    refs = []
    for pkt in lines:
        line = strip_line(pkt)
        if line.startswith(ERR_PREFIX):
            raise RemoteError(line[len(ERR_PREFIX) :])
        parts = line.split(b" ")
        if len(parts) < 2 or not parts[0] or not parts[1]:
            raise MalformedRef(pkt)
        sha: Optional[bytes]
        if parts[0] == UNBORN:
            sha = None
        else:
            sha = fmt.check_hexsha(parts[0], pkt)
        peeled = None
        symref_target = None
        for part in parts[2:]:
            if part.startswith(PEELED_ATTRIBUTE):
                peeled = fmt.check_hexsha(part[len(PEELED_ATTRIBUTE) :], pkt)
            elif part.startswith(SYMREF_TARGET_ATTRIBUTE):
                symref_target = part[len(SYMREF_TARGET_ATTRIBUTE) :]
            else:
                logger.warning("unknown part in pkt-ref: %r", part)
        refs.append(RemoteRef(parts[1], sha, peeled, symref_target))
    return refs


def filter_ref_prefix(
    refs: Iterable[RemoteRef], prefixes: Sequence[bytes]
) -> list[RemoteRef]:
    """Keep the refs whose name starts with one of prefixes.

    An empty prefix list keeps everything.
    """
    if not prefixes:
        return list(refs)
    return [ref for ref in refs if any(ref.name.startswith(p) for p in prefixes)]


def refs_to_dict(refs: Iterable[RemoteRef]) -> dict[bytes, Optional[bytes]]:
    """Map ref names to their hashes."""
    return {ref.name: ref.sha for ref in refs}
