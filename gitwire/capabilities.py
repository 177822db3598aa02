# capabilities.py -- Server capability advertisements
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

"""Parsing and checking of git capability advertisements."""

from collections.abc import Iterable, Iterator
from typing import NamedTuple, Optional, Union

from .errors import MalformedCapability, UnsupportedCapability
from .protocol import (
    CAPABILITY_AGENT,
    CAPABILITY_OBJECT_FORMAT,
    CAPABILITY_SYMREF,
    strip_line,
)


class Capability(NamedTuple):
    """A single capability token, such as ``ofs-delta`` or ``agent=git/2.45``."""

    name: bytes
    value: Optional[bytes] = None

    def __bytes__(self) -> bytes:
        if self.value is None:
            return self.name
        return self.name + b"=" + self.value


def parse_capability(token: bytes) -> Capability:
    """Split a capability token on its first ``=``.

    Raises:
      MalformedCapability: if the name part is empty
    """
    name, sep, value = token.partition(b"=")
    if not name:
        raise MalformedCapability(token)
    return Capability(name, value if sep else None)


class CapabilitySet:
    """An ordered set of capabilities, unique by name.

    Tokens are kept in the order they were first seen, so a set parsed from
    an advertisement serializes back to the same text. A name that shows up
    several times with different values (``symref=`` being the usual case)
    keeps every value.
    """

    def __init__(self, capabilities: Iterable[Capability] = ()) -> None:
        self._values: dict[bytes, list[Optional[bytes]]] = {}
        self._tokens: list[Capability] = []
        for capability in capabilities:
            self.add(capability)

    @classmethod
    def parse(cls, raw: Union[bytes, Iterable[bytes]]) -> "CapabilitySet":
        """Parse capability tokens.

        Args:
          raw: Either a whitespace separated byte string, or an iterable of
            tokens
        Returns: A new CapabilitySet
        Raises:
          MalformedCapability: if a token has an empty name
        """
        if isinstance(raw, bytes):
            tokens: Iterable[bytes] = raw.split()
        else:
            tokens = raw
        return cls(parse_capability(token) for token in tokens)

    @classmethod
    def from_v2_lines(cls, lines: Iterable[bytes]) -> "CapabilitySet":
        """Parse a protocol v2 capability advertisement, one per line.

        Unlike v0/v1 tokens, v2 values may contain spaces (``fetch=shallow
        filter``).
        """
        return cls(parse_capability(strip_line(line)) for line in lines)

    def add(self, capability: Capability) -> None:
        values = self._values.setdefault(capability.name, [])
        if capability.value in values:
            return
        values.append(capability.value)
        self._tokens.append(capability)

    def supports(self, name: bytes) -> bool:
        return name in self._values

    __contains__ = supports

    def value_of(self, name: bytes) -> Optional[bytes]:
        """Return the first value advertised for name, or None."""
        values = self._values.get(name)
        if not values:
            return None
        return values[0]

    def values_of(self, name: bytes) -> list[bytes]:
        """Return every non-empty value advertised for name."""
        return [v for v in self._values.get(name, []) if v is not None]

    def supports_feature(self, name: bytes, feature: bytes) -> bool:
        """Check a v2 capability value list, e.g. ``fetch=shallow filter``."""
        return any(feature in value.split() for value in self.values_of(name))

    def assert_supported(self, required: Iterable[bytes]) -> None:
        """Check that every required capability is advertised.

        Raises:
          UnsupportedCapability: for the first missing name, in the order
            given by the caller
        """
        for name in required:
            if name not in self._values:
                raise UnsupportedCapability(name)

    def negotiate(self, requested: Iterable[bytes]) -> "CapabilitySet":
        """Select the client capabilities the server also advertises.

        Args:
          requested: Client capability tokens, e.g. ``b"agent=gitwire/0.1"``
        Returns: A CapabilitySet holding the client's tokens that are
            supported, in the client's order
        """
        selected = CapabilitySet()
        for token in requested:
            capability = parse_capability(token)
            if capability.name in self._values or capability.name == CAPABILITY_AGENT:
                selected.add(capability)
        return selected

    def names(self) -> list[bytes]:
        return list(self._values)

    def symrefs(self) -> dict[bytes, bytes]:
        """Return the ``symref=<name>:<target>`` values as a mapping."""
        symrefs = {}
        for value in self.values_of(CAPABILITY_SYMREF):
            src, sep, dst = value.partition(b":")
            if sep:
                symrefs[src] = dst
        return symrefs

    @property
    def agent(self) -> Optional[bytes]:
        return self.value_of(CAPABILITY_AGENT)

    @property
    def object_format(self) -> Optional[bytes]:
        return self.value_of(CAPABILITY_OBJECT_FORMAT)

    def serialize(self) -> bytes:
        return b" ".join(bytes(c) for c in self._tokens)

    __bytes__ = serialize

    def __iter__(self) -> Iterator[Capability]:
        return iter(self._tokens)

    def __len__(self) -> int:
        return len(self._values)

    def __bool__(self) -> bool:
        return bool(self._values)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CapabilitySet):
            return NotImplemented
        return self._tokens == other._tokens

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.serialize()!r})"
