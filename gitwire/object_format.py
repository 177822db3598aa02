# object_format.py -- Object format abstraction layer
# Copyright (C) 2024 Jelmer Vernooij <jelmer@jelmer.uk>
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


"""Object formats (hash algorithms) as they appear on the wire.

Object ids travel over the smart protocol in their hexadecimal form. The
width of that form depends on the repository's hash algorithm, which the
server announces with the ``object-format`` capability.
"""

from typing import Optional

from .errors import InvalidHash

_HEX_DIGITS = frozenset(b"0123456789abcdefABCDEF")


class ObjectFormat:
    """A hash algorithm, described by its name and hex id width."""

    def __init__(self, name: str, hex_length: int) -> None:
        self.name = name
        self.hex_length = hex_length
        self.zero_oid = b"0" * hex_length

    @property
    def oid_length(self) -> int:
        """Length of the binary object id in bytes."""
        return self.hex_length // 2

    @property
    def capability(self) -> bytes:
        """The ``object-format=<name>`` capability token for this format."""
        return b"object-format=" + self.name.encode("ascii")

    def __str__(self) -> str:
        return self.name

    def __repr__(self) -> str:
        return f"ObjectFormat({self.name!r})"

    def is_valid_hex(self, value: bytes) -> bool:
        """Check whether value is a hex object id of this format's width."""
        return len(value) == self.hex_length and all(c in _HEX_DIGITS for c in value)

    def check_hexsha(self, value: bytes, line: Optional[bytes] = None) -> bytes:
        """Validate a hex object id.

        Args:
            value: The candidate object id
            line: The line it was read from, for error reporting

        Returns:
            The object id, lower-cased

        Raises:
            InvalidHash: if value is not hex of the expected width
        """
        if not self.is_valid_hex(value):
            raise InvalidHash(value, line)
        return value.lower()


SHA1 = ObjectFormat("sha1", hex_length=40)
SHA256 = ObjectFormat("sha256", hex_length=64)

OBJECT_FORMATS = {
    "sha1": SHA1,
    "sha256": SHA256,
}

DEFAULT_OBJECT_FORMAT = SHA1


def valid_hexsha(value: bytes, object_format: Optional[ObjectFormat] = None) -> bool:
    """Check if value is a hex object id, SHA-1 unless told otherwise."""
    return (object_format or DEFAULT_OBJECT_FORMAT).is_valid_hex(value)


def get_object_format(name: Optional[str] = None) -> ObjectFormat:
    """Get an object format by name.

    Args:
        name: Format name ("sha1" or "sha256"). If None, returns default.

    Raises:
        ValueError: If the format name is not supported
    """
    if name is None:
        return DEFAULT_OBJECT_FORMAT
    try:
        return OBJECT_FORMATS[name.lower()]
    except KeyError:
        raise ValueError(f"Unsupported object format: {name}")
