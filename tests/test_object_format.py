# test_object_format.py -- tests for object_format.py
# Copyright (C) 2024 The Dulwich contributors
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

"""Tests for object_format module."""

from gitwire.errors import InvalidHash
from gitwire.object_format import (
    DEFAULT_OBJECT_FORMAT,
    OBJECT_FORMATS,
    SHA1,
    SHA256,
    get_object_format,
    valid_hexsha,
)

from . import TestCase


class ObjectFormatTests(TestCase):
    """Tests for ObjectFormat class."""

    def test_sha1_attributes(self) -> None:
        self.assertEqual("sha1", SHA1.name)
        self.assertEqual(20, SHA1.oid_length)
        self.assertEqual(40, SHA1.hex_length)
        self.assertEqual(b"0" * 40, SHA1.zero_oid)

    def test_sha256_attributes(self) -> None:
        self.assertEqual("sha256", SHA256.name)
        self.assertEqual(32, SHA256.oid_length)
        self.assertEqual(64, SHA256.hex_length)
        self.assertEqual(b"0" * 64, SHA256.zero_oid)

    def test_str_representation(self) -> None:
        self.assertEqual("sha1", str(SHA1))
        self.assertEqual("sha256", str(SHA256))

    def test_repr_representation(self) -> None:
        self.assertEqual("ObjectFormat('sha1')", repr(SHA1))
        self.assertEqual("ObjectFormat('sha256')", repr(SHA256))

    def test_capability(self) -> None:
        self.assertEqual(b"object-format=sha1", SHA1.capability)
        self.assertEqual(b"object-format=sha256", SHA256.capability)

    def test_is_valid_hex(self) -> None:
        self.assertTrue(SHA1.is_valid_hex(b"a" * 40))
        self.assertTrue(SHA1.is_valid_hex(b"A" * 40))
        self.assertFalse(SHA1.is_valid_hex(b"a" * 64))
        self.assertFalse(SHA1.is_valid_hex(b"g" * 40))
        self.assertTrue(SHA256.is_valid_hex(b"a" * 64))
        self.assertFalse(SHA256.is_valid_hex(b"a" * 40))

    def test_check_hexsha(self) -> None:
        self.assertEqual(b"ab" * 20, SHA1.check_hexsha(b"AB" * 20))
        with self.assertRaises(InvalidHash) as cm:
            SHA1.check_hexsha(b"1234", b"1234 HEAD")
        self.assertEqual(b"1234", cm.exception.value)
        self.assertEqual(b"1234 HEAD", cm.exception.line)

    def test_valid_hexsha(self) -> None:
        self.assertTrue(valid_hexsha(b"1" * 40))
        self.assertFalse(valid_hexsha(b"1" * 64))
        self.assertTrue(valid_hexsha(b"1" * 64, SHA256))
        self.assertFalse(valid_hexsha(b"x" * 40))


class ObjectFormatMappingTests(TestCase):
    """Tests for object format mappings."""

    def test_object_formats_dict(self) -> None:
        self.assertEqual(SHA1, OBJECT_FORMATS["sha1"])
        self.assertEqual(SHA256, OBJECT_FORMATS["sha256"])

    def test_default_object_format(self) -> None:
        self.assertEqual(SHA1, DEFAULT_OBJECT_FORMAT)


class GetObjectFormatTests(TestCase):
    """Tests for get_object_format function."""

    def test_get_sha1(self) -> None:
        self.assertEqual(SHA1, get_object_format("sha1"))

    def test_get_sha256(self) -> None:
        self.assertEqual(SHA256, get_object_format("sha256"))

    def test_get_default(self) -> None:
        self.assertEqual(DEFAULT_OBJECT_FORMAT, get_object_format(None))

    def test_case_insensitive(self) -> None:
        self.assertEqual(SHA1, get_object_format("SHA1"))
        self.assertEqual(SHA256, get_object_format("SHA256"))

    def test_invalid_format(self) -> None:
        with self.assertRaises(ValueError) as cm:
            get_object_format("md5")
        self.assertIn("Unsupported object format: md5", str(cm.exception))
