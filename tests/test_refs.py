# test_refs.py -- tests for ref advertisement parsing
# Copyright (C) 2013 Jelmer Vernooij <jelmer@jelmer.uk>
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

"""Tests for gitwire.refs."""

from gitwire.capabilities import CapabilitySet
from gitwire.errors import InvalidHash, MalformedRef, RemoteError
from gitwire.object_format import SHA1, SHA256
from gitwire.refs import (
    RemoteRef,
    filter_ref_prefix,
    parse_v1_advertisement,
    parse_v2_ls_refs,
    refs_to_dict,
    select_object_format,
)

from . import TestCase

ONE = b"1" * 40
TWO = b"2" * 40
THREE = b"3" * 40
ZERO = b"0" * 40


class ParseV1AdvertisementTests(TestCase):
    def test_simple(self) -> None:
        adv = parse_v1_advertisement(
            [
                ONE + b" HEAD\0multi_ack thin-pack symref=HEAD:refs/heads/main\n",
                ONE + b" refs/heads/main\n",
                TWO + b" refs/tags/v1.0\n",
                THREE + b" refs/tags/v1.0^{}\n",
            ]
        )
        self.assertEqual(
            [
                RemoteRef(b"HEAD", ONE, symref_target=b"refs/heads/main"),
                RemoteRef(b"refs/heads/main", ONE),
                RemoteRef(b"refs/tags/v1.0", TWO, peeled=THREE),
            ],
            adv.refs,
        )
        self.assertIn(b"multi_ack", adv.capabilities)
        self.assertIn(b"thin-pack", adv.capabilities)
        self.assertEqual([], adv.shallow)

    def test_order_preserved(self) -> None:
        adv = parse_v1_advertisement(
            [
                TWO + b" refs/heads/zzz\0ofs-delta",
                ONE + b" refs/heads/aaa",
            ]
        )
        self.assertEqual(
            [b"refs/heads/zzz", b"refs/heads/aaa"], [r.name for r in adv.refs]
        )

    def test_empty_repository(self) -> None:
        adv = parse_v1_advertisement(
            [ZERO + b" capabilities^{}\0report-status delete-refs ofs-delta\n"]
        )
        self.assertEqual([], adv.refs)
        self.assertEqual(
            b"report-status delete-refs ofs-delta", adv.capabilities.serialize()
        )

    def test_nothing(self) -> None:
        adv = parse_v1_advertisement([])
        self.assertEqual([], adv.refs)
        self.assertFalse(adv.capabilities)

    def test_capabilities_ref_nonzero(self) -> None:
        self.assertRaises(
            MalformedRef,
            parse_v1_advertisement,
            [ONE + b" capabilities^{}\0ofs-delta"],
        )

    def test_capabilities_ref_not_first(self) -> None:
        self.assertRaises(
            MalformedRef,
            parse_v1_advertisement,
            [ONE + b" refs/heads/main\0ofs-delta", ZERO + b" capabilities^{}"],
        )

    def test_peeled_without_tag(self) -> None:
        self.assertRaises(
            MalformedRef,
            parse_v1_advertisement,
            [ONE + b" refs/heads/main\0", THREE + b" refs/tags/v1.0^{}"],
        )

    def test_shallow(self) -> None:
        adv = parse_v1_advertisement(
            [ONE + b" refs/heads/main\0shallow", b"shallow " + TWO + b"\n"]
        )
        self.assertEqual([TWO], adv.shallow)
        self.assertEqual([RemoteRef(b"refs/heads/main", ONE)], adv.refs)

    def test_version_1_line_skipped(self) -> None:
        adv = parse_v1_advertisement([b"version 1\n", ONE + b" HEAD\0ofs-delta\n"])
        self.assertEqual([RemoteRef(b"HEAD", ONE)], adv.refs)

    def test_err_line(self) -> None:
        with self.assertRaises(RemoteError) as cm:
            parse_v1_advertisement([b"ERR access denied\n"])
        self.assertEqual(b"access denied", cm.exception.message)

    def test_missing_name(self) -> None:
        self.assertRaises(MalformedRef, parse_v1_advertisement, [ONE + b"\0caps"])

    def test_bad_hash(self) -> None:
        with self.assertRaises(InvalidHash) as cm:
            parse_v1_advertisement([b"1234 refs/heads/main\0caps"])
        self.assertEqual(b"1234", cm.exception.value)

    def test_uppercase_hash_normalized(self) -> None:
        adv = parse_v1_advertisement([b"A" * 40 + b" HEAD\0"])
        self.assertEqual(b"a" * 40, adv.refs[0].sha)

    def test_sha256_advertised(self) -> None:
        adv = parse_v1_advertisement(
            [b"4" * 64 + b" refs/heads/main\0object-format=sha256 ofs-delta"]
        )
        self.assertEqual(b"4" * 64, adv.refs[0].sha)

    def test_sha1_hash_rejected_for_sha256(self) -> None:
        self.assertRaises(
            InvalidHash,
            parse_v1_advertisement,
            [ONE + b" refs/heads/main\0ofs-delta"],
            SHA256,
        )


class ParseV2LsRefsTests(TestCase):
    def test_refs(self) -> None:
        refs = parse_v2_ls_refs(
            [
                ONE + b" HEAD symref-target:refs/heads/main\n",
                ONE + b" refs/heads/main\n",
                TWO + b" refs/tags/v1.0 peeled:" + THREE + b"\n",
            ]
        )
        self.assertEqual(
            [
                RemoteRef(b"HEAD", ONE, None, b"refs/heads/main"),
                RemoteRef(b"refs/heads/main", ONE),
                RemoteRef(b"refs/tags/v1.0", TWO, THREE),
            ],
            refs,
        )

    def test_unborn(self) -> None:
        refs = parse_v2_ls_refs([b"unborn HEAD symref-target:refs/heads/main"])
        self.assertEqual([RemoteRef(b"HEAD", None, None, b"refs/heads/main")], refs)

    def test_unknown_attribute_ignored(self) -> None:
        with self.assertLogs("gitwire.refs", "WARNING"):
            refs = parse_v2_ls_refs([ONE + b" refs/heads/main frob:1"])
        self.assertEqual([RemoteRef(b"refs/heads/main", ONE)], refs)

    def test_malformed(self) -> None:
        self.assertRaises(MalformedRef, parse_v2_ls_refs, [ONE])
        self.assertRaises(InvalidHash, parse_v2_ls_refs, [b"xyz refs/heads/main"])

    def test_bad_peeled(self) -> None:
        self.assertRaises(
            InvalidHash, parse_v2_ls_refs, [ONE + b" refs/tags/a peeled:zz"]
        )

    def test_err(self) -> None:
        self.assertRaises(RemoteError, parse_v2_ls_refs, [b"ERR nope"])


class SelectObjectFormatTests(TestCase):
    def test_default(self) -> None:
        self.assertIs(SHA1, select_object_format(CapabilitySet(), None))

    def test_fallback(self) -> None:
        self.assertIs(SHA256, select_object_format(CapabilitySet(), SHA256))

    def test_advertised(self) -> None:
        caps = CapabilitySet.parse(b"object-format=sha256")
        self.assertIs(SHA256, select_object_format(caps, SHA1))

    def test_unknown(self) -> None:
        caps = CapabilitySet.parse(b"object-format=md5")
        with self.assertLogs("gitwire.refs", "WARNING"):
            self.assertIs(SHA1, select_object_format(caps, None))


class FilterRefPrefixTests(TestCase):
    def setUp(self) -> None:
        super().setUp()
        self.refs = [
            RemoteRef(b"HEAD", ONE),
            RemoteRef(b"refs/heads/main", ONE),
            RemoteRef(b"refs/tags/v1", TWO),
        ]

    def test_no_prefix(self) -> None:
        self.assertEqual(self.refs, filter_ref_prefix(self.refs, []))

    def test_prefix(self) -> None:
        self.assertEqual(
            [RemoteRef(b"refs/tags/v1", TWO)],
            filter_ref_prefix(self.refs, [b"refs/tags/"]),
        )
        self.assertEqual(
            self.refs[1:],
            filter_ref_prefix(self.refs, [b"refs/heads/", b"refs/tags/"]),
        )

    def test_refs_to_dict(self) -> None:
        self.assertEqual(
            {b"HEAD": ONE, b"refs/heads/main": ONE, b"refs/tags/v1": TWO},
            refs_to_dict(self.refs),
        )
