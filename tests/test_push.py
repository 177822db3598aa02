# test_push.py -- Tests for pushing
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

"""Tests for gitwire.push."""

from io import BytesIO

from gitwire.capabilities import CapabilitySet
from gitwire.errors import (
    GitProtocolError,
    InvalidHash,
    ProtocolViolation,
    RemoteError,
    SendPackError,
    UnsupportedCapability,
)
from gitwire.protocol import PktLineParser, Protocol, pkt_line
from gitwire.push import Pusher, RefUpdate, ReportStatusParser
from gitwire.refs import RemoteRef
from gitwire.steps import run_blocking
from gitwire.versions import ProtocolVersion

from . import TestCase

ZERO = b"0" * 40
H1 = b"1" * 40
H2 = b"2" * 40
H3 = b"3" * 40


class ReportStatusParserTests(TestCase):
    def test_invalid_pack(self) -> None:
        parser = ReportStatusParser()
        parser.handle_packet(b"unpack error - foo bar")
        parser.handle_packet(b"ok refs/foo/bar")
        parser.handle_packet(None)
        self.assertRaises(SendPackError, list, parser.check())

    def test_update_refs_error(self) -> None:
        parser = ReportStatusParser()
        parser.handle_packet(b"unpack ok")
        parser.handle_packet(b"ng refs/foo/bar need to pull")
        parser.handle_packet(None)
        self.assertEqual([(b"refs/foo/bar", "need to pull")], list(parser.check()))

    def test_ok(self) -> None:
        parser = ReportStatusParser()
        parser.handle_packet(b"unpack ok")
        parser.handle_packet(b"ok refs/foo/bar")
        parser.handle_packet(None)
        self.assertEqual([(b"refs/foo/bar", None)], list(parser.check()))
        self.assertTrue(parser.done)

    def test_data_after_flush(self) -> None:
        parser = ReportStatusParser()
        parser.handle_packet(b"unpack ok")
        parser.handle_packet(None)
        self.assertRaises(GitProtocolError, parser.handle_packet, b"ok refs/x")

    def test_malformed_ref_status(self) -> None:
        parser = ReportStatusParser()
        parser.handle_packet(b"unpack ok")
        parser.handle_packet(b"garbage")
        parser.handle_packet(None)
        with self.assertRaises(ProtocolViolation) as cm:
            list(parser.check())
        self.assertEqual(b"garbage", cm.exception.line)

    def test_invalid_status(self) -> None:
        parser = ReportStatusParser()
        parser.handle_packet(b"unpack ok")
        parser.handle_packet(b"maybe refs/foo")
        parser.handle_packet(None)
        self.assertRaises(GitProtocolError, list, parser.check())


class PusherTests(TestCase):
    def setUp(self) -> None:
        super().setUp()
        self.refs = [
            RemoteRef(b"refs/heads/main", H1),
            RemoteRef(b"refs/heads/old", H2),
        ]
        self.generated: list[tuple[set[bytes], set[bytes]]] = []

    def generate_pack_data(self, have, want):
        self.generated.append((have, want))
        return [b"PACK", b"data"]

    def push(self, caps: bytes, update_refs, replies: bytes, **kwargs):
        self.out = BytesIO()
        proto = Protocol(BytesIO(replies).read, self.out.write)
        pusher = Pusher(
            ProtocolVersion.V0,
            CapabilitySet.parse(caps),
            self.refs,
            update_refs,
            self.generate_pack_data,
            agent=b"gitwire/test",
            **kwargs,
        )
        return run_blocking(pusher.run(), proto)

    def _commands(self) -> tuple[list, bytes]:
        packets: list = []
        parser = PktLineParser(packets.append)
        data = self.out.getvalue()
        # The raw pack follows the pkt-lines unframed; split it off first.
        pack_start = data.find(b"PACK")
        if pack_start == -1:
            pack_start = len(data)
        parser.parse(data[:pack_start])
        tail = parser.get_tail() + data[pack_start:]
        return packets, tail

    def test_update_without_side_band(self) -> None:
        def update_refs(refs):
            refs[b"refs/heads/main"] = H3
            return refs

        outcome = self.push(
            b"report-status delete-refs ofs-delta",
            update_refs,
            pkt_line(b"unpack ok\n") + pkt_line(b"ok refs/heads/main\n") + pkt_line(None),
        )
        self.assertEqual([RefUpdate(b"refs/heads/main", H1, H3)], outcome.updates)
        self.assertEqual({b"refs/heads/main": None}, outcome.ref_status)
        self.assertTrue(outcome.pack_sent)
        self.assertEqual([({H1, H2}, {H3})], self.generated)
        self.assertEqual(
            pkt_line(
                H1
                + b" "
                + H3
                + b" refs/heads/main\0report-status delete-refs ofs-delta agent=gitwire/test"
            )
            + pkt_line(None)
            + b"PACKdata",
            self.out.getvalue(),
        )

    def test_delete_only(self) -> None:
        def update_refs(refs):
            refs[b"refs/heads/old"] = ZERO
            return refs

        outcome = self.push(
            b"report-status delete-refs",
            update_refs,
            pkt_line(b"unpack ok\n") + pkt_line(b"ok refs/heads/old\n") + pkt_line(None),
        )
        self.assertFalse(outcome.pack_sent)
        self.assertEqual([], self.generated)
        self.assertEqual({b"refs/heads/old": None}, outcome.ref_status)

    def test_delete_refused(self) -> None:
        def update_refs(refs):
            refs[b"refs/heads/old"] = ZERO
            return refs

        outcome = self.push(b"report-status", update_refs, b"")
        self.assertEqual([], outcome.updates)
        self.assertEqual(
            {b"refs/heads/old": "remote does not support deleting refs"},
            outcome.ref_status,
        )
        self.assertEqual(b"0000", self.out.getvalue())

    def test_nothing_to_update(self) -> None:
        outcome = self.push(b"report-status", lambda refs: refs, b"")
        self.assertEqual([], outcome.updates)
        self.assertEqual(b"0000", self.out.getvalue())

    def test_new_ref_side_band(self) -> None:
        def update_refs(refs):
            refs[b"refs/heads/new"] = H3
            return refs

        status = pkt_line(b"unpack ok\n") + pkt_line(b"ng refs/heads/new hook declined\n")
        outcome = self.push(
            b"report-status side-band-64k delete-refs",
            update_refs,
            pkt_line(b"\x02Resolving deltas\n")
            + pkt_line(b"\x01" + status)
            + pkt_line(b"\x01" + pkt_line(None))
            + pkt_line(None),
        )
        self.assertEqual({b"refs/heads/new": "hook declined"}, outcome.ref_status)
        self.assertEqual([RefUpdate(b"refs/heads/new", ZERO, H3)], outcome.updates)

    def test_side_band_fatal(self) -> None:
        def update_refs(refs):
            refs[b"refs/heads/main"] = H3
            return refs

        self.assertRaises(
            RemoteError,
            self.push,
            b"report-status side-band-64k",
            update_refs,
            pkt_line(b"\x03error: disk full\n"),
        )

    def test_unpack_error(self) -> None:
        def update_refs(refs):
            refs[b"refs/heads/main"] = H3
            return refs

        self.assertRaises(
            SendPackError,
            self.push,
            b"report-status",
            update_refs,
            pkt_line(b"unpack index-pack abnormal exit\n") + pkt_line(None),
        )

    def test_no_report_status(self) -> None:
        def update_refs(refs):
            refs[b"refs/heads/main"] = H3
            return refs

        outcome = self.push(b"ofs-delta", update_refs, b"")
        self.assertEqual({b"refs/heads/main": None}, outcome.ref_status)

    def test_push_options(self) -> None:
        def update_refs(refs):
            refs[b"refs/heads/main"] = H3
            return refs

        self.push(
            b"report-status push-options",
            update_refs,
            pkt_line(b"unpack ok\n") + pkt_line(b"ok refs/heads/main\n") + pkt_line(None),
            push_options=[b"ci.skip"],
        )
        packets, tail = self._commands()
        self.assertEqual(
            [
                H1
                + b" "
                + H3
                + b" refs/heads/main\0report-status push-options agent=gitwire/test",
                None,
                b"ci.skip",
                None,
            ],
            packets,
        )
        self.assertEqual(b"PACKdata", tail)

    def test_atomic_unsupported(self) -> None:
        self.assertRaises(
            UnsupportedCapability,
            self.push,
            b"report-status",
            lambda refs: refs,
            b"",
            atomic=True,
        )

    def test_invalid_new_sha(self) -> None:
        def update_refs(refs):
            refs[b"refs/heads/main"] = b"abc"
            return refs

        self.assertRaises(InvalidHash, self.push, b"report-status", update_refs, b"")

    def test_refname_not_bytes(self) -> None:
        def update_refs(refs):
            refs["refs/heads/main"] = H3
            return refs

        self.assertRaises(TypeError, self.push, b"report-status", update_refs, b"")
