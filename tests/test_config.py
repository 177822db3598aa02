# test_config.py -- Tests for reading configuration files
# Copyright (C) 2011 Jelmer Vernooij <jelmer@jelmer.uk>
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

"""Tests for reading configuration files."""

import os
import tempfile
from io import BytesIO

from gitwire.config import (
    ConfigDict,
    ConfigFile,
    StackedConfig,
    TransferSettings,
    _check_section_name,
    _check_variable_name,
    _parse_string,
)
from gitwire.versions import ProtocolVersion

from . import TestCase


class ConfigFileTests(TestCase):
    def from_file(self, text):
        return ConfigFile.from_file(BytesIO(text))

    def test_empty(self) -> None:
        ConfigFile()

    def test_eq(self) -> None:
        self.assertEqual(ConfigFile(), ConfigFile())

    def test_from_file_empty(self) -> None:
        cf = self.from_file(b"")
        self.assertEqual(ConfigFile(), cf)

    def test_default_config(self) -> None:
        cf = self.from_file(
            b"""[core]
\trepositoryformatversion = 0
\tfilemode = true
\tbare = false
"""
        )
        self.assertEqual(b"0", cf.get((b"core",), b"repositoryformatversion"))
        self.assertTrue(cf.get_boolean((b"core",), b"filemode"))
        self.assertFalse(cf.get_boolean((b"core",), b"bare"))
        self.assertEqual([(b"core",)], list(cf.sections()))

    def test_comment_before_section(self) -> None:
        cf = self.from_file(b"# foo\n[section]\n")
        self.assertTrue(cf.has_section((b"section",)))

    def test_comment_after_variable(self) -> None:
        cf = self.from_file(b"[section]\nbar= foo # a comment\n")
        self.assertEqual(b"foo", cf.get((b"section",), b"bar"))

    def test_comment_character_within_value_string(self) -> None:
        cf = self.from_file(b'[section]\nbar= "foo#bar"\n')
        self.assertEqual(b"foo#bar", cf.get((b"section",), b"bar"))

    def test_comment_character_within_section_string(self) -> None:
        cf = self.from_file(b'[branch "foo#bar"] # a comment\nbar= foo\n')
        self.assertEqual(b"foo", cf.get((b"branch", b"foo#bar"), b"bar"))

    def test_from_file_section(self) -> None:
        cf = self.from_file(b"[core]\nfoo = bar\n")
        self.assertEqual(b"bar", cf.get((b"core",), b"foo"))
        self.assertEqual(b"bar", cf.get((b"core", b"foo"), b"foo"))

    def test_from_file_multiple(self) -> None:
        cf = self.from_file(b"[core]\nfoo = bar\nfoo = blah\n")
        self.assertEqual([b"bar", b"blah"], list(cf.get_multivar((b"core",), b"foo")))
        self.assertEqual([], list(cf.get_multivar((b"core",), b"blah")))
        self.assertEqual(b"blah", cf.get((b"core",), b"foo"))

    def test_from_file_utf8_bom(self) -> None:
        text = "[core]\nfoo = b\u00e4r\n".encode("utf-8-sig")
        cf = self.from_file(text)
        self.assertEqual(b"b\xc3\xa4r", cf.get((b"core",), b"foo"))

    def test_from_file_section_case_insensitive(self) -> None:
        cf = self.from_file(b"[cOre]\nfOo = bar\n")
        self.assertEqual(b"bar", cf.get((b"core",), b"foo"))
        self.assertEqual(b"bar", cf.get((b"CORE",), b"FOO"))

    def test_from_file_subsection_case_sensitive(self) -> None:
        cf = self.from_file(b'[remote "Origin"]\nurl = x\n')
        self.assertEqual(b"x", cf.get((b"remote", b"Origin"), b"url"))
        self.assertRaises(KeyError, cf.get, (b"remote", b"origin"), b"url")

    def test_from_file_dotted_section(self) -> None:
        cf = self.from_file(b"[remote.origin]\nurl = x\n")
        self.assertEqual(b"x", cf.get((b"remote", b"origin"), b"url"))

    def test_from_file_with_mixed_quoted(self) -> None:
        cf = self.from_file(b'[core]\nfoo = "bar"la\n')
        self.assertEqual(b"barla", cf.get((b"core",), b"foo"))

    def test_from_file_with_open_quoted(self) -> None:
        self.assertRaises(ValueError, self.from_file, b'[core]\nfoo = "bar\n')

    def test_from_file_with_quotes(self) -> None:
        cf = self.from_file(b'[core]\nfoo = " bar"\n')
        self.assertEqual(b" bar", cf.get((b"core",), b"foo"))

    def test_from_file_with_interrupted_line(self) -> None:
        cf = self.from_file(b"[core]\nfoo = bar\\\nla\n")
        self.assertEqual(b"barla", cf.get((b"core",), b"foo"))

    def test_from_file_with_boolean_setting(self) -> None:
        cf = self.from_file(b"[core]\nfoo\n")
        self.assertEqual(b"true", cf.get((b"core",), b"foo"))

    def test_from_file_value_without_section(self) -> None:
        self.assertRaises(ValueError, self.from_file, b"foo = bar\n")

    def test_from_file_invalid_variable_name(self) -> None:
        self.assertRaises(ValueError, self.from_file, b"[core]\nfo_o = bar\n")

    def test_from_file_invalid_section_header(self) -> None:
        self.assertRaises(ValueError, self.from_file, b"[core\nfoo = bar\n")

    def test_from_path(self) -> None:
        fd, path = tempfile.mkstemp()
        self.addCleanup(os.remove, path)
        with os.fdopen(fd, "wb") as f:
            f.write(b"[protocol]\nversion = 1\n")
        cf = ConfigFile.from_path(path)
        self.assertEqual(path, cf.path)
        self.assertEqual(1, cf.get_int((b"protocol",), b"version"))


class ConfigDictTests(TestCase):
    def test_get_set(self) -> None:
        cd = ConfigDict()
        self.assertRaises(KeyError, cd.get, b"foo", b"core")
        cd.set((b"core",), b"foo", b"bla")
        self.assertEqual(b"bla", cd.get((b"core",), b"foo"))
        cd.set((b"core",), b"foo", b"bloe")
        self.assertEqual(b"bloe", cd.get((b"core",), b"foo"))
        self.assertEqual([b"bloe"], list(cd.get_multivar((b"core",), b"foo")))

    def test_str_section_and_name(self) -> None:
        cd = ConfigDict()
        cd.set("core", "foo", "bla")
        self.assertEqual(b"bla", cd.get(b"core", b"foo"))

    def test_get_boolean(self) -> None:
        cd = ConfigDict()
        cd.set((b"core",), b"foo", b"true")
        self.assertTrue(cd.get_boolean((b"core",), b"foo"))
        cd.set((b"core",), b"foo", b"off")
        self.assertFalse(cd.get_boolean((b"core",), b"foo"))
        cd.set((b"core",), b"foo", b"invalid")
        self.assertRaises(ValueError, cd.get_boolean, (b"core",), b"foo")
        self.assertIs(None, cd.get_boolean((b"core",), b"missing"))

    def test_get_int(self) -> None:
        cd = ConfigDict()
        cd.set((b"core",), b"size", b"2k")
        self.assertEqual(2048, cd.get_int((b"core",), b"size"))
        cd.set((b"core",), b"size", b"3")
        self.assertEqual(3, cd.get_int((b"core",), b"size"))
        cd.set((b"core",), b"size", b"lots")
        self.assertRaises(ValueError, cd.get_int, (b"core",), b"size")
        self.assertEqual(7, cd.get_int((b"core",), b"missing", 7))

    def test_add_bool(self) -> None:
        cd = ConfigDict()
        cd.add((b"core",), b"foo", True)
        self.assertEqual(b"true", cd.get((b"core",), b"foo"))

    def test_items(self) -> None:
        cd = ConfigDict()
        cd.set((b"core",), b"foo", b"bla")
        cd.set((b"core",), b"bar", b"blie")
        self.assertEqual(
            [(b"foo", b"bla"), (b"bar", b"blie")], list(cd.items((b"core",)))
        )


class StackedConfigTests(TestCase):
    def _write(self, contents: bytes) -> str:
        fd, path = tempfile.mkstemp()
        self.addCleanup(os.remove, path)
        with os.fdopen(fd, "wb") as f:
            f.write(contents)
        return path

    def test_default_backends(self) -> None:
        self.overrideEnv("GIT_CONFIG_GLOBAL", None)
        self.overrideEnv("GIT_CONFIG_SYSTEM", None)
        self.overrideEnv("XDG_CONFIG_HOME", "/nonexistent/xdg")
        self.assertEqual([], StackedConfig.default_backends())

    def test_global_config_env(self) -> None:
        path = self._write(b"[protocol]\nversion = 2\n")
        self.overrideEnv("GIT_CONFIG_GLOBAL", path)
        config = StackedConfig.default()
        self.assertEqual(b"2", config.get(b"protocol", b"version"))

    def test_precedence(self) -> None:
        first = ConfigFile.from_file(BytesIO(b"[core]\nfoo = first\n"))
        second = ConfigFile.from_file(
            BytesIO(b"[core]\nfoo = second\n[http]\nsslVerify = false\n")
        )
        config = StackedConfig([first, second])
        self.assertEqual(b"first", config.get((b"core",), b"foo"))
        self.assertFalse(config.get_boolean((b"http",), b"sslVerify"))
        self.assertEqual(
            [b"first", b"second"], list(config.get_multivar(b"core", b"foo"))
        )
        self.assertEqual([(b"core",), (b"http",)], list(config.sections()))
        self.assertRaises(KeyError, config.get, (b"core",), b"missing")


class ParseStringTests(TestCase):
    def test_quoted(self) -> None:
        self.assertEqual(b" foo", _parse_string(b'" foo"'))
        self.assertEqual(b"\tfoo", _parse_string(b'"\\tfoo"'))

    def test_not_quoted(self) -> None:
        self.assertEqual(b"foo", _parse_string(b"foo"))
        self.assertEqual(b"foo bar", _parse_string(b"foo bar"))

    def test_nothing(self) -> None:
        self.assertEqual(b"", _parse_string(b""))

    def test_newline(self) -> None:
        self.assertEqual(b"\nbar\t", _parse_string(b"\\nbar\\t\t"))

    def test_unknown_escape(self) -> None:
        self.assertEqual(b"C:\\path", _parse_string(b"C:\\path"))


class CheckNamesTests(TestCase):
    def test_variable(self) -> None:
        self.assertTrue(_check_variable_name(b"core"))
        self.assertTrue(_check_variable_name(b"core-bla"))
        self.assertFalse(_check_variable_name(b"core_bla"))
        self.assertFalse(_check_variable_name(b""))

    def test_section(self) -> None:
        self.assertTrue(_check_section_name(b"core"))
        self.assertTrue(_check_section_name(b"bar.bla"))
        self.assertFalse(_check_section_name(b"foo bar"))
        self.assertFalse(_check_section_name(b""))


class TransferSettingsTests(TestCase):
    def from_text(self, text: bytes) -> TransferSettings:
        return TransferSettings.from_config(ConfigFile.from_file(BytesIO(text)))

    def test_defaults(self) -> None:
        settings = self.from_text(b"")
        self.assertEqual(TransferSettings(), settings)
        self.assertIsNone(settings.protocol_version)
        self.assertEqual("consecutive", settings.algorithm)
        self.assertTrue(settings.thin_pack)

    def test_protocol_version(self) -> None:
        settings = self.from_text(b"[protocol]\nversion = 1\n")
        self.assertEqual(ProtocolVersion.V1, settings.protocol_version)

    def test_invalid_protocol_version(self) -> None:
        self.assertRaises(ValueError, self.from_text, b"[protocol]\nversion = 5\n")

    def test_negotiation_algorithm(self) -> None:
        self.assertEqual(
            "skipping",
            self.from_text(b"[fetch]\nnegotiationAlgorithm = skipping\n").algorithm,
        )
        self.assertEqual(
            "none",
            self.from_text(b"[fetch]\nnegotiationAlgorithm = noop\n").algorithm,
        )
        self.assertEqual(
            "consecutive",
            self.from_text(b"[fetch]\nnegotiationAlgorithm = default\n").algorithm,
        )

    def test_unknown_negotiation_algorithm(self) -> None:
        with self.assertLogs("gitwire.config", level="WARNING"):
            settings = self.from_text(b"[fetch]\nnegotiationAlgorithm = magic\n")
        self.assertEqual("consecutive", settings.algorithm)

    def test_gitwire_section(self) -> None:
        settings = self.from_text(
            b"[gitwire]\n"
            b"haveBatchSize = 32\n"
            b"maxHaveRounds = 4\n"
            b"thinPack = false\n"
            b"includeTag = true\n"
            b"noProgress\n"
            b"agent = test-agent/1.0\n"
        )
        self.assertEqual(32, settings.batch_size)
        self.assertEqual(4, settings.max_rounds)
        self.assertFalse(settings.thin_pack)
        self.assertTrue(settings.ofs_delta)
        self.assertTrue(settings.include_tag)
        self.assertTrue(settings.no_progress)
        self.assertEqual(b"test-agent/1.0", settings.agent)

    def test_invalid_batch_size(self) -> None:
        self.assertRaises(
            ValueError, self.from_text, b"[gitwire]\nhaveBatchSize = 0\n"
        )

    def test_negative_max_rounds(self) -> None:
        self.assertRaises(
            ValueError, self.from_text, b"[gitwire]\nmaxHaveRounds = -1\n"
        )
