# config.py -- Reading git configuration and transfer settings
# Copyright (C) 2011-2013 Jelmer Vernooij <jelmer@jelmer.uk>
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

"""Reading git configuration files.

Only reading is supported; gitwire never writes configuration. The
settings that affect the transfer protocol are collected in
:class:`TransferSettings`.
"""

import os
import sys
from collections.abc import Iterator
from dataclasses import dataclass
from typing import IO, Optional, Union

from .log_utils import getLogger
from .negotiate import DEFAULT_BATCH_SIZE, DEFAULT_MAX_ROUNDS, NEGOTIATION_ALGORITHMS
from .versions import ProtocolVersion

logger = getLogger(__name__)

Name = bytes
NameLike = Union[bytes, str]
Section = tuple[bytes, ...]
SectionLike = Union[bytes, str, tuple[Union[bytes, str], ...]]
Value = bytes


class Config:
    """A Git configuration."""

    def get(self, section: SectionLike, name: NameLike) -> Value:
        """Retrieve the contents of a configuration setting.

        Args:
          section: Tuple with section name and optional subsection name
          name: Variable name
        Returns:
          Contents of the setting
        Raises:
          KeyError: if the value is not set
        """
        raise NotImplementedError(self.get)

    def get_multivar(self, section: SectionLike, name: NameLike) -> Iterator[Value]:
        """Retrieve the contents of a multivar configuration setting."""
        raise NotImplementedError(self.get_multivar)

    def get_boolean(
        self, section: SectionLike, name: NameLike, default: Optional[bool] = None
    ) -> Optional[bool]:
        """Retrieve a configuration setting as boolean.

        Args:
          section: Tuple with section name and optional subsection name
          name: Name of the setting
          default: Default value if setting is not found
        Returns:
          Contents of the setting
        """
        try:
            value = self.get(section, name)
        except KeyError:
            return default
        if value.lower() in (b"true", b"yes", b"on", b"1"):
            return True
        elif value.lower() in (b"false", b"no", b"off", b"0", b""):
            return False
        raise ValueError(f"not a valid boolean string: {value!r}")

    def get_int(
        self, section: SectionLike, name: NameLike, default: Optional[int] = None
    ) -> Optional[int]:
        """Retrieve a configuration setting as an integer.

        Accepts git's ``k``, ``m`` and ``g`` suffixes.
        """
        try:
            value = self.get(section, name).strip().lower()
        except KeyError:
            return default
        factor = 1
        for suffix, multiplier in ((b"k", 1024), (b"m", 1024**2), (b"g", 1024**3)):
            if value.endswith(suffix):
                value = value[:-1]
                factor = multiplier
                break
        try:
            return int(value) * factor
        except ValueError:
            raise ValueError(f"not a valid integer: {value!r}")

    def sections(self) -> Iterator[Section]:
        """Iterate over the sections."""
        raise NotImplementedError(self.sections)

    def has_section(self, name: Section) -> bool:
        return name in self.sections()


def _section_key(section: Section) -> Section:
    # Section names are case-insensitive, subsection names are not.
    return (section[0].lower(), *section[1:])


class ConfigDict(Config):
    """Git configuration stored in a dictionary."""

    def __init__(self, encoding: Optional[str] = None) -> None:
        if encoding is None:
            encoding = sys.getdefaultencoding()
        self.encoding = encoding
        self._values: dict[Section, list[tuple[Name, Value]]] = {}
        self._names: dict[Section, Section] = {}

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self._values!r})"

    def __eq__(self, other: object) -> bool:
        return isinstance(other, self.__class__) and other._values == self._values

    def _check_section_and_name(
        self, section: SectionLike, name: NameLike
    ) -> tuple[Section, Name]:
        if not isinstance(section, tuple):
            section = (section,)
        checked_section = tuple(
            s if isinstance(s, bytes) else s.encode(self.encoding) for s in section
        )
        if not isinstance(name, bytes):
            name = name.encode(self.encoding)
        return checked_section, name

    def _entries(self, section: Section) -> list[tuple[Name, Value]]:
        return self._values.get(_section_key(section), [])

    def get_multivar(self, section: SectionLike, name: NameLike) -> Iterator[Value]:
        section, name = self._check_section_and_name(section, name)
        lname = name.lower()
        values = [v for (n, v) in self._entries(section) if n.lower() == lname]
        if not values and len(section) > 1:
            values = [v for (n, v) in self._entries(section[:1]) if n.lower() == lname]
        return iter(values)

    def get(self, section: SectionLike, name: NameLike) -> Value:
        """Get a configuration value; the last assignment wins.

        Raises:
            KeyError: if the value is not set
        """
        values = list(self.get_multivar(section, name))
        if not values:
            raise KeyError(name)
        return values[-1]

    def add(
        self, section: SectionLike, name: NameLike, value: Union[bytes, str, bool]
    ) -> None:
        """Add a value to a configuration setting, creating a multivar if needed."""
        section, name = self._check_section_and_name(section, name)
        if isinstance(value, bool):
            value = b"true" if value else b"false"
        if not isinstance(value, bytes):
            value = value.encode(self.encoding)
        key = _section_key(section)
        self._names.setdefault(key, section)
        self._values.setdefault(key, []).append((name, value))

    def set(
        self, section: SectionLike, name: NameLike, value: Union[bytes, str, bool]
    ) -> None:
        """Set a configuration value, replacing earlier ones."""
        checked_section, checked_name = self._check_section_and_name(section, name)
        key = _section_key(checked_section)
        lname = checked_name.lower()
        self._values[key] = [
            (n, v) for (n, v) in self._values.get(key, []) if n.lower() != lname
        ]
        self.add(checked_section, checked_name, value)

    def _add_section(self, section: Section) -> None:
        key = _section_key(section)
        self._names.setdefault(key, section)
        self._values.setdefault(key, [])

    def items(self, section: SectionLike) -> Iterator[tuple[Name, Value]]:
        checked_section, _ = self._check_section_and_name(section, b"")
        return iter(list(self._entries(checked_section)))

    def sections(self) -> Iterator[Section]:
        return iter(list(self._names.values()))


_ESCAPE_TABLE = {
    ord(b"\\"): ord(b"\\"),
    ord(b'"'): ord(b'"'),
    ord(b"n"): ord(b"\n"),
    ord(b"t"): ord(b"\t"),
    ord(b"b"): ord(b"\b"),
}
_COMMENT_CHARS = [ord(b"#"), ord(b";")]
_WHITESPACE_CHARS = [ord(b"\t"), ord(b" ")]


def _parse_string(value: bytes) -> bytes:
    value_array = bytearray(value.strip())
    ret = bytearray()
    whitespace = bytearray()
    in_quotes = False
    i = 0
    while i < len(value_array):
        c = value_array[i]
        if c == ord(b"\\"):
            i += 1
            if i >= len(value_array):
                ret.extend(whitespace)
                whitespace = bytearray()
                ret.append(ord(b"\\"))
            elif value_array[i] in _ESCAPE_TABLE:
                ret.extend(whitespace)
                whitespace = bytearray()
                ret.append(_ESCAPE_TABLE[value_array[i]])
            else:
                # Unknown escape: keep the backslash, reprocess the next byte.
                ret.extend(whitespace)
                whitespace = bytearray()
                ret.append(ord(b"\\"))
                i -= 1
        elif c == ord(b'"'):
            in_quotes = not in_quotes
        elif c in _COMMENT_CHARS and not in_quotes:
            break
        elif c in _WHITESPACE_CHARS:
            whitespace.append(c)
        else:
            ret.extend(whitespace)
            whitespace = bytearray()
            ret.append(c)
        i += 1

    if in_quotes:
        raise ValueError("missing end quote")

    return bytes(ret)


def _check_variable_name(name: bytes) -> bool:
    return bool(name) and all(
        c.isalnum() or c == "-" for c in name.decode("ascii", "replace")
    )


def _check_section_name(name: bytes) -> bool:
    return bool(name) and all(
        c.isalnum() or c in "-." for c in name.decode("ascii", "replace")
    )


def _strip_comments(line: bytes) -> bytes:
    string_open = False
    for i, character in enumerate(bytearray(line)):
        # Comment characters outside balanced quotes denote comment start
        if character == ord(b'"'):
            string_open = not string_open
        elif not string_open and character in _COMMENT_CHARS:
            return line[:i]
    return line


def _parse_section_header_line(line: bytes) -> tuple[Section, bytes]:
    line = _strip_comments(line).rstrip()
    last = line.find(b"]")
    if last == -1:
        raise ValueError("expected trailing ]")
    pts = line[1:last].split(b" ", 1)
    line = line[last + 1 :]
    if not _check_section_name(pts[0]):
        raise ValueError(f"invalid section name {pts[0]!r}")
    if len(pts) == 2:
        if not (pts[1][:1] == b'"' and pts[1][-1:] == b'"'):
            raise ValueError(f"Invalid subsection {pts[1]!r}")
        return (pts[0], pts[1][1:-1]), line
    dotted = pts[0].split(b".", 1)
    return tuple(dotted), line


class ConfigFile(ConfigDict):
    """A Git configuration file, like .git/config or ~/.gitconfig."""

    def __init__(self, encoding: Optional[str] = None) -> None:
        super().__init__(encoding=encoding)
        self.path: Optional[str] = None

    @classmethod
    def from_file(cls, f: IO[bytes]) -> "ConfigFile":
        """Read configuration from a file-like object."""
        ret = cls()
        section: Optional[Section] = None
        setting: Optional[bytes] = None
        continuation = b""
        for lineno, line in enumerate(f.readlines()):
            if lineno == 0 and line.startswith(b"\xef\xbb\xbf"):
                line = line[3:]
            if setting is None:
                line = line.lstrip()
                if line[:1] == b"[":
                    section, line = _parse_section_header_line(line)
                    ret._add_section(section)
                if _strip_comments(line).strip() == b"":
                    continue
                if section is None:
                    raise ValueError(f"setting {line!r} without section")
                name, sep, value = line.partition(b"=")
                name = name.strip()
                if not sep:
                    value = b"true"
                if not _check_variable_name(name):
                    raise ValueError(f"invalid variable name {name!r}")
                setting = name
            else:
                value = line
            stripped = value.rstrip(b"\r\n")
            if stripped.endswith(b"\\") and not stripped.endswith(b"\\\\"):
                continuation += stripped[:-1]
                continue
            assert section is not None
            ret.add(section, setting, _parse_string(continuation + value))
            continuation = b""
            setting = None
        return ret

    @classmethod
    def from_path(cls, path: Union[str, "os.PathLike[str]"]) -> "ConfigFile":
        """Read configuration from a file on disk."""
        abs_path = os.fspath(path)
        with open(abs_path, "rb") as f:
            ret = cls.from_file(f)
        ret.path = abs_path
        return ret


def get_xdg_config_home_path(*path_segments: str) -> str:
    xdg_config_home = os.environ.get(
        "XDG_CONFIG_HOME",
        os.path.expanduser("~/.config/"),
    )
    return os.path.join(xdg_config_home, *path_segments)


class StackedConfig(Config):
    """Configuration which reads from multiple config files."""

    def __init__(self, backends: list[ConfigFile]) -> None:
        """Initialize a StackedConfig.

        Args:
          backends: List of config files to read from (in order of precedence)
        """
        self.backends = backends

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} for {self.backends!r}>"

    @classmethod
    def default(cls) -> "StackedConfig":
        return cls(cls.default_backends())

    @classmethod
    def default_backends(cls) -> list[ConfigFile]:
        """Retrieve the default configuration.

        See git-config(1) for details on the files searched.
        """
        paths = []

        try:
            paths.append(os.environ["GIT_CONFIG_GLOBAL"])
        except KeyError:
            paths.append(os.path.expanduser("~/.gitconfig"))
            paths.append(get_xdg_config_home_path("git", "config"))

        try:
            paths.append(os.environ["GIT_CONFIG_SYSTEM"])
        except KeyError:
            if "GIT_CONFIG_NOSYSTEM" not in os.environ:
                paths.append("/etc/gitconfig")

        logger.debug("Loading gitconfig from paths: %s", paths)

        backends = []
        for path in paths:
            try:
                cf = ConfigFile.from_path(path)
            except FileNotFoundError:
                logger.debug("Gitconfig file not found: %s", path)
                continue
            backends.append(cf)
        return backends

    def get(self, section: SectionLike, name: NameLike) -> Value:
        if not isinstance(section, tuple):
            section = (section,)
        for backend in self.backends:
            try:
                return backend.get(section, name)
            except KeyError:
                pass
        raise KeyError(name)

    def get_multivar(self, section: SectionLike, name: NameLike) -> Iterator[Value]:
        if not isinstance(section, tuple):
            section = (section,)
        for backend in self.backends:
            yield from backend.get_multivar(section, name)

    def sections(self) -> Iterator[Section]:
        seen = set()
        for backend in self.backends:
            for section in backend.sections():
                if section not in seen:
                    seen.add(section)
                    yield section


@dataclass
class TransferSettings:
    """Tunables of the transfer protocol."""

    protocol_version: Optional[ProtocolVersion] = None
    batch_size: int = DEFAULT_BATCH_SIZE
    max_rounds: int = DEFAULT_MAX_ROUNDS
    algorithm: str = "consecutive"
    thin_pack: bool = True
    ofs_delta: bool = True
    include_tag: bool = False
    no_progress: bool = False
    agent: Optional[bytes] = None

    @classmethod
    def from_config(cls, config: Config) -> "TransferSettings":
        """Read the settings from a git configuration.

        Recognized keys are ``protocol.version``,
        ``fetch.negotiationAlgorithm``, ``gitwire.haveBatchSize``,
        ``gitwire.maxHaveRounds``, ``gitwire.thinPack``, ``gitwire.ofsDelta``,
        ``gitwire.includeTag``, ``gitwire.noProgress`` and
        ``gitwire.agent``.
        """
        settings = cls()
        version = config.get_int(b"protocol", b"version")
        if version is not None:
            try:
                settings.protocol_version = ProtocolVersion(version)
            except ValueError:
                raise ValueError(f"unknown protocol.version {version}")
        try:
            algorithm = config.get(b"fetch", b"negotiationAlgorithm").decode("ascii")
        except KeyError:
            pass
        else:
            if algorithm in ("noop", "none"):
                algorithm = "none"
            elif algorithm == "default":
                algorithm = "consecutive"
            if algorithm not in NEGOTIATION_ALGORITHMS:
                logger.warning(
                    "ignoring unknown fetch.negotiationAlgorithm %r", algorithm
                )
            else:
                settings.algorithm = algorithm
        batch_size = config.get_int(b"gitwire", b"haveBatchSize")
        if batch_size is not None:
            if batch_size < 1:
                raise ValueError("gitwire.haveBatchSize must be at least 1")
            settings.batch_size = batch_size
        max_rounds = config.get_int(b"gitwire", b"maxHaveRounds")
        if max_rounds is not None:
            if max_rounds < 0:
                raise ValueError("gitwire.maxHaveRounds must not be negative")
            settings.max_rounds = max_rounds
        settings.thin_pack = bool(
            config.get_boolean(b"gitwire", b"thinPack", settings.thin_pack)
        )
        settings.ofs_delta = bool(
            config.get_boolean(b"gitwire", b"ofsDelta", settings.ofs_delta)
        )
        settings.include_tag = bool(
            config.get_boolean(b"gitwire", b"includeTag", settings.include_tag)
        )
        settings.no_progress = bool(
            config.get_boolean(b"gitwire", b"noProgress", settings.no_progress)
        )
        try:
            settings.agent = config.get(b"gitwire", b"agent")
        except KeyError:
            pass
        return settings
