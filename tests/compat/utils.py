# utils.py -- Git compatibility utilities
# Copyright (C) 2010 Google, Inc.
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

"""Utilities for interacting with cgit."""

import os
import shutil
import subprocess
import tempfile
from typing import Optional

from gitwire.transport import find_git_command

from .. import SkipTest, TestCase

_DEFAULT_GIT = find_git_command()
_VERSION_LEN = 4
_REPOS_DATA_DIR = None

_GIT_ENV = {
    "GIT_AUTHOR_NAME": "Test Author",
    "GIT_AUTHOR_EMAIL": "test@example.com",
    "GIT_COMMITTER_NAME": "Test Committer",
    "GIT_COMMITTER_EMAIL": "test@example.com",
}


def git_version(git_path: Optional[list[str]] = None) -> Optional[tuple[int, ...]]:
    """Attempt to determine the version of git currently installed.

    Args:
      git_path: Command to run git, defaults to find_git_command()
    Returns: A tuple of ints of the form (major, minor, point, sub-point), or
        None if no git installation was found.
    """
    try:
        _, output, _ = run_git(["--version"], git_path=git_path)
    except OSError:
        return None
    version_prefix = b"git version "
    if not output.startswith(version_prefix):
        return None

    parts = output[len(version_prefix) :].split(b".")
    nums = []
    for part in parts:
        try:
            nums.append(int(part))
        except ValueError:
            break

    while len(nums) < _VERSION_LEN:
        nums.append(0)
    return tuple(nums[:_VERSION_LEN])


def require_git_version(required_version: tuple[int, ...]) -> None:
    """Require git version >= version, or skip the calling test.

    Raises:
      ValueError: if the required version tuple has too many parts
      SkipTest: if no suitable git was found
    """
    if len(required_version) > _VERSION_LEN:
        raise ValueError(
            f"Invalid version tuple {required_version}, expected {_VERSION_LEN} parts"
        )

    found_version = git_version()
    if found_version is None:
        raise SkipTest("Test requires git, but no git installation was found")
    if found_version < required_version:
        required_version_str = ".".join(map(str, required_version))
        found_version_str = ".".join(map(str, found_version))
        raise SkipTest(
            f"Test requires git >= {required_version_str}, "
            f"found {found_version_str}"
        )


def run_git(
    args: list[str],
    git_path: Optional[list[str]] = None,
    cwd: Optional[str] = None,
    input: Optional[bytes] = None,
) -> tuple[int, bytes, bytes]:
    """Run a git command.

    Returns: A tuple of (returncode, stdout contents, stderr contents).
    """
    if git_path is None:
        git_path = _DEFAULT_GIT
    env = dict(os.environ)
    env.update(_GIT_ENV)
    env["LC_ALL"] = env["LANG"] = "C"
    p = subprocess.run(
        [*git_path, *args],
        cwd=cwd,
        env=env,
        input=input,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
    )
    return p.returncode, p.stdout, p.stderr


def run_git_or_fail(args: list[str], **kwargs) -> bytes:
    """Run a git command, raising AssertionError if it fails."""
    returncode, stdout, stderr = run_git(args, **kwargs)
    if returncode != 0:
        raise AssertionError(
            f"git with args {args!r} failed with {returncode}: "
            f"stdout={stdout!r} stderr={stderr!r}"
        )
    return stdout


class CompatTestCase(TestCase):
    """Test case that requires git, building its repositories with git itself."""

    min_git_version: tuple[int, ...] = (1, 5, 0)

    def setUp(self) -> None:
        super().setUp()
        require_git_version(self.min_git_version)

    def make_repo(self, bare: bool = False) -> str:
        """Create an empty repository whose HEAD points at refs/heads/main."""
        path = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, path)
        args = ["init", "--quiet"]
        if bare:
            args.append("--bare")
        run_git_or_fail([*args, path])
        run_git_or_fail(["symbolic-ref", "HEAD", "refs/heads/main"], cwd=path)
        return path

    def commit(self, path: str, message: str = "commit") -> bytes:
        """Create an empty commit on the current branch and return its id."""
        run_git_or_fail(
            ["commit", "--quiet", "--allow-empty", "-m", message], cwd=path
        )
        return run_git_or_fail(["rev-parse", "HEAD"], cwd=path).strip()
