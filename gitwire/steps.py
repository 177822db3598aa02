# steps.py -- Running protocol steps over blocking and asyncio transports
# Copyright (C) 2025 Jelmer Vernooij <jelmer@jelmer.uk>
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

"""Protocol steps and the drivers that run them.

A step is a generator describing one protocol exchange. Every time it needs
I/O it yields a :class:`Call` naming a transport method; the driver performs
the call and sends the result back into the generator (or throws the
exception the transport raised). Steps compose with ``yield from``.

The same step runs unchanged under :func:`run_blocking`, which calls a
blocking transport such as :class:`gitwire.protocol.Protocol`, and under
:func:`run_async`, which awaits the methods of a cooperative transport such
as :class:`gitwire.aio.AsyncProtocol`.

Example::

    def read_two():
        first = yield read_line()
        second = yield read_line()
        return first, second

    run_blocking(read_two(), proto)
    await run_async(read_two(), aproto)
"""

from collections.abc import Generator, Iterable
from typing import Any, NamedTuple, TypeVar

from .protocol import DELIM_PKT, Packet

T = TypeVar("T")


class Call(NamedTuple):
    """A single transport operation requested by a step."""

    method: str
    args: tuple = ()


Step = Generator[Call, Any, T]


def read_line() -> Call:
    return Call("read_line")


def unread_line(pkt: Packet) -> Call:
    return Call("unread_line", (pkt,))


def read_until_flush() -> Call:
    return Call("read_until_flush")


def read(size: int) -> Call:
    return Call("read", (size,))


def write_line(line: Packet) -> Call:
    return Call("write_line", (line,))


def write_delim() -> Call:
    return Call("write_delim")


def write(data: bytes) -> Call:
    return Call("write", (data,))


def flush() -> Call:
    return Call("flush")


def write_packets(packets: Iterable[Packet]) -> Step[None]:
    """Write a sequence of packets as produced by the framing functions."""
    for pkt in packets:
        if pkt is DELIM_PKT:
            yield write_delim()
        else:
            yield write_line(pkt)


def run_blocking(step: Step[T], transport: Any) -> T:
    """Run a step to completion against a blocking transport.

    Args:
      step: Generator yielding Call objects
      transport: Object providing the methods named by the calls
    Returns: The value the step returned
    """
    try:
        call = next(step)
        while True:
            try:
                result = getattr(transport, call.method)(*call.args)
            except Exception as e:
                call = step.throw(e)
            else:
                call = step.send(result)
    except StopIteration as e:
        return e.value
    finally:
        step.close()


async def run_async(step: Step[T], transport: Any) -> T:
    """Run a step to completion against an asyncio transport.

    The transport's methods are coroutine functions with the same names and
    semantics as the blocking transport's.
    """
    try:
        call = next(step)
        while True:
            try:
                result = await getattr(transport, call.method)(*call.args)
            except Exception as e:
                call = step.throw(e)
            else:
                call = step.send(result)
    except StopIteration as e:
        return e.value
    finally:
        step.close()
