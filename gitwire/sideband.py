# sideband.py -- Side-band demultiplexing
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

"""Demultiplexing of side-band streams.

With the ``side-band`` or ``side-band-64k`` capability every packet after
negotiation starts with a channel byte: 1 carries pack data, 2 progress
text and 3 a fatal error message. Without side-band the raw stream is pack
data.
"""

from collections import deque
from typing import NamedTuple, Optional

from .errors import (
    EndOfStream,
    HangupException,
    OutOfOrderChannel,
    ProtocolViolation,
    RemoteError,
)
from .log_utils import getLogger
from .progress import ProgressReporter
from .protocol import (
    RESPONSE_END_PKT,
    SIDE_BAND_CHANNEL_DATA,
    SIDE_BAND_CHANNEL_FATAL,
    SIDE_BAND_CHANNEL_PROGRESS,
    Packet,
)
from .steps import Step, read, read_line

logger = getLogger(__name__)

_CHANNELS = (
    SIDE_BAND_CHANNEL_DATA,
    SIDE_BAND_CHANNEL_PROGRESS,
    SIDE_BAND_CHANNEL_FATAL,
)

# Raw read size when side-band is not in use.
RAW_CHUNK_SIZE = 65520


class Chunk(NamedTuple):
    """A piece of the stream tagged with the channel it arrived on."""

    channel: int
    data: bytes


class SideBandDemultiplexer:
    """Turn the post-negotiation stream into tagged chunks."""

    def __init__(self, sideband: bool, chunk_size: int = RAW_CHUNK_SIZE) -> None:
        """Initialize SideBandDemultiplexer.

        Args:
          sideband: Whether a side-band capability was negotiated
          chunk_size: Read size for raw streams
        """
        self.sideband = sideband
        self.chunk_size = chunk_size
        self.terminated = False
        self.finished = False

    def feed(self, pkt: Packet) -> Chunk:
        """Decode one framed packet.

        Raises:
          EndOfStream: on a flush packet
          OutOfOrderChannel: on pack data following a fatal error
          ProtocolViolation: on an empty packet or unknown channel
        """
        if pkt is None or pkt is RESPONSE_END_PKT:
            self.finished = True
            raise EndOfStream()
        if not isinstance(pkt, bytes):
            raise ProtocolViolation("Unexpected special packet in side-band stream")
        if not self.sideband:
            return Chunk(SIDE_BAND_CHANNEL_DATA, pkt)
        if not pkt:
            raise ProtocolViolation("Empty side-band packet", pkt)
        channel = pkt[0]
        if channel not in _CHANNELS:
            raise ProtocolViolation(f"Unknown side-band channel {channel}", pkt)
        if self.terminated and channel == SIDE_BAND_CHANNEL_DATA:
            raise OutOfOrderChannel("Pack data after fatal error", pkt[:64])
        if channel == SIDE_BAND_CHANNEL_FATAL:
            self.terminated = True
        return Chunk(channel, pkt[1:])

    def feed_raw(self, data: bytes) -> Chunk:
        """Tag a piece of a stream read without side-band framing."""
        if not data:
            self.finished = True
            raise EndOfStream()
        return Chunk(SIDE_BAND_CHANNEL_DATA, data)

    def next_chunk(self) -> Step[Chunk]:
        """Read the next chunk from the transport."""
        if self.finished:
            raise EndOfStream()
        if not self.sideband:
            data = yield read(self.chunk_size)
            return self.feed_raw(data)
        try:
            pkt = yield read_line()
        except HangupException:
            if self.terminated:
                # The server hangs up right after a fatal message.
                self.finished = True
                raise EndOfStream()
            raise
        return self.feed(pkt)


class ChannelRouter:
    """Route chunks into separate pack-data and progress streams.

    Each stream pulls from the transport only when its own queue is empty,
    buffering whatever arrives for the other one. A fatal chunk ends both
    streams; the pack-data stream then raises RemoteError.

    The buffer has no size limit: reading progress to the end before
    pack_data holds the whole pack in memory. Drain pack_data first or
    interleave the two; pending() reports how much is held back.
    """

    def __init__(
        self,
        demux: SideBandDemultiplexer,
        reporter: Optional[ProgressReporter] = None,
    ) -> None:
        self.demux = demux
        self.reporter = reporter or ProgressReporter()
        self._queues: dict[int, deque[bytes]] = {
            SIDE_BAND_CHANNEL_DATA: deque(),
            SIDE_BAND_CHANNEL_PROGRESS: deque(),
        }
        self.ended = False
        self.error: Optional[RemoteError] = None

    def pending(self, channel: int) -> int:
        """Return the number of bytes buffered for channel."""
        return sum(len(data) for data in self._queues[channel])

    def pump(self, channel: int) -> Step[Optional[bytes]]:
        """Return the next payload for channel, or None once it is done."""
        queue = self._queues[channel]
        while True:
            if queue:
                return queue.popleft()
            if self.error is not None and channel == SIDE_BAND_CHANNEL_DATA:
                raise self.error
            if self.ended:
                return None
            try:
                chunk = yield from self.demux.next_chunk()
            except EndOfStream:
                self._finish()
                continue
            self._route(chunk)

    def _route(self, chunk: Chunk) -> None:
        if chunk.channel == SIDE_BAND_CHANNEL_FATAL:
            logger.debug("remote error: %r", chunk.data)
            self.error = RemoteError(chunk.data)
            self._finish()
        elif chunk.channel == SIDE_BAND_CHANNEL_PROGRESS:
            self.reporter.feed(chunk.data)
            self._queues[SIDE_BAND_CHANNEL_PROGRESS].append(chunk.data)
        else:
            self._queues[SIDE_BAND_CHANNEL_DATA].append(chunk.data)

    def _finish(self) -> None:
        self.ended = True
        self.reporter.close()
