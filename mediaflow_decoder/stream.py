"""
Elementary streams and the decode state machine they share.

A stream is either closed (no codec context, no scratch state) or open;
``open()`` either completes or rolls back everything it allocated. Reading
is driven by the caller: after ``Container.read_packet`` returns a packet
for this stream, ``read_frame`` submits it to the decoder and hands back
the next decoded frame, or ``(None, True)`` when the decoder needs more
input.

    Closed --open()--> Open --close()--> Closed
"""

import logging
from collections import deque
from contextlib import contextmanager
from datetime import timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any, Iterator

import av

from mediaflow_decoder.bitstream import BitstreamFilter
from mediaflow_decoder.exceptions import (
    AllocationError,
    DecodeError,
    NoFilterError,
    StreamClosedError,
    native_status,
)
from mediaflow_decoder.timebase import TimeBase

if TYPE_CHECKING:
    from mediaflow_decoder.container import Container
    from mediaflow_decoder.frame import Frame

logger = logging.getLogger(__name__)

# Upper bound on remembered pts -> bitstream ordinal entries (packets that never produce a frame)
_MAX_CODED_ORDER_ENTRIES = 512


class StreamType(str, Enum):
    VIDEO = "video"
    AUDIO = "audio"
    UNKNOWN = "unknown"

    @classmethod
    def from_native(cls, value: str | None) -> "StreamType":
        if value == "video":
            return cls.VIDEO
        if value == "audio":
            return cls.AUDIO
        return cls.UNKNOWN


class DecodeStatus(Enum):
    DATA = "data"  # a decoded unit is ready in the decode-target slot
    RETRY = "retry"  # the decoder consumed input but needs another packet
    END = "end"  # the source is exhausted and the decoder is drained


class BaseStream:
    """Information and decode state common to all media streams."""

    def __init__(self, container: "Container", native: Any, codec: Any = None) -> None:
        self._container = container
        self._native = native
        self._codec = codec
        self._codec_ctx = None
        self._frame = None
        self._filter: BitstreamFilter | None = None
        self._pending_frames: deque = deque()
        # Packets the decoder refused with EAGAIN, resent before any newer packet
        self._unsent: deque = deque()
        self._coded_order: dict[int, int] = {}
        self._packets_sent = 0
        self._frames_out = 0
        self._drained = False
        self._opened = False
        self.skip = False

    def __repr__(self) -> str:
        return f"<{type(self).__name__} index={self.index} codec={self.codec_name or '?'} opened={self._opened}>"

    # ── Metadata ─────────────────────────────────────────────────────

    @property
    def _params(self) -> Any:
        return getattr(self._native, "codec_context", None)

    @property
    def opened(self) -> bool:
        return self._opened

    @property
    def index(self) -> int:
        return int(self._native.index)

    @property
    def type(self) -> StreamType:
        return StreamType.from_native(getattr(self._native, "type", None))

    @property
    def codec_name(self) -> str:
        if self._codec is None:
            return ""
        return self._codec.name or ""

    @property
    def codec_long_name(self) -> str:
        if self._codec is None:
            return ""
        return self._codec.long_name or ""

    @property
    def bit_rate(self) -> int:
        """Bit rate of the stream (in bps)."""
        params = self._params
        if params is None:
            return 0
        return int(params.bit_rate or 0)

    @property
    def time_base(self) -> TimeBase:
        """Seconds per stream tick. All durations of the stream are expressed in these ticks."""
        return TimeBase.from_fraction(self._native.time_base)

    @property
    def duration(self) -> timedelta:
        ticks = self._native.duration or 0
        if ticks < 0:
            ticks = 0
        return self.time_base.to_timedelta(ticks)

    @property
    def frame_rate(self) -> tuple[int, int]:
        """Approximate frame rate as (numerator, denominator); (0, 1) when unknown."""
        rate = getattr(self._native, "base_rate", None) or getattr(self._native, "average_rate", None)
        if not rate:
            return 0, 1
        return rate.numerator, rate.denominator

    @property
    def frame_count(self) -> int:
        return int(self._native.frames or 0)

    # ── Bitstream filter ─────────────────────────────────────────────

    @property
    def filter(self) -> str:
        """Specification of the applied bitstream filter, or "" when none is applied."""
        if self._filter is None:
            return ""
        return self._filter.args

    @property
    def bitstream_filter(self) -> BitstreamFilter | None:
        return self._filter

    def apply_filter(self, args: str) -> None:
        """Apply the bitstream filter defined by ``args`` to every packet of this stream."""
        if self._filter is not None:
            logger.warning("[stream] Stream %d already has filter %r, replacing it", self.index, self._filter.args)
            self._release_filter()

        self._filter = BitstreamFilter(args, self._native)
        logger.info("[stream] Stream %d: applied filter %r", self.index, args)

    def remove_filter(self) -> None:
        if self._filter is None:
            raise NoFilterError("no filter applied")
        args = self._filter.args
        self._release_filter()
        logger.info("[stream] Stream %d: removed filter %r", self.index, args)

    def _release_filter(self) -> None:
        if self._filter is not None:
            self._filter.close()
            self._filter = None

    # ── Seeking ──────────────────────────────────────────────────────

    def rewind(self, position: timedelta | float) -> None:
        """
        Rewind the whole media to ``position`` based on this stream's time base.

        Seeks backward to the nearest keyframe. Sibling streams share the
        container's read cursor, so rewinding through the video stream keeps
        playback from desynchronizing.
        """
        ticks = self.time_base.to_ticks(position)
        self._container.seek(ticks, self)

    def _reset_decoder(self) -> None:
        """Discard buffered decoder state after the read cursor moved."""
        if self._codec_ctx is not None:
            self._codec_ctx.flush_buffers()
        self._pending_frames.clear()
        self._unsent.clear()
        self._coded_order.clear()
        self._drained = False
        self.skip = False

    # ── Decode state machine ─────────────────────────────────────────

    def open(self) -> None:
        self._open()

    @contextmanager
    def opened_for_decode(self) -> Iterator["BaseStream"]:
        """Open the stream for the duration of a ``with`` block."""
        self.open()
        try:
            yield self
        finally:
            self.close()

    def _configure_context(self, ctx: Any) -> None:
        """Copy the demuxed codec parameters into a fresh decoder context."""
        params = self._params
        if params is not None and params.extradata:
            ctx.extradata = bytes(params.extradata)

    def _open(self) -> None:
        if self._opened:
            logger.warning("[stream] Stream %d is already open for decoding", self.index)
            return
        if self._codec is None:
            raise AllocationError(f"stream {self.index} has no decoder")

        try:
            ctx = av.CodecContext.create(self._codec.name, "r")
            self._configure_context(ctx)
            ctx.open()
        except av.error.FFmpegError as e:
            raise AllocationError("couldn't open the codec context", native_status(e)) from e
        except ValueError as e:
            raise AllocationError(f"couldn't send codec parameters to the context: {e}") from e

        self._codec_ctx = ctx
        self._frame = None
        self._pending_frames.clear()
        self._unsent.clear()
        self._coded_order.clear()
        self._packets_sent = 0
        self._frames_out = 0
        self._drained = False
        self._opened = True
        logger.debug("[stream] Stream %d: opened %s decoder", self.index, self.codec_name)

    def _remember_coded_order(self, packet: Any) -> None:
        if packet.pts is None:
            return
        if len(self._coded_order) >= _MAX_CODED_ORDER_ENTRIES:
            del self._coded_order[next(iter(self._coded_order))]
        self._coded_order[int(packet.pts)] = self._packets_sent

    def _submit(self, packet: Any) -> list:
        try:
            return list(self._codec_ctx.decode(packet))
        except BlockingIOError:
            return []
        except av.error.FFmpegError as e:
            raise DecodeError("couldn't decode the packet", native_status(e)) from e

    def _send_unsent(self) -> None:
        """Submit queued packets in bitstream order, stopping at the first one the decoder refuses."""
        while self._unsent:
            try:
                frames = self._codec_ctx.decode(self._unsent[0])
            except BlockingIOError:
                logger.debug("[stream] Stream %d: decoder busy, %d packets held", self.index, len(self._unsent))
                return
            except av.error.FFmpegError as e:
                self._unsent.popleft()
                raise DecodeError("couldn't decode the packet", native_status(e)) from e
            self._unsent.popleft()
            self._pending_frames.extend(frames)

    def _read(self) -> DecodeStatus:
        """
        Submit the current packet (filtered, if a filter is applied) and pull one decoded unit.

        The decoded unit lands in the decode-target slot ``self._frame``.
        """
        if not self._opened:
            raise StreamClosedError(f"stream {self.index} is not open for decoding")

        packet = self._container._take_packet(self)
        if packet is not None:
            self._remember_coded_order(packet)
            self._packets_sent += 1
            self._unsent.append(packet)
        if self._unsent:
            self._send_unsent()
        elif not self._pending_frames and self._container.exhausted and not self._drained:
            self._drained = True
            self._pending_frames.extend(self._submit(None))
            logger.debug("[stream] Stream %d: drained %d buffered frames", self.index, len(self._pending_frames))

        if not self._pending_frames:
            if self._drained:
                self.skip = False
                return DecodeStatus.END
            self.skip = True
            return DecodeStatus.RETRY

        self._frame = self._pending_frames.popleft()
        self._container._release_packet(self)
        if self._filter is not None:
            self._filter.release_slots()
        self.skip = False
        return DecodeStatus.DATA

    def _frame_indices(self) -> tuple[int, int]:
        """Bitstream-order and display-order indices of the frame in the decode-target slot."""
        index_display = self._frames_out
        self._frames_out += 1
        pts = self._frame.pts
        index_coded = index_display
        if pts is not None:
            index_coded = self._coded_order.pop(int(pts), index_display)
        return index_coded, index_display

    def read_frame(self) -> tuple["Frame | None", bool]:
        """
        Decode the next frame from the stream.

        Returns (frame, True) when a frame is ready, (None, True) when the
        decoder needs another packet, and (None, False) when the stream is
        exhausted.
        """
        raise NotImplementedError

    def close(self) -> None:
        """Close the stream for decoding and release the decoder, its scratch state and any filter."""
        if not self._opened:
            logger.warning("[stream] Stream %d is not open, nothing to close", self.index)
            return
        self._close_decoder()
        logger.debug("[stream] Stream %d: closed", self.index)

    def _close_decoder(self) -> None:
        self._frame = None
        # PyAV frees the native codec context when the last reference goes away
        self._codec_ctx = None
        self._pending_frames.clear()
        self._unsent.clear()
        self._coded_order.clear()
        self._release_filter()
        self._drained = False
        self._opened = False
        self.skip = False


class UnknownStream(BaseStream):
    """A stream that is either of an unsupported media type or has no decoder."""

    def open(self) -> None:
        raise AllocationError(f"stream {self.index} ({self.type.value}) is not decodable")

    def read_frame(self) -> tuple["Frame | None", bool]:
        raise StreamClosedError(f"stream {self.index} ({self.type.value}) is not decodable")
