"""
Per-stream bitstream filter.

Wraps PyAV's ``BitStreamFilterContext`` together with the two packet slots
the container threads packets through: the input slot references the raw
packet just read, the output slot holds the rewritten packet handed to the
decoder. Both slots go through the same release path.

Usage:
    bsf = BitstreamFilter("h264_mp4toannexb", native_stream)
    rewritten = bsf.apply(raw_packet)   # None -> filter needs more input
    ...
    bsf.release_slots()                 # after the decoder consumed the packet
    bsf.close()
"""

import logging
from collections import deque

import av
from av.bitstream import BitStreamFilterContext

from mediaflow_decoder.exceptions import DecodeError, FilterInitError, native_status

logger = logging.getLogger(__name__)


class BitstreamFilter:
    def __init__(self, args: str, native_stream) -> None:
        """
        Parse ``args`` (e.g. ``"h264_mp4toannexb"`` or ``"dump_extra=freq=keyframe"``),
        bind the stream's codec parameters and time base, and initialize the filter.
        """
        self.args = args
        try:
            self._ctx = BitStreamFilterContext(args, native_stream)
        except av.error.FFmpegError as e:
            raise FilterInitError(f"couldn't initialize the filter context {args!r}", native_status(e)) from e
        except ValueError as e:
            raise FilterInitError(f"couldn't create a filter context {args!r}: {e}") from e

        self._in_slot = None
        self._out_slot = None
        self._pending: deque = deque()
        logger.debug("[bitstream] Filter %r initialized on stream %s", args, getattr(native_stream, "index", "?"))

    @property
    def in_slot(self):
        return self._in_slot

    @property
    def out_slot(self):
        return self._out_slot

    @property
    def has_pending(self) -> bool:
        return bool(self._pending)

    def apply(self, packet):
        """
        Push ``packet`` through the filter and return the rewritten packet.

        Returns None when the filter consumed the input without producing
        output yet. Extra output packets are kept and returned by ``next_pending``.
        """
        if self._ctx is None:
            raise FilterInitError(f"filter {self.args!r} is closed")

        self._in_slot = packet
        try:
            output = self._ctx.filter(packet)
        except av.error.FFmpegError as e:
            raise DecodeError("couldn't pass the packet through the filter", native_status(e)) from e

        self._pending.extend(output)
        return self.next_pending()

    def next_pending(self):
        if not self._pending:
            self._out_slot = None
            return None
        self._out_slot = self._pending.popleft()
        return self._out_slot

    def release_slots(self) -> None:
        """Drop the references held in both packet slots."""
        self._in_slot = None
        self._out_slot = None

    def close(self) -> None:
        self.release_slots()
        self._pending.clear()
        self._ctx = None
        logger.debug("[bitstream] Filter %r released", self.args)
