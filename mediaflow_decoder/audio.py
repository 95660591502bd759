"""
Audio stream decoding with PCM conversion.

Every decoded frame is resampled to interleaved stereo signed 16-bit
samples at the stream's own sample rate, regardless of the source channel
layout and sample format.

Architecture:
  packet -> decode() -> resample(s16, stereo) -> scratch buffer -> AudioFrame

The scratch buffer grows on demand to the largest frame seen in the
current decode session and is never shrunk, so frames of varying size
do not cause reallocation churn.
"""

import logging
from typing import Any

import av
from av.audio.resampler import AudioResampler

from mediaflow_decoder.exceptions import AllocationError, DecodeError, native_status
from mediaflow_decoder.frame import S16_BYTES_PER_SAMPLE, AudioFrame
from mediaflow_decoder.stream import BaseStream, DecodeStatus

logger = logging.getLogger(__name__)

# Channel count used for audio conversion while decoding
STANDARD_CHANNEL_COUNT = 2

_OUTPUT_SAMPLE_FORMAT = "s16"  # interleaved signed 16-bit
_OUTPUT_LAYOUT = "stereo"


def samples_buffer_size(samples: int, channels: int = STANDARD_CHANNEL_COUNT) -> int:
    """Bytes needed for ``samples`` packed s16 samples per channel (no alignment padding)."""
    if samples < 0:
        raise ValueError(f"negative sample count {samples}")
    return samples * channels * S16_BYTES_PER_SAMPLE


class AudioStream(BaseStream):
    """A stream containing audio frames consisting of audio samples."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._resampler: AudioResampler | None = None
        self._buffer: bytearray | None = None

    @property
    def channel_count(self) -> int:
        """Number of channels (1 for mono, 2 for stereo, etc.)."""
        params = self._params
        return int(params.channels or 0) if params is not None else 0

    @property
    def sample_rate(self) -> int:
        params = self._params
        return int(params.sample_rate or 0) if params is not None else 0

    @property
    def frame_size(self) -> int:
        """Number of samples per channel contained in one frame of the audio."""
        params = self._params
        return int(params.frame_size or 0) if params is not None else 0

    @property
    def buffer_size(self) -> int:
        """Size in bytes of the reusable conversion buffer (0 before the first frame)."""
        return len(self._buffer) if self._buffer is not None else 0

    def _configure_context(self, ctx: Any) -> None:
        super()._configure_context(ctx)
        params = self._params
        if params is None:
            return
        if params.sample_rate:
            ctx.sample_rate = params.sample_rate
        layout = getattr(params.layout, "name", None)
        if layout:
            ctx.layout = layout

    def open(self) -> None:
        """Open the audio stream to decode stereo s16 frames from it."""
        self._open()
        rate = self.sample_rate or self._codec_ctx.sample_rate
        try:
            self._resampler = AudioResampler(format=_OUTPUT_SAMPLE_FORMAT, layout=_OUTPUT_LAYOUT, rate=rate)
        except (av.error.FFmpegError, ValueError) as e:
            self._resampler = None
            self._close_decoder()
            raise AllocationError("couldn't allocate the resampler", native_status(e)) from e

        self._buffer = None
        logger.info(
            "[audio] Stream %d: decoding %s %dHz %dch -> s16 %dHz %dch",
            self.index,
            self.codec_name,
            self.sample_rate,
            self.channel_count,
            rate,
            STANDARD_CHANNEL_COUNT,
        )

    def _ensure_buffer(self, size: int) -> None:
        if self._buffer is not None and len(self._buffer) >= size:
            return
        previous = self.buffer_size
        self._buffer = bytearray(size)
        logger.debug("[audio] Stream %d: grew PCM buffer %d -> %d bytes", self.index, previous, size)

    def _resample(self, decoded: Any) -> list:
        try:
            resampled = self._resampler.resample(decoded)
        except (av.error.FFmpegError, ValueError) as e:
            raise DecodeError("couldn't convert the audio frame", native_status(e)) from e
        if resampled is None:
            return []
        if not isinstance(resampled, list):
            resampled = [resampled]
        return resampled

    def read_frame(self) -> tuple[AudioFrame | None, bool]:
        return self.read_audio_frame()

    def read_audio_frame(self) -> tuple[AudioFrame | None, bool]:
        """
        Decode the next audio frame.

        Returns:
            (frame, True) for a decoded frame, (None, True) when another
            packet is needed, (None, False) when the stream is exhausted.
        """
        status = self._read()
        if status is DecodeStatus.RETRY:
            return None, True
        if status is DecodeStatus.END:
            return None, False

        decoded = self._frame
        self._ensure_buffer(samples_buffer_size(decoded.samples))

        written = 0
        for rs_frame in self._resample(decoded):
            size = samples_buffer_size(rs_frame.samples)
            self._ensure_buffer_keep(written + size, written)
            self._buffer[written : written + size] = memoryview(rs_frame.planes[0])[:size]
            written += size

        if written == 0:
            # The resampler is holding the samples back until it has enough input
            self.skip = True
            return None, True

        index_coded, index_display = self._frame_indices()
        frame = AudioFrame(
            stream_index=self.index,
            time_base=self.time_base,
            pts=int(decoded.pts) if decoded.pts is not None else None,
            index_coded=index_coded,
            index_display=index_display,
            data=bytes(self._buffer[:written]),
            channel_count=STANDARD_CHANNEL_COUNT,
        )
        return frame, True

    def _ensure_buffer_keep(self, size: int, keep: int) -> None:
        """Grow the buffer to ``size`` preserving its first ``keep`` bytes."""
        if len(self._buffer) >= size:
            return
        kept = bytes(self._buffer[:keep])
        self._ensure_buffer(size)
        self._buffer[:keep] = kept

    def close(self) -> None:
        """Close the audio stream and stop decoding audio frames."""
        super().close()
        self._buffer = None
        self._resampler = None
