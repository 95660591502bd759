"""
Decoded output frames.

Frames are immutable copies of a stream's conversion output: a
``VideoFrame`` holds a tightly packed RGBA raster, an ``AudioFrame`` holds
interleaved stereo signed 16-bit PCM. Neither shares memory with the
stream's scratch buffers.
"""

from dataclasses import dataclass
from datetime import timedelta
from fractions import Fraction

from mediaflow_decoder.timebase import TimeBase

RGBA_BYTES_PER_PIXEL = 4
S16_BYTES_PER_SAMPLE = 2


@dataclass(frozen=True, slots=True)
class Frame:
    """Data common to frames of every media type."""

    stream_index: int
    time_base: TimeBase
    pts: int | None
    index_coded: int
    index_display: int
    data: bytes

    @property
    def presentation_time(self) -> Fraction:
        """Exact presentation time in seconds since the start of the media."""
        return self.time_base.to_seconds(self.pts)

    def presentation_offset(self) -> timedelta:
        """Offset since the start of the media at which the frame should be played."""
        return self.time_base.to_timedelta(self.pts)


@dataclass(frozen=True, slots=True)
class VideoFrame(Frame):
    width: int = 0
    height: int = 0

    def __post_init__(self) -> None:
        expected = self.width * self.height * RGBA_BYTES_PER_PIXEL
        if len(self.data) != expected:
            raise ValueError(
                f"RGBA payload of {len(self.data)} bytes does not match {self.width}x{self.height} ({expected} bytes)"
            )

    @property
    def stride(self) -> int:
        return self.width * RGBA_BYTES_PER_PIXEL

    def pixel(self, x: int, y: int) -> tuple[int, int, int, int]:
        """Return the (r, g, b, a) value at column ``x``, row ``y``."""
        if not (0 <= x < self.width and 0 <= y < self.height):
            raise IndexError(f"pixel ({x}, {y}) outside {self.width}x{self.height}")
        offset = y * self.stride + x * RGBA_BYTES_PER_PIXEL
        r, g, b, a = self.data[offset : offset + RGBA_BYTES_PER_PIXEL]
        return r, g, b, a


@dataclass(frozen=True, slots=True)
class AudioFrame(Frame):
    channel_count: int = 2

    @property
    def sample_count(self) -> int:
        """Number of samples per channel."""
        return len(self.data) // (self.channel_count * S16_BYTES_PER_SAMPLE)
