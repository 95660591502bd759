"""
Video stream decoding with RGBA conversion.

Decoded pictures are scaled and converted to RGBA through one
``VideoReformatter`` per stream (PyAV keeps the underlying SwsContext and
rebuilds it only when the source or target geometry changes). The RGBA
pixels are packed into a per-stream scratch buffer sized to the output
geometry and then copied out, so frames handed to the caller never alias
stream memory.

Usage:
    stream.open_decode(1280, 720, InterpolationAlgorithm.BILINEAR)
    frame, more = stream.read_video_frame()
"""

import logging
from enum import IntEnum
from typing import Any

import av
from av.video.reformatter import VideoReformatter

from mediaflow_decoder.configs import settings
from mediaflow_decoder.exceptions import AllocationError, DecodeError, native_status
from mediaflow_decoder.frame import RGBA_BYTES_PER_PIXEL, VideoFrame
from mediaflow_decoder.stream import BaseStream, DecodeStatus

logger = logging.getLogger(__name__)

_OUTPUT_PIXEL_FORMAT = "rgba"


class InterpolationAlgorithm(IntEnum):
    """Scaling algorithms (libswscale SWS_* flags)."""

    FAST_BILINEAR = 0x1
    BILINEAR = 0x2
    BICUBIC = 0x4
    X = 0x8
    POINT = 0x10
    AREA = 0x20
    BICUBLIN = 0x40
    GAUSS = 0x80
    SINC = 0x100
    LANCZOS = 0x200
    SPLINE = 0x400
    NEAREST = 0x10  # alias of POINT

    @classmethod
    def parse(cls, value: "InterpolationAlgorithm | str | int") -> "InterpolationAlgorithm":
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls[value.strip().upper()]
            except KeyError:
                raise ValueError(f"unknown interpolation algorithm {value!r}") from None
        return cls(value)


class VideoStream(BaseStream):
    """A stream holding video frames."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._reformatter: VideoReformatter | None = None
        self._rgba: bytearray | None = None
        self._out_width = 0
        self._out_height = 0
        self._algorithm = InterpolationAlgorithm.BICUBIC

    @property
    def width(self) -> int:
        params = self._params
        return int(params.width or 0) if params is not None else 0

    @property
    def height(self) -> int:
        params = self._params
        return int(params.height or 0) if params is not None else 0

    @property
    def aspect_ratio(self) -> tuple[int, int]:
        """Sample aspect ratio as (numerator, denominator); (0, 1) when unknown."""
        params = self._params
        ratio = getattr(params, "sample_aspect_ratio", None) if params is not None else None
        if not ratio:
            return 0, 1
        return ratio.numerator, ratio.denominator

    @property
    def output_size(self) -> tuple[int, int]:
        return self._out_width, self._out_height

    @property
    def algorithm(self) -> InterpolationAlgorithm:
        return self._algorithm

    def _configure_context(self, ctx: Any) -> None:
        super()._configure_context(ctx)
        if self.width > 0 and self.height > 0:
            ctx.width = self.width
            ctx.height = self.height

    def open(self) -> None:
        """Open the stream for decoding at its native size with the default scaling algorithm."""
        self.open_decode(self.width, self.height, InterpolationAlgorithm.parse(settings.default_interpolation))

    def open_decode(
        self,
        width: int,
        height: int,
        algorithm: InterpolationAlgorithm | str = InterpolationAlgorithm.BICUBIC,
    ) -> None:
        """
        Open the stream for decoding into ``width`` x ``height`` RGBA frames.

        On failure every resource allocated so far is released and the
        stream stays closed.
        """
        algorithm = InterpolationAlgorithm.parse(algorithm)
        if width <= 0 or height <= 0:
            raise AllocationError(f"couldn't get the buffer size for {width}x{height}")

        self._open()
        try:
            self._reformatter = VideoReformatter()
            self._configure_output(width, height, algorithm)
        except (MemoryError, av.error.FFmpegError) as e:
            self._release_conversion()
            self._close_decoder()
            raise AllocationError("couldn't allocate the RGBA conversion", native_status(e)) from e

        logger.info(
            "[video] Stream %d: decoding %s %dx%d -> rgba %dx%d (%s)",
            self.index,
            self.codec_name,
            self.width,
            self.height,
            width,
            height,
            algorithm.name,
        )

    def reconfigure(self, width: int, height: int, algorithm: InterpolationAlgorithm | str | None = None) -> None:
        """Change the output geometry of an open stream. The RGBA buffer is reallocated only if its size changes."""
        if not self._opened:
            raise AllocationError(f"stream {self.index} is not open for decoding")
        if width <= 0 or height <= 0:
            raise AllocationError(f"couldn't get the buffer size for {width}x{height}")
        self._configure_output(width, height, InterpolationAlgorithm.parse(algorithm or self._algorithm))

    def _configure_output(self, width: int, height: int, algorithm: InterpolationAlgorithm) -> None:
        size = width * height * RGBA_BYTES_PER_PIXEL
        if self._rgba is None or len(self._rgba) != size:
            self._rgba = bytearray(size)
            logger.debug("[video] Stream %d: allocated %d byte RGBA buffer", self.index, size)
        self._out_width = width
        self._out_height = height
        self._algorithm = algorithm

    def _release_conversion(self) -> None:
        self._reformatter = None
        self._rgba = None
        self._out_width = 0
        self._out_height = 0

    def _pack_rgba(self, plane: Any) -> None:
        """Copy a (possibly padded) RGBA plane into the tightly packed scratch buffer."""
        row = self._out_width * RGBA_BYTES_PER_PIXEL
        line_size = int(plane.line_size)
        view = memoryview(plane)
        if line_size == row:
            self._rgba[:] = view[: row * self._out_height]
            return
        for y in range(self._out_height):
            start = y * line_size
            self._rgba[y * row : (y + 1) * row] = view[start : start + row]

    def read_frame(self) -> tuple[VideoFrame | None, bool]:
        return self.read_video_frame()

    def read_video_frame(self) -> tuple[VideoFrame | None, bool]:
        """
        Decode the next video frame.

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
        try:
            rgba = self._reformatter.reformat(
                decoded,
                width=self._out_width,
                height=self._out_height,
                format=_OUTPUT_PIXEL_FORMAT,
                interpolation=self._algorithm.name,
            )
        except av.error.FFmpegError as e:
            raise DecodeError("couldn't convert the frame to RGBA", native_status(e)) from e

        self._pack_rgba(rgba.planes[0])
        index_coded, index_display = self._frame_indices()

        frame = VideoFrame(
            stream_index=self.index,
            time_base=self.time_base,
            pts=int(decoded.pts) if decoded.pts is not None else None,
            index_coded=index_coded,
            index_display=index_display,
            data=bytes(self._rgba),
            width=self._out_width,
            height=self._out_height,
        )
        return frame, True

    def close(self) -> None:
        """Close the video stream and release the conversion state."""
        super().close()
        self._release_conversion()
