"""
Media container: source opening, stream discovery and packet routing.

Opens a file or network source with PyAV, classifies every sub-stream
into a ``VideoStream``, ``AudioStream`` or ``UnknownStream`` (index-stable:
``streams[i]`` is always sub-stream ``i`` of the source) and serves the
compressed packets of all streams one at a time.

Architecture:
  av.open --> classify streams
  read_packet: demux step --> [stream bitstream filter] --> Packet snapshot
  stream.read_frame: decode current packet --> convert --> Frame

Usage:
    with Container.open("movie.mkv") as media:
        video = media.video_streams[0]
        video.open()
        media.open_decode()
        while True:
            packet, more = media.read_packet()
            if not more:
                break
            if packet is None or packet.stream_index != video.index:
                continue
            frame, _ = video.read_frame()
            ...
        # Drain the frames the decoder still buffers
        while True:
            frame, more = video.read_frame()
            if frame is None and not more:
                break
            ...
        media.close_decode()

``Container.frames()`` runs this loop for all opened streams.
"""

import logging
from datetime import timedelta
from typing import Any, Iterator

import av

from mediaflow_decoder import network
from mediaflow_decoder.audio import AudioStream
from mediaflow_decoder.configs import Options, settings
from mediaflow_decoder.exceptions import (
    DecodeError,
    OpenError,
    SeekError,
    StreamClosedError,
    StreamDiscoveryError,
    native_status,
)
from mediaflow_decoder.frame import Frame
from mediaflow_decoder.packet import Packet
from mediaflow_decoder.stream import BaseStream, UnknownStream
from mediaflow_decoder.timebase import AV_TIME_BASE, TimeBase
from mediaflow_decoder.video import VideoStream

logger = logging.getLogger(__name__)


def _find_decoder(native_stream: Any):
    """Look up a decoder for the stream's codec, or None when FFmpeg has none."""
    ctx = getattr(native_stream, "codec_context", None)
    name = getattr(ctx, "name", None)
    if not name:
        return None
    try:
        return av.Codec(name, "r")
    except (av.error.FFmpegError, ValueError):
        return None


class Container:
    """
    A media source containing audio, video and other types of streams.

    Not safe for concurrent use: one container (and its streams) per
    thread of control.
    """

    def __init__(self, source: str, native: Any, options: Options) -> None:
        self.source = source
        self.options = options
        self._native = native
        self._streams: list[BaseStream] = []
        self._demux: Iterator | None = None
        self._decode_open = False
        self._exhausted = False
        # Reusable read slot: the last raw packet, and the packet queued for its stream's decoder
        self._packet = None
        self._submit = None
        self._submit_index = -1
        self._closed = False

    @classmethod
    def open(cls, source: str, options: Options | None = None) -> "Container":
        """
        Open ``source`` (a path or URL) and discover its streams.

        Raises:
            OpenError: the source could not be opened.
            StreamDiscoveryError: the sub-stream metadata could not be probed.

        A source that opens but exposes no streams yields a container with
        an empty ``streams`` list.
        """
        options = options or Options()
        if options.timeout is None and settings.open_timeout:
            options = options.model_copy(update={"timeout": timedelta(seconds=settings.open_timeout)})

        if "://" in source and not source.startswith("file:") and not network.is_initialized():
            logger.warning("[container] Opening network source %s without network.initialize()", source)

        demuxer_options = options.to_demuxer_options(settings.demuxer_options)
        try:
            native = av.open(source, mode="r", format=options.input_format, options=demuxer_options)
        except av.error.FFmpegError as e:
            raise OpenError(f"couldn't open file {source}", native_status(e)) from e
        except ValueError as e:
            # Unknown input format name
            raise OpenError(f"couldn't find input format {options.input_format!r}: {e}") from e

        container = cls(source, native, options)
        try:
            container._find_streams()
        except StreamDiscoveryError:
            native.close()
            raise

        logger.info(
            "[container] Opened %s (%s): %d streams",
            source,
            container.format_name or "?",
            len(container._streams),
        )
        return container

    def __enter__(self) -> "Container":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def _find_streams(self) -> None:
        """Classify every native stream, preserving the source order."""
        try:
            native_streams = list(self._native.streams)
        except av.error.FFmpegError as e:
            raise StreamDiscoveryError("couldn't find stream information", native_status(e)) from e

        if not native_streams:
            logger.warning("[container] %s exposes no streams", self.source)

        streams: list[BaseStream] = []
        for native_stream in native_streams:
            codec = _find_decoder(native_stream)
            if codec is None:
                stream = UnknownStream(self, native_stream)
            elif native_stream.type == "video":
                stream = VideoStream(self, native_stream, codec)
            elif native_stream.type == "audio":
                stream = AudioStream(self, native_stream, codec)
            else:
                stream = UnknownStream(self, native_stream, codec)
            streams.append(stream)
            logger.debug("[container] Stream %d: %s (%s)", stream.index, type(stream).__name__, stream.codec_name)

        self._streams = streams

    # ── Metadata ─────────────────────────────────────────────────────

    @property
    def streams(self) -> list[BaseStream]:
        return list(self._streams)

    @property
    def stream_count(self) -> int:
        return len(self._streams)

    @property
    def video_streams(self) -> list[VideoStream]:
        return [s for s in self._streams if isinstance(s, VideoStream)]

    @property
    def audio_streams(self) -> list[AudioStream]:
        return [s for s in self._streams if isinstance(s, AudioStream)]

    @property
    def duration(self) -> timedelta:
        """Overall duration of the media."""
        ticks = self._native.duration or 0
        return TimeBase(1, AV_TIME_BASE).to_timedelta(max(ticks, 0))

    @property
    def format_name(self) -> str:
        fmt = getattr(self._native, "format", None)
        return (getattr(fmt, "name", None) or "") if fmt is not None else ""

    @property
    def format_long_name(self) -> str:
        fmt = getattr(self._native, "format", None)
        return (getattr(fmt, "long_name", None) or "") if fmt is not None else ""

    @property
    def format_mime_type(self) -> str:
        fmt = getattr(self._native, "format", None)
        mime = getattr(fmt, "mime_type", None) if fmt is not None else None
        return mime or ""

    @property
    def exhausted(self) -> bool:
        return self._exhausted

    # ── Packet reading ───────────────────────────────────────────────

    def open_decode(self) -> None:
        """Allocate the reusable packet slot. ``close_decode()`` should be called afterwards."""
        self._decode_open = True
        self._packet = None
        self._submit = None

    def close_decode(self) -> None:
        self._release_slot()
        self._demux = None
        self._decode_open = False

    def _release_slot(self) -> None:
        self._packet = None
        self._submit = None
        self._submit_index = -1

    def _next_native_packet(self):
        if self._demux is None:
            self._demux = self._native.demux()
        return next(self._demux)

    def read_packet(self) -> tuple[Packet | None, bool]:
        """
        Read the next packet from the media.

        Returns:
            (packet, True) when a packet was read,
            (None, True) when the source asked to try again,
            (None, False) once the source is exhausted (on every later call too).
        """
        if not self._decode_open:
            raise StreamClosedError("the container is not open for decoding")
        if self._exhausted:
            return None, False

        pending = self._next_filtered_pending()
        if pending is not None:
            return pending, True

        try:
            native_packet = self._next_native_packet()
        except StopIteration:
            return self._mark_exhausted()
        except BlockingIOError:
            # The demux generator is finished after raising; the next call resumes from the format context
            self._demux = None
            logger.debug("[container] Source asked to try again")
            return None, True
        except EOFError:
            return self._mark_exhausted()
        except av.error.FFmpegError as e:
            self._demux = None
            raise DecodeError("couldn't read the packet", native_status(e)) from e

        if not native_packet.size:
            # Flush packets PyAV emits after the last real packet
            return None, True

        self._packet = native_packet
        stream = self._streams[native_packet.stream_index]
        filt = stream.bitstream_filter
        out_packet = native_packet
        if filt is not None:
            out_packet = filt.apply(native_packet)
            if out_packet is None:
                return None, True

        self._queue_for_decode(out_packet, stream.index)
        return Packet.from_native(out_packet, self), True

    def _next_filtered_pending(self) -> Packet | None:
        """Serve extra packets a bitstream filter produced from a single input."""
        for stream in self._streams:
            filt = stream.bitstream_filter
            if filt is not None and filt.has_pending:
                out_packet = filt.next_pending()
                self._queue_for_decode(out_packet, stream.index)
                return Packet.from_native(out_packet, self)
        return None

    def _queue_for_decode(self, native_packet, stream_index: int) -> None:
        self._submit = native_packet
        self._submit_index = stream_index

    def _mark_exhausted(self) -> tuple[None, bool]:
        self._exhausted = True
        self._demux = None
        self._release_slot()
        logger.debug("[container] End of %s", self.source)
        return None, False

    def _take_packet(self, stream: BaseStream):
        """Hand the queued packet to ``stream`` if it belongs to it. Each packet is submitted once."""
        if self._submit is None or self._submit_index != stream.index:
            return None
        packet = self._submit
        self._submit = None
        return packet

    def _release_packet(self, stream: BaseStream) -> None:
        """Unreference the raw packet once ``stream`` produced a unit from it."""
        self._packet = None

    def frames(self, *streams: BaseStream) -> Iterator[Frame]:
        """
        Decode the given opened streams (all opened streams when none are given) until the media ends.

        Drives the read loop: reads packets, routes each to its stream,
        retries when the decoder needs more input and drains decoders at
        the end. The packet slot is closed again afterwards when this call
        opened it.
        """
        targets = {s.index: s for s in (streams or self._streams) if s.opened}
        if not targets:
            return
        opened_here = not self._decode_open
        if opened_here:
            self.open_decode()

        try:
            while True:
                packet, more = self.read_packet()
                if not more:
                    break
                if packet is None or packet.stream_index not in targets:
                    continue
                frame, _ = targets[packet.stream_index].read_frame()
                if frame is not None:
                    yield frame

            for stream in targets.values():
                while True:
                    frame, more = stream.read_frame()
                    if frame is not None:
                        yield frame
                    elif not more:
                        break
        finally:
            if opened_here and not self._closed:
                self.close_decode()

    # ── Seeking ──────────────────────────────────────────────────────

    def seek(self, ticks: int, stream: BaseStream) -> None:
        """
        Move the read cursor backward to the keyframe at or before ``ticks`` (in ``stream`` time base units).

        Decoders of all opened streams are flushed since their buffered
        frames belong to the old position.
        """
        try:
            self._native.seek(ticks, stream=stream._native, backward=True, any_frame=False)
        except av.error.FFmpegError as e:
            raise SeekError("couldn't rewind the stream", native_status(e)) from e

        self._demux = None
        self._exhausted = False
        self._release_slot()
        for s in self._streams:
            if s.opened:
                s._reset_decoder()
        logger.debug("[container] Seeked stream %d to %d ticks", stream.index, ticks)

    def close(self) -> None:
        """Close the media container and release the source."""
        if self._closed:
            logger.warning("[container] %s is already closed", self.source)
            return
        for stream in self._streams:
            if stream.opened:
                stream.close()
        self.close_decode()
        self._native.close()
        self._native = None
        self._closed = True
        logger.info("[container] Closed %s", self.source)
