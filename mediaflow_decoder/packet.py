"""
Compressed packet snapshot.

A ``Packet`` is taken from the container's reusable read slot right after a
read (and after the stream's bitstream filter, if one is applied). It owns
its payload, so it stays valid when the slot is reused by the next read.
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from mediaflow_decoder.stream import StreamType

if TYPE_CHECKING:
    from mediaflow_decoder.container import Container

# AV_PKT_FLAG_* bits, in the order PyAV exposes them as booleans
PACKET_FLAG_KEY = 0x0001
PACKET_FLAG_CORRUPT = 0x0002
PACKET_FLAG_DISCARD = 0x0004
PACKET_FLAG_TRUSTED = 0x0008
PACKET_FLAG_DISPOSABLE = 0x0010

_FLAG_ATTRIBUTES = (
    ("is_keyframe", PACKET_FLAG_KEY),
    ("is_corrupt", PACKET_FLAG_CORRUPT),
    ("is_discard", PACKET_FLAG_DISCARD),
    ("is_trusted", PACKET_FLAG_TRUSTED),
    ("is_disposable", PACKET_FLAG_DISPOSABLE),
)


@dataclass(frozen=True, slots=True)
class Packet:
    """A piece of encoded data read from the container, belonging to one stream."""

    stream_index: int
    data: bytes
    pts: int | None
    dts: int | None
    pos: int
    duration: int
    size: int
    flags: int
    container: "Container | None" = field(default=None, repr=False, compare=False)

    @classmethod
    def from_native(cls, native: Any, container: "Container | None" = None) -> "Packet":
        """Snapshot a PyAV packet. The payload is copied."""
        flags = 0
        for attribute, bit in _FLAG_ATTRIBUTES:
            if getattr(native, attribute, False):
                flags |= bit

        size = int(native.size or 0)
        data = bytes(native) if size > 0 else b""

        return cls(
            stream_index=int(native.stream_index),
            data=data,
            pts=int(native.pts) if native.pts is not None else None,
            dts=int(native.dts) if native.dts is not None else None,
            pos=int(native.pos) if native.pos is not None else -1,
            duration=int(native.duration) if native.duration is not None else 0,
            size=size,
            flags=flags,
            container=container,
        )

    @property
    def is_keyframe(self) -> bool:
        return bool(self.flags & PACKET_FLAG_KEY)

    @property
    def type(self) -> StreamType:
        """Media type of the stream the packet belongs to."""
        if self.container is None:
            return StreamType.UNKNOWN
        return self.container.streams[self.stream_index].type
