"""
Error taxonomy for the decode pipeline.

Every error raised from a failed native call carries the FFmpeg status
(a negative errno-style integer) in ``code`` so callers can log or match
on it. The one recoverable native condition (EAGAIN, "decoder needs more
input") is never raised; it is returned as a retry result instead.
"""

import av


class MediaError(Exception):
    """Base exception for all pipeline errors."""

    def __init__(self, message: str, code: int | None = None):
        self.code = code
        self.message = message
        super().__init__(f"{code}: {message}" if code is not None else message)


class AllocationError(MediaError):
    """A native resource could not be created."""


class OpenError(MediaError):
    """The source could not be opened."""


class StreamDiscoveryError(MediaError):
    """Sub-stream metadata could not be probed."""


class DecodeError(MediaError):
    """Submitting or retrieving a unit failed for a reason other than EAGAIN."""


class FilterInitError(MediaError):
    """A bitstream filter could not be built or initialized."""


class NoFilterError(MediaError):
    """A filter operation was requested but no filter is applied."""


class SeekError(MediaError):
    """The container refused to seek."""


class NetworkError(MediaError):
    """The process-wide network subsystem reported a failure."""


class StreamClosedError(MediaError):
    """A read was attempted on a stream or container that is not open for decoding."""


def native_status(exc: BaseException) -> int | None:
    """Extract the FFmpeg status code from a PyAV error, if it has one."""
    if isinstance(exc, av.error.FFmpegError):
        errno = exc.errno
        if errno is None:
            return None
        return -abs(errno)
    return None
