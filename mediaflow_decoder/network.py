"""
Process-wide network subsystem state.

The application initializes the network layer once before opening
network-backed sources and deinitializes it after every such source is
closed. Calls are reference counted, so independent components may each
pair their own ``initialize()`` / ``deinitialize()``.

FFmpeg brings its network layer up lazily on first use, so this module
records the lifecycle the application declared rather than driving the
native calls itself.
"""

import errno
import logging
import threading

from mediaflow_decoder.exceptions import NetworkError

logger = logging.getLogger(__name__)

_lock = threading.Lock()
_refcount = 0


def initialize() -> None:
    global _refcount
    with _lock:
        _refcount += 1
        if _refcount == 1:
            logger.info("[network] Network subsystem initialized")


def deinitialize() -> None:
    global _refcount
    with _lock:
        if _refcount == 0:
            raise NetworkError("network subsystem is not initialized", -errno.EINVAL)
        _refcount -= 1
        if _refcount == 0:
            logger.info("[network] Network subsystem deinitialized")


def is_initialized() -> bool:
    with _lock:
        return _refcount > 0
