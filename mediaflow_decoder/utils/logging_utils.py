import logging

from mediaflow_decoder.configs import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: str | int | None = None) -> None:
    """Configure root logging for applications embedding the decoder."""
    logging.basicConfig(level=level or settings.log_level, format=LOG_FORMAT)
    # FFmpeg's own log output is forwarded to the "libav" logger by PyAV
    logging.getLogger("libav").setLevel(logging.WARNING)
