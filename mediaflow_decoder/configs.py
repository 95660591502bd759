from datetime import timedelta
from typing import Dict, Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings


class Options(BaseModel):
    """Options applied when opening a media source"""

    input_format: Optional[str] = Field(
        None, description="Short name of a demuxer to force instead of format auto-detection. Example: v4l2, mpegts"
    )
    timeout: Optional[timedelta] = Field(
        None, description="Maximum time to wait when connecting to a network source (TCP/HTTP and RTSP)."
    )
    extra: Dict[str, str] = Field(default_factory=dict, description="Raw demuxer options passed through verbatim.")

    def timeout_microseconds(self) -> Optional[int]:
        if self.timeout is None:
            return None
        return self.timeout // timedelta(microseconds=1)

    def to_demuxer_options(self, defaults: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        """
        Render the options as the key/value dictionary handed to the demuxer.
        """
        options = dict(defaults or {})
        options.update(self.extra)

        timeout_us = self.timeout_microseconds()
        if timeout_us is not None:
            options["stimeout"] = str(timeout_us)  # rtsp
            options["timeout"] = str(timeout_us)  # tcp/http

        return options


class Settings(BaseSettings):
    log_level: str = "INFO"  # The logging level to use.
    default_interpolation: str = "BICUBIC"  # Scaling algorithm used by VideoStream.open().
    open_timeout: Optional[float] = None  # Default connect timeout in seconds when Options.timeout is unset.
    demuxer_options: Dict[str, str] = Field(default_factory=dict)  # Demuxer options applied to every open.

    class Config:
        env_file = ".env"
        env_prefix = "MEDIAFLOW_DECODER_"
        extra = "ignore"


settings = Settings()
