"""
HLS streaming configuration.

Defaults only - runtime values come from environment variables (a local
.env file is loaded by main.py before settings are read).
"""

import os
from typing import Literal, Optional

from pydantic import BaseModel, Field

ENV_PREFIX = "RTSP_HLS_"


class HLSSettings(BaseModel):
    """Settings for transcoding, health monitoring and the ensure flow."""

    # Output
    hls_dir: str = "./data/hls"
    ffmpeg_path: str = "ffmpeg"

    # Stream configuration
    segment_seconds: int = Field(default=2, gt=0)
    list_size: int = Field(default=6, gt=0)
    output_fps: int = Field(default=15, gt=0)
    gop: Optional[int] = Field(default=None, gt=0)
    probesize: str = "10M"
    analyzeduration: str = "10M"
    rtsp_transport: Literal["tcp", "udp"] = "tcp"
    crf: str = "20"
    startup_timeout_ms: int = Field(default=15000, gt=0)
    debug: bool = False

    # Health monitoring
    health_check_interval_ms: int = Field(default=10000, gt=0)
    max_segment_age_seconds: float = Field(default=30, gt=0)
    stale_threshold_seconds: float = Field(default=15, gt=0)
    max_restart_attempts: int = Field(default=5, ge=0)
    restart_backoff_ms: int = Field(default=2000, gt=0)
    max_backoff_ms: int = Field(default=60000, gt=0)
    cleanup_on_shutdown: bool = False

    # Ensure flow
    ensure_poll_interval_ms: int = Field(default=250, gt=0)
    revive_dead_on_ensure: bool = True

    @property
    def gop_size(self) -> int:
        """Keyframe interval in frames (one GOP per segment unless overridden)."""
        return self.gop or self.segment_seconds * self.output_fps

    @classmethod
    def from_env(cls, environ: Optional[dict] = None) -> "HLSSettings":
        """
        Build settings from RTSP_HLS_* environment variables.

        FFMPEG_PATH is also accepted without the prefix. Unset variables keep
        their defaults; invalid values raise pydantic.ValidationError.
        """
        env = os.environ if environ is None else environ
        values = {}

        for name in cls.model_fields:
            key = f"{ENV_PREFIX}{name.upper()}"
            if name == "hls_dir":
                key = f"{ENV_PREFIX}DIR"
            raw = env.get(key)
            if raw is not None and raw.strip() != "":
                values[name] = raw.strip()

        ffmpeg_path = env.get("FFMPEG_PATH", "").strip()
        if ffmpeg_path and "ffmpeg_path" not in values:
            values["ffmpeg_path"] = ffmpeg_path

        return cls.model_validate(values)
