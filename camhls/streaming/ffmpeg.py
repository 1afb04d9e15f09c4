"""
ffmpeg invocation helpers: HLS argument list, stderr line classification,
binary availability probe and RTSP credential redaction.
"""

import re
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from urllib.parse import urlsplit, urlunsplit

from ..config import HLSSettings
from .output import SEGMENT_PATTERN

ERROR_KEYWORDS = ("error", "failed", "invalid", "unable", "cannot", "refused", "timeout")
PROGRESS_LINE_RE = re.compile(
    r"^(frame=|fps=|speed=|size=|time=|bitrate=|dup=|drop=)|\s(fps=|speed=|bitrate=)"
)

REDACTED_PLACEHOLDER = "***"


def is_progress_line(line: str) -> bool:
    """ffmpeg progress counters (frame=, fps=, speed=, ...)."""
    return PROGRESS_LINE_RE.search(line) is not None


def is_error_line(line: str) -> bool:
    """
    Error-looking stderr line.

    Progress lines never count, even though they may contain words like
    "size" or a keyword inside a counter.
    """
    if is_progress_line(line):
        return False
    lowered = line.lower()
    return any(keyword in lowered for keyword in ERROR_KEYWORDS)


def build_hls_args(
    settings: HLSSettings,
    stream_url: str,
    directory: Path,
    playlist_path: Path,
) -> list[str]:
    """Build ffmpeg arguments (without the binary) for RTSP -> HLS output."""
    segment_seconds = settings.segment_seconds
    gop = str(settings.gop_size)

    return [
        "-y",
        # Sources with broken or non-monotonic PTS
        "-fflags", "+genpts+discardcorrupt",
        "-use_wallclock_as_timestamps", "1",
        "-avoid_negative_ts", "make_zero",
        "-analyzeduration", str(settings.analyzeduration),
        "-probesize", str(settings.probesize),
        "-rtsp_transport", settings.rtsp_transport,
        "-i", stream_url,

        # Video only
        "-an",
        "-sn",
        "-dn",

        # H.264 yuv420p at a constant frame rate
        "-c:v", "libx264",
        "-tune", "zerolatency",
        "-preset", "veryfast",
        "-crf", str(settings.crf),
        "-pix_fmt", "yuv420p",
        "-r", str(settings.output_fps),
        "-g", gop,
        "-keyint_min", gop,
        "-sc_threshold", "0",
        # A keyframe at every segment boundary so segments appear on time
        "-force_key_frames", f"expr:gte(t,n_forced*{segment_seconds})",

        "-f", "hls",
        "-hls_time", str(segment_seconds),
        "-hls_list_size", str(settings.list_size),
        "-hls_flags", "delete_segments+append_list+omit_endlist",
        "-hls_segment_filename", str(directory / SEGMENT_PATTERN),
        str(playlist_path),
    ]


@dataclass
class FFmpegCheck:
    """Result of probing the ffmpeg binary."""

    ok: bool
    binary: str
    error: Optional[str] = None


def check_ffmpeg_available(binary_path: Optional[str] = None, timeout: float = 10.0) -> FFmpegCheck:
    """
    Check that the transcoder binary can be invoked.

    Only a failure to launch counts; the exit status of "-version" is ignored.
    """
    binary = (binary_path or "").strip() or "ffmpeg"
    try:
        subprocess.run(
            [binary, "-version"],
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            timeout=timeout,
            check=False,
        )
    except (OSError, subprocess.SubprocessError) as e:
        return FFmpegCheck(ok=False, binary=binary, error=f"{type(e).__name__}: {e}")
    return FFmpegCheck(ok=True, binary=binary)


def redact_rtsp_url(url: str) -> str:
    """Replace user and password in an RTSP URL with ***."""
    text = str(url or "")
    try:
        parts = urlsplit(text)
        if parts.username is None and parts.password is None:
            return text

        host = parts.hostname or ""
        if ":" in host:
            host = f"[{host}]"
        if parts.port is not None:
            host = f"{host}:{parts.port}"

        credentials = REDACTED_PLACEHOLDER if parts.username else ""
        if parts.password:
            credentials += f":{REDACTED_PLACEHOLDER}"
        return urlunsplit((parts.scheme, f"{credentials}@{host}", parts.path, parts.query, parts.fragment))
    except ValueError:
        return re.sub(r"^(rtsp://)[^@/]+@", rf"\g<1>{REDACTED_PLACEHOLDER}@", text, flags=re.IGNORECASE)
