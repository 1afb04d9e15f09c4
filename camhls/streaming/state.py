"""
Stream state and the registry that owns it.
"""

import asyncio
import subprocess
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Deque, Iterator, Optional

from .ffmpeg import redact_rtsp_url

MAX_STDERR_TAIL_LINES = 60
MAX_ERROR_LINES = 30


def now_ms() -> float:
    """Wall clock in epoch milliseconds (comparable with file mtimes)."""
    return time.time() * 1000


class HealthStatus(str, Enum):
    STARTING = "starting"
    HEALTHY = "healthy"
    STALE = "stale"
    DEAD = "dead"
    RESTARTING = "restarting"


@dataclass
class StreamState:
    """One transcoder incarnation for a camera plus its restart bookkeeping."""

    camera_id: str
    directory: Path
    playlist_path: Path
    stream_url: str
    binary_path: str
    process: Optional[subprocess.Popen] = None
    args: list[str] = field(default_factory=list)
    started_at_ms: float = field(default_factory=now_ms)

    last_error: Optional[str] = None
    stderr_tail: Deque[str] = field(default_factory=lambda: deque(maxlen=MAX_STDERR_TAIL_LINES))
    error_lines: Deque[str] = field(default_factory=lambda: deque(maxlen=MAX_ERROR_LINES))
    exit_code: Optional[int] = None

    last_segment_time_ms: Optional[float] = None
    last_successful_segment_ms: Optional[float] = None

    restart_attempts: int = 0
    total_restarts: int = 0
    current_backoff_ms: float = 0
    health_status: HealthStatus = HealthStatus.STARTING
    max_attempts_logged: bool = False

    reader_task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        """Check if the transcoder is still running (records exit_code once it is not)."""
        if self.process is None:
            return False
        code = self.process.poll()
        if code is None:
            return True
        if self.exit_code is None:
            self.exit_code = code
        return False

    @property
    def uptime_seconds(self) -> float:
        return (now_ms() - self.started_at_ms) / 1000

    def record_stderr_line(self, line: str, is_error: bool) -> None:
        self.stderr_tail.append(line)
        if is_error:
            self.error_lines.append(line)
        self.last_error = line

    def to_dict(self) -> dict:
        """Status snapshot safe to expose over HTTP."""
        running = self.is_running
        return {
            "cameraId": self.camera_id,
            "healthStatus": self.health_status.value,
            "running": running,
            "pid": self.process.pid if self.process is not None else None,
            "exitCode": self.exit_code,
            "streamUrl": redact_rtsp_url(self.stream_url),
            "startedAtMs": self.started_at_ms,
            "lastSegmentTimeMs": self.last_segment_time_ms,
            "lastSuccessfulSegmentMs": self.last_successful_segment_ms,
            "restartAttempts": self.restart_attempts,
            "totalRestarts": self.total_restarts,
            "currentBackoffMs": self.current_backoff_ms,
            "lastError": self.last_error,
            "errorLines": list(self.error_lines),
        }


class StreamRegistry:
    """
    Camera id -> StreamState.

    Owned by one HLSService; start, stop and restart for a camera are
    serialized through lock(camera_id).
    """

    def __init__(self):
        self._streams: dict[str, StreamState] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def get(self, camera_id: str) -> Optional[StreamState]:
        return self._streams.get(camera_id)

    def set(self, state: StreamState) -> None:
        self._streams[state.camera_id] = state

    def pop(self, camera_id: str) -> Optional[StreamState]:
        return self._streams.pop(camera_id, None)

    def items(self) -> list[tuple[str, StreamState]]:
        """Snapshot in registration order, safe to iterate across awaits."""
        return list(self._streams.items())

    def clear(self) -> None:
        self._streams.clear()

    def lock(self, camera_id: str) -> asyncio.Lock:
        lock = self._locks.get(camera_id)
        if lock is None:
            lock = self._locks[camera_id] = asyncio.Lock()
        return lock

    def __contains__(self, camera_id: object) -> bool:
        return camera_id in self._streams

    def __len__(self) -> int:
        return len(self._streams)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._streams))
