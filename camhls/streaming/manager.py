"""
HLS stream service: the "ensure" flow plus stream lifecycle glue.

Owns the stream registry, the process supervisor and the health monitor for
one set of cameras.
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional
from urllib.parse import quote

from ..config import HLSSettings
from ..sentry import clear_camera_context, set_camera_context, traced
from .ffmpeg import check_ffmpeg_available
from .health import HealthMonitor
from .output import has_output, is_segment_name
from .registry import CameraRegistry
from .state import HealthStatus, StreamRegistry, StreamState
from .supervisor import ProcessSupervisor, SpawnFn

logger = logging.getLogger(__name__)


class HLSError(Exception):
    """A stream request that cannot be satisfied, with its HTTP status and error code."""

    def __init__(self, status_code: int, code: str, message: Optional[str] = None, **extra):
        super().__init__(message or code)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.extra = extra

    def to_dict(self) -> dict:
        body = {"ok": False, "error": self.code}
        if self.message:
            body["message"] = self.message
        body.update(self.extra)
        return body


class HLSService:
    """Starts, serves and stops HLS streams for cameras from a camera registry."""

    def __init__(
        self,
        settings: HLSSettings,
        cameras: CameraRegistry,
        spawn: Optional[SpawnFn] = None,
    ):
        self.settings = settings
        self.cameras = cameras
        self.registry = StreamRegistry()
        self.supervisor = ProcessSupervisor(settings, self.registry, spawn=spawn)
        self.monitor = HealthMonitor(settings, self.registry, self.supervisor)

    async def start(self) -> None:
        """Start health monitoring."""
        Path(self.settings.hls_dir).mkdir(parents=True, exist_ok=True)
        self.monitor.start()
        logger.info(f"HLS service started (output: {self.settings.hls_dir})")

    async def shutdown(self) -> None:
        """Stop health monitoring and kill every transcoder."""
        await self.monitor.stop()
        await self.supervisor.stop_all(cleanup_output=self.settings.cleanup_on_shutdown)
        logger.info("HLS service stopped")

    @traced(op="stream", name="ensure_stream")
    async def ensure(self, camera_id: str, base_url: str) -> str:
        """
        Start (or reuse) the camera's stream and wait for its first output.

        Returns the playlist URL; raises HLSError otherwise. Concurrent calls
        for the same camera share one ffmpeg process.
        """
        camera = await self.cameras.get_camera(camera_id)
        if camera is None or not camera.enabled:
            raise HLSError(404, "camera_not_found")
        if not camera.has_stream_config:
            raise HLSError(400, "camera_has_no_rtsp_url")

        set_camera_context(camera.id, camera.name)
        try:
            loop = asyncio.get_running_loop()
            check = await loop.run_in_executor(None, check_ffmpeg_available, self.settings.ffmpeg_path)
            if not check.ok:
                logger.error(f"ffmpeg not available ({check.binary}): {check.error}")
                raise HLSError(500, "ffmpeg_not_available", check.error, ffmpegPath=check.binary)

            async with self.registry.lock(camera_id):
                existing = self.registry.get(camera_id)
                if (
                    existing is not None
                    and existing.health_status == HealthStatus.DEAD
                    and self.settings.revive_dead_on_ensure
                ):
                    logger.info(f"Reviving dead HLS stream {camera_id} with a fresh restart budget")
                    await self.supervisor.stop(camera_id)

                state = self.supervisor.start(camera_id, camera.rtsp_url, check.binary)

            if state.process is None:
                raise HLSError(500, "hls_start_failed", state.last_error, lastError=state.last_error)

            await self._wait_for_output(camera_id, state)
        finally:
            clear_camera_context()

        return f"{base_url.rstrip('/')}/api/cameras/{quote(camera_id, safe='')}/hls/playlist.m3u8"

    async def _wait_for_output(self, camera_id: str, state: StreamState) -> None:
        loop = asyncio.get_running_loop()
        timeout_ms = self.settings.startup_timeout_ms
        deadline = loop.time() + timeout_ms / 1000
        interval = self.settings.ensure_poll_interval_ms / 1000

        while True:
            # The health monitor may have replaced the state while we slept.
            current = self.registry.get(camera_id) or state

            if has_output(current.directory, current.playlist_path):
                return

            if not current.is_running:
                # Let the reader drain the last stderr lines for the error message.
                if current.reader_task is not None:
                    await asyncio.wait({current.reader_task}, timeout=1.0)
                raise HLSError(
                    502,
                    "hls_ffmpeg_exited",
                    exitCode=current.exit_code,
                    lastError=current.last_error,
                )

            if loop.time() >= deadline:
                raise HLSError(502, "hls_start_timeout", timeoutMs=timeout_ms)

            await asyncio.sleep(interval)

    def playlist_file(self, camera_id: str) -> Path:
        state = self.registry.get(camera_id)
        if state is None:
            raise HLSError(404, "not_started")
        if not state.playlist_path.is_file():
            raise HLSError(404, "playlist_missing")
        return state.playlist_path

    def segment_file(self, camera_id: str, segment: str) -> Path:
        if not is_segment_name(segment):
            raise HLSError(400, "invalid_segment")
        state = self.registry.get(camera_id)
        if state is None:
            raise HLSError(404, "not_started")
        path = state.directory / segment
        if not path.is_file():
            raise HLSError(404, "missing")
        return path

    async def stop(self, camera_id: str) -> bool:
        """Stop a stream (e.g. the camera was deleted). Returns False if none was running."""
        async with self.registry.lock(camera_id):
            return await self.supervisor.stop(camera_id)

    def statuses(self) -> list[dict]:
        return [state.to_dict() for _, state in self.registry.items()]
