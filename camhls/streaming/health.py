"""
HLS stream health monitoring.

ffmpeg has no heartbeat, so liveness is judged from the filesystem: the
newest segment's modification time and whether the process has exited.
Unhealthy streams are restarted with exponential backoff until the restart
budget runs out, after which they stay dead until stopped and started again.
"""

import asyncio
import logging
from typing import Optional

from ..config import HLSSettings
from ..sentry import capture_exception, capture_message
from .output import cleanup, newest_segment_mtime_ms, prune_stale
from .state import HealthStatus, StreamRegistry, StreamState, now_ms
from .supervisor import ProcessSupervisor

logger = logging.getLogger(__name__)

MAX_STDERR_LINES_TO_LOG = 10

REASON_OK = "ok"
REASON_STARTING = "starting"
REASON_NOT_RUNNING = "ffmpeg_not_running"
REASON_STARTUP_TIMEOUT = "startup_timeout"
REASON_STALE = "stale_segments"


class HealthMonitor:
    """Periodic health check over every stream in the registry."""

    def __init__(
        self,
        settings: HLSSettings,
        registry: StreamRegistry,
        supervisor: ProcessSupervisor,
    ):
        self.settings = settings
        self.registry = registry
        self.supervisor = supervisor

        self._task: Optional[asyncio.Task] = None
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the background health check loop."""
        if self.is_running:
            return

        self._running = True
        self._task = asyncio.create_task(self._run())
        logger.info(
            f"Starting HLS health monitoring (interval: {self.settings.health_check_interval_ms}ms)"
        )

    async def stop(self) -> None:
        """Stop the health check loop."""
        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            logger.info("Stopped HLS health monitoring")

    async def _run(self) -> None:
        # Ticks run back to back, so a slow tick delays the next one instead
        # of overlapping it.
        interval = self.settings.health_check_interval_ms / 1000
        while self._running:
            try:
                await asyncio.sleep(interval)
                await self.check_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"HLS health check error: {e}")
                capture_exception(e)

    def evaluate(self, state: StreamState) -> tuple[bool, str]:
        """Return (healthy, reason) for one stream."""
        if not state.is_running:
            return False, REASON_NOT_RUNNING

        newest_ms = newest_segment_mtime_ms(state.directory)
        if newest_ms is None:
            if now_ms() - state.started_at_ms > self.settings.startup_timeout_ms:
                return False, REASON_STARTUP_TIMEOUT
            return True, REASON_STARTING

        if now_ms() - newest_ms > self.settings.stale_threshold_seconds * 1000:
            return False, REASON_STALE

        return True, REASON_OK

    async def check_once(self) -> None:
        """Run one health tick over all registered streams, in registry order."""
        for camera_id, state in self.registry.items():
            # Stopped or replaced earlier in this tick
            if self.registry.get(camera_id) is not state:
                continue

            try:
                await self._check_stream(camera_id, state)
            except Exception as e:
                logger.error(f"Health check error for camera {camera_id}: {e}")
                capture_exception(e, camera_id=camera_id)

    async def _check_stream(self, camera_id: str, state: StreamState) -> None:
        # Freshness first, so a stream that just produced a segment is never
        # flagged unhealthy in the same tick.
        self._record_freshness(camera_id, state)

        prune_stale(state.directory, self.settings.max_segment_age_seconds)

        healthy, reason = self.evaluate(state)
        if healthy:
            return

        if reason == REASON_STALE:
            state.health_status = HealthStatus.STALE
        else:
            state.health_status = HealthStatus.DEAD

        # Once the exhausted budget has been reported, a dead stream is left alone.
        can_still_attempt = (
            state.restart_attempts <= self.settings.max_restart_attempts
            and not state.max_attempts_logged
        )
        if state.health_status != HealthStatus.DEAD or can_still_attempt:
            logger.warning(f"HLS stream {camera_id} unhealthy: {reason}")
            await self.attempt_restart(camera_id)

    def _record_freshness(self, camera_id: str, state: StreamState) -> None:
        newest_ms = newest_segment_mtime_ms(state.directory)
        if newest_ms is None or newest_ms == state.last_segment_time_ms:
            return

        state.last_segment_time_ms = newest_ms
        state.last_successful_segment_ms = newest_ms

        if now_ms() - newest_ms < self.settings.stale_threshold_seconds * 1000:
            if state.restart_attempts > 0:
                logger.info(f"HLS stream {camera_id} recovered, resetting restart counter")
            state.restart_attempts = 0
            state.current_backoff_ms = self.settings.restart_backoff_ms
            state.health_status = HealthStatus.HEALTHY
            state.max_attempts_logged = False

    async def attempt_restart(self, camera_id: str) -> bool:
        """
        Restart an unhealthy stream if the budget and backoff window allow it.

        Returns True if a new ffmpeg process was spawned.
        """
        state = self.registry.get(camera_id)
        if state is None:
            return False

        max_attempts = self.settings.max_restart_attempts
        if state.restart_attempts >= max_attempts:
            if not state.max_attempts_logged:
                self._log_restart_budget_exhausted(camera_id, state)
                state.max_attempts_logged = True
            state.health_status = HealthStatus.DEAD
            return False

        if now_ms() - state.started_at_ms < state.current_backoff_ms:
            return False

        async with self.registry.lock(camera_id):
            if self.registry.get(camera_id) is not state:
                return False

            logger.info(
                f"Attempting to restart HLS stream {camera_id} "
                f"(attempt {state.restart_attempts + 1}/{max_attempts})"
            )

            await self.supervisor.kill(state)
            cleanup(state.directory)

            state.current_backoff_ms = min(state.current_backoff_ms * 2, self.settings.max_backoff_ms)
            state.restart_attempts += 1
            state.total_restarts += 1
            state.health_status = HealthStatus.RESTARTING

            new_state = self.supervisor.start(camera_id, state.stream_url, state.binary_path)

        if new_state.process is None:
            # Nothing was registered; the old entry stays and is retried once
            # the new backoff window has passed.
            state.last_error = new_state.last_error
            state.started_at_ms = now_ms()
            return False
        return True

    def _log_restart_budget_exhausted(self, camera_id: str, state: StreamState) -> None:
        max_attempts = self.settings.max_restart_attempts
        logger.error(f"HLS stream {camera_id} exceeded max restart attempts ({max_attempts})")

        if state.exit_code is not None and state.exit_code != 0:
            logger.error(f"HLS stream {camera_id} ffmpeg exit code: {state.exit_code}")

        if state.error_lines:
            logger.error(f"HLS stream {camera_id} error messages:")
            for line in state.error_lines:
                logger.error(f"  {line}")
        elif state.stderr_tail:
            recent = list(state.stderr_tail)[-MAX_STDERR_LINES_TO_LOG:]
            logger.error(
                f"HLS stream {camera_id} no specific errors captured. "
                f"Recent stderr (last {len(recent)} lines):"
            )
            for line in recent:
                logger.error(f"  {line}")
        else:
            logger.error(f"HLS stream {camera_id} no error information available (stderr empty)")

        capture_message(
            f"HLS stream {camera_id} exceeded max restart attempts",
            level="error",
            camera_id=camera_id,
            exit_code=state.exit_code,
            error_lines=list(state.error_lines),
        )
