"""
ffmpeg process supervisor.

Spawns one transcoder per camera, captures and classifies its stderr, and
kills it on stop or restart. Callers serialize start/stop/restart for a
camera through StreamRegistry.lock(); start() itself never suspends, so two
concurrent callers can never both spawn.
"""

import asyncio
import codecs
import logging
import re
import subprocess
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional

from ..config import HLSSettings
from ..sentry import TracingContext, capture_exception
from .ffmpeg import build_hls_args, is_error_line, is_progress_line, redact_rtsp_url
from .output import cleanup, ensure_writable, stream_paths
from .state import HealthStatus, StreamRegistry, StreamState

logger = logging.getLogger(__name__)

SpawnFn = Callable[[list[str]], subprocess.Popen]

LINE_SPLIT_RE = re.compile(r"[\r\n]+")
STDERR_CHUNK_SIZE = 4096
MAX_PARTIAL_LINE = 16384


def spawn_process(cmd: list[str]) -> subprocess.Popen:
    """Start ffmpeg with stderr captured for logging."""
    return subprocess.Popen(
        cmd,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.PIPE,
    )


class ProcessSupervisor:
    """Owns the ffmpeg processes of the streams in a StreamRegistry."""

    def __init__(
        self,
        settings: HLSSettings,
        registry: StreamRegistry,
        spawn: Optional[SpawnFn] = None,
    ):
        self.settings = settings
        self.registry = registry
        self._spawn = spawn or spawn_process

    def start(
        self,
        camera_id: str,
        stream_url: str,
        binary_path: Optional[str] = None,
    ) -> StreamState:
        """
        Start ffmpeg for a camera, or return the state of the live process.

        Restart counters of a replaced entry are carried over. If the output
        directory is not writable or the binary cannot be launched, a dead
        state with last_error set is returned and nothing is registered.
        """
        camera_id = str(camera_id or "").strip()
        if not camera_id:
            raise ValueError("camera_id is required")

        existing = self.registry.get(camera_id)
        if existing is not None and existing.is_running:
            return existing

        if existing is not None and existing.reader_task and not existing.reader_task.done():
            existing.reader_task.cancel()

        binary = (binary_path or "").strip() or self.settings.ffmpeg_path
        directory, playlist_path = stream_paths(self.settings.hls_dir, camera_id)

        carried = {
            "restart_attempts": existing.restart_attempts if existing else 0,
            "total_restarts": existing.total_restarts if existing else 0,
            "current_backoff_ms": (
                existing.current_backoff_ms if existing and existing.current_backoff_ms
                else self.settings.restart_backoff_ms
            ),
        }

        cleanup(directory)
        output_error = ensure_writable(directory, playlist_path)
        if output_error:
            logger.error(f"HLS output for camera {camera_id} not writable: {output_error}")
            return StreamState(
                camera_id=camera_id,
                directory=directory,
                playlist_path=playlist_path,
                stream_url=stream_url,
                binary_path=binary,
                last_error=f"HLS output not writable: {output_error}",
                health_status=HealthStatus.DEAD,
                **carried,
            )

        args = build_hls_args(self.settings, stream_url, directory, playlist_path)
        logger.debug(f"FFmpeg command: {binary} {' '.join(args).replace(stream_url, redact_rtsp_url(stream_url))}")

        with TracingContext(op="subprocess", description="start_ffmpeg") as span:
            try:
                process = self._spawn([binary, *args])
            except OSError as e:
                logger.error(f"Failed to start ffmpeg for camera {camera_id}: {e}")
                capture_exception(e, camera_id=camera_id, binary=binary)
                return StreamState(
                    camera_id=camera_id,
                    directory=directory,
                    playlist_path=playlist_path,
                    stream_url=stream_url,
                    binary_path=binary,
                    args=args,
                    last_error=f"ffmpeg spawn failed: {type(e).__name__}: {e}",
                    health_status=HealthStatus.DEAD,
                    **carried,
                )
            span.set_data("pid", process.pid)

        state = StreamState(
            camera_id=camera_id,
            directory=directory,
            playlist_path=playlist_path,
            stream_url=stream_url,
            binary_path=binary,
            process=process,
            args=args,
            **carried,
        )
        self.registry.set(state)
        state.reader_task = asyncio.get_running_loop().create_task(self._read_stderr(state))

        logger.info(
            f"Started ffmpeg for camera {camera_id} (PID: {process.pid}): "
            f"{redact_rtsp_url(stream_url)} -> {playlist_path}"
        )
        return state

    async def stop(self, camera_id: str) -> bool:
        """Kill the camera's ffmpeg, clean its output and forget the stream."""
        state = self.registry.get(camera_id)
        if state is None:
            return False

        await self.kill(state)
        cleanup(state.directory)
        if self.registry.get(camera_id) is state:
            self.registry.pop(camera_id)

        logger.info(f"Stopped HLS stream for camera {camera_id}")
        return True

    async def stop_all(self, cleanup_output: bool = False) -> None:
        """Kill every stream (service shutdown)."""
        logger.info(f"Stopping all HLS streams ({len(self.registry)} active)")
        for camera_id, state in self.registry.items():
            try:
                await self.kill(state)
            except OSError as e:
                logger.error(f"Failed to kill ffmpeg for camera {camera_id}: {e}")

            if cleanup_output:
                try:
                    cleanup(state.directory)
                except OSError as e:
                    logger.error(f"Failed to clean up HLS dir for camera {camera_id}: {e}")
        self.registry.clear()

    async def kill(self, state: StreamState) -> None:
        """
        Kill the transcoder immediately (SIGKILL, no grace period) and reap it.

        The stderr reader is cancelled first so a deliberate kill is never
        reported as an unexpected exit.
        """
        task = state.reader_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await asyncio.wait_for(task, timeout=1.0)
            except (asyncio.CancelledError, asyncio.TimeoutError):
                pass

        process = state.process
        if process is None:
            return

        if process.poll() is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass
            await asyncio.get_running_loop().run_in_executor(None, process.wait)

        if state.exit_code is None:
            state.exit_code = process.returncode

    async def _read_stderr(self, state: StreamState) -> None:
        """
        Read ffmpeg stderr in the background until the process exits.

        ffmpeg ends progress lines with a bare carriage return, so stderr is
        read in chunks and split on both line endings. Each stream blocks its
        own reader thread, never a worker of the loop's shared executor.
        """
        process = state.process
        if process is None or process.stderr is None:
            return

        loop = asyncio.get_running_loop()
        read = getattr(process.stderr, "read1", process.stderr.read)
        decoder = codecs.getincrementaldecoder("utf-8")(errors="ignore")
        executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix=f"ffmpeg-stderr-{state.camera_id}"
        )
        pending = ""
        try:
            while True:
                chunk = await loop.run_in_executor(executor, read, STDERR_CHUNK_SIZE)
                if not chunk:
                    break
                pending = self._handle_stderr(state, pending + decoder.decode(chunk))

            pending += decoder.decode(b"", final=True)
            if pending:
                self._handle_line(state, pending)

            # stderr closed - wait for the exit status
            while process.poll() is None:
                await asyncio.sleep(0.1)
        finally:
            # The thread ends on its own once the killed process closes the pipe
            executor.shutdown(wait=False)

        exit_code = process.returncode
        if state.exit_code is None:
            state.exit_code = exit_code
        if exit_code:
            logger.error(f"HLS ffmpeg exited with code {exit_code} (camera {state.camera_id})")

    def _handle_stderr(self, state: StreamState, text: str) -> str:
        """Record every complete line in text and return the unterminated rest."""
        *lines, partial = LINE_SPLIT_RE.split(text)
        for line in lines:
            self._handle_line(state, line)

        if len(partial) > MAX_PARTIAL_LINE:
            self._handle_line(state, partial)
            return ""
        return partial

    def _handle_line(self, state: StreamState, raw_line: str) -> None:
        line = raw_line.strip()
        if not line:
            return
        if state.stream_url:
            line = line.replace(state.stream_url, redact_rtsp_url(state.stream_url))

        error = is_error_line(line)
        state.record_stderr_line(line, error)
        if error:
            logger.error(f"HLS ffmpeg stderr ({state.camera_id}): {line}")
        elif self.settings.debug and not is_progress_line(line):
            logger.info(f"HLS ffmpeg stderr ({state.camera_id}): {line}")
