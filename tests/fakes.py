import io
import itertools
import os
import time
from pathlib import Path
from typing import Callable, Optional

_pids = itertools.count(4000)


class FakeProcess:
    """Stands in for a subprocess.Popen running ffmpeg."""

    def __init__(self, cmd: list[str], stderr: bytes = b"", exit_code: Optional[int] = None):
        self.args = cmd
        self.pid = next(_pids)
        self.stderr = io.BytesIO(stderr)
        self.returncode = exit_code
        self.killed = False

    @property
    def playlist_path(self) -> Path:
        return Path(self.args[-1])

    @property
    def directory(self) -> Path:
        return self.playlist_path.parent

    def poll(self) -> Optional[int]:
        return self.returncode

    def wait(self, timeout: Optional[float] = None) -> Optional[int]:
        return self.returncode

    def kill(self) -> None:
        if self.returncode is None:
            self.returncode = -9
            self.killed = True

    def exit(self, code: int) -> None:
        self.returncode = code

    def write_segment(self, number: int, age_seconds: float = 0) -> Path:
        return write_segment(self.directory, number, age_seconds)

    def write_playlist(self) -> Path:
        self.playlist_path.write_text("#EXTM3U\n#EXT-X-VERSION:3\n#EXT-X-TARGETDURATION:2\n")
        return self.playlist_path


def write_segment(directory: Path, number: int, age_seconds: float = 0) -> Path:
    path = Path(directory) / f"seg_{number}.ts"
    path.write_bytes(b"\x47" * 188)
    if age_seconds:
        set_age(path, age_seconds)
    return path


def set_age(path: Path, age_seconds: float) -> None:
    mtime = time.time() - age_seconds
    os.utime(path, (mtime, mtime))


class FakeSpawner:
    """Spawn hook that records every ffmpeg launch."""

    def __init__(self):
        self.processes: list[FakeProcess] = []
        self.stderr = b""
        self.exit_code: Optional[int] = None
        self.on_spawn: Optional[Callable[[FakeProcess], None]] = None
        self.error: Optional[OSError] = None

    def __call__(self, cmd: list[str]) -> FakeProcess:
        if self.error is not None:
            raise self.error
        process = FakeProcess(cmd, stderr=self.stderr, exit_code=self.exit_code)
        self.processes.append(process)
        if self.on_spawn:
            self.on_spawn(process)
        return process

    @property
    def count(self) -> int:
        return len(self.processes)


def produce_output(process: FakeProcess) -> None:
    process.write_playlist()
    process.write_segment(0)


