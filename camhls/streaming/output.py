"""
Per-camera HLS output directories.

Each camera writes into its own directory under the HLS root. A directory only
ever holds the playlist and segment files named seg_<n>.ts; anything else
found there is left alone.
"""

import hashlib
import logging
import os
import re
import shutil
import time
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

PLAYLIST_NAME = "playlist.m3u8"
SEGMENT_PATTERN = "seg_%d.ts"
SEGMENT_NAME_RE = re.compile(r"seg_[0-9]+\.ts")

MAX_DIR_BASE_LENGTH = 32
HASH_LENGTH = 10
WRITE_PROBE_NAME = ".write_probe"


def is_segment_name(name: str) -> bool:
    """True only for plain segment file names like seg_12.ts."""
    return SEGMENT_NAME_RE.fullmatch(name) is not None


def derive_directory_name(camera_id: str) -> str:
    """
    Map a camera id to a directory name that is safe on disk.

    The readable prefix is sanitized and truncated; the hash suffix is taken
    from the raw id so two ids that sanitize to the same prefix still get
    different directories.
    """
    raw = str(camera_id or "").strip()
    digest = hashlib.sha1(raw.encode("utf-8")).hexdigest()[:HASH_LENGTH]
    base = re.sub(r"[^a-z0-9_-]+", "_", raw.lower()).strip("_")[:MAX_DIR_BASE_LENGTH]
    return f"{base or 'camera'}_{digest}"


def stream_paths(root: str | Path, camera_id: str) -> tuple[Path, Path]:
    """Return (directory, playlist_path) for a camera under the HLS root."""
    directory = Path(root) / derive_directory_name(camera_id)
    return directory, directory / PLAYLIST_NAME


def _describe_error(err: Exception) -> str:
    return f"{type(err).__name__}: {err}"


def ensure_writable(directory: Path, playlist_path: Path) -> Optional[str]:
    """
    Make sure ffmpeg will be able to write the playlist and segments.

    Returns None when the directory is usable, otherwise a readable error.
    """
    try:
        if directory.exists() and not directory.is_dir():
            return f"HLS output path is not a directory: {directory}"
        directory.mkdir(parents=True, exist_ok=True)

        # A directory or special node where the playlist should be makes
        # ffmpeg fail with EINVAL on some filesystems.
        if playlist_path.exists() and not playlist_path.is_file():
            if playlist_path.is_dir():
                shutil.rmtree(playlist_path)
            else:
                playlist_path.unlink()

        probe = directory / WRITE_PROBE_NAME
        probe.write_text("ok")
        probe.unlink()
        return None
    except OSError as e:
        return _describe_error(e)


def _segment_entries(directory: Path):
    try:
        with os.scandir(directory) as entries:
            for entry in entries:
                if entry.is_file(follow_symlinks=False) and is_segment_name(entry.name):
                    yield entry
    except (FileNotFoundError, NotADirectoryError):
        return


def cleanup(directory: Path) -> int:
    """Remove segments and the playlist. Returns the number of files removed."""
    removed = 0
    for entry in list(_segment_entries(directory)):
        try:
            os.unlink(entry.path)
            removed += 1
        except FileNotFoundError:
            pass

    playlist_path = directory / PLAYLIST_NAME
    try:
        if playlist_path.is_dir() and not playlist_path.is_symlink():
            shutil.rmtree(playlist_path)
        else:
            playlist_path.unlink()
        removed += 1
    except (FileNotFoundError, NotADirectoryError):
        pass

    return removed


def prune_stale(directory: Path, max_age_seconds: float) -> int:
    """Delete segments older than max_age_seconds. Returns the number removed."""
    now = time.time()
    removed = 0
    for entry in list(_segment_entries(directory)):
        try:
            if now - entry.stat().st_mtime > max_age_seconds:
                os.unlink(entry.path)
                removed += 1
        except FileNotFoundError:
            pass

    if removed:
        logger.debug(f"Pruned {removed} stale segments from {directory}")
    return removed


def newest_segment_mtime_ms(directory: Path) -> Optional[float]:
    """Modification time (epoch ms) of the newest segment, or None."""
    newest = None
    for entry in _segment_entries(directory):
        try:
            mtime_ms = entry.stat().st_mtime * 1000
        except FileNotFoundError:
            continue
        if newest is None or mtime_ms > newest:
            newest = mtime_ms
    return newest


def has_output(directory: Path, playlist_path: Path) -> bool:
    """True once ffmpeg has written the playlist or at least one segment."""
    if playlist_path.is_file():
        return True
    return next(_segment_entries(directory), None) is not None
