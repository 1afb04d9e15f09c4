"""
Camera registry collaborators.

The stream supervisor only ever reads from the registry: given a camera id it
needs the camera's RTSP URL and whether it is enabled.
"""

import json
import logging
from pathlib import Path
from typing import Optional
from urllib.parse import quote

import aiohttp

from .camera import CameraConfig

logger = logging.getLogger(__name__)


class CameraRegistry:
    """Read-only source of camera records."""

    async def get_camera(self, camera_id: str) -> Optional[CameraConfig]:
        raise NotImplementedError


class StaticCameraRegistry(CameraRegistry):
    """Cameras from an in-memory list, usually loaded from a JSON file."""

    def __init__(self, cameras: Optional[list[CameraConfig]] = None):
        self._cameras: dict[str, CameraConfig] = {c.id: c for c in cameras or []}

    @classmethod
    def from_file(cls, path: str | Path) -> "StaticCameraRegistry":
        """
        Load cameras from a JSON file.

        Accepts either a list of camera records or {"cameras": [...]}.
        """
        data = json.loads(Path(path).read_text())
        if isinstance(data, dict):
            data = data.get("cameras", [])

        cameras = [CameraConfig.from_dict(c) for c in data]
        logger.info(f"Loaded {len(cameras)} cameras from {path}")
        return cls(cameras)

    @property
    def cameras(self) -> dict[str, CameraConfig]:
        return self._cameras

    def add(self, camera: CameraConfig) -> None:
        self._cameras[camera.id] = camera

    def remove(self, camera_id: str) -> bool:
        return self._cameras.pop(camera_id, None) is not None

    async def get_camera(self, camera_id: str) -> Optional[CameraConfig]:
        return self._cameras.get(camera_id)


class BackendCameraRegistry(CameraRegistry):
    """Cameras fetched from the dashboard backend over HTTP."""

    def __init__(self, backend_url: str, token: Optional[str] = None, timeout: float = 5.0):
        self.backend_url = backend_url.rstrip("/")
        self.token = token
        self.timeout = timeout

    def _get_headers(self) -> dict:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def get_camera(self, camera_id: str) -> Optional[CameraConfig]:
        """Get camera details from backend. Returns None if unknown or unreachable."""
        url = f"{self.backend_url}/api/cameras/{quote(camera_id, safe='')}"
        try:
            timeout = aiohttp.ClientTimeout(total=self.timeout)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(url, headers=self._get_headers()) as resp:
                    if resp.status == 200:
                        data = await resp.json()
                        return CameraConfig.from_dict(data.get("camera", data))
                    elif resp.status == 404:
                        logger.info(f"Camera {camera_id} not found on backend")
                        return None
                    else:
                        error = await resp.text()
                        logger.error(f"Failed to get camera {camera_id}: {resp.status} - {error}")
                        return None
        except (aiohttp.ClientError, TimeoutError, ValueError, KeyError) as e:
            logger.error(f"Error getting camera {camera_id}: {e}")
            return None
