"""
Streaming module: camera registry, ffmpeg supervision and HLS health monitoring.
"""

from .camera import CameraConfig
from .health import HealthMonitor
from .manager import HLSError, HLSService
from .registry import BackendCameraRegistry, CameraRegistry, StaticCameraRegistry
from .state import HealthStatus, StreamRegistry, StreamState
from .supervisor import ProcessSupervisor

__all__ = [
    "CameraConfig",
    "CameraRegistry",
    "StaticCameraRegistry",
    "BackendCameraRegistry",
    "HLSService",
    "HLSError",
    "HealthMonitor",
    "HealthStatus",
    "ProcessSupervisor",
    "StreamRegistry",
    "StreamState",
]
