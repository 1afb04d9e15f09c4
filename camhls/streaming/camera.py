"""
Camera registry record.
"""

from dataclasses import dataclass


@dataclass
class CameraConfig:
    """Camera configuration from the camera registry."""

    id: str
    name: str
    rtsp_url: str = ""
    enabled: bool = True

    @classmethod
    def from_dict(cls, data: dict) -> "CameraConfig":
        """Create from a registry record ({id, name, enabled, rtsp: {url}})."""
        rtsp = data.get("rtsp") or {}
        if isinstance(rtsp, str):
            rtsp = {"url": rtsp}

        return cls(
            id=str(data["id"]).strip(),
            name=data.get("name") or str(data["id"]),
            rtsp_url=str(rtsp.get("url") or "").strip(),
            enabled=data.get("enabled", True) is not False,
        )

    @property
    def has_stream_config(self) -> bool:
        """Check if camera has RTSP URL configured."""
        return bool(self.rtsp_url)
