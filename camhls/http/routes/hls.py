"""
HLS streaming routes.
"""

from litestar import Controller, Request, delete, get
from litestar.response import File

from ...streaming import HLSService

PLAYLIST_MEDIA_TYPE = "application/vnd.apple.mpegurl"
SEGMENT_MEDIA_TYPE = "video/mp2t"


def _request_base_url(request: Request) -> str:
    """Scheme and host the client used, honouring reverse proxy headers."""
    headers = request.headers
    scheme = headers.get("x-forwarded-proto", "").split(",")[0].strip() or request.url.scheme
    host = (
        headers.get("x-forwarded-host", "").split(",")[0].strip()
        or headers.get("host", "")
        or request.url.netloc
    )
    return f"{scheme}://{host}"


class HLSController(Controller):
    """Per-camera HLS endpoints used by the dashboard player."""

    path = "/api/cameras/{camera_id:str}/hls"

    @get("/ensure")
    async def ensure_stream(
        self, camera_id: str, request: Request, hls_service: HLSService
    ) -> dict:
        """Start or reuse the camera's stream and wait for the first output."""
        playlist_url = await hls_service.ensure(camera_id, _request_base_url(request))
        return {"ok": True, "playlistUrl": playlist_url}

    @get("/playlist.m3u8")
    async def get_playlist(self, camera_id: str, hls_service: HLSService) -> File:
        return File(
            path=hls_service.playlist_file(camera_id),
            media_type=PLAYLIST_MEDIA_TYPE,
            content_disposition_type="inline",
            headers={"Cache-Control": "no-store"},
        )

    @get("/{segment:str}")
    async def get_segment(
        self, camera_id: str, segment: str, hls_service: HLSService
    ) -> File:
        return File(
            path=hls_service.segment_file(camera_id, segment),
            media_type=SEGMENT_MEDIA_TYPE,
            content_disposition_type="inline",
        )

    @delete("/", status_code=200)
    async def stop_stream(self, camera_id: str, hls_service: HLSService) -> dict:
        """Stop the stream, e.g. when the camera is removed from the dashboard."""
        stopped = await hls_service.stop(camera_id)
        return {"ok": True, "stopped": stopped}
