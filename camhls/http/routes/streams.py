"""
Stream status routes.
"""

from litestar import Controller, get

from ...streaming import HealthStatus, HLSService


class StreamsController(Controller):
    """Stream status endpoints."""

    path = "/api/streams"

    @get("/")
    async def list_streams(self, hls_service: HLSService) -> dict:
        """List all registered streams with their health."""
        streams = hls_service.statuses()

        return {
            "streams": streams,
            "total": len(streams),
            "healthyCount": sum(
                1 for s in streams if s["healthStatus"] == HealthStatus.HEALTHY.value
            ),
        }
