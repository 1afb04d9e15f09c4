"""
Litestar application setup for the HLS HTTP surface.
"""

import logging
import time

from litestar import Litestar, Request, Response, get
from litestar.config.cors import CORSConfig
from litestar.di import Provide
from litestar.middleware import AbstractMiddleware
from litestar.types import Receive, Scope, Send

from ..streaming import HLSError, HLSService
from .routes import HLSController, StreamsController

logger = logging.getLogger(__name__)
http_logger = logging.getLogger("http.requests")

# Paths to exclude from logging (noisy endpoints)
EXCLUDED_PATHS = {
    "/health",
}

# Playlists and segments are polled every couple of seconds by each player
EXCLUDED_SUFFIXES = (
    ".m3u8",
    ".ts",
)


class RequestLoggingMiddleware(AbstractMiddleware):
    """Middleware to log HTTP requests."""

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        path = scope.get("path", "")

        # Skip excluded paths
        if path in EXCLUDED_PATHS or path.endswith(EXCLUDED_SUFFIXES):
            await self.app(scope, receive, send)
            return

        method = scope.get("method", "?")
        start_time = time.time()

        # Capture response status
        status_code = 0

        async def send_wrapper(message):
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message.get("status", 0)
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            duration_ms = (time.time() - start_time) * 1000
            # Log format: METHOD /path STATUS DURATIONms
            http_logger.info(f"{method} {path} {status_code} {duration_ms:.1f}ms")


def hls_error_handler(request: Request, exc: HLSError) -> Response:
    """Render HLSError as {ok: false, error: <code>, ...}."""
    if exc.status_code >= 500:
        logger.warning(f"{request.method} {request.url.path} failed: {exc.code} {exc.message or ''}".rstrip())
    return Response(content=exc.to_dict(), status_code=exc.status_code)


def create_app(hls_service: HLSService) -> Litestar:
    """
    Create and configure the Litestar application.

    Args:
        hls_service: HLSService instance for stream operations

    Returns:
        Configured Litestar application
    """

    # Dependency providers
    async def provide_hls_service() -> HLSService:
        return hls_service

    # Health check endpoint (outside controllers)
    @get("/health")
    async def health_check() -> dict:
        return {"status": "ok"}

    # Dashboard UI is served from another origin
    cors_config = CORSConfig(
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app = Litestar(
        route_handlers=[
            health_check,
            HLSController,
            StreamsController,
        ],
        dependencies={
            "hls_service": Provide(provide_hls_service),
        },
        exception_handlers={
            HLSError: hls_error_handler,
        },
        on_startup=[hls_service.start],
        on_shutdown=[hls_service.shutdown],
        middleware=[RequestLoggingMiddleware],
        cors_config=cors_config,
        debug=False,
    )

    return app
