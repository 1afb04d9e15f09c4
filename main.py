#!/usr/bin/env python3
"""
camhls - Main entry point.

This service is responsible for:
1. Transcoding camera RTSP streams to local HLS on demand
2. Watching every stream's output and restarting stalled transcoders
3. Serving playlists and segments to the dashboard via HTTP
"""

import asyncio
import logging
import os

import uvicorn
import uvloop
from dotenv import load_dotenv

from camhls.config import HLSSettings
from camhls.http import create_app
from camhls.sentry import init_sentry
from camhls.streaming import (
    BackendCameraRegistry,
    CameraRegistry,
    HLSService,
    StaticCameraRegistry,
)

# Load environment variables
load_dotenv()

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if os.getenv("LOG_LEVEL", "").upper() == "DEBUG" else logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def build_camera_registry() -> CameraRegistry | None:
    """Pick the camera registry from BACKEND_URL or CAMERAS_FILE."""
    backend_url = os.getenv('BACKEND_URL')
    if backend_url:
        logger.info(f"Camera registry: backend {backend_url}")
        return BackendCameraRegistry(backend_url, token=os.getenv('BACKEND_TOKEN'))

    cameras_file = os.getenv('CAMERAS_FILE', 'data/cameras.json')
    if not os.path.exists(cameras_file):
        logger.error(f"BACKEND_URL not set and cameras file {cameras_file} not found")
        return None
    return StaticCameraRegistry.from_file(cameras_file)


async def main():
    """Main entry point."""
    http_port = int(os.getenv('HTTP_PORT', '8080'))

    settings = HLSSettings.from_env()
    cameras = build_camera_registry()
    if cameras is None:
        return

    init_sentry(
        dsn=os.getenv('SENTRY_DSN'),
        environment=os.getenv('SENTRY_ENVIRONMENT', 'production'),
    )

    logger.info("Starting camhls")
    logger.info(f"HLS output: {settings.hls_dir}")
    logger.info(f"ffmpeg: {settings.ffmpeg_path}")

    hls_service = HLSService(settings, cameras)
    app = create_app(hls_service)

    config = uvicorn.Config(
        app=app,
        host="0.0.0.0",
        port=http_port,
        log_level="info",
        access_log=False,
    )
    http_server = uvicorn.Server(config)

    # uvicorn handles SIGINT/SIGTERM; the app's shutdown hook kills every ffmpeg
    logger.info(f"HTTP server starting on http://0.0.0.0:{http_port}")
    try:
        await http_server.serve()
    except asyncio.CancelledError:
        logger.info("Shutting down...")


if __name__ == '__main__':
    # Use uvloop for better async performance
    uvloop.run(main())
