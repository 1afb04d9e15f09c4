"""
HTTP server for HLS stream access.
"""

from .app import create_app

__all__ = ["create_app"]
