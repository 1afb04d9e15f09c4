"""
HTTP routes for the HLS API.
"""

from .hls import HLSController
from .streams import StreamsController

__all__ = [
    "HLSController",
    "StreamsController",
]
