# HTTP Helper for Backend Connections
# Session configuration for discovery probes, command requests and the status stream

import aiohttp
import logging
from typing import Optional

logger = logging.getLogger(__name__)


def create_backend_session(
    connect_timeout_seconds: float = 5,
    max_connections: int = 20,
) -> aiohttp.ClientSession:
    """
    Create aiohttp session shared by probes, commands and the websocket stream.
    No total timeout: callers pass one per request, and the stream lives indefinitely.
    """
    connector = aiohttp.TCPConnector(
        limit=max_connections,       # Caps discovery fan-out at the socket level
        limit_per_host=4,            # Stream + concurrent commands to one backend
        ssl=False,                   # Local controller backends speak plain HTTP
        enable_cleanup_closed=True
    )

    return aiohttp.ClientSession(
        connector=connector,
        timeout=aiohttp.ClientTimeout(total=None, sock_connect=connect_timeout_seconds)
    )


def request_timeout(seconds: Optional[float]) -> aiohttp.ClientTimeout:
    """Per-request timeout; None disables it"""
    return aiohttp.ClientTimeout(total=seconds)
