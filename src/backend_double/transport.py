"""
In-process transport that routes requests to synthetic backends by host:port
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Dict, List, Optional, Tuple
from urllib.parse import urlsplit

from link_errors import TransportError
from transport import BackendTransport
from .backend import SyntheticBackend

logger = logging.getLogger(__name__)


class SyntheticTransport(BackendTransport):
    """BackendTransport backed by SyntheticBackend instances; no sockets involved.

    Addresses without a registered backend behave like hosts that refuse
    connections. Every call is recorded in `requests` as (method, url).
    """

    def __init__(self, backends: Optional[Dict[str, SyntheticBackend]] = None):
        self.backends: Dict[str, SyntheticBackend] = dict(backends or {})
        self.requests: List[Tuple[str, str]] = []

    def register(self, address: str, backend: SyntheticBackend) -> SyntheticBackend:
        """address is "host:port" """
        self.backends[address] = backend
        return backend

    def count(self, method: Optional[str] = None, path: Optional[str] = None) -> int:
        return sum(
            1 for m, url in self.requests
            if (method is None or m == method) and (path is None or urlsplit(url).path == path)
        )

    def _route(self, url: str) -> Tuple[SyntheticBackend, str]:
        parts = urlsplit(url)
        backend = self.backends.get(f"{parts.hostname}:{parts.port}")
        if backend is None or not backend.online:
            raise TransportError(url, "connection refused")
        return backend, parts.path or '/'

    async def get_json(self, url, timeout=None):
        self.requests.append(('GET', url))
        backend, path = self._route(url)
        return await self._bounded(url, backend.handle_get(path), timeout)

    async def post_json(self, url, body=None, timeout=None):
        self.requests.append(('POST', url))
        backend, path = self._route(url)
        return await self._bounded(url, backend.handle_post(path, body), timeout)

    async def _bounded(self, url, call, timeout):
        try:
            return await asyncio.wait_for(call, timeout)
        except asyncio.TimeoutError:
            raise TransportError(url, "timeout")

    @asynccontextmanager
    async def open_stream(self, url, timeout=None):
        self.requests.append(('STREAM', url))
        backend, _ = self._route(url)
        async with backend.stream(url) as frames:
            yield frames
