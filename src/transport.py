"""
Transport seam for every network call made by the chamber link.

Discovery, the connection session and the command synchronizer only talk to a
BackendTransport. AiohttpTransport is the real network implementation; the
synthetic backend double provides an in-process one with the same surface.
"""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional, Tuple

import aiohttp

from http_helper import create_backend_session, request_timeout
from link_errors import StreamClosed, TransportError

logger = logging.getLogger(__name__)


class BackendTransport:
    """Interface: JSON over HTTP plus one text-frame stream"""

    async def get_json(self, url: str, timeout: Optional[float] = None) -> Tuple[int, Any]:
        """Return (status, decoded JSON or None); raise TransportError on network failure"""
        raise NotImplementedError

    async def post_json(self, url: str, body: Optional[dict] = None,
                        timeout: Optional[float] = None) -> Tuple[int, Any]:
        raise NotImplementedError

    def open_stream(self, url: str, timeout: Optional[float] = None):
        """Async context manager yielding an async iterator of text frames.

        Entering it performs the handshake (TransportError on failure); the
        iterator ends or raises StreamClosed when the stream goes away.
        """
        raise NotImplementedError

    async def close(self) -> None:
        pass


def _decode(raw: bytes) -> Any:
    # UnicodeDecodeError is a ValueError too: undecodable bodies count as "no JSON"
    try:
        return json.loads(raw.decode("utf-8"))
    except ValueError:
        return None


class AiohttpTransport(BackendTransport):
    """Real network transport on a shared aiohttp session"""

    def __init__(self, session: Optional[aiohttp.ClientSession] = None,
                 connect_timeout: float = 5, max_connections: int = 20,
                 heartbeat: Optional[float] = 30):
        self._own_session = session is None
        self._session = session
        self.connect_timeout = connect_timeout
        self.max_connections = max_connections
        self.heartbeat = heartbeat

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = create_backend_session(self.connect_timeout, self.max_connections)
            self._own_session = True
        return self._session

    async def close(self):
        if self._own_session and self._session is not None and not self._session.closed:
            await self._session.close()

    async def get_json(self, url, timeout=None):
        try:
            async with self.session.get(url, timeout=request_timeout(timeout)) as response:
                return response.status, _decode(await response.read())
        except asyncio.TimeoutError:
            raise TransportError(url, "timeout")
        except aiohttp.ClientError as e:
            raise TransportError(url, str(e) or type(e).__name__)

    async def post_json(self, url, body=None, timeout=None):
        logger.debug(f"POST {url} body={body}")
        try:
            async with self.session.post(url, json=body, timeout=request_timeout(timeout)) as response:
                return response.status, _decode(await response.read())
        except asyncio.TimeoutError:
            raise TransportError(url, "timeout")
        except aiohttp.ClientError as e:
            raise TransportError(url, str(e) or type(e).__name__)

    @asynccontextmanager
    async def open_stream(self, url, timeout=None):
        try:
            ws = await asyncio.wait_for(
                self.session.ws_connect(url, heartbeat=self.heartbeat),
                timeout=timeout or self.connect_timeout
            )
        except asyncio.TimeoutError:
            raise TransportError(url, "websocket handshake timeout")
        except aiohttp.ClientError as e:
            raise TransportError(url, str(e) or type(e).__name__)

        try:
            yield self._frames(ws)
        finally:
            if not ws.closed:
                await ws.close()

    async def _frames(self, ws: aiohttp.ClientWebSocketResponse) -> AsyncIterator[str]:
        async for message in ws:
            if message.type == aiohttp.WSMsgType.TEXT:
                yield message.data
            elif message.type == aiohttp.WSMsgType.BINARY:
                yield message.data.decode('utf-8', errors='replace')
            elif message.type == aiohttp.WSMsgType.ERROR:
                raise StreamClosed(f"websocket error: {ws.exception()}")
        raise StreamClosed(f"websocket closed (code={ws.close_code})")
