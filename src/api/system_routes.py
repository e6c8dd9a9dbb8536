"""
Health, status snapshot and live status stream routes
"""

import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from backend_double import SyntheticBackend
from link_errors import StreamClosed, TransportError
from .control_routes import CommandEnvelope

logger = logging.getLogger(__name__)


def create_system_routes(backend: SyntheticBackend):
    """Create health and status routes"""
    router = APIRouter(tags=["system"])

    @router.get("/health", response_model=CommandEnvelope)
    async def health():
        """Service fingerprint used by client-side discovery"""
        _, payload = await backend.handle_get("/health")
        return payload

    @router.get("/api/status/system", response_model=CommandEnvelope)
    async def system_status():
        """Full chamber status snapshot"""
        _, payload = await backend.handle_get("/api/status/system")
        return payload

    @router.get("/api/control/status", response_model=CommandEnvelope)
    async def control_status():
        _, payload = await backend.handle_get("/api/control/status")
        return payload

    @router.websocket("/ws/system-status")
    async def system_status_stream(websocket: WebSocket):
        """Current status on connect, then one frame per state change"""
        await websocket.accept()
        logger.info("Status stream client connected")

        async def forward():
            async with backend.stream("ws/system-status") as frames:
                async for frame in frames:
                    await websocket.send_text(frame)

        forwarder = asyncio.create_task(forward())
        # The client never sends data; a receive only completes on disconnect
        listener = asyncio.create_task(websocket.receive())
        try:
            done, _ = await asyncio.wait({forwarder, listener}, return_when=asyncio.FIRST_COMPLETED)
            if forwarder in done:
                error = forwarder.exception()
                if isinstance(error, (StreamClosed, TransportError)):
                    logger.info(f"Status stream closed by backend: {error}")
                    await websocket.close(code=1001)
                elif error is not None and not isinstance(error, WebSocketDisconnect):
                    logger.error(f"Status stream failed: {error!r}")
                    await websocket.close(code=1011)
            else:
                logger.info("Status stream client disconnected")
        finally:
            for task in (forwarder, listener):
                task.cancel()
            await asyncio.gather(forwarder, listener, return_exceptions=True)

    return router
