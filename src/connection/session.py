"""
Connection session: one live status stream with a bounded reconnect policy
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional

from discovery.manager import BackendDiscovery
from discovery.models import Endpoint
from event_hub import (ConnectionStateChanged, Connected, Disconnected, EventHub,
                       MaxReconnectsReached, StatusUpdate)
from link_context import ConnectionState, LinkContext
from link_errors import NoBackendFound, StreamClosed, TransportError
from transport import BackendTransport
from .models import FrameError, Snapshot, parse_frame

logger = logging.getLogger(__name__)


class ConnectionSession:
    """Owns the /ws/system-status stream of the discovered backend.

    State machine: IDLE -> DISCOVERING -> CONNECTED -> DISCONNECTED -> DISCOVERING ...
    Failed attempts are retried up to max_reconnect_attempts with a fixed delay;
    every rediscover_every-th attempt resets the discovery cache first so a
    backend that moved is found again. disconnect() returns to IDLE and stops
    reconnecting.
    """

    def __init__(self, config: Dict, context: LinkContext, discovery: BackendDiscovery,
                 transport: BackendTransport, hub: EventHub,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.context = context
        self.discovery = discovery
        self.transport = transport
        self.hub = hub
        self._sleep = sleep

        self.stream_path = config.get('stream_path', '/ws/system-status')
        self.reconnect_interval = config.get('reconnect_interval_seconds', 2)
        self.max_reconnect_attempts = config.get('max_reconnect_attempts', 5)
        self.rediscover_every = max(1, config.get('rediscover_every', 3))
        self.connection_timeout = config.get('connection_timeout_seconds', 10)

        self.endpoint: Optional[Endpoint] = None
        self.reconnect_attempts = 0
        self.exhausted = False
        self._snapshot: Optional[Snapshot] = None
        self._sequence = 0
        self._task: Optional[asyncio.Task] = None
        self._connected = asyncio.Event()

    # ================== STATE ==================

    @property
    def state(self) -> ConnectionState:
        return self.context.connection_state

    @property
    def is_connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def latest_snapshot(self) -> Optional[Snapshot]:
        return self._snapshot

    @property
    def snapshot_sequence(self) -> int:
        return self._snapshot.sequence if self._snapshot else 0

    def _set_state(self, new_state: ConnectionState) -> None:
        previous = self.context.connection_state
        if previous == new_state:
            return
        self.context.connection_state = new_state
        if new_state == ConnectionState.CONNECTED:
            self._connected.set()
        else:
            self._connected.clear()
        logger.debug(f"[SESSION] {previous.value} -> {new_state.value}")
        self.hub.publish(ConnectionStateChanged(previous=previous, current=new_state))

    # ================== PUBLIC API ==================

    def start(self) -> None:
        """Begin discovery and streaming in the background (no-op if already running)"""
        if self.running:
            return
        self.exhausted = False
        self._task = asyncio.create_task(self._run(), name="chamber-link-session")

    async def reconnect(self) -> None:
        """Manual reconnect: fresh attempt counter and fresh discovery"""
        logger.info("[SESSION] Manual reconnection with discovery requested")
        await self._cancel_task()
        self.reconnect_attempts = 0
        self.discovery.reset()
        self.start()

    async def disconnect(self) -> None:
        """Close the stream now, stop reconnecting and return to IDLE"""
        await self._cancel_task()
        self.endpoint = None
        self._set_state(ConnectionState.IDLE)
        logger.info("[SESSION] Disconnected by request")

    async def wait_connected(self, timeout: Optional[float] = None) -> bool:
        try:
            await asyncio.wait_for(self._connected.wait(), timeout)
            return True
        except asyncio.TimeoutError:
            return False

    async def _cancel_task(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    # ================== RUN LOOP ==================

    async def _run(self) -> None:
        while True:
            try:
                await self._connect_once()
                reason = "stream ended"
            except NoBackendFound as e:
                reason = str(e)
            except TransportError as e:
                reason = f"handshake failed: {e.reason}"
            except StreamClosed as e:
                reason = str(e) or "stream closed"
            except Exception as e:
                logger.exception("[SESSION] Unexpected error in connection loop")
                reason = f"unexpected error: {e}"

            self.endpoint = None
            self._set_state(ConnectionState.DISCONNECTED)
            logger.warning(f"[SESSION] Disconnected: {reason}")
            self.hub.publish(Disconnected(reason=reason))

            if self.reconnect_attempts >= self.max_reconnect_attempts:
                self.exhausted = True
                logger.error(f"[SESSION] Max reconnection attempts reached ({self.reconnect_attempts})")
                self.hub.publish(MaxReconnectsReached(attempts=self.reconnect_attempts))
                return

            self.reconnect_attempts += 1
            logger.info(f"[SESSION] Attempting reconnect {self.reconnect_attempts}/{self.max_reconnect_attempts}")
            await self._sleep(self.reconnect_interval)

            if self.reconnect_attempts % self.rediscover_every == 0:
                logger.info("[SESSION] Retrying backend discovery...")
                self.discovery.reset()

    async def _connect_once(self) -> None:
        self._set_state(ConnectionState.DISCOVERING)
        result = await self.discovery.discover()
        url = result.endpoint.ws_url(self.stream_path)
        logger.info(f"[SESSION] Connecting to {url}")

        async with self.transport.open_stream(url, timeout=self.connection_timeout) as frames:
            self.endpoint = result.endpoint
            self.reconnect_attempts = 0
            self._set_state(ConnectionState.CONNECTED)
            logger.info(f"[SESSION] Connected to {result.endpoint}")
            self.hub.publish(Connected(endpoint=result.endpoint))
            try:
                async for raw in frames:
                    self._handle_frame(raw)
            finally:
                self.endpoint = None
                if self.state == ConnectionState.CONNECTED:
                    self._set_state(ConnectionState.DISCONNECTED)

    def _handle_frame(self, raw: str) -> None:
        try:
            snapshot = parse_frame(raw, self._sequence + 1)
        except FrameError as e:
            logger.warning(f"[SESSION] Skipping status frame: {e}")
            return
        self._sequence = snapshot.sequence
        self._snapshot = snapshot
        self.hub.publish(StatusUpdate(snapshot=snapshot))
