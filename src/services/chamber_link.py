"""
Chamber Link - orchestrator wiring discovery, the status stream and command sync
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from backend_double import SyntheticBackend, SyntheticBackendConfig, SyntheticTransport
from command_sync import CommandSynchronizer
from config_loader import connection_settings, discovery_settings, load_config, setup_logging
from connection import ConnectionSession
from discovery import BackendDiscovery, CandidateResolver, Endpoint, ServiceVerifier
from event_hub import ALL_EVENTS, EventHub, LinkEvent, MaxReconnectsReached, StatusUpdate
from link_context import LinkContext
from link_errors import MaxReconnectsExceeded, NoBackendFound
from transport import AiohttpTransport, BackendTransport

logger = logging.getLogger(__name__)

# Events logged at INFO; everything else goes to DEBUG
_NOTABLE_EVENTS = {
    'connection-state', 'discovery-complete', 'discovery-failed', 'connected',
    'disconnected', 'max-reconnects-reached', 'command-success', 'command-error',
}


class ChamberLink:
    """Builds every link component from configuration and runs the background services"""

    def __init__(self, config_path: Optional[str] = None, config: Optional[Dict] = None,
                 transport: Optional[BackendTransport] = None,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        if config is None:
            config = load_config(config_path)
            setup_logging(config)
        self.config = config

        discovery_config = discovery_settings(config)
        connection_config = connection_settings(config)

        self.synthetic_backend: Optional[SyntheticBackend] = None
        if transport is None:
            if config['dev_backend'].get('synthetic'):
                transport = self._synthetic_transport(discovery_config)
            else:
                transport = AiohttpTransport(
                    connect_timeout=discovery_config['check_timeout'],
                    max_connections=discovery_config['max_concurrent'],
                    heartbeat=connection_config.get('heartbeat_seconds', 30)
                )
        self.transport = transport

        self.context = LinkContext.create(discovery_config)
        self.hub = EventHub()
        self.resolver = CandidateResolver(discovery_config, self.context)
        self.verifier = ServiceVerifier(discovery_config, self.transport)
        self.discovery = BackendDiscovery(discovery_config, self.context, self.resolver,
                                          self.verifier, self.hub)
        self.session = ConnectionSession(connection_config, self.context, self.discovery,
                                         self.transport, self.hub, sleep=sleep)
        self.commands = CommandSynchronizer(config, self.session, self.transport, self.hub, sleep=sleep)

        self.recovery_interval = connection_config.get('recovery_check_seconds', 10)
        self.status_log_interval = connection_config.get('status_log_seconds', 60)

        self.running = False
        self.tasks: List[asyncio.Task] = []
        self._gave_up = asyncio.Event()
        self._stopped = asyncio.Event()
        self._status_updates = 0

    def _synthetic_transport(self, discovery_config: Dict) -> SyntheticTransport:
        """In-process backend at the override address (or localhost) for offline runs"""
        dev = self.config['dev_backend']
        address = discovery_config.get('override_address') or f"127.0.0.1:{discovery_config['port']}"
        endpoint = Endpoint.parse(address, default_port=discovery_config['port'])
        discovery_config['override_address'] = address

        self.synthetic_backend = SyntheticBackend(SyntheticBackendConfig.from_config(dev))
        logger.info(f"[LAUNCH] Using synthetic backend at {endpoint}")
        return SyntheticTransport({f"{endpoint.host}:{endpoint.port}": self.synthetic_backend})

    # ================== LIFECYCLE ==================

    async def start(self):
        """Start the session and background services; returns immediately"""
        logger.info("[LAUNCH] Starting chamber link...")
        self.hub.subscribe(ALL_EVENTS, self._log_event)
        self.hub.subscribe(MaxReconnectsReached.name, self._on_gave_up)

        self.running = True
        self._stopped.clear()
        self._gave_up.clear()
        self.session.start()
        self.tasks = [
            asyncio.create_task(self._recovery_service()),
            asyncio.create_task(self._monitoring_service())
        ]
        logger.info(f"Chamber link started ({len(self.tasks)} background tasks)")

    async def stop(self):
        """Stop background services, close the stream and release the transport"""
        if not self.running:
            return
        logger.info("Stopping chamber link...")
        self.running = False

        for task in self.tasks:
            task.cancel()
        if self.tasks:
            await asyncio.gather(*self.tasks, return_exceptions=True)
        self.tasks = []

        await self.session.disconnect()
        await self.transport.close()
        self.context.teardown()
        self.hub.clear()
        self._stopped.set()
        logger.info("Chamber link stopped")

    async def wait_ready(self, timeout: Optional[float] = None) -> bool:
        """Wait for the first connection.

        Returns False on timeout; raises MaxReconnectsExceeded when the
        session gave up before connecting.
        """
        connected = asyncio.create_task(self.session.wait_connected())
        gave_up = asyncio.create_task(self._gave_up.wait())
        try:
            await asyncio.wait({connected, gave_up}, timeout=timeout,
                               return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (connected, gave_up):
                task.cancel()
            await asyncio.gather(connected, gave_up, return_exceptions=True)

        if self.session.is_connected:
            return True
        if self.session.exhausted:
            raise MaxReconnectsExceeded(self.session.reconnect_attempts)
        return False

    async def run_forever(self):
        """Start and block until stop() is called"""
        await self.start()
        await self._stopped.wait()

    def status(self) -> Dict[str, Any]:
        snapshot = self.session.latest_snapshot
        return {
            'state': self.session.state.value,
            'endpoint': str(self.session.endpoint) if self.session.endpoint else None,
            'last_known': str(self.context.last_known) if self.context.last_known else None,
            'reconnect_attempts': self.session.reconnect_attempts,
            'exhausted': self.session.exhausted,
            'snapshot_sequence': snapshot.sequence if snapshot else 0,
            'status_updates': self._status_updates,
            'optimistic_states': self.commands.optimistic_states,
            'pending_commands': list(self.commands.pending_commands),
        }

    # ================== EVENTS ==================

    def _log_event(self, event: LinkEvent):
        if event.name == StatusUpdate.name:
            self._status_updates += 1
        if event.name in _NOTABLE_EVENTS:
            logger.info(f"[EVENT] {event.name}: {event}")
        else:
            logger.debug(f"[EVENT] {event.name}")

    def _on_gave_up(self, event: MaxReconnectsReached):
        self._gave_up.set()

    # ================== BACKGROUND SERVICES ==================

    async def _recovery_service(self):
        """Once reconnects are exhausted, look for the backend and reconnect when it answers"""
        logger.info(f"Recovery service started (every {self.recovery_interval}s)")

        while self.running:
            try:
                await asyncio.sleep(self.recovery_interval)

                if not self.running:
                    break
                if not self.session.exhausted or self.session.running:
                    continue

                if await self._backend_reachable():
                    logger.info("[RECOVERY] Backend is healthy again, reconnecting...")
                    self._gave_up.clear()
                    await self.session.reconnect()
                else:
                    logger.debug("[RECOVERY] Backend still unreachable")

            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Recovery service error: {e}")

    async def _backend_reachable(self) -> bool:
        """Health-check the known backend; with none known yet, run discovery again"""
        if self.discovery.known_endpoint() is not None:
            return await self.discovery.test_connection()
        try:
            await self.discovery.discover()
            return True
        except NoBackendFound:
            return False

    async def _monitoring_service(self):
        """Periodic link health log line"""
        while self.running:
            try:
                await asyncio.sleep(self.status_log_interval)

                if not self.running:
                    break

                status = self.status()
                logger.info(f"Health check: state={status['state']}, endpoint={status['endpoint']}, "
                            f"snapshots={status['status_updates']}, pending={len(status['pending_commands'])}")

            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Monitoring service error: {e}")
