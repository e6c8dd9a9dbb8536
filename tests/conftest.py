from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import List, Optional

import pytest

from backend_double import SyntheticBackend, SyntheticBackendConfig, SyntheticTransport
from command_sync import CommandSynchronizer
from connection import ConnectionSession
from discovery import BackendDiscovery, CandidateResolver, ServiceVerifier
from event_hub import ALL_EVENTS, EventHub
from link_context import LinkContext

DISCOVERY_CONFIG = {
    'subnets': ['192.168.1', '192.168.0', '10.0.0'],
    'quick_host': 2,
    'port': 8000,
    'check_timeout': 0.5,
    'max_concurrent': 20,
    'verify_endpoints': ['/api/status/system'],
}

SESSION_CONFIG = {
    'reconnect_interval_seconds': 0.01,
    'max_reconnect_attempts': 5,
    'rediscover_every': 3,
    'connection_timeout_seconds': 1,
}

COMMAND_CONFIG = {
    'commands': {
        'request_timeout_seconds': 1,
        'confirmation_timeout_seconds': 1,
        'poll_interval_seconds': 0.01,
    },
}

PRIMARY = "192.168.1.2:8000"


class EventRecorder:
    def __init__(self, hub: EventHub) -> None:
        self.events = []
        hub.subscribe(ALL_EVENTS, self.events.append)

    def names(self) -> List[str]:
        return [event.name for event in self.events]

    def of(self, name: str) -> list:
        return [event for event in self.events if event.name == name]


@dataclass
class Chamber:
    backend: SyntheticBackend
    session: ConnectionSession
    commands: CommandSynchronizer


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("CHAMBER_BACKEND_URL", raising=False)
    monkeypatch.delenv("CHAMBER_LINK_CONFIG", raising=False)


@pytest.fixture
def hub() -> EventHub:
    return EventHub()


@pytest.fixture
def recorder(hub: EventHub) -> EventRecorder:
    return EventRecorder(hub)


@pytest.fixture
def context() -> LinkContext:
    return LinkContext()


@pytest.fixture
def transport() -> SyntheticTransport:
    return SyntheticTransport()


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def eventually():
    async def wait(predicate, timeout: float = 2.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met in time")
            await asyncio.sleep(0.005)
    return wait


@pytest.fixture
def make_discovery(context, transport, hub):
    def factory(**overrides) -> BackendDiscovery:
        config = {**DISCOVERY_CONFIG, **overrides}
        resolver = CandidateResolver(config, context)
        verifier = ServiceVerifier(config, transport)
        return BackendDiscovery(config, context, resolver, verifier, hub)
    return factory


@pytest.fixture
async def make_session(context, transport, hub, make_discovery, sleeps):
    sessions = []

    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)
        await asyncio.sleep(0)

    def factory(discovery: Optional[BackendDiscovery] = None, **overrides) -> ConnectionSession:
        config = {**SESSION_CONFIG, **overrides}
        session = ConnectionSession(config, context, discovery or make_discovery(), transport, hub,
                                    sleep=fake_sleep)
        sessions.append(session)
        return session

    yield factory

    for session in sessions:
        await session.disconnect()


@pytest.fixture
def connect_chamber(transport, hub, make_session, eventually):
    async def factory(backend_config: Optional[SyntheticBackendConfig] = None,
                      confirmation_timeout: float = 1.0, setup=None) -> Chamber:
        backend = transport.register(PRIMARY, SyntheticBackend(backend_config))
        if setup is not None:
            setup(backend.state)

        session = make_session()
        session.start()
        assert await session.wait_connected(2)
        await eventually(lambda: session.latest_snapshot is not None)

        config = {'commands': {**COMMAND_CONFIG['commands'],
                               'confirmation_timeout_seconds': confirmation_timeout}}
        commands = CommandSynchronizer(config, session, transport, hub)
        return Chamber(backend=backend, session=session, commands=commands)
    return factory
