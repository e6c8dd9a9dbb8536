from __future__ import annotations

import pytest

from backend_double import SyntheticBackend, SyntheticTransport
from config_loader import build_config
from link_errors import MaxReconnectsExceeded
from services import ChamberLink


def _config(**connection):
    return build_config({
        "backend": {"override_address": "127.0.0.1:8000"},
        "discovery": {"check_timeout": 0.5},
        "connection": {"reconnect_interval_seconds": 0.01, "recovery_check_seconds": 0.02, **connection},
        "commands": {"confirmation_timeout_seconds": 1, "poll_interval_seconds": 0.01},
        "dev_backend": {"synthetic": True},
    })


@pytest.fixture
async def link():
    chamber_link = ChamberLink(config=_config())
    yield chamber_link
    await chamber_link.stop()


async def test_link_connects_to_synthetic_backend_and_runs_commands(link) -> None:
    await link.start()
    assert await link.wait_ready(2)

    result = await link.commands.toggle_ac()

    assert result.value is True
    status = link.status()
    assert status["state"] == "connected"
    assert status["endpoint"] == "http://127.0.0.1:8000"
    assert status["pending_commands"] == []


async def test_wait_ready_raises_when_reconnects_are_exhausted() -> None:
    link = ChamberLink(config=_config(max_reconnect_attempts=0))
    link.synthetic_backend.go_offline()
    try:
        await link.start()
        with pytest.raises(MaxReconnectsExceeded):
            await link.wait_ready(2)
    finally:
        await link.stop()


async def test_recovery_reconnects_once_backend_returns(eventually) -> None:
    link = ChamberLink(config=_config(max_reconnect_attempts=1))
    connected = []
    link.hub.subscribe("connected", connected.append)
    try:
        await link.start()
        assert await link.wait_ready(2)

        link.synthetic_backend.go_offline()
        await eventually(lambda: link.session.exhausted and not link.session.running)

        link.synthetic_backend.go_online()
        await eventually(lambda: link.session.is_connected)

        assert len(connected) == 2
    finally:
        await link.stop()


async def test_recovery_discovers_a_backend_that_was_never_seen(eventually) -> None:
    transport = SyntheticTransport()
    config = build_config({
        "discovery": {"subnets": ["10.0.0"], "check_timeout": 0.5},
        "connection": {"reconnect_interval_seconds": 0.01, "max_reconnect_attempts": 0,
                       "recovery_check_seconds": 0.02},
    })
    link = ChamberLink(config=config, transport=transport)
    try:
        await link.start()
        with pytest.raises(MaxReconnectsExceeded):
            await link.wait_ready(2)
        await eventually(lambda: not link.session.running)

        transport.register("10.0.0.2:8000", SyntheticBackend())
        await eventually(lambda: link.session.is_connected)

        assert link.status()["endpoint"] == "http://10.0.0.2:8000"
    finally:
        await link.stop()


async def test_stop_is_idempotent(link) -> None:
    await link.start()
    await link.stop()
    await link.stop()

    assert link.status()["state"] == "idle"
