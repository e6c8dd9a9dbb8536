from __future__ import annotations

import asyncio

import pytest

from backend_double import SyntheticBackendConfig
from command_sync import CommandSynchronizer
from command_sync.models import STATUS_CONFIRMED, STATUS_SUPERSEDED
from link_errors import CommandRejected, ConfirmationTimeout


async def test_successful_toggle(connect_chamber, recorder) -> None:
    chamber = await connect_chamber()

    result = await chamber.commands.toggle_ac()

    assert result.status == STATUS_CONFIRMED
    assert result.value is True
    assert result.response["success"] is True
    assert chamber.commands.read("ac") is True
    assert chamber.commands.optimistic_states == {}
    assert chamber.commands.pending_commands == ()
    assert chamber.backend.state.current()["control_panel"]["ac_state"] is True

    names = recorder.names()
    assert names.index("optimistic-update") < names.index("command-success")
    success = recorder.of("command-success")
    assert len(success) == 1
    assert success[0].control == "ac"
    assert success[0].value is True


async def test_optimistic_value_is_visible_before_the_response(connect_chamber) -> None:
    chamber = await connect_chamber(SyntheticBackendConfig(response_delay=0.05))

    task = asyncio.create_task(chamber.commands.toggle_reading_lights())
    await asyncio.sleep(0.01)

    assert chamber.commands.read("reading_lights") is True
    assert chamber.commands.is_pending("reading_lights")
    assert chamber.commands.optimistic_states == {"reading_lights": True}

    await task
    assert not chamber.commands.is_pending("reading_lights")


async def test_rejected_command_rolls_back(connect_chamber, recorder) -> None:
    chamber = await connect_chamber(SyntheticBackendConfig(error_rate=1.0))

    with pytest.raises(CommandRejected):
        await chamber.commands.toggle_ceiling_lights()

    assert chamber.commands.read("ceiling_lights") is False
    assert chamber.commands.optimistic_states == {}
    assert chamber.commands.pending_commands == ()
    errors = recorder.of("command-error")
    assert len(errors) == 1
    assert errors[0].control == "ceiling_lights"
    assert "Simulated failure" in errors[0].error
    assert recorder.of("command-success") == []


async def test_http_error_message_includes_status(connect_chamber) -> None:
    chamber = await connect_chamber()

    with pytest.raises(CommandRejected) as exc_info:
        await chamber.commands.execute("/api/pressure/setpoint", "pressure_setpoint", 1.5,
                                       body={"setpoint": "high"})

    assert exc_info.value.message == "HTTP 400: Missing or invalid setpoint"
    assert chamber.commands.read("pressure_setpoint") == 1.0


async def test_command_without_connection_is_rejected(transport, make_session, hub, recorder) -> None:
    commands = CommandSynchronizer({}, make_session(), transport, hub)

    with pytest.raises(CommandRejected, match="not connected"):
        await commands.execute("/api/control/ac/toggle", "ac", True)

    assert recorder.of("command-error")[0].error == "backend not connected"
    assert commands.optimistic_states == {}


async def test_confirmation_timeout_keeps_value_until_next_snapshot(connect_chamber, recorder, eventually) -> None:
    chamber = await connect_chamber(SyntheticBackendConfig(apply_commands=False), confirmation_timeout=0.1)

    with pytest.raises(ConfirmationTimeout):
        await chamber.commands.toggle_intercom()

    errors = recorder.of("command-error")
    assert len(errors) == 1
    assert "PLC confirmation timeout" in errors[0].error
    assert chamber.commands.optimistic_states == {}
    assert chamber.commands.read("intercom") is True

    # Any newer snapshot is authoritative again
    chamber.backend.state.set_value("modes.custom_duration", 90)
    await eventually(lambda: chamber.commands.read("intercom") is False)


async def test_snapshot_older_than_the_command_never_confirms_it(connect_chamber) -> None:
    chamber = await connect_chamber(SyntheticBackendConfig(apply_commands=False), confirmation_timeout=0.1,
                                    setup=lambda state: state.set_value("control_panel.ac_state", True))
    assert chamber.session.latest_snapshot.value_at("control_panel.ac_state") is True

    # The latest snapshot already shows the proposed value, but it predates the command
    with pytest.raises(ConfirmationTimeout):
        await chamber.commands.execute("/api/session/start", "ac", True)


async def test_superseded_command_resolves_without_side_effects(connect_chamber, recorder) -> None:
    chamber = await connect_chamber()

    first, second = await asyncio.gather(chamber.commands.toggle_ac(), chamber.commands.toggle_ac())

    assert first.status == STATUS_SUPERSEDED
    assert second.status == STATUS_CONFIRMED
    assert second.value is False
    assert chamber.commands.read("ac") is False
    assert chamber.commands.optimistic_states == {}
    assert chamber.commands.pending_commands == ()
    assert len(recorder.of("command-success")) == 1
    assert recorder.of("command-error") == []


async def test_server_value_replaces_proposal(connect_chamber, recorder) -> None:
    chamber = await connect_chamber()

    result = await chamber.commands.execute("/api/pressure/add", "pressure_setpoint", 1.5)

    assert result.value == 1.1
    assert [e.state for e in recorder.of("optimistic-update")] == [1.5, 1.1]
    assert chamber.commands.read("pressure_setpoint") == 1.1


async def test_pressure_steps_across_the_ceiling(connect_chamber) -> None:
    chamber = await connect_chamber(setup=lambda state: state.set_value("pressure.setpoint", 1.9))

    up = await chamber.commands.increase_pressure()
    assert up.value == 1.99
    assert chamber.commands.read("pressure_setpoint") == 1.99

    down = await chamber.commands.decrease_pressure()
    assert down.value == 1.9
    assert chamber.backend.state.current()["pressure"]["setpoint"] == 1.9


async def test_set_pressure_setpoint_is_clamped(connect_chamber) -> None:
    chamber = await connect_chamber()

    result = await chamber.commands.set_pressure_setpoint(3.5)

    assert result.value == 1.99
    assert chamber.backend.state.current()["pressure"]["setpoint"] == 1.99


async def test_pressure_step_needs_a_known_setpoint(transport, make_session, hub, recorder) -> None:
    commands = CommandSynchronizer({}, make_session(), transport, hub)

    with pytest.raises(CommandRejected, match="unknown"):
        await commands.increase_pressure()

    errors = recorder.of("command-error")
    assert len(errors) == 1
    assert errors[0].control == "pressure_setpoint"
    assert errors[0].error == "current pressure setpoint unknown"


async def test_session_start_and_end(connect_chamber) -> None:
    chamber = await connect_chamber()

    started = await chamber.commands.start_session()
    assert started.value is True
    assert chamber.commands.read("session_running") is True

    ended = await chamber.commands.end_session()
    assert ended.value is False
    assert chamber.backend.state.current()["session"]["running_state"] is False


async def test_repeated_command_keeps_a_single_entry(connect_chamber, recorder) -> None:
    chamber = await connect_chamber(SyntheticBackendConfig(response_delay=0.05))

    def send():
        return chamber.commands.execute("/api/pressure/setpoint", "pressure_setpoint", 1.5,
                                        body={"setpoint": 1.5})

    first = asyncio.create_task(send())
    second = asyncio.create_task(send())
    await asyncio.sleep(0.01)

    assert chamber.commands.optimistic_states == {"pressure_setpoint": 1.5}
    assert len(chamber.commands.pending_commands) == 1

    results = await asyncio.gather(first, second)
    assert [r.status for r in results] == [STATUS_SUPERSEDED, STATUS_CONFIRMED]
    assert chamber.commands.read("pressure_setpoint") == 1.5
    assert chamber.commands.optimistic_states == {}
    assert len(recorder.of("command-success")) == 1


async def test_unexpected_failure_rolls_back(connect_chamber, transport, recorder, monkeypatch) -> None:
    chamber = await connect_chamber()

    async def broken_post(url, body=None, timeout=None):
        raise UnicodeDecodeError("utf-8", b"\xff", 0, 1, "invalid start byte")

    monkeypatch.setattr(transport, "post_json", broken_post)

    with pytest.raises(CommandRejected, match="unexpected error") as exc_info:
        await chamber.commands.toggle_ac()

    assert isinstance(exc_info.value.__cause__, UnicodeDecodeError)
    assert chamber.commands.optimistic_states == {}
    assert chamber.commands.pending_commands == ()
    assert chamber.commands.read("ac") is False
    errors = recorder.of("command-error")
    assert len(errors) == 1
    assert errors[0].control == "ac"


async def test_response_without_json_is_rejected(connect_chamber, transport, monkeypatch) -> None:
    chamber = await connect_chamber()

    async def empty_post(url, body=None, timeout=None):
        return 200, None

    monkeypatch.setattr(transport, "post_json", empty_post)

    with pytest.raises(CommandRejected) as exc_info:
        await chamber.commands.toggle_ac()

    assert exc_info.value.message == "malformed command response"
    assert chamber.commands.read("ac") is False


async def test_confirmation_wait_follows_the_injected_clock(connect_chamber, transport, hub) -> None:
    chamber = await connect_chamber(SyntheticBackendConfig(apply_commands=False))
    now = [0.0]
    waits = []

    async def fake_sleep(seconds: float) -> None:
        waits.append(seconds)
        now[0] += seconds
        await asyncio.sleep(0)

    config = {'commands': {'confirmation_timeout_seconds': 30, 'poll_interval_seconds': 10}}
    commands = CommandSynchronizer(config, chamber.session, transport, hub,
                                   clock=lambda: now[0], sleep=fake_sleep)

    with pytest.raises(ConfirmationTimeout):
        await commands.toggle_door_lights()

    assert waits == [10, 10, 10]
