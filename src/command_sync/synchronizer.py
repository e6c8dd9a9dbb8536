"""
Command execution with optimistic updates.

A command shows its proposed value immediately, POSTs to the backend, then
waits for a status snapshot that confirms the value. Failures roll the
optimistic value back; a confirmation timeout keeps it on display until the
next snapshot and tells the caller the outcome could not be verified.
"""

import asyncio
import itertools
import logging
import math
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from pydantic import ValidationError

from connection.session import ConnectionSession
from event_hub import CommandError, CommandSuccess, ControlsUpdate, EventHub, OptimisticUpdate
from link_errors import CommandRejected, ConfirmationTimeout, TransportError
from transport import BackendTransport
from .models import (COMMAND_ENDPOINTS, CONTROL_BINDINGS, STATUS_SUPERSEDED, CommandResponse,
                     CommandResult, ControlBinding, HeldValue, OptimisticEntry)
from .pressure import clamp_pressure, step_pressure

logger = logging.getLogger(__name__)

_MISSING = object()


class CommandSynchronizer:
    """Sole owner of the optimistic-entry table"""

    def __init__(self, config: Dict, session: ConnectionSession, transport: BackendTransport,
                 hub: EventHub, bindings: Optional[Dict[str, ControlBinding]] = None,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.session = session
        self.transport = transport
        self.hub = hub
        self.bindings = bindings if bindings is not None else CONTROL_BINDINGS
        self._clock = clock
        self._sleep = sleep

        commands = config.get('commands', {})
        self.request_timeout = commands.get('request_timeout_seconds', 5)
        self.confirmation_timeout = commands.get('confirmation_timeout_seconds', 3)
        self.poll_interval = commands.get('poll_interval_seconds', 0.1)

        pressure = config.get('pressure', {})
        self.pressure_step = pressure.get('step', 0.1)
        self.pressure_floor = pressure.get('floor', 1.0)
        self.pressure_ceiling = pressure.get('ceiling', 1.99)

        self._entries: Dict[str, OptimisticEntry] = {}
        self._held: Dict[str, HeldValue] = {}
        self._pending: Dict[str, str] = {}  # command_id -> control_key
        self._ids = itertools.count(1)

    # ================== STATE ==================

    def read(self, control_key: str) -> Any:
        """Consumer-visible value: optimistic if present, else from the latest snapshot"""
        entry = self._entries.get(control_key)
        if entry is not None:
            return entry.proposed_value

        held = self._held.get(control_key)
        if held is not None and self.session.snapshot_sequence <= held.until_sequence:
            return held.value

        return self._authoritative(control_key)

    def is_pending(self, control_key: str) -> bool:
        return control_key in self._pending.values()

    @property
    def pending_commands(self) -> Tuple[str, ...]:
        return tuple(self._pending)

    @property
    def optimistic_states(self) -> Dict[str, Any]:
        return {key: entry.proposed_value for key, entry in self._entries.items()}

    def _authoritative(self, control_key: str) -> Any:
        binding = self.bindings.get(control_key)
        snapshot = self.session.latest_snapshot
        if binding is None or snapshot is None:
            return None
        return snapshot.value_at(binding.snapshot_path)

    # ================== EXECUTION ==================

    async def execute(self, endpoint: str, control_key: str, proposed_value: Any,
                      body: Optional[dict] = None) -> CommandResult:
        """Apply optimistically, send, and reconcile against the next snapshots.

        Raises CommandRejected (rolled back) or ConfirmationTimeout (value kept
        on display). A call superseded by a newer command for the same key
        returns a result with status "superseded" and changes nothing.
        """
        command_id = f"{control_key}_{next(self._ids)}"
        base = self.session.endpoint
        if base is None:
            self.hub.publish(CommandError(control=control_key, error="backend not connected", command_id=command_id))
            raise CommandRejected(control_key, "backend not connected")

        entry = self._record(command_id, control_key, proposed_value)
        try:
            response = await self._send(base.url(endpoint), control_key, body)
            if not self._is_current(entry):
                return self._superseded(entry)

            confirmed = self._server_value(control_key, response)
            if confirmed is not _MISSING and not _values_match(confirmed, entry.proposed_value):
                logger.info(f"[COMMAND] {control_key}: server set {confirmed!r} (proposed {entry.proposed_value!r})")
                entry.proposed_value = confirmed
                self.hub.publish(OptimisticUpdate(control=control_key, state=confirmed, command_id=command_id))

            matched = await self._await_confirmation(entry)
            if not self._is_current(entry):
                return self._superseded(entry)

            self._discard(entry)
            if not matched:
                self._held[control_key] = HeldValue(entry.proposed_value, self.session.snapshot_sequence)
                logger.warning(f"[COMMAND] {control_key}: no confirmation within {self.confirmation_timeout}s")
                error = ConfirmationTimeout(control_key, entry.proposed_value, self.confirmation_timeout)
                self.hub.publish(CommandError(control=control_key, error=str(error), command_id=command_id))
                raise error

            logger.info(f"[COMMAND] Command successful: {control_key}={entry.proposed_value!r}")
            payload = response.model_dump()
            self.hub.publish(CommandSuccess(control=control_key, value=entry.proposed_value,
                                            command_id=command_id, response=payload))
            return CommandResult(command_id=command_id, control_key=control_key,
                                 value=entry.proposed_value, response=payload)

        except CommandRejected as e:
            if self._is_current(entry):
                self._discard(entry)
                logger.error(f"[COMMAND] Command failed: {control_key}: {e.message}")
                self.hub.publish(CommandError(control=control_key, error=e.message, command_id=command_id))
            raise
        except asyncio.CancelledError:
            if self._is_current(entry):
                self._discard(entry)
            raise
        except ConfirmationTimeout:
            raise
        except Exception as e:
            message = f"unexpected error: {e!r}"
            if self._is_current(entry):
                self._discard(entry)
                logger.exception(f"[COMMAND] Command failed: {control_key}")
                self.hub.publish(CommandError(control=control_key, error=message, command_id=command_id))
            raise CommandRejected(control_key, message) from e
        finally:
            self._pending.pop(command_id, None)
            self._publish_controls()

    def _record(self, command_id: str, control_key: str, proposed_value: Any) -> OptimisticEntry:
        previous = self._entries.get(control_key)
        if previous is not None:
            logger.debug(f"[COMMAND] {previous.command_id} superseded by {command_id}")
            previous.superseded.set()
            self._pending.pop(previous.command_id, None)

        entry = OptimisticEntry(
            control_key=control_key,
            proposed_value=proposed_value,
            command_id=command_id,
            baseline_sequence=self.session.snapshot_sequence,
            issued_at=self._clock()
        )
        self._entries[control_key] = entry
        self._held.pop(control_key, None)
        self._pending[command_id] = control_key

        self.hub.publish(OptimisticUpdate(control=control_key, state=proposed_value, command_id=command_id))
        self._publish_controls()
        return entry

    def _is_current(self, entry: OptimisticEntry) -> bool:
        return self._entries.get(entry.control_key) is entry

    def _discard(self, entry: OptimisticEntry) -> None:
        if self._is_current(entry):
            del self._entries[entry.control_key]

    def _superseded(self, entry: OptimisticEntry) -> CommandResult:
        return CommandResult(command_id=entry.command_id, control_key=entry.control_key,
                             value=entry.proposed_value, status=STATUS_SUPERSEDED)

    async def _send(self, url: str, control_key: str, body: Optional[dict]) -> CommandResponse:
        logger.info(f"[COMMAND] POST {url} ({control_key})")
        try:
            status, payload = await self.transport.post_json(url, body, timeout=self.request_timeout)
        except TransportError as e:
            raise CommandRejected(control_key, f"request failed: {e.reason}")

        if not 200 <= status < 300:
            detail = ""
            if isinstance(payload, dict):
                detail = payload.get('message') or payload.get('detail') or ""
            message = f"HTTP {status}: {detail}" if detail else f"HTTP {status}"
            raise CommandRejected(control_key, message, payload)

        try:
            response = CommandResponse.model_validate(payload)
        except ValidationError:
            raise CommandRejected(control_key, "malformed command response", payload)

        if not response.success:
            raise CommandRejected(control_key, response.message or "Command failed", payload)
        return response

    def _server_value(self, control_key: str, response: CommandResponse) -> Any:
        data = response.data or {}
        if control_key in data:
            return data[control_key]
        binding = self.bindings.get(control_key)
        if binding is not None and binding.response_field in data:
            return data[binding.response_field]
        return _MISSING

    async def _await_confirmation(self, entry: OptimisticEntry) -> bool:
        """Poll snapshots newer than the entry until one carries its value.

        Each poll waits through the injected sleep, cut short when a newer
        command supersedes the entry. Returns False on timeout, and also when
        superseded (caller checks).
        """
        deadline = self._clock() + self.confirmation_timeout
        superseded = asyncio.ensure_future(entry.superseded.wait())
        tick: Optional[asyncio.Future] = None
        try:
            while True:
                snapshot = self.session.latest_snapshot
                if snapshot is not None and snapshot.sequence > entry.baseline_sequence:
                    binding = self.bindings.get(entry.control_key)
                    if binding and _values_match(snapshot.value_at(binding.snapshot_path), entry.proposed_value):
                        return True

                remaining = deadline - self._clock()
                if remaining <= 0:
                    return False

                tick = asyncio.ensure_future(self._sleep(min(self.poll_interval, remaining)))
                await asyncio.wait({tick, superseded}, return_when=asyncio.FIRST_COMPLETED)
                if superseded.done():
                    return False
        finally:
            for future in (tick, superseded):
                if future is not None and not future.done():
                    future.cancel()
            await asyncio.gather(*(f for f in (tick, superseded) if f is not None), return_exceptions=True)

    def _publish_controls(self) -> None:
        self.hub.publish(ControlsUpdate(
            optimistic_states=self.optimistic_states,
            pending_commands=self.pending_commands,
            snapshot=self.session.latest_snapshot
        ))

    # ================== CONTROL COMMANDS ==================

    async def _toggle(self, control_key: str) -> CommandResult:
        current = self.read(control_key)
        return await self.execute(COMMAND_ENDPOINTS[control_key], control_key, not bool(current))

    async def toggle_ceiling_lights(self) -> CommandResult:
        return await self._toggle('ceiling_lights')

    async def toggle_reading_lights(self) -> CommandResult:
        return await self._toggle('reading_lights')

    async def toggle_door_lights(self) -> CommandResult:
        return await self._toggle('door_lights')

    async def toggle_ac(self) -> CommandResult:
        return await self._toggle('ac')

    async def toggle_intercom(self) -> CommandResult:
        return await self._toggle('intercom')

    async def start_session(self) -> CommandResult:
        return await self.execute(COMMAND_ENDPOINTS['session_start'], 'session_running', True)

    async def end_session(self) -> CommandResult:
        return await self.execute(COMMAND_ENDPOINTS['session_end'], 'session_running', False)

    # ================== PRESSURE ==================

    async def increase_pressure(self) -> CommandResult:
        return await self._step_pressure(+1, COMMAND_ENDPOINTS['pressure_add'])

    async def decrease_pressure(self) -> CommandResult:
        return await self._step_pressure(-1, COMMAND_ENDPOINTS['pressure_subtract'])

    async def set_pressure_setpoint(self, setpoint: float) -> CommandResult:
        proposal = clamp_pressure(setpoint, self.pressure_floor, self.pressure_ceiling)
        return await self.execute(COMMAND_ENDPOINTS['pressure_setpoint'], 'pressure_setpoint',
                                  proposal, body={'setpoint': proposal})

    async def _step_pressure(self, direction: int, endpoint: str) -> CommandResult:
        current = self.read('pressure_setpoint')
        if current is None:
            message = "current pressure setpoint unknown"
            self.hub.publish(CommandError(control='pressure_setpoint', error=message,
                                          command_id=f"pressure_setpoint_{next(self._ids)}"))
            raise CommandRejected('pressure_setpoint', message)
        proposal = step_pressure(current, direction, self.pressure_step,
                                 self.pressure_floor, self.pressure_ceiling)
        return await self.execute(endpoint, 'pressure_setpoint', proposal)


def _values_match(actual: Any, expected: Any) -> bool:
    if isinstance(actual, bool) or isinstance(expected, bool):
        return actual is expected
    if isinstance(actual, (int, float)) and isinstance(expected, (int, float)):
        return math.isclose(actual, expected, abs_tol=1e-6)
    return actual == expected
