"""
Synthetic controller backend: the health, command and status-stream surface
of the real backend, served from memory for offline development and tests.
"""

import asyncio
import json
import logging
import random
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Callable, Dict, Optional, Tuple

from link_errors import StreamClosed, TransportError
from .chamber_state import SETPOINT_MAX, SETPOINT_MIN, ChamberState

logger = logging.getLogger(__name__)

_CLOSE = object()

Response = Tuple[int, Dict[str, Any]]

TOGGLE_ROUTES = {
    '/api/control/ac/toggle': ('ac_state', 'AC toggled'),
    '/api/control/lights/ceiling/toggle': ('ceiling_lights_state', 'Ceiling lights toggled'),
    '/api/control/lights/reading/toggle': ('reading_lights_state', 'Reading lights toggled'),
    '/api/control/lights/door/toggle': ('door_lights_state', 'Door lights toggled'),
    '/api/control/intercom/toggle': ('intercom_state', 'Intercom toggled'),
}


@dataclass
class SyntheticBackendConfig:
    service: str = "elixir-backend"
    version: str = "1.2.3"
    error_rate: float = 0.0          # share of commands answered with success=false
    response_delay: float = 0.0      # seconds before each HTTP answer
    apply_commands: bool = True      # False: accept commands but never change state
    seed: Optional[int] = None

    @classmethod
    def from_config(cls, dev: Dict) -> "SyntheticBackendConfig":
        """Build from the dev_backend config section"""
        return cls(
            service=dev.get('service', cls.service),
            version=dev.get('version', cls.version),
            error_rate=dev.get('error_rate', 0.0),
            response_delay=dev.get('response_delay', 0.0)
        )


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def ok(data: Any, message: str = "Success") -> Response:
    return 200, {'success': True, 'data': data, 'message': message, 'timestamp': _timestamp()}


def failed(message: str, status: int = 200) -> Response:
    return status, {'success': False, 'message': message, 'timestamp': _timestamp()}


class SyntheticBackend:
    """In-process backend with the same wire contract as the real one"""

    def __init__(self, config: Optional[SyntheticBackendConfig] = None,
                 state: Optional[ChamberState] = None):
        self.config = config or SyntheticBackendConfig()
        self.state = state or ChamberState()
        self.online = True
        self.requests_served = 0
        self._random = random.Random(self.config.seed)
        self._streams = set()
        self._post_routes: Dict[str, Callable[[Optional[dict]], Response]] = {
            '/api/pressure/add': self._pressure_add,
            '/api/pressure/subtract': self._pressure_subtract,
            '/api/pressure/setpoint': self._pressure_setpoint,
            '/api/session/start': self._session_start,
            '/api/session/end': self._session_end,
        }

    # ================== AVAILABILITY ==================

    def go_offline(self) -> None:
        """Refuse new connections and drop the live streams"""
        self.online = False
        self.drop_streams()

    def go_online(self) -> None:
        self.online = True

    def drop_streams(self) -> None:
        for queue in list(self._streams):
            queue.put_nowait(_CLOSE)

    @property
    def stream_count(self) -> int:
        return len(self._streams)

    # ================== HTTP ==================

    async def handle_get(self, path: str) -> Response:
        await self._delay()
        self.requests_served += 1
        if path == '/health':
            return ok({
                'status': 'healthy',
                'service': self.config.service,
                'version': self.config.version,
                'mode': 'synthetic',
                'requests_served': self.requests_served,
            }, 'Service is healthy')
        if path in ('/api/status/system', '/api/control/status'):
            return ok(self.state.current(), 'System status retrieved')
        return 404, {'detail': 'Not Found'}

    async def handle_post(self, path: str, body: Optional[dict] = None) -> Response:
        await self._delay()
        self.requests_served += 1

        if path in TOGGLE_ROUTES:
            handler = self._toggle_handler(*TOGGLE_ROUTES[path])
        else:
            handler = self._post_routes.get(path)
        if handler is None:
            return 404, {'detail': 'Not Found'}

        if self.config.error_rate and self._random.random() < self.config.error_rate:
            return failed(f"Simulated failure for {path}")
        return handler(body)

    async def _delay(self) -> None:
        if self.config.response_delay:
            await asyncio.sleep(self.config.response_delay)

    def _toggle_handler(self, field: str, message: str) -> Callable[[Optional[dict]], Response]:
        def handler(body):
            if self.config.apply_commands:
                value = self.state.toggle_control(field)
            else:
                value = not self.state.current()['control_panel'].get(field, False)
            return ok({field: value}, message)
        return handler

    def _pressure_add(self, body) -> Response:
        previous = self.state.current()['pressure']['setpoint']
        new = self.state.pressure_plus_button() if self.config.apply_commands else previous
        return ok({'pressure_setpoint': new, 'previous_setpoint': previous,
                   'increment': round(new - previous, 2)}, 'Pressure add button pressed')

    def _pressure_subtract(self, body) -> Response:
        previous = self.state.current()['pressure']['setpoint']
        new = self.state.pressure_minus_button() if self.config.apply_commands else previous
        return ok({'pressure_setpoint': new, 'previous_setpoint': previous,
                   'decrement': round(previous - new, 2)}, 'Pressure minus button pressed')

    def _pressure_setpoint(self, body) -> Response:
        setpoint = (body or {}).get('setpoint')
        if not isinstance(setpoint, (int, float)) or isinstance(setpoint, bool):
            return failed("Missing or invalid setpoint", 400)
        if setpoint < SETPOINT_MIN or setpoint > SETPOINT_MAX:
            return failed(f"Invalid pressure setpoint. Must be between {SETPOINT_MIN} and {SETPOINT_MAX} ATA", 400)
        previous = self.state.current()['pressure']['setpoint']
        if self.config.apply_commands:
            self.state.set_target_pressure(setpoint)
        return ok({'pressure_setpoint': setpoint, 'previous_setpoint': previous},
                  f"Pressure setpoint set to {setpoint} ATA")

    def _session_start(self, body) -> Response:
        if self.config.apply_commands:
            self.state.start_session()
        return ok({'session_started': True, 'running_state': True, 'start_time': _timestamp()},
                  'Session started successfully')

    def _session_end(self, body) -> Response:
        if self.config.apply_commands:
            self.state.stop_session()
        return ok({'session_ended': True, 'running_state': False, 'end_time': _timestamp()},
                  'Session ended successfully')

    # ================== STATUS STREAM ==================

    def frame(self, status: Dict[str, Any]) -> str:
        return json.dumps({'timestamp': _timestamp(), 'type': 'status_update', 'data': status})

    @asynccontextmanager
    async def stream(self, url: str = "synthetic"):
        """Current status first, then one frame per state change"""
        if not self.online:
            raise TransportError(url, "connection refused")

        queue: asyncio.Queue = asyncio.Queue()
        unsubscribe = self.state.subscribe(lambda status: queue.put_nowait(self.frame(status)))
        self._streams.add(queue)
        queue.put_nowait(self.frame(self.state.current()))
        try:
            yield self._drain(queue)
        finally:
            unsubscribe()
            self._streams.discard(queue)

    async def _drain(self, queue: asyncio.Queue) -> AsyncIterator[str]:
        while True:
            frame = await queue.get()
            if frame is _CLOSE:
                raise StreamClosed("synthetic backend closed the stream")
            yield frame
