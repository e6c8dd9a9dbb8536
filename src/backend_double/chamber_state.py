"""
Simulated PLC state for the synthetic backend
"""

import copy
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List

from command_sync.pressure import PRESSURE_CEILING, PRESSURE_FLOOR, PRESSURE_STEP, step_pressure

logger = logging.getLogger(__name__)

StatusListener = Callable[[Dict[str, Any]], None]

SETPOINT_MIN = 1.0
SETPOINT_MAX = 6.0


def _initial_status() -> Dict[str, Any]:
    return {
        'timestamp': datetime.now(timezone.utc).isoformat(),
        'control_panel': {
            'ac_state': False,
            'system_shutdown': False,
            'ceiling_lights_state': False,
            'reading_lights_state': False,
            'door_lights_state': False,
            'intercom_state': False,
        },
        'pressure': {
            'setpoint': 1.0,
            'internal_pressure_1': 1.0,
            'internal_pressure_2': 1.0,
        },
        'session': {
            'equalise_state': True,
            'pressuring_state': False,
            'stabilising_state': False,
            'depressurise_state': False,
            'running_state': False,
            'stop_state': False,
            'session_ended': False,
            'depressurise_confirm': False,
        },
        'modes': {
            'mode_rest': False,
            'mode_health': True,
            'mode_professional': False,
            'mode_custom': False,
            'mode_o2_100': False,
            'mode_o2_120': False,
            'custom_duration': 60,
            'compression_beginner': False,
            'compression_normal': True,
            'compression_fast': False,
        },
    }


class ChamberState:
    """Mutable chamber status; every change is pushed to listeners"""

    def __init__(self, status: Dict[str, Any] = None):
        self._status = status or _initial_status()
        self._listeners: List[StatusListener] = []

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)
        return unsubscribe

    def current(self) -> Dict[str, Any]:
        return copy.deepcopy(self._status)

    def notify(self) -> None:
        self._status['timestamp'] = datetime.now(timezone.utc).isoformat()
        snapshot = self.current()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Chamber state listener failed")

    # ================== CONTROLS ==================

    def toggle_control(self, field: str) -> bool:
        panel = self._status['control_panel']
        panel[field] = not panel.get(field, False)
        self.notify()
        return panel[field]

    def pressure_plus_button(self) -> float:
        return self._step(+1)

    def pressure_minus_button(self) -> float:
        return self._step(-1)

    def _step(self, direction: int) -> float:
        pressure = self._status['pressure']
        pressure['setpoint'] = step_pressure(pressure['setpoint'], direction,
                                             PRESSURE_STEP, PRESSURE_FLOOR, PRESSURE_CEILING)
        self.notify()
        return pressure['setpoint']

    def set_target_pressure(self, setpoint: float) -> float:
        pressure = self._status['pressure']
        pressure['setpoint'] = max(SETPOINT_MIN, min(SETPOINT_MAX, setpoint))
        self.notify()
        return pressure['setpoint']

    def set_value(self, path: str, value: Any) -> None:
        """Write a dotted path directly, as the PLC itself would"""
        *parents, leaf = path.split('.')
        node = self._status
        for key in parents:
            node = node.setdefault(key, {})
        node[leaf] = value
        self.notify()

    # ================== SESSION ==================

    def start_session(self) -> None:
        session = self._status['session']
        session.update({
            'equalise_state': False,
            'pressuring_state': True,
            'running_state': True,
            'stop_state': False,
            'session_ended': False,
        })
        self.notify()

    def stop_session(self) -> None:
        session = self._status['session']
        session.update({
            'pressuring_state': False,
            'stabilising_state': False,
            'depressurise_state': True,
            'running_state': False,
        })
        self.notify()
