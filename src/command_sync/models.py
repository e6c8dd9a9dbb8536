"""
Command synchronization data structures
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict

STATUS_CONFIRMED = "confirmed"
STATUS_SUPERSEDED = "superseded"


@dataclass(frozen=True)
class ControlBinding:
    """Where a control's authoritative value lives in snapshots and command responses"""
    key: str
    snapshot_path: str
    response_field: str


CONTROL_BINDINGS: Dict[str, ControlBinding] = {
    binding.key: binding for binding in [
        ControlBinding('ceiling_lights', 'control_panel.ceiling_lights_state', 'ceiling_lights_state'),
        ControlBinding('reading_lights', 'control_panel.reading_lights_state', 'reading_lights_state'),
        ControlBinding('door_lights', 'control_panel.door_lights_state', 'door_lights_state'),
        ControlBinding('ac', 'control_panel.ac_state', 'ac_state'),
        ControlBinding('intercom', 'control_panel.intercom_state', 'intercom_state'),
        ControlBinding('pressure_setpoint', 'pressure.setpoint', 'pressure_setpoint'),
        ControlBinding('session_running', 'session.running_state', 'running_state'),
    ]
}

# Command endpoints, relative to the discovered backend
COMMAND_ENDPOINTS = {
    'ceiling_lights': '/api/control/lights/ceiling/toggle',
    'reading_lights': '/api/control/lights/reading/toggle',
    'door_lights': '/api/control/lights/door/toggle',
    'ac': '/api/control/ac/toggle',
    'intercom': '/api/control/intercom/toggle',
    'pressure_add': '/api/pressure/add',
    'pressure_subtract': '/api/pressure/subtract',
    'pressure_setpoint': '/api/pressure/setpoint',
    'session_start': '/api/session/start',
    'session_end': '/api/session/end',
}


@dataclass
class OptimisticEntry:
    """Locally applied value awaiting confirmation; at most one per control key"""
    control_key: str
    proposed_value: Any
    command_id: str
    baseline_sequence: int
    issued_at: float = field(default_factory=time.monotonic)
    superseded: asyncio.Event = field(default_factory=asyncio.Event, repr=False)


@dataclass(frozen=True)
class HeldValue:
    """Unconfirmed value kept on display until a newer snapshot arrives"""
    value: Any
    until_sequence: int


@dataclass(frozen=True)
class CommandResult:
    command_id: str
    control_key: str
    value: Any
    status: str = STATUS_CONFIRMED
    response: Optional[dict] = None


class CommandResponse(BaseModel):
    """Body returned by POST /api/<domain>/<action>"""
    model_config = ConfigDict(extra="allow")

    success: bool
    data: Optional[Dict[str, Any]] = None
    message: str = ""
    timestamp: Optional[str] = None
