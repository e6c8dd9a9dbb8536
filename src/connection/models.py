"""
Status stream data structures
"""

import json
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, ValidationError


class StreamFrame(BaseModel):
    """Envelope of one /ws/system-status frame"""
    model_config = ConfigDict(extra="allow")

    timestamp: Optional[str] = None
    type: Optional[str] = None
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


class FrameError(ValueError):
    """Frame could not be turned into a snapshot"""


@dataclass(frozen=True)
class Snapshot:
    """Full authoritative device state at one point in time; never mutated"""
    sequence: int
    data: Dict[str, Any]
    timestamp: Optional[str] = None
    type: Optional[str] = None
    received_at: float = field(default_factory=time.monotonic)

    def value_at(self, path: str) -> Any:
        """Resolve a dotted path like "control_panel.ac_state"; None when absent"""
        current: Any = self.data
        for key in path.split('.'):
            if not isinstance(current, dict):
                return None
            current = current.get(key)
        return current


def parse_frame(raw: str, sequence: int) -> Snapshot:
    """Turn one text frame into a Snapshot.

    Accepts the {timestamp, type, data, error} envelope and bare status objects.
    Raises FrameError for non-JSON frames and error-only frames.
    """
    try:
        payload = json.loads(raw)
    except ValueError as e:
        raise FrameError(f"invalid JSON: {e}")
    if not isinstance(payload, dict):
        raise FrameError("frame is not a JSON object")

    if 'data' not in payload and 'error' not in payload:
        return Snapshot(sequence=sequence, data=payload, timestamp=payload.get('timestamp'))

    try:
        frame = StreamFrame.model_validate(payload)
    except ValidationError as e:
        raise FrameError(f"malformed frame ({e.error_count()} errors)")

    if frame.data is None:
        raise FrameError(f"backend error frame: {frame.error or 'no data'}")

    return Snapshot(sequence=sequence, data=frame.data, timestamp=frame.timestamp, type=frame.type)
