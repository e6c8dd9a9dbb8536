"""
Publish/subscribe hub for connection, snapshot and command lifecycle events
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, ClassVar, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

ALL_EVENTS = "*"


@dataclass(frozen=True)
class LinkEvent:
    """Base class for tagged event messages"""
    name: ClassVar[str] = "event"


@dataclass(frozen=True)
class ConnectionStateChanged(LinkEvent):
    name: ClassVar[str] = "connection-state"
    previous: Any
    current: Any


@dataclass(frozen=True)
class DiscoveryComplete(LinkEvent):
    name: ClassVar[str] = "discovery-complete"
    endpoint: Any
    method: str
    candidates_tried: int


@dataclass(frozen=True)
class DiscoveryFailed(LinkEvent):
    name: ClassVar[str] = "discovery-failed"
    candidates_tried: int


@dataclass(frozen=True)
class Connected(LinkEvent):
    name: ClassVar[str] = "connected"
    endpoint: Any


@dataclass(frozen=True)
class Disconnected(LinkEvent):
    name: ClassVar[str] = "disconnected"
    reason: str


@dataclass(frozen=True)
class MaxReconnectsReached(LinkEvent):
    name: ClassVar[str] = "max-reconnects-reached"
    attempts: int


@dataclass(frozen=True)
class StatusUpdate(LinkEvent):
    name: ClassVar[str] = "status-update"
    snapshot: Any


@dataclass(frozen=True)
class OptimisticUpdate(LinkEvent):
    name: ClassVar[str] = "optimistic-update"
    control: str
    state: Any
    command_id: str


@dataclass(frozen=True)
class ControlsUpdate(LinkEvent):
    name: ClassVar[str] = "controls-update"
    optimistic_states: Dict[str, Any]
    pending_commands: Tuple[str, ...]
    snapshot: Any = None


@dataclass(frozen=True)
class CommandSuccess(LinkEvent):
    name: ClassVar[str] = "command-success"
    control: str
    value: Any
    command_id: str
    response: Optional[dict] = None


@dataclass(frozen=True)
class CommandError(LinkEvent):
    name: ClassVar[str] = "command-error"
    control: str
    error: str
    command_id: str


Subscriber = Callable[[LinkEvent], None]


class EventHub:
    """Synchronous fan-out of events to subscribers, in subscription order.

    A failing subscriber is logged and skipped; it never affects the other
    subscribers or the publisher.
    """

    def __init__(self):
        self._subscribers: Dict[str, List[Subscriber]] = {}

    def subscribe(self, event_name: str, callback: Subscriber) -> None:
        callbacks = self._subscribers.setdefault(event_name, [])
        if callback not in callbacks:
            callbacks.append(callback)

    def unsubscribe(self, event_name: str, callback: Subscriber) -> None:
        callbacks = self._subscribers.get(event_name)
        if callbacks and callback in callbacks:
            callbacks.remove(callback)

    def subscribers(self, event_name: str) -> Tuple[Subscriber, ...]:
        return tuple(self._subscribers.get(event_name, ()))

    def publish(self, event: LinkEvent) -> None:
        # Snapshot the lists so callbacks may (un)subscribe while we iterate
        targets = self.subscribers(event.name) + self.subscribers(ALL_EVENTS)
        for callback in targets:
            try:
                callback(event)
            except Exception:
                logger.exception(f"Error in event subscriber for {event.name}")

    def clear(self) -> None:
        self._subscribers = {}
