"""
Process-wide link state: discovery cache, last-known backend and connection state.

One LinkContext is created per process and handed to the discovery coordinator
and the connection session; they are the only writers of its fields.
"""

import json
import logging
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    IDLE = "idle"
    DISCOVERING = "discovering"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class LinkContext:
    """Owner of the discovery cache and the connection state"""

    def __init__(self, cache_file: Optional[str] = None):
        self.cache_file = Path(cache_file) if cache_file else None
        self.cached_result: Optional["DiscoveryResult"] = None
        self.last_known: Optional["Endpoint"] = None
        self.connection_state = ConnectionState.IDLE

    @classmethod
    def create(cls, config: dict) -> "LinkContext":
        """Build a context from the discovery config section and load the last-known backend"""
        context = cls(config.get('cache_file'))
        context.last_known = context._load_last_known()
        if context.last_known:
            logger.info(f"Last known backend: {context.last_known}")
        return context

    # ================== DISCOVERY CACHE ==================

    def remember(self, result: "DiscoveryResult") -> None:
        self.cached_result = result
        self.last_known = result.endpoint
        self._save_last_known(result)

    def reset(self) -> None:
        """Drop the cached result; the next discovery repeats the whole resolution path"""
        self.cached_result = None

    def forget(self) -> None:
        """Drop the cached result and the last-known endpoint"""
        self.cached_result = None
        self.last_known = None
        if self.cache_file and self.cache_file.exists():
            self.cache_file.unlink()

    def teardown(self) -> None:
        self.cached_result = None
        self.connection_state = ConnectionState.IDLE

    # ================== PERSISTENCE ==================

    def _load_last_known(self) -> Optional["Endpoint"]:
        if not self.cache_file or not self.cache_file.exists():
            return None
        from discovery.models import Endpoint  # discovery imports this module

        try:
            data = json.loads(self.cache_file.read_text())
            return Endpoint(host=data['host'], port=int(data['port']), scheme=data.get('scheme', 'http'))
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Ignoring unreadable discovery cache {self.cache_file}: {e}")
            return None

    def _save_last_known(self, result: "DiscoveryResult") -> None:
        if not self.cache_file:
            return
        payload = {
            'host': result.endpoint.host,
            'port': result.endpoint.port,
            'scheme': result.endpoint.scheme,
            'service': result.service_name,
            'version': result.service_version,
            'verified_at': result.verified_at.astimezone(timezone.utc).isoformat(),
            'saved_at': datetime.now(timezone.utc).isoformat(),
        }
        try:
            self.cache_file.parent.mkdir(parents=True, exist_ok=True)
            self.cache_file.write_text(json.dumps(payload, indent=2))
        except OSError as e:
            logger.warning(f"Could not persist discovery cache to {self.cache_file}: {e}")
