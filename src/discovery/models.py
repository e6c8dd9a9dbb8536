"""
Discovery data structures and models
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict

DEFAULT_PORT = 8000


@dataclass(frozen=True)
class Endpoint:
    """One network location that may host the backend"""
    host: str
    port: int = DEFAULT_PORT
    scheme: str = "http"

    @classmethod
    def parse(cls, address: str, default_port: int = DEFAULT_PORT) -> "Endpoint":
        """Accepts "host", "host:port" or a full http(s):// URL"""
        address = address.strip()
        if "://" not in address:
            address = f"http://{address}"
        parts = urlsplit(address)
        if not parts.hostname:
            raise ValueError(f"Invalid backend address: {address}")
        return cls(
            host=parts.hostname,
            port=parts.port or default_port,
            scheme=parts.scheme or "http",
        )

    @property
    def base_url(self) -> str:
        return f"{self.scheme}://{self.host}:{self.port}"

    def url(self, path: str) -> str:
        clean = path if path.startswith("/") else f"/{path}"
        return f"{self.base_url}{clean}"

    def ws_url(self, path: str) -> str:
        ws_scheme = "wss" if self.scheme == "https" else "ws"
        clean = path if path.startswith("/") else f"/{path}"
        return f"{ws_scheme}://{self.host}:{self.port}{clean}"

    def __str__(self) -> str:
        return self.base_url


@dataclass(frozen=True)
class DiscoveryResult:
    """A verified backend, produced once per successful discovery cycle"""
    endpoint: Endpoint
    verified_at: datetime
    service_name: str
    service_version: str
    method: str = "quick_scan"  # "override", "last_known", "quick_scan", "full_scan"


class HealthPayload(BaseModel):
    """Body of GET /health; extra fields are kept but ignored"""
    model_config = ConfigDict(extra="allow")

    status: Optional[str] = None
    service: str
    version: str
