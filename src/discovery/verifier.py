"""
Service verification: is the thing answering on this endpoint really our backend?
"""

import logging
import re
from datetime import datetime, timezone
from typing import Dict, List

from pydantic import ValidationError

from link_errors import TransportError, VerificationFailed
from transport import BackendTransport
from .models import DiscoveryResult, Endpoint, HealthPayload

logger = logging.getLogger(__name__)


class ServiceVerifier:
    """Checks health fingerprint and required endpoints of a candidate"""

    def __init__(self, config: Dict, transport: BackendTransport):
        self.transport = transport
        self.health_path = config.get('health_path', '/health')
        self.check_timeout = config.get('check_timeout', 2)
        self.expected_service = config.get('expected_service', 'elixir-backend')
        self.version_pattern = re.compile(config.get('version_pattern', r'^\d+\.\d+\.\d+'))
        self.verify_endpoints: List[str] = config.get('verify_endpoints', [])

    async def verify(self, endpoint: Endpoint, method: str = "quick_scan") -> DiscoveryResult:
        """Return a DiscoveryResult or raise VerificationFailed"""
        health = await self._fetch_health(endpoint)

        if health.service != self.expected_service:
            raise VerificationFailed(endpoint, f"service {health.service!r} != {self.expected_service!r}")
        if not self.version_pattern.match(health.version):
            raise VerificationFailed(endpoint, f"version {health.version!r} does not match pattern")

        for path in self.verify_endpoints:
            await self._check_reachable(endpoint, path)

        logger.debug(f"Verified {health.service} {health.version} at {endpoint}")
        return DiscoveryResult(
            endpoint=endpoint,
            verified_at=datetime.now(timezone.utc),
            service_name=health.service,
            service_version=health.version,
            method=method
        )

    async def _fetch_health(self, endpoint: Endpoint) -> HealthPayload:
        url = endpoint.url(self.health_path)
        try:
            status, payload = await self.transport.get_json(url, timeout=self.check_timeout)
        except TransportError as e:
            raise VerificationFailed(endpoint, e.reason)

        if not 200 <= status < 300:
            raise VerificationFailed(endpoint, f"HTTP {status}")
        if not isinstance(payload, dict):
            raise VerificationFailed(endpoint, "health response is not a JSON object")

        # The backend double wraps health in the standard {success, data} envelope
        if 'service' not in payload and isinstance(payload.get('data'), dict):
            payload = payload['data']

        try:
            return HealthPayload.model_validate(payload)
        except ValidationError as e:
            raise VerificationFailed(endpoint, f"malformed health response ({e.error_count()} errors)")

    async def _check_reachable(self, endpoint: Endpoint, path: str) -> None:
        url = endpoint.url(path)
        try:
            status, _ = await self.transport.get_json(url, timeout=self.check_timeout)
        except TransportError as e:
            raise VerificationFailed(endpoint, f"{path} unreachable: {e.reason}")
        if status == 404 or status >= 500:
            raise VerificationFailed(endpoint, f"{path} answered HTTP {status}")
