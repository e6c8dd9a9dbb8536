"""
Candidate resolution: the ordered list of places the backend may live
"""

import ipaddress
import logging
from typing import Dict, Iterator, List, Optional, Set, Tuple

from link_context import LinkContext
from .models import Endpoint

logger = logging.getLogger(__name__)

PHASE_OVERRIDE = "override"
PHASE_LAST_KNOWN = "last_known"
PHASE_QUICK_SCAN = "quick_scan"
PHASE_FULL_SCAN = "full_scan"


class CandidateResolver:
    """Builds a fresh, lazy candidate sequence for every discovery run"""

    def __init__(self, config: Dict, context: LinkContext):
        self.context = context
        self.port = config.get('port', 8000)
        self.scheme = config.get('scheme', 'http')
        self.override_address: Optional[str] = config.get('override_address')
        self.subnets: List[str] = config.get('subnets', ['192.168.1', '192.168.0', '10.0.0'])
        self.quick_host = config.get('quick_host', 2)
        self.scan_start = config.get('scan_start', 1)
        self.scan_end = config.get('scan_end', 254)
        self.full_scan = config.get('full_scan', False)

    @property
    def has_override(self) -> bool:
        return bool(self.override_address)

    def override(self) -> Endpoint:
        return Endpoint.parse(self.override_address, default_port=self.port)

    def candidates(self) -> Iterator[Tuple[str, Endpoint]]:
        """Yield (phase, endpoint) in resolver order, without duplicates"""
        if self.has_override:
            yield PHASE_OVERRIDE, self.override()
            return

        seen: Set[Endpoint] = set()

        if self.context.last_known:
            seen.add(self.context.last_known)
            yield PHASE_LAST_KNOWN, self.context.last_known

        for host in self.quick_scan_hosts():
            endpoint = self._endpoint(host)
            if endpoint not in seen:
                seen.add(endpoint)
                yield PHASE_QUICK_SCAN, endpoint

        if not self.full_scan:
            return

        for host in self.full_scan_hosts():
            endpoint = self._endpoint(host)
            if endpoint not in seen:
                seen.add(endpoint)
                yield PHASE_FULL_SCAN, endpoint

    def quick_scan_hosts(self) -> List[str]:
        """One gateway-adjacent host per subnet"""
        hosts = []
        for subnet in self.subnets:
            network = self._network(subnet)
            if network is None:
                continue
            hosts.append(str(network.network_address + self.quick_host))
        return hosts

    def full_scan_hosts(self) -> Iterator[str]:
        for subnet in self.subnets:
            network = self._network(subnet)
            if network is None:
                continue
            base = network.network_address
            for offset in range(self.scan_start, self.scan_end + 1):
                address = base + offset
                if address in network:
                    yield str(address)

    def full_scan_size(self) -> int:
        return len(self.subnets) * (self.scan_end - self.scan_start + 1)

    def _endpoint(self, host: str) -> Endpoint:
        return Endpoint(host=host, port=self.port, scheme=self.scheme)

    def _network(self, subnet: str) -> Optional[ipaddress.IPv4Network]:
        """Accepts "192.168.1", "192.168.1.x" or CIDR notation"""
        text = subnet.strip()
        if text.endswith('.x'):
            text = text[:-2]
        if '/' not in text:
            text = f"{text}.0/24"
        try:
            return ipaddress.IPv4Network(text, strict=False)
        except ValueError:
            logger.warning(f"Invalid subnet in discovery config: {subnet}")
            return None
