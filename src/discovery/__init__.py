"""
Discovery module for locating the chamber controller backend
"""

from .manager import BackendDiscovery
from .models import DiscoveryResult, Endpoint, HealthPayload
from .resolver import CandidateResolver
from .verifier import ServiceVerifier

__all__ = ['BackendDiscovery', 'DiscoveryResult', 'Endpoint', 'HealthPayload',
           'CandidateResolver', 'ServiceVerifier']
