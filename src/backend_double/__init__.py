"""
Synthetic backend double for offline development and tests
"""

from .backend import SyntheticBackend, SyntheticBackendConfig
from .chamber_state import ChamberState
from .transport import SyntheticTransport

__all__ = ['SyntheticBackend', 'SyntheticBackendConfig', 'ChamberState', 'SyntheticTransport']
