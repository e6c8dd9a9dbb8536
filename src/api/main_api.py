"""
Development backend: the synthetic chamber served over real HTTP and websocket
"""

from fastapi import FastAPI
from typing import Dict, Optional
import logging

from backend_double import SyntheticBackend, SyntheticBackendConfig

from .control_routes import create_control_routes
from .system_routes import create_system_routes

logger = logging.getLogger(__name__)


def backend_from_config(config: Dict) -> SyntheticBackend:
    """Build the synthetic backend from the dev_backend config section"""
    return SyntheticBackend(SyntheticBackendConfig.from_config(config.get('dev_backend', {})))


class DevBackendAPI:
    """FastAPI app exposing a SyntheticBackend with the controller's wire contract"""

    def __init__(self, config: Dict, backend: Optional[SyntheticBackend] = None):
        self.config = config
        self.backend = backend or backend_from_config(config)
        self.app = FastAPI(
            title="Chamber Development Backend",
            description="Synthetic hyperbaric chamber controller for offline development",
            version=self.backend.config.version
        )
        self._setup_routes()

    def _setup_routes(self):
        """Setup FastAPI routes using modular approach"""
        self.app.include_router(create_system_routes(self.backend))
        self.app.include_router(create_control_routes(self.backend))
