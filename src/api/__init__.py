"""
API module for the chamber development backend
"""

from .main_api import DevBackendAPI, backend_from_config
from .control_routes import create_control_routes
from .system_routes import create_system_routes

__all__ = ['DevBackendAPI', 'backend_from_config', 'create_control_routes', 'create_system_routes']
