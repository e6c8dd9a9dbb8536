"""
Command synchronization with optimistic updates
"""

from .models import (COMMAND_ENDPOINTS, CONTROL_BINDINGS, CommandResponse, CommandResult,
                     ControlBinding, OptimisticEntry)
from .pressure import clamp_pressure, step_pressure
from .synchronizer import CommandSynchronizer

__all__ = ['CommandSynchronizer', 'CommandResult', 'CommandResponse', 'ControlBinding',
           'OptimisticEntry', 'COMMAND_ENDPOINTS', 'CONTROL_BINDINGS',
           'clamp_pressure', 'step_pressure']
