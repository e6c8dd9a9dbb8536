"""
Connection module for the live status stream
"""

from .models import Snapshot, StreamFrame, parse_frame
from .session import ConnectionSession

__all__ = ['ConnectionSession', 'Snapshot', 'StreamFrame', 'parse_frame']
