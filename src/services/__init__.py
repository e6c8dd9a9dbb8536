"""
Long-running services built on the link components
"""

from .chamber_link import ChamberLink

__all__ = ['ChamberLink']
