"""
RoomAcoustic package for sweep-based room acoustic measurement and analysis.
"""

__version__ = "0.3.0"

from . import analysis
from . import layout

__all__ = ["analysis", "layout"]
