"""
Registry Module - Node Directory and Placement

Tracks storage nodes (capacity, status, liveness) and ranks them for
replica placement.
"""

from .nodes import Node, NodeRegistry, NodeStatus, SystemStatus
from .placement import PlacementSelector

__all__ = [
    'Node',
    'NodeRegistry',
    'NodeStatus',
    'SystemStatus',
    'PlacementSelector',
]
