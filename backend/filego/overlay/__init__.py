"""
Overlay Module - Peer Connections and Flood Discovery

Framed TCP connections between nodes, a type -> handler dispatch table,
and discovery by flooding peer lists.
"""

from .protocol import Message, MessageType, PeerConnection
from .peer import Peer, PeerState
from .network import Overlay, OverlayOptions

__all__ = [
    'Message',
    'MessageType',
    'PeerConnection',
    'Peer',
    'PeerState',
    'Overlay',
    'OverlayOptions',
]
