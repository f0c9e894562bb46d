"""
Peer records.

A Peer is a live, ephemeral relationship with one remote endpoint. Its
lifecycle is one-way:

    CONNECTING -> ACTIVE -> INACTIVE

INACTIVE is terminal. Reconnecting to the same address creates a new Peer.
"""

import time
import uuid
from enum import Enum
from typing import Optional
from dataclasses import dataclass, field

from .protocol import PeerConnection


class PeerState(Enum):
    """Connection state of a peer."""
    CONNECTING = "connecting"
    ACTIVE = "active"
    INACTIVE = "inactive"


_TRANSITIONS = {
    PeerState.CONNECTING: {PeerState.ACTIVE, PeerState.INACTIVE},
    PeerState.ACTIVE: {PeerState.INACTIVE},
    PeerState.INACTIVE: set(),
}


class InvalidTransition(Exception):
    """Raised on a state change the peer lifecycle does not allow."""
    pass


@dataclass
class Peer:
    """A live connection to a remote node."""
    address: str
    connection: Optional[PeerConnection] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    node_id: Optional[str] = None  # None for inbound connections
    outbound: bool = False
    last_active: float = field(default_factory=time.time)
    state: PeerState = PeerState.CONNECTING

    @property
    def is_active(self) -> bool:
        return self.state is PeerState.ACTIVE

    def transition(self, new_state: PeerState):
        """
        Move to a new state.

        Raises:
            InvalidTransition: if the lifecycle does not allow the move
        """
        if new_state is self.state:
            return
        if new_state not in _TRANSITIONS[self.state]:
            raise InvalidTransition(
                f"Peer {self.id}: {self.state.value} -> {new_state.value}"
            )
        self.state = new_state

    def activate(self):
        self.transition(PeerState.ACTIVE)

    def deactivate(self):
        """Mark the peer inactive. Safe to call more than once."""
        self.transition(PeerState.INACTIVE)

    def touch(self):
        """Record activity from this peer."""
        self.last_active = time.time()

    def to_dict(self) -> dict:
        """Peer summary for the control plane."""
        return {
            'id': self.id,
            'address': self.address,
            'nodeId': self.node_id,
            'state': self.state.value,
            'isActive': self.is_active,
            'outbound': self.outbound,
            'lastActive': self.last_active,
        }
