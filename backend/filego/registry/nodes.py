"""
Node Registry

Durable directory of every storage participant we know about, independent
of whether we currently hold a live connection to it.

Design Decision: In-memory map + reverse address index
======================================================

- nodes: node_id -> Node
- addresses: address -> node_id, so one address maps to at most one node

All access goes through a single lock. Critical sections are plain dict
operations and never span network or disk IO. Callers get copies, never the
stored records.
"""

import copy
import time
import threading
import logging
from enum import Enum
from datetime import datetime, timezone
from typing import Dict, List, Optional
from dataclasses import dataclass, field

from ..exceptions import ConflictError, InvalidInputError, NotFoundError
from ..utils import parse_address

logger = logging.getLogger(__name__)


class NodeStatus(str, Enum):
    """Administrative status of a node."""
    ACTIVE = "active"
    INACTIVE = "inactive"
    FAILED = "failed"


@dataclass
class Node:
    """A storage participant."""
    id: str
    address: str
    status: NodeStatus = NodeStatus.ACTIVE
    storage_used: int = 0
    storage_max: int = 0
    last_seen: float = field(default_factory=time.time)

    @property
    def free_space(self) -> int:
        return self.storage_max - self.storage_used

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'address': self.address,
            'status': self.status.value,
            'storageUsed': self.storage_used,
            'storageMax': self.storage_max,
            'lastSeen': datetime.fromtimestamp(self.last_seen, tz=timezone.utc).isoformat(),
        }


@dataclass
class SystemStatus:
    """Aggregate view over all registered nodes."""
    total_nodes: int = 0
    active_nodes: int = 0
    inactive_nodes: int = 0
    failed_nodes: int = 0
    storage_max_total: int = 0
    storage_used_total: int = 0

    @property
    def storage_free_total(self) -> int:
        return self.storage_max_total - self.storage_used_total

    def to_dict(self) -> dict:
        return {
            'totalNodes': self.total_nodes,
            'activeNodes': self.active_nodes,
            'inactiveNodes': self.inactive_nodes,
            'failedNodes': self.failed_nodes,
            'totalStorage': self.storage_max_total,
            'usedStorage': self.storage_used_total,
            'freeStorage': self.storage_free_total,
        }


def _parse_status(status) -> NodeStatus:
    try:
        return NodeStatus(status)
    except ValueError:
        raise InvalidInputError(
            f"Invalid node status {status!r}, expected one of "
            f"{', '.join(s.value for s in NodeStatus)}"
        )


class NodeRegistry:
    """
    Registry of known nodes.

    Thread-safe: the REST layer may call in from a worker thread while the
    overlay updates liveness from the event loop.
    """

    def __init__(self):
        self._nodes: Dict[str, Node] = {}
        self._addresses: Dict[str, str] = {}
        self._lock = threading.RLock()

    def register(self, node_id: str, address: str, storage_max: int) -> Node:
        """
        Register a new node or overwrite an existing one.

        An existing id gets its address, status (back to active) and
        storage_max replaced and its last_seen refreshed. storage_used is
        left as it was.

        Raises:
            InvalidInputError: malformed address, empty id or negative capacity
            ConflictError: address already bound to a different node id
        """
        if not node_id:
            raise InvalidInputError("Node id must not be empty")
        parse_address(address)
        if storage_max < 0:
            raise InvalidInputError("storage_max cannot be negative")

        with self._lock:
            owner = self._addresses.get(address)
            if owner is not None and owner != node_id:
                raise ConflictError(
                    f"Address {address} is already registered to node {owner}"
                )

            node = self._nodes.get(node_id)
            if node is None:
                node = Node(id=node_id, address=address, storage_max=storage_max)
                self._nodes[node_id] = node
                logger.info(f"Registered node {node_id} at {address}")
            else:
                if node.address != address:
                    self._addresses.pop(node.address, None)
                node.address = address
                node.status = NodeStatus.ACTIVE
                node.storage_max = storage_max
                if node.storage_used > storage_max:
                    logger.warning(
                        f"Node {node_id} capacity lowered below its usage, "
                        f"clamping used from {node.storage_used} to {storage_max}"
                    )
                    node.storage_used = storage_max
                node.last_seen = time.time()
                logger.debug(f"Updated node {node_id} at {address}")

            self._addresses[address] = node_id
            return copy.copy(node)

    def get(self, node_id: str) -> Node:
        """Raises NotFoundError if the node is unknown."""
        with self._lock:
            node = self._nodes.get(node_id)
            if node is None:
                raise NotFoundError(f"Node {node_id} not found")
            return copy.copy(node)

    def get_by_address(self, address: str) -> Optional[Node]:
        """Return the node bound to an address, or None."""
        with self._lock:
            node_id = self._addresses.get(address)
            if node_id is None:
                return None
            return copy.copy(self._nodes[node_id])

    def list(self) -> List[Node]:
        """Snapshot of all nodes, in no particular order."""
        with self._lock:
            return [copy.copy(n) for n in self._nodes.values()]

    def heartbeat(self, node_id: str):
        """Refresh last_seen. Raises NotFoundError if the node is unknown."""
        with self._lock:
            self._require(node_id).last_seen = time.time()

    def set_status(self, node_id: str, status) -> Node:
        """
        Raises:
            InvalidInputError: status is not active, inactive or failed
            NotFoundError: unknown node
        """
        new_status = _parse_status(status)
        with self._lock:
            node = self._require(node_id)
            node.status = new_status
            node.last_seen = time.time()
            if new_status is NodeStatus.FAILED:
                logger.warning(f"Marked node {node_id} as failed")
            return copy.copy(node)

    def set_storage_used(self, node_id: str, used: int) -> Node:
        """
        Raises:
            InvalidInputError: used < 0 or used > storage_max
            NotFoundError: unknown node
        """
        with self._lock:
            node = self._require(node_id)
            if used < 0:
                raise InvalidInputError("Storage used cannot be negative")
            if used > node.storage_max:
                raise InvalidInputError(
                    f"Storage used ({used}) exceeds maximum storage ({node.storage_max})"
                )
            node.storage_used = used
            node.last_seen = time.time()
            return copy.copy(node)

    def remove(self, node_id: str):
        """Delete a node and release its address. Raises NotFoundError."""
        with self._lock:
            node = self._require(node_id)
            self._addresses.pop(node.address, None)
            del self._nodes[node_id]
        logger.info(f"Removed node {node_id}")

    def status(self) -> SystemStatus:
        """Aggregate counts and capacity."""
        summary = SystemStatus()
        for node in self.list():
            summary.total_nodes += 1
            summary.storage_max_total += node.storage_max
            summary.storage_used_total += node.storage_used
            if node.status is NodeStatus.ACTIVE:
                summary.active_nodes += 1
            elif node.status is NodeStatus.INACTIVE:
                summary.inactive_nodes += 1
            else:
                summary.failed_nodes += 1
        return summary

    def __len__(self) -> int:
        with self._lock:
            return len(self._nodes)

    def _require(self, node_id: str) -> Node:
        node = self._nodes.get(node_id)
        if node is None:
            raise NotFoundError(f"Node {node_id} not found")
        return node
