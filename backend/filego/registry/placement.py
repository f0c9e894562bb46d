"""Replica placement over the node registry."""

import logging
from typing import List

from ..exceptions import InvalidInputError
from .nodes import NodeRegistry, NodeStatus

logger = logging.getLogger(__name__)


class PlacementSelector:
    """
    Picks nodes to hold replicas of an object.

    Strategy: keep active nodes with at least `size` bytes free, rank them by
    free space (largest first), take the top `replicas`.

    Advisory only. Nothing is reserved, so the answer can be stale by the
    time a caller acts on it.
    """

    def __init__(self, registry: NodeRegistry):
        self.registry = registry

    def select(self, size: int, replicas: int) -> List[str]:
        """
        Args:
            size: Bytes each replica needs
            replicas: Desired replica count

        Returns:
            Up to `replicas` node ids, most free space first
        """
        if size < 0:
            raise InvalidInputError("Required size cannot be negative")
        if replicas < 1:
            raise InvalidInputError("Replica count must be at least 1")

        eligible = [
            n for n in self.registry.list()
            if n.status is NodeStatus.ACTIVE and n.free_space >= size
        ]
        eligible.sort(key=lambda n: n.free_space, reverse=True)

        selected = [n.id for n in eligible[:replicas]]
        if len(selected) < replicas:
            logger.info(
                f"Placement for {size} bytes: wanted {replicas} replicas, "
                f"only {len(selected)} eligible nodes"
            )
        return selected
