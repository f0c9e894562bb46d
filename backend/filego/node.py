"""
FileGo Node - Main Controller

Wires the core components together:
- Overlay for peer connections and flood discovery
- Node registry for capacity / liveness of storage participants
- Placement selector over the registry
- Chunk store for content-addressed file pieces
- Local filesystem pass-through for the control plane
"""

import asyncio
import logging
from pathlib import Path
from typing import List, Optional
from dataclasses import dataclass, field

from .file import ChunkStore, LocalFileSystem, DEFAULT_CHUNK_SIZE
from .overlay import Overlay, OverlayOptions
from .registry import NodeRegistry, PlacementSelector

logger = logging.getLogger(__name__)


@dataclass
class NodeConfig:
    """Configuration for a FileGo node."""
    # Network
    host: str = '0.0.0.0'
    p2p_port: int = 9000
    node_id: str = ''  # Generated if empty
    max_peers: int = 50
    dial_timeout: float = 5.0

    # Storage
    data_dir: Path = Path('./data')
    chunk_size: int = DEFAULT_CHUNK_SIZE

    # Bootstrap / discovery
    peers: List[str] = field(default_factory=list)
    discovery: bool = True
    discovery_interval: float = 30.0


class FileGoNode:
    """
    A complete storage node.

    Components are plain attributes so the control plane can call them
    directly:
    - registry: NodeRegistry
    - overlay: Overlay
    - placement: PlacementSelector
    - chunks: ChunkStore
    - files: LocalFileSystem
    """

    def __init__(self, config: NodeConfig = None):
        self.config = config or NodeConfig()

        self.data_dir = Path(self.config.data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)

        self.registry = NodeRegistry()
        self.overlay = Overlay(
            OverlayOptions(
                host=self.config.host,
                port=self.config.p2p_port,
                node_id=self.config.node_id,
                max_peers=self.config.max_peers,
                dial_timeout=self.config.dial_timeout,
            ),
            self.registry,
        )
        self.placement = PlacementSelector(self.registry)
        self.chunks = ChunkStore(
            self.data_dir / 'chunks',
            chunk_size=self.config.chunk_size,
            node_id=self.overlay.node_id,
        )
        self.files = LocalFileSystem(self.data_dir / 'files')

        self._running = False
        self._discovery_task: Optional[asyncio.Task] = None

    @property
    def node_id(self) -> str:
        return self.overlay.node_id

    @property
    def port(self) -> int:
        return self.overlay.port

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self):
        """
        Start the node.

        1. Bind the overlay listener
        2. Dial configured peers in the background
        3. Start periodic discovery + liveness pings
        """
        if self._running:
            return

        logger.info(f"Starting FileGo node {self.node_id[:16]}...")

        await self.overlay.start()
        self._running = True

        if self.config.peers:
            logger.info(f"Connecting to {len(self.config.peers)} configured peers...")
            self.overlay.connect_many(self.config.peers)

        if self.config.discovery:
            self._discovery_task = asyncio.create_task(self._discovery_loop())

        logger.info("FileGo node started")
        logger.info(f"  Node ID: {self.node_id}")
        logger.info(f"  P2P Port: {self.port}")
        logger.info(f"  Data Dir: {self.data_dir}")

    async def stop(self):
        """Stop the node."""
        if not self._running:
            return

        logger.info("Stopping FileGo node...")
        self._running = False

        if self._discovery_task:
            self._discovery_task.cancel()
            try:
                await self._discovery_task
            except asyncio.CancelledError:
                pass
            self._discovery_task = None

        await self.overlay.stop()
        logger.info("FileGo node stopped")

    async def _discovery_loop(self):
        """Periodically flood discovery and ping peers."""
        while self._running:
            await asyncio.sleep(self.config.discovery_interval)
            asked = self.overlay.discover()
            self.overlay.ping_all()
            logger.debug(f"Discovery round sent to {asked} peers")

    def get_full_stats(self) -> dict:
        """Get complete node statistics."""
        return {
            'node_id': self.node_id,
            'running': self._running,
            'overlay': self.overlay.get_stats(),
            'registry': self.registry.status().to_dict(),
            'chunks': self.chunks.get_stats().to_dict(),
        }


async def run_node(config: NodeConfig = None):
    """
    Run a node until interrupted (convenience function).
    """
    node = FileGoNode(config)

    try:
        await node.start()
        while True:
            await asyncio.sleep(1)
    finally:
        await node.stop()
