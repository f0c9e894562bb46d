"""
Overlay Network

Design Decision: Discovery
==========================

Options Considered:
1. Central tracker
   - Simple, but a single point of failure
2. mDNS / UDP broadcast
   - Zero-config, but stays inside one LAN segment
3. Flooding over the peer connections we already have
   - No extra sockets or services
   - Converges toward a full mesh

Decision: Flood discovery
- NodeDiscovery: "who else do you know?"
- NodeAnnouncement: list of addresses of the responder's other active peers
- On an announcement every non-self address gets its own background
  connect(); connect() is idempotent per address so the flood settles

Concurrency:
- One reader task per connection, for the lifetime of that connection
- Broadcasts and flood reconnects are fire-and-forget tasks; their failures
  are logged when the task finishes
- The only timeout is the dial timeout. A peer that keeps its socket open
  but never talks is never evicted
"""

import asyncio
import functools
import logging
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Set
from dataclasses import dataclass

from ..exceptions import (
    ConnectionLostError, FileGoError, InvalidInputError, NotFoundError, ProtocolError
)
from ..registry.nodes import NodeRegistry
from ..utils import (
    format_address, generate_node_id, is_loopback, is_unspecified,
    local_addresses, matches_local, parse_address
)
from .peer import Peer, PeerState
from .protocol import (
    Message, MessageType, PeerConnection, decode_addresses, encode_addresses,
    open_connection
)

logger = logging.getLogger(__name__)

# Handler signature: (peer the message came from, message)
MessageHandler = Callable[[Peer, Message], Awaitable[None]]


@dataclass
class OverlayOptions:
    """Configuration for the overlay listener and dialer."""
    host: str = '0.0.0.0'
    port: int = 9000
    node_id: str = ''  # Generated if empty
    max_peers: int = 50  # Reported, not enforced
    dial_timeout: float = 5.0


class Overlay:
    """
    Live peer set, message dispatch, and flood discovery.

    Peers are keyed by address. An outbound peer is linked to a Node in the
    registry; pings and pongs from it refresh that node's last_seen.
    """

    def __init__(self, options: OverlayOptions = None,
                 registry: NodeRegistry = None):
        self.options = options or OverlayOptions()
        self.node_id = self.options.node_id or generate_node_id()
        self.registry = registry if registry is not None else NodeRegistry()

        self._peers: Dict[str, Peer] = {}  # address -> peer
        self._lock = asyncio.Lock()
        self._handlers: Dict[MessageType, MessageHandler] = {}
        self._dialing: Dict[str, asyncio.Future] = {}

        self._server: Optional[asyncio.AbstractServer] = None
        self._port = self.options.port
        self._local_ips: Set[str] = set()
        self._running = False

        self._readers: Set[asyncio.Task] = set()
        self._background: Set[asyncio.Task] = set()

        self.register_handler(MessageType.PING, self._handle_ping)
        self.register_handler(MessageType.PONG, self._handle_pong)
        self.register_handler(MessageType.NODE_DISCOVERY, self._handle_node_discovery)
        self.register_handler(MessageType.NODE_ANNOUNCEMENT, self._handle_node_announcement)

    @property
    def port(self) -> int:
        """Port the listener is bound to (the configured one until started)."""
        return self._port

    @property
    def is_running(self) -> bool:
        return self._running

    def register_handler(self, msg_type: MessageType, handler: MessageHandler):
        """Set the handler for a message type, replacing any previous one."""
        self._handlers[msg_type] = handler

    # === Lifecycle ===

    async def start(self):
        """Bind the listener and start accepting peers."""
        if self._running:
            return

        self._server = await asyncio.start_server(
            self._handle_inbound,
            self.options.host,
            self.options.port
        )
        self._port = self._server.sockets[0].getsockname()[1]

        loop = asyncio.get_running_loop()
        self._local_ips = await loop.run_in_executor(None, local_addresses)

        self._running = True
        logger.info(f"Overlay listening on {self.options.host}:{self._port} "
                    f"(node {self.node_id[:16]})")

    async def stop(self):
        """Close the listener and every peer connection."""
        if not self._running and self._server is None:
            return

        self._running = False
        if self._server:
            self._server.close()

        async with self._lock:
            peers = list(self._peers.values())
            self._peers.clear()

        for peer in peers:
            peer.deactivate()
            if peer.connection:
                await peer.connection.close()

        tasks = list(self._readers) + list(self._background)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        if self._server:
            await self._server.wait_closed()
            self._server = None

        logger.info(f"Overlay stopped, closed {len(peers)} peer connections")

    # === Peers ===

    async def connect(self, address: str) -> Peer:
        """
        Connect to a peer, or return the existing active peer for the address.

        Concurrent calls for an address that is still dialing share the
        same dial.

        Raises:
            InvalidInputError: malformed address
            ConnectionLostError: dial failed or timed out
        """
        host, port = parse_address(address)

        existing = self._peers.get(address)
        if existing is not None and existing.is_active:
            return existing

        pending = self._dialing.get(address)
        if pending is None:
            pending = asyncio.ensure_future(self._dial(address, host, port))
            self._dialing[address] = pending
            pending.add_done_callback(functools.partial(self._dial_finished, address))

        return await asyncio.shield(pending)

    def connect_many(self, addresses: Iterable[str], attempts: int = 3,
                     delay: float = 2.0):
        """Connect to bootstrap peers in the background, retrying each a few times."""
        for address in addresses:
            address = address.strip()
            if address:
                self._spawn(self._connect_with_retry(address, attempts, delay),
                            f"bootstrap connect to {address}")

    async def disconnect(self, peer_id: str):
        """
        Close a peer's connection and forget it.

        Raises:
            NotFoundError: no peer with that id
        """
        async with self._lock:
            peer = self._find(peer_id)
            if peer is None:
                raise NotFoundError(f"Peer {peer_id} not found")
            del self._peers[peer.address]

        peer.deactivate()
        if peer.connection:
            await peer.connection.close()
        logger.info(f"Disconnected from peer {peer.address}")

    def list_peers(self) -> List[Peer]:
        """Snapshot of the current peers."""
        return list(self._peers.values())

    def get_peer(self, peer_id: str) -> Peer:
        peer = self._find(peer_id)
        if peer is None:
            raise NotFoundError(f"Peer {peer_id} not found")
        return peer

    # === Messaging ===

    async def send(self, peer_id: str, message: Message):
        """
        Send a message to one peer.

        Raises:
            NotFoundError: no peer with that id
            ConnectionLostError: the peer is not active or the write failed
        """
        peer = self.get_peer(peer_id)
        await self._send(peer, message)

    def broadcast(self, message: Message) -> int:
        """
        Send a message to every active peer without waiting.

        Each send runs as its own background task, so one failing peer does
        not hold up or abort the others.

        Returns:
            Number of peers the message was queued for
        """
        targets = [p for p in self._peers.values() if p.is_active]
        for peer in targets:
            self._spawn(self._send(peer, message),
                        f"{message.type.name} to {peer.address}")
        return len(targets)

    def discover(self) -> int:
        """Ask every active peer for its peer list."""
        return self.broadcast(Message(MessageType.NODE_DISCOVERY))

    def ping_all(self) -> int:
        """Ping every active peer."""
        return self.broadcast(Message(MessageType.PING))

    async def is_self_address(self, address: str) -> bool:
        """
        True if the address points back at our own listener.

        The host must be loopback, the wildcard address or one of our interface
        addresses, and the port must equal the bound listener port.
        """
        try:
            host, port = parse_address(address)
        except InvalidInputError:
            return False

        if port != self._port:
            return False
        if is_loopback(host) or is_unspecified(host):
            return True

        try:
            infos = await asyncio.get_running_loop().getaddrinfo(host, None)
        except OSError:
            return False
        return matches_local((info[4][0] for info in infos), self._local_ips)

    def get_stats(self) -> dict:
        """Get overlay statistics."""
        peers = self.list_peers()
        return {
            'node_id': self.node_id,
            'port': self._port,
            'running': self._running,
            'total_peers': len(peers),
            'active_peers': sum(1 for p in peers if p.is_active),
            'max_peers': self.options.max_peers,
            'pending_dials': len(self._dialing),
            'background_tasks': len(self._background),
        }

    # === Internals ===

    async def _dial(self, address: str, host: str, port: int) -> Peer:
        peer = Peer(address=address, outbound=True)
        try:
            peer.connection = await open_connection(
                host, port, timeout=self.options.dial_timeout
            )
        except ConnectionLostError:
            peer.deactivate()
            raise

        async with self._lock:
            # stop() may have run while the socket was opening
            stopped = not self._running
            if not stopped:
                peer.node_id = self._link_node(peer)
                peer.activate()
                self._peers[address] = peer

        if stopped:
            peer.deactivate()
            await peer.connection.close()
            raise ConnectionLostError(f"Overlay stopped while dialing {address}")

        self._spawn_reader(peer)
        logger.info(f"Connected to peer {address} (peer {peer.id[:8]}, node {peer.node_id})")
        return peer

    def _dial_finished(self, address: str, future: asyncio.Future):
        if self._dialing.get(address) is future:
            del self._dialing[address]
        # Retrieve the result so a failed dial nobody awaited is not reported as unhandled
        if not future.cancelled():
            future.exception()

    def _link_node(self, peer: Peer) -> Optional[str]:
        """Find or create the registry node for an outbound peer."""
        existing = self.registry.get_by_address(peer.address)
        if existing is not None:
            self._heartbeat_node(existing.id)
            return existing.id

        try:
            # Capacity is unknown until the node registers itself
            self.registry.register(peer.id, peer.address, 0)
        except FileGoError as e:
            logger.warning(f"Could not register node for peer {peer.address}: {e}")
            return None
        return peer.id

    async def _connect_with_retry(self, address: str, attempts: int, delay: float):
        for attempt in range(1, attempts + 1):
            logger.info(f"Connecting to peer {address} (attempt {attempt})")
            try:
                await self.connect(address)
                return
            except ConnectionLostError as e:
                logger.warning(f"Failed to connect to peer {address}: {e}")
                if attempt < attempts:
                    await asyncio.sleep(delay)
        raise ConnectionLostError(f"Gave up on {address} after {attempts} attempts")

    async def _handle_inbound(self, reader: asyncio.StreamReader,
                              writer: asyncio.StreamWriter):
        """Accept callback: the connection's own task doubles as its reader."""
        connection = PeerConnection(reader, writer)
        if not self._running:
            await connection.close()
            return

        remote = connection.remote_address
        address = format_address(*remote) if remote else f"unknown-{id(connection)}"
        peer = Peer(address=address, connection=connection)
        peer.activate()

        async with self._lock:
            self._peers[address] = peer
        logger.info(f"Accepted peer connection from {address}")

        task = asyncio.current_task()
        self._readers.add(task)
        try:
            await self._read_loop(peer)
        finally:
            self._readers.discard(task)

    def _spawn_reader(self, peer: Peer):
        task = asyncio.create_task(self._read_loop(peer))
        self._readers.add(task)
        task.add_done_callback(self._readers.discard)

    async def _read_loop(self, peer: Peer):
        try:
            while True:
                try:
                    message = await peer.connection.receive()
                except ProtocolError as e:
                    logger.warning(f"Dropping undecodable message from {peer.address}: {e}")
                    continue

                peer.touch()
                await self._dispatch(peer, message)

        except ConnectionLostError as e:
            logger.info(f"Lost connection to peer {peer.address}: {e}")
        finally:
            await self._evict(peer)

    async def _dispatch(self, peer: Peer, message: Message):
        handler = self._handlers.get(message.type)
        if handler is None:
            logger.warning(f"No handler registered for message type "
                           f"{message.type.name} from {peer.address}")
            return

        try:
            await handler(peer, message)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error handling {message.type.name} from {peer.address}: {e}")

    async def _evict(self, peer: Peer):
        peer.deactivate()
        async with self._lock:
            if self._peers.get(peer.address) is peer:
                del self._peers[peer.address]
        if peer.connection:
            await peer.connection.close()

    async def _send(self, peer: Peer, message: Message):
        if peer.state is not PeerState.ACTIVE or peer.connection is None:
            raise ConnectionLostError(f"Peer {peer.address} is not active")
        await peer.connection.send(message)

    def _spawn(self, coro, description: str) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(functools.partial(self._background_done, description))
        return task

    def _background_done(self, description: str, task: asyncio.Task):
        self._background.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning(f"Background {description} failed: {error}")

    def _find(self, peer_id: str) -> Optional[Peer]:
        for peer in self._peers.values():
            if peer.id == peer_id:
                return peer
        return None

    # === Default handlers ===

    def _heartbeat_node(self, node_id: str):
        try:
            self.registry.heartbeat(node_id)
        except NotFoundError:
            logger.debug(f"Node {node_id} is no longer registered")

    def _heartbeat(self, peer: Peer):
        # Inbound peers carry no node id and cannot be heartbeated
        if peer.node_id is not None:
            self._heartbeat_node(peer.node_id)

    async def _handle_ping(self, peer: Peer, message: Message):
        self._heartbeat(peer)
        await self._send(peer, Message(MessageType.PONG))

    async def _handle_pong(self, peer: Peer, message: Message):
        self._heartbeat(peer)

    async def _handle_node_discovery(self, peer: Peer, message: Message):
        """Reply with the addresses of our other active peers."""
        addresses = [
            address for address, other in self._peers.items()
            if other.is_active and other is not peer and address != peer.address
        ]
        await self._send(peer, Message(MessageType.NODE_ANNOUNCEMENT,
                                       encode_addresses(addresses)))

    async def _handle_node_announcement(self, peer: Peer, message: Message):
        """Dial every advertised address that is not us."""
        addresses = decode_addresses(message.payload)
        for address in addresses:
            if await self.is_self_address(address):
                continue
            self._spawn(self.connect(address), f"flood connect to {address}")
