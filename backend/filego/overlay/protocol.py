"""
Overlay Wire Protocol

Design Decision: Framing
========================

Options Considered:
1. Newline-delimited JSON
   - Trivial to debug
   - Payload bytes must never contain a newline

2. Length-prefixed frames
   - Binary safe, reader knows exactly how much to wait for
   - Need to handle framing ourselves

3. gRPC / HTTP
   - Heavy dependency for a handful of message types

Decision: 4-byte big-endian length prefix + JSON envelope
- Reader does an exact read of the prefix, then an exact read of the body
- Envelope is self-describing so a bad body only costs one message
- Payload is opaque bytes, carried as base64 inside the JSON

Frame Format:
```
+----------------+------------------------------------------+
| Length (4B BE) | {"type": <int>, "payload": <b64 | null>}  |
+----------------+------------------------------------------+
```

Failure scoping:
- Short read / EOF on prefix or body -> the connection is lost
- Body decodes badly -> ProtocolError for that one message, stream continues
"""

import asyncio
import base64
import binascii
import json
import struct
import logging
from enum import IntEnum
from typing import Optional, Tuple
from dataclasses import dataclass

from ..exceptions import ConnectionLostError, ProtocolError

logger = logging.getLogger(__name__)

LENGTH_PREFIX = struct.Struct('>I')

# Anything larger cannot be a sane envelope and the stream cannot be resynced
MAX_FRAME_SIZE = 100 * 1024 * 1024


class MessageType(IntEnum):
    """Overlay message types. Values are the integers sent on the wire."""
    PING = 0
    PONG = 1
    NODE_DISCOVERY = 2
    NODE_ANNOUNCEMENT = 3

    # Reserved for chunk transfer, no handlers registered
    FILE_REQUEST = 4
    FILE_INFO = 5
    FILE_CHUNK = 6
    ERROR = 7


@dataclass
class Message:
    """A single overlay message: one per frame."""
    type: MessageType
    payload: bytes = b''

    def encode(self) -> bytes:
        """Serialize the envelope (without the length prefix)."""
        envelope = {
            'type': int(self.type),
            'payload': base64.b64encode(self.payload).decode('ascii') if self.payload else None,
        }
        return json.dumps(envelope).encode('utf-8')

    def to_frame(self) -> bytes:
        """Serialize to a complete frame: length prefix followed by envelope."""
        body = self.encode()
        return LENGTH_PREFIX.pack(len(body)) + body

    @classmethod
    def decode(cls, data: bytes) -> 'Message':
        """
        Parse an envelope.

        Raises:
            ProtocolError: if the bytes are not a valid envelope
        """
        try:
            envelope = json.loads(data.decode('utf-8'))
        except (UnicodeDecodeError, ValueError) as e:
            raise ProtocolError(f"Malformed envelope: {e}") from e

        if not isinstance(envelope, dict) or 'type' not in envelope:
            raise ProtocolError("Envelope is missing a type")

        raw_type = envelope['type']
        if isinstance(raw_type, bool) or not isinstance(raw_type, int):
            raise ProtocolError(f"Message type must be an integer, got {raw_type!r}")
        try:
            msg_type = MessageType(raw_type)
        except ValueError:
            raise ProtocolError(f"Unknown message type: {raw_type}")

        raw_payload = envelope.get('payload')
        if raw_payload is None:
            payload = b''
        elif isinstance(raw_payload, str):
            try:
                payload = base64.b64decode(raw_payload, validate=True)
            except (binascii.Error, ValueError) as e:
                raise ProtocolError(f"Invalid payload encoding: {e}") from e
        else:
            raise ProtocolError("Payload must be a base64 string")

        return cls(type=msg_type, payload=payload)


def encode_addresses(addresses) -> bytes:
    """Encode a NodeAnnouncement payload."""
    return json.dumps(list(addresses)).encode('utf-8')


def decode_addresses(payload: bytes) -> list:
    """
    Decode a NodeAnnouncement payload into a list of "host:port" strings.

    Raises:
        ProtocolError: if the payload is not a JSON list of strings
    """
    try:
        addresses = json.loads(payload.decode('utf-8')) if payload else []
    except (UnicodeDecodeError, ValueError) as e:
        raise ProtocolError(f"Malformed peer list: {e}") from e

    if not isinstance(addresses, list) or not all(isinstance(a, str) for a in addresses):
        raise ProtocolError("Peer list must be a list of address strings")
    return addresses


async def read_frame(reader: asyncio.StreamReader) -> bytes:
    """
    Read one frame body from a stream.

    Raises:
        ConnectionLostError: on EOF, short read, or an impossible length
    """
    try:
        prefix = await reader.readexactly(LENGTH_PREFIX.size)
        (length,) = LENGTH_PREFIX.unpack(prefix)

        if length > MAX_FRAME_SIZE:
            raise ConnectionLostError(f"Frame too large: {length}")

        return await reader.readexactly(length) if length else b''

    except asyncio.IncompleteReadError as e:
        raise ConnectionLostError("Stream closed") from e
    except (ConnectionError, OSError) as e:
        raise ConnectionLostError(str(e)) from e


class PeerConnection:
    """
    Framed duplex byte stream to one remote node.

    Owns the socket lifecycle. Writes are serialized with a lock so that
    frames from concurrent senders never interleave.
    """

    def __init__(self, reader: asyncio.StreamReader,
                 writer: asyncio.StreamWriter):
        self.reader = reader
        self.writer = writer
        self._closed = False
        self._write_lock = asyncio.Lock()

    @property
    def remote_address(self) -> Optional[Tuple[str, int]]:
        """Get the remote (host, port) of the socket."""
        peername = self.writer.get_extra_info('peername')
        return peername[:2] if peername else None

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def send(self, message: Message):
        """
        Send one message as a single write.

        Raises:
            ConnectionLostError: if the connection is closed or the write fails
        """
        if self._closed:
            raise ConnectionLostError("Connection closed")

        frame = message.to_frame()
        async with self._write_lock:
            try:
                self.writer.write(frame)
                await self.writer.drain()
            except (ConnectionError, OSError) as e:
                raise ConnectionLostError(str(e)) from e

    async def receive(self) -> Message:
        """
        Receive the next message.

        Raises:
            ConnectionLostError: the stream is gone (fatal)
            ProtocolError: this frame was undecodable (the stream is still usable)
        """
        if self._closed:
            raise ConnectionLostError("Connection closed")
        body = await read_frame(self.reader)
        return Message.decode(body)

    async def close(self):
        """Close the connection."""
        if self._closed:
            return
        self._closed = True
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except (ConnectionError, OSError) as e:
            logger.debug(f"Error while closing connection: {e}")


async def open_connection(host: str, port: int,
                          timeout: float = 5.0) -> PeerConnection:
    """
    Dial a peer with a bounded timeout.

    Raises:
        ConnectionLostError: if the dial fails or times out
    """
    try:
        reader, writer = await asyncio.wait_for(
            asyncio.open_connection(host, port),
            timeout=timeout
        )
    except asyncio.TimeoutError as e:
        raise ConnectionLostError(f"Timed out connecting to {host}:{port}") from e
    except OSError as e:
        raise ConnectionLostError(f"Failed to connect to {host}:{port}: {e}") from e

    return PeerConnection(reader, writer)
