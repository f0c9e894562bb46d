"""
File Chunker

Design Decision: Chunk Size
===========================

| Size    | Pros                          | Cons                           |
|---------|-------------------------------|--------------------------------|
| 64KB    | Fine-grained, good dedup hits | More chunks per file           |
| 256KB   | Good balance                  | -                              |
| 1MB     | Lower overhead                | Coarse, fewer identical chunks |

Decision: 64KB default, 1MB hard cap
- Small chunks make identical runs of bytes across files line up more often
- The cap keeps a single chunk comfortably inside one overlay frame

Chunking Strategy: Fixed-Size, content-addressed
- chunk id = SHA-256 of the chunk's own bytes
- file id  = SHA-256 of the whole file
- Identical chunks get identical ids, in the same file or across files
"""

import hashlib
from typing import Dict, Optional
from dataclasses import dataclass

DEFAULT_CHUNK_SIZE = 64 * 1024  # 65,536 bytes
MAX_CHUNK_SIZE = 1024 * 1024  # 1,048,576 bytes


def normalize_chunk_size(chunk_size: Optional[int]) -> int:
    """Non-positive sizes fall back to the default; large ones are capped."""
    if not chunk_size or chunk_size <= 0:
        return DEFAULT_CHUNK_SIZE
    return min(chunk_size, MAX_CHUNK_SIZE)


def hash_bytes(data: bytes) -> str:
    """SHA-256 of a byte string as lowercase hex."""
    return hashlib.sha256(data).hexdigest()


@dataclass
class ChunkInfo:
    """Information about a single stored chunk."""
    id: str  # SHA-256 of the chunk bytes (hex)
    index: int  # Position in the file
    size: int  # Chunk size in bytes
    file_id: str  # SHA-256 of the whole file (hex)
    location: str = ""  # Node id holding the chunk

    def to_dict(self) -> Dict:
        return {
            'id': self.id,
            'index': self.index,
            'size': self.size,
            'fileId': self.file_id,
            'location': self.location,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'ChunkInfo':
        return cls(
            id=data['id'],
            index=int(data['index']),
            size=int(data.get('size', 0)),
            file_id=data.get('fileId', data.get('file_id', '')),
            location=data.get('location', ''),
        )

