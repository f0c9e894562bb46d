"""
File Module - Chunking, Chunk Storage, and Local Files

This module handles file operations for the distributed file system.
"""

from .chunker import ChunkInfo, DEFAULT_CHUNK_SIZE, MAX_CHUNK_SIZE
from .storage import ChunkStore, StoreStats
from .fs import FileEntry, LocalFileSystem

__all__ = [
    'ChunkInfo',
    'DEFAULT_CHUNK_SIZE',
    'MAX_CHUNK_SIZE',
    'ChunkStore',
    'StoreStats',
    'FileEntry',
    'LocalFileSystem',
]
