"""Shared pytest fixtures for all tests."""

import pytest

from filego.file import ChunkStore, LocalFileSystem
from filego.registry import NodeRegistry


@pytest.fixture
def registry():
    """Empty node registry."""
    return NodeRegistry()


@pytest.fixture
def chunk_store(tmp_path):
    """
    Chunk store rooted in a temporary directory.

    Args:
        tmp_path: pytest tmp_path fixture

    Returns:
        ChunkStore with the default chunk size
    """
    return ChunkStore(tmp_path / 'chunks', node_id='node-under-test')


@pytest.fixture
def local_fs(tmp_path):
    """Local filesystem confined to a temporary directory."""
    return LocalFileSystem(tmp_path / 'files')


@pytest.fixture
def sample_file(tmp_path):
    """
    Create a file spanning several default-size chunks.

    Returns:
        Path to a binary file of 200,000 bytes (4 chunks at 64KB)
    """
    file_path = tmp_path / 'sample.bin'
    file_path.write_bytes(bytes(i % 251 for i in range(200_000)))
    return file_path
