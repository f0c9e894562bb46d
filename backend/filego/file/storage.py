"""
Chunk Store

Storage Layout:
```
<root>/
├── <file_id>/          # One directory per split file
│   ├── <chunk_id>      # Raw chunk bytes, named by their SHA-256
│   └── ...
└── manifests/
    └── <file_id>.json  # Ordered ChunkInfo list recorded by split()
```

Writes go straight to their final path: no fsync and no temp-file rename.
A crash mid-write can leave a chunk whose bytes do not match its name.
"""

import json
import asyncio
import hashlib
import logging
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union
from dataclasses import dataclass

import aiofiles
import aiofiles.os

from ..exceptions import InvalidInputError, IOFailureError, NotFoundError
from .chunker import ChunkInfo, hash_bytes, normalize_chunk_size, DEFAULT_CHUNK_SIZE

logger = logging.getLogger(__name__)

MANIFESTS_DIR = "manifests"


@dataclass
class StoreStats:
    """Statistics about stored chunks."""
    files: int
    chunks: int
    bytes: int

    def to_dict(self) -> dict:
        return {'files': self.files, 'chunks': self.chunks, 'bytes': self.bytes}


def _check_component(value: str, what: str) -> str:
    """Ids become path components, so they must not escape the store root."""
    if not value or value in ('.', '..', MANIFESTS_DIR) or '/' in value or '\\' in value:
        raise InvalidInputError(f"Invalid {what}: {value!r}")
    return value


class ChunkStore:
    """
    Splits files into content-addressed chunks and puts them back together.

    Provides:
    - split / reassemble of whole files
    - direct get / put of a single addressed chunk
    - per-file chunk lists recorded at split time
    """

    def __init__(self, root: Union[str, Path], chunk_size: int = DEFAULT_CHUNK_SIZE,
                 node_id: str = ""):
        """
        Args:
            root: Directory chunks are stored under
            chunk_size: Default chunk size for split()
            node_id: Recorded as the location of chunks this store writes
        """
        self.root = Path(root)
        self.chunk_size = normalize_chunk_size(chunk_size)
        self.node_id = node_id
        self.manifests_dir = self.root / MANIFESTS_DIR

        self._manifests: Dict[str, List[ChunkInfo]] = {}
        self._lock = asyncio.Lock()

        self.manifests_dir.mkdir(parents=True, exist_ok=True)

    def _file_dir(self, file_id: str) -> Path:
        return self.root / _check_component(file_id, "file id")

    def _chunk_path(self, file_id: str, chunk_id: str) -> Path:
        return self._file_dir(file_id) / _check_component(chunk_id, "chunk id")

    def _manifest_path(self, file_id: str) -> Path:
        return self.manifests_dir / f"{_check_component(file_id, 'file id')}.json"

    # === File Operations ===

    async def split(self, file_path: Union[str, Path],
                    chunk_size: Optional[int] = None) -> Tuple[str, List[ChunkInfo]]:
        """
        Split a file into chunks stored under <root>/<file_id>/<chunk_id>.

        The file is read once to hash it, rewound, then read again chunk by
        chunk. The last chunk may be shorter than the chunk size.

        Returns:
            (file_id, chunks ordered by index)

        Raises:
            NotFoundError: the file does not exist
            IOFailureError: any other filesystem error
        """
        size = normalize_chunk_size(chunk_size) if chunk_size is not None else self.chunk_size
        file_path = Path(file_path)
        chunks: List[ChunkInfo] = []

        try:
            async with aiofiles.open(file_path, 'rb') as f:
                hasher = hashlib.sha256()
                while True:
                    block = await f.read(size)
                    if not block:
                        break
                    hasher.update(block)
                file_id = hasher.hexdigest()

                await f.seek(0)

                file_dir = self._file_dir(file_id)
                await aiofiles.os.makedirs(file_dir, exist_ok=True)

                index = 0
                while True:
                    data = await f.read(size)
                    if not data:
                        break

                    chunk_id = hash_bytes(data)
                    async with aiofiles.open(file_dir / chunk_id, 'wb') as out:
                        await out.write(data)

                    chunks.append(ChunkInfo(
                        id=chunk_id,
                        index=index,
                        size=len(data),
                        file_id=file_id,
                        location=self.node_id,
                    ))
                    index += 1

            await self._save_manifest(file_id, chunks)

        except FileNotFoundError as e:
            raise NotFoundError(f"File not found: {file_path}") from e
        except OSError as e:
            raise IOFailureError(f"Failed to split {file_path}: {e}") from e

        async with self._lock:
            self._manifests[file_id] = list(chunks)

        logger.info(f"Split {file_path.name} into {len(chunks)} chunks "
                    f"(file {file_id[:16]}..., chunk size {size})")
        return file_id, chunks

    async def reassemble(self, file_id: str, chunks: List[ChunkInfo],
                         output_path: Union[str, Path]) -> Path:
        """
        Write chunks to output_path in index order.

        Raises:
            InvalidInputError: indices are not exactly 0..N-1
            NotFoundError: a chunk is missing from disk
            IOFailureError: any other filesystem error
        """
        ordered: List[Optional[ChunkInfo]] = [None] * len(chunks)
        for chunk in chunks:
            if chunk.index < 0 or chunk.index >= len(chunks):
                raise InvalidInputError(f"Invalid chunk index: {chunk.index}")
            if ordered[chunk.index] is not None:
                raise InvalidInputError(f"Duplicate chunk index: {chunk.index}")
            ordered[chunk.index] = chunk

        chunk_paths = [self._chunk_path(file_id, chunk.id) for chunk in ordered]
        output_path = Path(output_path)

        # Fail before the output is opened so a missing chunk leaves no file behind
        for chunk, path in zip(ordered, chunk_paths):
            if not await aiofiles.os.path.isfile(path):
                raise NotFoundError(
                    f"Chunk {chunk.id} (index {chunk.index}) of file {file_id} not found"
                )

        opened = False
        try:
            await aiofiles.os.makedirs(output_path.parent, exist_ok=True)
            async with aiofiles.open(output_path, 'wb') as out:
                opened = True
                for path in chunk_paths:
                    async with aiofiles.open(path, 'rb') as f:
                        await out.write(await f.read())

        except OSError as e:
            if opened:
                await self._discard_partial(output_path)
            if isinstance(e, FileNotFoundError):
                raise NotFoundError(f"A chunk of file {file_id} disappeared during reassembly") from e
            raise IOFailureError(f"Failed to reassemble {file_id}: {e}") from e

        logger.info(f"Reassembled file {file_id[:16]}... from {len(chunks)} chunks to {output_path}")
        return output_path

    async def _discard_partial(self, output_path: Path):
        try:
            await aiofiles.os.remove(output_path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove partial output {output_path}: {e}")

    # === Chunk Operations ===

    async def get(self, file_id: str, chunk_id: str) -> bytes:
        """
        Read one chunk.

        Raises:
            NotFoundError: no such chunk
            IOFailureError: read failed
        """
        path = self._chunk_path(file_id, chunk_id)
        try:
            async with aiofiles.open(path, 'rb') as f:
                return await f.read()
        except FileNotFoundError as e:
            raise NotFoundError(f"Chunk {chunk_id} of file {file_id} not found") from e
        except OSError as e:
            raise IOFailureError(f"Failed to read chunk {chunk_id}: {e}") from e

    async def put(self, file_id: str, chunk_id: str, data: bytes) -> Path:
        """
        Write one chunk, creating the file's directory if needed.

        The bytes are stored as given; the id is not checked against them.
        """
        path = self._chunk_path(file_id, chunk_id)
        try:
            await aiofiles.os.makedirs(path.parent, exist_ok=True)
            async with aiofiles.open(path, 'wb') as f:
                await f.write(data)
        except OSError as e:
            raise IOFailureError(f"Failed to write chunk {chunk_id}: {e}") from e

        logger.debug(f"Stored chunk {chunk_id[:16]}... of file {file_id[:16]}... ({len(data)} bytes)")
        return path

    async def has_chunk(self, file_id: str, chunk_id: str) -> bool:
        """Check if a chunk exists on disk."""
        return await aiofiles.os.path.isfile(self._chunk_path(file_id, chunk_id))

    # === Manifests ===

    async def list_chunks(self, file_id: str) -> List[ChunkInfo]:
        """
        Chunks recorded for a file by split(), ordered by index.

        Raises:
            NotFoundError: the file was never split here
        """
        async with self._lock:
            cached = self._manifests.get(file_id)
        if cached is not None:
            return list(cached)

        path = self._manifest_path(file_id)
        try:
            async with aiofiles.open(path, 'r') as f:
                data = json.loads(await f.read())
        except FileNotFoundError as e:
            raise NotFoundError(f"No chunk list recorded for file {file_id}") from e
        except (OSError, ValueError) as e:
            raise IOFailureError(f"Failed to load chunk list for {file_id}: {e}") from e

        chunks = sorted((ChunkInfo.from_dict(c) for c in data['chunks']), key=lambda c: c.index)
        async with self._lock:
            self._manifests[file_id] = list(chunks)
        return chunks

    def list_files(self) -> List[str]:
        """File ids with a recorded chunk list."""
        return sorted(p.stem for p in self.manifests_dir.glob("*.json"))

    async def _save_manifest(self, file_id: str, chunks: List[ChunkInfo]):
        payload = {
            'fileId': file_id,
            'chunks': [c.to_dict() for c in chunks],
        }
        async with aiofiles.open(self._manifest_path(file_id), 'w') as f:
            await f.write(json.dumps(payload, indent=2))

    # === Statistics ===

    def get_stats(self) -> StoreStats:
        """Count file directories, chunks and bytes on disk."""
        files = chunks = total_bytes = 0

        for file_dir in self.root.iterdir():
            if not file_dir.is_dir() or file_dir.name == MANIFESTS_DIR:
                continue
            files += 1
            for chunk_file in file_dir.iterdir():
                if chunk_file.is_file():
                    chunks += 1
                    total_bytes += chunk_file.stat().st_size

        return StoreStats(files=files, chunks=chunks, bytes=total_bytes)
