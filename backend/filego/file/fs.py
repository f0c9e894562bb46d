"""
Local filesystem pass-through for the control plane.

Thin listing, mkdir, move, delete, upload and download over a data
directory. Every path is taken relative to the root and may not resolve
outside it.

Replication factors are kept in memory, keyed by relative path. They follow
a file through move() and are dropped by delete() and by a fresh upload().
"""

import os
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Union
from dataclasses import dataclass

import aiofiles
import aiofiles.os

from ..exceptions import ConflictError, InvalidInputError, IOFailureError, NotFoundError

logger = logging.getLogger(__name__)


@dataclass
class FileEntry:
    """Metadata about a file or directory."""
    name: str
    path: str
    size: int
    is_dir: bool
    mod_time: float
    replicas: int = 1
    available: bool = True

    def to_dict(self) -> dict:
        return {
            'name': self.name,
            'path': self.path,
            'size': self.size,
            'isDir': self.is_dir,
            'modTime': datetime.fromtimestamp(self.mod_time, tz=timezone.utc).isoformat(),
            'replicas': self.replicas,
            'available': self.available,
        }


class LocalFileSystem:
    """File and directory operations confined to a root directory."""

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)
        self._replicas: Dict[str, int] = {}
        self._lock = threading.Lock()

    def _resolve(self, rel_path: str) -> Path:
        full = (self.root / (rel_path or '').lstrip('/\\')).resolve()
        if full != self.root and self.root not in full.parents:
            raise InvalidInputError(f"Path escapes the data directory: {rel_path}")
        return full

    def _entry(self, full: Path) -> FileEntry:
        info = full.stat()
        return FileEntry(
            name=full.name,
            path=full.relative_to(self.root).as_posix(),
            size=info.st_size,
            is_dir=full.is_dir(),
            mod_time=info.st_mtime,
            replicas=self._replicas.get(self._key(full), 1),
        )

    def list(self, dir_path: str = "") -> List[FileEntry]:
        """
        List a directory.

        Raises:
            NotFoundError: directory does not exist
            InvalidInputError: path is not a directory
        """
        full = self._resolve(dir_path)
        if not full.exists():
            raise NotFoundError(f"Directory not found: {dir_path}")
        if not full.is_dir():
            raise InvalidInputError(f"Path is not a directory: {dir_path}")

        entries = []
        for child in sorted(full.iterdir()):
            try:
                entries.append(self._entry(child))
            except OSError:
                # Vanished between listing and stat
                continue
        return entries

    def stat(self, path: str) -> FileEntry:
        full = self._resolve(path)
        if not full.exists():
            raise NotFoundError(f"Path not found: {path}")
        return self._entry(full)

    def mkdir(self, dir_path: str) -> FileEntry:
        """Create a directory and its parents. ConflictError if it exists."""
        full = self._resolve(dir_path)
        if full.exists():
            raise ConflictError(f"Directory already exists: {dir_path}")
        try:
            full.mkdir(parents=True)
        except OSError as e:
            raise IOFailureError(f"Failed to create {dir_path}: {e}") from e
        logger.info(f"Created directory {dir_path}")
        return self._entry(full)

    def move(self, src: str, dst: str) -> FileEntry:
        """Rename within the root."""
        src_full = self._resolve(src)
        dst_full = self._resolve(dst)
        if not src_full.exists():
            raise NotFoundError(f"Path not found: {src}")
        try:
            dst_full.parent.mkdir(parents=True, exist_ok=True)
            os.rename(src_full, dst_full)
        except OSError as e:
            raise IOFailureError(f"Failed to move {src} to {dst}: {e}") from e
        self._move_replicas(self._key(src_full), self._key(dst_full))
        logger.info(f"Moved {src} to {dst}")
        return self._entry(dst_full)

    def delete(self, path: str):
        """
        Delete a file or an empty directory.

        Raises:
            NotFoundError: path does not exist
            InvalidInputError: directory is not empty, or path is the root
        """
        full = self._resolve(path)
        if full == self.root:
            raise InvalidInputError("Cannot delete the data directory itself")
        if not full.exists():
            raise NotFoundError(f"Path not found: {path}")

        try:
            if full.is_dir():
                if any(full.iterdir()):
                    raise InvalidInputError(f"Directory is not empty: {path}")
                full.rmdir()
            else:
                full.unlink()
        except OSError as e:
            raise IOFailureError(f"Failed to delete {path}: {e}") from e
        with self._lock:
            self._replicas.pop(self._key(full), None)
        logger.info(f"Deleted {path}")

    async def upload(self, path: str, data: bytes) -> FileEntry:
        """
        Write a file, creating parent directories and replacing any existing file.

        Raises:
            InvalidInputError: path is the root or an existing directory
            IOFailureError: write failed
        """
        full = self._resolve(path)
        if full == self.root or full.is_dir():
            raise InvalidInputError(f"Cannot upload over a directory: {path}")

        try:
            await aiofiles.os.makedirs(full.parent, exist_ok=True)
            async with aiofiles.open(full, 'wb') as f:
                await f.write(data)
        except OSError as e:
            raise IOFailureError(f"Failed to write {path}: {e}") from e

        with self._lock:
            self._replicas.pop(self._key(full), None)
        logger.info(f"Uploaded {path} ({len(data)} bytes)")
        return self._entry(full)

    async def download(self, path: str) -> bytes:
        """
        Read a whole file.

        Raises:
            NotFoundError: file does not exist
            InvalidInputError: path is a directory
            IOFailureError: read failed
        """
        full = self._resolve(path)
        if not full.exists():
            raise NotFoundError(f"File not found: {path}")
        if full.is_dir():
            raise InvalidInputError(f"Cannot download a directory: {path}")

        try:
            async with aiofiles.open(full, 'rb') as f:
                return await f.read()
        except OSError as e:
            raise IOFailureError(f"Failed to read {path}: {e}") from e

    def set_replicas(self, path: str, replicas: int) -> FileEntry:
        """
        Record the desired replication factor of a file.

        Raises:
            InvalidInputError: replicas < 1, or path is a directory
            NotFoundError: file does not exist
        """
        if replicas < 1:
            raise InvalidInputError(f"Replication factor must be at least 1, got {replicas}")

        full = self._resolve(path)
        if not full.exists():
            raise NotFoundError(f"File not found: {path}")
        if full.is_dir():
            raise InvalidInputError(f"Cannot replicate a directory: {path}")

        with self._lock:
            self._replicas[self._key(full)] = replicas
        logger.info(f"Replication factor of {path} set to {replicas}")
        return self._entry(full)

    def _key(self, full: Path) -> str:
        return full.relative_to(self.root).as_posix()

    def _move_replicas(self, src_key: str, dst_key: str):
        prefix = src_key + '/'
        with self._lock:
            for key in [k for k in self._replicas if k == src_key or k.startswith(prefix)]:
                self._replicas[dst_key + key[len(src_key):]] = self._replicas.pop(key)
