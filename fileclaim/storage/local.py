"""
Object storage on the local filesystem: keys are POSIX-style relative paths
under storage_base_path (ebooks/demo.pdf -> <base>/ebooks/demo.pdf).
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterator

from fileclaim.storage.base import ObjectStore, StoredObject

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


class LocalObjectStore(ObjectStore):
    def __init__(self, base_path: str) -> None:
        self.base_path = Path(base_path).resolve()

    def _resolve(self, key: str) -> Path | None:
        """Map key to a path inside base_path; None for keys escaping it."""
        key = key.strip().lstrip("/")
        if not key:
            return None
        candidate = (self.base_path / key).resolve()
        if candidate != self.base_path and self.base_path not in candidate.parents:
            logger.warning("storage_key_outside_base", extra={"path": key})
            return None
        return candidate

    def open(self, key: str) -> StoredObject | None:
        path = self._resolve(key)
        if path is None or not path.is_file():
            return None
        try:
            handle = open(path, "rb")
        except FileNotFoundError:
            # removed between is_file() and open()
            return None
        size = os.fstat(handle.fileno()).st_size
        return StoredObject(key=key, size=size, chunks=_iter_file(handle))

    def exists(self, key: str) -> bool:
        path = self._resolve(key)
        return path is not None and path.is_file()

    def list(self, prefix: str = "", limit: int = 1000) -> list[str]:
        if not self.base_path.is_dir():
            return []
        keys: list[str] = []
        for root, _dirs, files in os.walk(self.base_path):
            for name in sorted(files):
                key = Path(root, name).relative_to(self.base_path).as_posix()
                if key.startswith(prefix):
                    keys.append(key)
        keys.sort()
        return keys[:limit]

    def put(self, key: str, content: bytes) -> str:
        path = self._resolve(key)
        if path is None:
            raise ValueError(f"Invalid storage key: {key!r}")
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        return key


def _iter_file(handle) -> Iterator[bytes]:
    with handle:
        while True:
            chunk = handle.read(CHUNK_SIZE)
            if not chunk:
                break
            yield chunk
