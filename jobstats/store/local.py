"""
Directory-tree object store for development and tests.

Keys map to relative paths under a root directory. Writes go through a
temp file and an atomic rename so readers never see half-written objects.
"""

import os
import tempfile
from pathlib import Path
from typing import List, Optional

from ..errors import StorageUnavailable
from .base import ObjectStore


class LocalObjectStore(ObjectStore):

    def __init__(self, root: Path, public_base_url: Optional[str] = None):
        self.root = Path(root)
        self.public_base_url = public_base_url

    def __repr__(self) -> str:
        return f"LocalObjectStore({str(self.root)!r})"

    def _path(self, key: str) -> Path:
        if not key or key.startswith("/") or ".." in key.split("/"):
            raise ValueError(f"Invalid object key: {key!r}")
        return self.root / key

    def is_available(self) -> bool:
        return True

    def get_bytes(self, key: str) -> Optional[bytes]:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            return path.read_bytes()
        except OSError as e:
            raise StorageUnavailable(f"Cannot read {key}: {e}")

    def put_bytes(self, key, body, content_type="application/octet-stream",
                  cache_control=None, content_encoding=None) -> None:
        path = self._path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=".tmp-", dir=str(path.parent))
            with os.fdopen(fd, "wb") as f:
                f.write(body)
            os.replace(tmp_name, path)
        except OSError as e:
            raise StorageUnavailable(f"Cannot write {key}: {e}")

    def delete(self, key: str) -> None:
        path = self._path(key)
        try:
            path.unlink()
        except FileNotFoundError:
            return
        except OSError as e:
            raise StorageUnavailable(f"Cannot delete {key}: {e}")

    def list_keys(self, prefix: str = "") -> List[str]:
        if not self.root.exists():
            return []
        keys = []
        for path in self.root.rglob("*"):
            if not path.is_file() or path.name.startswith(".tmp-"):
                continue
            key = path.relative_to(self.root).as_posix()
            if key.startswith(prefix):
                keys.append(key)
        return sorted(keys)
