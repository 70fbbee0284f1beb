from __future__ import annotations
import io
from contextlib import contextmanager
from functools import lru_cache
from pathlib import Path
from threading import Lock
from typing import Dict, Iterator, Optional, TextIO

from settings import get_settings


class UploadStore:
    """Keyed blob store for uploaded CSV files, mirrored to disk when rooted."""

    def __init__(self, name: str, root_path: Optional[Path] = None) -> None:
        self.name = name
        self._blobs: Dict[str, bytes] = {}
        self.root_path = root_path
        self._lock = Lock()
        if root_path:
            root_path.mkdir(parents=True, exist_ok=True)

    def put(self, key: str, data: bytes) -> None:
        with self._lock:
            if self.root_path:
                path = self.root_path / key
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_bytes(data)
            else:
                self._blobs[key] = data

    def get(self, key: str) -> bytes:
        with self._lock:
            data = self._blobs.get(key)
        if data is not None:
            return data

        if self.root_path:
            path = self.root_path / key
            if path.exists():
                return path.read_bytes()

        raise KeyError(f"Upload {key!r} not found in store {self.name!r}.")

    @contextmanager
    def open_text(
        self, key: str, encoding: str = "utf-8-sig", newline: Optional[str] = ""
    ) -> Iterator[TextIO]:
        """Yield a text handle for the stored upload, streaming from disk when rooted."""

        if self.root_path:
            path = self.root_path / key
            if not path.exists():
                raise KeyError(f"Upload {key!r} not found in store {self.name!r}.")

            with path.open("r", encoding=encoding, newline=newline) as handle:
                yield handle
            return

        buffer = io.StringIO(self.get(key).decode(encoding), newline=newline)
        try:
            yield buffer
        finally:
            buffer.close()


@lru_cache
def build_default_store(
    name: Optional[str] = None,
    root_path: Optional[str] = None,
) -> UploadStore:
    settings = get_settings()
    store_name = settings.upload_store_name if name is None else name
    store_root = settings.upload_store_root_path if root_path is None else root_path
    return UploadStore(name=store_name, root_path=Path(store_root) if store_root else None)
