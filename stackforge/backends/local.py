"""Local filesystem blob store.

Storage layout: {base_path}/{key}. Keys are plain relative paths, so a
published bundle can be inspected or synced with ordinary tools.
"""

from __future__ import annotations

from pathlib import Path


class LocalBlobStore:
    """Directory-backed ``BlobStore``.

    Parameters
    ----------
    base_path:
        Root directory for stored objects.
    """

    def __init__(self, base_path: Path) -> None:
        self._base = Path(base_path)
        self._base.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        path = (self._base / key).resolve()
        if self._base.resolve() not in path.parents:
            raise ValueError(f"Key escapes the store root: {key!r}")
        return path

    def put(self, key: str, body: bytes) -> None:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(body)

    def get(self, key: str) -> bytes:
        path = self._path(key)
        if not path.exists():
            raise FileNotFoundError(f"Object not found: {key}")
        return path.read_bytes()

    def exists(self, key: str) -> bool:
        return self._path(key).exists()

    def url_for(self, key: str) -> str:
        return self._path(key).as_uri()
