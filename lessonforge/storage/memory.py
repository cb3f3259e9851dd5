"""In-process object store for dev and tests (no Supabase required)."""
from __future__ import annotations

from threading import Lock
from typing import Dict, Tuple
from urllib.parse import quote

from lessonforge.curriculum.errors import StorageError


class InMemoryObjectStore:
    """Dict-backed store; signed URLs are fake but deterministic."""

    def __init__(self, base_url: str = "memory://objects") -> None:
        self._objects: Dict[Tuple[str, str], Tuple[bytes, str]] = {}
        self._lock = Lock()
        self._base_url = base_url.rstrip("/")

    def put_object(self, *, bucket: str, key: str, body: bytes, content_type: str) -> None:
        with self._lock:
            self._objects[(bucket, key)] = (bytes(body), content_type)

    def get_object(self, *, bucket: str, key: str) -> bytes:
        with self._lock:
            found = self._objects.get((bucket, key))
        if found is None:
            raise StorageError("object_not_found")
        return found[0]

    def presign_download(self, *, bucket: str, key: str, expires_in: int) -> str:
        return f"{self._base_url}/{quote(bucket)}/{quote(key)}?expires_in={int(expires_in)}"

    def keys(self, bucket: str) -> list[str]:
        with self._lock:
            return sorted(k for (b, k) in self._objects if b == bucket)


__all__ = ["InMemoryObjectStore"]
