"""
Object-store ports used by the curriculum pipeline.

Keep these small and framework-agnostic so tests can supply simple fakes.
"""
from __future__ import annotations

from typing import Protocol


class ObjectStoreProtocol(Protocol):
    """Blob storage addressed by (bucket, key).

    Intent:
        Let the transcription worker and the quiz-set flows persist page
        bitmaps and source documents without depending on a cloud SDK.

    Permissions:
        Implementations must keep buckets private; callers only ever hand out
        short-lived signed URLs.
    """

    def put_object(self, *, bucket: str, key: str, body: bytes, content_type: str) -> None: ...

    def get_object(self, *, bucket: str, key: str) -> bytes: ...

    def presign_download(self, *, bucket: str, key: str, expires_in: int) -> str: ...


class NullObjectStore:
    """Signals that no object store is configured (prod without Supabase)."""

    def put_object(self, *, bucket: str, key: str, body: bytes, content_type: str) -> None:  # noqa: D401
        raise RuntimeError("storage_adapter_not_configured")

    def get_object(self, *, bucket: str, key: str) -> bytes:  # noqa: D401
        raise RuntimeError("storage_adapter_not_configured")

    def presign_download(self, *, bucket: str, key: str, expires_in: int) -> str:  # noqa: D401
        raise RuntimeError("storage_adapter_not_configured")


__all__ = ["ObjectStoreProtocol", "NullObjectStore"]
