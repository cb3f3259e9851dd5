"""
Supabase-backed object store for lesson pages and quiz-set images.

The adapter is duck-typed over the client so tests can pass a fake. The client
is expected to expose `.storage.from_(bucket)` (supabase-py) or `.from_(bucket)`
(storage3 SyncStorageClient) returning an object offering:

- upload(path, body, file_options) -> Any
- download(path) -> bytes
- create_signed_url(path, expires_in) -> { signedURL | signed_url | url }

Security:
- The caller must initialize the client with the Service Role key.
- Buckets stay private; callers receive only short-lived signed URLs.
"""
from __future__ import annotations

from typing import Any, Dict
import logging
import os
from urllib.parse import urlparse as _urlparse, urlunparse as _urlunparse

from lessonforge.curriculum.errors import StorageError

LOG = logging.getLogger(__name__)


class SupabaseObjectStore:
    """Object store using a supabase/storage3 client."""

    def __init__(self, client: Any):
        self._client = client

    # --- Helpers -----------------------------------------------------------------

    def _bucket(self, bucket: str) -> Any:
        c = self._client
        storage = getattr(c, "storage", None)
        if storage is not None and hasattr(storage, "from_"):
            return storage.from_(bucket)
        if hasattr(c, "from_"):
            return c.from_(bucket)
        raise StorageError("invalid_supabase_client")

    @staticmethod
    def _norm_key(bucket: str, key: str) -> str:
        # storage3 prepends the bucket id itself
        norm_key = key.lstrip("/")
        prefix = f"{bucket}/"
        if norm_key.startswith(prefix):
            norm_key = norm_key[len(prefix):]
        return norm_key

    @staticmethod
    def _first_key(d: Dict[str, Any], *keys: str) -> Any:
        for k in keys:
            if k in d and d[k] is not None:
                return d[k]
        return None

    # --- Protocol methods --------------------------------------------------------

    def put_object(self, *, bucket: str, key: str, body: bytes, content_type: str) -> None:
        """Upload (or overwrite) an object; re-processing a page replaces its bitmap."""
        b = self._bucket(bucket)
        opts = {"content-type": content_type, "contentType": content_type, "upsert": "true"}
        try:
            b.upload(self._norm_key(bucket, key), body, opts)
        except Exception as exc:
            LOG.warning("storage.put_failed bucket=%s error_type=%s", bucket, exc.__class__.__name__)
            raise StorageError("upload_failed") from exc

    def get_object(self, *, bucket: str, key: str) -> bytes:
        b = self._bucket(bucket)
        try:
            data = b.download(self._norm_key(bucket, key))
        except Exception as exc:
            LOG.warning("storage.get_failed bucket=%s error_type=%s", bucket, exc.__class__.__name__)
            raise StorageError("download_failed") from exc
        if not isinstance(data, (bytes, bytearray)):
            raise StorageError("download_failed")
        return bytes(data)

    def presign_download(self, *, bucket: str, key: str, expires_in: int) -> str:
        b = self._bucket(bucket)
        try:
            res = b.create_signed_url(self._norm_key(bucket, key), expires_in)
        except Exception as exc:
            LOG.warning("storage.presign_failed bucket=%s error_type=%s", bucket, exc.__class__.__name__)
            raise StorageError("presign_failed") from exc
        url = None
        if isinstance(res, dict):
            url = self._first_key(res, "signedURL", "signed_url", "url")
            data = res.get("data")
            if url is None and isinstance(data, dict):
                url = self._first_key(data, "signedURL", "signed_url", "url")
        if not url:
            raise StorageError("presign_failed")
        return self._normalize_signed_url_host(str(url))

    # --- Local helpers ---------------------------------------------------------

    def _normalize_signed_url_host(self, url: str) -> str:
        """Rewrite signed URL host to SUPABASE_URL when explicitly enabled.

        Local setups may hand out container-internal hosts; the token is path
        bound, so swapping scheme/host/port keeps the signature valid.
        """
        base = (os.getenv("SUPABASE_URL") or "").strip()
        force = os.getenv("SUPABASE_REWRITE_SIGNED_URL_HOST", "false").lower() == "true"
        if not base or not force:
            return url
        src = _urlparse(url)
        dst = _urlparse(base)
        if not src.scheme or not src.netloc or not dst.hostname:
            return url
        netloc = dst.hostname
        if dst.port:
            netloc = f"{netloc}:{dst.port}"
        path = src.path or "/"
        if path.startswith("/object/"):
            path = "/storage/v1" + path
        return _urlunparse((dst.scheme or src.scheme, netloc, path, src.params, src.query, src.fragment))


def build_from_env() -> SupabaseObjectStore | None:
    """Create the adapter from SUPABASE_URL/SUPABASE_SERVICE_ROLE_KEY, if set.

    Falls back to a plain storage3 client for local `supabase start` setups
    whose keys are not JWTs (the supabase client rejects those).
    """
    url = (os.getenv("SUPABASE_URL") or "").strip()
    key = (os.getenv("SUPABASE_SERVICE_ROLE_KEY") or "").strip()
    if not url or not key:
        return None
    try:
        from supabase import create_client

        return SupabaseObjectStore(create_client(url, key))
    except Exception as exc:
        LOG.warning("storage.supabase_client_unavailable error_type=%s; falling back to storage3", exc.__class__.__name__)
    from storage3 import SyncStorageClient

    storage_url = f"{url.rstrip('/')}/storage/v1"
    headers = {"Authorization": f"Bearer {key}", "apikey": key}
    return SupabaseObjectStore(SyncStorageClient(storage_url, headers))


__all__ = ["SupabaseObjectStore", "build_from_env"]
