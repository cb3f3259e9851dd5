"""
Storage: key conventions, bucket/limit configuration and the Supabase adapter
against a fake client.
"""
from __future__ import annotations

import pytest

from lessonforge.curriculum.errors import StorageError
from lessonforge.storage.config import get_max_upload_bytes, get_quiz_bucket, get_signed_url_ttl_seconds
from lessonforge.storage.keys import make_answer_key_page_key, make_page_image_key, make_quiz_page_key
from lessonforge.storage.memory import InMemoryObjectStore
from lessonforge.storage.supabase_adapter import SupabaseObjectStore, build_from_env


def test_page_image_key_is_stable_and_sanitized():
    assert make_page_image_key(lesson_id="L1", document_id="D1", page_number=3) == "L1/D1/page-3.png"
    assert make_page_image_key(lesson_id="../x", document_id="a/b", page_number=1) == "x/a-b/page-1.png"
    assert make_page_image_key(lesson_id="", document_id="///", page_number=1) == "lesson/document/page-1.png"


def test_quiz_and_answer_key_page_keys():
    assert make_quiz_page_key(owner_sub="u1", set_id="s1", page_number=2, mime="image/jpeg") == "u1/s1/page-2.jpg"
    assert (
        make_answer_key_page_key(owner_sub="u1", set_id="s1", epoch_ms=1700000000000, page_number=1, mime="image/webp")
        == "u1/s1/answer-key-1700000000000/page-1.webp"
    )


def test_config_defaults_and_clamping(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("QUIZ_STORAGE_BUCKET", raising=False)
    monkeypatch.setenv("MAX_UPLOAD_BYTES", str(10**12))
    monkeypatch.setenv("SIGNED_URL_TTL_SECONDS", "-5")

    assert get_quiz_bucket() == "mcq-pages"
    assert get_max_upload_bytes() == 50 * 1024 * 1024
    assert get_signed_url_ttl_seconds() == 3600


def test_memory_store_roundtrip_and_missing_object():
    store = InMemoryObjectStore()
    store.put_object(bucket="b", key="k", body=b"one", content_type="image/png")
    store.put_object(bucket="b", key="k", body=b"two", content_type="image/png")

    assert store.get_object(bucket="b", key="k") == b"two"
    assert store.presign_download(bucket="b", key="k", expires_in=60) == "memory://objects/b/k?expires_in=60"
    with pytest.raises(StorageError):
        store.get_object(bucket="b", key="missing")


class _FakeBucket:
    def __init__(self, signed: object = None, fail: bool = False) -> None:
        self.uploads: list = []
        self.objects: dict = {}
        self.signed = {"signedURL": "http://kong:8000/object/sign/b/k?token=t"} if signed is None else signed
        self.fail = fail

    def upload(self, path, body, file_options):
        if self.fail:
            raise RuntimeError("boom")
        self.uploads.append((path, file_options))
        self.objects[path] = body

    def download(self, path):
        if path not in self.objects:
            raise RuntimeError("404")
        return self.objects[path]

    def create_signed_url(self, path, expires_in):
        return self.signed


class _FakeClient:
    def __init__(self, bucket: _FakeBucket) -> None:
        self.bucket = bucket
        self.requested: list[str] = []
        self.storage = self

    def from_(self, name):
        self.requested.append(name)
        return self.bucket


def test_supabase_store_upserts_and_strips_bucket_prefix():
    bucket = _FakeBucket()
    client = _FakeClient(bucket)
    store = SupabaseObjectStore(client)

    store.put_object(bucket="lessons", key="/lessons/L1/D1/page-1.png", body=b"png", content_type="image/png")

    assert client.requested == ["lessons"]
    path, options = bucket.uploads[0]
    assert path == "L1/D1/page-1.png"
    assert options["upsert"] == "true"
    assert store.get_object(bucket="lessons", key="L1/D1/page-1.png") == b"png"


def test_supabase_store_signed_url_shapes(monkeypatch: pytest.MonkeyPatch):
    store = SupabaseObjectStore(_FakeClient(_FakeBucket(signed={"data": {"signed_url": "https://cdn/x?token=t"}})))
    assert store.presign_download(bucket="b", key="x", expires_in=60) == "https://cdn/x?token=t"

    with pytest.raises(StorageError):
        SupabaseObjectStore(_FakeClient(_FakeBucket(signed={"error": "nope"}))).presign_download(
            bucket="b", key="x", expires_in=60
        )

    monkeypatch.setenv("SUPABASE_URL", "https://project.example:8443")
    monkeypatch.setenv("SUPABASE_REWRITE_SIGNED_URL_HOST", "true")
    rewritten = SupabaseObjectStore(_FakeClient(_FakeBucket())).presign_download(bucket="b", key="k", expires_in=60)
    assert rewritten == "https://project.example:8443/storage/v1/object/sign/b/k?token=t"


def test_supabase_store_wraps_client_errors():
    store = SupabaseObjectStore(_FakeClient(_FakeBucket(fail=True)))
    with pytest.raises(StorageError) as info:
        store.put_object(bucket="b", key="k", body=b"", content_type="image/png")
    assert info.value.message == "upload_failed"
    with pytest.raises(StorageError):
        store.get_object(bucket="b", key="missing")
    with pytest.raises(StorageError):
        SupabaseObjectStore(object()).get_object(bucket="b", key="k")


def test_build_from_env_requires_url_and_key(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("SUPABASE_URL", raising=False)
    assert build_from_env() is None
