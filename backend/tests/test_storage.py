import asyncio
import json

import httpx
import pytest

from postmedia.errors import StorageError
from postmedia.storage import LocalStorage, SupabaseStorage


def test_local_storage_writes_and_refuses_overwrite(tmp_path) -> None:
    storage = LocalStorage(tmp_path, "http://localhost:8000/media/")
    bucket = storage.bucket("blog-images")
    assert asyncio.run(bucket.exists()) is False

    url = asyncio.run(bucket.upload("post-images/u1/1_a.webp", b"abc", "image/webp"))
    assert url == "http://localhost:8000/media/blog-images/post-images/u1/1_a.webp"
    assert (tmp_path / "blog-images" / "post-images" / "u1" / "1_a.webp").read_bytes() == b"abc"
    assert asyncio.run(bucket.exists()) is True

    with pytest.raises(StorageError) as exc:
        asyncio.run(bucket.upload("post-images/u1/1_a.webp", b"new", "image/webp"))
    assert exc.value.status_code == 409

    asyncio.run(bucket.upload("post-images/u1/1_a.webp", b"new", "image/webp", upsert=True))
    assert (tmp_path / "blog-images" / "post-images" / "u1" / "1_a.webp").read_bytes() == b"new"


def test_local_storage_rejects_path_escape(tmp_path) -> None:
    bucket = LocalStorage(tmp_path, "http://x").bucket("b")
    with pytest.raises(StorageError):
        asyncio.run(bucket.upload("../../etc/passwd", b"x", "image/webp"))


def _supabase(handler):
    return SupabaseStorage("https://proj.supabase.co/", "secret", transport=httpx.MockTransport(handler))


def test_supabase_upload_sends_headers_and_returns_public_url() -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"Key": "blog-images/post-images/u1/1_a.webp"})

    async def scenario():
        storage = _supabase(handler)
        try:
            return await storage.bucket("blog-images").upload("post-images/u1/1_a.webp", b"abc", "image/webp")
        finally:
            await storage.aclose()

    url = asyncio.run(scenario())
    assert url == "https://proj.supabase.co/storage/v1/object/public/blog-images/post-images/u1/1_a.webp"
    request = seen[0]
    assert request.method == "POST"
    assert request.url.path == "/storage/v1/object/blog-images/post-images/u1/1_a.webp"
    assert request.headers["authorization"] == "Bearer secret"
    assert request.headers["apikey"] == "secret"
    assert request.headers["x-upsert"] == "false"
    assert request.headers["content-type"] == "image/webp"
    assert request.content == b"abc"


def test_supabase_upload_error_maps_to_storage_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"statusCode": "409", "error": "Duplicate", "message": "The resource already exists"})

    async def scenario():
        storage = _supabase(handler)
        try:
            await storage.bucket("b").upload("p.webp", b"x", "image/webp", upsert=True)
        finally:
            await storage.aclose()

    with pytest.raises(StorageError, match="already exists") as exc:
        asyncio.run(scenario())
    assert exc.value.status_code == 400


def test_supabase_bucket_check_never_raises() -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(json.loads(request.content))
        if request.url.path.endswith("/missing"):
            return httpx.Response(404, json={"message": "Bucket not found"})
        if request.url.path.endswith("/broken"):
            raise httpx.ConnectError("boom", request=request)
        return httpx.Response(200, json=[])

    async def scenario():
        storage = _supabase(handler)
        try:
            return [await storage.bucket(name).exists() for name in ("blog-images", "missing", "broken")]
        finally:
            await storage.aclose()

    assert asyncio.run(scenario()) == [True, False, False]
    assert calls[0] == {"prefix": "", "limit": 1, "offset": 0}


def test_supabase_requires_credentials() -> None:
    with pytest.raises(ValueError):
        SupabaseStorage("", "key")
