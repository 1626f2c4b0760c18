import asyncio
import base64
import io
import os
import random
import sys
import tempfile
from pathlib import Path

import pytest

# Ensure the project root (backend/) is on sys.path so tests can import the `postmedia` package.
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

# Keep test runs fast and out of the source tree; config reads these at import.
os.environ.setdefault("BATCH_ITEM_DELAY_MS", "0")
os.environ.setdefault("STORAGE_DIR", tempfile.mkdtemp(prefix="postmedia-test-"))
os.environ.pop("SUPABASE_URL", None)
os.environ.pop("SUPABASE_KEY", None)

from PIL import Image  # noqa: E402

from postmedia.errors import StorageError  # noqa: E402


def make_image_bytes(width, height, fmt="JPEG", mode="RGB", noise=False, color=(200, 80, 40)):
    if noise:
        rng = random.Random(width * 31 + height)
        img = Image.frombytes("RGB", (width, height), rng.randbytes(width * height * 3))
        if mode != "RGB":
            img = img.convert(mode)
    else:
        fill = color if mode == "RGB" else color + (128,) if mode == "RGBA" else 128
        img = Image.new(mode, (width, height), fill)
    buf = io.BytesIO()
    img.save(buf, format=fmt)
    return buf.getvalue()


def to_data_uri(data, mime="image/png"):
    return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"


class FakeBucket:
    def __init__(self, storage, name):
        self.storage = storage
        self.name = name

    def get_public_url(self, path):
        return f"https://store/{self.name}/{path}"

    async def upload(self, path, data, content_type, *, upsert=False, cache_control="3600"):
        storage = self.storage
        index = len(storage.calls)
        storage.calls.append((self.name, path, content_type, upsert))
        if index in storage.fail_calls:
            raise StorageError("The resource already exists", status_code=409)
        if index in storage.hang_calls:
            await asyncio.sleep(60)
        storage.objects[(self.name, path)] = data
        if storage.url_for is not None:
            return storage.url_for(index)
        return self.get_public_url(path)

    async def exists(self):
        self.storage.exists_checks.append(self.name)
        return self.storage.bucket_exists


class FakeStorage:
    """In-memory storage double. `fail_calls`/`hang_calls` are upload call indexes."""

    def __init__(self, fail_calls=(), hang_calls=(), url_for=None, bucket_exists=True):
        self.fail_calls = set(fail_calls)
        self.hang_calls = set(hang_calls)
        self.url_for = url_for
        self.bucket_exists = bucket_exists
        self.calls = []
        self.objects = {}
        self.exists_checks = []
        self.closed = False

    def bucket(self, name):
        return FakeBucket(self, name)

    async def aclose(self):
        self.closed = True


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def png_bytes():
    return make_image_bytes(64, 48, fmt="PNG")


@pytest.fixture
def client(storage):
    from fastapi.testclient import TestClient

    from postmedia.main import app

    app.state.storage = storage
    with TestClient(app) as c:
        yield c
    app.state.storage = None
