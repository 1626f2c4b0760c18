"""Object storage clients. Supabase Storage over HTTP, or a local directory served at /media."""
import asyncio
import logging
from pathlib import Path
from typing import Optional, Protocol
from urllib.parse import quote

import httpx

from postmedia import config as app_config
from postmedia.errors import StorageError

logger = logging.getLogger("postmedia.storage")


class StorageBucket(Protocol):
    name: str

    async def upload(
        self,
        path: str,
        data: bytes,
        content_type: str,
        *,
        upsert: bool = False,
        cache_control: str = "3600",
    ) -> str:  # pragma: no cover - interface
        """Store `data` at `path` and return its public URL."""
        ...

    def get_public_url(self, path: str) -> str:  # pragma: no cover - interface
        ...

    async def exists(self) -> bool:  # pragma: no cover - interface
        """Best-effort existence check; never raises."""
        ...


class StorageClient(Protocol):
    def bucket(self, name: str) -> StorageBucket:  # pragma: no cover - interface
        ...


class SupabaseBucket:
    def __init__(self, storage: "SupabaseStorage", name: str):
        self._storage = storage
        self.name = name

    def get_public_url(self, path: str) -> str:
        return f"{self._storage.url}/storage/v1/object/public/{self.name}/{quote(path)}"

    async def upload(
        self,
        path: str,
        data: bytes,
        content_type: str,
        *,
        upsert: bool = False,
        cache_control: str = "3600",
    ) -> str:
        headers = {
            "Content-Type": content_type,
            "cache-control": f"max-age={cache_control}",
            "x-upsert": "true" if upsert else "false",
        }
        try:
            resp = await self._storage.client.post(
                f"/storage/v1/object/{self.name}/{quote(path)}", content=data, headers=headers
            )
        except httpx.HTTPError as e:
            raise StorageError(f"Upload to {self.name}/{path} failed: {e}") from e
        if resp.status_code >= 400:
            raise StorageError(_error_message(resp), status_code=resp.status_code)
        url = self.get_public_url(path)
        logger.info("Uploaded %s bytes to %s", len(data), url)
        return url

    async def exists(self) -> bool:
        try:
            resp = await self._storage.client.post(
                f"/storage/v1/object/list/{self.name}", json={"prefix": "", "limit": 1, "offset": 0}
            )
        except httpx.HTTPError as e:
            logger.warning("Bucket check for %s failed: %s", self.name, e)
            return False
        if resp.status_code >= 400:
            logger.warning("Bucket check for %s failed: %s", self.name, _error_message(resp))
            return False
        return True


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return f"Storage returned status {resp.status_code}"
    if isinstance(body, dict):
        return str(body.get("message") or body.get("error") or body)
    return str(body)


class SupabaseStorage:
    """Supabase Storage REST client. One httpx.AsyncClient shared by all buckets."""

    def __init__(
        self,
        url: str,
        key: str,
        *,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not url or not key:
            raise ValueError("Supabase URL and key are required")
        self.url = url.rstrip("/")
        self.client = httpx.AsyncClient(
            base_url=self.url,
            headers={"Authorization": f"Bearer {key}", "apikey": key},
            timeout=timeout,
            transport=transport,
        )

    def bucket(self, name: str) -> SupabaseBucket:
        return SupabaseBucket(self, name)

    async def aclose(self) -> None:
        await self.client.aclose()


class LocalBucket:
    def __init__(self, root: Path, name: str, public_base_url: str):
        self.root = root
        self.name = name
        self.public_base_url = public_base_url

    @property
    def directory(self) -> Path:
        return self.root / self.name

    def get_public_url(self, path: str) -> str:
        return f"{self.public_base_url}/{self.name}/{quote(path)}"

    def _resolve(self, path: str) -> Path:
        directory = self.directory.resolve()
        dest = (directory / path).resolve()
        if directory not in dest.parents:
            raise StorageError(f"Invalid object path: {path}", status_code=400)
        return dest

    def _write(self, dest: Path, data: bytes, upsert: bool) -> None:
        dest.parent.mkdir(parents=True, exist_ok=True)
        mode = "wb" if upsert else "xb"
        try:
            with open(dest, mode) as f:
                f.write(data)
        except FileExistsError as e:
            raise StorageError("The resource already exists", status_code=409) from e

    async def upload(
        self,
        path: str,
        data: bytes,
        content_type: str,
        *,
        upsert: bool = False,
        cache_control: str = "3600",
    ) -> str:
        dest = self._resolve(path)
        try:
            await asyncio.to_thread(self._write, dest, data, upsert)
        except OSError as e:
            raise StorageError(f"Could not write {path}: {e}") from e
        url = self.get_public_url(path)
        logger.info("Stored %s bytes (%s) at %s", len(data), content_type, dest)
        return url

    async def exists(self) -> bool:
        return self.directory.is_dir()


class LocalStorage:
    """Filesystem storage for development; the app serves `root` at /media."""

    def __init__(self, root: Path, public_base_url: str):
        self.root = Path(root)
        self.public_base_url = public_base_url.rstrip("/")
        self.root.mkdir(parents=True, exist_ok=True)

    def bucket(self, name: str) -> LocalBucket:
        return LocalBucket(self.root, name, self.public_base_url)

    async def aclose(self) -> None:
        return None


def build_storage():
    """Supabase when SUPABASE_URL and SUPABASE_KEY are set, local directory otherwise."""
    if app_config.SUPABASE_URL and app_config.SUPABASE_KEY:
        logger.info("Using Supabase storage at %s", app_config.SUPABASE_URL)
        return SupabaseStorage(app_config.SUPABASE_URL, app_config.SUPABASE_KEY, timeout=app_config.UPLOAD_TIMEOUT)
    logger.info("Using local storage at %s", app_config.STORAGE_DIR)
    return LocalStorage(app_config.STORAGE_DIR, app_config.PUBLIC_BASE_URL)
