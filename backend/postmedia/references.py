"""Resolve in-document image references (blob: and data: URIs) to bytes."""
import base64
import binascii
import logging
import uuid
from dataclasses import dataclass
from typing import Optional
from urllib.parse import unquote_to_bytes

from postmedia.conversion.models import SourceImage
from postmedia.errors import DereferenceError

logger = logging.getLogger("postmedia.references")

LOCAL_SCHEMES = ("blob:", "data:")


def is_local_reference(src: str) -> bool:
    return src.startswith(LOCAL_SCHEMES)


def decode_data_uri(uri: str) -> tuple[bytes, str]:
    """data:[<mime>][;base64],<payload> -> (bytes, mime)."""
    if not uri.startswith("data:") or "," not in uri:
        raise DereferenceError("Malformed data URI")
    header, payload = uri[5:].split(",", 1)
    params = header.split(";")
    mime = params[0].strip().lower() or "text/plain"
    if "base64" in (p.strip().lower() for p in params[1:]):
        try:
            data = base64.b64decode(payload, validate=False)
        except (binascii.Error, ValueError) as e:
            raise DereferenceError(f"Invalid base64 in data URI: {e}") from e
    else:
        data = unquote_to_bytes(payload)
    return data, mime


@dataclass(frozen=True)
class BlobEntry:
    data: bytes
    content_type: str
    name: str


class BlobRegistry:
    """
    Server-side table of blob: handles, standing in for the browser's object URLs.
    Entries live until revoked; a revoked or unknown handle cannot be resolved.
    """

    def __init__(self):
        self._entries: dict[str, BlobEntry] = {}

    def register(self, data: bytes, content_type: str, name: str = "image") -> str:
        reference = f"blob:{uuid.uuid4()}"
        self.put(reference, data, content_type, name)
        return reference

    def put(self, reference: str, data: bytes, content_type: str, name: str = "image") -> None:
        if not reference.startswith("blob:"):
            raise ValueError(f"Not a blob reference: {reference}")
        self._entries[reference] = BlobEntry(data=data, content_type=content_type, name=name)

    def get(self, reference: str) -> Optional[BlobEntry]:
        return self._entries.get(reference)

    def revoke(self, reference: str) -> None:
        if self._entries.pop(reference, None) is not None:
            logger.debug("Revoked %s", reference)

    def __contains__(self, reference: str) -> bool:
        return reference in self._entries

    def __len__(self) -> int:
        return len(self._entries)


class LocalReferenceResolver:
    def __init__(self, blobs: Optional[BlobRegistry] = None):
        self.blobs = blobs if blobs is not None else BlobRegistry()

    async def resolve(self, reference: str, name: str = "image") -> SourceImage:
        if reference.startswith("data:"):
            data, mime = decode_data_uri(reference)
            return SourceImage(data=data, content_type=mime, name=name)
        if reference.startswith("blob:"):
            entry = self.blobs.get(reference)
            if entry is None:
                raise DereferenceError(f"Failed to fetch {reference}: handle is unknown or revoked")
            return SourceImage(data=entry.data, content_type=entry.content_type, name=entry.name or name)
        raise DereferenceError(f"Not a local reference: {reference[:50]}")

    def release(self, reference: str) -> None:
        """Revoke a blob handle once nothing else needs it. data: URIs hold no resource."""
        if reference.startswith("blob:"):
            self.blobs.revoke(reference)
