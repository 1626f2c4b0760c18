import math
import re
import time
import uuid
from typing import Optional

from postmedia.errors import InvalidOwnerError

_OWNER_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,128}$")


def format_file_size(num_bytes: int) -> str:
    """Human readable size: 0 -> "0 Bytes", 1536 -> "1.5 KB"."""
    if num_bytes <= 0:
        return "0 Bytes"
    k = 1024
    sizes = ["Bytes", "KB", "MB", "GB"]
    i = min(int(math.floor(math.log(num_bytes) / math.log(k))), len(sizes) - 1)
    value = round(num_bytes / k**i, 2)
    return f"{value:g} {sizes[i]}"


def validate_owner_id(owner_id: Optional[str]) -> str:
    """Owner ids scope storage keys, so they must be a single safe path segment."""
    owner_id = (owner_id or "").strip()
    if not owner_id:
        raise InvalidOwnerError("User ID is required for upload")
    if not _OWNER_ID_RE.match(owner_id):
        raise InvalidOwnerError("Invalid user ID")
    return owner_id


def timestamp_ms() -> int:
    return int(time.time() * 1000)


def make_object_key(prefix: str, owner_id: str, extension: str = "webp") -> str:
    """Collision-resistant key: {prefix}/{owner}/{timestamp}_{random}.{ext}"""
    return f"{prefix}/{owner_id}/{timestamp_ms()}_{uuid.uuid4().hex[:8]}.{extension}"
