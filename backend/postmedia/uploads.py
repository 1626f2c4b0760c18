"""Single-image uploads from the settings and post forms: avatar, cover and featured image."""
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from postmedia import config as app_config
from postmedia.conversion.models import PRESETS, SourceImage, TranscodeOptions, TranscodeResult
from postmedia.conversion.service import ImageTranscoder, get_transcoder
from postmedia.errors import StorageError, UploadError, UploadTimeoutError
from postmedia.storage import StorageClient
from postmedia.utils import make_object_key, timestamp_ms, validate_owner_id

logger = logging.getLogger("postmedia.uploads")


class ImageKind(str, Enum):
    AVATAR = "avatar"
    COVER = "cover"
    FEATURED = "featured"


@dataclass(frozen=True)
class UploadTarget:
    options: TranscodeOptions
    bucket: str
    upsert: bool


TARGETS: dict[ImageKind, UploadTarget] = {
    ImageKind.AVATAR: UploadTarget(PRESETS["avatar"], app_config.AVATAR_BUCKET, upsert=True),
    ImageKind.COVER: UploadTarget(PRESETS["cover"], app_config.COVER_BUCKET, upsert=True),
    ImageKind.FEATURED: UploadTarget(PRESETS["featured"], app_config.CONTENT_BUCKET, upsert=False),
}


@dataclass
class ProfileUploadResult:
    url: str
    path: str
    metadata: TranscodeResult

    def to_dict(self) -> dict:
        return {"url": self.url, "path": self.path, "metadata": self.metadata.to_dict()}


def object_path(kind: ImageKind, owner_id: str, extension: str = "webp") -> str:
    if kind is ImageKind.AVATAR:
        return f"avatars/{owner_id}/avatar-{timestamp_ms()}.{extension}"
    if kind is ImageKind.COVER:
        return f"covers/{owner_id}/cover-{timestamp_ms()}.{extension}"
    return make_object_key("post-images", owner_id, extension)


async def upload_profile_image(
    kind: ImageKind,
    source: SourceImage,
    owner_id: str,
    storage: StorageClient,
    transcoder: Optional[ImageTranscoder] = None,
    upload_timeout: float = app_config.UPLOAD_TIMEOUT,
) -> ProfileUploadResult:
    """
    Transcode and store one image. Unlike document batches every failure is
    raised to the caller so the form can block and show the message.
    """
    kind = ImageKind(kind)
    owner_id = validate_owner_id(owner_id)
    target = TARGETS[kind]
    transcoder = transcoder or get_transcoder()

    result = await asyncio.to_thread(transcoder.transcode, source, target.options)

    bucket = storage.bucket(target.bucket)
    if not await bucket.exists():
        logger.warning("Bucket %s may not exist, proceeding with upload", bucket.name)

    path = object_path(kind, owner_id, result.format.extension)
    try:
        url = await asyncio.wait_for(
            bucket.upload(path, result.data, result.content_type, upsert=target.upsert), upload_timeout
        )
    except asyncio.TimeoutError as e:
        raise UploadTimeoutError(f"Upload timeout for {result.file_name} after {upload_timeout}s") from e
    except StorageError as e:
        logger.error("%s upload failed for %s: %s", kind.value, owner_id, e)
        raise UploadError(f"Upload failed: {e}") from e

    logger.info("%s uploaded for %s: %s", kind.value, owner_id, url)
    return ProfileUploadResult(url=url, path=path, metadata=result)
