"""Rich-text image batches: find local images in HTML, transcode, upload, rewrite the HTML."""
import asyncio
import copy
import inspect
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

from postmedia import config as app_config
from postmedia.conversion.models import PRESETS, TranscodeOptions, TranscodeResult
from postmedia.conversion.service import ImageTranscoder, get_transcoder
from postmedia.errors import (
    DereferenceTimeoutError,
    MediaError,
    StorageError,
    UploadError,
    UploadTimeoutError,
)
from postmedia.references import LocalReferenceResolver, is_local_reference
from postmedia.storage import StorageBucket, StorageClient
from postmedia.utils import make_object_key, timestamp_ms, validate_owner_id

logger = logging.getLogger("postmedia.batch")

_IMG_SRC_RE = re.compile(r"""<img\b[^>]*?\ssrc\s*=\s*(["'])(.*?)\1""", re.IGNORECASE | re.DOTALL)


class FailedReferencePolicy(str, Enum):
    KEEP = "keep"
    STRIP = "strip"


@dataclass
class BatchProgress:
    total: int
    completed: int = 0
    current: str = ""
    failed: list[str] = field(default_factory=list)

    @property
    def done(self) -> bool:
        return self.completed == self.total

    def snapshot(self) -> "BatchProgress":
        return copy.deepcopy(self)

    def to_dict(self) -> dict:
        return {"total": self.total, "completed": self.completed, "current": self.current, "failed": list(self.failed)}


@dataclass
class UploadResult:
    original_reference: str
    uploaded_url: str
    metadata: TranscodeResult

    def to_dict(self) -> dict:
        return {
            "original_reference": self.original_reference,
            "uploaded_url": self.uploaded_url,
            "metadata": self.metadata.to_dict(),
        }


@dataclass
class BatchResult:
    processed_html: str
    uploads: list[UploadResult]
    progress: BatchProgress

    @property
    def failed(self) -> list[str]:
        return self.progress.failed

    @property
    def summary(self) -> Optional[str]:
        if not self.progress.failed:
            return None
        return f"{len(self.progress.failed)} of {self.progress.total} images failed"


@dataclass(frozen=True)
class BatchSettings:
    options: TranscodeOptions = PRESETS["content"]
    bucket: str = app_config.CONTENT_BUCKET
    key_prefix: str = "post-images"
    dereference_timeout: float = app_config.DEREFERENCE_TIMEOUT
    upload_timeout: float = app_config.UPLOAD_TIMEOUT
    item_delay: float = app_config.BATCH_ITEM_DELAY_MS / 1000
    failed_reference_policy: FailedReferencePolicy = FailedReferencePolicy(app_config.FAILED_REFERENCE_POLICY)


ProgressCallback = Callable[[BatchProgress], Any]


def extract_image_sources(html: str) -> list[str]:
    """blob:/data: <img> sources in document order. Remote URLs are skipped, duplicates kept."""
    return [m.group(2) for m in _IMG_SRC_RE.finditer(html) if is_local_reference(m.group(2))]


def replace_image_src(html: str, src: str, url: str) -> str:
    """Point every <img> whose src is exactly `src` at `url`; other text is untouched."""
    pattern = re.compile(
        r"""(<img\b[^>]*?\ssrc\s*=\s*(["']))""" + re.escape(src) + r"""\2""",
        re.IGNORECASE | re.DOTALL,
    )
    return pattern.sub(lambda m: m.group(1) + url + m.group(2), html)


def strip_image_tags(html: str, src: str) -> str:
    """Remove every <img> tag whose src is exactly `src`."""
    pattern = re.compile(
        r"""<img\b[^>]*?\ssrc\s*=\s*(["'])""" + re.escape(src) + r"""\1[^>]*>""",
        re.IGNORECASE | re.DOTALL,
    )
    return pattern.sub("", html)


class ImageBatchProcessor:
    """
    Processes a document's local images strictly one at a time. A failing image
    is recorded in progress.failed and the batch moves on; only an invalid owner
    id aborts the call, before any image is touched.
    """

    def __init__(
        self,
        storage: StorageClient,
        resolver: Optional[LocalReferenceResolver] = None,
        transcoder: Optional[ImageTranscoder] = None,
        settings: Optional[BatchSettings] = None,
    ):
        self.storage = storage
        self.resolver = resolver or LocalReferenceResolver()
        self.transcoder = transcoder or get_transcoder()
        self.settings = settings or BatchSettings()

    @staticmethod
    async def _emit(on_progress: Optional[ProgressCallback], progress: BatchProgress) -> None:
        if on_progress is None:
            return
        result = on_progress(progress.snapshot())
        if inspect.isawaitable(result):
            await result

    async def _process_one(self, bucket: StorageBucket, src: str, owner_id: str, index: int) -> UploadResult:
        settings = self.settings
        try:
            source = await asyncio.wait_for(
                self.resolver.resolve(src, f"image_{timestamp_ms()}_{index}"), settings.dereference_timeout
            )
        except asyncio.TimeoutError as e:
            raise DereferenceTimeoutError(f"Timeout reading image after {settings.dereference_timeout}s") from e

        result = await asyncio.to_thread(self.transcoder.transcode, source, settings.options)

        key = make_object_key(settings.key_prefix, owner_id, result.format.extension)
        try:
            url = await asyncio.wait_for(
                bucket.upload(key, result.data, result.content_type), settings.upload_timeout
            )
        except asyncio.TimeoutError as e:
            raise UploadTimeoutError(f"Upload timeout for {result.file_name} after {settings.upload_timeout}s") from e
        except StorageError as e:
            raise UploadError(f"Upload failed for {result.file_name}: {e}") from e
        return UploadResult(original_reference=src, uploaded_url=url, metadata=result)

    async def process_document_images(
        self,
        html: str,
        owner_id: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> BatchResult:
        owner_id = validate_owner_id(owner_id)
        sources = extract_image_sources(html)
        total = len(sources)
        progress = BatchProgress(total=total)

        if not sources:
            logger.info("No images to process")
            progress.current = "No images to process"
            await self._emit(on_progress, progress)
            return BatchResult(processed_html=html, uploads=[], progress=progress)

        logger.info("Found %s images to process for %s", total, owner_id)
        bucket = self.storage.bucket(self.settings.bucket)
        if not await bucket.exists():
            logger.warning("Bucket %s may not exist, proceeding with upload", bucket.name)

        uploads: list[UploadResult] = []
        processed_html = html
        progress.current = f"Processing image 1 of {total}"
        await self._emit(on_progress, progress)

        for i, src in enumerate(sources):
            try:
                upload = await self._process_one(bucket, src, owner_id, i)
            except MediaError as e:
                logger.warning("Failed to process image %s (%s...): %s", i + 1, src[:50], e)
                progress.failed.append(src)
            except Exception as e:
                logger.exception("Unexpected error processing image %s (%s...): %s", i + 1, src[:50], e)
                progress.failed.append(src)
            else:
                processed_html = replace_image_src(processed_html, src, upload.uploaded_url)
                uploads.append(upload)
                # Duplicates later in the document still need the handle
                if src not in sources[i + 1:]:
                    self.resolver.release(src)

            progress.completed += 1
            if progress.completed < total:
                progress.current = f"Processing image {progress.completed + 1} of {total}"
            else:
                progress.current = "Processing complete"
            await self._emit(on_progress, progress)

            if progress.completed < total and self.settings.item_delay > 0:
                await asyncio.sleep(self.settings.item_delay)

        if progress.failed and self.settings.failed_reference_policy is FailedReferencePolicy.STRIP:
            for src in progress.failed:
                processed_html = strip_image_tags(processed_html, src)

        logger.info("Image processing complete. Success: %s, Failed: %s", len(uploads), len(progress.failed))
        return BatchResult(processed_html=processed_html, uploads=uploads, progress=progress)


async def process_document_images(
    html: str,
    owner_id: str,
    storage: StorageClient,
    on_progress: Optional[ProgressCallback] = None,
    *,
    resolver: Optional[LocalReferenceResolver] = None,
    settings: Optional[BatchSettings] = None,
) -> BatchResult:
    processor = ImageBatchProcessor(storage, resolver=resolver, settings=settings)
    return await processor.process_document_images(html, owner_id, on_progress)
