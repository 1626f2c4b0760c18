"""API routes for image transcoding, profile uploads and rich-text image batches."""
import asyncio
import base64
import dataclasses
import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile
from starlette.datastructures import UploadFile as StarletteUploadFile

from postmedia.batch import ImageBatchProcessor
from postmedia.config import (
    ACCEPTED_MIME_TYPES,
    MAX_DOCUMENT_FILES,
    MAX_DOCUMENT_SIZE_BYTES,
    MAX_INPUT_SIZE_BYTES,
    OUTPUT_FORMATS,
)
from postmedia.conversion.models import PRESETS, SourceImage, TranscodeOptions
from postmedia.conversion.service import get_transcoder
from postmedia.errors import (
    DecodeError,
    InvalidOwnerError,
    MediaError,
    OversizeInputError,
    UnsupportedFormatError,
    UploadError,
)
from postmedia.references import BlobRegistry, LocalReferenceResolver
from postmedia.storage import StorageClient
from postmedia.uploads import ImageKind, upload_profile_image

logger = logging.getLogger("postmedia.api")
router = APIRouter(prefix="/api", tags=["media"])


def get_storage(request: Request) -> StorageClient:
    return request.app.state.storage


def _http_error(e: MediaError) -> HTTPException:
    if isinstance(e, UnsupportedFormatError):
        return HTTPException(400, str(e))
    if isinstance(e, OversizeInputError):
        return HTTPException(413, str(e))
    if isinstance(e, DecodeError):
        return HTTPException(422, str(e))
    if isinstance(e, InvalidOwnerError):
        return HTTPException(401, str(e))
    if isinstance(e, UploadError):
        return HTTPException(502, str(e))
    return HTTPException(500, str(e))


async def _read_source(file: UploadFile, max_bytes: int = MAX_INPUT_SIZE_BYTES, reject: bool = True) -> SourceImage:
    """
    Read an upload into memory, stopping as soon as it passes the input ceiling.
    With reject=False the data is cut to one byte past the ceiling and returned,
    so the transcoder rejects that image later instead of the whole request.
    """
    chunks = []
    total = 0
    while chunk := await file.read(1024 * 1024):
        total += len(chunk)
        chunks.append(chunk)
        if total > max_bytes:
            if reject:
                raise _http_error(OversizeInputError(total, max_bytes))
            chunks[-1] = chunk[: len(chunk) - (total - max_bytes - 1)]
            break
    return SourceImage(data=b"".join(chunks), content_type=file.content_type or "", name=file.filename or "image")


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/limits")
def get_limits():
    """Input limits and named presets for the client."""
    return {
        "max_input_size_mb": MAX_INPUT_SIZE_BYTES // (1024 * 1024),
        "max_input_size_bytes": MAX_INPUT_SIZE_BYTES,
        "accepted_types": list(ACCEPTED_MIME_TYPES),
        "output_formats": list(OUTPUT_FORMATS),
        "presets": {
            name: {
                "max_width": o.max_width,
                "max_height": o.max_height,
                "quality": o.quality,
                "max_output_bytes": o.max_output_bytes,
            }
            for name, o in PRESETS.items()
        },
    }


@router.post("/images/transcode")
async def transcode_image(
    file: UploadFile = File(...),
    preset: Optional[str] = Form(None),
    max_width: Optional[int] = Form(None, ge=1, le=8192),
    max_height: Optional[int] = Form(None, ge=1, le=8192),
    quality: Optional[float] = Form(None, gt=0, le=1),
    max_output_kb: Optional[int] = Form(None, ge=1),
):
    """Transcode one image and return its metadata plus a data URL preview."""
    if preset and preset not in PRESETS:
        raise HTTPException(400, f"Unknown preset: {preset}")
    options = PRESETS[preset] if preset else TranscodeOptions()
    overrides = {
        k: v for k, v in {"max_width": max_width, "max_height": max_height, "quality": quality}.items() if v is not None
    }
    if max_output_kb is not None:
        overrides["max_output_bytes"] = max_output_kb * 1024
    if overrides:
        options = dataclasses.replace(options, **overrides)

    source = await _read_source(file)
    try:
        result = await asyncio.to_thread(get_transcoder().transcode, source, options)
    except MediaError as e:
        logger.warning("Transcode rejected %s: %s", source.name, e)
        raise _http_error(e)
    out = result.to_dict()
    out["data_url"] = f"data:{result.content_type};base64,{base64.b64encode(result.data).decode('ascii')}"
    return out


@router.post("/images/{kind}")
async def upload_image(
    kind: ImageKind,
    file: UploadFile = File(...),
    owner_id: str = Form(...),
    storage: StorageClient = Depends(get_storage),
):
    """Avatar, cover or featured image upload. Any failure blocks the upload with a message."""
    source = await _read_source(file)
    try:
        result = await upload_profile_image(kind, source, owner_id, storage)
    except MediaError as e:
        logger.warning("%s upload failed: %s", kind.value, e)
        raise _http_error(e)
    return result.to_dict()


@router.post("/documents/images")
async def process_document(request: Request, storage: StorageClient = Depends(get_storage)):
    """
    Upload every blob:/data: image in `html` and return the rewritten HTML.
    `files[i]` carries the bytes behind the blob: URI `references[i]`.
    Form fields: html, owner_id, files (repeated), references (repeated).
    """
    # html may embed several data: images, well past the default 1 MB field limit
    async with request.form(max_part_size=MAX_DOCUMENT_SIZE_BYTES, max_files=MAX_DOCUMENT_FILES) as form:
        html = form.get("html")
        if not isinstance(html, str):
            raise HTTPException(400, "Missing html field")
        owner_id = form.get("owner_id")
        files = [f for f in form.getlist("files") if isinstance(f, StarletteUploadFile)]
        references = [r for r in form.getlist("references") if isinstance(r, str)]
        if len(files) != len(references):
            raise HTTPException(400, "Each uploaded file needs a matching blob reference")

        blobs = BlobRegistry()
        for ref, file in zip(references, files):
            if not ref.startswith("blob:"):
                raise HTTPException(400, f"Not a blob reference: {ref[:50]}")
            # Oversize parts are registered anyway; the batch records them as failed
            source = await _read_source(file, reject=False)
            blobs.put(ref, source.data, source.content_type, source.name)

    processor = ImageBatchProcessor(storage, resolver=LocalReferenceResolver(blobs))
    try:
        result = await processor.process_document_images(html, owner_id if isinstance(owner_id, str) else "")
    except InvalidOwnerError as e:
        raise _http_error(e)
    return {
        "processed_html": result.processed_html,
        "uploads": [u.to_dict() for u in result.uploads],
        "progress": result.progress.to_dict(),
        "summary": result.summary,
    }
