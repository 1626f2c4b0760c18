import asyncio
import re

import pytest

from conftest import FakeStorage, make_image_bytes
from postmedia.conversion.models import SourceImage
from postmedia.errors import InvalidOwnerError, UnsupportedFormatError, UploadError
from postmedia.uploads import ImageKind, upload_profile_image


def _source(width=1000, height=1000):
    return SourceImage(data=make_image_bytes(width, height), content_type="image/jpeg", name="me.jpg")


def test_avatar_upload_path_and_bounds() -> None:
    storage = FakeStorage()
    result = asyncio.run(upload_profile_image(ImageKind.AVATAR, _source(), "user-1", storage))
    bucket, path, content_type, upsert = storage.calls[0]
    assert bucket == "user-avatars"
    assert re.fullmatch(r"avatars/user-1/avatar-\d+\.webp", path)
    assert upsert is True
    assert content_type == "image/webp"
    assert result.url == f"https://store/user-avatars/{path}"
    assert (result.metadata.dimensions.width, result.metadata.dimensions.height) == (400, 400)
    assert result.metadata.output_bytes <= 200 * 1024


def test_cover_upload_uses_wide_bounds() -> None:
    storage = FakeStorage()
    result = asyncio.run(upload_profile_image("cover", _source(2400, 1200), "user-1", storage))
    assert storage.calls[0][0] == "avatar-cover"
    assert re.fullmatch(r"covers/user-1/cover-\d+\.webp", result.path)
    assert (result.metadata.dimensions.width, result.metadata.dimensions.height) == (800, 400)


def test_featured_upload_is_not_upserted() -> None:
    storage = FakeStorage()
    result = asyncio.run(upload_profile_image(ImageKind.FEATURED, _source(), "user-1", storage))
    assert re.fullmatch(r"post-images/user-1/\d+_[0-9a-f]{8}\.webp", result.path)
    assert storage.calls[0][3] is False


def test_transcode_errors_propagate() -> None:
    storage = FakeStorage()
    pdf = SourceImage(data=b"%PDF", content_type="application/pdf", name="cv.pdf")
    with pytest.raises(UnsupportedFormatError):
        asyncio.run(upload_profile_image(ImageKind.AVATAR, pdf, "user-1", storage))
    assert storage.calls == []


def test_storage_failure_raises_upload_error() -> None:
    storage = FakeStorage(fail_calls={0})
    with pytest.raises(UploadError):
        asyncio.run(upload_profile_image(ImageKind.AVATAR, _source(), "user-1", storage))


def test_missing_owner_rejected() -> None:
    with pytest.raises(InvalidOwnerError):
        asyncio.run(upload_profile_image(ImageKind.AVATAR, _source(), "", FakeStorage()))
