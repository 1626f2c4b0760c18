import re

import pytest

from postmedia.errors import InvalidOwnerError
from postmedia.utils import format_file_size, make_object_key, validate_owner_id


def test_format_file_size() -> None:
    assert format_file_size(0) == "0 Bytes"
    assert format_file_size(512) == "512 Bytes"
    assert format_file_size(1536) == "1.5 KB"
    assert format_file_size(10 * 1024 * 1024) == "10 MB"


def test_validate_owner_id() -> None:
    assert validate_owner_id(" 0b9c6f7e-1d2a-4c3b-9e8f-123456789abc ") == "0b9c6f7e-1d2a-4c3b-9e8f-123456789abc"
    for bad in (None, "", "a/b", "..", "x" * 129):
        with pytest.raises(InvalidOwnerError):
            validate_owner_id(bad)


def test_make_object_key_unique() -> None:
    first = make_object_key("post-images", "u1")
    second = make_object_key("post-images", "u1")
    assert first != second
    assert re.fullmatch(r"post-images/u1/\d{13}_[0-9a-f]{8}\.webp", first)
