"""Transcode request/response models."""
import math
from dataclasses import dataclass, field
from enum import Enum
from pathlib import PurePosixPath
from typing import Optional

from postmedia.config import (
    CONTENT_MAX_HEIGHT,
    CONTENT_MAX_OUTPUT_KB,
    CONTENT_MAX_WIDTH,
    CONTENT_QUALITY,
    DEFAULT_MAX_HEIGHT,
    DEFAULT_MAX_OUTPUT_KB,
    DEFAULT_MAX_WIDTH,
    DEFAULT_QUALITY,
)


class OutputFormat(str, Enum):
    WEBP = "webp"
    JPEG = "jpeg"
    PNG = "png"

    @property
    def mime_type(self) -> str:
        return f"image/{self.value}"

    @property
    def extension(self) -> str:
        return "jpg" if self is OutputFormat.JPEG else self.value

    @property
    def pillow_format(self) -> str:
        return self.value.upper()


@dataclass(frozen=True)
class SourceImage:
    """Raw input bytes plus what the client declared about them."""

    data: bytes
    content_type: str
    name: str = "image"

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def stem(self) -> str:
        # "photo.final.png" -> "photo", same as splitting on the first dot
        return PurePosixPath(self.name).name.split(".")[0] or "image"


@dataclass(frozen=True)
class TranscodeOptions:
    max_width: int = DEFAULT_MAX_WIDTH
    max_height: int = DEFAULT_MAX_HEIGHT
    quality: float = DEFAULT_QUALITY
    target_format: OutputFormat = OutputFormat.WEBP
    max_output_bytes: Optional[int] = DEFAULT_MAX_OUTPUT_KB * 1024

    def __post_init__(self):
        if self.max_width < 1 or self.max_height < 1:
            raise ValueError("max_width and max_height must be positive")
        if not 0 < self.quality <= 1:
            raise ValueError("quality must be in (0, 1]")
        if self.max_output_bytes is not None and self.max_output_bytes < 1:
            raise ValueError("max_output_bytes must be positive")
        # Accept "webp" as well as OutputFormat.WEBP
        object.__setattr__(self, "target_format", OutputFormat(self.target_format))

    @classmethod
    def from_kb(
        cls,
        max_width: int,
        max_height: int,
        quality: float,
        max_size_kb: Optional[int],
        target_format: OutputFormat = OutputFormat.WEBP,
    ) -> "TranscodeOptions":
        return cls(
            max_width=max_width,
            max_height=max_height,
            quality=quality,
            target_format=target_format,
            max_output_bytes=max_size_kb * 1024 if max_size_kb else None,
        )


@dataclass(frozen=True)
class Dimensions:
    width: int
    height: int


def compression_ratio_percent(original_bytes: int, output_bytes: int) -> int:
    """round((original - output) / original * 100), rounding halves up."""
    if original_bytes <= 0:
        return 0
    return math.floor((original_bytes - output_bytes) / original_bytes * 100 + 0.5)


@dataclass
class TranscodeResult:
    data: bytes
    file_name: str
    original_bytes: int
    format: OutputFormat
    dimensions: Dimensions
    quality: float
    budget_met: bool = True
    output_bytes: int = field(init=False)
    compression_ratio_percent: int = field(init=False)

    def __post_init__(self):
        self.output_bytes = len(self.data)
        self.compression_ratio_percent = compression_ratio_percent(self.original_bytes, self.output_bytes)

    @property
    def content_type(self) -> str:
        return self.format.mime_type

    def to_dict(self) -> dict:
        return {
            "file_name": self.file_name,
            "original_bytes": self.original_bytes,
            "output_bytes": self.output_bytes,
            "compression_ratio_percent": self.compression_ratio_percent,
            "format": self.format.value,
            "dimensions": {"width": self.dimensions.width, "height": self.dimensions.height},
            "quality": self.quality,
            "budget_met": self.budget_met,
        }


@dataclass(frozen=True)
class ImageMetadata:
    width: int
    height: int
    size: int
    type: str
    name: str


# Named option sets used by the editor and settings forms
PRESETS: dict[str, TranscodeOptions] = {
    "content": TranscodeOptions.from_kb(CONTENT_MAX_WIDTH, CONTENT_MAX_HEIGHT, CONTENT_QUALITY, CONTENT_MAX_OUTPUT_KB),
    "featured": TranscodeOptions.from_kb(1920, 1080, 0.85, 500),
    "avatar": TranscodeOptions.from_kb(400, 400, 0.9, 200),
    "cover": TranscodeOptions.from_kb(1200, 400, 0.9, None),
    "thumbnail": TranscodeOptions.from_kb(150, 150, 0.8, 50),
    "medium": TranscodeOptions.from_kb(800, 600, 0.85, 200),
    "large": TranscodeOptions.from_kb(1200, 900, 0.9, 400),
    "original": TranscodeOptions.from_kb(1920, 1080, 0.9, 800),
}
