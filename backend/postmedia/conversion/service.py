"""Image transcoding: validate, decode, scale down, encode to WebP under a byte budget."""
import io
import logging
from typing import Optional

from PIL import Image, UnidentifiedImageError

from postmedia.config import (
    ACCEPTED_MIME_TYPES,
    MAX_INPUT_SIZE_BYTES,
    QUALITY_FLOOR,
    QUALITY_STEP,
    WEBP_METHOD,
)
from postmedia.conversion.models import (
    PRESETS,
    Dimensions,
    ImageMetadata,
    OutputFormat,
    SourceImage,
    TranscodeOptions,
    TranscodeResult,
)
from postmedia.conversion.resize import prepare_mode, resize_within
from postmedia.errors import DecodeError, OversizeInputError, UnsupportedFormatError

logger = logging.getLogger("postmedia.transcoder")

# Pillow quality is 0-100; work in whole percent so repeated 0.1 steps don't drift
_STEP = round(QUALITY_STEP * 100)
_FLOOR = round(QUALITY_FLOOR * 100)


class ImageTranscoder:
    """Turns an arbitrary raster upload into a bounded, budgeted WebP (or JPEG/PNG)."""

    def __init__(
        self,
        accepted_types: tuple[str, ...] = ACCEPTED_MIME_TYPES,
        max_input_bytes: int = MAX_INPUT_SIZE_BYTES,
        webp_method: int = WEBP_METHOD,
    ):
        self.accepted_types = tuple(t.lower() for t in accepted_types)
        self.max_input_bytes = max_input_bytes
        self.webp_method = webp_method

    def validate(self, source: SourceImage) -> None:
        """Reject disallowed types and oversized input before decoding anything."""
        content_type = (source.content_type or "").split(";")[0].strip().lower()
        if content_type not in self.accepted_types:
            raise UnsupportedFormatError(source.content_type)
        if source.size > self.max_input_bytes:
            raise OversizeInputError(source.size, self.max_input_bytes)

    def _decode(self, source: SourceImage) -> Image.Image:
        try:
            img = Image.open(io.BytesIO(source.data))
            # Animated GIF/WebP: first frame only
            img.seek(0)
            img.load()
            return img
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError, SyntaxError, ValueError) as e:
            raise DecodeError(f"Failed to load image {source.name}: {e}") from e

    def _encode(self, img: Image.Image, target_format: OutputFormat, quality: int) -> bytes:
        buf = io.BytesIO()
        if target_format is OutputFormat.WEBP:
            img.save(buf, format="WEBP", quality=quality, method=self.webp_method)
        elif target_format is OutputFormat.JPEG:
            img.save(buf, format="JPEG", quality=quality, optimize=True)
        else:
            # PNG is lossless; quality has no effect
            img.save(buf, format="PNG", optimize=True)
        return buf.getvalue()

    def _encode_within_budget(
        self,
        img: Image.Image,
        target_format: OutputFormat,
        quality: int,
        max_output_bytes: Optional[int],
    ) -> tuple[bytes, int, bool]:
        """
        Encode at `quality`, then step quality down until the output fits the
        budget or the next step would go below the floor. Returns
        (bytes, quality used, budget met). When the floor is hit first the
        smallest encoding seen is returned.
        """
        data = self._encode(img, target_format, quality)
        if max_output_bytes is None or len(data) <= max_output_bytes:
            return data, quality, True

        best, best_quality = data, quality
        while quality - _STEP >= _FLOOR:
            quality -= _STEP
            data = self._encode(img, target_format, quality)
            logger.debug("Re-encoded at quality %s: %s bytes", quality, len(data))
            if len(data) < len(best):
                best, best_quality = data, quality
            if len(data) <= max_output_bytes:
                return data, quality, True
        return best, best_quality, False

    def transcode(self, source: SourceImage, options: Optional[TranscodeOptions] = None) -> TranscodeResult:
        options = options or TranscodeOptions()
        self.validate(source)
        img = self._decode(source)
        try:
            work = resize_within(prepare_mode(img, options.target_format), options.max_width, options.max_height)
        finally:
            img.close()

        fmt = options.target_format
        data, quality, budget_met = self._encode_within_budget(
            work, fmt, round(options.quality * 100), options.max_output_bytes
        )
        if not budget_met:
            logger.warning(
                "%s: %s bytes still over budget of %s at quality floor, keeping smallest",
                source.name, len(data), options.max_output_bytes,
            )
        result = TranscodeResult(
            data=data,
            file_name=f"{source.stem}_compressed.{fmt.extension}",
            original_bytes=source.size,
            format=fmt,
            dimensions=Dimensions(width=work.width, height=work.height),
            quality=quality / 100,
            budget_met=budget_met,
        )
        logger.info(
            "Transcoded %s: %s -> %s bytes (%s%%), %sx%s %s",
            source.name, result.original_bytes, result.output_bytes, result.compression_ratio_percent,
            work.width, work.height, fmt.value,
        )
        return result

    def generate_thumbnail(self, source: SourceImage, size: int = 150) -> TranscodeResult:
        base = PRESETS["thumbnail"]
        options = TranscodeOptions(
            max_width=size, max_height=size, quality=base.quality, max_output_bytes=base.max_output_bytes
        )
        result = self.transcode(source, options)
        result.file_name = f"{source.stem}_thumb.webp"
        return result

    def create_variants(self, source: SourceImage) -> dict[str, TranscodeResult]:
        """thumbnail, medium, large and original-size renditions of one upload."""
        variants = {"thumbnail": self.generate_thumbnail(source)}
        for name in ("medium", "large", "original"):
            variants[name] = self.transcode(source, PRESETS[name])
        return variants

    def read_image_metadata(self, source: SourceImage) -> ImageMetadata:
        self.validate(source)
        img = self._decode(source)
        try:
            return ImageMetadata(
                width=img.width, height=img.height, size=source.size, type=source.content_type, name=source.name
            )
        finally:
            img.close()


def transcode(source: SourceImage, options: Optional[TranscodeOptions] = None) -> TranscodeResult:
    """Module-level shortcut used by the single-image flows."""
    return get_transcoder().transcode(source, options)


# Singleton
_transcoder: Optional[ImageTranscoder] = None


def get_transcoder() -> ImageTranscoder:
    global _transcoder
    if _transcoder is None:
        _transcoder = ImageTranscoder()
    return _transcoder
