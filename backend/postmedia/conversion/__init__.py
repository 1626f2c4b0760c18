from .service import ImageTranscoder, get_transcoder, transcode
from .models import OutputFormat, SourceImage, TranscodeOptions, TranscodeResult, PRESETS

__all__ = [
    "ImageTranscoder",
    "get_transcoder",
    "transcode",
    "OutputFormat",
    "SourceImage",
    "TranscodeOptions",
    "TranscodeResult",
    "PRESETS",
]
