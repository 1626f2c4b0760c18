"""Scale images down to fit a bounding box, keeping aspect ratio."""
import logging

from PIL import Image

from postmedia.conversion.models import Dimensions, OutputFormat

logger = logging.getLogger("postmedia.resize")


def fit_dimensions(width: int, height: int, max_width: int, max_height: int) -> Dimensions:
    """
    Largest size that fits inside (max_width, max_height) with the same ratio.
    Never upscales: scale = min(max_width / width, max_height / height, 1).
    """
    if width <= 0 or height <= 0:
        raise ValueError(f"Invalid image size {width}x{height}")
    scale = min(max_width / width, max_height / height, 1)
    # round() is half-to-even; the editor rounds halves up
    new_w = max(1, int(width * scale + 0.5))
    new_h = max(1, int(height * scale + 0.5))
    return Dimensions(width=new_w, height=new_h)


def prepare_mode(img: Image.Image, target_format: OutputFormat) -> Image.Image:
    """Convert palette/greyscale/CMYK frames to a mode the encoder accepts."""
    has_alpha = img.mode in ("RGBA", "LA", "PA") or (img.mode == "P" and "transparency" in img.info)
    if target_format is OutputFormat.JPEG:
        if has_alpha:
            rgba = img.convert("RGBA")
            background = Image.new("RGB", rgba.size, (255, 255, 255))
            background.paste(rgba, mask=rgba.split()[-1])
            return background
        return img if img.mode == "RGB" else img.convert("RGB")
    if has_alpha:
        return img if img.mode == "RGBA" else img.convert("RGBA")
    return img if img.mode == "RGB" else img.convert("RGB")


def resize_within(img: Image.Image, max_width: int, max_height: int) -> Image.Image:
    """Return a copy scaled down to fit the bounds using Lanczos resampling."""
    w, h = img.size
    dims = fit_dimensions(w, h, max_width, max_height)
    if (dims.width, dims.height) == (w, h):
        return img.copy()
    logger.debug("Resizing %sx%s -> %sx%s", w, h, dims.width, dims.height)
    return img.resize((dims.width, dims.height), Image.Resampling.LANCZOS)
