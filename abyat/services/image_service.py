import io
import re
from dataclasses import dataclass

from PIL import Image, UnidentifiedImageError

from abyat.logging_config import get_logger

logger = get_logger("image_service")

WEBP_MIME = "image/webp"
PNG_MIME = "image/png"


class ImageConversionError(Exception):
    pass


@dataclass
class NormalizedImage:
    content: bytes
    mime_type: str
    filename: str


def is_webp(mime_type: str, filename: str) -> bool:
    return mime_type == WEBP_MIME or filename.lower().endswith(".webp")


def webp_to_png(content: bytes) -> bytes:
    try:
        image = Image.open(io.BytesIO(content))
        if image.mode not in ("RGB", "RGBA"):
            image = image.convert("RGBA")
        buffered = io.BytesIO()
        image.save(buffered, format="PNG")
    except (UnidentifiedImageError, OSError) as e:
        raise ImageConversionError(str(e)) from e
    return buffered.getvalue()


def normalize_upload(content: bytes, filename: str, mime_type: str) -> NormalizedImage:
    """The agent file endpoint does not accept WebP; everything else passes through."""
    if not is_webp(mime_type, filename):
        return NormalizedImage(content=content, mime_type=mime_type, filename=filename)

    logger.info("Converting WebP upload to PNG", extra={"context": {"filename": filename}})
    png_filename = re.sub(r"\.webp$", ".png", filename, flags=re.IGNORECASE)
    if png_filename == filename:
        png_filename = f"{filename}.png"
    return NormalizedImage(content=webp_to_png(content), mime_type=PNG_MIME, filename=png_filename)
