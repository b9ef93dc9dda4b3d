"""Image inspection helpers."""

import io

import structlog
from PIL import Image, UnidentifiedImageError

logger = structlog.get_logger(__name__)


def image_dimensions(data: bytes) -> tuple[int | None, int | None]:
    """Read pixel dimensions from image bytes.

    Formats Pillow cannot open (e.g. HEIC without a plugin) yield (None, None);
    dimensions are informational only.
    """
    try:
        with Image.open(io.BytesIO(data)) as image:
            return image.width, image.height
    except (UnidentifiedImageError, OSError, ValueError) as e:
        logger.debug("image.dimensions_unavailable", error=str(e))
        return None, None


def output_extension(mime: str) -> str:
    """File extension for a provider output: jpg for JPEG content, png otherwise."""
    lower = mime.lower()
    return "jpg" if "jpg" in lower or "jpeg" in lower else "png"
