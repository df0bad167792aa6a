"""Image acquisition: URL, data-URI or bare base64 to decoded image data.

Provides HEIC/HEIF support and standardized image decoding.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import io
import logging
import re
from dataclasses import dataclass
from urllib import request as urlrequest
from urllib.error import HTTPError, URLError

from PIL import Image, UnidentifiedImageError

from .errors import AcquisitionError, InputError

# Register HEIC/HEIF support with Pillow
# This must be done before any Image.open() calls
try:
    from pillow_heif import register_heif_opener
    register_heif_opener()
except ImportError:
    pass

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (compatible; image-caption-service/0.1)"

_URL_PATTERN = re.compile(r"^https?://", re.IGNORECASE)
_DATA_URI_PATTERN = re.compile(r"^data:image/[\w.+-]+;base64,", re.IGNORECASE)


@dataclass
class ImagePayload:
    """Encoded bytes and the decoded RGB image derived from one acquisition."""

    data: bytes
    image: Image.Image
    source: str  # "url", "data-uri" or "base64"

    @property
    def width(self) -> int:
        return self.image.width

    @property
    def height(self) -> int:
        return self.image.height


def classify_reference(reference: str) -> str:
    """Return which input form a reference is: 'url', 'data-uri' or 'base64'."""
    if _URL_PATTERN.match(reference):
        return "url"
    if _DATA_URI_PATTERN.match(reference):
        return "data-uri"
    return "base64"


def decode_base64(image_data: str) -> bytes:
    """Decode base64 image data, optionally with a data URI prefix.

    Raises:
        AcquisitionError: If the payload is empty or not valid base64.
    """
    # Strip data URI prefix if present
    if image_data[:5].lower() == "data:":
        _, _, image_data = image_data.partition(",")

    payload = "".join(image_data.split())
    if not payload:
        raise AcquisitionError("Empty base64 image payload")

    # Tolerate missing padding
    payload += "=" * (-len(payload) % 4)
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise AcquisitionError(f"Invalid base64 image data: {e}") from e


def decode_image(image_bytes: bytes) -> Image.Image:
    """Decode encoded image bytes to a PIL Image.

    Supports all PIL-supported formats including HEIC/HEIF when pillow-heif
    is installed. The image is converted to RGB for consistency across models.

    Raises:
        AcquisitionError: If the bytes are not a decodable image.
    """
    try:
        img = Image.open(io.BytesIO(image_bytes))
        img.load()
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise AcquisitionError(f"Could not decode image: {e}") from e

    # HEIC images may be in various modes (RGB, RGBA, P, etc.)
    return img.convert("RGB")


def fetch_url(url: str, timeout: float, max_bytes: int) -> bytes:
    """Download image bytes from an http(s) URL. Blocking.

    Raises:
        AcquisitionError: On non-success status, connection failure, timeout
            or a body larger than ``max_bytes``.
    """
    req = urlrequest.Request(url, headers={"User-Agent": USER_AGENT}, method="GET")
    try:
        with urlrequest.urlopen(req, timeout=timeout) as resp:
            data = resp.read(max_bytes + 1)
    except HTTPError as e:
        raise AcquisitionError(
            f"fetch {e.code} while downloading image", upstream_status=e.code
        ) from e
    except URLError as e:
        raise AcquisitionError(f"Failed to download image: {e.reason}") from e
    except (TimeoutError, ConnectionError, ValueError) as e:
        raise AcquisitionError(f"Failed to download image: {e}") from e

    if len(data) > max_bytes:
        raise AcquisitionError(f"Image exceeds maximum size of {max_bytes} bytes")
    return data


async def acquire_image(
    reference: str | None,
    timeout: float = 15.0,
    max_bytes: int = 20 * 1024 * 1024,
) -> ImagePayload:
    """
    Resolve an image reference into encoded bytes and a decoded RGB image.

    Args:
        reference: http(s) URL, data-URI or bare base64 string
        timeout: Seconds allowed for a network fetch
        max_bytes: Maximum accepted encoded image size

    Returns:
        ImagePayload holding both forms

    Raises:
        InputError: If the reference is absent or empty
        AcquisitionError: If fetching or decoding failed
    """
    if reference is None or not isinstance(reference, str) or not reference.strip():
        raise InputError("Missing image_url or image_base64")

    reference = reference.strip()
    source = classify_reference(reference)

    if source == "url":
        try:
            data = await asyncio.wait_for(
                asyncio.to_thread(fetch_url, reference, timeout, max_bytes),
                timeout=timeout + 1,
            )
        except asyncio.TimeoutError as e:
            raise AcquisitionError(f"Timed out after {timeout}s downloading image") from e
    else:
        data = decode_base64(reference)
        if len(data) > max_bytes:
            raise AcquisitionError(f"Image exceeds maximum size of {max_bytes} bytes")

    image = await asyncio.to_thread(decode_image, data)
    logger.debug(f"Acquired {source} image: {image.width}x{image.height}, {len(data)} bytes")
    return ImagePayload(data=data, image=image, source=source)
