"""Grayscale image codec for complex observation values.

Images travel as a row-major array of signed bytes where each pixel's gray
level is shifted by -128. Width and height are packed into the attachment
``size`` as ``height * 10000 + width`` which bounds the width at 9999.
Legacy clients send a textual payload instead::

    height width v0 v1 ... v(h*w-1)          # compact grayscale
    height width r0 g0 b0 r1 g1 b1 ...       # verbose RGB
"""

from __future__ import annotations

import base64
import binascii
import re
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Tuple

import numpy as np
import structlog
from PIL import Image

from .constants import IMAGE_CONTENT_TYPE
from .errors import ErrorCollector
from .exceptions import ImageTooWideError, NonGrayscaleImageError

logger = structlog.get_logger(__name__)

MAX_IMAGE_WIDTH = 10000
SIZE_FACTOR = 10000
GRAY_OFFSET = 128

INVALID_PAYLOAD = (
    "Invalid image data sent: must be in format "
    "[height] [width] [row major pixel data]"
)

_TEXT_PAYLOAD = re.compile(r"^\s*-?\d+(\s+-?\d+)+\s*$")


@dataclass(frozen=True)
class EncodedImage:
    """Signed byte representation of a grayscale image."""

    height: int
    width: int
    data: bytes

    @property
    def size(self) -> int:
        return self.height * SIZE_FACTOR + self.width

    def values(self) -> np.ndarray:
        """Return the pixel values as a ``(height, width)`` int8 array."""

        return np.frombuffer(self.data, dtype=np.int8).reshape(
            self.height, self.width
        )


def encode_image(image: Image.Image) -> EncodedImage:
    """Encode a grayscale ``image`` as signed bytes.

    Raises
    ------
    ImageTooWideError
        If the image is 10000 pixels wide or wider.
    NonGrayscaleImageError
        If any pixel has differing red, green and blue channels.
    """

    width, height = image.size
    if width >= MAX_IMAGE_WIDTH:
        raise ImageTooWideError(
            f"Image width {width} is >= {MAX_IMAGE_WIDTH} pixels, "
            "please use lower resolution images only"
        )
    rgb = np.asarray(image.convert("RGB"), dtype=np.int16)
    red, green, blue = rgb[..., 0], rgb[..., 1], rgb[..., 2]
    if not (np.array_equal(red, green) and np.array_equal(red, blue)):
        raise NonGrayscaleImageError("Grayscale images only are supported")
    values = (red - GRAY_OFFSET).astype(np.int8)
    return EncodedImage(height=height, width=width, data=values.tobytes())


def decode_image(encoded: EncodedImage) -> Image.Image:
    """Return the grayscale image described by ``encoded``."""

    gray = (encoded.values().astype(np.int16) + GRAY_OFFSET).astype(np.uint8)
    return Image.fromarray(gray)


def unpack_size(size: int) -> Tuple[int, int]:
    """Split a packed attachment size into ``(height, width)``."""

    return divmod(int(size), SIZE_FACTOR)


def decode_payload(payload: str, errors: ErrorCollector) -> Optional[Image.Image]:
    """Decode a whitespace separated textual image payload.

    Problems are recorded on ``errors`` and ``None`` is returned.
    """

    tokens = payload.split()
    if len(tokens) < 2:
        errors.add(INVALID_PAYLOAD)
        return None
    try:
        numbers = [int(token) for token in tokens]
    except ValueError:
        errors.add(INVALID_PAYLOAD)
        return None

    # Plain ints until the range checks pass; numpy overflows on huge tokens
    height, width, values = numbers[0], numbers[1], numbers[2:]
    if height <= 0 or width <= 0:
        errors.add(INVALID_PAYLOAD)
        return None
    if any(value < 0 or value > 255 for value in values):
        errors.add("Invalid image data sent: pixel values must be within 0-255")
        return None

    count = height * width
    pixels = np.array(values, dtype=np.uint8)
    if pixels.size == count:
        return Image.fromarray(pixels.reshape(height, width))
    if pixels.size == count * 3:
        return Image.fromarray(pixels.reshape(height, width, 3))
    errors.add(INVALID_PAYLOAD, height=height, width=width, values=int(pixels.size))
    return None


def image_to_attachment(encoded: EncodedImage, url: str) -> dict:
    """Return a FHIR ``Attachment`` carrying ``encoded``."""

    return {
        "contentType": IMAGE_CONTENT_TYPE,
        "url": url,
        "size": encoded.size,
        "data": base64.b64encode(encoded.data).decode("ascii"),
    }


def _decode_base64(data: str) -> Optional[bytes]:
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError):
        return None


def attachment_to_image(
    attachment: Mapping[str, Any], errors: ErrorCollector
) -> Optional[Image.Image]:
    """Return the image carried by a FHIR ``Attachment``.

    Accepts the binary form produced by :func:`image_to_attachment` and the
    textual payload, either raw or base64 encoded, in ``data``.
    """

    data = attachment.get("data")
    if not isinstance(data, str) or not data.strip():
        errors.add("Attachment data cannot be empty")
        return None

    if _TEXT_PAYLOAD.match(data):
        return decode_payload(data, errors)

    raw = _decode_base64(data)
    if raw is None:
        errors.add(INVALID_PAYLOAD)
        return None

    size = attachment.get("size")
    if isinstance(size, int) and size > 0:
        height, width = unpack_size(size)
        if height > 0 and height * width == len(raw):
            return decode_image(EncodedImage(height=height, width=width, data=raw))

    try:
        text = raw.decode("ascii")
    except UnicodeDecodeError:
        text = ""
    if _TEXT_PAYLOAD.match(text):
        return decode_payload(text, errors)

    logger.debug("attachment_size_mismatch", size=size, length=len(raw))
    errors.add(INVALID_PAYLOAD)
    return None
