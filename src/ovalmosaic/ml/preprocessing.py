"""Image decoding, validation, PNG encoding and output naming.

Handles format detection, decoding, EXIF orientation, color space
conversion and size validation before images reach the detector.
"""

from __future__ import annotations

import io
import logging
import re
from typing import TYPE_CHECKING

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from ovalmosaic.errors import DecodeError

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = logging.getLogger(__name__)

DEFAULT_BASE_NAME = "image"
OUTPUT_SUFFIX = "_mosaic.png"

_EXTENSION_RE = re.compile(r"\.[^.]+$")
_UNSAFE_CHARS_RE = re.compile(r'[\\/:*?"<>|]')


class ImageCodec:
    """Decodes uploads into RGB(A) arrays and encodes results as PNG."""

    def __init__(self, max_image_pixels: int, max_file_size: int) -> None:
        self._max_image_pixels = max_image_pixels
        self._max_file_size = max_file_size

    def decode_image(self, image_bytes: bytes, name: str = "<upload>") -> NDArray[np.uint8]:
        """Decode raw image bytes into a uint8 numpy array.

        Images carrying transparency decode to HxWx4 RGBA, everything else
        to HxWx3 RGB. EXIF orientation is applied.

        Raises:
            DecodeError: If the data is empty, too large, or not a readable image.
        """
        if not image_bytes:
            raise DecodeError(f"{name}: empty file")
        if len(image_bytes) > self._max_file_size:
            raise DecodeError(f"{name}: file exceeds {self._max_file_size} bytes")

        try:
            with Image.open(io.BytesIO(image_bytes)) as img:
                width, height = img.size
                if width * height > self._max_image_pixels:
                    raise DecodeError(f"{name}: {width}x{height} exceeds {self._max_image_pixels} pixels")
                img.load()
                oriented = ImageOps.exif_transpose(img)
                mode = "RGBA" if _has_alpha(oriented) else "RGB"
                array = np.asarray(oriented.convert(mode), dtype=np.uint8)
        except DecodeError:
            raise
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as exc:
            raise DecodeError(f"{name}: cannot decode image ({exc})") from exc

        logger.debug("Decoded %s (%dx%d, %s)", name, array.shape[1], array.shape[0], mode)
        return np.array(array, copy=True)

    @staticmethod
    def encode_png(image: NDArray[np.uint8]) -> bytes:
        """Encode an HxWx3 or HxWx4 uint8 array as PNG bytes."""
        buf = io.BytesIO()
        Image.fromarray(np.ascontiguousarray(image)).save(buf, format="PNG")
        return buf.getvalue()


def _has_alpha(img: Image.Image) -> bool:
    return img.mode in ("RGBA", "LA", "PA") or (img.mode == "P" and "transparency" in img.info)


def is_image_content_type(content_type: str | None) -> bool:
    """Return True for ``image/*`` media types."""
    return bool(content_type) and content_type.lower().startswith("image/")


def safe_base_name(name: str) -> str:
    """Strip the extension and replace path/shell-hostile characters with ``_``."""
    base = _EXTENSION_RE.sub("", name)
    return _UNSAFE_CHARS_RE.sub("_", base).strip() or DEFAULT_BASE_NAME


def output_name(name: str) -> str:
    """Archive entry name for an input file name."""
    return f"{safe_base_name(name)}{OUTPUT_SUFFIX}"
