"""Mosaic patch rendering and block-size policy."""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING

import cv2
import numpy as np

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from ovalmosaic.mosaic.geometry import BoundingRegion

AUTO_BLOCK_DIVISOR: int = 12
AUTO_BLOCK_MIN: int = 12
AUTO_BLOCK_MAX: int = 32


class BlockSizePolicy(StrEnum):
    AUTO = "auto"
    FIXED = "fixed"


def resolve_block_size(policy: BlockSizePolicy, strength: int, region_width: float) -> int:
    """Return the block edge length in pixels for one face.

    ``AUTO`` ignores ``strength`` and scales with the face width;
    ``FIXED`` uses ``strength`` as given.
    """
    if policy == BlockSizePolicy.AUTO:
        return int(max(AUTO_BLOCK_MIN, min(AUTO_BLOCK_MAX, region_width / AUTO_BLOCK_DIVISOR)))
    if strength < 1:
        raise ValueError(f"block size must be >= 1, got {strength}")
    return int(strength)


def render_mosaic_patch(
    source: NDArray[np.uint8],
    region: BoundingRegion,
    block_size: int,
) -> NDArray[np.uint8]:
    """Render a pixelated copy of ``region`` from ``source``.

    The region is area-averaged down to one pixel per block, then scaled
    back up with nearest-neighbour sampling. ``source`` is not modified.

    Args:
        source: HxWxC uint8 array.
        region: Region to pixelate, already clamped to ``source``.
        block_size: Block edge length in pixels, >= 1.

    Returns:
        Array with the shape of the region's pixel box.
    """
    if block_size < 1:
        raise ValueError(f"block size must be >= 1, got {block_size}")

    image_h, image_w = source.shape[:2]
    x0, y0, w, h = region.pixel_box(image_w, image_h)
    extracted = np.ascontiguousarray(source[y0 : y0 + h, x0 : x0 + w])

    small_w = max(1, w // block_size)
    small_h = max(1, h // block_size)
    small = cv2.resize(extracted, (small_w, small_h), interpolation=cv2.INTER_AREA)
    patch = cv2.resize(small, (w, h), interpolation=cv2.INTER_NEAREST)

    # cv2.resize drops a trailing singleton channel axis.
    return patch.reshape(extracted.shape)
