"""Per-face compositor: pixelate a face clipped to its contour polygon."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import cv2
import numpy as np

from ovalmosaic.mosaic.geometry import (
    DEFAULT_EXPANSION,
    DEFAULT_PADDING,
    build_contour_geometry,
    select_contour_points,
)
from ovalmosaic.mosaic.patch import BlockSizePolicy, render_mosaic_patch, resolve_block_size

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from numpy.typing import NDArray

logger = logging.getLogger(__name__)


# Sub-pixel precision bits for cv2.fillPoly.
_SHIFT = 4
_BAND_KERNEL = np.ones((3, 3), dtype=np.uint8)


def polygon_mask(polygon: NDArray[np.float64], origin: tuple[int, int], shape: tuple[int, int]) -> NDArray[np.bool_]:
    """Rasterize ``polygon`` into a boolean mask of ``shape`` placed at ``origin``.

    A pixel is in the mask only if its centre lies inside or on the polygon.
    Polygon coordinates are pixel-edge based, so pixel (r, c) has its centre
    at (c + 0.5, r + 0.5).
    """
    x0, y0 = origin
    local = polygon - (x0, y0)
    mask = np.zeros(shape, dtype=np.uint8)
    # fillPoly puts integer vertex k on the centre of pixel k.
    fixed = np.rint((local - 0.5) * (1 << _SHIFT)).astype(np.int32)
    cv2.fillPoly(mask, [fixed], 255, lineType=cv2.LINE_8, shift=_SHIFT)

    # fillPoly also keeps boundary pixels; test their centres exactly.
    core = cv2.erode(mask, _BAND_KERNEL, iterations=2, borderType=cv2.BORDER_CONSTANT, borderValue=0)
    band = mask & ~core
    contour = local.astype(np.float32).reshape(-1, 1, 2)
    rows, cols = np.nonzero(band)
    for r, c in zip(rows.tolist(), cols.tolist()):
        if cv2.pointPolygonTest(contour, (c + 0.5, r + 0.5), False) < 0:
            mask[r, c] = 0
    return mask.astype(bool)


def compose_face(
    surface: NDArray[np.uint8],
    landmarks: Sequence[Any],
    block_size: int,
    *,
    expansion: float = DEFAULT_EXPANSION,
    padding: float = DEFAULT_PADDING,
    block_policy: BlockSizePolicy = BlockSizePolicy.FIXED,
) -> bool:
    """Pixelate one face on ``surface`` in place.

    The patch is rendered from the surface's current pixels, so faces
    applied in sequence compose on top of each other. Only pixels inside
    the expanded contour polygon are written.

    Returns:
        True if a mosaic was applied, False if the face had fewer than
        three usable contour points.
    """
    image_h, image_w = surface.shape[:2]
    points = select_contour_points(landmarks, image_w, image_h)
    geometry = build_contour_geometry(points, image_w, image_h, expansion=expansion, padding=padding)
    if geometry is None:
        logger.debug("Skipping face with %d contour points", len(points))
        return False

    block = resolve_block_size(block_policy, block_size, geometry.region.width)
    patch = render_mosaic_patch(surface, geometry.region, block)

    x0, y0, w, h = geometry.region.pixel_box(image_w, image_h)
    mask = polygon_mask(geometry.polygon, (x0, y0), (h, w))
    target = surface[y0 : y0 + h, x0 : x0 + w]
    target[mask] = patch[mask]
    return True


def compose_faces(
    surfaces: Iterable[NDArray[np.uint8]],
    faces: Sequence[Sequence[Any]],
    block_size: int,
    *,
    expansion: float = DEFAULT_EXPANSION,
    padding: float = DEFAULT_PADDING,
    block_policy: BlockSizePolicy = BlockSizePolicy.FIXED,
) -> int:
    """Apply :func:`compose_face` for every face, in order, on every surface.

    Returns:
        Number of faces that received a mosaic.
    """
    applied = 0
    targets = list(surfaces)
    for face in faces:
        results = [
            compose_face(
                target,
                face,
                block_size,
                expansion=expansion,
                padding=padding,
                block_policy=block_policy,
            )
            for target in targets
        ]
        if any(results):
            applied += 1
    return applied
