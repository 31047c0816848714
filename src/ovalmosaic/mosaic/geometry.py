"""Face-oval contour geometry.

Turns one face's normalized landmarks into a pixel-space clipping polygon and
the padded bounding region the mosaic patch is rendered for.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import numpy as np

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import NDArray

# MediaPipe Face Mesh face-oval loop, in contour order.
FACE_OVAL: tuple[int, ...] = (
    10, 338, 297, 332, 284, 251, 389, 356, 454, 323,
    361, 288, 397, 365, 379, 378, 400, 377, 152, 148,
    176, 149, 150, 136, 172, 58, 132, 93, 234, 127,
    162, 21, 54, 103, 67, 109,
)  # fmt: skip

DEFAULT_EXPANSION: float = 1.12
DEFAULT_PADDING: float = 0.08
MIN_CONTOUR_POINTS: int = 3


@dataclass(frozen=True)
class Landmark:
    """A single facial keypoint in normalized image coordinates."""

    x: float
    y: float
    z: float = 0.0


@dataclass(frozen=True)
class BoundingRegion:
    """Axis-aligned pixel-space rectangle, clamped to the image."""

    x: float
    y: float
    width: float
    height: float

    def pixel_box(self, image_width: int, image_height: int) -> tuple[int, int, int, int]:
        """Return the integer raster box ``(x0, y0, w, h)`` covering this region.

        The box is at least 1x1 and never extends past the image edges.
        """
        w = max(1, min(math.ceil(self.width), image_width))
        h = max(1, min(math.ceil(self.height), image_height))
        x0 = min(max(0, math.floor(self.x)), image_width - w)
        y0 = min(max(0, math.floor(self.y)), image_height - h)
        return x0, y0, w, h


@dataclass(frozen=True)
class ContourGeometry:
    """Clipping polygon and the bounding region derived from the same points."""

    polygon: NDArray[np.float64]
    region: BoundingRegion


def _coords(landmark: Any) -> tuple[float, float] | None:
    if landmark is None:
        return None
    if hasattr(landmark, "x") and hasattr(landmark, "y"):
        return float(landmark.x), float(landmark.y)
    return float(landmark[0]), float(landmark[1])


def select_contour_points(
    landmarks: Sequence[Any],
    image_width: int,
    image_height: int,
    indices: Sequence[int] = FACE_OVAL,
) -> NDArray[np.float64]:
    """Map the face-oval landmarks of one face to pixel-space points.

    Indices missing from ``landmarks`` (out of range or ``None``) are skipped,
    so the result may hold fewer points than ``indices``.

    Returns:
        ``(N, 2)`` float64 array in contour order.
    """
    count = len(landmarks)
    points: list[tuple[float, float]] = []
    for index in indices:
        if index < 0 or index >= count:
            continue
        coords = _coords(landmarks[index])
        if coords is None:
            continue
        points.append((coords[0] * image_width, coords[1] * image_height))
    return np.asarray(points, dtype=np.float64).reshape(-1, 2)


def expand_about_centroid(points: NDArray[np.float64], factor: float) -> NDArray[np.float64]:
    """Scale ``points`` about their arithmetic mean by ``factor``."""
    if factor == 1.0 or len(points) == 0:
        return points.copy()
    centroid = points.mean(axis=0)
    return centroid + (points - centroid) * factor


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def bounding_region(
    points: NDArray[np.float64],
    padding: float,
    image_width: int,
    image_height: int,
) -> BoundingRegion:
    """Padded axis-aligned bounds of ``points``, clamped to the image."""
    min_x, min_y = points.min(axis=0)
    max_x, max_y = points.max(axis=0)
    w = float(max_x - min_x)
    h = float(max_y - min_y)

    x = _clamp(float(min_x) - w * padding, 0, image_width)
    y = _clamp(float(min_y) - h * padding, 0, image_height)
    width = _clamp(w * (1 + 2 * padding), 1, image_width - x)
    height = _clamp(h * (1 + 2 * padding), 1, image_height - y)
    # Near the far edge the upper bound drops below 1; the lower bound wins.
    return BoundingRegion(x=x, y=y, width=width, height=height)


def build_contour_geometry(
    points: NDArray[np.float64],
    image_width: int,
    image_height: int,
    expansion: float = DEFAULT_EXPANSION,
    padding: float = DEFAULT_PADDING,
) -> ContourGeometry | None:
    """Build the expanded polygon and its bounding region.

    Returns:
        ``None`` when fewer than three points are available; the face is
        then skipped without error.
    """
    if len(points) < MIN_CONTOUR_POINTS:
        return None
    if expansion < 1.0:
        raise ValueError(f"expansion must be >= 1.0, got {expansion}")

    polygon = expand_about_centroid(points, expansion)
    region = bounding_region(polygon, padding, image_width, image_height)
    return ContourGeometry(polygon=polygon, region=region)
