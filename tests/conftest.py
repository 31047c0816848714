"""Shared helpers: synthetic landmark sets and test images."""

from __future__ import annotations

import io
import math
from typing import TYPE_CHECKING

import numpy as np
from PIL import Image

from ovalmosaic.mosaic.geometry import FACE_OVAL, Landmark

if TYPE_CHECKING:
    from numpy.typing import NDArray

MESH_SIZE = 478


def oval_face(cx: float, cy: float, rx: float, ry: float | None = None) -> list[Landmark]:
    """A full landmark array whose face-oval points lie on an ellipse.

    Coordinates are normalized. Non-contour landmarks sit at the center.
    """
    ry = rx if ry is None else ry
    face = [Landmark(cx, cy) for _ in range(MESH_SIZE)]
    for k, index in enumerate(FACE_OVAL):
        theta = -math.pi / 2 + 2 * math.pi * k / len(FACE_OVAL)
        face[index] = Landmark(cx + rx * math.cos(theta), cy + ry * math.sin(theta))
    return face


def noise_image(width: int, height: int, seed: int = 0, channels: int = 3) -> NDArray[np.uint8]:
    rng = np.random.default_rng(seed)
    return rng.integers(0, 256, size=(height, width, channels), dtype=np.uint8)


def png_bytes(image: NDArray[np.uint8]) -> bytes:
    buf = io.BytesIO()
    Image.fromarray(image).save(buf, format="PNG")
    return buf.getvalue()


def decode_png(data: bytes) -> NDArray[np.uint8]:
    with Image.open(io.BytesIO(data)) as img:
        return np.asarray(img.convert("RGB"))
