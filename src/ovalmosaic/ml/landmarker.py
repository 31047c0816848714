"""Face landmark detection: detector protocol, MediaPipe backend, lazy provider.

The detector is a black box that returns, per face, landmarks in normalized
image coordinates indexed by the MediaPipe Face Mesh scheme.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol

import numpy as np

from ovalmosaic.errors import DetectionError, InitializationError
from ovalmosaic.mosaic.geometry import Landmark

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence
    from pathlib import Path

    from numpy.typing import NDArray

    from ovalmosaic.config import Settings
    from ovalmosaic.ml.model_manager import ModelManager

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DetectionResult:
    """Per-face landmark arrays for one image, in detection order."""

    faces: tuple[tuple[Landmark, ...], ...] = field(default_factory=tuple)

    @property
    def face_count(self) -> int:
        return len(self.faces)


class FaceLandmarkDetector(Protocol):
    """Protocol for face landmark models."""

    def detect(self, image: NDArray[np.uint8]) -> DetectionResult:
        """Detect faces in an image.

        Args:
            image: HxWx3 RGB (or HxWx4 RGBA) uint8 array.

        Returns:
            Detection result, possibly with zero faces.
        """
        ...

    def close(self) -> None:
        """Release model resources."""
        ...


class MediaPipeLandmarkDetector:
    """MediaPipe FaceLandmarker in still-image mode."""

    def __init__(self, model_path: Path, num_faces: int = 20, min_confidence: float = 0.5) -> None:
        import mediapipe as mp
        from mediapipe.tasks import python as mp_tasks
        from mediapipe.tasks.python import vision

        options = vision.FaceLandmarkerOptions(
            base_options=mp_tasks.BaseOptions(model_asset_path=str(model_path)),
            running_mode=vision.RunningMode.IMAGE,
            num_faces=num_faces,
            min_face_detection_confidence=min_confidence,
            min_face_presence_confidence=min_confidence,
            output_face_blendshapes=False,
            output_facial_transformation_matrixes=False,
        )
        self._mp = mp
        self._landmarker = vision.FaceLandmarker.create_from_options(options)
        logger.info("MediaPipe FaceLandmarker loaded from %s (num_faces=%d)", model_path, num_faces)

    def detect(self, image: NDArray[np.uint8]) -> DetectionResult:
        rgb = np.ascontiguousarray(image[..., :3])
        mp_image = self._mp.Image(image_format=self._mp.ImageFormat.SRGB, data=rgb)
        try:
            result = self._landmarker.detect(mp_image)
        except (RuntimeError, ValueError) as exc:
            raise DetectionError(f"Face landmark detection failed: {exc}") from exc

        faces = tuple(
            tuple(Landmark(x=lm.x, y=lm.y, z=lm.z or 0.0) for lm in face)
            for face in (result.face_landmarks or [])
        )
        return DetectionResult(faces=faces)

    def close(self) -> None:
        self._landmarker.close()


class StaticLandmarkDetector:
    """Detector returning fixed landmarks for every image."""

    def __init__(self, faces: Sequence[Sequence[Landmark | None]] = ()) -> None:
        self._faces = tuple(tuple(face) for face in faces)
        self.calls = 0

    def detect(self, image: NDArray[np.uint8]) -> DetectionResult:
        self.calls += 1
        return DetectionResult(faces=self._faces)  # type: ignore[arg-type]

    def close(self) -> None:
        pass


def mediapipe_factory(settings: Settings, model_manager: ModelManager) -> Callable[[], FaceLandmarkDetector]:
    """Build a zero-argument loader for the configured MediaPipe model."""

    def load() -> FaceLandmarkDetector:
        model_path = model_manager.ensure_downloaded(settings.landmarker_model)
        return MediaPipeLandmarkDetector(
            model_path,
            num_faces=settings.num_faces,
            min_confidence=settings.min_face_detection_confidence,
        )

    return load


class LandmarkerProvider:
    """Lazily loads one shared detector, exactly once.

    The first :meth:`get` starts loading in a worker thread; concurrent
    callers await the same in-flight load. A failed load is not memoized,
    so the next call tries again.
    """

    def __init__(self, factory: Callable[[], FaceLandmarkDetector]) -> None:
        self._factory = factory
        self._detector: FaceLandmarkDetector | None = None
        self._loading: asyncio.Task[FaceLandmarkDetector] | None = None

    @property
    def loaded(self) -> bool:
        return self._detector is not None

    async def get(self) -> FaceLandmarkDetector:
        """Return the detector, loading it on first use.

        Raises:
            InitializationError: If the model could not be loaded.
        """
        if self._detector is not None:
            return self._detector

        if self._loading is None:
            self._loading = asyncio.create_task(self._load())
        loading = self._loading
        try:
            return await asyncio.shield(loading)
        except InitializationError:
            if self._loading is loading:
                self._loading = None
            raise

    async def _load(self) -> FaceLandmarkDetector:
        logger.info("Initializing face landmarker")
        try:
            detector = await asyncio.to_thread(self._factory)
        except Exception as exc:
            logger.exception("Face landmarker initialization failed")
            raise InitializationError(f"Face landmarker failed to load: {exc}") from exc
        self._detector = detector
        logger.info("Face landmarker ready")
        return detector

    def close(self) -> None:
        """Release the detector if one was loaded."""
        if self._detector is not None:
            self._detector.close()
            self._detector = None
        self._loading = None
