"""Model manager: locate and download face landmark model assets.

Resolves a configured model name to a local ``.task`` file, downloading it
from the MediaPipe model bucket on first use.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

import httpx

if TYPE_CHECKING:
    from ovalmosaic.config import Settings

logger = logging.getLogger(__name__)

DOWNLOAD_TIMEOUT_SECONDS: float = 60.0


# ---------------------------------------------------------------------------
# Protocol (kept for test mocking)
# ---------------------------------------------------------------------------


class ModelManager(Protocol):
    """Protocol for model asset management."""

    def ensure_downloaded(self, model_name: str) -> Path:
        """Ensure a model is available locally and return its file path."""
        ...


# ---------------------------------------------------------------------------
# Model registry
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ModelSpec:
    """Static metadata for a single landmark model asset."""

    name: str
    url: str
    filename: str
    license: str


_MEDIAPIPE_BUCKET = "https://storage.googleapis.com/mediapipe-models/face_landmarker/face_landmarker"

MODEL_REGISTRY: dict[str, ModelSpec] = {
    "face_landmarker_float16": ModelSpec(
        name="face_landmarker_float16",
        url=f"{_MEDIAPIPE_BUCKET}/float16/1/face_landmarker.task",
        filename="face_landmarker.task",
        license="Apache-2.0",
    ),
    "face_landmarker_float16_latest": ModelSpec(
        name="face_landmarker_float16_latest",
        url=f"{_MEDIAPIPE_BUCKET}/float16/latest/face_landmarker.task",
        filename="face_landmarker_latest.task",
        license="Apache-2.0",
    ),
}


# ---------------------------------------------------------------------------
# Concrete implementation
# ---------------------------------------------------------------------------


class TaskModelManager:
    """Downloads and caches MediaPipe ``.task`` model files."""

    def __init__(self, settings: Settings) -> None:
        self._models_dir = Path(settings.models_dir)
        self._lock = threading.Lock()
        self._model_paths: dict[str, Path] = {}

    def ensure_downloaded(self, model_name: str) -> Path:
        """Return a local path for ``model_name``, downloading it if needed.

        ``model_name`` may also be a path to an existing ``.task`` file.

        Raises:
            KeyError: If the name is neither a registry entry nor an existing file.
            httpx.HTTPError: If the download fails.
        """
        direct = Path(model_name)
        if direct.suffix == ".task" and direct.is_file():
            return direct

        spec = self._get_spec(model_name)
        with self._lock:
            cached = self._model_paths.get(model_name)
            if cached is not None and cached.exists():
                return cached

            target = self._models_dir / spec.filename
            if not target.exists():
                self._download(spec, target)
            self._model_paths[model_name] = target
            return target

    # -- Internal -----------------------------------------------------------

    @staticmethod
    def _get_spec(model_name: str) -> ModelSpec:
        try:
            return MODEL_REGISTRY[model_name]
        except KeyError:
            raise KeyError(f"Unknown model: {model_name}") from None

    @staticmethod
    def _download(spec: ModelSpec, target: Path) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        partial = target.with_suffix(target.suffix + ".part")
        logger.info("Downloading %s from %s", spec.name, spec.url)
        try:
            with httpx.stream("GET", spec.url, follow_redirects=True, timeout=DOWNLOAD_TIMEOUT_SECONDS) as response:
                response.raise_for_status()
                with partial.open("wb") as fh:
                    for chunk in response.iter_bytes():
                        fh.write(chunk)
            partial.replace(target)
        finally:
            partial.unlink(missing_ok=True)
        logger.info("Downloaded %s to %s", spec.name, target)
