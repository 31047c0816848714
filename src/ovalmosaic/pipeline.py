"""Image and batch orchestration.

Each image is decoded, run through the landmark detector and composited
face by face, then encoded as PNG. Batches run strictly one file at a time
and abort on the first failure; on success the outputs are zipped and kept
as the latest archive.
"""

from __future__ import annotations

import asyncio
import io
import logging
import zipfile
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from ovalmosaic.errors import DetectionError, NoImagesError, PackagingError, PipelineBusyError
from ovalmosaic.ml.preprocessing import OUTPUT_SUFFIX, is_image_content_type, output_name
from ovalmosaic.mosaic.compositor import compose_faces

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    import numpy as np
    from numpy.typing import NDArray

    from ovalmosaic.config import Settings
    from ovalmosaic.ml.inference import InferencePool
    from ovalmosaic.ml.landmarker import FaceLandmarkDetector, LandmarkerProvider
    from ovalmosaic.ml.preprocessing import ImageCodec
    from ovalmosaic.mosaic.patch import BlockSizePolicy

logger = logging.getLogger(__name__)


class PipelineState(StrEnum):
    IDLE = "idle"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class InputFile:
    """One uploaded file."""

    name: str
    data: bytes
    content_type: str | None = None


@dataclass(frozen=True)
class MosaicOutput:
    """One processed image."""

    name: str
    png: bytes
    face_count: int
    mosaic_count: int
    width: int
    height: int


@dataclass(frozen=True)
class BatchResult:
    """All outputs of a batch run and their ZIP archive."""

    outputs: tuple[MosaicOutput, ...]
    archive: bytes


@dataclass
class _Rendered:
    output: MosaicOutput
    preview: NDArray[np.uint8]


def unique_output_names(names: Iterable[str]) -> list[str]:
    """Output names for ``names``, suffixing ``-2``, ``-3``... on collisions."""
    seen: set[str] = set()
    result: list[str] = []
    for name in names:
        candidate = output_name(name)
        stem = candidate.removesuffix(OUTPUT_SUFFIX)
        n = 1
        while candidate in seen:
            n += 1
            candidate = f"{stem}-{n}{OUTPUT_SUFFIX}"
        seen.add(candidate)
        result.append(candidate)
    return result


def package_outputs(outputs: Sequence[MosaicOutput]) -> bytes:
    """Zip the PNG outputs, one entry per output, in order.

    Raises:
        PackagingError: If the archive cannot be written.
    """
    buf = io.BytesIO()
    try:
        with zipfile.ZipFile(buf, mode="w", compression=zipfile.ZIP_DEFLATED) as zf:
            for out in outputs:
                zf.writestr(out.name, out.png)
    except (OSError, ValueError, zipfile.LargeZipFile) as exc:
        raise PackagingError(f"Failed to build archive: {exc}") from exc
    return buf.getvalue()


class MosaicPipeline:
    """Runs single-image and batch jobs and tracks the latest run."""

    def __init__(
        self,
        settings: Settings,
        codec: ImageCodec,
        provider: LandmarkerProvider,
        pool: InferencePool,
    ) -> None:
        self._settings = settings
        self._codec = codec
        self._provider = provider
        self._pool = pool
        self._run_lock = asyncio.Lock()

        self.state = PipelineState.IDLE
        self.progress: tuple[int, int] = (0, 0)
        self.status = "Upload images to start"
        self.last_archive: bytes | None = None
        self.last_preview: NDArray[np.uint8] | None = None

    # -- Public API ---------------------------------------------------------

    def accept_images(self, files: Sequence[InputFile]) -> list[InputFile]:
        """Drop non-image files.

        Raises:
            NoImagesError: If nothing is left.
        """
        images = [f for f in files if is_image_content_type(f.content_type)]
        skipped = len(files) - len(images)
        if skipped:
            logger.info("Ignoring %d non-image file(s)", skipped)
        if not images:
            self.status = "No image files found"
            raise NoImagesError(self.status)
        return images

    async def process_single(self, file: InputFile, strength: int) -> MosaicOutput:
        """Mosaic one image using the single-image block policy."""
        async with self._exclusive():
            self._begin(total=1)
            try:
                output = await self._process_one(
                    file, output_name(file.name), 1, 1, strength, self._settings.single_block_policy
                )
            except Exception as exc:
                self._fail(exc)
                raise
            self.state = PipelineState.DONE
            if output.face_count:
                self.status = f"Done: {file.name} ({output.mosaic_count} face(s))"
            return output

    async def process_batch(self, files: Sequence[InputFile], strength: int) -> BatchResult:
        """Mosaic every file in order and package the results.

        Any failure aborts the whole run; no partial archive is kept.
        """
        async with self._exclusive():
            self._begin(total=len(files))
            self.last_archive = None
            names = unique_output_names(f.name for f in files)
            outputs: list[MosaicOutput] = []
            try:
                for index, (file, name) in enumerate(zip(files, names, strict=True), start=1):
                    outputs.append(
                        await self._process_one(
                            file, name, index, len(files), strength, self._settings.batch_block_policy
                        )
                    )
                self.status = f"Packaging {len(outputs)} image(s)"
                archive = await self._pool.run("package archive", package_outputs, outputs)
            except Exception as exc:
                self._fail(exc)
                raise

            self.last_archive = archive
            self.state = PipelineState.DONE
            self.status = f"Done: {len(outputs)} image(s), archive ready"
            logger.info("Batch finished: %d image(s), %d archive bytes", len(outputs), len(archive))
            return BatchResult(outputs=tuple(outputs), archive=archive)

    # -- Internal -----------------------------------------------------------

    def _exclusive(self) -> asyncio.Lock:
        if self._run_lock.locked():
            raise PipelineBusyError("A mosaic run is already in progress")
        return self._run_lock

    def _begin(self, total: int) -> None:
        self.state = PipelineState.RUNNING
        self.progress = (0, total)

    def _fail(self, exc: Exception) -> None:
        self.state = PipelineState.FAILED
        self.status = f"Error: {exc}"
        logger.exception("Mosaic run failed at %d/%d", *self.progress)

    async def _process_one(
        self,
        file: InputFile,
        name: str,
        index: int,
        total: int,
        strength: int,
        policy: BlockSizePolicy,
    ) -> MosaicOutput:
        detector = await self._provider.get()
        self.progress = (index, total)
        self.status = f"Processing {index}/{total}: {file.name}"
        rendered = await self._pool.run(
            f"render {file.name}", self._render, detector, file, name, strength, policy
        )
        self.last_preview = rendered.preview
        if rendered.output.face_count == 0:
            self.status = f"No face found: {file.name} (saved unchanged)"
        return rendered.output

    def _render(
        self,
        detector: FaceLandmarkDetector,
        file: InputFile,
        name: str,
        strength: int,
        policy: BlockSizePolicy,
    ) -> _Rendered:
        image = self._codec.decode_image(file.data, file.name)
        preview = image.copy()
        try:
            detection = detector.detect(image)
        except (RuntimeError, ValueError, OSError) as exc:
            raise DetectionError(f"{file.name}: face detection failed ({exc})") from exc

        mosaic_count = 0
        if detection.faces:
            mosaic_count = compose_faces(
                (image, preview),
                detection.faces,
                strength,
                expansion=self._settings.expansion,
                padding=self._settings.padding,
                block_policy=policy,
            )
        logger.info("%s: %d face(s), %d mosaicked", file.name, detection.face_count, mosaic_count)

        height, width = image.shape[:2]
        output = MosaicOutput(
            name=name,
            png=self._codec.encode_png(image),
            face_count=detection.face_count,
            mosaic_count=mosaic_count,
            width=width,
            height=height,
        )
        return _Rendered(output=output, preview=preview)
