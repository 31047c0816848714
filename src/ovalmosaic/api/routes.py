"""API route definitions."""

from __future__ import annotations

from typing import TYPE_CHECKING, Annotated, NoReturn

from fastapi import APIRouter, Depends, Form, HTTPException, Request, UploadFile, status
from fastapi.responses import Response

from ovalmosaic.api.middleware import verify_api_key
from ovalmosaic.api.schemas import ErrorResponse, HealthResponse, StatusResponse
from ovalmosaic.errors import (
    DecodeError,
    InitializationError,
    MosaicError,
    NoImagesError,
    PipelineBusyError,
)
from ovalmosaic.ml.preprocessing import ImageCodec, is_image_content_type
from ovalmosaic.pipeline import InputFile

if TYPE_CHECKING:
    from ovalmosaic.config import Settings
    from ovalmosaic.ml.inference import InferencePool
    from ovalmosaic.ml.landmarker import LandmarkerProvider
    from ovalmosaic.pipeline import MosaicPipeline


router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])

StrengthForm = Annotated[int | None, Form(ge=1, le=256, description="Block size in pixels")]

_ERROR_RESPONSES: dict[int | str, dict[str, object]] = {
    status.HTTP_409_CONFLICT: {"model": ErrorResponse},
    status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
    status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ErrorResponse},
    status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
}


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_pipeline(request: Request) -> MosaicPipeline:
    pipeline: MosaicPipeline = request.app.state.pipeline
    return pipeline


def _get_inference_pool(request: Request) -> InferencePool:
    pool: InferencePool = request.app.state.inference_pool
    return pool


def _get_provider(request: Request) -> LandmarkerProvider:
    provider: LandmarkerProvider = request.app.state.landmarker
    return provider


def _raise_http(exc: Exception) -> NoReturn:
    """Translate a pipeline failure into an HTTP error."""
    if isinstance(exc, PipelineBusyError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if isinstance(exc, (DecodeError, NoImagesError)):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    if isinstance(exc, InitializationError):
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    if isinstance(exc, TimeoutError):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Server busy, try again later",
        ) from exc
    raise HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Mosaic processing failed",
    ) from exc


async def _read_upload(upload: UploadFile) -> InputFile:
    data = await upload.read()
    return InputFile(name=upload.filename or "image", data=data, content_type=upload.content_type)


@router.post(
    "/mosaic",
    response_class=Response,
    responses={
        status.HTTP_200_OK: {"content": {"image/png": {}}},
        status.HTTP_415_UNSUPPORTED_MEDIA_TYPE: {"model": ErrorResponse},
        **_ERROR_RESPONSES,
    },
    summary="Mosaic the faces in one image",
)
async def mosaic_image(request: Request, file: UploadFile, strength: StrengthForm = None) -> Response:
    """Return the uploaded image as PNG with every detected face pixelated."""
    settings = _get_settings(request)
    pipeline = _get_pipeline(request)

    if not is_image_content_type(file.content_type):
        raise HTTPException(
            status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
            detail=f"Not an image: {file.content_type}",
        )

    upload = await _read_upload(file)
    try:
        output = await pipeline.process_single(upload, strength or settings.default_strength)
    except (MosaicError, TimeoutError) as exc:
        _raise_http(exc)

    return Response(
        content=output.png,
        media_type="image/png",
        headers={
            "Content-Disposition": f'attachment; filename="{settings.mosaic_filename}"',
            "X-Face-Count": str(output.face_count),
            "X-Status": "ok" if output.face_count else "no_face",
        },
    )


@router.post(
    "/mosaic/batch",
    response_class=Response,
    responses={status.HTTP_200_OK: {"content": {"application/zip": {}}}, **_ERROR_RESPONSES},
    summary="Mosaic a batch of images into a ZIP archive",
)
async def mosaic_batch(request: Request, files: list[UploadFile], strength: StrengthForm = None) -> Response:
    """Process every image upload in order and return one ZIP of PNGs.

    Non-image uploads are ignored. Any failure aborts the whole batch.
    """
    settings = _get_settings(request)
    pipeline = _get_pipeline(request)

    uploads = [await _read_upload(f) for f in files]
    try:
        images = pipeline.accept_images(uploads)
        result = await pipeline.process_batch(images, strength or settings.default_strength)
    except (MosaicError, TimeoutError) as exc:
        _raise_http(exc)

    return Response(
        content=result.archive,
        media_type="application/zip",
        headers={
            "Content-Disposition": f'attachment; filename="{settings.archive_filename}"',
            "X-Image-Count": str(len(result.outputs)),
        },
    )


@router.get(
    "/mosaic/batch/latest",
    response_class=Response,
    responses={status.HTTP_404_NOT_FOUND: {"model": ErrorResponse}},
    summary="Download the most recent batch archive",
)
async def latest_archive(request: Request) -> Response:
    """Return the archive produced by the last successful batch."""
    settings = _get_settings(request)
    archive = _get_pipeline(request).last_archive
    if archive is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No archive available")
    return Response(
        content=archive,
        media_type="application/zip",
        headers={"Content-Disposition": f'attachment; filename="{settings.archive_filename}"'},
    )


@router.get(
    "/mosaic/preview",
    response_class=Response,
    responses={status.HTTP_404_NOT_FOUND: {"model": ErrorResponse}},
    summary="Preview of the most recently processed image",
)
async def latest_preview(request: Request) -> Response:
    """Return the last processed image as PNG."""
    preview = _get_pipeline(request).last_preview
    if preview is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No preview available")
    return Response(content=ImageCodec.encode_png(preview), media_type="image/png")


@router.get(
    "/status",
    response_model=StatusResponse,
    summary="Current run status",
)
async def run_status(request: Request) -> StatusResponse:
    """Return the state and progress of the current or last run."""
    pipeline = _get_pipeline(request)
    current, total = pipeline.progress
    pool = _get_inference_pool(request)
    return StatusResponse(
        state=pipeline.state,
        current=current,
        total=total,
        message=pipeline.status,
        archive_ready=pipeline.last_archive is not None,
        worker_job=pool.current_job,
        queued_jobs=pool.queue_depth,
    )


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    pool = _get_inference_pool(request)
    return HealthResponse(
        status="ok",
        landmarker_loaded=_get_provider(request).loaded,
        active_jobs=pool.active_count,
        queue_depth=pool.queue_depth,
    )
