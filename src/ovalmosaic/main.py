"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ovalmosaic.api.routes import router
from ovalmosaic.config import Settings, get_settings
from ovalmosaic.ml.inference import InferencePool
from ovalmosaic.ml.landmarker import FaceLandmarkDetector, LandmarkerProvider, mediapipe_factory
from ovalmosaic.ml.model_manager import TaskModelManager
from ovalmosaic.ml.preprocessing import ImageCodec
from ovalmosaic.pipeline import MosaicPipeline

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def init_app_state(
    app: FastAPI,
    settings: Settings,
    detector_factory: Callable[[], FaceLandmarkDetector] | None = None,
) -> None:
    """Build the shared services and attach them to ``app.state``.

    ``detector_factory`` defaults to loading the configured MediaPipe model.
    """
    if detector_factory is None:
        detector_factory = mediapipe_factory(settings, TaskModelManager(settings))

    inference_pool = InferencePool(settings)
    landmarker = LandmarkerProvider(detector_factory)
    codec = ImageCodec(max_image_pixels=settings.max_image_pixels, max_file_size=settings.max_file_size)

    app.state.settings = settings
    app.state.inference_pool = inference_pool
    app.state.landmarker = landmarker
    app.state.pipeline = MosaicPipeline(settings, codec, landmarker, inference_pool)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings = get_settings()

    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)

    logger.info(
        "Starting FaceOval Mosaic (model=%s, expansion=%.2f, padding=%.2f, single=%s, batch=%s)",
        settings.landmarker_model,
        settings.expansion,
        settings.padding,
        settings.single_block_policy,
        settings.batch_block_policy,
    )

    init_app_state(app, settings)

    logger.info("FaceOval Mosaic ready (landmarker loads on first request)")
    yield

    logger.info("Shutting down FaceOval Mosaic")
    app.state.inference_pool.shutdown()
    app.state.landmarker.close()
    logger.info("FaceOval Mosaic shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="FaceOval Mosaic",
        description="Face-contour mosaic for still images, single or batched into a ZIP",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Content-Disposition", "X-Face-Count", "X-Status", "X-Image-Count"],
    )

    application.include_router(router)
    return application


app = create_app()


def run() -> None:
    """Serve the app with uvicorn using the configured host and port."""
    import uvicorn

    settings = get_settings()
    uvicorn.run("ovalmosaic.main:app", host=settings.host, port=settings.port)
