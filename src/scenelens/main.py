"""FastAPI application entry point."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from scenelens.capture.sources import FrameSource
    from scenelens.config import Settings
    from scenelens.pipeline.coordinator import Engine
    from scenelens.pipeline.dispatch import Dispatcher
    from scenelens.pipeline.state import RawImage

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from scenelens.api.board import ResultBoard
from scenelens.api.routes import router
from scenelens.capture.sources import Cv2FrameSource
from scenelens.config import get_settings
from scenelens.errors import ModelLoadError
from scenelens.ml.image_classifier import OnnxImageClassifier
from scenelens.ml.inference import InferenceEngine
from scenelens.ml.model_manager import OnnxModelManager
from scenelens.pipeline.controller import ModeController
from scenelens.pipeline.coordinator import RequestCoordinator
from scenelens.pipeline.dispatch import LoopDispatcher
from scenelens.pipeline.sink import ResultSink

logger = logging.getLogger(__name__)


def load_classifier(settings: Settings, manager: OnnxModelManager) -> OnnxImageClassifier:
    """Build the classifier and its session up front.

    Raises:
        ModelLoadError: If the model or its labels cannot be loaded.
    """
    try:
        classifier = OnnxImageClassifier(manager, settings.classification_model, top_k=settings.top_k)
        classifier.load()
    except Exception as exc:
        raise ModelLoadError(f"Could not load model '{settings.classification_model}': {exc}") from exc
    return classifier


def init_pipeline(
    app: FastAPI,
    settings: Settings,
    engine: Engine,
    dispatcher: Dispatcher,
    frame_source: FrameSource | None = None,
) -> None:
    """Wire sink, coordinator and controller onto ``app.state``.

    ``frame_source`` defaults to the configured OpenCV camera, or none at
    all when the camera is disabled.
    """
    board = ResultBoard()
    sink = ResultSink(dispatcher, board.update, on_pending=board.mark_detecting)
    coordinator = RequestCoordinator(engine, sink, inference_timeout=settings.inference_timeout)

    if frame_source is None and settings.camera_enabled:
        frame_source = _camera_for(settings, coordinator)

    app.state.settings = settings
    app.state.engine = engine
    app.state.board = board
    app.state.coordinator = coordinator
    app.state.controller = ModeController(coordinator, frame_source)


def _camera_for(settings: Settings, coordinator: RequestCoordinator) -> FrameSource:
    def on_frame(image: RawImage) -> None:
        coordinator.submit_frame(image)

    return Cv2FrameSource.from_settings(settings, on_frame)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings = get_settings()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting SceneLens (device=%s, max_concurrent=%s, model=%s, camera=%s)",
        settings.device,
        settings.max_concurrent,
        settings.classification_model,
        settings.camera_index if settings.camera_enabled else "disabled",
    )

    model_manager = OnnxModelManager(settings)
    try:
        classifier = load_classifier(settings, model_manager)
    except ModelLoadError:
        logger.critical("Model load failed, refusing to start", exc_info=True)
        raise

    engine = InferenceEngine(classifier, settings)
    init_pipeline(app, settings, engine, LoopDispatcher(asyncio.get_running_loop()))
    app.state.model_manager = model_manager

    logger.info("SceneLens ready (live capture %s)", "on" if app.state.controller.live_available else "off")
    yield

    logger.info("Shutting down SceneLens")
    app.state.controller.shutdown()
    engine.shutdown()
    model_manager.shutdown()
    logger.info("SceneLens shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="SceneLens",
        description="Live and still-image scene identification",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(router)
    return application


app = create_app()
