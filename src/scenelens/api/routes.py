"""API route definitions.

The API stands in for the on-screen controls: one endpoint per button,
plus the label the results are written to.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, HTTPException, Request, UploadFile, status
from starlette.concurrency import run_in_threadpool

from scenelens.api.middleware import verify_api_key
from scenelens.api.schemas import (
    ErrorResponse,
    HealthResponse,
    ModeResponse,
    ModelInfo,
    ModelsResponse,
    PipelineStats,
    ResultResponse,
)
from scenelens.capture.sources import BytesStillImageSource
from scenelens.errors import Busy, InvalidImage, SourceUnavailable
from scenelens.ml.model_manager import MODEL_REGISTRY

if TYPE_CHECKING:
    from scenelens.api.board import ResultBoard
    from scenelens.config import Settings
    from scenelens.ml.inference import InferenceEngine
    from scenelens.pipeline.controller import ModeController
    from scenelens.pipeline.coordinator import RequestCoordinator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_controller(request: Request) -> ModeController:
    controller: ModeController = request.app.state.controller
    return controller


def _get_board(request: Request) -> ResultBoard:
    board: ResultBoard = request.app.state.board
    return board


def _mode_response(controller: ModeController) -> ModeResponse:
    mode = controller.mode
    controls = controller.controls
    return ModeResponse(
        mode=mode.value if mode is not None else None,
        live_available=controller.live_available,
        live_enabled=controls.live,
        still_enabled=controls.still,
    )


@router.post(
    "/mode/live",
    response_model=ModeResponse,
    responses={status.HTTP_409_CONFLICT: {"model": ErrorResponse}},
    summary="Switch to live camera classification",
)
async def activate_live(request: Request) -> ModeResponse:
    """Start the camera and classify frames as they arrive."""
    controller = _get_controller(request)
    try:
        await run_in_threadpool(controller.activate_live)
    except SourceUnavailable as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=exc.reason) from exc
    return _mode_response(controller)


@router.post(
    "/still",
    response_model=ModeResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses={
        status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
        status.HTTP_409_CONFLICT: {"model": ErrorResponse},
        status.HTTP_413_REQUEST_ENTITY_TOO_LARGE: {"model": ErrorResponse},
    },
    summary="Classify an uploaded still image",
)
async def classify_still(request: Request, file: UploadFile) -> ModeResponse:
    """Stop the camera and classify one uploaded image.

    The display text switches to "detecting" once the image is admitted
    and is replaced by the result once the model is done.
    """
    settings = _get_settings(request)
    controller = _get_controller(request)

    payload = await file.read(settings.max_file_size + 1)
    if len(payload) > settings.max_file_size:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File exceeds {settings.max_file_size} bytes",
        )

    # Stopping the camera and decoding both block, so keep them off the loop.
    source = BytesStillImageSource(payload, settings.max_image_pixels)
    try:
        await run_in_threadpool(controller.activate_still_picker, source)
    except Busy as exc:
        logger.warning("Rejected still image: %s", exc.reason)
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=exc.reason) from exc
    except InvalidImage as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    return _mode_response(controller)


@router.get(
    "/mode",
    response_model=ModeResponse,
    summary="Current input mode",
)
async def current_mode(request: Request) -> ModeResponse:
    return _mode_response(_get_controller(request))


@router.get(
    "/result",
    response_model=ResultResponse,
    summary="Latest classification text",
)
async def latest_result(request: Request) -> ResultResponse:
    board = _get_board(request)
    return ResultResponse(
        text=board.text,
        mode=board.mode.value if board.mode is not None else None,
        sequence=board.sequence,
    )


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    settings = _get_settings(request)
    controller = _get_controller(request)
    coordinator: RequestCoordinator = request.app.state.coordinator
    engine: InferenceEngine = request.app.state.engine
    snapshot = coordinator.snapshot()
    return HealthResponse(
        status="ok",
        gpu=settings.device == "cuda",
        model=engine.model_name,
        live_available=controller.live_available,
        mode=snapshot.mode.value if snapshot.mode is not None else None,
        in_flight=sorted(mode.value for mode in snapshot.in_flight),
        pipeline=PipelineStats(
            admitted=snapshot.admitted,
            dropped=snapshot.dropped,
            completed=snapshot.completed,
            failed=snapshot.failed,
        ),
        concurrent_requests=engine.active_count,
        queue_depth=engine.queue_depth,
    )


@router.get(
    "/models",
    response_model=ModelsResponse,
    summary="List available models",
)
async def list_models(request: Request) -> ModelsResponse:
    """Return registered classifiers and which one is active."""
    settings = _get_settings(request)
    models = [
        ModelInfo(
            name=spec.name,
            status="active" if spec.name == settings.classification_model else "available",
            license=spec.license,
            input_size=spec.input_size,
        )
        for spec in MODEL_REGISTRY.values()
    ]
    return ModelsResponse(models=models)
