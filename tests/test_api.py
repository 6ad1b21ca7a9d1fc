"""Tests for the SceneLens HTTP API."""

from __future__ import annotations

import asyncio
import contextlib
import os
import time
from concurrent.futures import Future
from typing import TYPE_CHECKING
from unittest.mock import patch

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

import cv2
import httpx
import numpy as np
import pytest
from fastapi import FastAPI, status

from scenelens.api.board import DETECTING_TEXT, INITIAL_TEXT
from scenelens.config import get_settings
from scenelens.main import create_app, init_pipeline
from scenelens.ml.image_classifier import ClassificationResult, ClassifyOptions
from scenelens.pipeline.dispatch import LoopDispatcher
from scenelens.pipeline.state import RawImage
from tests.fakes import FakeEngine, FakeFrameSource, results


def _png_bytes() -> bytes:
    ok, buf = cv2.imencode(".png", np.zeros((8, 8, 3), dtype=np.uint8))
    assert ok
    return bytes(buf)


def _init_app_state(
    app: FastAPI,
    engine: FakeEngine,
    frame_source: FakeFrameSource | None = None,
    **env_overrides: str,
) -> None:
    """Manually initialize app state (ASGITransport does not trigger lifespan)."""
    with patch.dict(os.environ, {"SCENELENS_CAMERA_ENABLED": "false", **env_overrides}):
        settings = get_settings()
    init_pipeline(app, settings, engine, LoopDispatcher(asyncio.get_running_loop()), frame_source)
    if frame_source is not None:
        frame_source.on_frame = app.state.coordinator.submit_frame


async def _make_client(app: FastAPI) -> AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app),
        base_url="http://testserver",
    ) as ac:
        yield ac
    app.state.controller.shutdown()


async def _settle() -> None:
    # Let results posted with call_soon_threadsafe run.
    for _ in range(3):
        await asyncio.sleep(0)


class _InstantEngine(FakeEngine):
    """Completes every request before ``classify`` returns."""

    def classify(self, image: RawImage, options: ClassifyOptions) -> Future[list[ClassificationResult]]:
        future = super().classify(image, options)
        future.set_result(results(("umbrella", 0.5)))
        return future


class _SlowStopFrameSource(FakeFrameSource):
    def stop(self) -> None:
        time.sleep(0.3)
        super().stop()


@pytest.fixture()
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture()
def frame_source() -> FakeFrameSource:
    return FakeFrameSource()


@pytest.fixture()
async def app(engine: FakeEngine, frame_source: FakeFrameSource) -> FastAPI:
    """Create a fresh app instance with default settings and fake collaborators."""
    application = create_app()
    _init_app_state(application, engine, frame_source)
    return application


@pytest.fixture()
async def client(app: FastAPI) -> AsyncIterator[httpx.AsyncClient]:
    """Async HTTP client for testing the app."""
    async for ac in _make_client(app):
        yield ac


class TestHealthEndpoint:
    async def test_health_returns_ok(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/v1/health")
        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["status"] == "ok"
        assert data["gpu"] is False
        assert data["model"] == "fake"
        assert data["live_available"] is True
        assert data["mode"] is None
        assert data["in_flight"] == []
        assert data["pipeline"] == {"admitted": 0, "dropped": 0, "completed": 0, "failed": 0}

    async def test_health_reports_in_flight(self, client: httpx.AsyncClient) -> None:
        await client.post("/api/v1/still", files={"file": ("test.png", _png_bytes(), "image/png")})
        data = (await client.get("/api/v1/health")).json()
        assert data["mode"] == "still"
        assert data["in_flight"] == ["still"]
        assert data["pipeline"]["admitted"] == 1


class TestResultEndpoint:
    async def test_initial_text(self, client: httpx.AsyncClient) -> None:
        data = (await client.get("/api/v1/result")).json()
        assert data == {"text": INITIAL_TEXT, "mode": None, "sequence": 0}


class TestStillEndpoint:
    async def test_still_image_is_classified(self, client: httpx.AsyncClient, engine: FakeEngine) -> None:
        response = await client.post("/api/v1/still", files={"file": ("test.png", _png_bytes(), "image/png")})
        assert response.status_code == status.HTTP_202_ACCEPTED
        assert response.json()["mode"] == "still"
        assert (await client.get("/api/v1/result")).json()["text"] == DETECTING_TEXT

        engine.complete(0, results(("elephant", 0.8734), ("tusker", 0.1)))
        await _settle()

        data = (await client.get("/api/v1/result")).json()
        assert data["text"] == "87% it's an elephant"
        assert data["mode"] == "still"
        assert data["sequence"] == 2

    async def test_second_still_while_busy_is_conflict(self, client: httpx.AsyncClient) -> None:
        files = {"file": ("test.png", _png_bytes(), "image/png")}
        first = await client.post("/api/v1/still", files=files)
        second = await client.post("/api/v1/still", files={"file": ("test.png", _png_bytes(), "image/png")})
        assert first.status_code == status.HTTP_202_ACCEPTED
        assert second.status_code == status.HTTP_409_CONFLICT

    async def test_undecodable_image_is_bad_request(self, client: httpx.AsyncClient, engine: FakeEngine) -> None:
        response = await client.post("/api/v1/still", files={"file": ("test.jpg", b"fake image data", "image/jpeg")})
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert engine.calls == []

    async def test_empty_upload_is_cancelled(self, client: httpx.AsyncClient, engine: FakeEngine) -> None:
        response = await client.post("/api/v1/still", files={"file": ("empty.png", b"", "image/png")})
        assert response.status_code == status.HTTP_202_ACCEPTED
        assert engine.calls == []
        assert (await client.get("/api/v1/result")).json()["text"] == INITIAL_TEXT

    async def test_failure_is_displayed(self, client: httpx.AsyncClient, engine: FakeEngine) -> None:
        await client.post("/api/v1/still", files={"file": ("test.png", _png_bytes(), "image/png")})
        engine.complete(0, [])
        await _settle()

        data = (await client.get("/api/v1/result")).json()
        assert data["text"].startswith("couldn't identify the scene")

    async def test_detecting_text_precedes_instant_result(self) -> None:
        app = create_app()
        _init_app_state(app, _InstantEngine())
        async for ac in _make_client(app):
            response = await ac.post("/api/v1/still", files={"file": ("test.png", _png_bytes(), "image/png")})
            assert response.status_code == status.HTTP_202_ACCEPTED
            await _settle()

            data = (await ac.get("/api/v1/result")).json()
            assert data["text"] == "50% it's an umbrella"
            assert data["sequence"] == 2

    async def test_upload_does_not_block_event_loop(self, engine: FakeEngine) -> None:
        source = _SlowStopFrameSource()
        app = create_app()
        _init_app_state(app, engine, source)
        loop = asyncio.get_running_loop()
        gaps: list[float] = []

        async def tick() -> None:
            last = loop.time()
            while True:
                await asyncio.sleep(0.01)
                now = loop.time()
                gaps.append(now - last)
                last = now

        async for ac in _make_client(app):
            await ac.post("/api/v1/mode/live")
            ticker = asyncio.create_task(tick())
            response = await ac.post("/api/v1/still", files={"file": ("test.png", _png_bytes(), "image/png")})
            ticker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await ticker

            assert response.status_code == status.HTTP_202_ACCEPTED
            assert not source.is_running
            assert gaps
            assert max(gaps) < 0.2

    async def test_oversized_upload_rejected(self, engine: FakeEngine) -> None:
        app = create_app()
        _init_app_state(app, engine, SCENELENS_MAX_FILE_SIZE="16")
        async for ac in _make_client(app):
            response = await ac.post("/api/v1/still", files={"file": ("test.png", _png_bytes(), "image/png")})
            assert response.status_code == status.HTTP_413_REQUEST_ENTITY_TOO_LARGE


class TestLiveEndpoint:
    async def test_activate_live(self, client: httpx.AsyncClient, frame_source: FakeFrameSource) -> None:
        response = await client.post("/api/v1/mode/live")
        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {
            "mode": "live",
            "live_available": True,
            "live_enabled": False,
            "still_enabled": True,
        }
        assert frame_source.is_running

    async def test_still_stops_live(self, client: httpx.AsyncClient, frame_source: FakeFrameSource) -> None:
        await client.post("/api/v1/mode/live")
        await client.post("/api/v1/still", files={"file": ("test.png", _png_bytes(), "image/png")})
        assert not frame_source.is_running
        assert (await client.get("/api/v1/mode")).json()["mode"] == "still"

    async def test_live_frames_update_result(
        self, client: httpx.AsyncClient, frame_source: FakeFrameSource, engine: FakeEngine
    ) -> None:
        await client.post("/api/v1/mode/live")
        frame = np.zeros((4, 4, 3), dtype=np.uint8)
        frame_source.push(RawImage(pixels=frame))
        frame_source.push(RawImage(pixels=frame.copy()))
        engine.complete(0, results(("tabby cat", 0.91), ("tiger", 0.04)))
        await _settle()

        assert (await client.get("/api/v1/result")).json()["text"] == "91% it's a tabby cat"
        pipeline = (await client.get("/api/v1/health")).json()["pipeline"]
        assert pipeline == {"admitted": 1, "dropped": 1, "completed": 1, "failed": 0}

    async def test_live_unavailable_is_conflict(self, engine: FakeEngine) -> None:
        app = create_app()
        _init_app_state(app, engine)
        async for ac in _make_client(app):
            response = await ac.post("/api/v1/mode/live")
            assert response.status_code == status.HTTP_409_CONFLICT
            mode = (await ac.get("/api/v1/mode")).json()
            assert mode["live_available"] is False
            assert mode["live_enabled"] is False


class TestModelsEndpoint:
    async def test_models_returns_list(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/v1/models")
        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert len(data["models"]) >= 2

    async def test_default_model_is_active(self, client: httpx.AsyncClient) -> None:
        models = (await client.get("/api/v1/models")).json()["models"]
        active_names = {m["name"] for m in models if m["status"] == "active"}
        assert active_names == {"resnet50"}

    async def test_configured_model_is_active(self, engine: FakeEngine) -> None:
        app = create_app()
        _init_app_state(app, engine, SCENELENS_CLASSIFICATION_MODEL="mobilenet_v2")
        async for ac in _make_client(app):
            models = (await ac.get("/api/v1/models")).json()["models"]
            active_names = {m["name"] for m in models if m["status"] == "active"}
            assert active_names == {"mobilenet_v2"}


class TestAuthentication:
    async def test_no_auth_required_by_default(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/v1/health")
        assert response.status_code == status.HTTP_200_OK

    async def test_auth_required_when_api_key_set(self, engine: FakeEngine) -> None:
        app = create_app()
        _init_app_state(app, engine, SCENELENS_API_KEY="test-secret-key")
        async for ac in _make_client(app):
            response = await ac.get("/api/v1/health")
            assert response.status_code == status.HTTP_401_UNAUTHORIZED

    async def test_auth_passes_with_bearer_key(self, engine: FakeEngine) -> None:
        app = create_app()
        _init_app_state(app, engine, SCENELENS_API_KEY="test-secret-key")
        async for ac in _make_client(app):
            response = await ac.get(
                "/api/v1/health",
                headers={"Authorization": "Bearer test-secret-key"},
            )
            assert response.status_code == status.HTTP_200_OK

    async def test_auth_passes_with_header_key(self, engine: FakeEngine) -> None:
        app = create_app()
        _init_app_state(app, engine, SCENELENS_API_KEY="test-secret-key")
        async for ac in _make_client(app):
            response = await ac.get("/api/v1/health", headers={"X-API-Key": "test-secret-key"})
            assert response.status_code == status.HTTP_200_OK

    async def test_auth_fails_with_wrong_key(self, engine: FakeEngine) -> None:
        app = create_app()
        _init_app_state(app, engine, SCENELENS_API_KEY="test-secret-key")
        async for ac in _make_client(app):
            response = await ac.get(
                "/api/v1/health",
                headers={"Authorization": "Bearer wrong-key"},
            )
            assert response.status_code == status.HTTP_401_UNAUTHORIZED
