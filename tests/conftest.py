"""Shared fixtures: a coordinator wired to fakes."""

from __future__ import annotations

import pytest

from scenelens.pipeline.controller import ModeController
from scenelens.pipeline.coordinator import RequestCoordinator
from scenelens.pipeline.sink import ResultSink
from tests.fakes import FakeEngine, FakeFrameSource, InlineDispatcher, RecordingUI


@pytest.fixture()
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture()
def ui() -> RecordingUI:
    return RecordingUI()


@pytest.fixture()
def coordinator(engine: FakeEngine, ui: RecordingUI) -> RequestCoordinator:
    return RequestCoordinator(engine, ResultSink(InlineDispatcher(), ui))


@pytest.fixture()
def frame_source(coordinator: RequestCoordinator) -> FakeFrameSource:
    source = FakeFrameSource()
    source.on_frame = coordinator.submit_frame
    return source


@pytest.fixture()
def controller(coordinator: RequestCoordinator, frame_source: FakeFrameSource) -> ModeController:
    return ModeController(coordinator, frame_source)
