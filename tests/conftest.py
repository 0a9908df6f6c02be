"""Shared test fixtures for pixload tests."""

import asyncio
import os
from collections.abc import Callable
from unittest.mock import MagicMock

import httpx
import pytest

from pixload.engine.client import ServiceClient
from pixload.engine.metrics import MetricsRecorder
from pixload.engine.sampler import SampleLimiter
from pixload.shared.ids import IdGenerator

os.environ.setdefault("BASE_URL", "http://test")
os.environ.setdefault("RUN_ID", "run-test")


class FakeClock:
    """Monotonic clock that only advances when something sleeps on it."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def recorder() -> MetricsRecorder:
    return MetricsRecorder()


@pytest.fixture
def limiter() -> SampleLimiter:
    return SampleLimiter(sample_pct=100.0, capacity=500)


@pytest.fixture
def offline_client(recorder: MetricsRecorder) -> ServiceClient:
    """Client whose HTTP layer must never be touched."""
    return ServiceClient(MagicMock(spec=httpx.AsyncClient), recorder, "unit", "run-test", IdGenerator())


@pytest.fixture
def mock_service(recorder: MetricsRecorder) -> Callable[..., ServiceClient]:
    """Build a ``ServiceClient`` over an ``httpx.MockTransport`` handler."""

    def _build(handler: Callable[[httpx.Request], httpx.Response]) -> ServiceClient:
        http = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://test")
        return ServiceClient(http, recorder, "unit", "run-test", IdGenerator())

    return _build
