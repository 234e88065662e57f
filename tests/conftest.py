"""Shared pytest fixtures for ephemeral-drop tests."""

from __future__ import annotations

import time
from collections.abc import AsyncGenerator
from pathlib import Path
from typing import TYPE_CHECKING

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from ephemeral_drop.app import create_app
from ephemeral_drop.config import Settings
from ephemeral_drop.db import create_engine, create_session_factory, init_db
from ephemeral_drop.ratelimit import SlidingWindowLimiter
from ephemeral_drop.storage import BlobStore, ObjectStore

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine


class FakeClock:
    """Manually advanced clock, starting at the real current time."""

    def __init__(self, start: float | None = None) -> None:
        self.now = time.time() if start is None else start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    return Settings(
        data_dir=tmp_path,
        max_file_size=64 * 1024,
        max_ttl="7d",
        rate_limit_window_s=60,
        rate_limit_max=100,
        public_url="http://test",
    )


@pytest.fixture
async def test_engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine, None]:
    """SQLite engine in the test's temp directory, with tables created."""
    engine = create_engine(test_settings.resolved_database_url)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def blobs(test_settings: Settings) -> BlobStore:
    store = BlobStore(test_settings.files_dir)
    store.ensure_root()
    return store


@pytest.fixture
def store(test_engine: AsyncEngine, blobs: BlobStore, clock: FakeClock) -> ObjectStore:
    return ObjectStore(create_session_factory(test_engine), blobs, clock=clock)


@pytest.fixture
def limiter(test_settings: Settings, clock: FakeClock) -> SlidingWindowLimiter:
    return SlidingWindowLimiter(
        test_settings.rate_limit_window_s, test_settings.rate_limit_max, clock=clock
    )


@pytest.fixture
def app(test_settings: Settings, store: ObjectStore, limiter: SlidingWindowLimiter) -> FastAPI:
    return create_app(test_settings, store=store, limiter=limiter, run_background_tasks=False)


@pytest.fixture
async def http(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
