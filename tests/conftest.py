"""
Pytest configuration and shared fixtures.
"""

import asyncio
import json
import os
import time
from collections.abc import AsyncGenerator, Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

# Fast polling and short backoff for tests; set before settings are cached
os.environ.setdefault("WORKER_POLL_INTERVAL_SECONDS", "0.02")
os.environ.setdefault("WORKER_HEARTBEAT_INTERVAL_SECONDS", "0.5")
os.environ.setdefault("BROKER_BACKOFF_BASE_MS", "100")
os.environ.setdefault("CALLBACK_TIMEOUT_SECONDS", "2")
os.environ.setdefault("LOG_FORMAT", "console")

import httpx
import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from hookrelay.api.main import create_app
from hookrelay.db import Base, create_engine_for, create_session_factory
from hookrelay.dispatch.registry import DispatchContext


@dataclass
class ReceivedRequest:
    """One request seen by the fake webhook receiver."""

    path: str
    headers: dict[str, str]
    body: bytes
    at: float

    def json(self) -> Any:
        return json.loads(self.body)


@dataclass
class WebhookReceiver:
    """
    Fake destination and callback endpoints behind an httpx.MockTransport.

    Paths:
    - /ok: answers 200 immediately
    - /error: answers 500 immediately
    - /slow: answers 200 after ``slow_seconds``
    - /hang: never answers within a test
    - /down: raises a connection error
    - /callback: records the notification and answers 200
    - /callback-down: raises a connection error
    """

    slow_seconds: float = 0.2
    requests: list[ReceivedRequest] = field(default_factory=list)
    active: int = 0
    max_active: int = 0

    async def handle(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.requests.append(
            ReceivedRequest(
                path=path,
                headers=dict(request.headers),
                body=request.content,
                at=time.monotonic(),
            )
        )

        if path in ("/down", "/callback-down"):
            raise httpx.ConnectError("Connection refused", request=request)
        if path == "/error":
            return httpx.Response(500, text="boom")
        if path == "/hang":
            await asyncio.sleep(30)
        if path == "/slow":
            self.active += 1
            self.max_active = max(self.max_active, self.active)
            try:
                await asyncio.sleep(self.slow_seconds)
            finally:
                self.active -= 1
        return httpx.Response(200, text="ok")

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def to(self, path: str) -> list[ReceivedRequest]:
        return [r for r in self.requests if r.path == path]


async def wait_until(
    predicate: Callable[[], Awaitable[bool] | bool],
    timeout: float = 5.0,
    interval: float = 0.02,
) -> None:
    """Poll ``predicate`` until it holds, failing the test after ``timeout``."""
    deadline = time.monotonic() + timeout
    while True:
        outcome = predicate()
        if asyncio.iscoroutine(outcome):
            outcome = await outcome
        if outcome:
            return
        if time.monotonic() > deadline:
            pytest.fail(f"Condition not met within {timeout}s")
        await asyncio.sleep(interval)


@pytest.fixture
def database_url(tmp_path) -> str:
    """File-backed SQLite database per test."""
    return f"sqlite+aiosqlite:///{tmp_path / 'hookrelay.db'}"


@pytest_asyncio.fixture
async def async_engine(database_url: str) -> AsyncGenerator[AsyncEngine]:
    """Create an async database engine with the schema in place."""
    engine = create_engine_for(database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(async_engine)


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession]:
    """Create a database session for tests."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def receiver() -> WebhookReceiver:
    return WebhookReceiver()


@pytest_asyncio.fixture
async def dispatch(
    session_factory: async_sessionmaker[AsyncSession],
    receiver: WebhookReceiver,
) -> AsyncGenerator[DispatchContext]:
    """Dispatch context with running workers delivering to the receiver."""
    client = httpx.AsyncClient(transport=receiver.transport, timeout=None)
    context = DispatchContext.create(session_factory, client=client)

    yield context

    await context.close()


@pytest.fixture
def app(dispatch: DispatchContext) -> FastAPI:
    """Create a FastAPI app bound to the test dispatch context."""
    return create_app(context=dispatch)


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    """Create an async HTTP client for testing."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def sample_submission() -> dict[str, Any]:
    """A minimal valid submission."""
    return {
        "queueName": "q1",
        "destination": "http://receiver/ok",
        "body": "hi",
        "timeout": 0.05,
        "retries": 0,
    }
