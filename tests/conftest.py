"""
Test configuration and fixtures for the Browser Compare API.

Environment is pinned before the app is imported: a temporary SQLite
database, fake BrowserStack credentials and a zero poll interval so no test
ever sleeps. Upstream calls go through httpx.MockTransport.
"""

import io
import json
import os
import tempfile
from typing import Callable, Generator, List

from dotenv import load_dotenv

load_dotenv()

test_db_url = os.getenv("TEST_DATABASE_URL")
if test_db_url:
    if "postgresql://" in test_db_url and "asyncpg" not in test_db_url:
        test_db_url = test_db_url.replace("postgresql://", "postgresql+asyncpg://")
    os.environ["DATABASE_URL"] = test_db_url
else:
    test_db_path = tempfile.mktemp(suffix=".db")
    os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{test_db_path}"

os.environ["BROWSERSTACK_USERNAME"] = "test-user"
os.environ["BROWSERSTACK_ACCESS_KEY"] = "test-key"
os.environ["BROWSERSTACK_API_BASE"] = "https://api.browserstack.test"
os.environ["POLL_INTERVAL_SECONDS"] = "0"
os.environ["RATE_LIMIT_CAPACITY"] = "1000"
os.environ["LOG_TO_FILE"] = "false"

import httpx  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402

from app.features.screenshots.dependencies.browserstack import get_browserstack_client  # noqa: E402
from app.features.screenshots.services.browserstack_client import BrowserstackClient  # noqa: E402
from app.platform.config import settings  # noqa: E402
from app.platform.db.base import Base  # noqa: E402
from app.platform.logger import StructuredLogger  # noqa: E402
from app.platform.utils.rate_limit import TokenBucketRateLimiter  # noqa: E402

Handler = Callable[[httpx.Request], httpx.Response]


class LogCapture:
    """StructuredLogger writing JSON lines into memory."""

    def __init__(self, name: str):
        self.stream = io.StringIO()
        self.logger = StructuredLogger(name, level="DEBUG", stream=self.stream, to_file=False)

    @property
    def records(self) -> List[dict]:
        return [json.loads(line) for line in self.stream.getvalue().splitlines() if line.strip()]

    def messages(self, level: str = None) -> List[str]:
        return [r["message"] for r in self.records if level is None or r["level"] == level]


class RecordingTransport(httpx.MockTransport):
    """MockTransport that remembers every request it served."""

    def __init__(self, handler: Handler):
        self.requests: List[httpx.Request] = []

        def recording_handler(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return handler(request)

        super().__init__(recording_handler)

    def count(self, method: str, path_suffix: str = "") -> int:
        return sum(1 for r in self.requests if r.method == method and r.url.path.endswith(path_suffix))


@pytest.fixture
def log_capture(request) -> LogCapture:
    return LogCapture(f"tests.{request.node.name}")


@pytest.fixture
def make_client(log_capture):
    """
    Factory for a BrowserstackClient over a mock transport.

    Returns (client, transport, rate_limiter) so tests can inspect the
    requests that were made and the tokens that were spent.
    """

    def factory(handler: Handler, rate_limiter: TokenBucketRateLimiter = None, **kwargs):
        transport = RecordingTransport(handler)
        rate_limiter = rate_limiter or TokenBucketRateLimiter(capacity=100, refill_interval_ms=60_000)
        client = BrowserstackClient(
            settings=settings,
            http_client=httpx.AsyncClient(transport=transport),
            rate_limiter=rate_limiter,
            logger=log_capture.logger,
            poll_interval=kwargs.pop("poll_interval", 0),
            **kwargs,
        )
        return client, transport, rate_limiter

    return factory


@pytest_asyncio.fixture
async def db_session(tmp_path):
    """Fresh database per test, tables created from the models."""
    import app.features.comparisons.models  # noqa: F401

    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'store.db'}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(engine, expire_on_commit=False, autoflush=False)
    async with session_factory() as session:
        yield session
    await engine.dispose()


@pytest.fixture(scope="session")
def test_app():
    """Create FastAPI test application."""
    from app.main import app

    return app


@pytest.fixture(scope="function")
def client(test_app) -> Generator[TestClient, None, None]:
    """
    Create a test client for making HTTP requests.
    This fixture provides a clean TestClient instance for each test function,
    ensuring proper isolation between tests.
    """
    with TestClient(test_app) as test_client:
        yield test_client


@pytest.fixture
def upstream(test_app, client):
    """
    Point the app's BrowserStack client at a mock transport.

    Call with a handler; returns the RecordingTransport. The override is
    removed after the test.
    """

    def install(handler: Handler) -> RecordingTransport:
        transport = RecordingTransport(handler)
        http_client = httpx.AsyncClient(transport=transport)

        def override_get_browserstack_client():
            return BrowserstackClient(
                settings=settings,
                http_client=http_client,
                rate_limiter=test_app.state.rate_limiter,
                logger=test_app.state.logger.child("client"),
                poll_interval=0,
            )

        test_app.dependency_overrides[get_browserstack_client] = override_get_browserstack_client
        return transport

    yield install

    test_app.dependency_overrides.pop(get_browserstack_client, None)
