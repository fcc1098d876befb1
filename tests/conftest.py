import os

from cryptography.fernet import Fernet

# settings are read at import time
os.environ["SECRET_ENCRYPTION_KEY"] = Fernet.generate_key().decode("utf-8")
os.environ["INTERNAL_ADMIN_KEY"] = "test-internal"
os.environ["TELEMETRY_ENABLED"] = "false"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Import Base + all models so metadata is complete
from qms_webhooks.models import Base
from qms_webhooks.main import app, install_runtime
from qms_webhooks.core.db import get_db
from qms_webhooks.services.delivery_executor import DeliveryExecutor
from qms_webhooks.services.http_client import WebhookHttpClient
from qms_webhooks.services.runtime import build_runtime
from tests.support import FakeClock, Subscriber


@pytest.fixture
async def async_engine(tmp_path):
    # a file (not :memory:) so concurrent sessions see the same database
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'webhooks.db'}")
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def session_factory(async_engine):
    return async_sessionmaker(bind=async_engine, expire_on_commit=False, class_=AsyncSession)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def subscriber():
    return Subscriber()


@pytest.fixture
async def http_client(subscriber):
    client = WebhookHttpClient(
        timeout_seconds=0.5,
        default_headers={"User-Agent": "E-QMS-Webhook/1.0"},
        transport=subscriber.transport,
    )
    try:
        yield client
    finally:
        await client.aclose()


@pytest.fixture
def executor(http_client):
    return DeliveryExecutor(http_client)


@pytest.fixture
async def runtime(session_factory, subscriber, clock):
    async def _no_sleep(_seconds: float) -> None:
        return None

    rt = build_runtime(session_factory, transport=subscriber.transport, clock=clock, sleep=_no_sleep)
    try:
        yield rt
    finally:
        await rt.aclose()


@pytest.fixture
async def client(session_factory, runtime):
    """
    HTTP client against the app; the lifespan does not run under
    ASGITransport, so the test runtime is installed directly.
    """
    async def _override_get_db():
        async with session_factory() as session:
            yield session

    install_runtime(app, runtime)
    app.dependency_overrides[get_db] = _override_get_db

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
