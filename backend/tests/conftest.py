"""Pytest configuration and fixtures for provisioner tests.

Tests run against a throwaway SQLite file (aiosqlite).  The environment
is set before anything from ``provisioner`` is imported so the settings
singleton and the engine pick it up.
"""

import os
import tempfile
from typing import AsyncGenerator

_TEST_DIR = tempfile.mkdtemp(prefix="provisioner-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TEST_DIR}/test.db"
os.environ["DATABASE_URL_SYNC"] = f"sqlite:///{_TEST_DIR}/test.db"
os.environ["CACHE_ENABLED"] = "false"
os.environ["DEBUG"] = "false"
os.environ["REAPER_ENABLED"] = "false"

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy import select  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: E402

from provisioner.config import settings  # noqa: E402
from provisioner.database import Base, async_session, engine  # noqa: E402
from provisioner.main import app  # noqa: E402
from provisioner.models import (  # noqa: E402
    Client,
    InstallStep,
    Project,
    Site,
)
from provisioner.services.drafts import create_draft  # noqa: E402
from provisioner.services.executor import dispatcher  # noqa: E402
from provisioner.services.project_settings import update_project_settings  # noqa: E402
from provisioner.services.promotion import promote  # noqa: E402
from provisioner.utils.cache import close_redis  # noqa: E402

PROJECT_ID = 1
CLIENT_ID = 5

PROVIDER_SETTINGS = {
    "cpanel_domain": "cpanel.example.net",
    "cpanel_username": "hostuser",
    "cpanel_api_token": "CPTOKEN",
    "cpanel_subdomain_dir_path": "/home/hostuser/sites/",
    "cloudflare_username": "ops@example.net",
    "cloudflare_api_key": "CFKEY",
    "cloudflare_zone_id": "zone123",
    "cloudflare_a_record_ip": "203.0.113.10",
    "installer_api_endpoint": "https://installer.example.net/api",
    "installer_token": "INSTTOKEN",
}


# ── Test Database Setup ──────────────────────────────────────────

@pytest_asyncio.fixture
async def test_engine():
    """Fresh schema per test; waits for background steps before teardown."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with async_session() as session:
        session.add(Project(id=PROJECT_ID, name="Office", key="office", domain="office.example.com"))
        session.add(Client(id=CLIENT_ID, name="Acme Ltd"))
        await session.commit()

    yield engine

    await dispatcher.wait_idle()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    """Session for arranging and inspecting data.

    Commit before calling the API; API requests use their own sessions.
    """
    async with async_session() as session:
        yield session


@pytest_asyncio.fixture
async def client(test_engine) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client bound to the ASGI app (lifespan not started)."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


# ── Test Data Fixtures ───────────────────────────────────────────

@pytest_asyncio.fixture
async def provider_settings(db_session: AsyncSession) -> dict:
    """Store a full set of provider credentials on the test project."""
    await update_project_settings(db_session, PROJECT_ID, PROVIDER_SETTINGS)
    await db_session.commit()
    return PROVIDER_SETTINGS


DRAFT_DATA = {
    "project_id": PROJECT_ID,
    "client_id": CLIENT_ID,
    "domain": "test.example.com",
    "admin_email": "admin@example.com",
    "admin_password": "s3cret",
    "current_step": 3,
}


async def create_installation(db: AsyncSession, domain: str = "test.example.com") -> int:
    """Draft plus promotion, committed.  Returns the installation id."""
    site, _ = await create_draft(db, {**DRAFT_DATA, "domain": domain})
    await promote(db, CLIENT_ID, PROJECT_ID, domain, session_id=site.id)
    await db.commit()
    return site.id


async def fetch_steps(site_id: int) -> dict:
    """Current ledger, read through a new session, keyed by step type value."""
    async with async_session() as session:
        result = await session.execute(
            select(InstallStep).where(InstallStep.site_id == site_id).order_by(InstallStep.id)
        )
        return {s.step_type.value: s for s in result.scalars().all()}


async def fetch_site(site_id: int) -> Site | None:
    async with async_session() as session:
        return await session.get(Site, site_id)


@pytest_asyncio.fixture
async def redis_client(monkeypatch):
    """Redis client with caching switched on; skips when Redis is not running."""
    import redis.asyncio as redis

    client = redis.from_url(settings.redis_url, decode_responses=True)
    try:
        await client.ping()
    except redis.RedisError:
        await client.aclose()
        pytest.skip("Redis not available")

    monkeypatch.setattr(settings, "cache_enabled", True)
    await close_redis()

    yield client

    # Cleanup: flush test database
    await client.flushdb()
    await client.aclose()
    await close_redis()


# ── Test Markers ─────────────────────────────────────────────────

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "api: HTTP API tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "cache: Tests that need Redis")
    config.addinivalue_line("markers", "slow: Slow tests")
