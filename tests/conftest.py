import os

# Settings are read at import time; point them at throwaway backends first.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["REDIS_URL"] = "redis://localhost:6379/15"
os.environ["ADMIN_USER"] = "admin"
os.environ["ADMIN_PASS"] = "changeme"
os.environ["TELEGRAM_BOT_TOKEN"] = ""

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

import core.redis  # noqa: E402
import models  # noqa: E402, F401
from core.db import Base  # noqa: E402
from tests.helpers import FakeRedis  # noqa: E402


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture(autouse=True)
def fake_redis(monkeypatch):
    """Every test gets its own in-memory Redis."""
    fake = FakeRedis()
    monkeypatch.setattr(core.redis, "_redis_client", fake)
    return fake
