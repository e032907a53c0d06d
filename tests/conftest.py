import os
import tempfile
from pathlib import Path
from typing import AsyncGenerator

_TEST_ROOT = Path(tempfile.mkdtemp(prefix="handoff-tests-"))
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TEST_ROOT / 'handoff.db'}"
os.environ["UPLOAD_DIR"] = str(_TEST_ROOT / "uploads")
os.environ["LOG_FILE"] = ""
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["APP_ENV"] = "test"
os.environ["SUBSCRIBER_NAME"] = "Unidade Básica Centro"

import httpx  # noqa: E402
import pytest  # noqa: E402
from asgi_lifespan import LifespanManager  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker  # noqa: E402

from handoff.config import get_settings  # noqa: E402
from handoff.dependencies import get_engine, get_sessionmaker  # noqa: E402
from handoff.main import app  # noqa: E402
from handoff.models import Base  # noqa: E402

@pytest.fixture(autouse=True)
async def database() -> AsyncGenerator[None, None]:
    engine = get_engine(get_settings().database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    # Pooled aiosqlite connections belong to this test's event loop.
    await engine.dispose()


@pytest.fixture
def session_factory() -> async_sessionmaker[AsyncSession]:
    return get_sessionmaker(get_settings().database_url)


@pytest.fixture
async def session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as db_session:
        yield db_session


@pytest.fixture
async def async_client() -> AsyncGenerator[httpx.AsyncClient, None]:
    async with LifespanManager(app=app) as manager:
        async with httpx.AsyncClient(
            transport=httpx.ASGITransport(app=manager.app), base_url="http://test"
        ) as client:
            yield client
