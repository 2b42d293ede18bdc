import os
import uuid
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

# Must be set before storyverse.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET", "test-secret")

from storyverse.db import Base, get_session  # noqa: E402
from storyverse.main import app  # noqa: E402
from storyverse.models.user import User  # noqa: E402
import storyverse.models.coins  # noqa: E402,F401
import storyverse.models.story  # noqa: E402,F401
from storyverse.security import make_access_token  # noqa: E402
from storyverse.seed import seed_demo_story  # noqa: E402
from storyverse.services import coins  # noqa: E402
from storyverse.services.rewards import ensure_default_rules  # noqa: E402


@pytest_asyncio.fixture
async def engine(tmp_path):
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path}/test.db", poolclass=NullPool)
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    factory = async_sessionmaker(engine, expire_on_commit=False)
    async with factory() as s:
        await ensure_default_rules(s)
        await s.commit()
    return factory


@pytest_asyncio.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as s:
        yield s


@pytest_asyncio.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    async def _session_override():
        async with session_factory() as s:
            yield s

    app.dependency_overrides[get_session] = _session_override
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def make_user():
    """Create a user whose starting balance goes through the ledger, not a raw column write."""
    async def _make(session: AsyncSession, *, balance: int = 0, plan: str = "free", is_admin: bool = False) -> User:
        user = User(email=f"user-{uuid.uuid4().hex[:8]}@ex.com", plan=plan, is_admin=is_admin, coins=0)
        session.add(user)
        await session.flush()
        if balance:
            await coins.adjust(session, user_id=user.id, delta=balance, reason="test_fund")
        return user
    return _make


@pytest.fixture
def auth():
    def _headers(user: User) -> dict[str, str]:
        return {"Authorization": f"Bearer {make_access_token(str(user.id))}"}
    return _headers


@pytest_asyncio.fixture
async def story(session_factory):
    async with session_factory() as s:
        st = await seed_demo_story(s)
        await s.commit()
    return st
