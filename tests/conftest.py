# tests/conftest.py

"""
Pytest configuration and shared fixtures for testing.

The database URL must point at a throwaway SQLite file before anything from
`app` is imported, because the engine is created at import time.
"""

import os
import tempfile

_DB_DIR = tempfile.mkdtemp(prefix="governance-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ.setdefault("STORE_TIMEOUT_SECONDS", "10")

import itertools  # noqa: E402
from typing import AsyncGenerator  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: E402

from app.core.database.base import Base, generate_ulid  # noqa: E402
from app.core.database.engine import AsyncSessionLocal, engine, init_db  # noqa: E402
from app.features.members.dependencies import get_current_member  # noqa: E402
from app.features.members.models import Member, MemberRole  # noqa: E402
from app.main import app  # noqa: E402


_names = itertools.count(1)


@pytest.fixture(autouse=True)
async def database():
    """Recreate the schema before each test."""
    await init_db()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield


@pytest.fixture
async def db(database) -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        yield session


@pytest.fixture
def make_member(database):
    """
    Insert a member with a given role directly, bypassing role transitions.

    The member is created in its own session and returned detached, so its
    attributes stay readable after the session under test rolls back. Read
    the current role through the directory, not from the returned object.
    """
    async def _make(role: MemberRole = MemberRole.MEMBER, full_name: str | None = None, linked: bool = True) -> Member:
        member = Member(
            full_name=full_name or f"{role.value.title()} {next(_names)}",
            role=role,
            external_identity=generate_ulid() if linked else None,
        )
        async with AsyncSessionLocal() as session:
            session.add(member)
            await session.commit()
        return member

    return _make


@pytest.fixture
async def client(database) -> AsyncGenerator[httpx.AsyncClient, None]:
    """HTTP client bound to the app in-process."""
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def act_as():
    """Make every request run as the given member."""
    def _act_as(member: Member) -> None:
        app.dependency_overrides[get_current_member] = lambda: member

    return _act_as
