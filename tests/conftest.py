from __future__ import annotations

import datetime as dt
import os
import uuid

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine

from modqueue_api.db.models import Base, ContentItem, UserRole
from modqueue_api.db.session import create_sessionmaker
from modqueue_api.domain.report_taxonomy import ReportType
from modqueue_api.domain.roles import Role
from modqueue_api.main import create_app
from modqueue_api.settings import get_settings
from modqueue_api.time import get_utcnow

FIXED_NOW = dt.datetime(2026, 10, 18, 12, 0, tzinfo=dt.UTC)


class FrozenClock:
    def __init__(self, now: dt.datetime) -> None:
        self.now = now

    def __call__(self) -> dt.datetime:
        return self.now

    def advance(self, **delta: float) -> dt.datetime:
        self.now = self.now + dt.timedelta(**delta)
        return self.now


def _test_database_url(tmp_path) -> str:
    explicit = os.environ.get("DATABASE_URL_TEST")
    if explicit:
        return explicit
    return f"sqlite+aiosqlite:///{tmp_path / 'modqueue_test.db'}"


@pytest.fixture(autouse=True)
def database_url(tmp_path, monkeypatch) -> str:
    url = _test_database_url(tmp_path)
    monkeypatch.setenv("DATABASE_URL", url)
    monkeypatch.setenv("NOTIFICATIONS_MODE", "noop")
    get_settings.cache_clear()
    create_sessionmaker.cache_clear()
    yield url
    get_settings.cache_clear()
    create_sessionmaker.cache_clear()


@pytest_asyncio.fixture
async def create_schema(database_url: str):
    engine = create_async_engine(database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    await engine.dispose()
    yield


@pytest_asyncio.fixture
async def db_sessionmaker(database_url: str, create_schema):
    sessionmaker = create_sessionmaker(database_url)
    yield sessionmaker
    await sessionmaker.kw["bind"].dispose()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(FIXED_NOW)


@pytest.fixture
def app(clock: FrozenClock):
    app = create_app()
    app.dependency_overrides[get_utcnow] = lambda: clock
    yield app
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(app, db_sessionmaker):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def grant_role(db_sessionmaker):
    async def _grant(role: Role, user_id: uuid.UUID | None = None) -> uuid.UUID:
        user_id = user_id or uuid.uuid4()
        async with db_sessionmaker() as session:
            session.add(UserRole(user_id=user_id, role=role.value, created_at=FIXED_NOW))
            await session.commit()
        return user_id

    return _grant


@pytest.fixture
def register_content(db_sessionmaker):
    async def _register(
        owner_id: uuid.UUID, report_type: ReportType = ReportType.track
    ) -> uuid.UUID:
        content_id = uuid.uuid4()
        async with db_sessionmaker() as session:
            session.add(
                ContentItem(
                    content_type=report_type.value,
                    content_id=content_id,
                    owner_id=owner_id,
                    created_at=FIXED_NOW,
                )
            )
            await session.commit()
        return content_id

    return _register
