"""
GroupUp Backend - Test Configuration (conftest.py)
==================================================

Fixture Hierarchy:
    Function-scoped:
    ├── mock_db_session:  AsyncMock session for pure unit tests
    ├── temp_storage:     temporary directory for file operations
    ├── db_session:       real AsyncSession on in-memory SQLite (aiosqlite),
    │                     schema created from Base.metadata
    ├── user_factory:     inserts User rows, returns UserActor
    ├── group_factory:    inserts Group rows with sensible defaults
    ├── mock_store:       SpatialStore stand-in whose lookups find nothing
    └── test_client:      HTTPX AsyncClient on the app, with the database and
                          spatial store dependencies overridden

ASGITransport does not run the lifespan, so the spatial store is always
injected through dependency overrides here.
"""

import os
import tempfile

# Settings are read at import time: point them at throwaway resources first
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["STORAGE_ROOT"] = tempfile.mkdtemp(prefix="groupup_test_")
os.environ["SPATIAL_DB_PATH"] = ":memory:"
os.environ["BUILDINGS_GEOJSON_PATH"] = os.path.join(
    tempfile.gettempdir(), "groupup-missing-buildings.geojson"
)
os.environ["LOG_LEVEL"] = "WARNING"

from datetime import timedelta  # noqa: E402
from typing import Optional  # noqa: E402
from unittest.mock import AsyncMock, MagicMock  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool  # noqa: E402

import groupup.models  # noqa: E402,F401
from groupup.database import Base, get_db_session  # noqa: E402
from groupup.dependencies import get_spatial_store  # noqa: E402
from groupup.models.actor import UserActor  # noqa: E402
from groupup.models.common import new_id, utcnow  # noqa: E402
from groupup.models.group import Group  # noqa: E402
from groupup.models.user import User  # noqa: E402

# Downtown Nashville; default location of factory-made groups
NASHVILLE = (36.1627, -86.7816)


@pytest.fixture
def mock_db_session():
    session = AsyncMock()
    session.execute = AsyncMock()
    session.flush = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.close = AsyncMock()
    session.get = AsyncMock()
    session.add = MagicMock()
    return session


@pytest.fixture
def temp_storage(tmp_path):
    storage_dir = tmp_path / "storage"
    storage_dir.mkdir()
    return str(storage_dir)


@pytest_asyncio.fixture
async def db_session():
    """
    Fresh in-memory SQLite database per test.

    StaticPool keeps the single connection alive, otherwise every checkout
    would see a new, empty :memory: database.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        yield session

    await engine.dispose()


@pytest.fixture
def user_factory(db_session):
    async def create(email: Optional[str] = None, name: str = "Test User") -> UserActor:
        user = User(id=new_id(), email=email or f"{new_id()}@example.com", name=name)
        db_session.add(user)
        await db_session.flush()
        return UserActor(user_id=user.id, email=user.email, name=user.name)

    return create


@pytest.fixture
def group_factory(db_session):
    async def create(
        latitude: float = NASHVILLE[0],
        longitude: float = NASHVILLE[1],
        **overrides,
    ) -> Group:
        now = utcnow()
        values = dict(
            name="Test Group",
            latitude=latitude,
            longitude=longitude,
            radius=100,
            expires_at=now + timedelta(hours=4),
            storage_folder=new_id(),
            is_active=True,
            is_archived=False,
            created_at=now,
            updated_at=now,
        )
        values.update(overrides)
        group = Group(**values)
        db_session.add(group)
        await db_session.flush()
        return group

    return create


@pytest.fixture
def mock_store():
    store = MagicMock()
    store.is_initialized = True
    store.find_containing = AsyncMock(return_value=None)
    store.find_nearest_within = AsyncMock(return_value=None)
    return store


@pytest_asyncio.fixture
async def test_client(db_session, mock_store):
    from groupup.main import app

    async def override_db():
        try:
            yield db_session
            await db_session.commit()
        except Exception:
            await db_session.rollback()
            raise

    app.dependency_overrides[get_db_session] = override_db
    app.dependency_overrides[get_spatial_store] = lambda: mock_store

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
