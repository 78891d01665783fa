"""
Test infrastructure for the Social API.

Strategy
--------
- SQLite in-memory via aiosqlite eliminates the need for a running Postgres
  instance in CI, keeping the suite fast and self-contained.
- StaticPool forces all async tasks to share the same in-memory database
  connection, which is required because SQLite in-memory databases are
  connection-scoped; a new connection would see an empty database.
- The app's get_db dependency is overridden so every test-time request uses
  the test session factory rather than the production one.
- All tables are created fresh before each test and dropped after, giving
  each test a clean isolated state without needing transactions or truncation.
- The media store is replaced by ``FakeMediaStore`` through the
  ``get_media_store`` dependency, so uploads and deletes are recorded in
  memory. Any staged file whose name contains "corrupt" fails to upload.
"""
import uuid
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from social_api.config import settings
from social_api.database import Base, get_db
from social_api.dependencies import get_media_store
from social_api.main import app
from social_api.media import MediaItem
from social_api.middleware import install_query_counter
from social_api.models import User
from social_api.security import create_access_token

# ---------------------------------------------------------------------------
# Test database engine — SQLite in-memory with aiosqlite
# ---------------------------------------------------------------------------

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

engine_test = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

# Register the per-request SQL query counter on the test engine.
install_query_counter(engine_test)

async_session_test = async_sessionmaker(
    engine_test,
    class_=AsyncSession,
    expire_on_commit=False,
)


# ---------------------------------------------------------------------------
# Dependency override — replace production get_db with the test session factory
# ---------------------------------------------------------------------------

async def override_get_db():
    async with async_session_test() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


app.dependency_overrides[get_db] = override_get_db


# ---------------------------------------------------------------------------
# In-memory media store
# ---------------------------------------------------------------------------

class FakeMediaStore:
    """Records uploads and deletes; fails uploads of files named *corrupt*."""

    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}
        self.deleted: list[str] = []
        self.failing_deletes: set[str] = set()

    async def upload(self, local_path: Path) -> MediaItem:
        if "corrupt" in local_path.name:
            raise OSError(f"cannot read {local_path.name}")
        media_id = f"media/{uuid.uuid4().hex}{local_path.suffix}"
        self.objects[media_id] = local_path.read_bytes()
        return MediaItem(url=f"https://cdn.test/{media_id}", media_id=media_id)

    async def delete(self, media_id: str) -> bool:
        if media_id in self.failing_deletes:
            raise ConnectionError("media store unavailable")
        self.deleted.append(media_id)
        return self.objects.pop(media_id, None) is not None


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture(autouse=True)
async def setup_db():
    """Create all tables before each test, drop after to guarantee isolation."""
    async with engine_test.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine_test.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(autouse=True)
def upload_dir(tmp_path, monkeypatch) -> Path:
    """Stage multipart uploads under the test's temporary directory."""
    path = tmp_path / "uploads"
    monkeypatch.setattr(settings, "UPLOAD_DIR", str(path))
    return path


@pytest.fixture
def media_store() -> FakeMediaStore:
    store = FakeMediaStore()
    app.dependency_overrides[get_media_store] = lambda: store
    yield store
    app.dependency_overrides.pop(get_media_store, None)


@pytest_asyncio.fixture
async def db_session() -> AsyncSession:
    """
    Yield a live AsyncSession for tests that need to interact with the
    database directly (e.g. seeding data, asserting ORM state).
    """
    async with async_session_test() as session:
        yield session


@pytest_asyncio.fixture
async def async_client(media_store: FakeMediaStore) -> AsyncClient:
    """Yield an httpx.AsyncClient wired to the FastAPI app via ASGITransport."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


# ---------------------------------------------------------------------------
# Helpers shared by the test modules
# ---------------------------------------------------------------------------

def auth(user_id: int) -> dict[str, str]:
    """Authorization header for *user_id*, minted without a login round-trip."""
    return {"Authorization": f"Bearer {create_access_token(user_id)}"}


async def register(client: AsyncClient, username: str, **overrides) -> dict:
    """Register *username* through the API and return the created user."""
    form = {
        "firstname": username.capitalize(),
        "lastname": "Tester",
        "username": username,
        "email": f"{username}@example.com",
        "password": "s3cret-pass",
    }
    form.update(overrides)
    resp = await client.post("/api/v1/users/register", data=form)
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]


async def make_user(db: AsyncSession, username: str) -> User:
    """Insert a user row directly, for service-level tests."""
    user = User(
        firstname=username.capitalize(),
        lastname="Tester",
        username=username,
        email=f"{username}@example.com",
        password_hash="not-a-real-hash",
    )
    db.add(user)
    await db.flush()
    return user
