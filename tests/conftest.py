"""Pytest fixtures: sqlite store, fallback store, fake MinIO, app client."""
from uuid import uuid4

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from launchpad.database import init_db, make_session_maker
from launchpad.main import app
from launchpad.services.document_store import DocumentStore
from launchpad.services.fallback_store import InMemoryFallbackStore

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


class FakeBlobStorage:
    """MinioBlobStorage stand-in: objects kept in a dict, URLs are fake."""

    def __init__(self) -> None:
        self.objects: dict[str, tuple[bytes, str]] = {}
        self.removed: list[str] = []
        self.fail_remove = False

    def upload(self, key: str, data: bytes, content_type: str) -> None:
        self.objects[key] = (data, content_type)

    def public_url(self, key: str) -> str:
        return f"http://minio.test/documents/{key}"

    def remove(self, key: str) -> None:
        if self.fail_remove:
            raise ConnectionError("minio unreachable")
        self.objects.pop(key, None)
        self.removed.append(key)


def _memory_engine():
    # одно соединение на всё время теста, иначе у каждой сессии своя пустая БД
    return create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )


@pytest.fixture
async def engine():
    eng = _memory_engine()
    await init_db(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
async def engine_without_tables():
    eng = _memory_engine()
    yield eng
    await eng.dispose()


@pytest.fixture
def session_maker(engine):
    return make_session_maker(engine)


@pytest.fixture
def fallback():
    return InMemoryFallbackStore()


@pytest.fixture
def blobs():
    return FakeBlobStorage()


@pytest.fixture
def store(session_maker, fallback, blobs) -> DocumentStore:
    return DocumentStore(session_maker, fallback, blobs)


@pytest.fixture
def broken_store(engine_without_tables, fallback, blobs) -> DocumentStore:
    """Store whose database has no documents table: every remote call fails."""
    return DocumentStore(make_session_maker(engine_without_tables), fallback, blobs)


@pytest.fixture
def project_id():
    return uuid4()


@pytest.fixture
async def async_client(store):
    app.state.document_store = store
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={"X-User-Id": "user1"},
    ) as ac:
        yield ac
    del app.state.document_store
