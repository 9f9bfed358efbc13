import asyncio
import io
import os
import tempfile

# Configure the app for tests before any plurr module reads settings
_TEST_DB_DIR = tempfile.mkdtemp(prefix="plurr-tests-")
os.environ["FAST_TEST_MODE"] = "true"
os.environ["DEBUG"] = "false"
os.environ["SKIP_HEADER_CHECK"] = "false"
os.environ["BLOB_STORE_BACKEND"] = "memory"
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TEST_DB_DIR}/plurr.db"
os.environ.pop("PROXY_SHARED_SECRET", None)

import pytest
from fastapi.testclient import TestClient
from PIL import Image
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from plurr.core import models  # noqa: F401
from plurr.core.database import Base, get_db
from plurr.main import create_app
from plurr.utils.blob_store import InMemoryBlobStore
from plurr.utils.image_transform import ImageTransformer


def make_jpeg_bytes(size=(32, 24), color=(230, 156, 9)) -> bytes:
    img = Image.new("RGB", size, color)
    buf = io.BytesIO()
    img.save(buf, format="JPEG")
    return buf.getvalue()


def _make_engine(path):
    return create_async_engine(f"sqlite+aiosqlite:///{path}", poolclass=NullPool)


async def _create_tables(engine):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@pytest.fixture
def jpeg_bytes() -> bytes:
    return make_jpeg_bytes()


@pytest.fixture
def blob_store() -> InMemoryBlobStore:
    return InMemoryBlobStore()


@pytest.fixture
async def db_session(tmp_path):
    engine = _make_engine(tmp_path / "session.db")
    await _create_tables(engine)
    session_factory = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session
    await engine.dispose()


@pytest.fixture
def client(tmp_path, blob_store):
    engine = _make_engine(tmp_path / "api.db")
    asyncio.run(_create_tables(engine))
    session_factory = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app = create_app()
    app.dependency_overrides[get_db] = override_get_db
    app.state.blob_store = blob_store
    app.state.image_transformer = ImageTransformer(quality=50)

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
    asyncio.run(engine.dispose())
