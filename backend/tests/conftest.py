from __future__ import annotations

import sys
from collections.abc import AsyncIterator
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

import app.models  # noqa: E402,F401
from app.core.config import Settings, get_settings  # noqa: E402
from app.models.base import Base  # noqa: E402
from app.services.uploads import MenuImageStorage  # noqa: E402


class RecordingLogger:
    """Stands in for AppLogger where a test asserts on what was logged."""

    def __init__(self) -> None:
        self.entries: list[tuple[str, str, dict]] = []

    def _record(self, level: str, message: str, **fields) -> None:
        self.entries.append((level, message, fields))

    def log(self, message: str, context: str | None = None) -> None:
        self._record("info", message, context=context)

    def error(self, message: str, trace: str | None = None, context: str | None = None, **meta) -> None:
        self._record("error", message, trace=trace, context=context, **meta)

    def warn(self, message: str, context: str | None = None, **meta) -> None:
        self._record("warn", message, context=context, **meta)

    def debug(self, message: str, context: str | None = None, **meta) -> None:
        self._record("debug", message, context=context, **meta)

    def levels(self) -> list[str]:
        return [level for level, _, _ in self.entries]


@pytest.fixture
def recording_logger() -> RecordingLogger:
    return RecordingLogger()


@pytest.fixture
def upload_settings(tmp_path: Path) -> Settings:
    return Settings(upload_path=tmp_path / "uploads", base_url="https://cdn.example.com/")


@pytest.fixture
def storage(upload_settings: Settings, recording_logger: RecordingLogger) -> MenuImageStorage:
    return MenuImageStorage(upload_settings, logger=recording_logger)


@pytest_asyncio.fixture
async def db_engine(tmp_path, monkeypatch) -> AsyncIterator[AsyncEngine]:
    db_path = tmp_path / "test.db"

    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{db_path}")
    monkeypatch.setenv("UPLOAD_PATH", str(tmp_path / "uploads"))
    monkeypatch.setenv("LOG_FILE_PATH", str(tmp_path / "logs"))
    monkeypatch.setenv("BASE_URL", "https://cdn.example.com")
    monkeypatch.setenv("BASIC_AUTH_USERNAME", "test-user")
    monkeypatch.setenv("BASIC_AUTH_PASSWORD", "test-pass")
    monkeypatch.delenv("APP_ENV", raising=False)
    monkeypatch.delenv("NODE_ENV", raising=False)
    get_settings.cache_clear()

    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}", future=True)

    @event.listens_for(engine.sync_engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, _connection_record) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()
    get_settings.cache_clear()


@pytest_asyncio.fixture
async def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=db_engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncSession]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def db_storage(db_engine: AsyncEngine) -> MenuImageStorage:
    return MenuImageStorage(get_settings())
