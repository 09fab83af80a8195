"""Shared fixtures: a throwaway SQLite file per test and a recording notifier."""

import os
from collections.abc import AsyncGenerator

# settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite:///./clinic_core_test.db")
os.environ["ENV"] = "test"
os.environ["NOTIFICATION_WEBHOOK_URL"] = ""
os.environ["DOCUMENT_VALIDATION"] = "cpf"

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from clinic_core.core.db import init_db, make_engine, make_session_maker
from clinic_core.services.notification_service import NotificationEvent



class RecordingNotifier:
    def __init__(self, fail: bool = False) -> None:
        self.events: list[NotificationEvent] = []
        self.fail = fail

    async def emit(self, event: NotificationEvent) -> None:
        if self.fail:
            raise RuntimeError("delivery service down")
        self.events.append(event)

    @property
    def types(self) -> list[str]:
        return [e.type for e in self.events]


@pytest_asyncio.fixture
async def engine(tmp_path):
    # file-backed: every session gets its own connection, like production
    engine = make_engine(f"sqlite:///{tmp_path / 'clinic.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine) -> async_sessionmaker:
    return make_session_maker(engine)


@pytest_asyncio.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        try:
            yield session
        finally:
            await session.rollback()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def failing_notifier() -> RecordingNotifier:
    return RecordingNotifier(fail=True)
