from collections.abc import AsyncGenerator
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

from clinic_core.core.config import settings
from clinic_core.services.notification_service import dispatch_pending


def to_async_url(database_url: str) -> str:
    """Rewrite a plain database URL to its async driver.

    asyncpg does not accept psycopg params like sslmode/channel_binding, so they
    are stripped; SSL is enabled via connect_args instead.
    """
    if database_url.startswith("sqlite://"):
        # urlunparse drops the empty authority of sqlite:////abs/path
        return "sqlite+aiosqlite://" + database_url[len("sqlite://"):]
    parsed = urlparse(database_url)
    scheme = parsed.scheme
    if scheme in ("postgresql", "postgres"):
        scheme = "postgresql+asyncpg"
    query = parse_qs(parsed.query, keep_blank_values=True)
    query.pop("sslmode", None)
    query.pop("channel_binding", None)
    new_query = urlencode(query, doseq=True)
    return urlunparse((scheme, parsed.netloc, parsed.path, parsed.params, new_query, parsed.fragment))


def _serialize_sqlite_writers(engine: AsyncEngine) -> None:
    # aiosqlite emits a deferred BEGIN by default; take over so every transaction
    # grabs the write lock up front and check-then-insert sequences serialize.
    @event.listens_for(engine.sync_engine, "connect")
    def _do_connect(dbapi_connection, connection_record) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _do_begin(conn) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def make_engine(database_url: str, echo: bool = False, ssl: bool = False) -> AsyncEngine:
    url = to_async_url(database_url)
    if url.startswith("sqlite"):
        engine = create_async_engine(url, echo=echo, connect_args={"timeout": 30})
        _serialize_sqlite_writers(engine)
        return engine
    connect_args = {"ssl": True} if ssl else {}
    return create_async_engine(
        url,
        echo=echo,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
        connect_args=connect_args,
    )


def make_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


engine = make_engine(settings.database_url, echo=settings.env == "development", ssl=settings.database_ssl)
async_session_maker = make_session_maker(engine)


async def commit_and_dispatch(session: AsyncSession) -> None:
    """Commit, then deliver the notifications the committed work queued."""
    await session.commit()
    await dispatch_pending(session)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        await dispatch_pending(session)


async def lock_key(session: AsyncSession, key: str) -> None:
    """Serialize the rest of the current transaction against others holding ``key``.

    PostgreSQL takes a transaction-scoped advisory lock, released on commit or
    rollback. SQLite transactions already run under BEGIN IMMEDIATE, which
    serializes all writers, so nothing extra is needed there.
    """
    if session.bind.dialect.name == "postgresql":
        await session.execute(text("SELECT pg_advisory_xact_lock(hashtext(:key))"), {"key": key})


async def init_db(target: AsyncEngine | None = None) -> None:
    """Create tables if using create_all; prefer Alembic in production."""
    import clinic_core.models  # noqa: F401 - register tables

    async with (target or engine).begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
