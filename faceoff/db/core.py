from typing import AsyncGenerator
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from faceoff.core.config import settings
from faceoff.db.base import Base


def use_immediate_transactions(engine: AsyncEngine) -> None:
    """
    SQLite only: take the write lock when the transaction begins.
    Without it two transactions can both read a team row and then fail to
    upgrade their locks, instead of queueing behind each other.
    """
    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(database_url: str, **kwargs) -> AsyncEngine:
    engine = create_async_engine(database_url, **kwargs)
    if engine.dialect.name == "sqlite":
        use_immediate_transactions(engine)
    return engine


def _engine_options() -> dict:
    if settings.DATABASE_URL.startswith("sqlite"):
        return {"echo": False}
    return {
        "echo": False,
        # Pool settings
        "pool_size": settings.DB_POOL_SIZE,
        "max_overflow": settings.DB_MAX_OVERFLOW,
        "pool_timeout": settings.DB_POOL_TIMEOUT_SECONDS,
        # Recycle every hour (prevents stale connections)
        "pool_recycle": 3600,
        "pool_pre_ping": True,
        "connect_args": {
            "timeout": settings.DB_CONNECT_TIMEOUT_SECONDS,
            "command_timeout": settings.LEDGER_TIMEOUT_SECONDS,
        },
    }


engine = build_engine(settings.DATABASE_URL, **_engine_options())

async_session_factory = async_sessionmaker(
    bind=engine,
    autoflush=False,
    expire_on_commit=False)


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that provides an async DB session
    and ensures it's closed after the request.
    """
    async with async_session_factory() as session:
        yield session
        await session.rollback()


def get_session_factory() -> async_sessionmaker:
    """FastAPI dependency for handlers that open sessions on their own, like streams."""
    return async_session_factory


async def init_db():
    """
    This function is used to initialize the database.
    """
    # import models so every table is registered on the metadata
    import faceoff.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
