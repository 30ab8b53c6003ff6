"""Database connection and session management."""
from collections.abc import AsyncGenerator
from pathlib import Path
import asyncio
import logging

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from assethub.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)


def enable_sqlite_foreign_keys(engine: AsyncEngine) -> None:
    """Make SQLite enforce FOREIGN KEY constraints (off by default)."""
    if engine.dialect.name != "sqlite":
        return

    @event.listens_for(engine.sync_engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def _engine_kwargs(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"echo": settings.debug}
    return {
        "echo": settings.debug,
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
    }


# Create async engine
engine = create_async_engine(settings.database_url, **_engine_kwargs(settings.database_url))
enable_sqlite_foreign_keys(engine)

# Create async session factory
async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency to get database session."""
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def init_db() -> None:
    """Initialize / migrate the database schema.

    Alembic migrations are preferred (they upgrade existing databases). If
    Alembic cannot run, fall back to `create_all()`, which only works for a
    brand new database.
    """

    def _run_alembic_upgrade() -> None:
        from alembic import command
        from alembic.config import Config

        project_root = Path(__file__).resolve().parent.parent  # backend/
        alembic_ini = project_root / "alembic.ini"
        cfg = Config(str(alembic_ini))
        cfg.set_main_option("script_location", str(project_root / "alembic"))
        cfg.attributes["configure_logger"] = False
        # Ensure Alembic uses the same URL as the running app (DATABASE_URL etc).
        cfg.set_main_option("sqlalchemy.url", settings.database_url)
        command.upgrade(cfg, "head")

    try:
        # Alembic's env.py calls asyncio.run(), so keep it off the event loop.
        await asyncio.to_thread(_run_alembic_upgrade)
    except Exception:
        logger.exception("Alembic upgrade failed; falling back to create_all()")
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
