"""Database configuration and session management."""

import logging
from pathlib import Path

from sqlalchemy import text
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool

from mailbench.config import get_config

logger = logging.getLogger(__name__)

DATABASE_URL = get_config().database_url

# Ensure database directory exists (skip for in-memory databases used in tests)
if DATABASE_URL.startswith("sqlite") and ":memory:" not in DATABASE_URL:
    db_path = DATABASE_URL.replace("sqlite+aiosqlite:///", "").replace("sqlite+aiosqlite://", "")
    db_dir = Path(db_path).resolve().parent
    if str(db_dir) != ".":
        db_dir.mkdir(parents=True, exist_ok=True)

# SQLite uses a single persistent connection; PostgreSQL gets a real pool
if "sqlite" in DATABASE_URL:
    engine = create_async_engine(
        DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        pool_reset_on_return=None,
    )
else:
    engine = create_async_engine(
        DATABASE_URL,
        echo=False,
        pool_size=10,
        max_overflow=20,
        pool_timeout=30,
        pool_recycle=3600,
        pool_pre_ping=True,
    )

# Session factory
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

# Base class for models
Base = declarative_base()


async def get_db() -> AsyncSession:
    """Dependency for getting database sessions."""
    async with AsyncSessionLocal() as session:
        yield session


def dialect_insert(db: AsyncSession, table):
    """Return a dialect-specific INSERT supporting ON CONFLICT clauses.

    Both SQLite and PostgreSQL support ``on_conflict_do_update`` and
    ``on_conflict_do_nothing`` keyed by a unique constraint.
    """
    dialect_name = db.get_bind().dialect.name
    if dialect_name == "postgresql":
        return postgresql.insert(table)
    if dialect_name == "sqlite":
        return sqlite.insert(table)
    raise NotImplementedError(f"Upserts are not supported for dialect {dialect_name!r}")


async def init_db():
    """Create tables and apply SQLite pragmas."""
    # Import models so their tables are registered on Base.metadata
    import mailbench.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

        if "sqlite" in DATABASE_URL:
            # WAL mode allows concurrent reads/writes
            await conn.execute(text("PRAGMA journal_mode=WAL"))
            await conn.execute(text("PRAGMA synchronous=NORMAL"))
            await conn.execute(text("PRAGMA busy_timeout=5000"))

            # Permission grants rely on ON DELETE CASCADE
            await conn.execute(text("PRAGMA foreign_keys=ON"))

            logger.info("SQLite optimizations applied: WAL mode, 5s busy timeout, foreign keys")

    logger.info("Database initialized")
