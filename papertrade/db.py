"""Async database engine, session management and transaction helpers."""
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base

from papertrade.config import Config

logger = logging.getLogger(__name__)

Base = declarative_base()

# Try to create async engine. In test environments asyncpg may not be installed;
# guard against ImportError so importing this module doesn't fail during tests.
try:
    engine = create_async_engine(
        Config.DATABASE_URL,
        echo=False,
        pool_pre_ping=True,
    )

    AsyncSessionLocal = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
except Exception as e:  # pragma: no cover - only triggered in test env without drivers
    logger.warning("Unable to create async DB engine at import time: %s", e)
    engine = None
    AsyncSessionLocal = None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def start_of_day(ts: datetime) -> datetime:
    return ts.replace(hour=0, minute=0, second=0, microsecond=0)


@asynccontextmanager
async def transaction_scope(session: AsyncSession):
    """Open an explicit transaction unless caller already owns one."""
    if session.in_transaction():
        yield
    else:
        async with session.begin():
            yield


def supports_for_update(session: AsyncSession) -> bool:
    bind = session.get_bind()
    return bind is not None and bind.dialect.name == "postgresql"


def maybe_for_update(session: AsyncSession, stmt):
    return stmt.with_for_update() if supports_for_update(session) else stmt


def import_models() -> None:
    """Register every ORM model on Base.metadata."""
    import papertrade.accounts.models  # noqa: F401
    import papertrade.ledger.models  # noqa: F401
    import papertrade.marketdata.models  # noqa: F401
    import papertrade.orders.models  # noqa: F401
    import papertrade.positions.models  # noqa: F401
    import papertrade.risk.models  # noqa: F401


async def init_db() -> None:
    """Create the schema.

    Production databases are migrated with Alembic (``alembic/versions``);
    create_all only fills in tables that do not exist yet.
    """
    if engine is None:
        raise RuntimeError("Async DB engine not configured. Install DB driver or configure DATABASE_URL.")

    import_models()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database schema initialized")


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Get async database session."""
    if AsyncSessionLocal is None:
        raise RuntimeError("AsyncSessionLocal is not available; DB engine not initialized")
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


async def close_db() -> None:
    """Close database connection pool."""
    if engine is None:
        return
    await engine.dispose()
    logger.info("Database connections closed")
