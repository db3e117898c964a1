from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, AsyncIterator, Dict

from sqlalchemy import event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from core.config import config
from core.exceptions.base import CustomException, TransactionAbortedException
from core.logging import get_logger

logger = get_logger(__name__)


def get_engine_config(database_url: str) -> Dict[str, Any]:
    """Get database engine configuration based on database type.

    Args:
        database_url: Database connection URL

    Returns:
        Dict of engine configuration parameters
    """
    config_dict = {
        "echo": False,
        "future": True,
    }

    if "postgresql" in database_url:
        config_dict.update({
            "pool_size": config.DATABASE_POOL_SIZE,
            "max_overflow": config.DATABASE_MAX_OVERFLOW,
            "pool_recycle": 3600,
            "pool_pre_ping": True,
        })
    elif "sqlite" in database_url:
        config_dict.update({
            "connect_args": {"check_same_thread": False},
            "poolclass": NullPool,
        })

    return config_dict


engine = create_async_engine(
    config.DATABASE_URL,
    **get_engine_config(config.DATABASE_URL)
)


@event.listens_for(engine.sync_engine, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite databases."""
    if "sqlite" in config.DATABASE_URL:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


async_session_factory = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency that provides an async database session.

    Usage:
        @router.get("/items")
        async def get_items(db: AsyncSession = Depends(get_db)):
            ...
    """
    async with async_session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


@asynccontextmanager
async def transaction(db_session: AsyncSession) -> AsyncIterator[AsyncSession]:
    """
    Run a unit of work that either commits as a whole or leaves nothing behind.

    Domain exceptions raised inside the block roll back and propagate
    unchanged. Database failures, including a failed commit, roll back and are
    re-raised as TransactionAbortedException with the driver message attached.

    Usage:
        async with transaction(db_session):
            db_session.add(row)
    """
    try:
        yield db_session
        await db_session.commit()
    except CustomException:
        await db_session.rollback()
        raise
    except SQLAlchemyError as e:
        await db_session.rollback()
        logger.error(f"Transaction aborted: {type(e).__name__} - {e}")
        raise TransactionAbortedException(data={"detail": str(e)}) from e
    except Exception:
        await db_session.rollback()
        raise
