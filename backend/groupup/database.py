"""
GroupUp Backend - Relational Database Session Management
========================================================

What:  Async SQLAlchemy engine, session factory, declarative base, and the
       FastAPI dependency that hands one session to each request.
How:   The session dependency opens a transaction per request and rolls back
       if anything raised. Write operations end with commit_session(), which
       commits before the response is built.

Transaction boundary:
    Group creation writes up to three rows (Building mirror, Group, creator
    GroupMember). Services `flush()` each step and commit once at the end, so
    a failure at any step leaves none of those rows behind.

    The code after `yield` in get_db_session runs once the response has
    been sent. A commit there could fail after the client already saw a
    201, so writes never rely on it.
"""

import logging
from typing import Any, AsyncGenerator, Dict

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from groupup.config import settings
from groupup.exceptions import DatabaseError

logger = logging.getLogger(__name__)


def _engine_options() -> Dict[str, Any]:
    # SQLite drivers use their own pool classes that reject sizing arguments
    options: Dict[str, Any] = {"echo": settings.log_level == "DEBUG"}
    if not settings.is_sqlite:
        options.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_pre_ping=settings.db_pool_pre_ping,
            pool_recycle=3600,
        )
    return options


engine = create_async_engine(settings.database_url, **_engine_options())

# expire_on_commit=False: response models read attributes after the commit
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Base class for all ORM models; its metadata drives Alembic."""
    pass


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency providing one transactional session per request.

    1. Opens a session from the factory
    2. Yields it to the route handler
    3. Commits if the handler returned normally (reads only; writes have
       already committed through commit_session)
    4. Rolls back and re-raises on any exception
    5. Always closes the session (returns the connection to the pool)
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def commit_session(db: AsyncSession, failure_message: str) -> None:
    """
    Commits the request's transaction from inside a write operation.

    Raises:
        DatabaseError: the commit failed; the transaction is rolled back
    """
    try:
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error("Commit failed: %s", e, exc_info=True)
        raise DatabaseError(message=failure_message, context={"error": str(e)}) from e


async def check_connection() -> bool:
    """Runs SELECT 1; used by the health route."""
    from sqlalchemy import text

    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))
    return True


async def dispose_engine() -> None:
    """Closes all pooled connections. Called from the lifespan on shutdown."""
    await engine.dispose()
