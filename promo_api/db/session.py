# promo_api/db/session.py
from __future__ import annotations

from typing import AsyncGenerator, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from promo_api.core.config import settings
from promo_api.core.exceptions import StorageError
from promo_api.core.logging import get_structlog_logger

logger = get_structlog_logger(__name__)

# Global engine instance
engine: Optional[AsyncEngine] = None
AsyncSessionLocal: Optional[async_sessionmaker[AsyncSession]] = None


def _is_postgres(url: str) -> bool:
    return url.startswith("postgresql")


def create_database_engine(database_url: Optional[str] = None) -> AsyncEngine:
    """Create and configure the async database engine."""
    global engine, AsyncSessionLocal

    if engine is not None:
        return engine

    url = database_url or settings.database_url

    if settings.is_testing or not _is_postgres(url):
        # Use NullPool for tests and file databases to ensure clean state
        engine = create_async_engine(
            url,
            poolclass=NullPool,
            echo=settings.debug,
        )
    else:
        # Production/development pool configuration
        engine = create_async_engine(
            url,
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            pool_timeout=settings.database_pool_timeout,
            pool_recycle=settings.database_pool_recycle,
            pool_pre_ping=True,  # Verify connections before using
            echo=settings.debug,
            connect_args={
                "command_timeout": 60,
                "server_settings": {
                    "application_name": "promotions_api",
                    "jit": "off" if settings.is_development else "on",
                },
            },
        )

    # Create session factory
    AsyncSessionLocal = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    logger.info(
        "database.engine.created",
        dialect=engine.dialect.name,
        pool_size=settings.database_pool_size,
        testing=settings.is_testing,
    )

    return engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    if AsyncSessionLocal is None:
        create_database_engine()
    return AsyncSessionLocal


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Get database session for dependency injection."""
    session = get_session_factory()()

    try:
        if session.bind.dialect.name == "postgresql":
            # Server-side guard in addition to the per-call timeouts of the store
            await session.execute(
                text(f"SET statement_timeout = {int(settings.storage_timeout_seconds * 1000)}")
            )

        yield session

    except SQLAlchemyError as e:
        logger.error("database.session_error", error=str(e))
        await session.rollback()
        raise StorageError(
            message="Database session error",
            details={"error": str(e)},
        ) from e

    finally:
        await session.close()


async def dispose_engine() -> None:
    global engine, AsyncSessionLocal

    if engine is not None:
        await engine.dispose()
    engine = None
    AsyncSessionLocal = None


async def health_check() -> dict:
    """Check database health."""
    try:
        async with get_session_factory()() as session:
            result = await session.execute(text("SELECT 1"))
            row = result.fetchone()
            return {
                "status": "healthy" if row and row[0] == 1 else "unhealthy",
                "dialect": session.bind.dialect.name,
            }
    except Exception as e:
        logger.error("database.health_check_failed", error=str(e))
        return {
            "status": "unhealthy",
            "error": str(e),
        }
