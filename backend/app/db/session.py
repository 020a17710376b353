"""
Database Session Module

This module manages database connections and sessions with:
- Async SQLAlchemy engine configuration
- Session factory construction
- Connection health checks
"""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.engine import make_url

from app.core.logging import get_logger
from app.core.settings import AppSettings

# Initialize logger
logger = get_logger(__name__)


def create_db_engine(settings: AppSettings) -> AsyncEngine:
    """
    Create the async SQLAlchemy engine.

    Args:
        settings: Application settings

    Returns:
        AsyncEngine: Configured engine
    """
    url = make_url(settings.db.URL)
    logger.info(
        "Creating database engine",
        extra={"database_url": url.render_as_string(hide_password=True)}
    )

    return create_async_engine(
        url,
        echo=settings.db.ECHO,
        pool_pre_ping=settings.db.POOL_PRE_PING
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to ``engine``; sessions keep objects usable after commit."""
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def check_db_connection(engine: AsyncEngine) -> bool:
    """
    Check database connectivity.

    Returns:
        bool: True if connection successful, False otherwise
    """
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(
            "Database connection check failed",
            exc_info=True,
            extra={"error": str(e)}
        )
        return False


__all__ = ["create_db_engine", "create_session_factory", "check_db_connection"]
