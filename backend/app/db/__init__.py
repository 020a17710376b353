"""
Database Package

This package contains database connection and session management.
"""

from sqlalchemy.ext.asyncio import AsyncEngine

from app.core.logging import get_logger
from app.db.base import Base
from app.db.session import check_db_connection, create_db_engine, create_session_factory

# Initialize logger
logger = get_logger(__name__)


async def init_db(engine: AsyncEngine) -> None:
    """
    Verify database health at startup.

    Raises:
        RuntimeError: If database connection fails
    """
    logger.info("[DB INIT] Starting database initialization")

    if not await check_db_connection(engine):
        logger.critical("[DB INIT] Database initialization failed")
        raise RuntimeError("Failed to connect to database")

    logger.info("[DB INIT] Database initialization successful")


# Export commonly used components
__all__ = [
    "Base",
    "check_db_connection",
    "create_db_engine",
    "create_session_factory",
    "init_db"
]
