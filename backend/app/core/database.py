"""SecurityX Database Configuration - Async SQLAlchemy.

The engine backs the PostgreSQL stores (allowed origins, revoked tokens,
users). Pool sizing comes from ``Settings.db_pool_*`` (DB_POOL_SIZE,
DB_MAX_OVERFLOW, DB_POOL_TIMEOUT, DB_POOL_RECYCLE).
"""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base

from app.core.config import Settings, settings
from app.core.logging import get_logger

logger = get_logger("database")


def build_engine(config: Settings) -> AsyncEngine:
    """Create the async engine with the configured connection pool."""
    return create_async_engine(
        str(config.database_url),
        pool_size=config.db_pool_size,
        max_overflow=config.db_max_overflow,
        pool_timeout=config.db_pool_timeout,
        pool_recycle=config.db_pool_recycle,
        pool_pre_ping=True,
        # Only echo SQL when debug is explicitly enabled
        echo=config.debug and config.log_level == "DEBUG",
    )


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # Store entries outlive their session
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


engine = build_engine(settings)
async_session_maker = build_session_factory(engine)

# Base class for models
Base = declarative_base()


async def check_db_connection(
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> bool:
    """Check if the database behind the security stores is reachable."""
    factory = session_factory or async_session_maker
    try:
        async with factory() as session:
            await session.execute(text("SELECT 1"))
            return True
    except (OSError, ConnectionError) as e:
        logger.debug(f"Database connection check failed: {e}")
        return False
    except Exception as e:
        logger.warning(f"Unexpected error checking database connection: {e}")
        return False
