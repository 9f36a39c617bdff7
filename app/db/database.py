"""
Database Connection and Session Management
"""
from typing import Any

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base

from app.core.config import Settings, settings


def engine_options(config: Settings) -> dict[str, Any]:
    """Engine keyword arguments for the configured driver.

    Pool sizing only applies to server databases; SQLite (tests, local runs)
    uses the dialect's default pool.
    """
    options: dict[str, Any] = {"echo": config.DEBUG}
    if not config.DATABASE_URL.startswith("sqlite"):
        options.update(
            pool_pre_ping=True,
            pool_size=config.DB_POOL_SIZE,
            max_overflow=config.DB_MAX_OVERFLOW,
        )
    return options


engine = create_async_engine(settings.DATABASE_URL, **engine_options(settings))

# Webhook components receive this factory (not a request-scoped session) so each
# processing attempt and each dead-letter write runs in its own transaction.
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False
)

Base = declarative_base()
