"""
Async SQLAlchemy engine & session factory (asyncpg driver).

The engine is an explicit handle: the app lifespan opens it at startup,
keeps it on ``app.state`` and disposes it at shutdown.
"""

from __future__ import annotations

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from fhirlink.core.config import settings


def build_engine(database_url: str | None = None) -> AsyncEngine:
    url = database_url or settings.DATABASE_URL
    engine_args: dict = {
        "echo": False,
        "pool_pre_ping": True,
    }

    if "postgresql" in url:
        engine_args.update(
            {
                "pool_size": 20,
                "max_overflow": 10,
                "pool_recycle": 300,
                "pool_timeout": settings.STORE_TIMEOUT_SECONDS,
            }
        )

    return create_async_engine(url, **engine_args)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
