# iam_core/infrastructure/database/session.py

from typing import Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base

from iam_core.config.settings import IamSettings, get_settings

Base = declarative_base()


def create_engine(settings: Optional[IamSettings] = None) -> AsyncEngine:
    settings = settings or get_settings()
    if not settings.database_url:
        raise RuntimeError("IAM_DATABASE_URL is not configured")
    kwargs = {"echo": settings.database_echo, "pool_pre_ping": True}
    if not settings.database_url.startswith("sqlite"):
        kwargs.update(pool_size=10, max_overflow=20)
    return create_async_engine(settings.database_url, **kwargs)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        bind=engine,
        expire_on_commit=False,
        autoflush=False,
        class_=AsyncSession,
    )


async def init_models(engine: AsyncEngine) -> None:
    """Create tables that do not exist yet. Migrations are out of scope."""
    from iam_core.infrastructure.database import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

