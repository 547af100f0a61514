"""SQLAlchemy async engine and session helpers."""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from ..core.config import settings

# ``Base`` is the parent class for every SQLAlchemy model defined in toolroom/models.
Base = declarative_base()


def build_engine(url: str | None = None) -> AsyncEngine:
    """Create the async engine for ``url`` (defaults to ``settings.DB_URL``)."""

    db_url = url or settings.DB_URL
    # SQLite connections get shared across tasks; other engines ignore this.
    connect_args = {"check_same_thread": False} if db_url.startswith("sqlite") else {}
    return create_async_engine(db_url, connect_args=connect_args, pool_pre_ping=True)


def build_sessionmaker(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


async def create_schema(engine: AsyncEngine) -> None:
    """Create missing tables; existing tables are left untouched."""

    # Importing the models registers them with the metadata.
    from ..models import document as _document  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
