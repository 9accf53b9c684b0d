"""Database bootstrap helpers."""

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from payflow.common.config import settings


# Single async engine per process.
engine = create_async_engine(settings.store_connection_string, pool_pre_ping=True)
# `expire_on_commit=False` keeps ORM objects readable after commit in handlers.
SessionLocal = async_sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


class Base(DeclarativeBase):
    """Declarative base for SQLAlchemy models."""

    pass


async def init_models(bind=engine) -> None:
    """Create missing tables; schema migrations are managed outside the service."""

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
