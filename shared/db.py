from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine, AsyncEngine, AsyncSession
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy import MetaData
from contextlib import asynccontextmanager
from typing import AsyncIterator
from .config import settings
import logging


convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}
metadata = MetaData(naming_convention=convention)


class Base(DeclarativeBase):
    metadata = metadata


_engine: AsyncEngine | None = None
_sessionmaker: async_sessionmaker[AsyncSession] | None = None


def _safe_url(url: str) -> str:
    if settings.POSTGRES_PASSWORD:
        return url.replace(settings.POSTGRES_PASSWORD, "***")
    return url


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        logging.getLogger(__name__).info("creating async engine", extra={"url": _safe_url(settings.DATABASE_URL)})
        _engine = create_async_engine(settings.DATABASE_URL, echo=False, pool_pre_ping=True)
    return _engine


def get_sessionmaker() -> async_sessionmaker[AsyncSession]:
    global _sessionmaker
    if _sessionmaker is None:
        _sessionmaker = async_sessionmaker[AsyncSession](
            bind=get_engine(), expire_on_commit=False, autoflush=False, autocommit=False
        )
    return _sessionmaker


@asynccontextmanager
async def get_async_session() -> AsyncIterator[AsyncSession]:
    session = get_sessionmaker()()
    try:
        logging.getLogger(__name__).debug("db session begin")
        yield session
        await session.commit()
        logging.getLogger(__name__).debug("db session commit")
    except Exception:
        logging.getLogger(__name__).exception("db session rollback due to error")
        await session.rollback()
        raise
    finally:
        await session.close()
        logging.getLogger(__name__).debug("db session closed")


async def dispose_engine() -> None:
    global _engine, _sessionmaker
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _sessionmaker = None
