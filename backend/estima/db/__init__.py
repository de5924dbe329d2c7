"""
Database Layer - Async SQLAlchemy engine + session factory for the local store.

Nothing here is created at import time: every ``LocalStore`` owns its own
engine so that several stores (one per test, one per profile) can coexist.
"""
import os
import logging
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    create_async_engine,
    AsyncSession,
    async_sessionmaker,
)
from sqlalchemy.orm import DeclarativeBase

logger = logging.getLogger("estima.db")


class Base(DeclarativeBase):
    pass


def normalize_db_url(raw_url: str) -> str:
    """Force the async SQLite driver onto bare ``sqlite://`` URLs."""
    url = raw_url.strip()
    if url.startswith("sqlite://") and "+aiosqlite" not in url:
        url = url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return url


def create_store_engine(db_url: str, echo: bool = False) -> AsyncEngine:
    """Create the async engine, making sure a file-backed database has a directory."""
    url = normalize_db_url(db_url)
    database = make_url(url).database
    if database and database != ":memory:":
        folder = os.path.dirname(os.path.abspath(database))
        os.makedirs(folder, exist_ok=True)
    logger.debug("Local store URL: %s", url)
    return create_async_engine(url, echo=echo)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
