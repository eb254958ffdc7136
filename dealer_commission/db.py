"""Async engine / session setup.

``postgres://`` URLs are rewritten to
the asyncpg driver and libpq-only SSL params are dropped from the query string
(asyncpg rejects them as connect kwargs).
"""

import logging
import secrets
import urllib.parse

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from . import config
from .models import Base

logger = logging.getLogger("db")


def _sanitize_url(url: str) -> str:
    # sqlite:/// paths do not survive a urlsplit round trip
    if "?" not in url:
        return url
    try:
        p = urllib.parse.urlsplit(url)
        qs = [(k, v) for k, v in urllib.parse.parse_qsl(p.query, keep_blank_values=True)
              if k.lower() not in {"sslmode", "sslrootcert", "sslcert", "sslkey", "channel_binding"}]
        return urllib.parse.urlunsplit((p.scheme, p.netloc, p.path, urllib.parse.urlencode(qs), p.fragment))
    except ValueError:
        return url


def normalize_url(url: str) -> str:
    db_url = _sanitize_url(url.strip())
    if db_url.startswith("postgres://"):
        db_url = db_url.replace("postgres://", "postgresql+asyncpg://", 1)
    elif db_url.startswith("postgresql://") and "+asyncpg" not in db_url:
        db_url = db_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return db_url


def make_engine(url: str | None = None, **kwargs) -> AsyncEngine:
    db_url = normalize_url(url or config.DATABASE_URL)
    if "asyncpg" in db_url:
        # pgBouncer (transaction pooling) can't keep named prepared statements
        kwargs.setdefault("connect_args", {
            "statement_cache_size": 0,
            "prepared_statement_cache_size": 0,
            "prepared_statement_name_func": lambda: f"__asyncpg_{secrets.token_hex(8)}__",
        })
        kwargs.setdefault("pool_size", 2)
        kwargs.setdefault("max_overflow", 3)
        kwargs.setdefault("pool_recycle", 120)
        kwargs.setdefault("pool_pre_ping", True)
    return create_async_engine(db_url, echo=config.DB_ECHO, future=True, **kwargs)


def make_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


async def init_models(engine: AsyncEngine) -> None:
    """Create any missing tables."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info(f"Schema ready on {engine.url.render_as_string(hide_password=True)}")
