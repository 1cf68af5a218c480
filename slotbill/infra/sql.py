"""Async engine, session factory and the per-engine concurrency gate."""
import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncContextManager, Callable, Tuple

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
)

from ..config import (
    DB_GATE_LIMIT, DB_MAX_OVERFLOW, DB_POOL_SIZE, DB_POOL_TIMEOUT
)

Gated = Callable[[], AsyncContextManager[None]]

_ASYNC_DRIVERS = (
    ("sqlite://", "sqlite+aiosqlite://"),
    ("postgresql://", "postgresql+asyncpg://"),
    ("postgres://", "postgresql+asyncpg://"),
)

# WAL lets readers proceed while one connection holds the write lock;
# busy_timeout makes a second writer wait instead of failing at once.
_SQLITE_PRAGMAS = (
    "PRAGMA journal_mode=WAL",
    "PRAGMA busy_timeout=5000",
    "PRAGMA synchronous=NORMAL",
    "PRAGMA foreign_keys=ON",
)


@dataclass
class GatedAsyncSession:
    """A session plus the gate every statement batch must pass through."""
    session: AsyncSession
    gated: Gated


def async_url(url: str) -> str:
    for plain, driver in _ASYNC_DRIVERS:
        if url.startswith(plain):
            return driver + url[len(plain):]
    return url


def make_gate(limit: int) -> Gated:
    sem = asyncio.Semaphore(max(1, limit))

    @asynccontextmanager
    async def gated():
        async with sem:
            yield

    return gated


def _install_sqlite_pragmas(engine: AsyncEngine) -> None:
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, _record):
        cur = dbapi_connection.cursor()
        for pragma in _SQLITE_PRAGMAS:
            cur.execute(pragma)
        cur.close()


def make_async_engine(
    database_url: str,
) -> Tuple[AsyncEngine, async_sessionmaker, Gated]:
    url = async_url(database_url)
    is_sqlite = url.startswith("sqlite+aiosqlite://")

    options = dict(future=True, pool_pre_ping=True)
    if not is_sqlite:
        options.update(
            pool_size=DB_POOL_SIZE,
            max_overflow=DB_MAX_OVERFLOW,
            pool_timeout=DB_POOL_TIMEOUT,
        )
    engine = create_async_engine(url, **options)
    if is_sqlite:
        _install_sqlite_pragmas(engine)

    sessions = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    return engine, sessions, make_gate(DB_GATE_LIMIT or DB_POOL_SIZE)
