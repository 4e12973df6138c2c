from __future__ import annotations

import os
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession, AsyncEngine

from budgetflow.db.models import Base
from budgetflow.config import settings


DB_URL = settings.DB_URL


def make_engine(url: str) -> AsyncEngine:
    engine = create_async_engine(
        url=url,
        echo=False,
        pool_pre_ping=True,
        future=True,
        connect_args={"check_same_thread": False} if url.startswith("sqlite+") else {},
    )

    # SQLite тюнинг: WAL + foreign_keys
    @event.listens_for(engine.sync_engine, "connect")
    def _sqlite_pragmas(dbapi_conn, connection_record):
        if url.startswith("sqlite"):
            cur = dbapi_conn.cursor()
            cur.execute("PRAGMA journal_mode=WAL;")
            cur.execute("PRAGMA synchronous=NORMAL;")
            cur.execute("PRAGMA foreign_keys=ON;")
            cur.close()

    return engine


def make_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, autoflush=False, expire_on_commit=False)


engine = make_engine(DB_URL)

SessionLocal: async_sessionmaker[AsyncSession] = make_sessionmaker(engine)


async def init_db(target: AsyncEngine | None = None, url: str | None = None):
    url = url or DB_URL
    target = target or engine
    # создать папку, если надо
    if url.startswith("sqlite+") and "///" in url:
        path = url.split("///", 1)[-1]
        d = os.path.dirname(path) or "."
        os.makedirs(d, exist_ok=True)
    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

async def get_session() -> AsyncSession:
    return SessionLocal()
