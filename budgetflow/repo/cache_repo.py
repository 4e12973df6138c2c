from __future__ import annotations
import json
import time
from typing import Any

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from budgetflow.db.models import CacheEntry


class SqlCacheStore:
    """Долговременный уровень `TwoTierCache` поверх таблицы `cache_entries`.

    Значения хранятся как JSON, поэтому класть в кэш можно только
    JSON-сериализуемые структуры (списки словарей, числа).
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None):
        if session_factory is None:
            from budgetflow.db import SessionLocal
            session_factory = SessionLocal
        self._session_factory = session_factory

    async def load(self, namespace: str, key: str) -> tuple[Any, float] | None:
        async with self._session_factory() as session:
            row = (await session.execute(
                select(CacheEntry).where(CacheEntry.namespace == namespace, CacheEntry.key == key)
            )).scalar_one_or_none()
            if row is None:
                return None
            return json.loads(row.value_json), row.stored_at

    async def store(self, namespace: str, key: str, value: Any, stored_at: float) -> None:
        payload = json.dumps(value, ensure_ascii=False)
        async with self._session_factory() as session:
            row = (await session.execute(
                select(CacheEntry).where(CacheEntry.namespace == namespace, CacheEntry.key == key)
            )).scalar_one_or_none()
            if row is None:
                session.add(CacheEntry(namespace=namespace, key=key, value_json=payload, stored_at=stored_at))
            else:
                row.value_json = payload
                row.stored_at = stored_at
            await session.commit()

    async def remove(self, namespace: str, key: str) -> None:
        async with self._session_factory() as session:
            await session.execute(
                delete(CacheEntry).where(CacheEntry.namespace == namespace, CacheEntry.key == key)
            )
            await session.commit()

    async def clear(self, namespace: str) -> None:
        async with self._session_factory() as session:
            await session.execute(delete(CacheEntry).where(CacheEntry.namespace == namespace))
            await session.commit()

    async def purge_expired(self, ttl_by_namespace: dict[str, float], now: float | None = None) -> int:
        """Удаляет протухшие строки всех пространств имён. Возвращает число удалённых."""
        now = time.time() if now is None else now
        removed = 0
        async with self._session_factory() as session:
            for namespace, ttl in ttl_by_namespace.items():
                result = await session.execute(
                    delete(CacheEntry).where(
                        CacheEntry.namespace == namespace,
                        CacheEntry.stored_at <= now - ttl,
                    )
                )
                removed += result.rowcount or 0
            await session.commit()
        return removed
