"""
Двухуровневый кэш с TTL.

Быстрый уровень — словарь в памяти процесса, долговременный — подключаемый
backend (`SqlCacheStore` поверх SQLAlchemy или `None`, если хранилища нет).
Используется, чтобы не ходить в сеть за счетами, категориями, подсказками,
курсами валют и балансом чаще, чем раз в TTL.

Ключи строятся только через `make_key`: измерения склеиваются через
`KEY_DELIMITER` как есть, регистр не меняется: "Alice" и "alice" — разные
пользователи. Коды валют вызывающий код приводит к верхнему регистру сам,
поэтому курс USD→EUR и категории пользователя выглядят как "USD:EUR" и
"alice:withdrawal".
Все места вызова обязаны использовать этот хелпер, иначе попадания
в кэш тихо перестанут совпадать.
"""
from __future__ import annotations

import logging
import time
from typing import Any, Callable, Protocol

logger = logging.getLogger(__name__)

KEY_DELIMITER = ":"


def make_key(*parts: Any) -> str:
    """Составной ключ кэша: `make_key("alice", "withdrawal") -> "alice:withdrawal"`.

    None превращается в пустую часть, поэтому `make_key("alice", None)` ("alice:")
    не совпадает с `make_key("alice")`. Разделитель и "%" внутри частей
    экранируются, чтобы ("a:b", "c") и ("a", "b:c") давали разные ключи.
    """
    normalized = []
    for part in parts:
        text = "" if part is None else str(part)
        normalized.append(text.replace("%", "%25").replace(KEY_DELIMITER, "%3A"))
    return KEY_DELIMITER.join(normalized)


class CacheStore(Protocol):
    """Контракт долговременного уровня кэша."""

    async def load(self, namespace: str, key: str) -> tuple[Any, float] | None: ...

    async def store(self, namespace: str, key: str, value: Any, stored_at: float) -> None: ...

    async def remove(self, namespace: str, key: str) -> None: ...

    async def clear(self, namespace: str) -> None: ...


class TwoTierCache:
    """Кэш "память + долговременное хранилище" с единым контрактом get/set.

    Args:
        namespace: Пространство имён в долговременном хранилище (accounts, exchange_rate, ...).
        ttl: Время жизни записи в секундах. Запись валидна, пока `now - stored_at < ttl`.
        durable: Долговременный backend или None.
        clock: Источник времени (подменяется в тестах).
    """

    def __init__(
        self,
        namespace: str,
        ttl: float,
        durable: CacheStore | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.namespace = namespace
        self.ttl = ttl
        self._durable = durable
        self._clock = clock
        self._memory: dict[str, tuple[Any, float]] = {}

    def _is_fresh(self, stored_at: float) -> bool:
        return self._clock() - stored_at < self.ttl

    async def get(self, key: str) -> Any | None:
        entry = self._memory.get(key)
        if entry is not None:
            value, stored_at = entry
            if self._is_fresh(stored_at):
                logger.debug("[CACHE] HIT (memory) %s/%s", self.namespace, key)
                return value
            # протухшая запись вычищается из обоих уровней
            logger.debug("[CACHE] EXPIRED %s/%s", self.namespace, key)
            await self.delete(key)
            return None

        if self._durable is not None:
            try:
                stored = await self._durable.load(self.namespace, key)
            except Exception as e:
                logger.warning(f"[CACHE] durable read failed for {self.namespace}/{key}: {e}")
                stored = None
            if stored is not None:
                value, stored_at = stored
                if self._is_fresh(stored_at):
                    self._memory[key] = (value, stored_at)
                    logger.debug("[CACHE] HIT (durable) %s/%s", self.namespace, key)
                    return value
                logger.debug("[CACHE] EXPIRED (durable) %s/%s", self.namespace, key)
                await self._remove_durable(key)

        logger.debug("[CACHE] MISS %s/%s", self.namespace, key)
        return None

    async def set(self, key: str, value: Any) -> None:
        stored_at = self._clock()
        self._memory[key] = (value, stored_at)
        if self._durable is None:
            return
        try:
            await self._durable.store(self.namespace, key, value, stored_at)
        except Exception as e:
            # память остаётся источником истины до конца сессии
            logger.warning(f"[CACHE] durable write failed for {self.namespace}/{key}: {e}")

    async def delete(self, key: str) -> None:
        self._memory.pop(key, None)
        await self._remove_durable(key)

    async def clear(self) -> None:
        size = len(self._memory)
        self._memory.clear()
        if self._durable is not None:
            try:
                await self._durable.clear(self.namespace)
            except Exception as e:
                logger.warning(f"[CACHE] durable clear failed for {self.namespace}: {e}")
        logger.debug("[CACHE] cleared %s (%d memory entries)", self.namespace, size)

    async def _remove_durable(self, key: str) -> None:
        if self._durable is None:
            return
        try:
            await self._durable.remove(self.namespace, key)
        except Exception as e:
            logger.warning(f"[CACHE] durable delete failed for {self.namespace}/{key}: {e}")
