import logging
import math
from decimal import Decimal

from budgetflow.config import settings
from budgetflow.services.api_client import LedgerApiClient
from budgetflow.services.cache import CacheStore, TwoTierCache, make_key
from budgetflow.services.errors import InvalidResponse
from budgetflow.utils.formatting import apply_rate

EXCHANGE_RATE_PATH = "/api/v1/exchange_rate"


def extract_rate(data) -> float | None:
    """Достаёт курс из ответа `/api/v1/exchange_rate`.

    API за время жизни отдавало курс в разных полях, поэтому проверяются
    по порядку: `exchangeData.exchangeAmount`, `result`, `converted_amount`, `exchange_rate`.
    """
    if not isinstance(data, dict):
        return None
    candidates = []
    exchange_data = data.get("exchangeData")
    if isinstance(exchange_data, dict):
        candidates.append(exchange_data.get("exchangeAmount"))
    candidates += [data.get("result"), data.get("converted_amount"), data.get("exchange_rate")]
    for raw in candidates:
        if raw is None or isinstance(raw, bool):
            continue
        try:
            value = float(raw)
        except (TypeError, ValueError):
            continue
        if math.isfinite(value) and value > 0:
            return value
    return None


class ExchangeRateClient:
    """Курс 1 единицы валюты FROM в TO через API каталога.

    Курсы кэшируются в `TwoTierCache` по ключу "FROM:TO" (см. `make_key`),
    TTL по умолчанию — `EXCHANGE_RATE_CACHE_TTL` (1 час).
    """

    def __init__(
        self,
        api: LedgerApiClient,
        durable: CacheStore | None = None,
        ttl: float | None = None,
    ):
        self._api = api
        self._cache = TwoTierCache(
            "exchange_rate",
            ttl if ttl is not None else settings.EXCHANGE_RATE_CACHE_TTL,
            durable,
        )

    @property
    def cache(self) -> TwoTierCache:
        return self._cache

    async def get_rate(self, from_currency: str, to_currency: str) -> float:
        source = (from_currency or "").strip().upper()
        target = (to_currency or "").strip().upper()
        if not source or not target:
            raise ValueError(f"Currency codes required, got {from_currency!r} -> {to_currency!r}")
        if source == target:
            return 1.0

        key = make_key(source, target)
        cached = await self._cache.get(key)
        if cached is not None:
            return float(cached)

        data = await self._api.get(EXCHANGE_RATE_PATH, params={"from": source, "to": target, "amount": "1"})
        rate = extract_rate(data)
        if rate is None:
            logging.warning(f"[FX] Invalid exchange rate response for {key}: {str(data)[:200]}")
            raise InvalidResponse(f"Invalid exchange rate response for {source} -> {target}")

        await self._cache.set(key, rate)
        logging.info(f"[FX] {source}->{target} rate {rate}")
        return rate

    async def convert(self, amount: Decimal, from_currency: str, to_currency: str) -> Decimal:
        """Сумма в валюте TO, округлённая до центов."""
        rate = await self.get_rate(from_currency, to_currency)
        converted = apply_rate(amount, rate)
        if converted is None:
            raise InvalidResponse(f"Cannot convert {amount} {from_currency} at rate {rate}")
        return converted
