"""
Каталог: счета, категории, подсказки контрагентов и текущий баланс.

Все списки приходят из API использования (`get_*_usage`) и сортируются
по `utils.ordering.sort_by_usage`: то, чем пользователь пользуется чаще,
оказывается наверху. Результаты кэшируются в `TwoTierCache`, поэтому
повторные FETCH_* в пределах TTL не ходят в сеть.
"""
from __future__ import annotations

import logging
from dataclasses import asdict
from typing import Any

from budgetflow.config import settings
from budgetflow.services.api_client import LedgerApiClient
from budgetflow.services.cache import CacheStore, TwoTierCache, make_key
from budgetflow.services.errors import ApiError, BudgetFlowError, InvalidResponse, ServiceNotConfigured
from budgetflow.states.context import CatalogItem, Suggestion
from budgetflow.utils.ordering import sort_by_usage

logger = logging.getLogger(__name__)

ACCOUNT_USAGE_PATHS = (
    "/api/v1/get_account_usage",   # новый эндпоинт
    "/api/v1/get_accounts_usage",  # старый
)
CATEGORIES_USAGE_PATH = "/api/v1/get_categories_usage"
DESTINATION_USAGE_PATH = "/api/v1/get_destination_name_usage"
SOURCE_USAGE_PATH = "/api/v1/get_source_name_usage"
BALANCE_PATH = "/api/v1/get_current_balance"


def _int(raw: Any) -> int:
    try:
        return int(raw or 0)
    except (TypeError, ValueError):
        return 0


def _rows(data: Any, *keys: str) -> list[dict]:
    if isinstance(data, dict):
        for key in keys:
            rows = data.get(key)
            if isinstance(rows, list):
                return [r for r in rows if isinstance(r, dict)]
    raise InvalidResponse(f"Expected one of {', '.join(keys)} in response")


def normalize_account_rows(data: Any) -> list[dict]:
    """Ответы `get_account_usage` (единственное число) и `get_accounts_usage` (множественное) к одному виду."""
    return _rows(data, "get_accounts_usage", "get_account_usage")


def account_from_row(row: dict) -> CatalogItem:
    return CatalogItem(
        id=str(row.get("account_id") or row.get("id") or ""),
        name=str(row.get("account_name") or row.get("name") or ""),
        currency=(row.get("account_currency") or row.get("currency_code") or None),
        usage_count=_int(row.get("usage_count")),
    )


def categories_for_user(rows: list[dict], user_name: str, tx_type: str | None) -> list[dict]:
    """Использованные пользователем категории + заглушки с usage_count=0 для остальных.

    API отдаёт строки использования по всем пользователям; категория, которой
    пользователь не пользовался, всё равно должна быть в списке, но в конце.
    """
    if not user_name:
        return list(rows)
    names: list[str] = []
    first_id: dict[str, Any] = {}
    for row in rows:
        name = row.get("category_name")
        if name and name not in first_id:
            names.append(name)
            first_id[name] = row.get("category_id")

    used = [r for r in rows if r.get("user_name") == user_name and _int(r.get("usage_count")) > 0]
    used_names = {r.get("category_name") for r in used}
    placeholders = [
        {
            "user_name": user_name,
            "category_name": name,
            "category_id": first_id.get(name) or 0,
            "type": tx_type,
            "usage_count": 0,
        }
        for name in names
        if name not in used_names
    ]
    return used + placeholders


def category_from_row(row: dict) -> CatalogItem:
    return CatalogItem(
        id=str(row.get("category_id") or row.get("id") or ""),
        name=str(row.get("category_name") or row.get("name") or ""),
        usage_count=_int(row.get("usage_count")),
    )


def rank_suggestions(rows: list[dict], name_field: str, user_name: str,
                     category_id: str | None, limit: int) -> list[Suggestion]:
    """Свои подсказки пользователя впереди, затем подсказки сообщества; внутри групп по usage desc."""
    def matches(row: dict) -> bool:
        if category_id is None or str(category_id) == "":
            return True
        return str(row.get("category_id") or "") == str(category_id)

    picked = [r for r in rows if matches(r) and r.get(name_field)]
    own = [r for r in picked if r.get("user_name") == user_name]
    community = [r for r in picked if r.get("user_name") != user_name]
    by_usage = lambda r: -_int(r.get("usage_count"))
    ordered = sorted(own, key=by_usage) + sorted(community, key=by_usage)

    id_field = name_field.replace("_name", "_id")
    return [
        Suggestion(
            id=str(r.get(id_field) or ""),
            name=str(r.get(name_field)),
            usage_count=_int(r.get("usage_count")),
            user_name=str(r.get("user_name") or ""),
            category_id=str(r.get("category_id") or ""),
        )
        for r in ordered[:limit]
    ]


class CatalogService:
    """Доступ к спискам каталога с кэшированием.

    Args:
        api: HTTP-клиент API.
        durable: Долговременный уровень кэша (общий для всех пространств имён) или None.
    """

    def __init__(self, api: LedgerApiClient, durable: CacheStore | None = None):
        self._api = api
        self.accounts_cache = TwoTierCache("accounts", settings.ACCOUNTS_CACHE_TTL, durable)
        self.categories_cache = TwoTierCache("categories", settings.CATEGORIES_CACHE_TTL, durable)
        self.suggestions_cache = TwoTierCache("suggestions", settings.SUGGESTIONS_CACHE_TTL, durable)
        self.balance_cache = TwoTierCache("balance", settings.BALANCE_CACHE_TTL, durable)

    @property
    def is_configured(self) -> bool:
        return self._api.is_configured

    def _require_configured(self) -> None:
        if not self._api.is_configured:
            raise ServiceNotConfigured()

    async def get_accounts_usage(self, user_name: str | None) -> list[CatalogItem]:
        self._require_configured()
        key = make_key(user_name)
        cached = await self.accounts_cache.get(key)
        if cached is not None:
            return [CatalogItem.from_dict(x) for x in cached]

        params = {"user_name": user_name} if user_name else None
        rows: list[dict] | None = None
        last_error: BudgetFlowError | None = None
        for path in ACCOUNT_USAGE_PATHS:
            try:
                rows = normalize_account_rows(await self._api.get(path, params=params))
                break
            except (ApiError, InvalidResponse) as e:
                last_error = e
                logger.warning(f"[CATALOG] Account usage endpoint {path} failed, trying fallback: {e}")
        if rows is None:
            assert last_error is not None
            raise last_error

        accounts = [account_from_row(r) for r in rows]
        accounts = [a for a in accounts if a.id]
        if user_name:
            accounts = sort_by_usage(accounts)
        await self.accounts_cache.set(key, [asdict(a) for a in accounts])
        logger.info(f"[CATALOG] {len(accounts)} accounts for {user_name or 'all'}")
        return accounts

    async def get_categories_usage(self, user_name: str | None, tx_type: str | None = None) -> list[CatalogItem]:
        self._require_configured()
        key = make_key(user_name, tx_type)
        cached = await self.categories_cache.get(key)
        if cached is not None:
            return [CatalogItem.from_dict(x) for x in cached]

        params = {}
        if user_name:
            params["user_name"] = user_name
        if tx_type:
            params["type"] = tx_type
        data = await self._api.get(CATEGORIES_USAGE_PATH, params=params or None)
        rows = categories_for_user(_rows(data, "get_categories_usage"), user_name or "", tx_type)
        categories = [c for c in (category_from_row(r) for r in rows) if c.name]
        if user_name:
            categories = sort_by_usage(categories)
        await self.categories_cache.set(key, [asdict(c) for c in categories])
        return categories

    async def get_destination_suggestions(self, user_name: str, category_id: str | None) -> list[Suggestion]:
        return await self._suggestions(
            "destination", DESTINATION_USAGE_PATH, "get_destination_name_usage", "destination_name",
            user_name, category_id, params=None,
        )

    async def get_source_suggestions(self, user_name: str, category_id: str | None) -> list[Suggestion]:
        params = {"user_name": user_name} if user_name else {}
        if category_id:
            params["category_id"] = str(category_id)
        return await self._suggestions(
            "source", SOURCE_USAGE_PATH, "get_source_name_usage", "source_name",
            user_name, category_id, params=params or None,
        )

    async def _suggestions(self, kind: str, path: str, list_key: str, name_field: str,
                           user_name: str, category_id: str | None, params: dict | None) -> list[Suggestion]:
        self._require_configured()
        key = make_key(kind, user_name, category_id)
        cached = await self.suggestions_cache.get(key)
        if cached is not None:
            return [Suggestion.from_dict(x) for x in cached]

        data = await self._api.get(path, params=params)
        suggestions = rank_suggestions(
            _rows(data, list_key), name_field, user_name, category_id, settings.SUGGESTIONS_LIMIT,
        )
        await self.suggestions_cache.set(key, [asdict(s) for s in suggestions])
        return suggestions

    async def get_current_balance(self) -> float:
        self._require_configured()
        key = make_key("current")
        cached = await self.balance_cache.get(key)
        if cached is not None:
            return float(cached)
        data = await self._api.get(BALANCE_PATH)
        rows = _rows(data, "get_current_balance")
        balance = float(rows[0].get("balance_in_USD") or 0) if rows else 0.0
        await self.balance_cache.set(key, balance)
        return balance

    async def refresh_balance(self) -> float:
        await self.balance_cache.clear()
        return await self.get_current_balance()

    async def invalidate_after_submit(self) -> None:
        """Сброс кэшей, которые устаревают после записи транзакции."""
        await self.balance_cache.clear()
        await self.accounts_cache.clear()
        await self.suggestions_cache.clear()

    async def check_connection(self) -> tuple[bool, str]:
        if not self._api.is_configured:
            return False, "Sync API key not configured"
        try:
            await self._api.get(ACCOUNT_USAGE_PATHS[1])
        except BudgetFlowError as e:
            return False, str(e)
        return True, "Connected to Sync API"
