"""
Акторы машины флоу: асинхронные функции `(input) -> output`.

Каждый актор вызывается один раз на вход в состояние и сам ничего не кэширует:
кэш живёт в сервисах (`CatalogService`, `ExchangeRateClient`,
`TransactionService`), поэтому акторы можно вызывать сколько угодно.
Ошибки сервисов не перехватываются: интерпретатор превращает их в `ActorError`.
"""
from __future__ import annotations

from typing import Any, Awaitable, Callable, Mapping

from budgetflow.services.catalog import CatalogService
from budgetflow.services.profile import ProfileService, build_identity
from budgetflow.services.rates.exchange import ExchangeRateClient
from budgetflow.services.transactions import TransactionService
from budgetflow.states.context import CatalogItem, ProfileUpdate, Suggestion, TransactionsPage, UserIdentity


class FlowActors:
    def __init__(
        self,
        catalog: CatalogService,
        profiles: ProfileService,
        exchange: ExchangeRateClient,
        transactions: TransactionService,
    ):
        self._catalog = catalog
        self._profiles = profiles
        self._exchange = exchange
        self._transactions = transactions

    async def init_user(self, data: Mapping[str, Any]) -> UserIdentity:
        return build_identity(data.get("host_user"))

    async def profile(self, data: Mapping[str, Any]) -> ProfileUpdate:
        return await self._profiles.fetch_profile(int(data["user_id"]))

    async def accounts(self, data: Mapping[str, Any]) -> list[CatalogItem]:
        return await self._catalog.get_accounts_usage(data.get("user_name"))

    async def categories(self, data: Mapping[str, Any]) -> list[CatalogItem]:
        return await self._catalog.get_categories_usage(data.get("user_name"), data.get("type"))

    async def destination_suggestions(self, data: Mapping[str, Any]) -> list[Suggestion]:
        return await self._catalog.get_destination_suggestions(data.get("user_name") or "", data.get("category_id"))

    async def source_suggestions(self, data: Mapping[str, Any]) -> list[Suggestion]:
        return await self._catalog.get_source_suggestions(data.get("user_name") or "", data.get("category_id"))

    async def conversion_rate(self, data: Mapping[str, Any]) -> float:
        return await self._exchange.get_rate(data["from"], data["to"])

    async def transfer_rate(self, data: Mapping[str, Any]) -> float:
        return await self._exchange.get_rate(data["from"], data["to"])

    async def transactions(self, data: Mapping[str, Any]) -> TransactionsPage:
        return await self._transactions.list_transactions(int(data.get("page") or 1))

    async def transaction_detail(self, data: Mapping[str, Any]) -> dict:
        return await self._transactions.get_transaction(str(data["id"]))

    def as_mapping(self) -> dict[str, Callable[[Mapping[str, Any]], Awaitable[Any]]]:
        """Реестр для `FlowInterpreter`."""
        return {
            "init_user": self.init_user,
            "profile": self.profile,
            "accounts": self.accounts,
            "categories": self.categories,
            "destination_suggestions": self.destination_suggestions,
            "source_suggestions": self.source_suggestions,
            "conversion_rate": self.conversion_rate,
            "transfer_rate": self.transfer_rate,
            "transactions": self.transactions,
            "transaction_detail": self.transaction_detail,
        }
