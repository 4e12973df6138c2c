"""
Отправка транзакций в леджер и работа со списком транзакций.

Путь отправки:
    проверка настроек -> строгая валидация черновика -> конвертация в валюту
    расчётов (если нужна) -> POST /api/v1/transactions -> проверка записи по
    external_id -> сброс зависимых кэшей.

Сервис никогда не бросает: любая ошибка превращается в `SubmissionResult`
с понятным статусом. Повтор отправки всегда инициирует пользователь.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Optional

import httpx

from budgetflow.config import settings
from budgetflow.services.api_client import LedgerApiClient
from budgetflow.services.cache import CacheStore, TwoTierCache, make_key
from budgetflow.services.catalog import CatalogService
from budgetflow.services.errors import ApiError, BudgetFlowError, InvalidResponse, NetworkError, ServiceNotConfigured
from budgetflow.services.rates.exchange import ExchangeRateClient
from budgetflow.states.context import TransactionDraft, TransactionRow, TransactionsPage, TransferDraft
from budgetflow.states.guards import validate_for_submission, validate_transfer_for_submission
from budgetflow.utils.background import fire_and_forget
from budgetflow.utils.formatting import (
    clean_category_name,
    extract_budget_name,
    normalize_amount_input,
    parse_amount,
    parse_fee,
    parse_iso_date,
    remove_null_values,
    to_iso,
)

logger = logging.getLogger(__name__)

TRANSACTIONS_PATH = "/api/v1/transactions"
SEARCH_PATH = "/api/v1/search/transactions"
VERIFICATION_FAILED = "Transaction creation succeeded but verification failed"


class SubmissionStatus(str, Enum):
    SUCCESS = "success"
    VALIDATION_ERROR = "validation_error"
    NOT_CONFIGURED = "not_configured"
    NETWORK_ERROR = "network_error"
    HTTP_ERROR = "http_error"
    VERIFICATION_FAILED = "verification_failed"


@dataclass
class SubmissionResult:
    """Итог отправки.

    Атрибуты:
        status (SubmissionStatus): Класс результата.
        message (str): Текст для пользователя.
        external_id (str | None): Ключ идемпотентности отправленной записи.
        http_status (int | None), status_text (str | None), body (str | None):
            Диагностика ответа API при HTTP-ошибке.
        transaction_id (str | None): id записи в леджере.
        warnings (list[str]): Мягкие предупреждения (не записанные комиссии перевода).
        errors (dict[str, str]): Ошибки валидации по полям.
    """
    status: SubmissionStatus
    message: str = ""
    external_id: Optional[str] = None
    http_status: Optional[int] = None
    status_text: Optional[str] = None
    body: Optional[str] = None
    transaction_id: Optional[str] = None
    warnings: list[str] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == SubmissionStatus.SUCCESS


def generate_external_id(tx_type: str, username: str, now: Optional[float] = None) -> str:
    """Ключ идемпотентности `tg-{type}-{username}-{unix_ts}`."""
    ts = int(now if now is not None else time.time())
    return f"tg-{tx_type}-{username}-{ts}"


def build_notes(base: str, comment: str = "", username: str = "") -> str:
    notes = base
    if comment:
        notes += f" Comment: {comment}"
    if username:
        notes += f" Added by {username}"
    return notes


def wrap_transactions(*payloads: dict) -> dict:
    """Тело POST /api/v1/transactions."""
    return {
        "error_if_duplicate_hash": False,
        "apply_rules": False,
        "fire_webhooks": False,
        "transactions": [remove_null_values(p) for p in payloads],
    }


def _is_foreign(currency: str, settlement: str) -> bool:
    return bool(currency) and currency.upper() != settlement.upper()


def build_withdrawal_payload(
    draft: TransactionDraft,
    external_id: str,
    date_iso: str,
    settlement: str,
    converted: Optional[Decimal] = None,
) -> dict:
    """Расход. Поля foreign_* есть только для счёта в валюте, отличной от валюты расчётов."""
    amount = normalize_amount_input(draft.amount)
    currency = draft.account.currency.upper()
    category = clean_category_name(draft.category.name)
    foreign = _is_foreign(currency, settlement) and converted is not None
    base = f"Withdrawal {category} from {draft.account.name} {amount} {currency}"
    description = f"{base} ({converted} {settlement})" if foreign else base
    payload = {
        "type": "withdrawal",
        "date": date_iso,
        "amount": amount,
        "description": description,
        "currency_code": currency,
        "category_name": category,
        "source_name": draft.account.name,
        "destination_name": draft.counterparty.name or "Withdrawal",
        "notes": build_notes(description, draft.notes, draft.user_name),
        "tags": [draft.user_name],
        "external_id": external_id,
        "reconciled": False,
        "budget_name": draft.category.budget_name or extract_budget_name(draft.category.name) or None,
        "foreign_currency_code": settlement if foreign else None,
        "foreign_amount": normalize_amount_input(converted) if foreign else None,
    }
    return wrap_transactions(payload)


def build_deposit_payload(
    draft: TransactionDraft,
    external_id: str,
    date_iso: str,
    settlement: str,
    converted: Optional[Decimal] = None,
) -> dict:
    amount = normalize_amount_input(draft.amount)
    currency = draft.account.currency.upper()
    category = clean_category_name(draft.category.name)
    source = draft.counterparty.name or "External Source"
    foreign = _is_foreign(currency, settlement) and converted is not None
    base = f"Deposit {category} from {source} to {draft.account.name} {amount} {currency}"
    description = f"{base} ({converted} {settlement})" if foreign else base
    payload = {
        "type": "deposit",
        "date": date_iso,
        "amount": amount,
        "description": description,
        "currency_code": currency,
        "category_name": category,
        "source_name": source,
        "destination_name": draft.account.name,
        "notes": build_notes(description, draft.notes, draft.user_name),
        "tags": [draft.user_name],
        "external_id": external_id,
        "reconciled": False,
        "foreign_currency_code": settlement if foreign else None,
        "foreign_amount": normalize_amount_input(converted) if foreign else None,
    }
    return wrap_transactions(payload)


def build_transfer_description(transfer: TransferDraft) -> str:
    amount = normalize_amount_input(transfer.source_amount)
    currency = transfer.source.currency.upper()
    desc = f"Transfer from {transfer.source.name} to {transfer.destination.name} - {amount} {currency}"
    if transfer.notes:
        desc += f", Comment: {transfer.notes}"
    if (parse_fee(transfer.source_fee) or 0) > 0:
        desc += f", Exit fee: {normalize_amount_input(transfer.source_fee)} {currency}"
    if (parse_fee(transfer.destination_fee) or 0) > 0:
        desc += f", Entry fee: {normalize_amount_input(transfer.destination_fee)} {transfer.destination.currency.upper()}"
    return desc


def build_fee_payload(
    transfer: TransferDraft,
    fee_type: str,
    date_iso: str,
    now: Optional[float] = None,
) -> Optional[dict]:
    """Комиссия перевода отдельным расходом ('exit' со счёта-источника, 'entry' со счёта-получателя)."""
    if fee_type == "exit":
        fee, account, other, direction = transfer.source_fee, transfer.source, transfer.destination, "from"
    elif fee_type == "entry":
        fee, account, other, direction = transfer.destination_fee, transfer.destination, transfer.source, "to"
    else:
        raise ValueError(f"Unknown fee type: {fee_type}")
    value = parse_fee(fee)
    if value is None or value <= 0:
        return None
    payload = {
        "type": "withdrawal",
        "date": date_iso,
        "amount": normalize_amount_input(fee),
        "description": f"{fee_type.capitalize()} fee for transfer {direction} {account.name}",
        "currency_code": account.currency.upper(),
        "source_name": account.name,
        "destination_name": "Fee",
        "notes": f"{fee_type.capitalize()} fee for transfer {direction} {other.name}. Added by {transfer.user_name}",
        "tags": [transfer.user_name],
        "external_id": generate_external_id(f"transfer-{fee_type}-fee", transfer.user_name, now),
    }
    return wrap_transactions(payload)


def build_transfer_payloads(
    transfer: TransferDraft,
    external_id: str,
    date_iso: str,
    now: Optional[float] = None,
) -> tuple[dict, list[tuple[str, dict]]]:
    """(основной перевод, [(тип комиссии, тело), ...])."""
    source_currency = transfer.source.currency.upper()
    dest_currency = transfer.destination.currency.upper()
    amount = normalize_amount_input(transfer.source_amount)
    foreign = source_currency != dest_currency
    if foreign:
        base = (
            f"Transfer from {transfer.source.name} {amount} {source_currency} to "
            f"{transfer.destination.name} {normalize_amount_input(transfer.destination_amount)} {dest_currency}"
        )
    else:
        base = f"Transfer from {transfer.source.name} to {transfer.destination.name} {amount} {source_currency}"
    main = {
        "type": "transfer",
        "date": date_iso,
        "amount": amount,
        "description": build_transfer_description(transfer),
        "currency_code": source_currency,
        "source_name": transfer.source.name,
        "destination_name": transfer.destination.name,
        "notes": build_notes(base, transfer.notes, transfer.user_name),
        "tags": [transfer.user_name],
        "external_id": external_id,
        "foreign_amount": normalize_amount_input(transfer.destination_amount) if foreign else None,
        "foreign_currency_code": dest_currency if foreign else None,
    }
    fees = []
    for fee_type in ("exit", "entry"):
        payload = build_fee_payload(transfer, fee_type, date_iso, now)
        if payload is not None:
            fees.append((fee_type, payload))
    return wrap_transactions(main), fees


def _split(item: Any) -> Optional[dict]:
    if not isinstance(item, dict):
        return None
    splits = (item.get("attributes") or {}).get("transactions")
    if isinstance(splits, list) and splits and isinstance(splits[0], dict):
        return splits[0]
    return None


def transaction_row(item: dict) -> Optional[TransactionRow]:
    """Строка списка из элемента `data[]` ответа леджера."""
    split = _split(item)
    if split is None:
        return None
    tags = split.get("tags") or []
    return TransactionRow(
        id=str(item.get("id") or split.get("transaction_journal_id") or ""),
        type=str(split.get("type") or ""),
        date=str(split.get("date") or ""),
        amount=str(split.get("amount") or "0"),
        currency=str(split.get("currency_code") or ""),
        description=str(split.get("description") or ""),
        category_name=str(split.get("category_name") or ""),
        source_name=str(split.get("source_name") or ""),
        destination_name=str(split.get("destination_name") or ""),
        foreign_amount=split.get("foreign_amount"),
        foreign_currency=split.get("foreign_currency_code"),
        user_name=str(tags[0]) if tags else str((item.get("attributes") or {}).get("user") or ""),
    )


def _created_id(response: Any) -> Optional[str]:
    data = response.get("data") if isinstance(response, dict) else None
    if isinstance(data, list):
        data = data[0] if data else None
    if isinstance(data, dict) and data.get("id") is not None:
        return str(data["id"])
    return None


class TransactionService:
    """Запись транзакций и переводов в леджер.

    Args:
        api: HTTP-клиент API.
        catalog: Каталог, чьи кэши сбрасываются после записи.
        exchange: Клиент курсов для конвертации в валюту расчётов.
        durable: Долговременный уровень кэша списка транзакций.
        settlement: Валюта расчётов (по умолчанию из настроек).
        verify_attempts, verify_delay: Повторы проверки записи по external_id.
        debug_webhook_url: Куда зеркалировать отправленные тела (best-effort).
        clock: Источник unix-времени для external_id.
        webhook_transport: httpx-транспорт для зеркала (в тестах).
    """

    def __init__(
        self,
        api: LedgerApiClient,
        catalog: CatalogService,
        exchange: ExchangeRateClient,
        durable: CacheStore | None = None,
        settlement: str | None = None,
        verify_attempts: int | None = None,
        verify_delay: float | None = None,
        debug_webhook_url: str | None = None,
        clock: Callable[[], float] = time.time,
        webhook_transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._api = api
        self._catalog = catalog
        self._exchange = exchange
        self.settlement = (settlement or settings.SETTLEMENT_CURRENCY).upper()
        self._verify_attempts = verify_attempts if verify_attempts is not None else settings.VERIFY_ATTEMPTS
        self._verify_delay = verify_delay if verify_delay is not None else settings.VERIFY_DELAY
        self._debug_webhook_url = debug_webhook_url if debug_webhook_url is not None else settings.DEBUG_WEBHOOK_URL
        self._clock = clock
        self._webhook_transport = webhook_transport
        self.transactions_cache = TwoTierCache("transactions", settings.TRANSACTIONS_CACHE_TTL, durable)

    @property
    def is_configured(self) -> bool:
        return self._api.is_configured

    # --- отправка ---

    async def submit_transaction(self, kind: str, draft: TransactionDraft) -> SubmissionResult:
        """Расход или доход из черновика."""
        if not self._api.is_configured:
            return self._not_configured()
        errors = validate_for_submission(kind, draft)
        if errors:
            return self._invalid(errors)

        now = self._clock()
        external_id = generate_external_id(kind, draft.user_name, now)
        date_iso = self._date_iso(draft.date, now)
        try:
            converted = await self._converted_amount(draft)
            builder = build_withdrawal_payload if kind == "withdrawal" else build_deposit_payload
            body = builder(draft, external_id, date_iso, self.settlement, converted)
            result = await self._post_and_verify(body, external_id, kind)
        except BudgetFlowError as e:
            return self._failure(e, external_id, kind)
        if result.ok:
            await self._after_success()
        return result

    async def submit_transfer(self, transfer: TransferDraft) -> SubmissionResult:
        """Перевод и его комиссии. Комиссии пишутся после основного перевода,
        их ошибки попадают в `warnings` и перевод не откатывают."""
        if not self._api.is_configured:
            return self._not_configured()
        errors = validate_transfer_for_submission(transfer)
        if errors:
            return self._invalid(errors)

        now = self._clock()
        external_id = generate_external_id("transfer", transfer.user_name, now)
        date_iso = self._date_iso(transfer.date, now)
        main, fees = build_transfer_payloads(transfer, external_id, date_iso, now)
        try:
            result = await self._post_and_verify(main, external_id, "transfer")
        except BudgetFlowError as e:
            return self._failure(e, external_id, "transfer")
        if not result.ok:
            return result

        for fee_type, body in fees:
            try:
                await self._api.post(TRANSACTIONS_PATH, body)
                logger.info(f"[SUBMIT] {fee_type} fee recorded for {transfer.user_name}")
            except BudgetFlowError as e:
                logger.warning(f"[SUBMIT] {fee_type} fee for {external_id} failed: {e}")
                result.warnings.append(f"{fee_type.capitalize()} fee was not recorded: {e}")
        await self._after_success()
        return result

    async def _converted_amount(self, draft: TransactionDraft) -> Optional[Decimal]:
        if not _is_foreign(draft.account.currency, self.settlement):
            return None
        converted = parse_amount(draft.converted_amount)
        if converted is not None:
            return converted
        return await self._exchange.convert(parse_amount(draft.amount), draft.account.currency, self.settlement)

    async def _post_and_verify(self, body: dict, external_id: str, label: str) -> SubmissionResult:
        if self._debug_webhook_url:
            fire_and_forget(self._mirror(body), name="debug-webhook")
        logger.info(f"[SUBMIT] Sending {label} {external_id}")
        response = await self._api.post(TRANSACTIONS_PATH, body)
        transaction_id = _created_id(response)

        verified_id = await self.verify(external_id)
        if verified_id is None:
            logger.error(f"[SUBMIT] {label} {external_id} not found after creation")
            return SubmissionResult(
                SubmissionStatus.VERIFICATION_FAILED,
                VERIFICATION_FAILED,
                external_id=external_id,
                transaction_id=transaction_id,
            )
        logger.info(f"[SUBMIT] {label} {external_id} verified")
        return SubmissionResult(
            SubmissionStatus.SUCCESS,
            "Transaction saved",
            external_id=external_id,
            transaction_id=transaction_id or verified_id,
        )

    async def verify(self, external_id: str) -> Optional[str]:
        """id записи с данным external_id или None, если её так и не нашли."""
        attempts = max(1, self._verify_attempts)
        for attempt in range(1, attempts + 1):
            try:
                data = await self._api.get(SEARCH_PATH, params={"query": f'external_id_is:"{external_id}"'})
            except BudgetFlowError as e:
                logger.warning(f"[SUBMIT] Verification attempt {attempt}/{attempts} failed: {e}")
            else:
                for item in (data.get("data") or []) if isinstance(data, dict) else []:
                    split = _split(item)
                    if split is not None and split.get("external_id") == external_id:
                        return str(item.get("id") or "")
            if attempt < attempts:
                await asyncio.sleep(self._verify_delay)
        return None

    async def _after_success(self) -> None:
        await self._catalog.invalidate_after_submit()
        await self.transactions_cache.clear()
        fire_and_forget(self._catalog.refresh_balance(), name="balance-refresh")

    async def _mirror(self, body: dict) -> None:
        async with httpx.AsyncClient(timeout=10, transport=self._webhook_transport) as client:
            resp = await client.post(self._debug_webhook_url, json=body)
            resp.raise_for_status()

    def _date_iso(self, value: str, now: float) -> str:
        dt = parse_iso_date(value) or datetime.fromtimestamp(now, tz=timezone.utc)
        return to_iso(dt)

    @staticmethod
    def _not_configured() -> SubmissionResult:
        return SubmissionResult(SubmissionStatus.NOT_CONFIGURED, "Sync API not configured")

    @staticmethod
    def _invalid(errors: dict[str, str]) -> SubmissionResult:
        return SubmissionResult(SubmissionStatus.VALIDATION_ERROR, "; ".join(errors.values()), errors=dict(errors))

    @staticmethod
    def _failure(e: BudgetFlowError, external_id: Optional[str], label: str) -> SubmissionResult:
        if isinstance(e, ServiceNotConfigured):
            return SubmissionResult(SubmissionStatus.NOT_CONFIGURED, str(e), external_id=external_id)
        if isinstance(e, ApiError):
            logger.error(f"[SUBMIT] {label} {external_id} rejected: {e.status} {e.status_text}")
            return SubmissionResult(
                SubmissionStatus.HTTP_ERROR,
                str(e),
                external_id=external_id,
                http_status=e.status,
                status_text=e.status_text,
                body=e.body,
            )
        if isinstance(e, NetworkError):
            logger.error(f"[SUBMIT] {label} {external_id} network failure: {e}")
            return SubmissionResult(SubmissionStatus.NETWORK_ERROR, str(e), external_id=external_id)
        logger.error(f"[SUBMIT] {label} {external_id} failed: {e}")
        return SubmissionResult(SubmissionStatus.HTTP_ERROR, str(e), external_id=external_id)

    # --- список, деталь, правка, удаление ---

    async def list_transactions(self, page: int = 1, limit: int = 10) -> TransactionsPage:
        if not self._api.is_configured:
            raise ServiceNotConfigured()
        key = make_key(page, limit)
        cached = await self.transactions_cache.get(key)
        if cached is not None:
            return TransactionsPage(
                items=tuple(TransactionRow.from_dict(x) for x in cached["items"]),
                page=cached["page"],
                total_pages=cached["total_pages"],
            )

        data = await self._api.get(TRANSACTIONS_PATH, params={"page": page, "limit": limit})
        if not isinstance(data, dict) or not isinstance(data.get("data"), list):
            raise InvalidResponse("Expected data[] in transactions response")
        rows = [row for row in (transaction_row(item) for item in data["data"]) if row is not None]
        pagination = (data.get("meta") or {}).get("pagination") or {}
        result = TransactionsPage(
            items=tuple(rows),
            page=int(pagination.get("current_page") or page),
            total_pages=int(pagination.get("total_pages") or 0),
        )
        await self.transactions_cache.set(key, {
            "items": [asdict(r) for r in result.items],
            "page": result.page,
            "total_pages": result.total_pages,
        })
        return result

    async def get_transaction(self, transaction_id: str) -> dict:
        """Сырые данные первой части транзакции плюс её id."""
        if not self._api.is_configured:
            raise ServiceNotConfigured()
        data = await self._api.get(f"{TRANSACTIONS_PATH}/{transaction_id}")
        item = data.get("data") if isinstance(data, dict) else None
        if isinstance(item, list):
            item = item[0] if item else None
        split = _split(item)
        if split is None:
            raise InvalidResponse("Transaction not found or invalid response structure")
        return {**split, "id": str(item.get("id") or transaction_id)}

    async def update_transaction(self, transaction_id: str, changes: dict) -> SubmissionResult:
        if not self._api.is_configured:
            return self._not_configured()
        cleaned = remove_null_values(dict(changes))
        if "amount" in cleaned:
            if parse_amount(cleaned["amount"]) is None:
                return self._invalid({"amount": "Amount must be a positive number"})
            cleaned["amount"] = normalize_amount_input(cleaned["amount"])
        body = {"apply_rules": False, "fire_webhooks": False, "transactions": [cleaned]}
        try:
            await self._api.put(f"{TRANSACTIONS_PATH}/{transaction_id}", body)
        except BudgetFlowError as e:
            return self._failure(e, None, f"update {transaction_id}")
        await self._after_success()
        return SubmissionResult(SubmissionStatus.SUCCESS, "Transaction updated", transaction_id=str(transaction_id))

    async def delete_transaction(self, transaction_id: str) -> SubmissionResult:
        if not self._api.is_configured:
            return self._not_configured()
        try:
            await self._api.delete(f"{TRANSACTIONS_PATH}/{transaction_id}")
        except BudgetFlowError as e:
            return self._failure(e, None, f"delete {transaction_id}")
        await self._after_success()
        return SubmissionResult(SubmissionStatus.SUCCESS, "Transaction deleted", transaction_id=str(transaction_id))

    async def check_connection(self) -> tuple[bool, str]:
        if not self._api.is_configured:
            return False, "Ledger API not configured"
        try:
            await self._api.get(TRANSACTIONS_PATH, params={"limit": 1})
        except BudgetFlowError as e:
            return False, str(e)
        return True, "Connected to Ledger API"
