"""
Валидаторы страниц и guard-ы переходов.

Валидатор страницы возвращает текст ошибки для инлайн-подсказки или None.
Guard — это "валидатор вернул None": он только разрешает или запрещает
переход вперёд и никогда не бросает исключений, даже на битом контексте.
Более строгая проверка всей транзакции перед отправкой —
`validate_for_submission` / `validate_transfer_for_submission`.
"""
from __future__ import annotations

import functools
import logging
from typing import Any, Callable, Optional

from budgetflow.states.context import AccountRef, CategoryRef, Counterparty, FlowContext, TransactionDraft, TransferDraft
from budgetflow.utils.formatting import MAX_AMOUNT, parse_amount, parse_fee, parse_iso_date

logger = logging.getLogger(__name__)

Guard = Callable[[FlowContext], bool]


def _filled(value: Any) -> bool:
    return value is not None and str(value).strip() != ""


def _filled_id(value: Any) -> bool:
    return _filled(value) and str(value).strip() != "0"


# --- валидаторы страниц ---

def validate_account_page(account: Optional[AccountRef]) -> Optional[str]:
    if account is None or not _filled(account.id):
        return "Please select an account"
    if not _filled(account.currency):
        return "Selected account has no currency"
    return None


def validate_amount_page(amount: Any) -> Optional[str]:
    if not _filled(amount):
        return "Please enter an amount"
    value = parse_amount(amount)
    if value is None:
        return "Amount must be a positive number"
    if value > MAX_AMOUNT:
        return "Amount is too large"
    return None


def validate_category_page(category: Optional[CategoryRef]) -> Optional[str]:
    if category is None or not _filled_id(category.id) or not _filled(category.name):
        return "Please select a category"
    return None


def validate_counterparty_page(counterparty: Optional[Counterparty], kind: str = "withdrawal") -> Optional[str]:
    if counterparty is None or not _filled(counterparty.name):
        return "Please enter a source" if kind == "deposit" else "Please enter a destination"
    return None


def validate_transfer_source_page(transfer: Optional[TransferDraft]) -> Optional[str]:
    if transfer is None:
        return "Please select a source account"
    if validate_account_page(transfer.source) is not None:
        return "Please select a source account"
    return None


def validate_transfer_dest_page(transfer: Optional[TransferDraft]) -> Optional[str]:
    if transfer is None or validate_account_page(transfer.destination) is not None:
        return "Please select a destination account"
    return None


def validate_transfer_amount_page(transfer: Optional[TransferDraft]) -> Optional[str]:
    if transfer is None:
        return "Please enter both amounts"
    if parse_amount(transfer.source_amount) is None:
        return "Source amount must be a positive number"
    if parse_amount(transfer.destination_amount) is None:
        return "Destination amount must be a positive number"
    if max(parse_amount(transfer.source_amount), parse_amount(transfer.destination_amount)) > MAX_AMOUNT:
        return "Amount is too large"
    return None


def validate_transfer_fees_page(transfer: Optional[TransferDraft]) -> Optional[str]:
    if transfer is None:
        return "Fees must be zero or positive numbers"
    if parse_fee(transfer.source_fee) is None or parse_fee(transfer.destination_fee) is None:
        return "Fees must be zero or positive numbers"
    return None


# --- guard-ы ---

def _total(fn: Callable[[FlowContext], bool]) -> Guard:
    """Любая ошибка на битом контексте — это просто "нельзя"."""
    @functools.wraps(fn)
    def wrapper(ctx: FlowContext) -> bool:
        try:
            ok = bool(fn(ctx))
        except (AttributeError, TypeError, ValueError) as e:
            logger.debug(f"[GUARD] {fn.__name__} rejected malformed context: {e}")
            return False
        if not ok:
            logger.debug(f"[GUARD] {fn.__name__} blocked transition")
        return ok
    return wrapper


@_total
def can_proceed_from_accounts(ctx: FlowContext) -> bool:
    return validate_account_page(ctx.draft.account) is None


@_total
def can_proceed_from_amount(ctx: FlowContext) -> bool:
    return validate_amount_page(ctx.draft.amount) is None


@_total
def can_proceed_from_category(ctx: FlowContext) -> bool:
    return validate_category_page(ctx.draft.category) is None


@_total
def can_proceed_from_counterparty(ctx: FlowContext) -> bool:
    return validate_counterparty_page(ctx.draft.counterparty, ctx.draft.kind) is None


@_total
def can_proceed_from_transfer_source(ctx: FlowContext) -> bool:
    return validate_transfer_source_page(ctx.transfer) is None


@_total
def can_proceed_from_transfer_dest(ctx: FlowContext) -> bool:
    return validate_transfer_dest_page(ctx.transfer) is None


@_total
def can_proceed_from_transfer_amount(ctx: FlowContext) -> bool:
    return validate_transfer_amount_page(ctx.transfer) is None


@_total
def can_proceed_from_transfer_fees(ctx: FlowContext) -> bool:
    return validate_transfer_fees_page(ctx.transfer) is None


@_total
def has_transaction_detail(ctx: FlowContext) -> bool:
    return _filled(ctx.selected.id) and ctx.selected.raw is not None


@_total
def can_load_more_transactions(ctx: FlowContext) -> bool:
    return ctx.transactions.has_more and not ctx.ui.transactions.loading


# --- проверка перед отправкой ---

def validate_for_submission(kind: str, draft: TransactionDraft) -> dict[str, str]:
    """Все ошибки черновика расхода/дохода по полям; пустой словарь — можно отправлять."""
    errors: dict[str, str] = {}
    if kind not in ("withdrawal", "deposit"):
        errors["kind"] = f"Unsupported transaction type: {kind}"
        return errors
    if not _filled(draft.user_name):
        errors["user_name"] = "User name is required"
    msg = validate_account_page(draft.account)
    if msg:
        errors["account"] = msg
    msg = validate_amount_page(draft.amount)
    if msg:
        errors["amount"] = msg
    msg = validate_category_page(draft.category)
    if msg:
        errors["category"] = msg
    msg = validate_counterparty_page(draft.counterparty, kind)
    if msg:
        errors["counterparty"] = msg
    if _filled(draft.date) and parse_iso_date(draft.date) is None:
        errors["date"] = "Date must be ISO-8601"
    if _filled(draft.converted_amount) and parse_amount(draft.converted_amount) is None:
        errors["converted_amount"] = "Converted amount must be a positive number"
    return errors


def validate_transfer_for_submission(transfer: TransferDraft) -> dict[str, str]:
    errors: dict[str, str] = {}
    if not _filled(transfer.user_name):
        errors["user_name"] = "User name is required"
    msg = validate_transfer_source_page(transfer)
    if msg:
        errors["source"] = msg
    msg = validate_transfer_dest_page(transfer)
    if msg:
        errors["destination"] = msg
    elif str(transfer.source.id) == str(transfer.destination.id):
        errors["destination"] = "Destination must differ from source"
    msg = validate_transfer_amount_page(transfer)
    if msg:
        errors["amount"] = msg
    msg = validate_transfer_fees_page(transfer)
    if msg:
        errors["fees"] = msg
    if _filled(transfer.date) and parse_iso_date(transfer.date) is None:
        errors["date"] = "Date must be ISO-8601"
    return errors
