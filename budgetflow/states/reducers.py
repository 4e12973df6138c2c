"""
Редьюсеры контекста: именованные чистые функции `(context, event) -> context`.

Это единственное место, где меняется контекст машины. Машина
(`states/machine.py`) только решает, какие из них применить.
"""
from __future__ import annotations

from dataclasses import replace
from typing import Any, Callable

from budgetflow.states.context import (
    GUEST,
    SERVICE_STATUSES,
    AccountRef,
    CategoryRef,
    Counterparty,
    FlowContext,
    ProfileUpdate,
    ResourceState,
    SelectedTransaction,
    ServiceStatus,
    TransactionDraft,
    TransactionsPage,
    TransferDraft,
)
from budgetflow.states import events as ev
from budgetflow.states import guards
from budgetflow.states.screens import Screen
from budgetflow.utils.formatting import apply_rate, extract_budget_name, parse_amount

Reducer = Callable[[FlowContext, Any], FlowContext]


def _draft(ctx: FlowContext, **changes) -> FlowContext:
    return replace(ctx, draft=replace(ctx.draft, **changes))


def _transfer(ctx: FlowContext, **changes) -> FlowContext:
    return replace(ctx, transfer=replace(ctx.transfer, **changes))


def _ui(ctx: FlowContext, **changes) -> FlowContext:
    return replace(ctx, ui=replace(ctx.ui, **changes))


def _without(errors, key: str) -> dict:
    return {k: v for k, v in errors.items() if k != key}


def _converted(amount: str, rate: float | None) -> str:
    value = parse_amount(amount)
    if rate is None or value is None:
        return ""
    converted = apply_rate(value, rate)
    return "" if converted is None else str(converted)


def _same_currency(a: str, b: str) -> bool:
    return (a or "").upper() == (b or "").upper()


# --- старт и сброс флоу ---

def start_withdrawal_flow(ctx: FlowContext, event=None) -> FlowContext:
    if ctx.draft.kind == "withdrawal":
        return ctx
    return replace(ctx, draft=TransactionDraft(kind="withdrawal", user_name=ctx.user.username))


def start_deposit_flow(ctx: FlowContext, event=None) -> FlowContext:
    if ctx.draft.kind == "deposit":
        return ctx
    return replace(ctx, draft=TransactionDraft(kind="deposit", user_name=ctx.user.username))


def start_transfer_flow(ctx: FlowContext, event=None) -> FlowContext:
    if ctx.transfer.user_name:
        return ctx
    return replace(ctx, transfer=TransferDraft(user_name=ctx.user.username))


def reset_drafts(ctx: FlowContext, event=None) -> FlowContext:
    """Черновики к значениям по умолчанию: выход домой, отмена, завершение."""
    return replace(ctx, draft=TransactionDraft(), transfer=TransferDraft(), selected=SelectedTransaction())


# --- черновик расхода/дохода ---

def assign_account(ctx: FlowContext, event: ev.UpdateAccount) -> FlowContext:
    account = AccountRef(name=event.name or "", id=str(event.id or ""), currency=(event.currency or "").upper())
    draft = ctx.draft
    errors = _without(draft.validation_errors, "account")
    if account.id == draft.account.id:
        # повторный выбор того же счёта не трогает введённую сумму
        return _draft(ctx, account=account, validation_errors=errors)
    return _draft(
        ctx,
        account=account,
        amount="",
        converted_amount="",
        conversion_rate=None,
        conversion_error=None,
        validation_errors=errors,
    )


def assign_amount(ctx: FlowContext, event: ev.UpdateAmount) -> FlowContext:
    amount = event.amount if event.amount is not None else ""
    return _draft(
        ctx,
        amount=amount,
        converted_amount=_converted(amount, ctx.draft.conversion_rate),
        validation_errors=_without(ctx.draft.validation_errors, "amount"),
    )


def assign_category(ctx: FlowContext, event: ev.UpdateCategory) -> FlowContext:
    category = CategoryRef(
        id=str(event.id if event.id is not None else ""),
        name=event.name or "",
        budget_name=event.budget_name or extract_budget_name(event.name or ""),
    )
    changes: dict[str, Any] = {
        "category": category,
        "validation_errors": _without(ctx.draft.validation_errors, "category"),
    }
    if category.id != ctx.draft.category.id:
        changes.update(suggestions=(), suggestions_error=None)
    return _draft(ctx, **changes)


def assign_counterparty(ctx: FlowContext, event: ev.UpdateCounterparty) -> FlowContext:
    return _draft(
        ctx,
        counterparty=Counterparty(id=str(event.id or ""), name=event.name or ""),
        validation_errors=_without(ctx.draft.validation_errors, "counterparty"),
    )


def assign_notes(ctx: FlowContext, event: ev.UpdateNotes) -> FlowContext:
    return _draft(ctx, notes=event.notes or "")


def assign_date(ctx: FlowContext, event: ev.UpdateDate) -> FlowContext:
    return _draft(ctx, date=event.date or "", validation_errors=_without(ctx.draft.validation_errors, "date"))


def set_submitting(ctx: FlowContext, event: ev.SetSubmitting) -> FlowContext:
    return _draft(ctx, is_submitting=bool(event.value))


def set_submit_message(ctx: FlowContext, event: ev.SetSubmitMessage) -> FlowContext:
    return _draft(ctx, submit_message=event.message)


# --- перевод ---

def _assign_transfer_account(ctx: FlowContext, field: str, event) -> FlowContext:
    account = AccountRef(name=event.name or "", id=str(event.id or ""), currency=(event.currency or "").upper())
    previous: AccountRef = getattr(ctx.transfer, field)
    if account.id == previous.id:
        return _transfer(ctx, **{field: account})
    return _transfer(
        ctx,
        **{field: account},
        source_amount="",
        destination_amount="",
        exchange_rate=None,
        conversion_error=None,
    )


def assign_transfer_source(ctx: FlowContext, event: ev.SetTransferSource) -> FlowContext:
    return _assign_transfer_account(ctx, "source", event)


def assign_transfer_dest(ctx: FlowContext, event: ev.SetTransferDest) -> FlowContext:
    return _assign_transfer_account(ctx, "destination", event)


def assign_transfer_source_amount(ctx: FlowContext, event: ev.UpdateTransferSourceAmount) -> FlowContext:
    transfer = ctx.transfer
    changes: dict[str, Any] = {"source_amount": event.amount or ""}
    if transfer.exchange_rate is not None and not transfer.same_currency:
        converted = _converted(event.amount or "", transfer.exchange_rate)
        if converted:
            changes["destination_amount"] = converted
    return _transfer(ctx, **changes)


def assign_transfer_dest_amount(ctx: FlowContext, event: ev.UpdateTransferDestAmount) -> FlowContext:
    return _transfer(ctx, destination_amount=event.amount or "")


def assign_transfer_rate(ctx: FlowContext, event: ev.UpdateTransferExchangeRate) -> FlowContext:
    rate = event.rate if event.rate and event.rate > 0 else None
    changes: dict[str, Any] = {"exchange_rate": rate}
    converted = _converted(ctx.transfer.source_amount, rate)
    if converted:
        changes["destination_amount"] = converted
    return _transfer(ctx, **changes)


def assign_transfer_source_fee(ctx: FlowContext, event: ev.UpdateTransferSourceFee) -> FlowContext:
    return _transfer(ctx, source_fee=event.fee if event.fee is not None else "0")


def assign_transfer_dest_fee(ctx: FlowContext, event: ev.UpdateTransferDestFee) -> FlowContext:
    return _transfer(ctx, destination_fee=event.fee if event.fee is not None else "0")


def assign_transfer_notes(ctx: FlowContext, event: ev.UpdateNotes) -> FlowContext:
    return _transfer(ctx, notes=event.notes or "")


def assign_transfer_date(ctx: FlowContext, event: ev.UpdateDate) -> FlowContext:
    return _transfer(ctx, date=event.date or "")


def set_transfer_submitting(ctx: FlowContext, event: ev.SetSubmitting) -> FlowContext:
    return _transfer(ctx, is_submitting=bool(event.value))


def set_transfer_submit_message(ctx: FlowContext, event: ev.SetSubmitMessage) -> FlowContext:
    return _transfer(ctx, submit_message=event.message)


# --- инлайн-валидация ---

def _page_errors(screen: Screen, ctx: FlowContext) -> tuple[str, dict[str, str]]:
    """(какой черновик, ошибки) для экрана."""
    draft, transfer = ctx.draft, ctx.transfer
    checks: dict[str, str | None] = {}
    target = "draft"
    if screen in (Screen.WITHDRAWAL_ACCOUNTS, Screen.DEPOSIT_ACCOUNTS):
        checks["account"] = guards.validate_account_page(draft.account)
    elif screen in (Screen.WITHDRAWAL_AMOUNT, Screen.DEPOSIT_AMOUNT):
        checks["amount"] = guards.validate_amount_page(draft.amount)
    elif screen in (Screen.WITHDRAWAL_CATEGORY, Screen.DEPOSIT_CATEGORY):
        checks["category"] = guards.validate_category_page(draft.category)
    elif screen in (Screen.WITHDRAWAL_NOTES, Screen.DEPOSIT_NOTES):
        checks["counterparty"] = guards.validate_counterparty_page(draft.counterparty, draft.kind)
    elif screen in (Screen.WITHDRAWAL_CONFIRM, Screen.DEPOSIT_CONFIRM):
        return target, guards.validate_for_submission(draft.kind, draft)
    else:
        target = "transfer"
        if screen == Screen.TRANSFER_SOURCE:
            checks["source"] = guards.validate_transfer_source_page(transfer)
        elif screen == Screen.TRANSFER_DEST:
            checks["destination"] = guards.validate_transfer_dest_page(transfer)
        elif screen == Screen.TRANSFER_AMOUNT:
            checks["amount"] = guards.validate_transfer_amount_page(transfer)
        elif screen == Screen.TRANSFER_FEES:
            checks["fees"] = guards.validate_transfer_fees_page(transfer)
        elif screen == Screen.TRANSFER_CONFIRM:
            return target, guards.validate_transfer_for_submission(transfer)
    return target, {k: v for k, v in checks.items() if v}


def validate_page(screen: Screen) -> Reducer:
    """Редьюсер VALIDATE_PAGE для конкретного экрана: пишет тексты ошибок в validation_errors."""
    def reducer(ctx: FlowContext, event=None) -> FlowContext:
        target, errors = _page_errors(screen, ctx)
        if target == "transfer":
            return _transfer(ctx, validation_errors=errors)
        return _draft(ctx, validation_errors=errors)
    reducer.__name__ = f"validate_page_{screen.name.lower()}"
    return reducer


# --- список транзакций ---

def select_transaction(ctx: FlowContext, event: ev.SelectTransaction) -> FlowContext:
    return replace(ctx, selected=SelectedTransaction(id=str(event.id)))


def begin_edit(ctx: FlowContext, event=None) -> FlowContext:
    return replace(ctx, selected=replace(ctx.selected, editing={}))


def merge_edit(ctx: FlowContext, event: ev.EditTransaction) -> FlowContext:
    editing = dict(ctx.selected.editing)
    editing.update(dict(event.changes or {}))
    return replace(ctx, selected=replace(ctx.selected, editing=editing))


def finish_edit(ctx: FlowContext, event=None) -> FlowContext:
    return replace(ctx, selected=replace(ctx.selected, raw=None, editing={}))


def clear_selection(ctx: FlowContext, event=None) -> FlowContext:
    return replace(ctx, selected=SelectedTransaction())


# --- входы в состояния с загрузкой ---

def mark_accounts_loading(ctx: FlowContext, event=None) -> FlowContext:
    return _ui(ctx, accounts=ResourceState(loading=True))


def mark_categories_loading(ctx: FlowContext, event=None) -> FlowContext:
    return _ui(ctx, categories=ResourceState(loading=True))


def mark_transactions_loading(ctx: FlowContext, event=None) -> FlowContext:
    return _ui(ctx, transactions=ResourceState(loading=True))


def mark_detail_loading(ctx: FlowContext, event=None) -> FlowContext:
    return _ui(ctx, detail=ResourceState(loading=True))


def mark_suggestions_loading(ctx: FlowContext, event=None) -> FlowContext:
    return _draft(ctx, is_loading_suggestions=True, suggestions_error=None)


def needs_conversion(ctx: FlowContext, settlement: str) -> bool:
    currency = ctx.draft.account.currency
    return bool(currency) and not _same_currency(currency, settlement)


def needs_transfer_rate(ctx: FlowContext) -> bool:
    transfer = ctx.transfer
    return bool(transfer.source.currency and transfer.destination.currency) and not transfer.same_currency


def begin_conversion(settlement: str) -> Reducer:
    def reducer(ctx: FlowContext, event=None) -> FlowContext:
        if needs_conversion(ctx, settlement):
            return _draft(ctx, is_loading_conversion=True, conversion_error=None)
        return _draft(ctx, is_loading_conversion=False, conversion_rate=None, converted_amount="",
                      conversion_error=None)
    reducer.__name__ = "begin_conversion"
    return reducer


def begin_transfer_conversion(ctx: FlowContext, event=None) -> FlowContext:
    if needs_transfer_rate(ctx):
        return _transfer(ctx, is_loading_conversion=True, conversion_error=None)
    # одна валюта: обе суммы вводятся вручную, курса нет
    return _transfer(ctx, is_loading_conversion=False, exchange_rate=None, conversion_error=None)


# --- результаты акторов ---

def assign_user(ctx: FlowContext, event: ev.ActorDone) -> FlowContext:
    return replace(ctx, user=event.output or GUEST)


def assign_guest(ctx: FlowContext, event=None) -> FlowContext:
    return replace(ctx, user=GUEST)


def merge_profile(ctx: FlowContext, event: ev.ActorDone) -> FlowContext:
    update = event.output
    if not isinstance(update, ProfileUpdate):
        return ctx
    changes = {}
    if update.photo_url:
        changes["photo_url"] = update.photo_url
    if update.bio:
        changes["bio"] = update.bio
    if not changes:
        return ctx
    return replace(ctx, user=replace(ctx.user, **changes))


def assign_accounts(ctx: FlowContext, event: ev.ActorDone) -> FlowContext:
    return _ui(replace(ctx, accounts=tuple(event.output or ())), accounts=ResourceState())


def accounts_failed(ctx: FlowContext, event: ev.ActorError) -> FlowContext:
    return _ui(ctx, accounts=ResourceState(error=event.error))


def assign_categories(ctx: FlowContext, event: ev.ActorDone) -> FlowContext:
    return _ui(replace(ctx, categories=tuple(event.output or ())), categories=ResourceState())


def categories_failed(ctx: FlowContext, event: ev.ActorError) -> FlowContext:
    return _ui(ctx, categories=ResourceState(error=event.error))


def assign_suggestions(ctx: FlowContext, event: ev.ActorDone) -> FlowContext:
    return _draft(ctx, suggestions=tuple(event.output or ()), is_loading_suggestions=False, suggestions_error=None)


def suggestions_failed(ctx: FlowContext, event: ev.ActorError) -> FlowContext:
    return _draft(ctx, is_loading_suggestions=False, suggestions_error=event.error)


def assign_conversion_rate(ctx: FlowContext, event: ev.ActorDone) -> FlowContext:
    rate = float(event.output)
    return _draft(
        ctx,
        conversion_rate=rate,
        converted_amount=_converted(ctx.draft.amount, rate),
        is_loading_conversion=False,
        conversion_error=None,
    )


def conversion_failed(ctx: FlowContext, event: ev.ActorError) -> FlowContext:
    return _draft(ctx, is_loading_conversion=False, conversion_error=event.error)


def assign_transfer_rate_result(ctx: FlowContext, event: ev.ActorDone) -> FlowContext:
    rate = float(event.output)
    changes: dict[str, Any] = {"exchange_rate": rate, "is_loading_conversion": False, "conversion_error": None}
    converted = _converted(ctx.transfer.source_amount, rate)
    if converted and not ctx.transfer.destination_amount:
        changes["destination_amount"] = converted
    return _transfer(ctx, **changes)


def transfer_rate_failed(ctx: FlowContext, event: ev.ActorError) -> FlowContext:
    return _transfer(ctx, is_loading_conversion=False, conversion_error=event.error)


def assign_transactions(ctx: FlowContext, event: ev.ActorDone) -> FlowContext:
    page: TransactionsPage = event.output
    if page.page > 1:
        page = replace(page, items=ctx.transactions.items + page.items)
    return _ui(replace(ctx, transactions=page), transactions=ResourceState())


def transactions_failed(ctx: FlowContext, event: ev.ActorError) -> FlowContext:
    return _ui(ctx, transactions=ResourceState(error=event.error))


def assign_transaction_detail(ctx: FlowContext, event: ev.ActorDone) -> FlowContext:
    return _ui(replace(ctx, selected=replace(ctx.selected, raw=event.output)), detail=ResourceState())


def detail_failed(ctx: FlowContext, event: ev.ActorError) -> FlowContext:
    return _ui(ctx, detail=ResourceState(error=event.error))


# --- статусы сервисов ---

def assign_service_status(ctx: FlowContext, event: ev.ServiceStatusChanged) -> FlowContext:
    if event.status not in SERVICE_STATUSES:
        return ctx
    services = dict(ctx.ui.services)
    current = services.get(event.service)
    name = current.name if current is not None else event.service
    services[event.service] = ServiceStatus(name=name, status=event.status, message=event.message or "")
    return _ui(ctx, services=services)


def mark_sync_not_configured(ctx: FlowContext, event: ev.ActorError) -> FlowContext:
    return assign_service_status(
        ctx, ev.ServiceStatusChanged(service="sync", status="not_configured", message=event.error)
    )
