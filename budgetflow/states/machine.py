"""
Иерархическая машина флоу.

Состояние — один лист `Screen` (путь через точку), поэтому в каждом регионе
активен ровно один экран. Переход описан таблицей
`(Screen, тип события) -> Transition(target, guard, actions, invokes)`.

Порядок поиска обработчика:
    1. точный `(экран, событие)`;
    2. обработчики региона флоу (`withdrawalFlow`, `transferFlow`, ...);
    3. обработчики всего `ready`;
    4. иначе событие игнорируется.

`transition(state, context, event)` — чистая функция: она ничего не вызывает
сама, а возвращает `Step` со списком эффектов (какие акторы запустить).
Запуском эффектов занимается `FlowInterpreter`.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional

from budgetflow.config import settings
from budgetflow.states import events as ev
from budgetflow.states import guards
from budgetflow.states import reducers as r
from budgetflow.states.context import FlowContext
from budgetflow.states.screens import ACCOUNT_PICKERS, Screen

logger = logging.getLogger(__name__)

InputFn = Callable[[FlowContext, Any], Mapping[str, Any]]
Condition = Callable[[FlowContext], bool]


@dataclass(frozen=True)
class Invoke:
    """Описание вызова актора.

    Атрибуты:
        actor (str): Имя актора в реестре интерпретатора.
        input (InputFn): Вход актора из (контекст, событие).
        when (Condition | None): Актор запускается, только если условие истинно.
        on_start (Reducer | None): Редьюсер в момент запуска (флаг загрузки).
        ready_scope (bool): Результат актуален для всего `ready`, а не только
            для экрана, на котором вызван.
    """
    actor: str
    input: InputFn
    when: Optional[Condition] = None
    on_start: Optional[r.Reducer] = None
    ready_scope: bool = False


@dataclass(frozen=True)
class Transition:
    target: Optional[Screen] = None
    guard: Optional[guards.Guard] = None
    actions: tuple[r.Reducer, ...] = ()
    invokes: tuple[Invoke, ...] = ()


@dataclass(frozen=True)
class InvokeEffect:
    """Актор к запуску. scope — экран-владелец результата, None — весь `ready`."""
    actor: str
    input: Mapping[str, Any]
    scope: Optional[Screen]


@dataclass(frozen=True)
class Step:
    state: Screen
    context: FlowContext
    effects: tuple[InvokeEffect, ...] = ()
    changed: bool = False
    entered: bool = False


@dataclass(frozen=True)
class _Entry:
    actions: tuple[r.Reducer, ...] = ()
    invokes: tuple[Invoke, ...] = ()


WITHDRAWAL_SCREENS = (
    Screen.WITHDRAWAL_ACCOUNTS,
    Screen.WITHDRAWAL_AMOUNT,
    Screen.WITHDRAWAL_CATEGORY,
    Screen.WITHDRAWAL_NOTES,
    Screen.WITHDRAWAL_CONFIRM,
)
DEPOSIT_SCREENS = (
    Screen.DEPOSIT_ACCOUNTS,
    Screen.DEPOSIT_AMOUNT,
    Screen.DEPOSIT_CATEGORY,
    Screen.DEPOSIT_NOTES,
    Screen.DEPOSIT_CONFIRM,
)
TRANSFER_SCREENS = (
    Screen.TRANSFER_SOURCE,
    Screen.TRANSFER_DEST,
    Screen.TRANSFER_AMOUNT,
    Screen.TRANSFER_FEES,
    Screen.TRANSFER_NOTES,
    Screen.TRANSFER_CONFIRM,
)

# назад: экран -> (куда, редьюсеры)
BACK_TABLE: dict[Screen, tuple[Screen, tuple[r.Reducer, ...]]] = {
    Screen.TRANSACTIONS_LIST: (Screen.HOME, ()),
    Screen.TRANSACTION_DETAIL: (Screen.TRANSACTIONS_LIST, (r.clear_selection,)),
    Screen.TRANSACTION_EDIT: (Screen.TRANSACTION_DETAIL, (r.finish_edit,)),
    Screen.DEBUG: (Screen.HOME, ()),
}
for _screens in (WITHDRAWAL_SCREENS, DEPOSIT_SCREENS, TRANSFER_SCREENS):
    BACK_TABLE[_screens[0]] = (Screen.HOME, (r.reset_drafts,))
    for _prev, _screen in zip(_screens, _screens[1:]):
        BACK_TABLE[_screen] = (_prev, ())


def _user_name(ctx: FlowContext, event=None) -> dict:
    return {"user_name": ctx.user.username}


def _categories_input(ctx: FlowContext, event=None) -> dict:
    kind = getattr(event, "transaction_type", None) or ctx.draft.kind or "withdrawal"
    return {"user_name": ctx.user.username, "type": kind}


def _suggestions_input(ctx: FlowContext, event=None) -> dict:
    return {"user_name": ctx.user.username, "category_id": ctx.draft.category.id}


def _not_guest(ctx: FlowContext) -> bool:
    return not ctx.user.is_guest


ACCOUNTS_INVOKE = Invoke("accounts", _user_name, on_start=r.mark_accounts_loading)
CATEGORIES_INVOKE = Invoke("categories", _categories_input, on_start=r.mark_categories_loading)
DESTINATION_SUGGESTIONS_INVOKE = Invoke(
    "destination_suggestions", _suggestions_input, on_start=r.mark_suggestions_loading
)
SOURCE_SUGGESTIONS_INVOKE = Invoke("source_suggestions", _suggestions_input, on_start=r.mark_suggestions_loading)


class FlowMachine:
    """Таблицы переходов и вход в состояния.

    Args:
        settlement_currency (str): Валюта расчётов. Экран суммы
            расхода/дохода запрашивает курс, только если валюта счёта другая.
    """

    def __init__(self, settlement_currency: str):
        self.settlement_currency = (settlement_currency or "").upper()
        self._exact: dict[tuple[Screen, str], Transition] = {}
        self._flow: dict[tuple[str, str], Transition] = {}
        self._ready: dict[str, Transition] = {}
        self._entries: dict[Screen, _Entry] = {}
        self._done: dict[str, Transition] = {}
        self._failed: dict[str, Transition] = {}
        self._build()

    # --- построение таблиц ---

    def _build(self) -> None:
        self._build_ready()
        self._build_entries()
        self._build_back()
        for flow, screens in (("withdrawalFlow", WITHDRAWAL_SCREENS), ("depositFlow", DEPOSIT_SCREENS)):
            self._build_transaction_flow(flow, screens)
        self._build_transfer_flow()
        self._build_transactions_list()
        self._build_results()

    def _build_ready(self) -> None:
        self._ready = {
            ev.NavigateHome.type: Transition(Screen.HOME, actions=(r.reset_drafts,)),
            ev.NavigateWithdrawalAccounts.type: Transition(
                Screen.WITHDRAWAL_ACCOUNTS, actions=(r.start_withdrawal_flow,)
            ),
            ev.NavigateDepositAccounts.type: Transition(Screen.DEPOSIT_ACCOUNTS, actions=(r.start_deposit_flow,)),
            ev.NavigateTransferSource.type: Transition(Screen.TRANSFER_SOURCE, actions=(r.start_transfer_flow,)),
            ev.NavigateTransactions.type: Transition(Screen.TRANSACTIONS_LIST, actions=(r.clear_selection,)),
            ev.NavigateDebug.type: Transition(Screen.DEBUG),
            ev.FetchAccounts.type: Transition(invokes=(
                Invoke("accounts", _user_name, on_start=r.mark_accounts_loading, ready_scope=True),
            )),
            ev.FetchCategories.type: Transition(invokes=(
                Invoke("categories", _categories_input, on_start=r.mark_categories_loading, ready_scope=True),
            )),
            ev.ServiceStatusChanged.type: Transition(actions=(r.assign_service_status,)),
        }

    def _build_entries(self) -> None:
        entries = {
            Screen.INITIALIZING: _Entry(invokes=(
                Invoke("init_user", lambda ctx, e: {"host_user": getattr(e, "host_user", None)}),
            )),
            Screen.WITHDRAWAL_AMOUNT: self._conversion_entry(),
            Screen.DEPOSIT_AMOUNT: self._conversion_entry(),
            Screen.WITHDRAWAL_CATEGORY: _Entry(invokes=(CATEGORIES_INVOKE,)),
            Screen.DEPOSIT_CATEGORY: _Entry(invokes=(CATEGORIES_INVOKE,)),
            Screen.WITHDRAWAL_NOTES: _Entry(invokes=(DESTINATION_SUGGESTIONS_INVOKE,)),
            Screen.DEPOSIT_NOTES: _Entry(invokes=(SOURCE_SUGGESTIONS_INVOKE,)),
            Screen.TRANSFER_AMOUNT: _Entry(
                actions=(r.begin_transfer_conversion,),
                invokes=(Invoke(
                    "transfer_rate",
                    lambda ctx, e: {"from": ctx.transfer.source.currency, "to": ctx.transfer.destination.currency},
                    when=r.needs_transfer_rate,
                ),),
            ),
            Screen.TRANSACTIONS_LIST: _Entry(invokes=(
                Invoke("transactions", lambda ctx, e: {"page": 1}, on_start=r.mark_transactions_loading),
            )),
            Screen.TRANSACTION_DETAIL: _Entry(invokes=(
                Invoke("transaction_detail", lambda ctx, e: {"id": ctx.selected.id}, on_start=r.mark_detail_loading),
            )),
        }
        for screen in ACCOUNT_PICKERS:
            entries[screen] = _Entry(invokes=(ACCOUNTS_INVOKE,))
        self._entries = entries

    def _conversion_entry(self) -> _Entry:
        settlement = self.settlement_currency
        return _Entry(
            actions=(r.begin_conversion(settlement),),
            invokes=(Invoke(
                "conversion_rate",
                lambda ctx, e: {"from": ctx.draft.account.currency, "to": settlement},
                when=lambda ctx: r.needs_conversion(ctx, settlement),
            ),),
        )

    def _build_back(self) -> None:
        for screen, (target, actions) in BACK_TABLE.items():
            self._exact[(screen, ev.NavigateBack.type)] = Transition(target, actions=actions)
        # home и initializing: NAVIGATE_BACK не описан, событие игнорируется

    def _build_transaction_flow(self, flow: str, screens: tuple[Screen, ...]) -> None:
        accounts, amount, category, notes, confirm = screens
        exact = self._exact
        exact[(accounts, ev.NavigateAmount.type)] = Transition(amount, guard=guards.can_proceed_from_accounts)
        exact[(accounts, ev.UpdateAccount.type)] = Transition(
            amount, guard=guards.can_proceed_from_accounts, actions=(r.assign_account,)
        )
        exact[(amount, ev.NavigateCategory.type)] = Transition(category, guard=guards.can_proceed_from_amount)
        exact[(category, ev.NavigateNotes.type)] = Transition(notes, guard=guards.can_proceed_from_category)
        exact[(category, ev.UpdateCategory.type)] = Transition(
            notes, guard=guards.can_proceed_from_category, actions=(r.assign_category,)
        )
        exact[(notes, ev.NavigateConfirm.type)] = Transition(confirm, guard=guards.can_proceed_from_counterparty)
        suggestions = DESTINATION_SUGGESTIONS_INVOKE if flow == "withdrawalFlow" else SOURCE_SUGGESTIONS_INVOKE
        exact[(notes, ev.FetchSuggestions.type)] = Transition(invokes=(suggestions,))
        exact[(confirm, ev.SubmitTransaction.type)] = Transition(Screen.HOME, actions=(r.reset_drafts,))
        for screen in screens:
            exact[(screen, ev.ValidatePage.type)] = Transition(actions=(r.validate_page(screen),))

        # поля конкретного экрана правятся только на нём; заметки, дата и флаги отправки общие для флоу
        exact[(amount, ev.UpdateAmount.type)] = Transition(actions=(r.assign_amount,))
        exact[(notes, ev.UpdateCounterparty.type)] = Transition(actions=(r.assign_counterparty,))

        for event_cls, reducer in (
            (ev.UpdateNotes, r.assign_notes),
            (ev.UpdateDate, r.assign_date),
            (ev.SetSubmitting, r.set_submitting),
            (ev.SetSubmitMessage, r.set_submit_message),
        ):
            self._flow[(flow, event_cls.type)] = Transition(actions=(reducer,))

    def _build_transfer_flow(self) -> None:
        source, dest, amount, fees, notes, confirm = TRANSFER_SCREENS
        exact = self._exact
        exact[(source, ev.SetTransferSource.type)] = Transition(
            dest, guard=guards.can_proceed_from_transfer_source, actions=(r.assign_transfer_source,)
        )
        exact[(source, ev.NavigateTransferDest.type)] = Transition(dest, guard=guards.can_proceed_from_transfer_source)
        exact[(dest, ev.SetTransferDest.type)] = Transition(
            amount, guard=guards.can_proceed_from_transfer_dest, actions=(r.assign_transfer_dest,)
        )
        exact[(dest, ev.NavigateTransferAmount.type)] = Transition(amount, guard=guards.can_proceed_from_transfer_dest)
        exact[(amount, ev.NavigateTransferFees.type)] = Transition(fees, guard=guards.can_proceed_from_transfer_amount)
        exact[(fees, ev.NavigateTransferNotes.type)] = Transition(notes, guard=guards.can_proceed_from_transfer_fees)
        exact[(notes, ev.NavigateTransferConfirm.type)] = Transition(confirm)
        exact[(confirm, ev.SubmitTransfer.type)] = Transition(Screen.HOME, actions=(r.reset_drafts,))
        for screen in TRANSFER_SCREENS:
            exact[(screen, ev.ValidatePage.type)] = Transition(actions=(r.validate_page(screen),))

        for event_cls, reducer in (
            (ev.UpdateTransferSourceAmount, r.assign_transfer_source_amount),
            (ev.UpdateTransferDestAmount, r.assign_transfer_dest_amount),
            (ev.UpdateTransferExchangeRate, r.assign_transfer_rate),
        ):
            exact[(amount, event_cls.type)] = Transition(actions=(reducer,))
        for event_cls, reducer in (
            (ev.UpdateTransferSourceFee, r.assign_transfer_source_fee),
            (ev.UpdateTransferDestFee, r.assign_transfer_dest_fee),
        ):
            exact[(fees, event_cls.type)] = Transition(actions=(reducer,))

        for event_cls, reducer in (
            (ev.UpdateNotes, r.assign_transfer_notes),
            (ev.UpdateDate, r.assign_transfer_date),
            (ev.SetSubmitting, r.set_transfer_submitting),
            (ev.SetSubmitMessage, r.set_transfer_submit_message),
        ):
            self._flow[("transferFlow", event_cls.type)] = Transition(actions=(reducer,))

    def _build_transactions_list(self) -> None:
        exact = self._exact
        exact[(Screen.TRANSACTIONS_LIST, ev.SelectTransaction.type)] = Transition(
            Screen.TRANSACTION_DETAIL, actions=(r.select_transaction,)
        )
        exact[(Screen.TRANSACTIONS_LIST, ev.LoadMoreTransactions.type)] = Transition(
            guard=guards.can_load_more_transactions,
            invokes=(Invoke(
                "transactions",
                lambda ctx, e: {"page": ctx.transactions.page + 1},
                on_start=r.mark_transactions_loading,
            ),),
        )
        exact[(Screen.TRANSACTION_DETAIL, ev.NavigateTransactionEdit.type)] = Transition(
            Screen.TRANSACTION_EDIT, guard=guards.has_transaction_detail, actions=(r.begin_edit,)
        )
        exact[(Screen.TRANSACTION_DETAIL, ev.DeleteTransaction.type)] = Transition(
            Screen.TRANSACTIONS_LIST, actions=(r.clear_selection,)
        )
        exact[(Screen.TRANSACTION_EDIT, ev.EditTransaction.type)] = Transition(actions=(r.merge_edit,))
        exact[(Screen.TRANSACTION_EDIT, ev.SubmitTransaction.type)] = Transition(
            Screen.TRANSACTION_DETAIL, actions=(r.finish_edit,)
        )

    def _build_results(self) -> None:
        self._done = {
            "init_user": Transition(Screen.HOME, actions=(r.assign_user,)),
            "profile": Transition(actions=(r.merge_profile,)),
            "accounts": Transition(actions=(r.assign_accounts,)),
            "categories": Transition(actions=(r.assign_categories,)),
            "destination_suggestions": Transition(actions=(r.assign_suggestions,)),
            "source_suggestions": Transition(actions=(r.assign_suggestions,)),
            "conversion_rate": Transition(actions=(r.assign_conversion_rate,)),
            "transfer_rate": Transition(actions=(r.assign_transfer_rate_result,)),
            "transactions": Transition(actions=(r.assign_transactions,)),
            "transaction_detail": Transition(actions=(r.assign_transaction_detail,)),
        }
        self._failed = {
            "init_user": Transition(Screen.HOME, actions=(r.assign_guest,)),
            "profile": Transition(),
            "accounts": Transition(actions=(r.accounts_failed,)),
            "categories": Transition(actions=(r.categories_failed,)),
            "destination_suggestions": Transition(actions=(r.suggestions_failed,)),
            "source_suggestions": Transition(actions=(r.suggestions_failed,)),
            "conversion_rate": Transition(actions=(r.conversion_failed,)),
            "transfer_rate": Transition(actions=(r.transfer_rate_failed,)),
            "transactions": Transition(actions=(r.transactions_failed,)),
            "transaction_detail": Transition(actions=(r.detail_failed,)),
        }

    # --- выполнение ---

    def _lookup(self, state: Screen, event: ev.Event) -> Optional[Transition]:
        if isinstance(event, (ev.ActorDone, ev.ActorError)):
            return self._lookup_result(state, event)
        found = self._exact.get((state, event.type))
        if found is not None:
            return found
        flow = state.flow
        if flow is not None:
            found = self._flow.get((flow, event.type))
            if found is not None:
                return found
        if state.is_ready:
            return self._ready.get(event.type)
        return None

    def _lookup_result(self, state: Screen, event) -> Optional[Transition]:
        if event.actor == "init_user" and state != Screen.INITIALIZING:
            return None
        if isinstance(event, ev.ActorDone):
            return self._done.get(event.actor)
        found = self._failed.get(event.actor)
        if found is None:
            return None
        if event.kind == "ServiceNotConfigured":
            return Transition(found.target, found.guard, found.actions + (r.mark_sync_not_configured,), found.invokes)
        return found

    def _start_invokes(self, invokes, ctx: FlowContext, event, scope: Optional[Screen]):
        effects = []
        for invoke in invokes:
            if invoke.when is not None and not invoke.when(ctx):
                continue
            if invoke.on_start is not None:
                ctx = invoke.on_start(ctx, event)
            effects.append(InvokeEffect(
                actor=invoke.actor,
                input=dict(invoke.input(ctx, event)),
                scope=None if invoke.ready_scope else scope,
            ))
        return ctx, effects

    def enter(
        self,
        state: Screen,
        ctx: FlowContext,
        event: Optional[ev.Event] = None,
        from_state: Optional[Screen] = None,
    ) -> Step:
        """Вход в состояние: entry-редьюсеры и акторы.

        При входе в `ready` извне (после инициализации или при восстановлении
        снэпшота, `from_state=None`) дополнительно запрашивается профиль.
        """
        effects: list[InvokeEffect] = []
        if state.is_ready and (from_state is None or not from_state.is_ready):
            ctx, started = self._start_invokes(
                (Invoke("profile", lambda c, e: {"user_id": c.user.id}, when=_not_guest, ready_scope=True),),
                ctx, event, state,
            )
            effects += started
        entry = self._entries.get(state)
        if entry is not None:
            for action in entry.actions:
                ctx = action(ctx, event)
            ctx, started = self._start_invokes(entry.invokes, ctx, event, state)
            effects += started
        return Step(state, ctx, tuple(effects), changed=True, entered=True)

    def transition(self, state: Screen, ctx: FlowContext, event: ev.Event) -> Step:
        found = self._lookup(state, event)
        if found is None:
            logger.debug(f"[FLOW] {event.type} ignored in {state.value}")
            return Step(state, ctx)

        new_ctx = ctx
        for action in found.actions:
            new_ctx = action(new_ctx, event)
        if found.guard is not None and not found.guard(new_ctx):
            return Step(state, ctx)

        new_ctx, effects = self._start_invokes(found.invokes, new_ctx, event, state)
        if found.target is None:
            return Step(state, new_ctx, tuple(effects), changed=new_ctx != ctx)

        entered = self.enter(found.target, new_ctx, event, from_state=state)
        logger.debug(f"[FLOW] {state.value} --{event.type}--> {found.target.value}")
        return Step(found.target, entered.context, tuple(effects) + entered.effects, changed=True, entered=True)

    def initial(self, ctx: Optional[FlowContext] = None, host_user: Optional[Mapping[str, Any]] = None) -> Step:
        """Стартовый шаг: `initializing` с запуском init-актора."""
        return self.enter(Screen.INITIALIZING, ctx or FlowContext(), ev.Start(host_user=host_user))


default_machine = FlowMachine(settings.SETTLEMENT_CURRENCY)
