from dataclasses import replace

from budgetflow.states import events as ev
from budgetflow.states.context import (
    AccountRef,
    CatalogItem,
    CategoryRef,
    Counterparty,
    FlowContext,
    TransactionDraft,
    TransactionRow,
    TransactionsPage,
    TransferDraft,
    UserIdentity,
)
from budgetflow.states.machine import FlowMachine
from budgetflow.states.screens import Screen

ALICE = UserIdentity(id=42, display_name="Alice A", username="alice", initials="AA")
machine = FlowMachine("EUR")


def home_ctx() -> FlowContext:
    return FlowContext(user=ALICE)


def actors_of(step) -> list[str]:
    return [e.actor for e in step.effects]


def run(state, ctx, *events):
    step = None
    for event in events:
        step = machine.transition(state, ctx, event)
        state, ctx = step.state, step.context
    return step


def test_withdrawal_happy_path():
    step = machine.transition(Screen.HOME, home_ctx(), ev.NavigateWithdrawalAccounts())
    assert step.state == Screen.WITHDRAWAL_ACCOUNTS
    assert step.context.draft.kind == "withdrawal"
    assert step.context.draft.user_name == "alice"
    assert step.effects[0].actor == "accounts"
    assert step.effects[0].input == {"user_name": "alice"}

    step = machine.transition(step.state, step.context, ev.UpdateAccount(name="Cash", id="1", currency="EUR"))
    assert step.state == Screen.WITHDRAWAL_AMOUNT
    # счёт в валюте расчётов: курс не запрашивается
    assert actors_of(step) == []

    step = run(step.state, step.context, ev.UpdateAmount(amount="42.50"), ev.NavigateCategory())
    assert step.state == Screen.WITHDRAWAL_CATEGORY
    assert step.effects[0].input == {"user_name": "alice", "type": "withdrawal"}

    step = machine.transition(step.state, step.context, ev.UpdateCategory(name="Food", id="3"))
    assert step.state == Screen.WITHDRAWAL_NOTES
    assert step.effects[0].actor == "destination_suggestions"
    assert step.effects[0].input == {"user_name": "alice", "category_id": "3"}

    step = run(step.state, step.context, ev.UpdateCounterparty(name="Market"), ev.NavigateConfirm())
    assert step.state == Screen.WITHDRAWAL_CONFIRM
    assert step.context.draft.amount == "42.50"

    step = machine.transition(step.state, step.context, ev.SubmitTransaction())
    assert step.state == Screen.HOME
    assert step.context.draft == TransactionDraft()


def test_blocked_transition_keeps_state_and_context():
    ctx = replace(home_ctx(), draft=TransactionDraft(kind="withdrawal", amount="0"))
    step = machine.transition(Screen.WITHDRAWAL_AMOUNT, ctx, ev.NavigateCategory())
    assert step.state == Screen.WITHDRAWAL_AMOUNT
    assert step.context is ctx
    assert step.effects == ()
    assert step.changed is False


def test_unknown_event_is_a_noop():
    ctx = home_ctx()
    step = machine.transition(Screen.HOME, ctx, ev.NavigateConfirm())
    assert (step.state, step.context, step.changed) == (Screen.HOME, ctx, False)
    step = machine.transition(Screen.HOME, ctx, ev.NavigateBack())
    assert step.state == Screen.HOME and step.changed is False


def test_reselecting_same_account_keeps_amount():
    draft = TransactionDraft(
        kind="withdrawal",
        account=AccountRef("Card", "2", "USD"),
        amount="42.50",
        conversion_rate=0.8,
        converted_amount="34.00",
    )
    ctx = replace(home_ctx(), draft=draft)
    same = machine.transition(Screen.WITHDRAWAL_ACCOUNTS, ctx, ev.UpdateAccount(name="Card", id="2", currency="USD"))
    assert same.state == Screen.WITHDRAWAL_AMOUNT
    assert same.context.draft.amount == "42.50"
    assert same.context.draft.converted_amount == "34.00"

    other = machine.transition(Screen.WITHDRAWAL_ACCOUNTS, ctx, ev.UpdateAccount(name="Cash", id="1", currency="EUR"))
    assert other.context.draft.amount == ""
    assert other.context.draft.converted_amount == ""
    assert other.context.draft.conversion_rate is None
    assert other.context.draft.account.id == "1"


def test_account_can_only_change_on_the_accounts_screen():
    draft = TransactionDraft(kind="withdrawal", account=AccountRef("Card", "2", "USD"), amount="10")
    ctx = replace(home_ctx(), draft=draft)
    step = machine.transition(Screen.WITHDRAWAL_AMOUNT, ctx, ev.UpdateAccount(name="Pounds", id="5", currency="GBP"))
    assert step.state == Screen.WITHDRAWAL_AMOUNT
    assert step.context is ctx
    assert step.changed is False


def test_confirm_screen_ignores_field_updates():
    draft = TransactionDraft(
        kind="withdrawal",
        user_name="alice",
        account=AccountRef("Cash", "1", "EUR"),
        amount="42.50",
        category=CategoryRef("3", "Food"),
        counterparty=Counterparty(name="Market"),
    )
    ctx = replace(home_ctx(), draft=draft)
    for event in (
        ev.UpdateAmount(amount="0"),
        ev.UpdateAccount(name="", id="", currency=""),
        ev.UpdateCategory(name="", id=""),
        ev.UpdateCounterparty(name=""),
    ):
        step = machine.transition(Screen.WITHDRAWAL_CONFIRM, ctx, event)
        assert step.context is ctx, event.type

    # заметки и дата правятся на любом экране флоу
    step = run(Screen.WITHDRAWAL_CONFIRM, ctx, ev.UpdateNotes(notes="lunch"), ev.UpdateDate(date="2024-05-01"))
    assert step.context.draft.notes == "lunch"
    assert step.context.draft.date == "2024-05-01"
    assert step.state == Screen.WITHDRAWAL_CONFIRM


def test_huge_amount_does_not_break_conversion():
    draft = TransactionDraft(kind="withdrawal", account=AccountRef("Card", "2", "USD"), conversion_rate=0.9)
    ctx = replace(home_ctx(), draft=draft)
    step = machine.transition(Screen.WITHDRAWAL_AMOUNT, ctx, ev.UpdateAmount(amount="1e30"))
    assert step.context.draft.amount == "1e30"
    assert step.context.draft.converted_amount == ""

    blocked = machine.transition(step.state, step.context, ev.NavigateCategory())
    assert blocked.state == Screen.WITHDRAWAL_AMOUNT
    step = machine.transition(step.state, step.context, ev.ValidatePage())
    assert step.context.draft.validation_errors == {"amount": "Amount is too large"}


def test_foreign_account_requests_conversion_and_recomputes():
    ctx = replace(home_ctx(), draft=TransactionDraft(kind="withdrawal", user_name="alice"))
    step = machine.transition(Screen.WITHDRAWAL_ACCOUNTS, ctx, ev.UpdateAccount(name="Card", id="2", currency="usd"))
    assert step.state == Screen.WITHDRAWAL_AMOUNT
    assert step.effects[0].actor == "conversion_rate"
    assert step.effects[0].input == {"from": "USD", "to": "EUR"}
    assert step.context.draft.is_loading_conversion is True

    step = run(
        step.state, step.context,
        ev.UpdateAmount(amount="10"),
        ev.ActorDone(actor="conversion_rate", invocation_id=1, output=0.9),
    )
    assert step.context.draft.conversion_rate == 0.9
    assert step.context.draft.converted_amount == "9.00"
    assert step.context.draft.is_loading_conversion is False

    step = machine.transition(step.state, step.context, ev.UpdateAmount(amount="20"))
    assert step.context.draft.converted_amount == "18.00"


def test_conversion_failure_lands_in_draft():
    ctx = replace(home_ctx(), draft=TransactionDraft(kind="deposit", account=AccountRef("Card", "2", "USD")))
    step = machine.transition(
        Screen.DEPOSIT_AMOUNT, ctx,
        ev.ActorError(actor="conversion_rate", invocation_id=1, error="boom", kind="NetworkError"),
    )
    assert step.state == Screen.DEPOSIT_AMOUNT
    assert step.context.draft.conversion_error == "boom"


def test_deposit_notes_fetch_source_suggestions():
    ctx = replace(home_ctx(), draft=TransactionDraft(kind="deposit", category=replace(TransactionDraft().category)))
    step = machine.transition(Screen.DEPOSIT_CATEGORY, ctx, ev.UpdateCategory(name="Salary", id="9"))
    assert step.state == Screen.DEPOSIT_NOTES
    assert actors_of(step) == ["source_suggestions"]
    assert step.context.draft.is_loading_suggestions is True


def test_transfer_same_currency_skips_rate_lookup():
    step = machine.transition(Screen.HOME, home_ctx(), ev.NavigateTransferSource())
    assert step.state == Screen.TRANSFER_SOURCE
    step = machine.transition(step.state, step.context, ev.SetTransferSource(name="Cash", id="1", currency="EUR"))
    assert step.state == Screen.TRANSFER_DEST
    step = machine.transition(step.state, step.context, ev.SetTransferDest(name="Bank", id="2", currency="EUR"))
    assert step.state == Screen.TRANSFER_AMOUNT
    assert "transfer_rate" not in actors_of(step)
    assert step.context.transfer.exchange_rate is None

    step = run(
        step.state, step.context,
        ev.UpdateTransferSourceAmount(amount="100"),
        ev.UpdateTransferDestAmount(amount="99.5"),
    )
    assert step.context.transfer.source_amount == "100"
    assert step.context.transfer.destination_amount == "99.5"

    step = machine.transition(step.state, step.context, ev.NavigateTransferFees())
    assert step.state == Screen.TRANSFER_FEES


def test_transfer_different_currency_requests_rate():
    transfer = TransferDraft(user_name="alice", source=AccountRef("Cash", "1", "EUR"))
    ctx = replace(home_ctx(), transfer=transfer)
    step = machine.transition(Screen.TRANSFER_DEST, ctx, ev.SetTransferDest(name="Card", id="2", currency="USD"))
    assert step.state == Screen.TRANSFER_AMOUNT
    assert step.effects[0].actor == "transfer_rate"
    assert step.effects[0].input == {"from": "EUR", "to": "USD"}

    step = run(
        step.state, step.context,
        ev.ActorDone(actor="transfer_rate", invocation_id=1, output=1.1),
        ev.UpdateTransferSourceAmount(amount="100"),
    )
    assert step.context.transfer.exchange_rate == 1.1
    assert step.context.transfer.destination_amount == "110.00"


def test_transfer_fields_change_only_on_their_screens():
    transfer = TransferDraft(
        user_name="alice",
        source=AccountRef("Cash", "1", "EUR"),
        destination=AccountRef("Card", "2", "USD"),
        source_amount="100",
        destination_amount="110.00",
        exchange_rate=1.1,
    )
    ctx = replace(home_ctx(), transfer=transfer)
    for event in (
        ev.SetTransferSource(name="Pounds", id="5", currency="GBP"),
        ev.SetTransferDest(name="Pounds", id="5", currency="GBP"),
        ev.UpdateTransferSourceFee(fee="1"),
    ):
        step = machine.transition(Screen.TRANSFER_AMOUNT, ctx, event)
        assert step.context is ctx, event.type
    for event in (
        ev.UpdateTransferSourceAmount(amount="0"),
        ev.UpdateTransferExchangeRate(rate=5.0),
    ):
        step = machine.transition(Screen.TRANSFER_CONFIRM, ctx, event)
        assert step.context is ctx, event.type

    step = machine.transition(Screen.TRANSFER_FEES, ctx, ev.UpdateTransferSourceFee(fee="1"))
    assert step.context.transfer.source_fee == "1"


def test_back_from_first_screen_resets_draft():
    ctx = replace(home_ctx(), draft=TransactionDraft(kind="withdrawal", user_name="alice", notes="x"))
    step = machine.transition(Screen.WITHDRAWAL_ACCOUNTS, ctx, ev.NavigateBack())
    assert step.state == Screen.HOME
    assert step.context.draft == TransactionDraft()


def test_back_inside_flow_keeps_draft():
    draft = TransactionDraft(kind="deposit", account=AccountRef("Cash", "1", "EUR"), amount="5")
    step = machine.transition(Screen.DEPOSIT_CATEGORY, replace(home_ctx(), draft=draft), ev.NavigateBack())
    assert step.state == Screen.DEPOSIT_AMOUNT
    assert step.context.draft.amount == "5"


def test_navigate_home_resets_from_anywhere():
    transfer = TransferDraft(user_name="alice", source=AccountRef("Cash", "1", "EUR"))
    step = machine.transition(Screen.TRANSFER_NOTES, replace(home_ctx(), transfer=transfer), ev.NavigateHome())
    assert step.state == Screen.HOME
    assert step.context.transfer == TransferDraft()


def test_reentering_flow_keeps_matching_draft():
    draft = TransactionDraft(kind="withdrawal", user_name="alice", notes="keep me")
    step = machine.transition(Screen.HOME, replace(home_ctx(), draft=draft), ev.NavigateWithdrawalAccounts())
    assert step.context.draft.notes == "keep me"
    step = machine.transition(Screen.HOME, replace(home_ctx(), draft=draft), ev.NavigateDepositAccounts())
    assert step.context.draft.kind == "deposit"
    assert step.context.draft.notes == ""


def test_validate_page_writes_inline_errors():
    ctx = replace(home_ctx(), draft=TransactionDraft(kind="withdrawal"))
    step = machine.transition(Screen.WITHDRAWAL_AMOUNT, ctx, ev.ValidatePage())
    assert step.context.draft.validation_errors == {"amount": "Please enter an amount"}
    step = machine.transition(step.state, step.context, ev.UpdateAmount(amount="3"))
    assert step.context.draft.validation_errors == {}


def test_init_success_goes_home_and_requests_profile():
    step = machine.initial(host_user={"id": 42, "username": "alice"})
    assert step.state == Screen.INITIALIZING
    assert step.effects[0].actor == "init_user"
    assert step.effects[0].input == {"host_user": {"id": 42, "username": "alice"}}

    step = machine.transition(step.state, step.context, ev.ActorDone(actor="init_user", invocation_id=1, output=ALICE))
    assert step.state == Screen.HOME
    assert step.context.user == ALICE
    assert step.effects[0].actor == "profile"
    assert step.effects[0].input == {"user_id": 42}
    assert step.effects[0].scope is None


def test_init_failure_falls_back_to_guest():
    step = machine.transition(
        Screen.INITIALIZING, FlowContext(),
        ev.ActorError(actor="init_user", invocation_id=1, error="timeout", kind="RequestTimeout"),
    )
    assert step.state == Screen.HOME
    assert step.context.user.is_guest
    assert step.effects == ()


def test_not_configured_error_marks_sync_service():
    step = machine.transition(
        Screen.WITHDRAWAL_ACCOUNTS, home_ctx(),
        ev.ActorError(actor="accounts", invocation_id=1, error="Sync API not configured", kind="ServiceNotConfigured"),
    )
    assert step.context.ui.accounts.error == "Sync API not configured"
    assert step.context.ui.services["sync"].status == "not_configured"


def test_fetch_accounts_is_ready_scoped():
    step = machine.transition(Screen.WITHDRAWAL_NOTES, home_ctx(), ev.FetchAccounts())
    assert step.state == Screen.WITHDRAWAL_NOTES
    assert step.effects[0].actor == "accounts"
    assert step.effects[0].scope is None
    assert step.context.ui.accounts.loading is True

    done = machine.transition(
        step.state, step.context,
        ev.ActorDone(actor="accounts", invocation_id=1, output=[CatalogItem("1", "Cash", "EUR", 3)]),
    )
    assert done.context.accounts[0].name == "Cash"
    assert done.context.ui.accounts.loading is False


def test_transactions_list_paging():
    step = machine.transition(Screen.HOME, home_ctx(), ev.NavigateTransactions())
    assert step.state == Screen.TRANSACTIONS_LIST
    assert step.effects[0].input == {"page": 1}

    first = TransactionsPage(items=(TransactionRow("1", "withdrawal", "2024-01-01", "5", "EUR"),), page=1, total_pages=2)
    step = machine.transition(step.state, step.context, ev.ActorDone(actor="transactions", invocation_id=1, output=first))
    step = machine.transition(step.state, step.context, ev.LoadMoreTransactions())
    assert step.effects[0].input == {"page": 2}

    # пока страница грузится, повторный запрос заблокирован
    again = machine.transition(step.state, step.context, ev.LoadMoreTransactions())
    assert again.changed is False and again.effects == ()

    second = TransactionsPage(items=(TransactionRow("2", "deposit", "2024-01-02", "7", "EUR"),), page=2, total_pages=2)
    step = machine.transition(step.state, step.context, ev.ActorDone(actor="transactions", invocation_id=2, output=second))
    assert [r.id for r in step.context.transactions.items] == ["1", "2"]
    assert step.context.transactions.has_more is False


def test_transaction_detail_edit_and_delete():
    step = machine.transition(Screen.TRANSACTIONS_LIST, home_ctx(), ev.SelectTransaction(id="7"))
    assert step.state == Screen.TRANSACTION_DETAIL
    assert step.effects[0].input == {"id": "7"}

    blocked = machine.transition(step.state, step.context, ev.NavigateTransactionEdit())
    assert blocked.state == Screen.TRANSACTION_DETAIL

    step = machine.transition(
        step.state, step.context,
        ev.ActorDone(actor="transaction_detail", invocation_id=1, output={"id": "7", "amount": "5"}),
    )
    step = machine.transition(step.state, step.context, ev.NavigateTransactionEdit())
    assert step.state == Screen.TRANSACTION_EDIT
    step = machine.transition(step.state, step.context, ev.EditTransaction(changes={"amount": "6"}))
    assert step.context.selected.editing == {"amount": "6"}

    step = machine.transition(step.state, step.context, ev.SubmitTransaction())
    assert step.state == Screen.TRANSACTION_DETAIL
    assert step.context.selected.editing == {}
    assert step.effects[0].actor == "transaction_detail"

    step = machine.transition(step.state, step.context, ev.DeleteTransaction())
    assert step.state == Screen.TRANSACTIONS_LIST
    assert step.context.selected.id == ""


def test_service_status_changed():
    step = machine.transition(
        Screen.HOME, home_ctx(),
        ev.ServiceStatusChanged(service="ledger", status="connected", message="ok"),
    )
    ledger = step.context.ui.services["ledger"]
    assert (ledger.name, ledger.status, ledger.message) == ("Ledger API", "connected", "ok")

    unknown = machine.transition(step.state, step.context, ev.ServiceStatusChanged(service="ledger", status="exploded"))
    assert unknown.context.ui.services["ledger"].status == "connected"
    assert unknown.changed is False


def test_exactly_one_leaf_is_active():
    for screen in Screen:
        leaves = [other for other in Screen if screen.matches(other.value)]
        assert leaves == [screen]
        regions = {"ready.withdrawalFlow", "ready.depositFlow", "ready.transferFlow", "ready.transactionsList"}
        assert sum(screen.matches(region) for region in regions) <= 1
