from dataclasses import replace

import pytest

from budgetflow.states import guards
from budgetflow.states.context import (
    AccountRef,
    CategoryRef,
    Counterparty,
    FlowContext,
    SelectedTransaction,
    TransactionDraft,
    TransactionsPage,
    TransferDraft,
)

ALL_GUARDS = [
    guards.can_proceed_from_accounts,
    guards.can_proceed_from_amount,
    guards.can_proceed_from_category,
    guards.can_proceed_from_counterparty,
    guards.can_proceed_from_transfer_source,
    guards.can_proceed_from_transfer_dest,
    guards.can_proceed_from_transfer_amount,
    guards.can_proceed_from_transfer_fees,
    guards.has_transaction_detail,
    guards.can_load_more_transactions,
]

BROKEN_CONTEXTS = [
    None,
    object(),
    replace(FlowContext(), draft=None, transfer=None, selected=None, transactions=None, ui=None),
    replace(
        FlowContext(),
        draft=TransactionDraft(account=None, category=None, counterparty=None, amount=None),
        transfer=TransferDraft(source=None, destination=None, source_amount=None,
                               destination_amount=None, source_fee="x", destination_fee=[]),
    ),
]


@pytest.mark.parametrize("guard", ALL_GUARDS, ids=lambda g: g.__name__)
@pytest.mark.parametrize("ctx", BROKEN_CONTEXTS)
def test_guards_are_total_on_malformed_context(guard, ctx):
    assert guard(ctx) is False


def test_guards_block_empty_drafts():
    ctx = FlowContext()
    blocked = [g for g in ALL_GUARDS if g is not guards.can_proceed_from_transfer_fees]
    assert all(g(ctx) is False for g in blocked)
    # пустые комиссии означают 0
    assert guards.can_proceed_from_transfer_fees(ctx) is True


@pytest.mark.parametrize("amount", ["", "0", "-1", "abc", "NaN", "inf", "  ", None, "1e30", "1000000000000"])
def test_amount_guard_rejects_non_positive_non_finite_or_huge(amount):
    ctx = replace(FlowContext(), draft=TransactionDraft(amount=amount))
    assert guards.can_proceed_from_amount(ctx) is False


@pytest.mark.parametrize("amount", ["42.50", "0.01", "1,5", "1000"])
def test_amount_guard_accepts_positive(amount):
    ctx = replace(FlowContext(), draft=TransactionDraft(amount=amount))
    assert guards.can_proceed_from_amount(ctx) is True


def test_accounts_guard_needs_id_and_currency():
    no_currency = replace(FlowContext(), draft=TransactionDraft(account=AccountRef("Cash", "1", "")))
    full = replace(FlowContext(), draft=TransactionDraft(account=AccountRef("Cash", "1", "EUR")))
    assert guards.can_proceed_from_accounts(no_currency) is False
    assert guards.can_proceed_from_accounts(full) is True


def test_category_guard_rejects_zero_id():
    zero = replace(FlowContext(), draft=TransactionDraft(category=CategoryRef("0", "Food")))
    ok = replace(FlowContext(), draft=TransactionDraft(category=CategoryRef("3", "Food")))
    assert guards.can_proceed_from_category(zero) is False
    assert guards.can_proceed_from_category(ok) is True


def test_counterparty_accepts_free_text_without_id():
    ctx = replace(FlowContext(), draft=TransactionDraft(counterparty=Counterparty(id="0", name="New shop")))
    assert guards.can_proceed_from_counterparty(ctx) is True


def test_transfer_amount_needs_both_sides():
    one_side = replace(FlowContext(), transfer=TransferDraft(source_amount="10"))
    both = replace(FlowContext(), transfer=TransferDraft(source_amount="10", destination_amount="9.5"))
    assert guards.can_proceed_from_transfer_amount(one_side) is False
    assert guards.can_proceed_from_transfer_amount(both) is True


def test_transfer_amount_rejects_huge_values():
    huge = TransferDraft(source_amount="1e30", destination_amount="9.5")
    assert guards.validate_transfer_amount_page(huge) == "Amount is too large"
    assert guards.can_proceed_from_transfer_amount(replace(FlowContext(), transfer=huge)) is False


def test_amount_page_reports_huge_amount():
    assert guards.validate_amount_page("1e30") == "Amount is too large"
    assert guards.validate_amount_page("999999999999.99") is None


def test_transfer_fees_reject_negative():
    ctx = replace(FlowContext(), transfer=TransferDraft(source_fee="-1"))
    assert guards.can_proceed_from_transfer_fees(ctx) is False


def test_load_more_needs_more_pages_and_idle_list():
    ctx = replace(FlowContext(), transactions=TransactionsPage(page=1, total_pages=3))
    assert guards.can_load_more_transactions(ctx) is True
    last = replace(ctx, transactions=TransactionsPage(page=3, total_pages=3))
    assert guards.can_load_more_transactions(last) is False


def test_detail_guard_needs_loaded_data():
    selected = replace(FlowContext(), selected=SelectedTransaction(id="7"))
    loaded = replace(FlowContext(), selected=SelectedTransaction(id="7", raw={"amount": "1"}))
    assert guards.has_transaction_detail(selected) is False
    assert guards.has_transaction_detail(loaded) is True


def test_submission_validation_lists_every_missing_field():
    errors = guards.validate_for_submission("withdrawal", TransactionDraft(date="not-a-date"))
    assert set(errors) == {"user_name", "account", "amount", "category", "counterparty", "date"}


def test_submission_validation_rejects_unknown_kind():
    assert "kind" in guards.validate_for_submission("transfer", TransactionDraft())


def test_transfer_submission_rejects_same_account():
    transfer = TransferDraft(
        user_name="alice",
        source=AccountRef("Cash", "1", "EUR"),
        destination=AccountRef("Cash", "1", "EUR"),
        source_amount="10",
        destination_amount="10",
    )
    errors = guards.validate_transfer_for_submission(transfer)
    assert errors == {"destination": "Destination must differ from source"}
