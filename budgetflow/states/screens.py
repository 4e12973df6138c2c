from enum import Enum
from typing import Optional


class Screen(str, Enum):
    """Листовые состояния машины флоу. Значение — путь от корня через точку."""
    INITIALIZING = "initializing"
    HOME = "ready.home"

    WITHDRAWAL_ACCOUNTS = "ready.withdrawalFlow.accounts"
    WITHDRAWAL_AMOUNT = "ready.withdrawalFlow.amount"
    WITHDRAWAL_CATEGORY = "ready.withdrawalFlow.category"
    WITHDRAWAL_NOTES = "ready.withdrawalFlow.notes"
    WITHDRAWAL_CONFIRM = "ready.withdrawalFlow.confirm"

    DEPOSIT_ACCOUNTS = "ready.depositFlow.accounts"
    DEPOSIT_AMOUNT = "ready.depositFlow.amount"
    DEPOSIT_CATEGORY = "ready.depositFlow.category"
    DEPOSIT_NOTES = "ready.depositFlow.notes"
    DEPOSIT_CONFIRM = "ready.depositFlow.confirm"

    TRANSFER_SOURCE = "ready.transferFlow.sourceAccounts"
    TRANSFER_DEST = "ready.transferFlow.destAccounts"
    TRANSFER_AMOUNT = "ready.transferFlow.amount"
    TRANSFER_FEES = "ready.transferFlow.fees"
    TRANSFER_NOTES = "ready.transferFlow.notes"
    TRANSFER_CONFIRM = "ready.transferFlow.confirm"

    TRANSACTIONS_LIST = "ready.transactionsList.list"
    TRANSACTION_DETAIL = "ready.transactionsList.detail"
    TRANSACTION_EDIT = "ready.transactionsList.edit"

    DEBUG = "ready.debug"

    def matches(self, prefix: str) -> bool:
        """Аналог `state.matches`: 'ready', 'ready.withdrawalFlow' или полный путь."""
        return self.value == prefix or self.value.startswith(prefix + ".")

    @property
    def flow(self) -> Optional[str]:
        """Регион флоу ('withdrawalFlow', 'transferFlow', ...) или None для home/debug/initializing."""
        parts = self.value.split(".")
        return parts[1] if len(parts) == 3 else None

    @property
    def is_ready(self) -> bool:
        return self.matches("ready")


FLOW_KINDS = {
    "withdrawalFlow": "withdrawal",
    "depositFlow": "deposit",
}

ACCOUNT_PICKERS = frozenset({
    Screen.WITHDRAWAL_ACCOUNTS,
    Screen.DEPOSIT_ACCOUNTS,
    Screen.TRANSFER_SOURCE,
    Screen.TRANSFER_DEST,
})
