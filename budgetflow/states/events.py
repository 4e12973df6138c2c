"""
Закрытый набор событий машины флоу.

Каждое событие — frozen dataclass с тегом `type` (как в сообщениях экранов).
Экраны присылают JSON вида {"type": "UPDATE_AMOUNT", "amount": "42.50"},
`event_from_dict` превращает его в объект события. Неизвестный тип — ошибка
только на этой границе; внутри машины событие, не описанное для текущего
состояния, просто игнорируется.
"""
from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import Any, ClassVar, Mapping, Optional, Type

EVENT_TYPES: dict[str, Type["Event"]] = {}


def _register(cls):
    EVENT_TYPES[cls.type] = cls
    return cls


@dataclass(frozen=True)
class Event:
    type: ClassVar[str] = ""


# навигация
@_register
@dataclass(frozen=True)
class NavigateHome(Event):
    type: ClassVar[str] = "NAVIGATE_HOME"


@_register
@dataclass(frozen=True)
class NavigateBack(Event):
    type: ClassVar[str] = "NAVIGATE_BACK"


@_register
@dataclass(frozen=True)
class NavigateWithdrawalAccounts(Event):
    type: ClassVar[str] = "NAVIGATE_WITHDRAWAL_ACCOUNTS"


@_register
@dataclass(frozen=True)
class NavigateDepositAccounts(Event):
    type: ClassVar[str] = "NAVIGATE_DEPOSIT_ACCOUNTS"


@_register
@dataclass(frozen=True)
class NavigateTransferSource(Event):
    type: ClassVar[str] = "NAVIGATE_TRANSFER_SOURCE_ACCOUNTS"


@_register
@dataclass(frozen=True)
class NavigateTransactions(Event):
    type: ClassVar[str] = "NAVIGATE_TRANSACTIONS"


@_register
@dataclass(frozen=True)
class NavigateDebug(Event):
    type: ClassVar[str] = "NAVIGATE_DEBUG"


@_register
@dataclass(frozen=True)
class NavigateAmount(Event):
    type: ClassVar[str] = "NAVIGATE_AMOUNT"


@_register
@dataclass(frozen=True)
class NavigateCategory(Event):
    type: ClassVar[str] = "NAVIGATE_CATEGORY"


@_register
@dataclass(frozen=True)
class NavigateNotes(Event):
    type: ClassVar[str] = "NAVIGATE_NOTES"


@_register
@dataclass(frozen=True)
class NavigateConfirm(Event):
    type: ClassVar[str] = "NAVIGATE_CONFIRM"


@_register
@dataclass(frozen=True)
class NavigateTransferDest(Event):
    type: ClassVar[str] = "NAVIGATE_TRANSFER_DEST_ACCOUNTS"


@_register
@dataclass(frozen=True)
class NavigateTransferAmount(Event):
    type: ClassVar[str] = "NAVIGATE_TRANSFER_AMOUNT"


@_register
@dataclass(frozen=True)
class NavigateTransferFees(Event):
    type: ClassVar[str] = "NAVIGATE_TRANSFER_FEES"


@_register
@dataclass(frozen=True)
class NavigateTransferNotes(Event):
    type: ClassVar[str] = "NAVIGATE_TRANSFER_NOTES"


@_register
@dataclass(frozen=True)
class NavigateTransferConfirm(Event):
    type: ClassVar[str] = "NAVIGATE_TRANSFER_CONFIRM"


@_register
@dataclass(frozen=True)
class NavigateTransactionEdit(Event):
    type: ClassVar[str] = "NAVIGATE_TRANSACTION_EDIT"


# черновик расхода/дохода
@_register
@dataclass(frozen=True)
class UpdateAccount(Event):
    type: ClassVar[str] = "UPDATE_ACCOUNT"
    name: str
    id: str
    currency: str


@_register
@dataclass(frozen=True)
class UpdateAmount(Event):
    type: ClassVar[str] = "UPDATE_AMOUNT"
    amount: str


@_register
@dataclass(frozen=True)
class UpdateCategory(Event):
    type: ClassVar[str] = "UPDATE_CATEGORY"
    name: str
    id: str
    budget_name: str = ""


@_register
@dataclass(frozen=True)
class UpdateCounterparty(Event):
    type: ClassVar[str] = "UPDATE_COUNTERPARTY"
    name: str
    id: str = ""


@_register
@dataclass(frozen=True)
class UpdateNotes(Event):
    type: ClassVar[str] = "UPDATE_NOTES"
    notes: str


@_register
@dataclass(frozen=True)
class UpdateDate(Event):
    type: ClassVar[str] = "UPDATE_DATE"
    date: str


@_register
@dataclass(frozen=True)
class ValidatePage(Event):
    type: ClassVar[str] = "VALIDATE_PAGE"


@_register
@dataclass(frozen=True)
class SetSubmitting(Event):
    type: ClassVar[str] = "SET_SUBMITTING"
    value: bool = True


@_register
@dataclass(frozen=True)
class SetSubmitMessage(Event):
    type: ClassVar[str] = "SET_SUBMIT_MESSAGE"
    message: Optional[str] = None


# перевод
@_register
@dataclass(frozen=True)
class SetTransferSource(Event):
    type: ClassVar[str] = "SET_TRANSFER_SOURCE"
    name: str
    id: str
    currency: str


@_register
@dataclass(frozen=True)
class SetTransferDest(Event):
    type: ClassVar[str] = "SET_TRANSFER_DEST"
    name: str
    id: str
    currency: str


@_register
@dataclass(frozen=True)
class UpdateTransferSourceAmount(Event):
    type: ClassVar[str] = "UPDATE_TRANSFER_SOURCE_AMOUNT"
    amount: str


@_register
@dataclass(frozen=True)
class UpdateTransferDestAmount(Event):
    type: ClassVar[str] = "UPDATE_TRANSFER_DEST_AMOUNT"
    amount: str


@_register
@dataclass(frozen=True)
class UpdateTransferExchangeRate(Event):
    type: ClassVar[str] = "UPDATE_TRANSFER_EXCHANGE_RATE"
    rate: Optional[float] = None


@_register
@dataclass(frozen=True)
class UpdateTransferSourceFee(Event):
    type: ClassVar[str] = "UPDATE_TRANSFER_SOURCE_FEE"
    fee: str


@_register
@dataclass(frozen=True)
class UpdateTransferDestFee(Event):
    type: ClassVar[str] = "UPDATE_TRANSFER_DEST_FEE"
    fee: str


# отправка
@_register
@dataclass(frozen=True)
class SubmitTransaction(Event):
    type: ClassVar[str] = "SUBMIT_TRANSACTION"


@_register
@dataclass(frozen=True)
class SubmitTransfer(Event):
    type: ClassVar[str] = "SUBMIT_TRANSFER"


# список транзакций
@_register
@dataclass(frozen=True)
class SelectTransaction(Event):
    type: ClassVar[str] = "SELECT_TRANSACTION"
    id: str


@_register
@dataclass(frozen=True)
class EditTransaction(Event):
    type: ClassVar[str] = "EDIT_TRANSACTION"
    changes: Mapping[str, Any] = field(default_factory=dict)


@_register
@dataclass(frozen=True)
class DeleteTransaction(Event):
    type: ClassVar[str] = "DELETE_TRANSACTION"


@_register
@dataclass(frozen=True)
class LoadMoreTransactions(Event):
    type: ClassVar[str] = "LOAD_MORE_TRANSACTIONS"


# загрузки и статусы сервисов
@_register
@dataclass(frozen=True)
class FetchAccounts(Event):
    type: ClassVar[str] = "FETCH_ACCOUNTS"


@_register
@dataclass(frozen=True)
class FetchCategories(Event):
    type: ClassVar[str] = "FETCH_CATEGORIES"
    transaction_type: Optional[str] = None


@_register
@dataclass(frozen=True)
class FetchSuggestions(Event):
    type: ClassVar[str] = "FETCH_SUGGESTIONS"


@_register
@dataclass(frozen=True)
class ServiceStatusChanged(Event):
    type: ClassVar[str] = "SERVICE_STATUS_CHANGED"
    service: str
    status: str
    message: str = ""


# внутренние события, шлёт только интерпретатор
@dataclass(frozen=True)
class Start(Event):
    type: ClassVar[str] = "START"
    host_user: Optional[Mapping[str, Any]] = None


@dataclass(frozen=True)
class ActorDone(Event):
    type: ClassVar[str] = "ACTOR_DONE"
    actor: str
    invocation_id: int
    output: Any = None


@dataclass(frozen=True)
class ActorError(Event):
    type: ClassVar[str] = "ACTOR_ERROR"
    actor: str
    invocation_id: int
    error: str
    kind: str = ""


def event_from_dict(data: Mapping[str, Any]) -> Event:
    """Событие из JSON экрана.

    Raises:
        ValueError: Нет `type`, тип неизвестен или не хватает обязательных полей.
    """
    if not isinstance(data, Mapping):
        raise ValueError(f"Event must be an object, got {type(data).__name__}")
    event_type = data.get("type")
    cls = EVENT_TYPES.get(event_type) if isinstance(event_type, str) else None
    if cls is None:
        raise ValueError(f"Unknown event type: {event_type!r}")
    names = {f.name for f in dataclasses.fields(cls)}
    kwargs = {k: v for k, v in data.items() if k in names}
    for key in ("id", "name", "currency", "amount", "fee"):
        if key in kwargs and kwargs[key] is not None and not isinstance(kwargs[key], str):
            kwargs[key] = str(kwargs[key])
    try:
        return cls(**kwargs)
    except TypeError as e:
        raise ValueError(f"Invalid {event_type} payload: {e}") from e


def event_to_dict(event: Event) -> dict[str, Any]:
    payload = {"type": event.type}
    payload.update({f.name: getattr(event, f.name) for f in dataclasses.fields(event)})
    return payload
