"""
Контекст машины флоу: пользователь, черновики транзакции и перевода,
списки каталога и UI-флаги загрузки.

Все классы неизменяемые (frozen dataclass). Контекст меняется только
редьюсерами из `states/reducers.py`, которые возвращают новую копию
через `dataclasses.replace`.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

GUEST_NAME = "Guest"
DEFAULT_BIO = "Manage finances and create reports"


@dataclass(frozen=True)
class UserIdentity:
    """Пользователь сессии.

    Атрибуты:
        id (int): id пользователя хоста (0 для гостя).
        display_name (str): Полное имя для экрана.
        username (str): Имя для леджера (тег транзакций) или "Guest".
        photo_url (str | None): Аватар, может прийти позже из профиля.
        bio (str): Подпись под именем.
        color_scheme (str): 'light' | 'dark'.
        initials (str): Инициалы для заглушки аватара.
    """
    id: int = 0
    display_name: str = GUEST_NAME
    username: str = GUEST_NAME
    photo_url: Optional[str] = None
    bio: str = DEFAULT_BIO
    color_scheme: str = "dark"
    initials: str = "G"

    @property
    def is_guest(self) -> bool:
        return self.id == 0 or self.username == GUEST_NAME


GUEST = UserIdentity()


@dataclass(frozen=True)
class ProfileUpdate:
    """Позднее обогащение профиля: меняет только фото и bio."""
    photo_url: Optional[str] = None
    bio: Optional[str] = None


@dataclass(frozen=True)
class CatalogItem:
    """Счёт или категория в списке выбора."""
    id: str
    name: str
    currency: Optional[str] = None
    usage_count: int = 0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CatalogItem":
        return cls(
            id=str(data.get("id") or ""),
            name=str(data.get("name") or ""),
            currency=data.get("currency") or None,
            usage_count=_int(data.get("usage_count")),
        )


@dataclass(frozen=True)
class Suggestion:
    """Кандидат автодополнения контрагента (получатель расхода / источник дохода)."""
    id: str
    name: str
    usage_count: int = 0
    user_name: str = ""
    category_id: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Suggestion":
        return cls(
            id=str(data.get("id") or ""),
            name=str(data.get("name") or ""),
            usage_count=_int(data.get("usage_count")),
            user_name=str(data.get("user_name") or ""),
            category_id=str(data.get("category_id") or ""),
        )


def _int(raw: Any) -> int:
    try:
        return int(raw or 0)
    except (TypeError, ValueError):
        return 0


@dataclass(frozen=True)
class AccountRef:
    name: str = ""
    id: str = ""
    currency: str = ""


@dataclass(frozen=True)
class CategoryRef:
    id: str = ""
    name: str = ""
    budget_name: str = ""


@dataclass(frozen=True)
class Counterparty:
    """Получатель (расход) или источник (доход). id "0"/"" — свободный ввод."""
    id: str = ""
    name: str = ""


@dataclass(frozen=True)
class TransactionDraft:
    """Черновик расхода/дохода. Один на оба флоу, kind = 'withdrawal' | 'deposit'."""
    kind: str = ""
    user_name: str = ""
    account: AccountRef = AccountRef()
    amount: str = ""
    converted_amount: str = ""          # в валюте расчётов, пусто если валюта совпадает
    conversion_rate: Optional[float] = None
    category: CategoryRef = CategoryRef()
    counterparty: Counterparty = Counterparty()
    notes: str = ""
    date: str = ""                      # ISO-8601, пусто = время отправки
    suggestions: tuple[Suggestion, ...] = ()
    is_loading_conversion: bool = False
    conversion_error: Optional[str] = None
    is_loading_suggestions: bool = False
    suggestions_error: Optional[str] = None
    is_submitting: bool = False
    submit_message: Optional[str] = None
    validation_errors: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class TransferDraft:
    user_name: str = ""
    source: AccountRef = AccountRef()
    destination: AccountRef = AccountRef()
    source_amount: str = ""
    destination_amount: str = ""
    exchange_rate: Optional[float] = None
    source_fee: str = "0"
    destination_fee: str = "0"
    notes: str = ""
    date: str = ""
    is_loading_conversion: bool = False
    conversion_error: Optional[str] = None
    is_submitting: bool = False
    submit_message: Optional[str] = None
    validation_errors: Mapping[str, str] = field(default_factory=dict)

    @property
    def same_currency(self) -> bool:
        return bool(self.source.currency) and self.source.currency.upper() == self.destination.currency.upper()


@dataclass(frozen=True)
class TransactionRow:
    """Строка списка транзакций леджера."""
    id: str
    type: str
    date: str
    amount: str
    currency: str
    description: str = ""
    category_name: str = ""
    source_name: str = ""
    destination_name: str = ""
    foreign_amount: Optional[str] = None
    foreign_currency: Optional[str] = None
    user_name: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TransactionRow":
        names = cls.__dataclass_fields__
        return cls(**{k: v for k, v in data.items() if k in names})


@dataclass(frozen=True)
class TransactionsPage:
    items: tuple[TransactionRow, ...] = ()
    page: int = 0
    total_pages: int = 0

    @property
    def has_more(self) -> bool:
        return self.page < self.total_pages


@dataclass(frozen=True)
class SelectedTransaction:
    """Выбранная транзакция в списке: сырые данные детали и незасабмиченные правки."""
    id: str = ""
    raw: Optional[Mapping[str, Any]] = None
    editing: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ResourceState:
    loading: bool = False
    error: Optional[str] = None


SERVICE_STATUSES = ("checking", "connected", "disconnected", "not_configured")


@dataclass(frozen=True)
class ServiceStatus:
    name: str
    status: str = "checking"            # checking | connected | disconnected | not_configured
    message: str = "Initializing..."


def _default_services() -> Mapping[str, ServiceStatus]:
    return {
        "sync": ServiceStatus("Sync API"),
        "ledger": ServiceStatus("Ledger API"),
    }


@dataclass(frozen=True)
class UiState:
    accounts: ResourceState = ResourceState()
    categories: ResourceState = ResourceState()
    transactions: ResourceState = ResourceState()
    detail: ResourceState = ResourceState()
    services: Mapping[str, ServiceStatus] = field(default_factory=_default_services)


@dataclass(frozen=True)
class FlowContext:
    user: UserIdentity = GUEST
    draft: TransactionDraft = TransactionDraft()
    transfer: TransferDraft = TransferDraft()
    accounts: tuple[CatalogItem, ...] = ()
    categories: tuple[CatalogItem, ...] = ()
    transactions: TransactionsPage = TransactionsPage()
    ui: UiState = UiState()
    selected: SelectedTransaction = SelectedTransaction()
