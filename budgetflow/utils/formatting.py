import re
import unicodedata
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

# ZWJ, вариационные селекторы, модификаторы тона кожи, keycap и теги флагов
_EMOJI_COMPONENTS = re.compile(
    "[\u200d\ufe0e\ufe0f\u20e3\U0001F3FB-\U0001F3FF\U000E0020-\U000E007F]"
)


def _to_decimal(s: Any) -> Decimal | None:
    if s is None:
        return None
    t = str(s).strip().replace(" ", "").replace(",", ".")
    if not t:
        return None
    try:
        v = Decimal(t)
    except (InvalidOperation, ValueError):
        return None
    if not v.is_finite():
        return None
    return v


def parse_amount(s: Any) -> Decimal | None:
    """Парсинг суммы, введённой пользователем на экране суммы.

    Args:
        s: Строка с числовым значением (ввод пользователя). Любой другой тип
           приводится к строке, поэтому функция никогда не бросает.

    Returns:
        Decimal | None: Конечное значение > 0, иначе None ("0", "abc", "NaN", "Infinity").
    """
    v = _to_decimal(s)
    if v is not None and v > 0:
        return v
    return None


def parse_fee(s: Any) -> Decimal | None:
    """Комиссия перевода: пустая строка означает 0, иначе конечное число >= 0."""
    if s is None or not str(s).strip():
        return Decimal("0")
    v = _to_decimal(s)
    if v is not None and v >= 0:
        return v
    return None


def normalize_amount_input(value) -> str:
    """Нормализация суммы перед отправкой в леджер ('43.00' -> '43').

    Args:
        value: Введённое пользователем значение суммы (строка или число).

    Returns:
        str: Нормализованная строка суммы.
    """
    try:
        d = Decimal(str(value).replace(",", "."))
        s = format(d, "f")          # без экспоненты
        if "." in s:
            s = s.rstrip("0").rstrip(".")
        return s or "0"
    except (InvalidOperation, ValueError):
        return str(value)


def clean_category_name(category: str) -> str:
    """Убирает эмодзи из названия категории: '🦐Їжа' -> 'Їжа'.

    Буквы любых алфавитов сохраняются, удаляются только пиктограммы
    (категория Unicode So) и служебные компоненты эмодзи.
    """
    if not category:
        return ""
    text = _EMOJI_COMPONENTS.sub("", category)
    text = "".join(ch for ch in text if unicodedata.category(ch) != "So")
    return text.strip()


def extract_budget_name(category: str) -> str:
    """Имя бюджета для леджера: категория без эмодзи, NFKC, схлопнутые пробелы."""
    cleaned = clean_category_name(category)
    if not cleaned:
        return ""
    return re.sub(r"\s+", " ", unicodedata.normalize("NFKC", cleaned)).strip()


def remove_null_values(payload: dict) -> dict:
    return {k: v for k, v in payload.items() if v is not None}


def parse_iso_date(value: str | None) -> datetime | None:
    """ISO-8601 строка -> aware datetime (наивные даты считаются UTC). None, если не парсится."""
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def to_iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat()


_CENT = Decimal("0.01")

# верхняя граница суммы, которую принимают экраны ввода
MAX_AMOUNT = Decimal("999999999999.99")


def apply_rate(amount: Decimal, rate: float) -> Decimal | None:
    """amount * rate, округлено до центов (ROUND_HALF_UP).

    Returns:
        Decimal | None: None, если результат не помещается в точность Decimal
        (например, "1e30" по курсу 0.9).
    """
    try:
        return (Decimal(amount) * Decimal(str(rate))).quantize(_CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        return None
