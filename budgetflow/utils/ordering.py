from typing import Any, Callable, Iterable, TypeVar

T = TypeVar("T")


def usage_of(item: Any) -> int:
    """usage_count у dataclass-объекта или словаря из API; всё нечисловое считается нулём."""
    raw = item.get("usage_count") if isinstance(item, dict) else getattr(item, "usage_count", 0)
    try:
        return int(raw or 0)
    except (TypeError, ValueError):
        return 0


def sort_by_usage(items: Iterable[T], key: Callable[[Any], int] = usage_of) -> list[T]:
    """Сортировка списков выбора: сначала использованные, по убыванию usage_count.

    Внутри группы с одинаковым счётчиком сохраняется исходный порядок выдачи API,
    неиспользованные (usage_count == 0) идут в конце тоже в исходном порядке.

    Пример:
        [A(0), B(5), C(5), D(0)] -> [B, C, A, D]
    """
    items = list(items)
    used = [x for x in items if key(x) > 0]
    unused = [x for x in items if key(x) <= 0]
    # sorted() стабилен
    return sorted(used, key=lambda x: -key(x)) + unused
