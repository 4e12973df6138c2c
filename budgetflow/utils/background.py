import asyncio
import logging
from typing import Any, Coroutine

logger = logging.getLogger(__name__)

# сильные ссылки на фоновые задачи, иначе GC может собрать их до завершения
_background_tasks: set[asyncio.Task] = set()


def fire_and_forget(coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task:
    """Запускает best-effort эффект (зеркало в debug-вебхук, обновление баланса).

    Результат никто не ждёт, ошибка только логируется и не влияет на вызывающий код.
    """
    task = asyncio.create_task(coro, name=name)
    _background_tasks.add(task)
    task.add_done_callback(_on_done)
    return task


def _on_done(task: asyncio.Task) -> None:
    _background_tasks.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.warning(f"[BACKGROUND] {task.get_name()} failed: {exc}")


async def drain_background(timeout: float | None = None) -> None:
    """Дождаться всех фоновых задач (при остановке приложения и в тестах)."""
    pending = list(_background_tasks)
    if pending:
        await asyncio.wait(pending, timeout=timeout)
