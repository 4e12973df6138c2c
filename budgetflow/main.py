import asyncio
import json
import logging
import os
import sys
from dataclasses import dataclass
from typing import Any, Optional

from budgetflow.config import settings
from budgetflow.db import SessionLocal, init_db
from budgetflow.repo.cache_repo import SqlCacheStore
from budgetflow.repo.snapshot_repo import SnapshotRepo
from budgetflow.scheduler.scheduler import schedule_cache_purge, schedule_health_check
from budgetflow.services.actors import FlowActors
from budgetflow.services.api_client import LedgerApiClient
from budgetflow.services.catalog import CatalogService
from budgetflow.services.profile import ProfileService
from budgetflow.services.rates.exchange import ExchangeRateClient
from budgetflow.services.transactions import TransactionService
from budgetflow.states.events import (
    DeleteTransaction,
    Event,
    SetSubmitMessage,
    SetSubmitting,
    SubmitTransaction,
    SubmitTransfer,
    event_from_dict,
)
from budgetflow.states.interpreter import FlowInterpreter
from budgetflow.states.persistence import SnapshotPersister
from budgetflow.states.screens import Screen
from budgetflow.utils.alerts import setup_logging
from budgetflow.utils.background import drain_background

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    interpreter: FlowInterpreter
    catalog: CatalogService
    submissions: TransactionService
    persister: SnapshotPersister
    cache_store: SqlCacheStore


def build_runtime(host_user: Optional[dict[str, Any]] = None, session_factory=None) -> Runtime:
    """Собирает сервисы, акторы и интерпретатор поверх одной базы."""
    session_factory = session_factory or SessionLocal
    store = SqlCacheStore(session_factory)
    api = LedgerApiClient()
    catalog = CatalogService(api, durable=store)
    exchange = ExchangeRateClient(api, durable=store)
    submissions = TransactionService(api, catalog, exchange, durable=store)
    actors = FlowActors(catalog, ProfileService(api), exchange, submissions)
    interpreter = FlowInterpreter(actors.as_mapping())
    user_id = int((host_user or {}).get("id") or 0)
    persister = SnapshotPersister(SnapshotRepo(session_factory), user_id)
    return Runtime(interpreter, catalog, submissions, persister, store)


def _read_host_user() -> Optional[dict[str, Any]]:
    """Пользователь хоста из переменной BUDGETFLOW_HOST_USER (JSON), если задана."""
    raw = os.getenv("BUDGETFLOW_HOST_USER")
    if not raw:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        logger.warning(f"[MAIN] BUDGETFLOW_HOST_USER is not valid JSON: {e}")
        return None


async def submit_for_screen(runtime: Runtime, event: Event) -> bool:
    """Отправка в леджер так, как это делает экран подтверждения.

    Машина только сбрасывает черновик, сетевую запись делает экран:
    SET_SUBMITTING, вызов сервиса, затем либо само событие (успех),
    либо SET_SUBMIT_MESSAGE с текстом ошибки. Возвращает True, если
    событие нужно передать машине.
    """
    interpreter = runtime.interpreter
    state, ctx = interpreter.state, interpreter.context
    submissions = runtime.submissions

    if isinstance(event, SubmitTransaction) and state in (Screen.WITHDRAWAL_CONFIRM, Screen.DEPOSIT_CONFIRM):
        interpreter.send(SetSubmitting(True))
        result = await submissions.submit_transaction(ctx.draft.kind, ctx.draft)
    elif isinstance(event, SubmitTransfer) and state == Screen.TRANSFER_CONFIRM:
        interpreter.send(SetSubmitting(True))
        result = await submissions.submit_transfer(ctx.transfer)
    elif isinstance(event, SubmitTransaction) and state == Screen.TRANSACTION_EDIT:
        result = await submissions.update_transaction(ctx.selected.id, dict(ctx.selected.editing))
    elif isinstance(event, DeleteTransaction) and state == Screen.TRANSACTION_DETAIL:
        result = await submissions.delete_transaction(ctx.selected.id)
    else:
        return True

    for warning in result.warnings:
        print(f"warning: {warning}")
    if result.ok:
        logger.info(f"[MAIN] {event.type} done: {result.message}")
        return True
    print(f"error: {result.status.value}: {result.message}")
    if state.flow in ("withdrawalFlow", "depositFlow", "transferFlow"):
        interpreter.send(SetSubmitMessage(result.message))
        interpreter.send(SetSubmitting(False))
    return False


async def run_console(runtime: Runtime) -> None:
    """Читает события JSON построчно из stdin и печатает состояние после каждого."""
    loop = asyncio.get_running_loop()
    interpreter = runtime.interpreter
    print(f"state: {interpreter.state.value}")
    while True:
        line = await loop.run_in_executor(None, sys.stdin.readline)
        if not line:
            break
        line = line.strip()
        if not line:
            continue
        try:
            event = event_from_dict(json.loads(line))
        except (json.JSONDecodeError, ValueError) as e:
            print(f"error: {e}")
            continue
        if await submit_for_screen(runtime, event):
            interpreter.send(event)
        await interpreter.wait_idle()
        print(f"state: {interpreter.state.value}")


async def main() -> None:
    """Точка входа budgetflow.

    Последовательно выполняет:
      1. Настройку логирования и алертов (`setup_logging`).
      2. Инициализацию базы данных (`init_db`).
      3. Сборку сервисов и интерпретатора (`build_runtime`).
      4. Восстановление снэпшота флоу и старт машины.
      5. Планирование проверки сервисов и очистки кэша (aiocron).
      6. Консоль событий: JSON-события из stdin.
    """
    setup_logging()
    await init_db()
    host_user = _read_host_user()
    runtime = build_runtime(host_user)
    if not settings.is_configured:
        logger.warning("[MAIN] LEDGER_API_URL / SYNC_API_KEY not set, running in not-configured mode")

    snapshot = await runtime.persister.restore() if host_user else None
    runtime.persister.attach(runtime.interpreter)
    await runtime.interpreter.start(host_user=host_user, snapshot=snapshot)

    schedule_health_check(
        interpreter=runtime.interpreter,
        catalog=runtime.catalog,
        submissions=runtime.submissions,
    )
    schedule_cache_purge(store=runtime.cache_store)

    try:
        await run_console(runtime)
    finally:
        runtime.interpreter.stop()
        await runtime.persister.flush()
        await drain_background(timeout=5)


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
