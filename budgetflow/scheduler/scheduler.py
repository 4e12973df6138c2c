import logging

import aiocron

from budgetflow.config import settings
from budgetflow.repo.cache_repo import SqlCacheStore
from budgetflow.services.catalog import CatalogService
from budgetflow.services.transactions import TransactionService
from budgetflow.states.events import ServiceStatusChanged

logger = logging.getLogger(__name__)


def cache_ttls() -> dict[str, float]:
    """TTL долговременного кэша по пространствам имён (для очистки)."""
    return {
        "accounts": settings.ACCOUNTS_CACHE_TTL,
        "categories": settings.CATEGORIES_CACHE_TTL,
        "suggestions": settings.SUGGESTIONS_CACHE_TTL,
        "exchange_rate": settings.EXCHANGE_RATE_CACHE_TTL,
        "balance": settings.BALANCE_CACHE_TTL,
        "transactions": settings.TRANSACTIONS_CACHE_TTL,
    }


def _status(ok: bool, message: str, configured: bool) -> str:
    if not configured:
        return "not_configured"
    return "connected" if ok else "disconnected"


async def run_health_check(interpreter, catalog: CatalogService, submissions: TransactionService) -> None:
    """
    Проверяет доступность API синхронизации и леджера и сообщает машине
    событиями SERVICE_STATUS_CHANGED.
    """
    for service, check, configured in (
        ("sync", catalog.check_connection, catalog.is_configured),
        ("ledger", submissions.check_connection, submissions.is_configured),
    ):
        ok, message = await check()
        status = _status(ok, message, configured)
        if status != "connected":
            logger.warning(f"[HEALTH] {service}: {status} ({message})")
        interpreter.send(ServiceStatusChanged(service=service, status=status, message=message))


def schedule_health_check(
    *,
    interpreter,
    catalog: CatalogService,
    submissions: TransactionService,
    cron: str | None = None,
):
    """
    Планировщик проверки сервисов.

    :param interpreter: Запущенный FlowInterpreter
    :param catalog: Каталог (API синхронизации)
    :param submissions: Сервис транзакций (API леджера)
    :param cron: Cron-выражение (по умолчанию HEALTH_CHECK_CRON)
    """
    cron = cron or settings.HEALTH_CHECK_CRON

    @aiocron.crontab(cron)
    async def health_check_task():
        try:
            await run_health_check(interpreter, catalog, submissions)
        except Exception as e:
            logger.error(f"[HEALTH] Health check failed: {e}")

    logger.info(f"[HEALTH] Health check scheduled: {cron}")
    return health_check_task


async def purge_cache(store: SqlCacheStore, ttls: dict[str, float] | None = None) -> int:
    removed = await store.purge_expired(ttls or cache_ttls())
    logger.info(f"[CACHE] Purged {removed} expired entries")
    return removed


def schedule_cache_purge(*, store: SqlCacheStore, ttls: dict[str, float] | None = None, cron: str | None = None):
    """
    Планирует удаление протухших строк долговременного кэша.
    """
    cron = cron or settings.CACHE_PURGE_CRON

    @aiocron.crontab(cron)
    async def cache_purge_task():
        try:
            await purge_cache(store, ttls)
        except Exception as e:
            logger.error(f"[CACHE] Cache purge failed: {e}")

    logger.info(f"[CACHE] Cache purge scheduled: {cron}")
    return cache_purge_task
