import asyncio

from budgetflow.scheduler.scheduler import cache_ttls, purge_cache, run_health_check
from budgetflow.states.events import ServiceStatusChanged


class FakeService:
    def __init__(self, configured, ok, message):
        self.is_configured = configured
        self._result = (ok, message)

    async def check_connection(self):
        return self._result


class RecordingInterpreter:
    def __init__(self):
        self.sent = []

    def send(self, event):
        self.sent.append(event)


def test_health_check_reports_each_service():
    interpreter = RecordingInterpreter()
    catalog = FakeService(True, True, "Connected to Sync API")
    ledger = FakeService(False, False, "Ledger API not configured")

    asyncio.run(run_health_check(interpreter, catalog, ledger))
    assert interpreter.sent == [
        ServiceStatusChanged(service="sync", status="connected", message="Connected to Sync API"),
        ServiceStatusChanged(service="ledger", status="not_configured", message="Ledger API not configured"),
    ]


def test_unreachable_service_is_disconnected():
    interpreter = RecordingInterpreter()
    catalog = FakeService(True, False, "API request failed: 503 Service Unavailable")
    asyncio.run(run_health_check(interpreter, catalog, FakeService(True, True, "ok")))
    assert interpreter.sent[0].status == "disconnected"


def test_purge_uses_configured_ttls():
    class Store:
        async def purge_expired(self, ttls, now=None):
            self.ttls = ttls
            return 3

    store = Store()
    assert asyncio.run(purge_cache(store)) == 3
    assert store.ttls == cache_ttls()
    assert store.ttls["exchange_rate"] == 3600
