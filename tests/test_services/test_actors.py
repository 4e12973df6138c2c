import asyncio

import httpx

from budgetflow.services.actors import FlowActors
from budgetflow.services.api_client import LedgerApiClient
from budgetflow.services.catalog import CatalogService
from budgetflow.services.profile import ProfileService
from budgetflow.services.rates.exchange import ExchangeRateClient
from budgetflow.services.transactions import TransactionService
from budgetflow.states.machine import FlowMachine


def make_actors(handler):
    api = LedgerApiClient(base_url="https://ledger.test", api_key="k", token="t", init_data="",
                          transport=httpx.MockTransport(handler))
    catalog = CatalogService(api)
    exchange = ExchangeRateClient(api)
    return FlowActors(catalog, ProfileService(api), exchange, TransactionService(api, catalog, exchange))


def test_registry_covers_every_actor_the_machine_invokes():
    names = set(make_actors(lambda r: httpx.Response(404)).as_mapping())
    machine = FlowMachine("EUR")
    invoked = {
        invoke.actor
        for entry in machine._entries.values()
        for invoke in entry.invokes
    }
    assert invoked <= names
    assert {"init_user", "profile", "accounts", "transactions", "transaction_detail"} <= names


def test_actors_delegate_to_services():
    def handler(request):
        if request.url.path == "/api/v1/exchange_rate":
            return httpx.Response(200, json={"result": 1.25})
        if request.url.path == "/api/v1/transactions/7":
            return httpx.Response(200, json={"data": {"id": "7", "attributes": {"transactions": [
                {"type": "deposit", "amount": "10.00", "description": "Salary"},
            ]}}})
        return httpx.Response(404)

    actors = make_actors(handler)

    async def scenario():
        user = await actors.init_user({"host_user": {"id": 42, "username": "alice"}})
        rate = await actors.conversion_rate({"from": "USD", "to": "EUR"})
        detail = await actors.transaction_detail({"id": "7"})
        return user, rate, detail

    user, rate, detail = asyncio.run(scenario())
    assert user.username == "alice"
    assert rate == 1.25
    assert detail["id"] == "7"
    assert detail["description"] == "Salary"
