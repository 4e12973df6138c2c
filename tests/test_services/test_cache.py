import asyncio

from budgetflow.db import init_db, make_engine, make_sessionmaker
from budgetflow.repo.cache_repo import SqlCacheStore
from budgetflow.services.cache import TwoTierCache, make_key


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class DictStore:
    """Долговременный уровень в памяти для тестов."""

    def __init__(self):
        self.rows = {}
        self.fail = False

    async def load(self, namespace, key):
        if self.fail:
            raise OSError("store down")
        return self.rows.get((namespace, key))

    async def store(self, namespace, key, value, stored_at):
        if self.fail:
            raise OSError("store down")
        self.rows[(namespace, key)] = (value, stored_at)

    async def remove(self, namespace, key):
        self.rows.pop((namespace, key), None)

    async def clear(self, namespace):
        for k in [k for k in self.rows if k[0] == namespace]:
            del self.rows[k]


def test_make_key_keeps_user_names_distinct():
    assert make_key("USD", "EUR") == "USD:EUR"
    assert make_key("alice", "withdrawal") == "alice:withdrawal"
    assert make_key("Alice", "withdrawal") != make_key("alice", "withdrawal")
    assert make_key("alice", None) == "alice:"
    assert make_key("alice", None) != make_key("alice")
    assert make_key("a:b", "c") != make_key("a", "b:c")


def test_entry_expires_after_ttl_in_both_tiers():
    clock = FakeClock()
    store = DictStore()
    cache = TwoTierCache("accounts", ttl=60, durable=store, clock=clock)

    async def scenario():
        await cache.set("ALICE", [1, 2])
        clock.now += 59
        fresh = await cache.get("ALICE")
        clock.now += 1
        stale = await cache.get("ALICE")
        return fresh, stale

    fresh, stale = asyncio.run(scenario())
    assert fresh == [1, 2]
    assert stale is None
    assert store.rows == {}


def test_durable_hit_is_promoted_to_memory():
    clock = FakeClock()
    store = DictStore()
    store.rows[("exchange_rate", "USD:EUR")] = (0.9, clock.now - 10)
    cache = TwoTierCache("exchange_rate", ttl=3600, durable=store, clock=clock)

    async def scenario():
        first = await cache.get("USD:EUR")
        store.rows.clear()
        second = await cache.get("USD:EUR")
        return first, second

    assert asyncio.run(scenario()) == (0.9, 0.9)


def test_expired_durable_entry_is_removed():
    clock = FakeClock()
    store = DictStore()
    store.rows[("balance", "ALL")] = ({"EUR": 1}, clock.now - 500)
    cache = TwoTierCache("balance", ttl=300, durable=store, clock=clock)

    assert asyncio.run(cache.get("ALL")) is None
    assert store.rows == {}


def test_durable_failures_fall_back_to_memory(caplog):
    store = DictStore()
    store.fail = True
    cache = TwoTierCache("categories", ttl=60, durable=store, clock=FakeClock())

    async def scenario():
        miss = await cache.get("ALICE")
        await cache.set("ALICE", ["Food"])
        return miss, await cache.get("ALICE")

    assert asyncio.run(scenario()) == (None, ["Food"])
    assert "store down" in caplog.text


def test_clear_drops_namespace_only():
    store = DictStore()
    clock = FakeClock()
    accounts = TwoTierCache("accounts", ttl=60, durable=store, clock=clock)
    rates = TwoTierCache("exchange_rate", ttl=60, durable=store, clock=clock)

    async def scenario():
        await accounts.set("ALICE", [1])
        await rates.set("USD:EUR", 0.9)
        await accounts.clear()
        return await accounts.get("ALICE"), await rates.get("USD:EUR")

    assert asyncio.run(scenario()) == (None, 0.9)
    assert list(store.rows) == [("exchange_rate", "USD:EUR")]


def test_sql_store_round_trip_and_purge(tmp_path):
    async def scenario():
        url = f"sqlite+aiosqlite:///{tmp_path}/cache.db"
        engine = make_engine(url)
        await init_db(target=engine, url=url)
        try:
            store = SqlCacheStore(make_sessionmaker(engine))
            await store.store("accounts", "ALICE", [{"id": "1"}], 100.0)
            await store.store("accounts", "ALICE", [{"id": "2"}], 200.0)
            await store.store("exchange_rate", "USD:EUR", 0.9, 100.0)
            loaded = await store.load("accounts", "ALICE")
            removed = await store.purge_expired({"accounts": 60, "exchange_rate": 3600}, now=300.0)
            left = (await store.load("accounts", "ALICE"), await store.load("exchange_rate", "USD:EUR"))
            return loaded, removed, left
        finally:
            await engine.dispose()

    loaded, removed, left = asyncio.run(scenario())
    assert loaded == ([{"id": "2"}], 200.0)
    assert removed == 1
    assert left == (None, (0.9, 100.0))
