"""Unit tests for cache/store.py -- the in-memory secret store backend.

The Redis backend shares the same contract; it is exercised against a real
server in deployment. Only its command batching is checked here, against a
recording client.
"""

import asyncio

from cache.store import MemorySecretStore, RedisSecretStore, create_secret_store


class _Tick:
    def __init__(self) -> None:
        self.t = 1000.0

    def __call__(self) -> float:
        return self.t


def test_set_get_and_expiry():
    tick = _Tick()
    store = MemorySecretStore(clock=tick)

    async def scenario():
        await store.set("2fa:a", "123456", ttl=600)
        assert await store.get("2fa:a") == "123456"
        tick.t += 600
        assert await store.get("2fa:a") is None

    asyncio.run(scenario())


def test_pop_is_single_use():
    store = MemorySecretStore()

    async def scenario():
        await store.set("oauth:state:x", "{}", ttl=600)
        assert await store.pop("oauth:state:x") == "{}"
        assert await store.pop("oauth:state:x") is None

    asyncio.run(scenario())


def test_incr_keeps_first_expiry():
    tick = _Tick()
    store = MemorySecretStore(clock=tick)

    async def scenario():
        assert await store.incr("2fa:attempts:a", ttl=10) == 1
        tick.t += 5
        assert await store.incr("2fa:attempts:a", ttl=10) == 2
        tick.t += 5
        # Window started at the first increment, so the counter has reset.
        assert await store.incr("2fa:attempts:a", ttl=10) == 1

    asyncio.run(scenario())


def test_delete_many_and_missing():
    store = MemorySecretStore()

    async def scenario():
        await store.set("a", "1", ttl=60)
        await store.set("b", "2", ttl=60)
        await store.delete("a", "b", "never-set")
        assert await store.get("a") is None
        assert await store.get("b") is None

    asyncio.run(scenario())


def test_purge_expired():
    tick = _Tick()
    store = MemorySecretStore(clock=tick)

    async def scenario():
        await store.set("short", "x", ttl=1)
        await store.set("long", "y", ttl=100)

    asyncio.run(scenario())
    tick.t += 2
    assert store.purge_expired() == 1
    assert asyncio.run(store.get("long")) == "y"


def test_factory_selects_backend():
    assert isinstance(create_secret_store("memory://"), MemorySecretStore)
    assert isinstance(create_secret_store("redis://localhost:6379/0"), RedisSecretStore)


class _RecordingPipeline:
    def __init__(self, client) -> None:
        self.client = client
        self.commands: list[tuple] = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc) -> None:
        return None

    def incr(self, key):
        self.commands.append(("incr", key))
        return self

    def expire(self, key, ttl, nx=False):
        self.commands.append(("expire", key, ttl, nx))
        return self

    async def execute(self):
        self.client.executed.append((self.client.transaction, self.commands))
        self.client.count += 1
        return [self.client.count, True]


class _PipelineClient:
    def __init__(self) -> None:
        self.count = 0
        self.transaction = None
        self.executed: list = []

    def pipeline(self, transaction=True):
        self.transaction = transaction
        return _RecordingPipeline(self)


def test_redis_incr_sends_counter_and_ttl_together():
    store = RedisSecretStore("redis://localhost:6379/0")
    client = _PipelineClient()
    store._client = client

    assert asyncio.run(store.incr("2fa:attempts:a", ttl=600)) == 1
    assert asyncio.run(store.incr("2fa:attempts:a", ttl=600)) == 2

    transaction, commands = client.executed[0]
    assert transaction is True
    assert commands == [("incr", "2fa:attempts:a"), ("expire", "2fa:attempts:a", 600, True)]
    assert len(client.executed) == 2
