"""
cache/store.py -- Ephemeral secret store for one-time codes and OAuth state.

Short-lived values (2FA codes, OAuth state nonces, password-reset tokens,
attempt counters) live here, never in the relational store. Every value has a
TTL; a key that has expired is indistinguishable from one that never existed.

Two backends share one async interface:
  RedisSecretStore  -- redis.asyncio client. Required when more than one API
                       instance runs, since codes and state must be visible to
                       whichever instance serves the follow-up request.
  MemorySecretStore -- in-process dict, selected with "memory://". For local
                       development and tests; scoped to one process.

Atomicity: set() overwrites, so the most recent code always wins. pop() is a
single GETDEL, so a state nonce can be consumed by at most one request.

Usage:
    store = create_secret_store("redis://localhost:6379/0")
    await store.set("2fa:<id>", "123456", ttl=600)
    code = await store.get("2fa:<id>")    # str or None
    state = await store.pop("oauth:state:<nonce>")
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

import redis.asyncio as redis
from redis.exceptions import RedisError

logger = logging.getLogger("eatfast.cache")


class SecretStoreError(Exception):
    """The backing store could not be reached or rejected the command."""


class SecretStore:
    """Async key/value interface with per-key expiry."""

    async def set(self, key: str, value: str, ttl: int) -> None:
        raise NotImplementedError

    async def get(self, key: str) -> str | None:
        raise NotImplementedError

    async def pop(self, key: str) -> str | None:
        """Return and delete the value in one step. None if missing/expired."""
        raise NotImplementedError

    async def delete(self, *keys: str) -> None:
        raise NotImplementedError

    async def incr(self, key: str, ttl: int) -> int:
        """Increment a counter, starting its TTL on first increment."""
        raise NotImplementedError

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        pass


class MemorySecretStore(SecretStore):
    """Process-local store. Expired entries are dropped lazily on read."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._data: dict[str, tuple[str, float]] = {}
        self.clock = clock

    def _live(self, key: str) -> str | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self.clock() >= expires_at:
            del self._data[key]
            return None
        return value

    async def set(self, key: str, value: str, ttl: int) -> None:
        self._data[key] = (value, self.clock() + ttl)

    async def get(self, key: str) -> str | None:
        return self._live(key)

    async def pop(self, key: str) -> str | None:
        value = self._live(key)
        self._data.pop(key, None)
        return value

    async def delete(self, *keys: str) -> None:
        for key in keys:
            self._data.pop(key, None)

    async def incr(self, key: str, ttl: int) -> int:
        current = self._live(key)
        if current is None:
            self._data[key] = ("1", self.clock() + ttl)
            return 1
        count = int(current) + 1
        self._data[key] = (str(count), self._data[key][1])
        return count

    def purge_expired(self) -> int:
        """Delete all expired entries. Returns number of entries removed."""
        now = self.clock()
        stale = [k for k, (_, exp) in self._data.items() if now >= exp]
        for key in stale:
            del self._data[key]
        return len(stale)


class RedisSecretStore(SecretStore):
    """redis.asyncio-backed store. RedisError surfaces as SecretStoreError."""

    def __init__(self, url: str) -> None:
        self._client = redis.from_url(url, decode_responses=True, socket_timeout=5)

    async def set(self, key: str, value: str, ttl: int) -> None:
        try:
            await self._client.set(key, value, ex=ttl)
        except RedisError as exc:
            raise SecretStoreError(str(exc)) from exc

    async def get(self, key: str) -> str | None:
        try:
            return await self._client.get(key)
        except RedisError as exc:
            raise SecretStoreError(str(exc)) from exc

    async def pop(self, key: str) -> str | None:
        try:
            return await self._client.getdel(key)
        except RedisError as exc:
            raise SecretStoreError(str(exc)) from exc

    async def delete(self, *keys: str) -> None:
        if not keys:
            return
        try:
            await self._client.delete(*keys)
        except RedisError as exc:
            raise SecretStoreError(str(exc)) from exc

    async def incr(self, key: str, ttl: int) -> int:
        # One MULTI/EXEC so the counter never exists without a TTL. NX keeps
        # the window anchored at the first increment (Redis >= 7).
        try:
            async with self._client.pipeline(transaction=True) as pipe:
                pipe.incr(key)
                pipe.expire(key, ttl, nx=True)
                count, _ = await pipe.execute()
            return int(count)
        except RedisError as exc:
            raise SecretStoreError(str(exc)) from exc

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except RedisError:
            return False

    async def close(self) -> None:
        await self._client.aclose()


def create_secret_store(url: str) -> SecretStore:
    """Build the backend named by url ("memory://" or a redis:// URL)."""
    if url.startswith("memory://"):
        logger.warning("Using in-process secret store -- codes are not shared between instances")
        return MemorySecretStore()
    return RedisSecretStore(url)
