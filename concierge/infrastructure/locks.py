"""
Per-key mutual exclusion.

Every booking transition runs inside ``locks.hold("booking:<id>")`` so the
read-validate-write sequence for one booking is never interleaved with
another writer.  The database row lock and version column back this up.

Two backends:

* ``DistributedLock`` -- Redis ``SET NX EX`` for acquire and a Lua script
  for atomic check-and-delete on release.  Safe across API processes.
* ``LocalLockRegistry`` -- one ``asyncio.Lock`` per key, for a single
  process (development, tests).

Acquisition never blocks indefinitely: a lock that cannot be obtained
within ``wait_seconds`` raises ``ExternalDependencyFailure`` (retryable).
"""

from __future__ import annotations

import asyncio
import time
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from concierge.domain.errors import ExternalDependencyFailure

_RELEASE_LUA = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


class DistributedLock:
    def __init__(
        self, client: aioredis.Redis, key: str, ttl_seconds: int = 30
    ):
        self.redis = client
        self.key = f"lock:{key}"
        self.ttl = ttl_seconds
        self.token = str(uuid.uuid4())

    async def acquire(self, wait_seconds: float = 0.0, poll_seconds: float = 0.05) -> bool:
        """Try to acquire, polling for up to *wait_seconds*.  True on success."""
        deadline = time.monotonic() + wait_seconds
        while True:
            if await self.redis.set(self.key, self.token, nx=True, ex=self.ttl):
                return True
            if time.monotonic() >= deadline:
                return False
            await asyncio.sleep(poll_seconds)

    async def release(self) -> None:
        """Release only if we still own the lock (atomic via Lua)."""
        await self.redis.eval(_RELEASE_LUA, 1, self.key, self.token)


class RedisLockProvider:
    def __init__(self, client: aioredis.Redis, ttl_seconds: int, wait_seconds: float):
        self.client = client
        self.ttl = ttl_seconds
        self.wait = wait_seconds

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = DistributedLock(self.client, key, ttl_seconds=self.ttl)
        try:
            acquired = await lock.acquire(wait_seconds=self.wait)
        except RedisError as exc:
            raise ExternalDependencyFailure(f"lock store unavailable: {exc}") from exc
        if not acquired:
            raise ExternalDependencyFailure(f"timed out waiting for lock {key}")
        try:
            yield
        finally:
            await lock.release()


class LocalLockRegistry:
    def __init__(self, wait_seconds: float = 5.0):
        self.wait = wait_seconds
        self._locks: dict[str, asyncio.Lock] = {}
        # holders plus waiters per key; the key is dropped when it reaches zero
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            try:
                await asyncio.wait_for(lock.acquire(), timeout=self.wait)
            except asyncio.TimeoutError as exc:
                raise ExternalDependencyFailure(f"timed out waiting for lock {key}") from exc
            try:
                yield
            finally:
                lock.release()
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]


def booking_lock_key(booking_id: int) -> str:
    return f"booking:{booking_id}"
