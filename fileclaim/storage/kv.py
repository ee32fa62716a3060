"""
Key-value store used as the token ledger.

Two backends share one contract:
- RedisKeyValueStore: production; per-key TTL via SET EX, atomic take via GETDEL.
- InMemoryKeyValueStore: local runs and tests; TTL evaluated lazily against an
  injectable clock.

`atomic_take` tells the ledger whether take() is a single atomic operation on
the backend. When it is False the ledger falls back to get-then-delete and the
narrow double-redemption window applies.
"""
from __future__ import annotations

import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, Iterator

import redis


class KeyValueStoreError(Exception):
    """Backend unreachable or returned an error."""


class KeyValueStore(ABC):
    atomic_take: bool = False

    @abstractmethod
    def get(self, key: str) -> str | None:
        raise NotImplementedError

    @abstractmethod
    def put(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        raise NotImplementedError

    @abstractmethod
    def put_if_absent(self, key: str, value: str, ttl_seconds: int | None = None) -> bool:
        """Write only when the key is missing. Returns True if this call wrote it."""
        raise NotImplementedError

    @abstractmethod
    def delete(self, key: str) -> None:
        raise NotImplementedError

    def take(self, key: str) -> str | None:
        """Read and remove a key. Not atomic unless the backend overrides it."""
        value = self.get(key)
        if value is not None:
            self.delete(key)
        return value

    @abstractmethod
    def scan(self, prefix: str) -> Iterator[str]:
        raise NotImplementedError

    def ping(self) -> bool:
        return True


class RedisKeyValueStore(KeyValueStore):
    atomic_take = True

    def __init__(self, client: redis.Redis) -> None:
        self.client = client

    @classmethod
    def from_url(cls, url: str, socket_timeout: float | None = None) -> "RedisKeyValueStore":
        return cls(
            redis.Redis.from_url(
                url,
                decode_responses=True,
                socket_timeout=socket_timeout,
                socket_connect_timeout=socket_timeout,
            )
        )

    def get(self, key: str) -> str | None:
        try:
            return self.client.get(key)
        except redis.RedisError as e:
            raise KeyValueStoreError(str(e)) from e

    def put(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        try:
            self.client.set(key, value, ex=ttl_seconds)
        except redis.RedisError as e:
            raise KeyValueStoreError(str(e)) from e

    def put_if_absent(self, key: str, value: str, ttl_seconds: int | None = None) -> bool:
        try:
            created = self.client.set(key, value, nx=True, ex=ttl_seconds)
        except redis.RedisError as e:
            raise KeyValueStoreError(str(e)) from e
        return created is not None

    def delete(self, key: str) -> None:
        try:
            self.client.delete(key)
        except redis.RedisError as e:
            raise KeyValueStoreError(str(e)) from e

    def take(self, key: str) -> str | None:
        # GETDEL (Redis >= 6.2): exactly one concurrent caller gets the value.
        try:
            return self.client.getdel(key)
        except redis.RedisError as e:
            raise KeyValueStoreError(str(e)) from e

    def scan(self, prefix: str) -> Iterator[str]:
        try:
            yield from self.client.scan_iter(match=f"{prefix}*")
        except redis.RedisError as e:
            raise KeyValueStoreError(str(e)) from e

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except redis.RedisError as e:
            raise KeyValueStoreError(str(e)) from e


class InMemoryKeyValueStore(KeyValueStore):
    """
    Process-local store with per-key expiry.
    The lock only keeps the dict consistent; take() is atomic here as well, set
    atomic_take=False to exercise the read-then-delete path.
    """

    def __init__(self, clock: Callable[[], float] = time.time, atomic_take: bool = True) -> None:
        self._clock = clock
        self._data: dict[str, tuple[str, float | None]] = {}
        self._lock = threading.Lock()
        self.atomic_take = atomic_take

    def _live(self, key: str) -> str | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._data[key]
            return None
        return value

    def _expiry(self, ttl_seconds: int | None) -> float | None:
        return self._clock() + ttl_seconds if ttl_seconds else None

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._live(key)

    def put(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        with self._lock:
            self._data[key] = (value, self._expiry(ttl_seconds))

    def put_if_absent(self, key: str, value: str, ttl_seconds: int | None = None) -> bool:
        with self._lock:
            if self._live(key) is not None:
                return False
            self._data[key] = (value, self._expiry(ttl_seconds))
            return True

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def take(self, key: str) -> str | None:
        if not self.atomic_take:
            return super().take(key)
        with self._lock:
            value = self._live(key)
            if value is not None:
                del self._data[key]
            return value

    def scan(self, prefix: str) -> Iterator[str]:
        with self._lock:
            keys = [k for k in list(self._data) if k.startswith(prefix) and self._live(k) is not None]
        yield from keys
