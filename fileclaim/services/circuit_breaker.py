"""
Circuit breaker implementation using pybreaker library.
State lives in Redis when the ledger runs on Redis (shared by all workers),
in process memory otherwise.
"""
import logging
from datetime import datetime

import pybreaker
import redis

from fileclaim.core.config import Settings
from fileclaim.utils.metrics import circuit_breaker_state


logger = logging.getLogger("circuit_breaker")


class RedisCircuitBreakerStorage(pybreaker.CircuitBreakerStorage):
    """Redis-backed storage for circuit breaker state (distributed-friendly)."""

    def __init__(self, name: str, client: redis.Redis, open_seconds: int) -> None:
        super().__init__(name)
        self._name = name
        self.client = client
        self._open_seconds = open_seconds
        self._state_key = f"cb:{name}:state"
        self._counter_key = f"cb:{name}:counter"
        self._opened_at_key = f"cb:{name}:opened_at"
        self._success_key = f"cb:{name}:success"

    @property
    def state(self) -> str:
        state = self.client.get(self._state_key)
        return state or pybreaker.STATE_CLOSED

    @state.setter
    def state(self, value: str) -> None:
        self.client.set(self._state_key, value, ex=self._open_seconds * 2)
        circuit_breaker_state.labels(name=self._name).set(
            1 if value == pybreaker.STATE_OPEN else 0
        )

    @property
    def counter(self) -> int:
        count = self.client.get(self._counter_key)
        return int(count) if count else 0

    def increment_counter(self) -> None:
        self.client.incr(self._counter_key)
        self.client.expire(self._counter_key, self._open_seconds)

    def reset_counter(self) -> None:
        self.client.delete(self._counter_key)

    @property
    def success_counter(self) -> int:
        count = self.client.get(self._success_key)
        return int(count) if count else 0

    def increment_success_counter(self) -> None:
        self.client.incr(self._success_key)
        self.client.expire(self._success_key, self._open_seconds)

    def reset_success_counter(self) -> None:
        self.client.delete(self._success_key)

    @property
    def opened_at(self) -> datetime | None:
        raw = self.client.get(self._opened_at_key)
        if not raw:
            return None
        return datetime.fromisoformat(raw)

    @opened_at.setter
    def opened_at(self, datetime_value: datetime) -> None:
        self.client.set(self._opened_at_key, datetime_value.isoformat(), ex=self._open_seconds * 2)


class CircuitBreakerListener(pybreaker.CircuitBreakerListener):
    """Listener for circuit breaker events (logging/metrics)."""

    def __init__(self, name: str) -> None:
        self.name = name

    def state_change(self, cb: pybreaker.CircuitBreaker, old_state, new_state) -> None:
        logger.warning(
            "circuit_breaker_state_change",
            extra={
                "breaker_name": self.name,
                "old_state": getattr(old_state, "name", str(old_state)),
                "new_state": getattr(new_state, "name", str(new_state)),
            },
        )

    def failure(self, cb: pybreaker.CircuitBreaker, exc: BaseException) -> None:
        logger.warning(
            "circuit_breaker_failure",
            extra={
                "breaker_name": self.name,
                "error": type(exc).__name__,
            },
        )


def build_circuit_breaker(
    name: str,
    settings: Settings,
    redis_client: redis.Redis | None = None,
    exclude: list[type[BaseException]] | None = None,
) -> pybreaker.CircuitBreaker:
    """Create a breaker; exceptions listed in exclude do not count as failures."""
    if redis_client is not None:
        storage = RedisCircuitBreakerStorage(name, redis_client, settings.cb_open_seconds)
    else:
        storage = pybreaker.CircuitMemoryStorage(pybreaker.STATE_CLOSED)
    return pybreaker.CircuitBreaker(
        fail_max=settings.cb_failure_threshold,
        reset_timeout=settings.cb_open_seconds,
        state_storage=storage,
        listeners=[CircuitBreakerListener(name)],
        exclude=exclude or [],
        name=name,
    )
