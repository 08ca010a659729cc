"""
ProjectHub session store on Redis.

Sessions live in their own Redis database (``redis.session_db``, 4 by
default) under the ``projecthub:session:`` prefix. Nothing in Redis is
authoritative: if it goes away users are simply logged out.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Callable, Optional, Set

import redis

logger = logging.getLogger("projecthub.engine.cache")


class CircuitBreaker:
    """
    Counts failures inside a rolling window.

    ``threshold`` failures within ``window`` seconds open the breaker; it
    stays open until ``window`` seconds after the first of those failures.
    """

    def __init__(self, threshold: int = 5, window: float = 30.0, clock: Callable[[], float] = time.monotonic):
        self.threshold = threshold
        self.window = window
        self._clock = clock
        self._failures = 0
        self._since = 0.0
        self.is_open = False

    def failure(self) -> None:
        now = self._clock()
        if self._failures == 0 or now - self._since > self.window:
            self._failures, self._since = 0, now
        self._failures += 1
        if self._failures >= self.threshold and not self.is_open:
            self.is_open = True
            logger.error(
                "Redis circuit breaker OPEN: %d failures in %.1fs", self._failures, now - self._since
            )

    def cooled_down(self) -> bool:
        return self.is_open and self._clock() - self._since > self.window

    def reset(self) -> None:
        self._failures = 0
        self.is_open = False


class RedisCache:
    """
    Prefixed Redis client that never raises on connection trouble.

    Reads report a miss and writes return False while Redis is unreachable
    or the circuit breaker is open; the next call after the cool-down
    attempts a reconnect.
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        prefix: str = "projecthub:",
        default_ttl: int = 300,
        db: int = 0,
        breaker: Optional[CircuitBreaker] = None,
    ):
        self._redis_url = redis_url
        self._prefix = prefix
        self._default_ttl = default_ttl
        self._db = db
        self._client: Optional[redis.Redis] = None
        self._connected = False
        self._breaker = breaker or CircuitBreaker()

    @property
    def prefix(self) -> str:
        return self._prefix

    @property
    def default_ttl(self) -> int:
        return self._default_ttl

    @property
    def is_available(self) -> bool:
        return self._connected and not self._breaker.is_open

    @property
    def is_circuit_open(self) -> bool:
        return self._breaker.is_open

    def connect(self) -> bool:
        client = redis.Redis.from_url(
            self._redis_url,
            db=self._db,
            decode_responses=True,
            socket_timeout=5,
            socket_connect_timeout=5,
            retry_on_timeout=True,
        )
        try:
            client.ping()
        except redis.RedisError as exc:
            logger.warning("Redis connection failed (DB %s): %s", self._db, exc)
            self._connected = False
            return False
        self._client = client
        self._connected = True
        self._breaker.reset()
        logger.info("Redis connected: DB %s (%s)", self._db, self._prefix)
        return True

    def _usable(self) -> bool:
        if self._breaker.cooled_down():
            self._breaker.reset()
            return self.connect()
        return self.is_available

    def _call(self, op: str, default: Any, key: str, *args: Any, **kwargs: Any) -> Any:
        """Run ``client.<op>(prefix+key, ...)``; any Redis error counts against the breaker."""
        if not self._usable():
            return default
        try:
            return getattr(self._client, op)(self._prefix + key, *args, **kwargs)
        except redis.RedisError as exc:
            self._breaker.failure()
            logger.debug("Redis %s failed: %s", op.upper(), exc)
            return default

    def get(self, key: str) -> Optional[str]:
        return self._call("get", None, key)

    def set(self, key: str, value: str, ttl: Optional[int] = None) -> bool:
        ok = self._call("set", False, key, value, ex=ttl or self._default_ttl)
        return ok is not False

    def delete(self, key: str) -> bool:
        return self._call("delete", False, key) is not False

    def get_json(self, key: str) -> Optional[Any]:
        raw = self.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.debug("Discarding non-JSON value at %s%s", self._prefix, key)
            return None

    def set_json(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        return self.set(key, json.dumps(value, default=str), ttl=ttl)

    # Sets back the per-user session index

    def sadd(self, key: str, *values: str) -> bool:
        return self._call("sadd", False, key, *values) is not False

    def srem(self, key: str, *values: str) -> bool:
        return self._call("srem", False, key, *values) is not False

    def smembers(self, key: str) -> Set[str]:
        return set(self._call("smembers", set(), key))

    def scard(self, key: str) -> int:
        return int(self._call("scard", 0, key))

    def ping(self) -> bool:
        if self._client is None:
            return False
        try:
            return bool(self._client.ping())
        except redis.RedisError:
            return False

    def close(self) -> None:
        client, self._client = self._client, None
        self._connected = False
        self._breaker.reset()
        if client is not None:
            try:
                client.close()
            except redis.RedisError as exc:
                logger.debug("Redis close failed: %s", exc)


def create_session_store(redis_url: str, ttl: int = 3600, db: int = 4) -> RedisCache:
    store = RedisCache(redis_url=redis_url, prefix="projecthub:session:", default_ttl=ttl, db=db)
    store.connect()
    return store
