"""
Ограничение частоты запросов по адресу клиента.

Окно фиксированное: счётчик живёт до reset_at, первый запрос после него
открывает новое окно. Хранилище подключаемое: в памяти процесса для одного
инстанса, Redis — когда инстансов несколько.
"""
from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Dict, Optional, Tuple

import redis

logger = logging.getLogger(__name__)

AUTHENTICATION = "authentication"
PROFILE_WRITE = "profile-write"


@dataclass(frozen=True)
class ThrottleRule:
    limit: int
    window_seconds: int


@dataclass(frozen=True)
class ThrottleDecision:
    allowed: bool
    remaining: int
    reset_at: float
    limit: int
    retry_after: int = 0


@dataclass
class Window:
    count: int
    reset_at: float


class InMemoryWindowStore:
    """Окна в словаре процесса; размер ограничен max_keys."""

    def __init__(self, max_keys: int = 10_000) -> None:
        self._windows: Dict[str, Window] = {}
        self._lock = Lock()
        self._max_keys = max_keys

    def __len__(self) -> int:
        return len(self._windows)

    def hit(self, key: str, limit: int, window_seconds: int, now: float) -> Tuple[bool, int, float]:
        with self._lock:
            w = self._windows.get(key)
            if w is None or now >= w.reset_at:
                if w is None and len(self._windows) >= self._max_keys:
                    self._make_room(now)
                w = Window(count=0, reset_at=now + window_seconds)
                self._windows[key] = w

            # отказ не увеличивает счётчик
            allowed = w.count < limit
            if allowed:
                w.count += 1
            return allowed, w.count, w.reset_at

    def _make_room(self, now: float) -> None:
        self._drop_expired(now)
        if len(self._windows) >= self._max_keys:
            oldest = min(self._windows, key=lambda k: self._windows[k].reset_at)
            del self._windows[oldest]

    def _drop_expired(self, now: float) -> int:
        expired = [k for k, w in self._windows.items() if now >= w.reset_at]
        for k in expired:
            del self._windows[k]
        return len(expired)

    def sweep(self, now: float) -> int:
        with self._lock:
            return self._drop_expired(now)


class RedisWindowStore:
    """Общие окна для нескольких инстансов: INCR + EXPIRE, очистку делает сам Redis."""

    def __init__(self, client: "redis.Redis", prefix: str = "rate_limit") -> None:
        self._client = client
        self._prefix = prefix

    @classmethod
    def from_url(cls, url: str) -> "RedisWindowStore":
        return cls(redis.from_url(url, decode_responses=True, socket_connect_timeout=5))

    def hit(self, key: str, limit: int, window_seconds: int, now: float) -> Tuple[bool, int, float]:
        rkey = f"{self._prefix}:{key}"
        try:
            pipe = self._client.pipeline()
            pipe.incr(rkey)
            pipe.ttl(rkey)
            count, ttl = pipe.execute()
            if ttl is None or ttl < 0:
                self._client.expire(rkey, window_seconds)
                ttl = window_seconds
        except redis.RedisError as e:
            # Redis недоступен: запрос отклоняем, повтор через секунду
            logger.error("Rate limit check failed for %s: %s", key, e)
            return False, limit, now
        return count <= limit, min(count, limit), now + ttl

    def sweep(self, now: float) -> int:
        return 0


class RequestThrottle:
    def __init__(
        self,
        rules: Dict[str, ThrottleRule],
        store=None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.rules = dict(rules)
        self.store = store if store is not None else InMemoryWindowStore()
        self._clock = clock

    def check(self, client_address: str, route_class: str) -> ThrottleDecision:
        rule = self.rules.get(route_class)
        if rule is None:
            raise ValueError(f"unknown route class {route_class!r}")

        now = self._clock()
        key = f"{route_class}:{client_address or 'unknown'}"
        allowed, count, reset_at = self.store.hit(key, rule.limit, rule.window_seconds, now)
        decision = ThrottleDecision(
            allowed=allowed,
            remaining=max(0, rule.limit - count),
            reset_at=reset_at,
            limit=rule.limit,
            retry_after=0 if allowed else max(1, math.ceil(reset_at - now)),
        )
        if not allowed:
            logger.warning("Rate limit exceeded for %s (limit %s per %ss)",
                           key, rule.limit, rule.window_seconds)
        return decision

    def sweep(self) -> int:
        removed = self.store.sweep(self._clock())
        if removed:
            logger.debug("Dropped %s expired rate limit windows", removed)
        return removed


def build_throttle(
    auth_limit: int,
    auth_window: int,
    profile_limit: int,
    profile_window: int,
    max_keys: int = 10_000,
    redis_url: Optional[str] = None,
) -> RequestThrottle:
    rules = {
        AUTHENTICATION: ThrottleRule(auth_limit, auth_window),
        PROFILE_WRITE: ThrottleRule(profile_limit, profile_window),
    }
    if redis_url:
        logger.info("Rate limiting backed by Redis")
        store = RedisWindowStore.from_url(redis_url)
    else:
        store = InMemoryWindowStore(max_keys=max_keys)
    return RequestThrottle(rules, store=store)
