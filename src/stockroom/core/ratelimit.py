from __future__ import annotations

import threading
import time
import uuid
from collections import deque

import redis

from stockroom.core.config import settings
from stockroom.core.logging import get_logger, log_event

logger = get_logger(__name__)


class SlidingWindowLimiter:
    """At most ``limit`` acquisitions in any ``window_s`` seconds, shared by every caller."""

    def __init__(self, *, limit: int, window_s: float):
        self.limit = limit
        self.window_s = window_s

    def try_acquire(self) -> float:
        """Take a slot now and return 0, or return the seconds until one frees up."""
        raise NotImplementedError  # pragma: no cover

    def acquire(self, *, max_wait_s: float) -> bool:
        deadline = time.monotonic() + max_wait_s
        while True:
            wait_s = self.try_acquire()
            if wait_s <= 0:
                return True
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                log_event(logger, "ratelimit.exhausted", limit=self.limit, window_s=self.window_s)
                return False
            time.sleep(min(wait_s, remaining))


class MemoryLimiter(SlidingWindowLimiter):
    def __init__(self, *, limit: int, window_s: float):
        super().__init__(limit=limit, window_s=window_s)
        self._calls: deque[float] = deque()
        self._lock = threading.Lock()

    def try_acquire(self) -> float:
        now = time.monotonic()
        with self._lock:
            while self._calls and self._calls[0] <= now - self.window_s:
                self._calls.popleft()
            if len(self._calls) < self.limit:
                self._calls.append(now)
                return 0.0
            return self._calls[0] + self.window_s - now


class RedisLimiter(SlidingWindowLimiter):
    def __init__(self, client: redis.Redis, *, key: str, limit: int, window_s: float):
        super().__init__(limit=limit, window_s=window_s)
        self._client = client
        self._key = key

    def try_acquire(self) -> float:
        now = time.time()
        member = f"{now}:{uuid.uuid4().hex}"
        pipe = self._client.pipeline()
        pipe.zremrangebyscore(self._key, 0, now - self.window_s)
        pipe.zadd(self._key, {member: now})
        pipe.zcard(self._key)
        pipe.expire(self._key, int(self.window_s) + 1)
        _, _, count, _ = pipe.execute()
        if count <= self.limit:
            return 0.0
        self._client.zrem(self._key, member)
        oldest = self._client.zrange(self._key, 0, 0, withscores=True)
        if not oldest:
            return 0.05
        return max(0.05, oldest[0][1] + self.window_s - now)


_provider_limiter: SlidingWindowLimiter | None = None


def get_provider_limiter() -> SlidingWindowLimiter:
    global _provider_limiter  # noqa: PLW0603
    if _provider_limiter is not None:
        return _provider_limiter
    limit = settings.provider_rate_limit_calls
    window_s = settings.provider_rate_limit_window_seconds
    if settings.coordination == "redis":
        _provider_limiter = RedisLimiter(
            redis.Redis.from_url(settings.redis_url),
            key="ratelimit:extraction-provider",
            limit=limit,
            window_s=window_s,
        )
    else:
        _provider_limiter = MemoryLimiter(limit=limit, window_s=window_s)
    return _provider_limiter
