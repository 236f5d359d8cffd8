"""
Tenant-scoped cache for dashboard-style aggregates.

Keys are namespaced as ``<namespace>:tenant:<id>:<name>``. Approving an import
invalidates every namespace for the tenant so totals and counts are recomputed.
"""

from __future__ import annotations

import json
import threading
import time
import uuid
from collections.abc import Callable
from typing import Any

import redis

from stockroom.core.config import settings
from stockroom.core.logging import get_logger, log_event

logger = get_logger(__name__)

AGGREGATE_NAMESPACES = ("dashboard", "imports", "products", "menu", "ledger")


def _tenant_prefix(namespace: str, tenant_id: uuid.UUID) -> str:
    return f"{namespace}:tenant:{tenant_id}:"


class AggregateCache:
    def get(self, key: str) -> Any | None:  # pragma: no cover
        raise NotImplementedError

    def set(self, key: str, value: Any, *, ttl_seconds: int) -> None:  # pragma: no cover
        raise NotImplementedError

    def delete_prefix(self, prefix: str) -> int:  # pragma: no cover
        raise NotImplementedError

    def get_or_compute(
        self,
        *,
        namespace: str,
        tenant_id: uuid.UUID,
        name: str,
        compute: Callable[[], Any],
        ttl_seconds: int | None = None,
    ) -> Any:
        key = _tenant_prefix(namespace, tenant_id) + name
        cached = self.get(key)
        if cached is not None:
            return cached
        value = compute()
        self.set(key, value, ttl_seconds=ttl_seconds or settings.aggregate_cache_ttl_seconds)
        return value

    def invalidate_tenant(self, tenant_id: uuid.UUID) -> None:
        removed = 0
        for namespace in AGGREGATE_NAMESPACES:
            removed += self.delete_prefix(_tenant_prefix(namespace, tenant_id))
        log_event(logger, "cache.invalidate", tenant_id=str(tenant_id), removed=removed)


class MemoryAggregateCache(AggregateCache):
    def __init__(self) -> None:
        self._items: dict[str, tuple[float, str]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Any | None:
        with self._lock:
            item = self._items.get(key)
            if item is None:
                return None
            expires_at, raw = item
            if expires_at < time.monotonic():
                del self._items[key]
                return None
        return json.loads(raw)

    def set(self, key: str, value: Any, *, ttl_seconds: int) -> None:
        raw = json.dumps(value, default=str)
        with self._lock:
            self._items[key] = (time.monotonic() + ttl_seconds, raw)

    def delete_prefix(self, prefix: str) -> int:
        with self._lock:
            keys = [k for k in self._items if k.startswith(prefix)]
            for key in keys:
                del self._items[key]
        return len(keys)


class RedisAggregateCache(AggregateCache):
    def __init__(self, client: redis.Redis):
        self._client = client

    def get(self, key: str) -> Any | None:
        raw = self._client.get(key)
        return json.loads(raw) if raw else None

    def set(self, key: str, value: Any, *, ttl_seconds: int) -> None:
        self._client.setex(key, ttl_seconds, json.dumps(value, default=str))

    def delete_prefix(self, prefix: str) -> int:
        keys = list(self._client.scan_iter(match=prefix + "*"))
        if not keys:
            return 0
        return int(self._client.delete(*keys))


_cache: AggregateCache | None = None


def get_cache() -> AggregateCache:
    global _cache  # noqa: PLW0603
    if _cache is not None:
        return _cache
    if settings.coordination == "redis":
        _cache = RedisAggregateCache(redis.Redis.from_url(settings.redis_url))
    else:
        _cache = MemoryAggregateCache()
    return _cache
