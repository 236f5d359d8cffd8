from __future__ import annotations

import uuid

import pytest

import stockroom.core.ratelimit as ratelimit_mod
from stockroom.core.cache import MemoryAggregateCache
from stockroom.core.config import Settings, settings
from stockroom.core.ratelimit import MemoryLimiter, RedisLimiter, get_provider_limiter
from stockroom.worker.celery_app import check_worker_coordination


def test_memory_limiter_caps_calls_per_window():
    limiter = MemoryLimiter(limit=2, window_s=60)
    assert limiter.acquire(max_wait_s=0)
    assert limiter.acquire(max_wait_s=0)
    assert not limiter.acquire(max_wait_s=0)


def test_aggregate_cache_computes_once_and_invalidates_per_tenant():
    cache = MemoryAggregateCache()
    tenant_a, tenant_b = uuid.uuid4(), uuid.uuid4()
    calls: list[str] = []

    def lookup(namespace: str, tenant_id: uuid.UUID, tag: str):
        def compute():
            calls.append(tag)
            return {"total": len(calls)}

        return cache.get_or_compute(
            namespace=namespace, tenant_id=tenant_id, name="totals", compute=compute
        )

    assert lookup("ledger", tenant_a, "a") == {"total": 1}
    assert lookup("ledger", tenant_a, "a") == {"total": 1}
    lookup("imports", tenant_b, "b")
    assert calls == ["a", "b"]

    cache.invalidate_tenant(tenant_a)
    lookup("ledger", tenant_a, "a")
    lookup("imports", tenant_b, "b")
    assert calls == ["a", "b", "a"]


def test_coordination_defaults_to_redis_outside_dev_and_test(monkeypatch):
    monkeypatch.delenv("COORDINATION_BACKEND", raising=False)
    assert Settings(_env_file=None, environment="production").coordination == "redis"
    assert Settings(_env_file=None, environment="staging").coordination == "redis"
    assert Settings(_env_file=None, environment="dev").coordination == "memory"
    assert Settings(_env_file=None, environment="test").coordination == "memory"
    explicit = Settings(_env_file=None, environment="production", coordination_backend="memory")
    assert explicit.coordination == "memory"


def test_provider_limiter_uses_redis_when_coordination_is_redis(monkeypatch):
    monkeypatch.setattr(settings, "coordination_backend", "redis")
    monkeypatch.setattr(ratelimit_mod, "_provider_limiter", None)
    assert isinstance(get_provider_limiter(), RedisLimiter)


def test_worker_refuses_multi_process_pool_with_memory_backend(monkeypatch):
    monkeypatch.setattr(settings, "coordination_backend", "memory")
    with pytest.raises(RuntimeError):
        check_worker_coordination(concurrency=5)
    check_worker_coordination(concurrency=1)

    monkeypatch.setattr(settings, "coordination_backend", "redis")
    check_worker_coordination(concurrency=5)
