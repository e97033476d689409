"""
Main pytest configuration for the cache core tests.

Provides an in-memory stand-in for the async Redis client, a manually
advanced clock for circuit breaker timing, and prebuilt gateway and
service fixtures wired to both.
"""

import os
import zlib
from fnmatch import fnmatchcase
from typing import Dict, List, Optional

import pytest

# Set test environment variables before importing application modules
os.environ["ENVIRONMENT"] = "test"
os.environ["LOG_LEVEL"] = "DEBUG"

from saas_benchmarks.infrastructure.redis.circuit_breaker import CircuitBreakerConfig
from saas_benchmarks.infrastructure.redis.store_gateway import RedisStoreGateway
from saas_benchmarks.monitoring.cache_metrics import CacheMetricsCollector
from saas_benchmarks.services.cache.cache_service import (
    CacheService,
    CacheServiceConfig,
)


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class InMemoryRedis:
    """Subset of the redis.asyncio client used by the store gateway.

    Values are kept as decoded strings, matching decode_responses=True.
    TTLs are recorded but not enforced.
    SCAN cursors are insertion sequence numbers, so keys removed between
    pages never cause others to be skipped.
    """

    def __init__(self):
        self.data: Dict[str, str] = {}
        self.ttls: Dict[str, Optional[int]] = {}
        self.closed = False
        self._seq: Dict[str, int] = {}
        self._next_seq = 1

    async def get(self, key):
        return self.data.get(key)

    def _number(self, key):
        if key not in self._seq:
            self._seq[key] = self._next_seq
            self._next_seq += 1

    async def set(self, key, value, ex=None):
        self._number(key)
        self.data[key] = value
        self.ttls[key] = ex
        return True

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            if key in self.data:
                del self.data[key]
                self.ttls.pop(key, None)
                self._seq.pop(key, None)
                removed += 1
        return removed

    async def unlink(self, *keys):
        return await self.delete(*keys)

    async def scan(self, cursor=0, match=None, count=None):
        # Keys written straight into data join the end of the iteration
        for key in self.data:
            self._number(key)
        pending = sorted(
            (seq, key) for key, seq in self._seq.items() if seq >= max(cursor, 1)
        )
        page = pending[: count or 10]
        if len(page) == len(pending):
            next_cursor = 0
        else:
            next_cursor = page[-1][0] + 1
        keys = [key for _, key in page if match is None or fnmatchcase(key, match)]
        return next_cursor, keys

    async def ping(self):
        return True

    async def aclose(self):
        self.closed = True


class FakeClusterNode:
    """Primary node handle as returned by RedisCluster.get_primaries()."""

    def __init__(self, name: str):
        self.name = name
        self.store = InMemoryRedis()


class InMemoryRedisCluster:
    """Subset of the redis.asyncio cluster client used by the store gateway.

    Keys are sharded across primaries by checksum. SCAN reads one node;
    multi-key UNLINK spans nodes, as the real client splits it by slot.
    """

    def __init__(self, node_count: int = 3):
        self.nodes: List[FakeClusterNode] = [
            FakeClusterNode(f"10.0.0.{i + 1}:7000") for i in range(node_count)
        ]
        self.closed = False
        self.initialized = False

    def node_for(self, key: str) -> FakeClusterNode:
        return self.nodes[zlib.crc32(key.encode("utf-8")) % len(self.nodes)]

    def keys(self) -> List[str]:
        return [key for node in self.nodes for key in node.store.data]

    async def initialize(self):
        self.initialized = True
        return self

    def get_primaries(self):
        # Topology is only known once initialize() has run
        return list(self.nodes) if self.initialized else []

    async def get(self, key):
        return await self.node_for(key).store.get(key)

    async def set(self, key, value, ex=None):
        return await self.node_for(key).store.set(key, value, ex=ex)

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            removed += await self.node_for(key).store.delete(key)
        return removed

    async def unlink(self, *keys):
        return await self.delete(*keys)

    async def scan(self, cursor=0, match=None, count=None, target_nodes=None):
        next_cursor, keys = await target_nodes.store.scan(cursor, match, count)
        return {target_nodes.name: next_cursor}, keys

    async def ping(self):
        return True

    async def aclose(self):
        self.closed = True


@pytest.fixture
def clock():
    """Controllable clock for breaker timing."""
    return FakeClock()


@pytest.fixture
def fake_redis():
    """In-memory async Redis client."""
    return InMemoryRedis()


@pytest.fixture
def breaker_config():
    """Default breaker thresholds with a short operation timeout."""
    return CircuitBreakerConfig(operation_timeout=0.5)


@pytest.fixture
def gateway(fake_redis, breaker_config, clock):
    """Store gateway over the in-memory client."""
    return RedisStoreGateway(
        breaker_config=breaker_config, client=fake_redis, clock=clock
    )


@pytest.fixture
def cache_service(gateway):
    """Cache service over the in-memory gateway."""
    config = CacheServiceConfig(circuit_breaker=gateway.circuit_breaker.config)
    return CacheService(
        config=config, gateway=gateway, metrics=CacheMetricsCollector()
    )


@pytest.fixture
def fake_cluster():
    """In-memory async Redis cluster client with three primaries."""
    return InMemoryRedisCluster()
