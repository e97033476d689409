"""
Redis Store Gateway

Physical I/O for the cache: GET, SET with expiry, DEL, pattern
invalidation and PING against a standalone Redis server or a Redis
cluster, every call routed through the circuit breaker with a
per-operation timeout.
Raw redis-py errors are translated into the store exception hierarchy.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from redis.asyncio import ConnectionPool, Redis
from redis.asyncio.cluster import ClusterNode, RedisCluster
from redis.asyncio.connection import SSLConnection
from redis.exceptions import (
    ConnectionError as RedisConnectionError,
    TimeoutError as RedisTimeoutError,
    RedisError,
)

from opentelemetry import trace
from opentelemetry.instrumentation.redis import RedisInstrumentor

from ...domain.cache.exceptions import CacheConfigurationException
from .circuit_breaker import CircuitBreakerConfig, CircuitState, RedisCircuitBreaker
from .exceptions import (
    CircuitBreakerOpenException,
    StoreConnectionException,
    StoreException,
    StoreTimeoutException,
)

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

# SCAN count hint and keys per UNLINK call during pattern invalidation
INVALIDATION_BATCH_SIZE = 500


@dataclass
class RedisStoreConfig:
    """Connection settings for the remote store, consumed at construction only."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    username: Optional[str] = None
    password: Optional[str] = None

    # TLS
    tls_enabled: bool = False
    tls_ca_certs: Optional[str] = None
    tls_certfile: Optional[str] = None
    tls_keyfile: Optional[str] = None

    # Pool and socket settings
    max_connections: int = 20
    connect_timeout: float = 10.0
    socket_timeout: float = 5.0
    health_check_interval: int = 30

    # Cluster topology; host and port are ignored when enabled
    cluster_mode: bool = False
    cluster_nodes: List[Tuple[str, int]] = field(default_factory=list)

    # Enable OpenTelemetry redis client instrumentation
    instrument_client: bool = False

    def connection_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for the redis-py connection pool."""
        kwargs: Dict[str, Any] = {
            "host": self.host,
            "port": self.port,
            "db": self.db,
            "username": self.username,
            "password": self.password or None,
            "encoding": "utf-8",
            "decode_responses": True,
            "socket_connect_timeout": self.connect_timeout,
            "socket_timeout": self.socket_timeout,
            # Retries are left to callers; the breaker sheds load instead
            "retry_on_timeout": False,
            "health_check_interval": self.health_check_interval,
            "max_connections": self.max_connections,
        }
        if self.tls_enabled:
            kwargs.update(
                {
                    "connection_class": SSLConnection,
                    "ssl_cert_reqs": "required",
                    "ssl_ca_certs": self.tls_ca_certs,
                    "ssl_certfile": self.tls_certfile,
                    "ssl_keyfile": self.tls_keyfile,
                }
            )
        return kwargs

    def cluster_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for the redis-py cluster client."""
        if not self.cluster_nodes:
            raise CacheConfigurationException(
                "Redis cluster nodes configuration is required when cluster mode is enabled",
                config_key="cluster_nodes",
            )

        kwargs: Dict[str, Any] = {
            "startup_nodes": [ClusterNode(host, port) for host, port in self.cluster_nodes],
            "username": self.username,
            "password": self.password or None,
            "encoding": "utf-8",
            "decode_responses": True,
            "socket_connect_timeout": self.connect_timeout,
            "socket_timeout": self.socket_timeout,
            "health_check_interval": self.health_check_interval,
            # Per node
            "max_connections": self.max_connections,
        }
        if self.tls_enabled:
            kwargs.update(
                {
                    "ssl": True,
                    "ssl_cert_reqs": "required",
                    "ssl_ca_certs": self.tls_ca_certs,
                    "ssl_certfile": self.tls_certfile,
                    "ssl_keyfile": self.tls_keyfile,
                }
            )
        return kwargs


class StoreOperationType(str, Enum):
    """Operations the gateway performs against the store."""

    GET = "get"
    SET = "set"
    DELETE = "delete"
    SCAN = "scan"
    UNLINK = "unlink"
    TOPOLOGY = "topology"
    PING = "ping"


@dataclass(frozen=True)
class StoreOperation:
    """A single store request executed under circuit breaker protection."""

    type: StoreOperationType
    key: Optional[str] = None
    value: Optional[str] = None
    ttl: Optional[int] = None
    pattern: Optional[str] = None
    cursor: int = 0
    keys: Tuple[str, ...] = ()
    # Cluster node a SCAN page is read from; None for a standalone server
    node: Optional[Any] = None

    @classmethod
    def get(cls, key: str) -> "StoreOperation":
        return cls(StoreOperationType.GET, key=key)

    @classmethod
    def set(cls, key: str, value: str, ttl: int) -> "StoreOperation":
        return cls(StoreOperationType.SET, key=key, value=value, ttl=ttl)

    @classmethod
    def delete(cls, key: str) -> "StoreOperation":
        return cls(StoreOperationType.DELETE, key=key)

    @classmethod
    def scan(cls, pattern: str, cursor: int = 0, node: Any = None) -> "StoreOperation":
        return cls(StoreOperationType.SCAN, pattern=pattern, cursor=cursor, node=node)

    @classmethod
    def unlink(cls, keys: List[str]) -> "StoreOperation":
        return cls(StoreOperationType.UNLINK, keys=tuple(keys))

    @classmethod
    def topology(cls) -> "StoreOperation":
        return cls(StoreOperationType.TOPOLOGY)

    @classmethod
    def ping(cls) -> "StoreOperation":
        return cls(StoreOperationType.PING)


class RedisStoreGateway:
    """
    Circuit-breaker guarded access path to Redis.

    Holds no cached data itself; the only cross-call state is the breaker's
    rolling counters. Operations exceeding the breaker timeout are cancelled
    and reported as StoreTimeoutException.
    """

    def __init__(
        self,
        config: Optional[RedisStoreConfig] = None,
        breaker_config: Optional[CircuitBreakerConfig] = None,
        client: Optional[Any] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or RedisStoreConfig()
        breaker_config = replace(
            breaker_config or CircuitBreakerConfig(),
            failure_exceptions=(RedisError, ConnectionError, OSError),
        )
        self._circuit_breaker = RedisCircuitBreaker(breaker_config, clock=clock)
        self._client = client
        self._pool: Optional[ConnectionPool] = None
        self._owns_client = client is None
        self._lock = asyncio.Lock()

    @property
    def circuit_breaker(self) -> RedisCircuitBreaker:
        return self._circuit_breaker

    @property
    def circuit_state(self) -> CircuitState:
        return self._circuit_breaker.state

    @property
    def initialized(self) -> bool:
        return self._client is not None

    async def initialize(self) -> None:
        """Create the client (and pool for a standalone server). Does not contact the store."""
        if self._client is not None:
            return

        async with self._lock:
            if self._client is not None:
                return

            if self.config.cluster_mode:
                self._client = RedisCluster(**self.config.cluster_kwargs())
            else:
                self._pool = ConnectionPool(**self.config.connection_kwargs())
                self._client = Redis(connection_pool=self._pool)

            if self.config.instrument_client:
                try:
                    instrumentor = RedisInstrumentor()
                    if not instrumentor.is_instrumented_by_opentelemetry:
                        instrumentor.instrument()
                    logger.info("Redis OpenTelemetry instrumentation enabled")
                except Exception as e:
                    logger.warning(
                        f"Failed to enable Redis OpenTelemetry instrumentation: {e}"
                    )

            logger.info(
                "Redis store gateway initialized",
                extra={
                    "host": self.config.host,
                    "port": self.config.port,
                    "cluster_mode": self.config.cluster_mode,
                    "cluster_nodes": len(self.config.cluster_nodes),
                    "tls": self.config.tls_enabled,
                    "max_connections": self.config.max_connections,
                },
            )

    async def execute(self, operation: StoreOperation) -> Any:
        """
        Execute a store operation through the circuit breaker.

        Args:
            operation: The request to perform

        Returns:
            GET: the stored string or None; SET: True; DELETE and UNLINK: number
            of keys removed; SCAN: (next cursor, keys); TOPOLOGY: cluster
            primary nodes; PING: True

        Raises:
            CircuitBreakerOpenException: If the circuit rejects the call
            StoreTimeoutException: If the call exceeds the operation timeout
            StoreConnectionException: If the store is unreachable
            StoreException: For any other store error
        """
        await self.initialize()

        with tracer.start_as_current_span(f"redis.{operation.type.value}") as span:
            span.set_attribute("redis.operation", operation.type.value)
            span.set_attribute("circuit.state", self._circuit_breaker.state.value)

            try:
                return await self._circuit_breaker.call(
                    self._dispatch, operation, operation=operation.type.value
                )

            except CircuitBreakerOpenException:
                span.set_status(trace.Status(trace.StatusCode.ERROR, "Circuit breaker open"))
                raise

            except asyncio.TimeoutError as e:
                span.set_status(trace.Status(trace.StatusCode.ERROR, "timeout"))
                raise StoreTimeoutException(
                    operation.type.value,
                    self._circuit_breaker.config.operation_timeout,
                    key=operation.key,
                    original_error=e,
                )

            except RedisTimeoutError as e:
                span.set_status(trace.Status(trace.StatusCode.ERROR, str(e)))
                raise StoreTimeoutException(
                    operation.type.value,
                    self.config.socket_timeout,
                    key=operation.key,
                    original_error=e,
                )

            except (RedisConnectionError, ConnectionError, OSError) as e:
                span.set_status(trace.Status(trace.StatusCode.ERROR, str(e)))
                logger.error(f"Redis connection error: {e}")
                raise StoreConnectionException(
                    message=f"Redis connection failed: {e}",
                    operation=operation.type.value,
                    key=operation.key,
                    original_error=e,
                )

            except RedisError as e:
                span.set_status(trace.Status(trace.StatusCode.ERROR, str(e)))
                raise StoreException(
                    message=f"Redis operation '{operation.type.value}' failed: {e}",
                    operation=operation.type.value,
                    key=operation.key,
                    original_error=e,
                )

    async def _dispatch(self, operation: StoreOperation) -> Any:
        client = self._client

        if operation.type is StoreOperationType.GET:
            return await client.get(operation.key)

        if operation.type is StoreOperationType.SET:
            return bool(await client.set(operation.key, operation.value, ex=operation.ttl))

        if operation.type is StoreOperationType.DELETE:
            return await client.delete(operation.key)

        if operation.type is StoreOperationType.SCAN:
            return await self._scan_page(client, operation)

        if operation.type is StoreOperationType.UNLINK:
            # The cluster client splits multi-key UNLINK across hash slots
            return await client.unlink(*operation.keys)

        if operation.type is StoreOperationType.TOPOLOGY:
            # Loads cluster slots on first use; a no-op afterwards
            await client.initialize()
            return list(client.get_primaries())

        if operation.type is StoreOperationType.PING:
            return bool(await client.ping())

        raise ValueError(f"Unsupported store operation: {operation.type}")

    async def _scan_page(
        self, client: Any, operation: StoreOperation
    ) -> Tuple[int, List[str]]:
        """Read one SCAN page, from a single cluster node when one is given."""
        if operation.node is None:
            return await client.scan(
                cursor=operation.cursor,
                match=operation.pattern,
                count=INVALIDATION_BATCH_SIZE,
            )

        cursors, keys = await client.scan(
            cursor=operation.cursor,
            match=operation.pattern,
            count=INVALIDATION_BATCH_SIZE,
            target_nodes=operation.node,
        )
        return cursors[operation.node.name], keys

    async def _scan_targets(self) -> List[Any]:
        """Nodes to scan: every cluster primary, or the single server."""
        if self.config.cluster_mode:
            return await self.execute(StoreOperation.topology())
        return [None]

    # Convenience wrappers

    async def get(self, key: str) -> Optional[str]:
        return await self.execute(StoreOperation.get(key))

    async def set(self, key: str, value: str, ttl: int) -> bool:
        return await self.execute(StoreOperation.set(key, value, ttl))

    async def delete(self, key: str) -> int:
        return await self.execute(StoreOperation.delete(key))

    async def delete_pattern(self, pattern: str) -> int:
        """
        Delete every key matching pattern.

        Each SCAN page and each UNLINK batch is a separate breaker operation
        with its own timeout, so a large keyspace is processed incrementally.

        Returns:
            Number of keys deleted

        Raises:
            StoreException: If a step fails; ``details["deleted"]`` holds the
                number of keys removed before the failure
        """
        await self.initialize()
        deleted = 0

        with tracer.start_as_current_span("redis.invalidate") as span:
            span.set_attribute("redis.pattern", pattern)

            try:
                for node in await self._scan_targets():
                    cursor = 0
                    while True:
                        cursor, keys = await self.execute(
                            StoreOperation.scan(pattern, cursor, node)
                        )
                        for start in range(0, len(keys), INVALIDATION_BATCH_SIZE):
                            batch = keys[start : start + INVALIDATION_BATCH_SIZE]
                            deleted += await self.execute(StoreOperation.unlink(batch))
                        if not cursor:
                            break

            except StoreException as e:
                e.details["deleted"] = deleted
                span.set_attribute("redis.deleted", deleted)
                logger.warning(
                    "Pattern invalidation interrupted",
                    extra={
                        "pattern": pattern,
                        "deleted": deleted,
                        "error_code": e.error_code,
                    },
                )
                raise

            span.set_attribute("redis.deleted", deleted)
            return deleted

    async def ping(self) -> float:
        """Ping the store and return the round trip in milliseconds."""
        start_time = time.perf_counter()
        await self.execute(StoreOperation.ping())
        return round((time.perf_counter() - start_time) * 1000, 2)

    def get_status(self) -> Dict[str, Any]:
        """Get gateway status for monitoring."""
        status: Dict[str, Any] = {
            "initialized": self.initialized,
            "host": self.config.host,
            "port": self.config.port,
            "cluster_mode": self.config.cluster_mode,
            "tls": self.config.tls_enabled,
            "circuit_breaker": self._circuit_breaker.get_status(),
        }
        if self.config.cluster_mode:
            status["cluster_nodes"] = [
                f"{host}:{port}" for host, port in self.config.cluster_nodes
            ]
        if self._pool is not None:
            status["pool"] = {
                "max_connections": self._pool.max_connections,
                "created_connections": getattr(self._pool, "_created_connections", 0),
            }
        return status

    async def close(self) -> None:
        """Close the client and its connection pool if the gateway created them."""
        async with self._lock:
            if self._client is not None and self._owns_client:
                await self._client.aclose()
                if self._pool is not None:
                    await self._pool.disconnect()
                self._client = None
                self._pool = None

                logger.info("Redis store gateway closed")

    async def __aenter__(self):
        """Async context manager entry."""
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()
