"""
Cache Service

Facade consumed by the benchmark, metrics, sources and session services.
Orchestrates key construction, value encoding, TTL computation and the
circuit-breaker guarded Redis gateway.

Caller-input errors (unknown category, unencodable value, malformed
cached payload) propagate. Store failures never do: reads degrade to a
miss and writes are logged and reported through a falsy return value.
"""

import inspect
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Union

import structlog
from opentelemetry import trace

from ...constants import CACHE_KEY_PREFIX, COMPRESSION_THRESHOLD_BYTES, DEFAULT_CACHE_TTL
from ...core.config import Settings
from ...domain.cache.exceptions import (
    CacheConfigurationException,
    InvalidCacheKeyException,
)
from ...domain.cache.serialization import CacheValue, ValueCodec
from ...domain.cache.value_objects import CacheCategory, CacheKey, CategoryLike, TTL
from ...infrastructure.redis.circuit_breaker import CircuitBreakerConfig, CircuitState
from ...infrastructure.redis.exceptions import StoreException
from ...infrastructure.redis.store_gateway import RedisStoreConfig, RedisStoreGateway
from ...monitoring.cache_metrics import CacheMetricsCollector

logger = structlog.get_logger(__name__)
tracer = trace.get_tracer(__name__)

Loader = Callable[[], Union[CacheValue, Awaitable[CacheValue]]]


@dataclass
class CacheServiceConfig:
    """Explicit configuration for a CacheService instance."""

    key_prefix: str = CACHE_KEY_PREFIX
    default_ttl: int = DEFAULT_CACHE_TTL
    compression_threshold: int = COMPRESSION_THRESHOLD_BYTES
    environment: str = "development"
    store: RedisStoreConfig = field(default_factory=RedisStoreConfig)
    circuit_breaker: CircuitBreakerConfig = field(default_factory=CircuitBreakerConfig)

    @classmethod
    def from_settings(cls, settings: Settings) -> "CacheServiceConfig":
        """Build the service configuration from validated application settings."""
        return cls(
            key_prefix=settings.CACHE_KEY_PREFIX,
            default_ttl=settings.REDIS_TTL,
            compression_threshold=settings.CACHE_COMPRESSION_THRESHOLD,
            environment=settings.ENVIRONMENT,
            store=RedisStoreConfig(
                host=settings.REDIS_HOST,
                port=settings.REDIS_PORT,
                db=settings.REDIS_DB,
                username=settings.REDIS_USERNAME,
                password=settings.REDIS_PASSWORD or None,
                tls_enabled=settings.REDIS_TLS_ENABLED,
                tls_ca_certs=settings.REDIS_TLS_CA,
                tls_certfile=settings.REDIS_TLS_CERT,
                tls_keyfile=settings.REDIS_TLS_KEY,
                max_connections=settings.REDIS_POOL_MAX,
                connect_timeout=settings.REDIS_CONNECT_TIMEOUT,
                socket_timeout=settings.REDIS_SOCKET_TIMEOUT,
                cluster_mode=settings.REDIS_CLUSTER_MODE,
                cluster_nodes=settings.redis_cluster_nodes,
                instrument_client=settings.REDIS_INSTRUMENT_CLIENT,
            ),
            circuit_breaker=CircuitBreakerConfig(
                error_threshold_percentage=settings.CIRCUIT_BREAKER_ERROR_THRESHOLD_PERCENTAGE,
                volume_threshold=settings.CIRCUIT_BREAKER_VOLUME_THRESHOLD,
                rolling_window=settings.CIRCUIT_BREAKER_ROLLING_WINDOW,
                reset_timeout=settings.CIRCUIT_BREAKER_RESET_TIMEOUT,
                operation_timeout=settings.CIRCUIT_BREAKER_OPERATION_TIMEOUT,
            ),
        )


class CacheService:
    """
    High-level cache facade.

    Owns no cached state between calls; Redis is the sole owner of entry
    lifetime. Safe to share across concurrent request handlers.
    """

    def __init__(
        self,
        config: Optional[CacheServiceConfig] = None,
        gateway: Optional[RedisStoreGateway] = None,
        codec: Optional[ValueCodec] = None,
        metrics: Optional[CacheMetricsCollector] = None,
    ):
        self.config = config or CacheServiceConfig()
        self.gateway = gateway or RedisStoreGateway(
            self.config.store, self.config.circuit_breaker
        )
        self.codec = codec or ValueCodec(self.config.compression_threshold)
        self.metrics = metrics or CacheMetricsCollector()

    async def initialize(self) -> None:
        """Initialize the underlying store gateway."""
        await self.gateway.initialize()
        logger.info(
            "Cache service initialized",
            key_prefix=self.config.key_prefix,
            default_ttl=self.config.default_ttl,
        )

    async def close(self) -> None:
        await self.gateway.close()

    async def __aenter__(self):
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    # Naming and sizing

    def make_key(
        self, category: CategoryLike, identifier: str, namespace: Optional[str] = None
    ) -> str:
        """Cache key for (category, identifier, namespace) under the configured prefix."""
        return CacheKey.build(
            category, identifier, namespace, prefix=self.config.key_prefix
        ).value

    def compute_ttl(self, category: CategoryLike, ttl: Optional[float] = None) -> int:
        """Effective TTL for category given an optional requested base TTL."""
        return TTL.for_category(category, ttl, self.config.default_ttl).seconds

    def scope_pattern(self, pattern: str) -> str:
        """Restrict a glob pattern to keys under the configured prefix."""
        if not isinstance(pattern, str) or not pattern:
            raise InvalidCacheKeyException("Invalidation pattern must be a non-empty string")
        if pattern.startswith(self.config.key_prefix):
            return pattern
        return f"{self.config.key_prefix}{pattern}"

    # Public operations

    async def get(
        self,
        category: CategoryLike,
        identifier: str,
        namespace: Optional[str] = None,
    ) -> Optional[CacheValue]:
        """
        Get a cached value.

        Returns:
            The cached value, or None on miss, expiry or store unavailability

        Raises:
            InvalidCategoryException: If category is not in the fixed set
            DeserializationException: If the cached payload is malformed
        """
        key = self.make_key(category, identifier, namespace)
        data_type = CacheCategory.parse(category).value
        start_time = time.perf_counter()

        with tracer.start_as_current_span("cache_service.get") as span:
            span.set_attribute("cache.category", data_type)

            try:
                payload = await self.gateway.get(key)
            except StoreException as e:
                logger.warning(
                    "Cache get degraded to miss",
                    key=key,
                    error=e.message,
                    error_code=e.error_code,
                )
                span.set_attribute("cache.degraded", True)
                self._record("get", data_type, "degraded", start_time, span)
                return None

            if payload is None:
                self._record("get", data_type, "miss", start_time, span)
                return None

            try:
                value = await self.codec.decode_async(payload)
            except Exception as e:
                span.set_status(trace.Status(trace.StatusCode.ERROR, str(e)))
                self._record("get", data_type, "error", start_time, span)
                logger.error("Cached payload could not be decoded", key=key, error=str(e))
                raise

            outcome = "miss" if value is None else "hit"
            self._record("get", data_type, outcome, start_time, span)
            return value

    async def set(
        self,
        category: CategoryLike,
        identifier: str,
        value: CacheValue,
        ttl: Optional[float] = None,
        namespace: Optional[str] = None,
        force_compress: bool = False,
    ) -> bool:
        """
        Store a value.

        Args:
            category: One of the fixed cache categories
            identifier: Name of the object within its category
            value: Structured value to cache (None is not cacheable; use delete)
            ttl: Requested base TTL in seconds, scaled by the category multiplier
            namespace: Optional extra key scope
            force_compress: Compress regardless of payload size

        Returns:
            True if the store accepted the write, False on store failure

        Raises:
            InvalidCategoryException: If category is not in the fixed set
            SerializationException: If value is None or not representable
        """
        key = self.make_key(category, identifier, namespace)
        data_type = CacheCategory.parse(category).value
        effective_ttl = self.compute_ttl(category, ttl)
        start_time = time.perf_counter()

        with tracer.start_as_current_span("cache_service.set") as span:
            span.set_attribute("cache.category", data_type)
            span.set_attribute("cache.ttl", effective_ttl)

            payload = await self.codec.encode_async(value, force_compress=force_compress)
            compressed = self.codec.is_compressed(payload)
            size_bytes = len(payload.encode("utf-8"))
            span.set_attribute("cache.size_bytes", size_bytes)
            span.set_attribute("cache.compressed", compressed)

            try:
                await self.gateway.set(key, payload, effective_ttl)
            except StoreException as e:
                logger.warning(
                    "Cache set failed",
                    key=key,
                    error=e.message,
                    error_code=e.error_code,
                )
                self._record("set", data_type, "error", start_time, span)
                return False

            self.metrics.record_payload(data_type, size_bytes, compressed)
            self._record("set", data_type, "stored", start_time, span)

            logger.debug(
                "Cache set successful",
                key=key,
                ttl=effective_ttl,
                compressed=compressed,
                size=size_bytes,
            )
            return True

    async def delete(
        self,
        category: CategoryLike,
        identifier: str,
        namespace: Optional[str] = None,
        invalidate_related: bool = False,
    ) -> bool:
        """
        Delete a cached value. Deleting a missing key is not an error.

        Args:
            invalidate_related: Also remove every key under ``<key>:*``

        Returns:
            True if the store processed the delete, False on store failure
        """
        key = self.make_key(category, identifier, namespace)
        data_type = CacheCategory.parse(category).value
        start_time = time.perf_counter()

        with tracer.start_as_current_span("cache_service.delete") as span:
            span.set_attribute("cache.category", data_type)
            span.set_attribute("cache.invalidate_related", invalidate_related)

            try:
                removed = await self.gateway.delete(key)
                if invalidate_related:
                    related = await self.gateway.delete_pattern(f"{key}:*")
                    self.metrics.record_invalidation(related)
                    removed += related
            except StoreException as e:
                logger.warning(
                    "Cache delete failed",
                    key=key,
                    error=e.message,
                    error_code=e.error_code,
                )
                self._record("delete", data_type, "error", start_time, span)
                return False

            self._record("delete", data_type, "deleted", start_time, span)
            logger.debug("Cache delete successful", key=key, removed=removed)
            return True

    async def invalidate_pattern(self, pattern: str) -> int:
        """
        Delete every cached key matching a glob pattern.

        The pattern is scoped to the configured key prefix, so
        ``"benchmarks:*"`` and ``"*benchmarks:*"`` only touch this cache's keys.

        Returns:
            Number of keys deleted; when the store fails partway, the keys
            deleted before the failure
        """
        scoped = self.scope_pattern(pattern)
        start_time = time.perf_counter()

        with tracer.start_as_current_span("cache_service.invalidate_pattern") as span:
            span.set_attribute("cache.pattern", scoped)

            try:
                count = await self.gateway.delete_pattern(scoped)
            except StoreException as e:
                count = e.details.get("deleted", 0)
                logger.warning(
                    "Cache pattern invalidation failed",
                    pattern=scoped,
                    deleted=count,
                    error=e.message,
                    error_code=e.error_code,
                )
                self.metrics.record_invalidation(count)
                self._record("invalidate", "all", "error", start_time, span)
                return count

            span.set_attribute("cache.invalidated", count)
            self.metrics.record_invalidation(count)
            self._record("invalidate", "all", "invalidated", start_time, span)

            logger.info("Cache pattern invalidated", pattern=scoped, count=count)
            return count

    async def clear(self, force: bool = False) -> int:
        """
        Remove every key under the configured prefix.

        Raises:
            CacheConfigurationException: In production unless force is set
        """
        if self.config.environment == "production" and not force:
            raise CacheConfigurationException(
                "Cache clear not allowed in production without force flag",
                config_key="environment",
                config_value=self.config.environment,
            )

        count = await self.invalidate_pattern(f"{self.config.key_prefix}*")
        logger.warning("Cache cleared", force=force, count=count)
        return count

    async def get_or_set(
        self,
        category: CategoryLike,
        identifier: str,
        loader: Loader,
        ttl: Optional[float] = None,
        namespace: Optional[str] = None,
        force_compress: bool = False,
    ) -> CacheValue:
        """
        Read-through helper: return the cached value or load, cache and return it.

        Loader errors propagate and nothing is cached. A loader returning
        None is passed through without caching.
        """
        cached = await self.get(category, identifier, namespace)
        if cached is not None:
            return cached

        value = loader()
        if inspect.isawaitable(value):
            value = await value

        if value is not None:
            await self.set(
                category,
                identifier,
                value,
                ttl=ttl,
                namespace=namespace,
                force_compress=force_compress,
            )
        return value

    # Monitoring

    async def health_check(self) -> Dict[str, Any]:
        """Ping the store through the breaker and report cache health."""
        with tracer.start_as_current_span("cache_service.health_check") as span:
            try:
                latency_ms = await self.gateway.ping()
            except StoreException as e:
                span.set_status(trace.Status(trace.StatusCode.ERROR, e.message))
                self.metrics.set_circuit_state(self.gateway.circuit_state)
                return {
                    "status": "unhealthy",
                    "timestamp": time.time(),
                    "service": "cache",
                    "circuit_state": self.gateway.circuit_state.value,
                    "error": e.message,
                    "error_code": e.error_code,
                }

            circuit_state = self.gateway.circuit_state
            self.metrics.set_circuit_state(circuit_state)
            return {
                "status": "healthy" if circuit_state == CircuitState.CLOSED else "degraded",
                "timestamp": time.time(),
                "service": "cache",
                "circuit_state": circuit_state.value,
                "response_time_ms": latency_ms,
            }

    def get_metrics(self) -> Dict[str, Any]:
        """Get cache service metrics."""
        return {
            "cache": self.metrics.snapshot(),
            "gateway": self.gateway.get_status(),
            "config": {
                "key_prefix": self.config.key_prefix,
                "default_ttl": self.config.default_ttl,
                "compression_threshold": self.config.compression_threshold,
            },
        }

    def _record(
        self, operation: str, category: str, outcome: str, start_time: float, span
    ) -> None:
        span.set_attribute("cache.outcome", outcome)
        self.metrics.record_operation(
            operation, category, outcome, time.perf_counter() - start_time
        )
        self.metrics.set_circuit_state(self.gateway.circuit_state)
