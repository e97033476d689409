"""
Redis Infrastructure Module

Circuit-breaker protected access to the Redis cache store.

This module provides:
- RedisStoreGateway: GET/SET/DEL/pattern invalidation/PING behind a breaker
- RedisCircuitBreaker: Rolling-window failure rate circuit breaker
- Store exception hierarchy translating redis-py errors
"""

from .circuit_breaker import (
    CircuitBreakerConfig,
    CircuitBreakerMetrics,
    CircuitState,
    RedisCircuitBreaker,
)
from .exceptions import (
    CircuitBreakerOpenException,
    StoreConnectionException,
    StoreException,
    StoreTimeoutException,
)
from .store_gateway import (
    RedisStoreConfig,
    RedisStoreGateway,
    StoreOperation,
    StoreOperationType,
)

__all__ = [
    # Gateway
    "RedisStoreGateway",
    "RedisStoreConfig",
    "StoreOperation",
    "StoreOperationType",
    # Circuit breaker
    "RedisCircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitState",
    "CircuitBreakerMetrics",
    # Exceptions
    "StoreException",
    "StoreConnectionException",
    "StoreTimeoutException",
    "CircuitBreakerOpenException",
]
