"""
Cache Domain Module

Key naming, TTL policy and value encoding for cached benchmark data.

This module provides:
- CacheCategory: The fixed set of cache data categories
- CacheKey: Bounded, sanitized cache key construction
- TTL: Category-scaled expiry policy
- ValueCodec: Canonical JSON encoding with optional gzip compression
- Domain exceptions for caller-input errors
"""

from .exceptions import (
    CacheConfigurationException,
    CacheException,
    DeserializationException,
    InvalidCacheKeyException,
    InvalidCategoryException,
    SerializationException,
)
from .serialization import CacheValue, ValueCodec
from .value_objects import (
    TTL,
    CacheCategory,
    CacheKey,
    CategoryLike,
    compute_ttl,
    fingerprint,
    make_key,
    sanitize_key_part,
)

__all__ = [
    # Value objects
    "CacheCategory",
    "CategoryLike",
    "CacheKey",
    "TTL",
    "make_key",
    "compute_ttl",
    "sanitize_key_part",
    "fingerprint",
    # Serialization
    "CacheValue",
    "ValueCodec",
    # Exceptions
    "CacheException",
    "InvalidCategoryException",
    "InvalidCacheKeyException",
    "SerializationException",
    "DeserializationException",
    "CacheConfigurationException",
]
