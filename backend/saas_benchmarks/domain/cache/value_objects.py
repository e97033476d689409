"""
Cache Value Objects

Immutable value objects for the cache domain: the fixed category set,
cache keys and TTLs. Key construction and TTL computation live here so
every caller names and sizes entries the same way.
"""

import hashlib
import json
import math
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional, Union

from ...constants import (
    CACHE_KEY_PREFIX,
    DEFAULT_CACHE_TTL,
    FINGERPRINT_LENGTH,
    MAX_CACHE_TTL,
    MAX_KEY_LENGTH,
    MIN_CACHE_TTL,
)
from .exceptions import InvalidCacheKeyException, InvalidCategoryException

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9_-]")
_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_:\-]+$")


class CacheCategory(str, Enum):
    """Fixed classification of cached data.

    The category names the key namespace and scales the TTL: less volatile
    data gets a larger multiplier.
    """

    SESSION = "session"
    METRICS = "metrics"
    BENCHMARKS = "benchmarks"
    SOURCES = "sources"

    @property
    def ttl_multiplier(self) -> int:
        return _TTL_MULTIPLIERS[self]

    @classmethod
    def parse(cls, value: Union["CacheCategory", str]) -> "CacheCategory":
        """Resolve a category from an enum member or its string value.

        Raises:
            InvalidCategoryException: If value is not one of the fixed categories
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise InvalidCategoryException(
                value, allowed=[member.value for member in cls]
            ) from None


_TTL_MULTIPLIERS = {
    CacheCategory.SESSION: 1,
    CacheCategory.METRICS: 2,
    CacheCategory.BENCHMARKS: 3,
    CacheCategory.SOURCES: 4,
}

CategoryLike = Union[CacheCategory, str]


def sanitize_key_part(value: str) -> str:
    """Replace every character outside [A-Za-z0-9_-] with an underscore."""
    return _UNSAFE_KEY_CHARS.sub("_", value)


def fingerprint(value: str) -> str:
    """Short SHA-256 content digest used to disambiguate truncated identifiers."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:FINGERPRINT_LENGTH]


@dataclass(frozen=True)
class CacheKey:
    """
    Immutable cache key value object.

    Keys have the shape ``{prefix}{namespace:}{category}:{identifier}{:fingerprint}``,
    never exceed MAX_KEY_LENGTH and only contain alphanumerics, underscores,
    hyphens and colons.
    """

    value: str

    def __post_init__(self) -> None:
        """Validate cache key format."""
        if not self.value:
            raise InvalidCacheKeyException("Cache key cannot be empty")

        if len(self.value) > MAX_KEY_LENGTH:
            raise InvalidCacheKeyException(
                f"Cache key too long (max {MAX_KEY_LENGTH} characters)",
                key_fragment=self.value[:50],
            )

        if not _KEY_PATTERN.match(self.value):
            raise InvalidCacheKeyException(
                "Cache key contains unsafe characters", key_fragment=self.value[:50]
            )

    @classmethod
    def build(
        cls,
        category: CategoryLike,
        identifier: str,
        namespace: Optional[str] = None,
        prefix: str = CACHE_KEY_PREFIX,
    ) -> "CacheKey":
        """
        Build a deterministic, length-bounded key for a cache entry.

        Args:
            category: One of the fixed cache categories
            identifier: Caller-supplied name of the object within its category
            namespace: Optional extra scoping prefix
            prefix: Global key prefix (already validated by configuration)

        Returns:
            CacheKey for the entry

        Raises:
            InvalidCategoryException: If category is not in the fixed set
            InvalidCacheKeyException: If identifier is empty or the global
                prefix alone leaves no room for a key
        """
        data_type = CacheCategory.parse(category)

        if not isinstance(identifier, str) or not identifier:
            raise InvalidCacheKeyException("Cache identifier must be a non-empty string")

        sanitized_namespace = sanitize_key_part(namespace) if namespace else ""
        namespace_prefix = f"{sanitized_namespace}:" if namespace else ""
        head = f"{prefix}{namespace_prefix}{data_type.value}:"
        sanitized = sanitize_key_part(identifier)

        if len(head) + len(sanitized) <= MAX_KEY_LENGTH:
            return cls(f"{head}{sanitized}")

        # Truncate and append a digest of the original identifier
        room = MAX_KEY_LENGTH - len(head) - FINGERPRINT_LENGTH - 1
        if room >= 1:
            return cls(f"{head}{sanitized[:room]}:{fingerprint(identifier)}")

        # Namespace too long: shorten it too and digest namespace and identifier together
        room = MAX_KEY_LENGTH - len(prefix) - len(data_type.value) - FINGERPRINT_LENGTH - 3
        if room < 2:
            raise InvalidCacheKeyException(
                "Cache key prefix leaves no room for a namespace and identifier",
                key_fragment=prefix[:50],
            )

        identifier_room = min(len(sanitized), max(1, room // 2))
        namespace_part = sanitized_namespace[: room - identifier_room]
        digest = fingerprint(f"{namespace}\x00{identifier}")
        return cls(
            f"{prefix}{namespace_part}:{data_type.value}:"
            f"{sanitized[:identifier_room]}:{digest}"
        )

    @staticmethod
    def identifier_from_params(params: Mapping[str, Any]) -> str:
        """
        Derive a stable identifier from query parameters.

        Used by calling services to cache filtered or paginated query results:
        equal parameter mappings always yield the same identifier regardless
        of key order.
        """
        canonical = json.dumps(
            params, sort_keys=True, separators=(",", ":"), default=str
        )
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]

    def __str__(self) -> str:
        return self.value


def make_key(
    category: CategoryLike,
    identifier: str,
    namespace: Optional[str] = None,
    prefix: str = CACHE_KEY_PREFIX,
) -> str:
    """Build the cache key string for (category, identifier, namespace)."""
    return CacheKey.build(category, identifier, namespace, prefix).value


@dataclass(frozen=True)
class TTL:
    """
    Time To Live value object for cache expiration.

    Always within [MIN_CACHE_TTL, MAX_CACHE_TTL].
    """

    seconds: int

    def __post_init__(self) -> None:
        """Validate TTL value."""
        if not MIN_CACHE_TTL <= self.seconds <= MAX_CACHE_TTL:
            raise ValueError(
                f"TTL must be between {MIN_CACHE_TTL} and {MAX_CACHE_TTL} seconds"
            )

    @classmethod
    def for_category(
        cls,
        category: CategoryLike,
        base_ttl: Optional[float] = None,
        default_base_ttl: int = DEFAULT_CACHE_TTL,
    ) -> "TTL":
        """
        Compute the effective TTL for a category.

        The base TTL is scaled by the category multiplier and clamped into
        [MIN_CACHE_TTL, MAX_CACHE_TTL]. A missing, non-positive or non-finite
        base falls back to the default base.

        Raises:
            InvalidCategoryException: If category is not in the fixed set
        """
        data_type = CacheCategory.parse(category)
        if base_ttl is not None and math.isfinite(base_ttl) and base_ttl > 0:
            base = base_ttl
        else:
            base = default_base_ttl
        calculated = base * data_type.ttl_multiplier
        return cls(int(min(max(calculated, MIN_CACHE_TTL), MAX_CACHE_TTL)))

    def __int__(self) -> int:
        return self.seconds

    def __str__(self) -> str:
        return f"{self.seconds}s"


def compute_ttl(
    category: CategoryLike,
    requested_base_ttl: Optional[float] = None,
    default_base_ttl: int = DEFAULT_CACHE_TTL,
) -> int:
    """Effective TTL in seconds for category, clamped to [60, 86400]."""
    return TTL.for_category(category, requested_base_ttl, default_base_ttl).seconds
