"""
Cache Domain Exceptions

Base exception hierarchy for the cache core and the caller-input errors
raised by the key codec, TTL policy and value codec.
Caller-input errors are programming errors and always propagate.
"""

from typing import Optional, Any, Dict


class CacheException(Exception):
    """Base exception for cache-related errors.

    Carries a stable error code and structured details so callers can log
    or map the failure without parsing the message.
    """

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


class InvalidCategoryException(CacheException, ValueError):
    """Raised when a category is outside the fixed cache category set."""

    def __init__(self, category: Any, allowed: Optional[list] = None):
        details: Dict[str, Any] = {"category": str(category)}
        if allowed:
            details["allowed"] = allowed

        super().__init__(
            message=f"Invalid cache data type: {category}",
            error_code="CACHE_INVALID_CATEGORY",
            details=details,
        )


class InvalidCacheKeyException(CacheException, ValueError):
    """Raised when a cache key cannot be built within the length bound."""

    def __init__(self, message: str, key_fragment: Optional[str] = None):
        details = {}
        if key_fragment:
            details["key_fragment"] = key_fragment

        super().__init__(
            message=message, error_code="CACHE_INVALID_KEY", details=details
        )


class SerializationException(CacheException):
    """Raised when a value cannot be encoded for caching."""

    def __init__(
        self,
        message: str,
        value_type: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        details = {}
        if value_type:
            details["value_type"] = value_type
        if original_error:
            details["original_error"] = str(original_error)
            details["original_error_type"] = type(original_error).__name__

        super().__init__(
            message=message, error_code="CACHE_SERIALIZATION_ERROR", details=details
        )
        if original_error:
            self.__cause__ = original_error


class DeserializationException(CacheException):
    """Raised when a cached payload is malformed and cannot be decoded."""

    def __init__(
        self,
        message: str,
        payload_preview: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        details = {}
        if payload_preview:
            details["payload_preview"] = payload_preview
        if original_error:
            details["original_error"] = str(original_error)
            details["original_error_type"] = type(original_error).__name__

        super().__init__(
            message=message,
            error_code="CACHE_DESERIALIZATION_ERROR",
            details=details,
        )
        if original_error:
            self.__cause__ = original_error


class CacheConfigurationException(CacheException):
    """Raised when cache configuration is invalid or an operation is refused by it."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        config_value: Optional[Any] = None,
    ):
        details = {}
        if config_key:
            details["config_key"] = config_key
        if config_value is not None:
            details["config_value"] = str(config_value)

        super().__init__(
            message=message, error_code="CACHE_CONFIGURATION_ERROR", details=details
        )
