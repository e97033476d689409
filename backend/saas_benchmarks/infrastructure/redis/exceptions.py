"""
Redis Store Exceptions

Infrastructure exceptions for the remote key/value store.
Every store failure counts toward circuit breaker accounting; the cache
service decides whether it degrades to a miss or a soft failure.
"""

from typing import Optional

from ...domain.cache.exceptions import CacheException


class StoreException(CacheException):
    """Base exception for remote store errors.

    Raw client errors are wrapped here with exception chaining so the
    original cause is never lost.
    """

    def __init__(
        self,
        message: str,
        error_code: str = "STORE_ERROR",
        operation: Optional[str] = None,
        key: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if key:
            details["key"] = key
        if original_error:
            details["original_error"] = str(original_error)
            details["original_error_type"] = type(original_error).__name__

        super().__init__(message=message, error_code=error_code, details=details)
        if original_error:
            self.__cause__ = original_error


class StoreConnectionException(StoreException):
    """Raised when the store connection fails or is lost."""

    def __init__(
        self,
        message: str = "Redis connection failed",
        operation: Optional[str] = None,
        key: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(
            message=message,
            error_code="STORE_CONNECTION_ERROR",
            operation=operation,
            key=key,
            original_error=original_error,
        )


class StoreTimeoutException(StoreException):
    """Raised when a store operation exceeds its timeout."""

    def __init__(
        self,
        operation: str,
        timeout_seconds: float,
        key: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(
            message=f"Redis operation '{operation}' timed out after {timeout_seconds}s",
            error_code="STORE_TIMEOUT_ERROR",
            operation=operation,
            key=key,
            original_error=original_error,
        )
        self.details["timeout_seconds"] = timeout_seconds


class CircuitBreakerOpenException(StoreException):
    """Raised when the circuit breaker rejects an operation without calling the store."""

    def __init__(
        self,
        message: str = "Redis circuit breaker is open - service unavailable",
        operation: Optional[str] = None,
        retry_after_seconds: Optional[float] = None,
    ):
        super().__init__(
            message=message,
            error_code="STORE_CIRCUIT_BREAKER_OPEN",
            operation=operation,
        )
        self.details["service_status"] = "unavailable"
        if retry_after_seconds is not None:
            self.details["retry_after_seconds"] = round(retry_after_seconds, 3)
