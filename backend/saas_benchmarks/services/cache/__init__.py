"""
Cache Services Module

Application-facing cache facade used by the benchmark, metrics,
sources and session services.
"""

from .cache_service import CacheService, CacheServiceConfig

__all__ = ["CacheService", "CacheServiceConfig"]
