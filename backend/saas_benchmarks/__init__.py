"""
SaaS Benchmarks backend.

Cache core for the benchmarking API: key and value codecs, TTL policy,
a circuit-breaker guarded Redis gateway and the cache service facade.
"""

from .constants import APP_NAME, APP_VERSION

__version__ = APP_VERSION

__all__ = ["APP_NAME", "APP_VERSION", "__version__"]
