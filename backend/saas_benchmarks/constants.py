"""
SaaS Benchmarks Global Constants

Centralized location for cache-wide constants used across the backend.
"""

# Application Constants
APP_NAME = "SaaS Benchmarks"
APP_VERSION = "1.0.0"

# Cache key constants
CACHE_KEY_PREFIX = "saas_benchmarks:"
MAX_KEY_LENGTH = 200
FINGERPRINT_LENGTH = 8

# TTL constants (seconds)
DEFAULT_CACHE_TTL = 300
MIN_CACHE_TTL = 60
MAX_CACHE_TTL = 86400

# Value serialization constants
COMPRESSION_THRESHOLD_BYTES = 1024
COMPRESSION_MARKER = "__compressed__"
DATE_TYPE_TAG = "Date"
