"""
SaaS Benchmarks Cache Configuration

Configuration management with environment variable support.
Implements secure defaults and validation for Redis and cache settings.
"""

import re
from functools import lru_cache
from typing import List, Optional, Tuple

from dotenv import load_dotenv
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..constants import (
    CACHE_KEY_PREFIX,
    COMPRESSION_THRESHOLD_BYTES,
    DEFAULT_CACHE_TTL,
    MAX_CACHE_TTL,
    MIN_CACHE_TTL,
)

# Load environment variables from .env file
load_dotenv()

_KEY_PREFIX_PATTERN = re.compile(r"^[A-Za-z0-9_:\-]*$")
_CLUSTER_NODE_PATTERN = re.compile(r"^(?P<host>[^\s:,]+):(?P<port>\d+)$")


def parse_cluster_nodes(value: str) -> List[Tuple[str, int]]:
    """Parse a comma-separated list of host:port cluster startup nodes."""
    nodes: List[Tuple[str, int]] = []
    for part in value.split(","):
        part = part.strip()
        if not part:
            continue
        match = _CLUSTER_NODE_PATTERN.match(part)
        if not match:
            raise ValueError(f"Invalid Redis cluster node '{part}', expected host:port")
        port = int(match.group("port"))
        if not 1024 <= port <= 65535:
            raise ValueError(f"Redis cluster node port out of range: {part}")
        nodes.append((match.group("host"), port))
    return nodes


class Settings(BaseSettings):
    """Application settings with validation and secure defaults."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=True, extra="ignore"
    )

    # Environment settings
    ENVIRONMENT: str = Field(
        default="development", description="Application environment"
    )
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_JSON: bool = Field(default=False, description="Render logs as JSON")

    # Redis connection
    REDIS_HOST: str = Field(default="localhost", min_length=1, description="Redis host")
    REDIS_PORT: int = Field(
        default=6379, ge=1024, le=65535, description="Redis port"
    )
    REDIS_USERNAME: Optional[str] = Field(default=None, description="Redis ACL user")
    REDIS_PASSWORD: str = Field(default="", description="Redis password")
    REDIS_DB: int = Field(default=0, ge=0, le=15, description="Redis database index")

    # Redis TLS
    REDIS_TLS_ENABLED: bool = Field(default=False, description="Enable TLS")
    REDIS_TLS_CA: Optional[str] = Field(default=None, description="CA bundle path")
    REDIS_TLS_CERT: Optional[str] = Field(default=None, description="Client cert path")
    REDIS_TLS_KEY: Optional[str] = Field(default=None, description="Client key path")

    # Redis pool and socket settings
    REDIS_POOL_MAX: int = Field(
        default=20, ge=1, le=100, description="Redis connection pool size"
    )
    REDIS_CONNECT_TIMEOUT: float = Field(
        default=10.0, gt=0, le=60, description="Redis connect timeout in seconds"
    )
    REDIS_SOCKET_TIMEOUT: float = Field(
        default=5.0, gt=0, le=60, description="Redis socket timeout in seconds"
    )
    REDIS_INSTRUMENT_CLIENT: bool = Field(
        default=False, description="Enable OpenTelemetry redis instrumentation"
    )

    # Redis cluster
    REDIS_CLUSTER_MODE: bool = Field(default=False, description="Connect to a Redis cluster")
    REDIS_CLUSTER_NODES: str = Field(
        default="", description="Comma-separated host:port cluster startup nodes"
    )

    # Cache behaviour
    REDIS_TTL: int = Field(
        default=DEFAULT_CACHE_TTL,
        ge=MIN_CACHE_TTL,
        le=MAX_CACHE_TTL,
        description="Default base TTL in seconds",
    )
    CACHE_KEY_PREFIX: str = Field(
        default=CACHE_KEY_PREFIX, max_length=64, description="Global cache key prefix"
    )
    CACHE_COMPRESSION_THRESHOLD: int = Field(
        default=COMPRESSION_THRESHOLD_BYTES,
        ge=0,
        description="Compress encoded values larger than this many bytes",
    )

    # Circuit breaker settings
    CIRCUIT_BREAKER_ERROR_THRESHOLD_PERCENTAGE: float = Field(
        default=50.0, gt=0, le=100, description="Failure rate that opens the circuit"
    )
    CIRCUIT_BREAKER_VOLUME_THRESHOLD: int = Field(
        default=5, ge=1, le=1000, description="Minimum samples before opening"
    )
    CIRCUIT_BREAKER_ROLLING_WINDOW: float = Field(
        default=10.0, gt=0, le=600, description="Rolling statistics window in seconds"
    )
    CIRCUIT_BREAKER_RESET_TIMEOUT: float = Field(
        default=30.0, gt=0, le=600, description="Seconds before a half-open trial"
    )
    CIRCUIT_BREAKER_OPERATION_TIMEOUT: float = Field(
        default=3.0, gt=0, le=60, description="Per-operation timeout in seconds"
    )

    @field_validator("ENVIRONMENT")
    @classmethod
    def validate_environment(cls, v):
        """Validate environment value."""
        allowed = ["development", "test", "staging", "production"]
        if v not in allowed:
            raise ValueError(f"ENVIRONMENT must be one of: {allowed}")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        allowed = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in allowed:
            raise ValueError(f"LOG_LEVEL must be one of: {allowed}")
        return v.upper()

    @field_validator("REDIS_PASSWORD")
    @classmethod
    def validate_redis_password(cls, v):
        """Passwords, when set, must be at least 16 characters long."""
        if v and len(v) < 16:
            raise ValueError("Redis password must be at least 16 characters long")
        return v

    @field_validator("CACHE_KEY_PREFIX")
    @classmethod
    def validate_key_prefix(cls, v):
        """Prefix must not need escaping in the Redis protocol."""
        if not _KEY_PREFIX_PATTERN.match(v):
            raise ValueError(
                "CACHE_KEY_PREFIX may only contain letters, digits, '_', '-' and ':'"
            )
        return v

    @field_validator("REDIS_CLUSTER_NODES")
    @classmethod
    def validate_cluster_nodes(cls, v):
        """Every cluster node must be host:port."""
        parse_cluster_nodes(v)
        return v

    @model_validator(mode="after")
    def validate_cluster(self):
        """Cluster mode needs startup nodes and only has database 0."""
        if self.REDIS_CLUSTER_MODE:
            if not self.redis_cluster_nodes:
                raise ValueError(
                    "REDIS_CLUSTER_NODES is required when REDIS_CLUSTER_MODE is enabled"
                )
            if self.REDIS_DB != 0:
                raise ValueError("REDIS_DB must be 0 in cluster mode")
        return self

    @model_validator(mode="after")
    def validate_production(self):
        """Production requires an authenticated, encrypted Redis connection."""
        if self.ENVIRONMENT == "production":
            if not self.REDIS_PASSWORD:
                raise ValueError("Redis password is required in production environment")
            if not self.REDIS_TLS_ENABLED:
                raise ValueError("Redis TLS must be enabled in production")
        return self

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.ENVIRONMENT == "production"

    @property
    def redis_cluster_nodes(self) -> List[Tuple[str, int]]:
        """Parsed cluster startup nodes."""
        return parse_cluster_nodes(self.REDIS_CLUSTER_NODES)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
