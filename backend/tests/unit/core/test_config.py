"""
Unit tests for application settings.
"""

import pytest
from pydantic import ValidationError

from saas_benchmarks.core.config import Settings, get_settings, parse_cluster_nodes

STRONG_PASSWORD = "a-very-long-redis-password"


class TestSettings:
    """Test Settings defaults and validation."""

    def test_defaults(self):
        settings = Settings()

        assert settings.ENVIRONMENT == "test"
        assert settings.REDIS_PORT == 6379
        assert settings.REDIS_TTL == 300
        assert settings.CACHE_KEY_PREFIX == "saas_benchmarks:"
        assert settings.CACHE_COMPRESSION_THRESHOLD == 1024
        assert settings.CIRCUIT_BREAKER_ERROR_THRESHOLD_PERCENTAGE == 50.0
        assert settings.CIRCUIT_BREAKER_OPERATION_TIMEOUT == 3.0
        assert not settings.is_production

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("REDIS_HOST", "cache.internal")
        monkeypatch.setenv("REDIS_PORT", "6390")

        settings = Settings()

        assert settings.REDIS_HOST == "cache.internal"
        assert settings.REDIS_PORT == 6390

    def test_log_level_normalized(self):
        assert Settings(LOG_LEVEL="debug").LOG_LEVEL == "DEBUG"

    def test_invalid_log_level(self):
        with pytest.raises(ValidationError):
            Settings(LOG_LEVEL="verbose")

    def test_invalid_environment(self):
        with pytest.raises(ValidationError, match="ENVIRONMENT must be one of"):
            Settings(ENVIRONMENT="qa")

    @pytest.mark.parametrize("port", [80, 1023, 65536])
    def test_port_out_of_range(self, port):
        with pytest.raises(ValidationError):
            Settings(REDIS_PORT=port)

    def test_short_password_rejected(self):
        with pytest.raises(ValidationError, match="at least 16 characters"):
            Settings(REDIS_PASSWORD="short")

    @pytest.mark.parametrize("ttl", [59, 86401])
    def test_ttl_out_of_range(self, ttl):
        with pytest.raises(ValidationError):
            Settings(REDIS_TTL=ttl)

    def test_unsafe_key_prefix_rejected(self):
        with pytest.raises(ValidationError):
            Settings(CACHE_KEY_PREFIX="saas benchmarks:")

    def test_production_requires_password(self):
        with pytest.raises(ValidationError, match="password is required"):
            Settings(ENVIRONMENT="production", REDIS_TLS_ENABLED=True)

    def test_production_requires_tls(self):
        with pytest.raises(ValidationError, match="TLS must be enabled"):
            Settings(ENVIRONMENT="production", REDIS_PASSWORD=STRONG_PASSWORD)

    def test_valid_production(self):
        settings = Settings(
            ENVIRONMENT="production",
            REDIS_PASSWORD=STRONG_PASSWORD,
            REDIS_TLS_ENABLED=True,
        )

        assert settings.is_production


class TestClusterSettings:
    """Test Redis cluster settings."""

    def test_cluster_disabled_by_default(self):
        settings = Settings()

        assert settings.REDIS_CLUSTER_MODE is False
        assert settings.redis_cluster_nodes == []

    def test_cluster_nodes_parsed(self):
        settings = Settings(
            REDIS_CLUSTER_MODE=True,
            REDIS_CLUSTER_NODES="redis-0.internal:7000,redis-1.internal:7001,",
        )

        assert settings.redis_cluster_nodes == [
            ("redis-0.internal", 7000),
            ("redis-1.internal", 7001),
        ]

    def test_cluster_mode_requires_nodes(self):
        with pytest.raises(ValidationError, match="REDIS_CLUSTER_NODES is required"):
            Settings(REDIS_CLUSTER_MODE=True)

    def test_cluster_mode_requires_db_zero(self):
        with pytest.raises(ValidationError, match="REDIS_DB must be 0"):
            Settings(
                REDIS_CLUSTER_MODE=True,
                REDIS_CLUSTER_NODES="10.0.0.1:7000",
                REDIS_DB=2,
            )

    @pytest.mark.parametrize(
        "nodes", ["10.0.0.1", "10.0.0.1:port", "10.0.0.1:80", "10.0.0.1:70000", ":7000"]
    )
    def test_invalid_cluster_nodes(self, nodes):
        with pytest.raises(ValidationError):
            Settings(REDIS_CLUSTER_MODE=True, REDIS_CLUSTER_NODES=nodes)

    def test_parse_cluster_nodes_skips_blank_entries(self):
        assert parse_cluster_nodes(" a:7000 , ,b:7001") == [("a", 7000), ("b", 7001)]
        assert parse_cluster_nodes("") == []


class TestGetSettings:
    """Test the cached settings accessor."""

    def test_returns_cached_instance(self):
        get_settings.cache_clear()
        try:
            assert get_settings() is get_settings()
        finally:
            get_settings.cache_clear()
