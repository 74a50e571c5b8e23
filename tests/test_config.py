"""Tests for settings loading and validation."""

from __future__ import annotations

import pytest

from storefront.config import Settings, is_production


class TestSettings:
    def test_postgres_url_gets_async_driver(self) -> None:
        s = Settings(database_url="postgresql://u:p@db:5432/products", jwt_secret="x")
        assert s.database_url == "postgresql+asyncpg://u:p@db:5432/products"

    def test_env_prefix(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("STOREFRONT_GATEWAY_RATE_LIMIT_MAX_REQUESTS", "7")
        monkeypatch.setenv("STOREFRONT_JWT_SECRET", "from-env")
        s = Settings()
        assert s.gateway_rate_limit_max_requests == 7
        assert s.jwt_secret == "from-env"

    def test_defaults_match_service_limits(self) -> None:
        s = Settings(jwt_secret="x")
        assert (s.gateway_rate_limit_window_ms, s.gateway_rate_limit_max_requests) == (60_000, 100)
        assert (s.product_strict_window_ms, s.product_strict_max_requests) == (60_000, 30)
        assert (s.product_lenient_window_ms, s.product_lenient_max_requests) == (60_000, 100)
        assert s.rate_limit_max_identities == 10_000
        assert s.rate_limit_compaction == "sweep"

    def test_upstream_routes(self) -> None:
        routes = Settings(jwt_secret="x").upstream_routes()
        assert routes["/api/users"] == "http://user-service:5001"
        assert routes["/api/products"] == "http://product-service:5002"
        assert routes["/api/orders"] == "http://order-service:5003"
        assert set(routes) == {
            "/api/users",
            "/api/products",
            "/api/orders",
            "/api/payments",
            "/api/cart",
            "/api/notifications",
        }

    def test_default_secret_refused_in_production(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("STOREFRONT_ENV", "production")
        monkeypatch.delenv("STOREFRONT_JWT_SECRET", raising=False)
        assert is_production()
        with pytest.raises(ValueError, match="STOREFRONT_JWT_SECRET"):
            Settings(_env_file=None)

    def test_default_secret_allowed_in_development(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("STOREFRONT_ENV", "development")
        monkeypatch.delenv("STOREFRONT_JWT_SECRET", raising=False)
        assert Settings(_env_file=None).jwt_secret == "CHANGE-ME-in-production"


class TestLimiterWiring:
    def test_invalid_limits_fail_at_app_build(self) -> None:
        from storefront.main import create_product_app
        from storefront.services.rate_limiter import RateLimiterConfigError

        with pytest.raises(RateLimiterConfigError):
            create_product_app(Settings(jwt_secret="x", product_strict_max_requests=0))

    def test_unknown_compaction_policy_fails_at_app_build(self) -> None:
        from storefront.main import create_gateway_app
        from storefront.services.rate_limiter import RateLimiterConfigError

        with pytest.raises(RateLimiterConfigError):
            create_gateway_app(Settings(jwt_secret="x", rate_limit_compaction="drop"))
