"""Tests for configuration validation and health checks."""

from __future__ import annotations

import importlib.util
import os
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import redis

CONFIG_PATH = Path(__file__).resolve().parents[1] / "app" / "config.py"


def _load_real_config(name: str = "real_app_config"):
    """Load app/config.py directly; conftest.py replaces ``app.config`` in sys.modules."""
    spec = importlib.util.spec_from_file_location(name, CONFIG_PATH)
    assert spec is not None
    mod = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(mod)  # type: ignore[union-attr]
    return mod


@pytest.fixture(scope="module")
def config_module():
    return _load_real_config()


def _configured(config_module, **overrides):
    values = {
        "database_url": "postgresql+psycopg://app:pw@db.internal:5432/market",
        "jwt_secret": "a" * 32,
        "paylink_api_id": "APP_ID_1",
        "paylink_secret": "secret",
        "paylink_webhook_auth": "hook-credential",
        "payments_simulation_enabled": False,
    }
    values.update(overrides)
    return config_module.Settings(**values)


class TestValidateSettings:
    def test_no_warnings_when_configured(self, config_module) -> None:
        assert config_module.validate_settings(_configured(config_module)) == []

    def test_missing_jwt_secret(self, config_module) -> None:
        warnings = config_module.validate_settings(_configured(config_module, jwt_secret=""))
        assert any("JWT_SECRET is not set" in w for w in warnings)

    def test_short_jwt_secret(self, config_module) -> None:
        warnings = config_module.validate_settings(
            _configured(config_module, jwt_secret="short")
        )
        assert any("shorter than 32" in w for w in warnings)

    def test_missing_webhook_credential(self, config_module) -> None:
        warnings = config_module.validate_settings(
            _configured(config_module, paylink_webhook_auth="")
        )
        assert any("PAYLINK_WEBHOOK_AUTH" in w for w in warnings)

    def test_missing_paylink_credentials(self, config_module) -> None:
        warnings = config_module.validate_settings(
            _configured(config_module, paylink_secret="")
        )
        assert any("PAYLINK_API_ID" in w for w in warnings)

    def test_production_checks(self, config_module) -> None:
        s = _configured(
            config_module,
            database_url="postgresql+psycopg://app:pw@localhost:5432/market",
            payments_simulation_enabled=True,
        )
        with patch.dict(os.environ, {"ENVIRONMENT": "production"}):
            warnings = config_module.validate_settings(s)
        assert any("localhost" in w for w in warnings)
        assert any("PAYMENTS_SIMULATION_ENABLED" in w for w in warnings)

    def test_simulation_allowed_outside_production(self, config_module) -> None:
        s = _configured(config_module, payments_simulation_enabled=True)
        with patch.dict(os.environ, {"ENVIRONMENT": "dev"}):
            assert config_module.validate_settings(s) == []


class TestPaylinkBaseUrl:
    def test_pilot_by_default(self, config_module) -> None:
        with patch.dict(os.environ, {"PAYLINK_BASE_URL": "", "PAYLINK_ENV": ""}):
            assert config_module._paylink_base_url() == "https://restpilot.paylink.sa"

    def test_production_environment(self, config_module) -> None:
        with patch.dict(os.environ, {"PAYLINK_BASE_URL": "", "PAYLINK_ENV": "prod"}):
            assert config_module._paylink_base_url() == "https://restapi.paylink.sa"

    def test_explicit_url_wins(self, config_module) -> None:
        with patch.dict(
            os.environ, {"PAYLINK_BASE_URL": "https://paylink.test/", "PAYLINK_ENV": "prod"}
        ):
            assert config_module._paylink_base_url() == "https://paylink.test"


class TestHealthCheck:
    def test_liveness_always_ok(self, client) -> None:
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}

    def test_readiness_ok(self, client) -> None:
        redis_client = MagicMock()
        with patch("app.main.redis_lib.Redis.from_url", return_value=redis_client):
            resp = client.get("/health/ready")
        assert resp.status_code == 200
        assert resp.json()["checks"] == {"database": "ok", "redis": "ok"}
        redis_client.ping.assert_called_once()

    def test_readiness_degraded_without_redis(self, client) -> None:
        redis_client = MagicMock()
        redis_client.ping.side_effect = redis.ConnectionError("refused")
        with patch("app.main.redis_lib.Redis.from_url", return_value=redis_client):
            resp = client.get("/health/ready")
        assert resp.status_code == 503
        body = resp.json()
        assert body["status"] == "degraded"
        assert body["checks"]["redis"].startswith("error:")

    def test_metrics_exposed(self, client) -> None:
        resp = client.get("/metrics")
        assert resp.status_code == 200
        assert "paylink" in resp.text
