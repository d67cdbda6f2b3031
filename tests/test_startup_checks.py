"""Tests for startup configuration validation."""
from __future__ import annotations

from unittest.mock import patch

import pytest

from src.startup_checks import validate_settings

PROD_DB = "postgresql+asyncpg://billing:pw@db/billing"


def test_test_config_passes_cleanly():
    assert validate_settings() == []


def test_default_jwt_secret_fatal_in_production(billing_settings):
    with patch.object(billing_settings, "DATABASE_URL", PROD_DB), \
         patch.object(billing_settings, "AUTH_JWT_SECRET", "thumbnail-studio-dev-secret-change-in-prod"):
        with pytest.raises(SystemExit):
            validate_settings()


def test_enforcement_without_secret_fatal_in_production(billing_settings):
    with patch.object(billing_settings, "DATABASE_URL", PROD_DB), \
         patch.object(billing_settings, "WEBHOOK_SECRET", ""), \
         patch.object(billing_settings, "CORS_ORIGINS", ["https://app.example.com"]):
        with pytest.raises(SystemExit):
            validate_settings()


def test_missing_secret_only_warns_in_dev(billing_settings):
    with patch.object(billing_settings, "WEBHOOK_SECRET", ""):
        warnings = validate_settings()
    assert any("WEBHOOK_SECRET" in w for w in warnings)


def test_relaxed_mode_warns(billing_settings):
    with patch.object(billing_settings, "WEBHOOK_ENFORCE_SIGNATURE", False):
        warnings = validate_settings()
    assert any("WEBHOOK_ENFORCE_SIGNATURE" in w for w in warnings)


def test_empty_product_map_warns(billing_settings):
    with patch.object(billing_settings, "PRODUCT_PLAN_MAP", {}):
        warnings = validate_settings()
    assert any("PRODUCT_PLAN_MAP" in w for w in warnings)


def test_wildcard_cors_warns_in_production(billing_settings):
    with patch.object(billing_settings, "DATABASE_URL", PROD_DB), \
         patch.object(billing_settings, "CORS_ORIGINS", ["*"]):
        warnings = validate_settings()
    assert any("CORS" in w for w in warnings)
