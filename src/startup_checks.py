"""Startup validation — catch misconfigurations before the app serves traffic."""
from __future__ import annotations

import logging
import sys

from config.settings import settings

logger = logging.getLogger(__name__)

_DEFAULT_JWT_SECRET = "thumbnail-studio-dev-secret-change-in-prod"


def validate_settings() -> list[str]:
    """Validate configuration. Returns list of warnings (empty = all good).

    Raises SystemExit for critical misconfigurations in production.
    """
    warnings: list[str] = []
    is_prod = settings.DATABASE_URL and "sqlite" not in settings.DATABASE_URL

    # Critical: identity tokens would be forgeable
    if is_prod and settings.AUTH_JWT_SECRET == _DEFAULT_JWT_SECRET:
        logger.critical("AUTH_JWT_SECRET is still the default! Set a real secret for production.")
        sys.exit(1)

    # Critical: hardened mode with no secret rejects every delivery
    if is_prod and settings.WEBHOOK_ENFORCE_SIGNATURE and not settings.WEBHOOK_SECRET:
        logger.critical("WEBHOOK_ENFORCE_SIGNATURE is on but WEBHOOK_SECRET is empty.")
        sys.exit(1)

    if not settings.WEBHOOK_SECRET:
        warnings.append("WEBHOOK_SECRET not set — webhook signatures are not verified")
    elif not settings.WEBHOOK_ENFORCE_SIGNATURE:
        warnings.append("WEBHOOK_ENFORCE_SIGNATURE is off — bad signatures are logged but accepted")

    if not settings.PRODUCT_PLAN_MAP:
        warnings.append("PRODUCT_PLAN_MAP is empty — plans resolve from checkout metadata only")

    if not settings.ADMIN_API_KEY:
        warnings.append("ADMIN_API_KEY not set — reconciliation endpoints disabled")

    if is_prod and "*" in settings.CORS_ORIGINS:
        warnings.append("CORS_ORIGINS is set to * — restrict in production")

    for w in warnings:
        logger.warning("⚠️  %s", w)

    if not warnings:
        logger.info("✅ All startup checks passed")

    return warnings
