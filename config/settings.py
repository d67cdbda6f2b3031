"""App settings — loaded from environment."""
from __future__ import annotations

import json
import os
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _load_product_map() -> dict[str, str]:
    """Product ID → plan ID, from PRODUCT_PLAN_MAP (JSON) plus per-product vars."""
    mapping: dict[str, str] = {}
    raw = os.getenv("PRODUCT_PLAN_MAP", "").strip()
    if raw:
        parsed = json.loads(raw)
        if not isinstance(parsed, dict):
            raise ValueError("PRODUCT_PLAN_MAP must be a JSON object")
        mapping.update({str(k): str(v) for k, v in parsed.items()})

    for env_name, plan_id in (
        ("PRODUCT_CREATOR_MONTHLY", "creator-monthly"),
        ("PRODUCT_CREATOR_YEARLY", "creator-yearly"),
    ):
        product_id = os.getenv(env_name, "").strip()
        if product_id:
            mapping[product_id] = plan_id
    return mapping


class Settings:
    # API
    API_HOST = os.getenv("API_HOST", "0.0.0.0")
    API_PORT = int(os.getenv("API_PORT", "8000"))

    # Database
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///billing.db")

    # Payment processor webhooks
    WEBHOOK_SECRET = os.getenv("WEBHOOK_SECRET", os.getenv("DODO_WEBHOOK_SECRET", ""))
    # Single hardening switch: reject bad/missing signatures when true
    WEBHOOK_ENFORCE_SIGNATURE = _env_bool("WEBHOOK_ENFORCE_SIGNATURE", True)
    PRODUCT_PLAN_MAP: dict[str, str] = _load_product_map()

    # Identity tokens issued by the auth provider (HS256)
    AUTH_JWT_SECRET = os.getenv("AUTH_JWT_SECRET", "thumbnail-studio-dev-secret-change-in-prod")

    # Admin API key (for reconciliation endpoints)
    ADMIN_API_KEY = os.getenv("ADMIN_API_KEY", "")

    # CORS origins (comma-separated, or * for dev)
    CORS_ORIGINS = [
        o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",")
    ]

    # Observability
    SENTRY_DSN = os.getenv("SENTRY_DSN", "")
    SENTRY_ENVIRONMENT = os.getenv("SENTRY_ENVIRONMENT", "development")
    SENTRY_TRACES_SAMPLE_RATE = float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0.1"))

    # Logging
    LOG_FORMAT = os.getenv("LOG_FORMAT", "text")  # "text" or "json"
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


settings = Settings()
