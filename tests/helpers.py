"""Payload and token builders shared by the webhook tests."""
from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time

WEBHOOK_SECRET = "whsec_test_thumbnail"
PRODUCT_MAP = {
    "prod_monthly": "creator-monthly",
    "prod_yearly": "creator-yearly",
    "prod_pro": "pro",
}
JWT_SECRET = "test-jwt-secret"
ADMIN_KEY = "test-admin-key"


def sign(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    """Hex HMAC-SHA256, the processor's plainest header encoding."""
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def sign_v1(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    digest = hmac.new(secret.encode(), body, hashlib.sha256).digest()
    return "v1," + base64.b64encode(digest).decode()


def event_body(event_type: str, data: dict) -> bytes:
    return json.dumps({"type": event_type, "data": data}).encode()


def activation_data(
    subscription_id: str = "sub_1",
    user_id: str = "user_a",
    product_id: str = "prod_monthly",
    **extra,
) -> dict:
    metadata = {"user_id": user_id} if user_id else {}
    metadata.update(extra.pop("metadata", {}))
    data = {
        "subscription_id": subscription_id,
        "product_id": product_id,
        "customer": {"customer_id": "cus_1", "email": "creator@example.com"},
        "metadata": metadata,
        "amount": 1900,
        "currency": "USD",
    }
    data.update(extra)
    return data


def make_token(sub: str, secret: str = JWT_SECRET, exp_offset: int = 3600) -> str:
    """HS256 identity token as issued by the auth provider."""
    def b64(obj: dict) -> str:
        return base64.urlsafe_b64encode(json.dumps(obj).encode()).rstrip(b"=").decode()

    header = b64({"alg": "HS256", "typ": "JWT"})
    payload = b64({"sub": sub, "exp": int(time.time()) + exp_offset})
    sig = hmac.new(secret.encode(), f"{header}.{payload}".encode(), hashlib.sha256).digest()
    return f"{header}.{payload}." + base64.urlsafe_b64encode(sig).rstrip(b"=").decode()
