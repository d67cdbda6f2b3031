"""Identity-token verification for Thumbnail Studio — tokens are issued by the auth provider.

We only verify: HS256 JWTs signed with the provider's shared secret, whose
``sub`` claim is the user ID the entitlement rows are keyed by.
"""
from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from config.settings import settings

# ---- JWT verification (minimal, no PyJWT dependency) ----

_JWT_ALGO = "HS256"
_LEEWAY_SECONDS = 30


def _b64url_decode(s: str) -> bytes:
    s += "=" * (-len(s) % 4)
    return base64.urlsafe_b64decode(s)


def verify_token(token: str, secret: Optional[str] = None) -> Optional[dict]:
    """Return the token's claims if the signature and expiry check out, else None."""
    secret = secret if secret is not None else settings.AUTH_JWT_SECRET
    try:
        parts = token.split(".")
        if len(parts) != 3:
            return None
        header = json.loads(_b64url_decode(parts[0]))
        if header.get("alg") != _JWT_ALGO:
            return None
        sig_input = f"{parts[0]}.{parts[1]}".encode()
        expected = hmac.new(secret.encode(), sig_input, hashlib.sha256).digest()
        actual = _b64url_decode(parts[2])
        if not hmac.compare_digest(expected, actual):
            return None
        payload = json.loads(_b64url_decode(parts[1]))
        if payload.get("exp", 0) + _LEEWAY_SECONDS < time.time():
            return None
        return payload
    except (ValueError, TypeError, AttributeError):
        return None


# ---- FastAPI dependency ----

_bearer = HTTPBearer(auto_error=False)


async def get_current_user_id(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
) -> Optional[str]:
    if not creds:
        return None
    payload = verify_token(creds.credentials)
    if not payload or not payload.get("sub"):
        return None
    return str(payload["sub"])


async def require_user_id(user_id: Optional[str] = Depends(get_current_user_id)) -> str:
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    return user_id
