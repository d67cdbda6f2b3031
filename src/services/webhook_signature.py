"""Webhook signature gate — decides whether a delivery came from the payment processor.

HMAC-SHA256 over the exact raw request bytes. The processor has shipped
several header encodings over time. Each is accepted only in its canonical
form:

    <hex>              plain lowercase hex digest
    sha256=<hex>       prefixed lowercase hex digest
    v1,<base64>        versioned base64 digest

A header may carry several space-separated candidates (secret rotation);
any one matching verifies the payload.
"""
from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import logging
from dataclasses import dataclass
from typing import Mapping, Optional

logger = logging.getLogger(__name__)

# Consulted in order; the first non-empty header wins
SIGNATURE_HEADERS = (
    "webhook-signature",
    "x-dodo-signature",
    "dodo-signature",
    "x-webhook-signature",
)

VERIFIED = "verified"
UNVERIFIED = "unverified"
MISMATCH = "mismatch"


def compute_signature(payload: bytes, secret: str) -> bytes:
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).digest()


def _decode_candidate(candidate: str) -> Optional[bytes]:
    """Decode one signature candidate to raw digest bytes, or None if unparseable."""
    candidate = candidate.strip()
    if not candidate:
        return None
    if candidate.startswith("sha256="):
        candidate = candidate[len("sha256="):]
    elif candidate.startswith("v1,"):
        encoded = candidate[len("v1,"):]
        try:
            decoded = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError):
            return None
        # Non-canonical encodings (stray bits in the last character) are rejected
        if base64.b64encode(decoded).decode("ascii") != encoded:
            return None
        return decoded
    # Hex is only accepted in its canonical lowercase form
    if candidate != candidate.lower():
        return None
    try:
        return bytes.fromhex(candidate)
    except ValueError:
        return None


def verify_signature(payload: bytes, signature_header: str, secret: str) -> bool:
    """True if any candidate in ``signature_header`` is a valid HMAC of ``payload``."""
    if not signature_header or not secret:
        return False
    expected = compute_signature(payload, secret)
    for candidate in signature_header.split(" "):
        received = _decode_candidate(candidate)
        if received is not None and hmac.compare_digest(expected, received):
            return True
    return False


def extract_signature(headers: Mapping[str, str]) -> str:
    for name in SIGNATURE_HEADERS:
        value = headers.get(name)
        if value:
            return value
    return ""


@dataclass(frozen=True)
class GateDecision:
    status: str  # verified | unverified | mismatch
    accepted: bool
    reason: str = ""


class SignatureGate:
    """Applies the single enforcement switch to a signature check.

    enforce=True (hardened): missing or invalid signatures are rejected.
    enforce=False (relaxed): they are accepted but flagged for audit.
    With no secret configured every delivery is accepted as unverified.
    """

    def __init__(self, secret: str, enforce: bool):
        self.secret = secret or ""
        self.enforce = enforce

    def check(self, payload: bytes, signature_header: str) -> GateDecision:
        if not self.secret:
            logger.warning("Webhook secret not configured — delivery accepted unverified")
            return GateDecision(UNVERIFIED, accepted=True, reason="no secret configured")

        if not signature_header:
            if self.enforce:
                logger.error("Webhook delivery rejected: no signature header")
                return GateDecision(UNVERIFIED, accepted=False, reason="missing signature")
            logger.warning("Webhook delivery has no signature — accepted unverified (enforcement off)")
            return GateDecision(UNVERIFIED, accepted=True, reason="missing signature")

        if verify_signature(payload, signature_header, self.secret):
            return GateDecision(VERIFIED, accepted=True)

        if self.enforce:
            logger.error(
                "Webhook delivery rejected: invalid signature (header prefix %r, body %d bytes)",
                signature_header[:12], len(payload),
            )
            return GateDecision(MISMATCH, accepted=False, reason="invalid signature")

        logger.error(
            "SIGNATURE MISMATCH accepted because enforcement is off — possible forged billing event "
            "(header prefix %r, body %d bytes)",
            signature_header[:12], len(payload),
        )
        return GateDecision(MISMATCH, accepted=True, reason="invalid signature")
