"""Tests for reconciliation admin endpoints — auth and listings."""
from __future__ import annotations

import json
from unittest.mock import patch

import pytest

from tests.helpers import ADMIN_KEY, activation_data, event_body, sign

ADMIN = {"X-Admin-Key": ADMIN_KEY}


async def _deliver(client, event_type: str, data: dict):
    body = event_body(event_type, data)
    return await client.post(
        "/api/v1/webhooks/payments", content=body, headers={"webhook-signature": sign(body)},
    )


class TestAdminAuth:
    @pytest.mark.asyncio
    async def test_missing_key_forbidden(self, client):
        resp = await client.get("/api/v1/admin/webhooks/events")
        assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_wrong_key_forbidden(self, client):
        resp = await client.get("/api/v1/admin/webhooks/events", headers={"X-Admin-Key": "nope"})
        assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_disabled_without_configured_key(self, client, billing_settings):
        with patch.object(billing_settings, "ADMIN_API_KEY", ""):
            resp = await client.get("/api/v1/admin/webhooks/events", headers=ADMIN)
        assert resp.status_code == 503


class TestWebhookEvents:
    @pytest.mark.asyncio
    async def test_defaults_to_events_needing_attention(self, client):
        await _deliver(client, "subscription.active", activation_data())
        await _deliver(client, "subscription.renewed", activation_data(user_id="user_b"))
        await _deliver(client, "payment.failed", {"subscription_id": "sub_ghost"})

        resp = await client.get("/api/v1/admin/webhooks/events", headers=ADMIN)
        assert resp.status_code == 200
        outcomes = sorted(e["outcome"] for e in resp.json()["events"])
        assert outcomes == ["conflict", "unresolved"]

    @pytest.mark.asyncio
    async def test_all_and_single_outcome(self, client):
        await _deliver(client, "subscription.active", activation_data())
        await _deliver(client, "payment.failed", {"subscription_id": "sub_ghost"})

        everything = await client.get("/api/v1/admin/webhooks/events?outcome=all", headers=ADMIN)
        assert everything.json()["count"] == 2

        applied = await client.get("/api/v1/admin/webhooks/events?outcome=applied", headers=ADMIN)
        events = applied.json()["events"]
        assert len(events) == 1
        assert events[0]["event_type"] == "subscription.active"
        assert events[0]["signature_status"] == "verified"
        assert events[0]["payload"]["subscription_id"] == "sub_1"

    @pytest.mark.asyncio
    async def test_limit_validated(self, client):
        resp = await client.get("/api/v1/admin/webhooks/events?limit=0", headers=ADMIN)
        assert resp.status_code == 422
        assert resp.json()["error"] == "validation_error"


class TestEntitlementLookup:
    @pytest.mark.asyncio
    async def test_entitlement_with_history(self, client):
        await _deliver(client, "subscription.active", activation_data(subscription_id="sub_1"))
        await _deliver(client, "subscription.active", activation_data(subscription_id="sub_2", product_id="prod_pro"))

        resp = await client.get("/api/v1/admin/entitlements/user_a", headers=ADMIN)
        assert resp.status_code == 200
        data = resp.json()
        assert data["entitlement"]["plan"] == "pro"
        assert data["entitlement"]["subscription_id"] == "sub_2"
        assert {s["subscription_id"] for s in data["subscriptions"]} == {"sub_1", "sub_2"}

    @pytest.mark.asyncio
    async def test_unknown_user_404(self, client):
        resp = await client.get("/api/v1/admin/entitlements/ghost", headers=ADMIN)
        assert resp.status_code == 404
        assert json.loads(resp.text)["message"] == "No entitlement for user"
