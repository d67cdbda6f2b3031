"""Tests for the plan catalog — credit lookups, period parsing, plan resolution."""
from __future__ import annotations

from datetime import datetime, timezone

import pytest

from src.services.pricing import (
    DEFAULT_CREDITS,
    PLAN_CATALOG,
    BillingPeriod,
    Plan,
    credits_for,
    default_billing_period,
    normalize_billing_period,
    parse_plan,
    period_end,
    resolve_plan,
)

PRODUCT_MAP = {"prod_m": "creator-monthly", "prod_y": "creator-yearly", "prod_bad": "platinum"}


class TestCredits:
    @pytest.mark.parametrize("plan,period,expected", [
        (Plan.CREATOR_MONTHLY, BillingPeriod.MONTHLY, 50),
        (Plan.CREATOR_YEARLY, BillingPeriod.ANNUAL, 600),
        (Plan.STARTER, BillingPeriod.MONTHLY, 30),
        (Plan.STARTER, BillingPeriod.ANNUAL, 360),
        (Plan.PRO, BillingPeriod.MONTHLY, 100),
        (Plan.PRO, BillingPeriod.ANNUAL, 1200),
        (Plan.FREE, BillingPeriod.MONTHLY, 0),
    ])
    def test_catalog_lookup(self, plan, period, expected):
        assert credits_for(plan, period) == expected

    def test_every_plan_has_catalog_entry(self):
        assert set(PLAN_CATALOG) == set(Plan)

    def test_missing_entry_falls_back_to_default(self, monkeypatch):
        monkeypatch.delitem(PLAN_CATALOG, Plan.PRO)
        assert credits_for(Plan.PRO, BillingPeriod.MONTHLY) == DEFAULT_CREDITS

    def test_default_periods(self):
        assert default_billing_period(Plan.CREATOR_YEARLY) == BillingPeriod.ANNUAL
        assert default_billing_period(Plan.CREATOR_MONTHLY) == BillingPeriod.MONTHLY


class TestParsing:
    @pytest.mark.parametrize("raw,expected", [
        ("monthly", BillingPeriod.MONTHLY),
        ("Month", BillingPeriod.MONTHLY),
        ("annual", BillingPeriod.ANNUAL),
        ("annually", BillingPeriod.ANNUAL),
        (" YEARLY ", BillingPeriod.ANNUAL),
        ("year", BillingPeriod.ANNUAL),
    ])
    def test_period_synonyms(self, raw, expected):
        assert normalize_billing_period(raw) == expected

    def test_unknown_period(self):
        assert normalize_billing_period("weekly") is None
        assert normalize_billing_period(None) is None
        assert normalize_billing_period("") is None

    def test_parse_plan(self):
        assert parse_plan("Creator-Monthly") == Plan.CREATOR_MONTHLY
        assert parse_plan("enterprise") is None
        assert parse_plan(None) is None


class TestResolvePlan:
    def test_product_map_wins(self):
        res = resolve_plan("prod_y", "creator-monthly", PRODUCT_MAP)
        assert res.plan == Plan.CREATOR_YEARLY
        assert res.source == "product"

    def test_metadata_fallback_logged(self, caplog):
        res = resolve_plan("prod_unknown", "pro", PRODUCT_MAP)
        assert res.plan == Plan.PRO
        assert res.source == "metadata"
        assert any("lower confidence" in r.getMessage() for r in caplog.records)

    def test_bad_map_entry_falls_through_to_metadata(self):
        res = resolve_plan("prod_bad", "starter", PRODUCT_MAP)
        assert res.plan == Plan.STARTER

    def test_unresolvable(self):
        res = resolve_plan("prod_unknown", None, PRODUCT_MAP)
        assert not res.resolved
        assert res.source == "none"

    def test_no_product_no_metadata(self):
        assert not resolve_plan(None, None, {}).resolved


class TestPeriodEnd:
    def test_monthly(self):
        start = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)
        assert period_end(start, BillingPeriod.MONTHLY) == datetime(2026, 4, 15, 12, 0, tzinfo=timezone.utc)

    def test_monthly_clamps_to_month_end(self):
        start = datetime(2026, 1, 31, tzinfo=timezone.utc)
        assert period_end(start, BillingPeriod.MONTHLY) == datetime(2026, 2, 28, tzinfo=timezone.utc)

    def test_december_rolls_year(self):
        start = datetime(2026, 12, 10, tzinfo=timezone.utc)
        assert period_end(start, BillingPeriod.MONTHLY) == datetime(2027, 1, 10, tzinfo=timezone.utc)

    def test_annual_leap_day(self):
        start = datetime(2028, 2, 29, tzinfo=timezone.utc)
        assert period_end(start, BillingPeriod.ANNUAL) == datetime(2029, 2, 28, tzinfo=timezone.utc)
