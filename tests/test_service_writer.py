"""Tests for services/writer.py: VAT, TACoS recompute, per-bucket writes."""
from datetime import date
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from amazon_brain.db import BrandWeek, Campaign, CampaignWeek, SearchTermWeek, SkuWeek, TargetAsinWeek
from amazon_brain.services.aggregation import Bucket
from amazon_brain.services.resolver import EntityResolver
from amazon_brain.services.writer import UpsertWriter, estimate_stock_days

WEEK = date(2024, 2, 5)


def _bucket(*keys, **metrics):
    return Bucket(week_start=WEEK, keys=keys, metrics={k: float(v) for k, v in metrics.items()})


@pytest.fixture
def brand_id(store):
    return EntityResolver(store).resolve_brand("Acme")


@pytest.fixture
def writer(store):
    return UpsertWriter(store, vat_rate=5.0)


def test_estimate_stock_days():
    assert estimate_stock_days(40) == 20.0
    assert estimate_stock_days(0) == 0.0
    assert estimate_stock_days(-3) == 0.0
    assert estimate_stock_days(10_000) == 999


# ── Sales ────────────────────────────────────────────────────────────

def test_brand_revenue_strips_vat(store, writer, brand_id):
    assert writer.write_brand_revenue(_bucket(brand_id, revenue=150, units=3, orders=2))

    row = store.get_by(BrandWeek, brand_id=brand_id, week_start=WEEK)
    assert row.revenue == 150.0
    assert row.revenue_ex_vat == pytest.approx(150 / 1.05)
    assert row.units == 3
    assert row.orders == 2


def test_brand_revenue_rewrite_is_idempotent(store, writer, brand_id):
    writer.write_brand_revenue(_bucket(brand_id, revenue=150, units=3, orders=2))
    writer.write_brand_revenue(_bucket(brand_id, revenue=150, units=3, orders=2))
    assert len(store.all_rows(BrandWeek)) == 1


def test_sku_stock_keeps_sales(store, writer):
    sku_id = EntityResolver(store).resolve_sku("SKU-1")
    writer.write_sku_revenue(_bucket(sku_id, revenue=21, units=1))
    writer.write_sku_stock(sku_id, WEEK, 40)

    row = store.get_by(SkuWeek, sku_id=sku_id, week_start=WEEK)
    assert row.revenue == 21.0
    assert row.stock_level == 40
    assert row.stock_days == 20.0


# ── Ad metrics ───────────────────────────────────────────────────────

def test_brand_ad_metrics_recompute_tacos(store, writer, brand_id):
    writer.write_brand_revenue(_bucket(brand_id, revenue=100, units=1, orders=1))

    assert writer.apply_brand_ad_metrics(_bucket(brand_id, spend=15, sales=60, impressions=1000, clicks=20))
    row = store.get_by(BrandWeek, brand_id=brand_id, week_start=WEEK)
    assert row.ad_spend == 15.0
    assert row.tacos == 15.0
    assert row.acos == 25.0
    assert row.revenue == 100.0


def test_brand_ad_metrics_skip_without_sales_row(store, writer, brand_id):
    assert writer.apply_brand_ad_metrics(_bucket(brand_id, spend=15, sales=60)) is False
    assert store.all_rows(BrandWeek) == []


def test_brand_ad_metrics_zero_revenue_gives_zero_tacos(store, writer, brand_id):
    writer.write_brand_revenue(_bucket(brand_id, revenue=0, units=0, orders=0))
    writer.apply_brand_ad_metrics(_bucket(brand_id, spend=15, sales=0))
    row = store.get_by(BrandWeek, brand_id=brand_id, week_start=WEEK)
    assert row.tacos == 0.0
    assert row.acos == 0.0


def test_sku_ad_metrics_creates_row(store, writer):
    sku_id = EntityResolver(store).resolve_sku("SKU-1")
    assert writer.apply_sku_ad_metrics(_bucket(sku_id, spend=5, sales=20, impressions=1000, clicks=10, orders=2))

    row = store.get_by(SkuWeek, sku_id=sku_id, week_start=WEEK)
    assert row.revenue == 0
    assert row.ad_orders == 2
    assert (row.acos, row.ctr, row.cvr, row.cpc) == (25.0, 1.0, 20.0, 0.5)


def test_sku_ad_metrics_uses_existing_revenue(store, writer):
    sku_id = EntityResolver(store).resolve_sku("SKU-1")
    writer.write_sku_revenue(_bucket(sku_id, revenue=50, units=2))
    writer.apply_sku_ad_metrics(_bucket(sku_id, spend=5, sales=20, impressions=100, clicks=10, orders=1))

    row = store.get_by(SkuWeek, sku_id=sku_id, week_start=WEEK)
    assert row.tacos == 10.0
    assert row.revenue == 50.0


# ── Campaigns and ad tables ──────────────────────────────────────────

def test_write_campaign_budget_shapes(store, writer, brand_id):
    writer.write_campaign({"campaignId": 1, "name": "SP one", "state": "ENABLED",
                           "budget": {"budget": 25.0, "budgetType": "DAILY"}, "targetingType": "MANUAL"}, brand_id)
    writer.write_campaign({"campaignId": "2", "name": "SD one", "adType": "SD", "budget": 10,
                           "tactic": "T00020"}, brand_id)

    sp = store.get_by(Campaign, campaign_id="1")
    sd = store.get_by(Campaign, campaign_id="2")
    assert (sp.budget, sp.type, sp.targeting_type) == (25.0, "SP", "MANUAL")
    assert (sd.budget, sd.type, sd.targeting_type) == (10.0, "SD", "T00020")


def test_write_campaign_week(store, writer, brand_id):
    writer.write_campaign({"campaignId": "1", "name": "C"}, brand_id)
    internal_id = store.get_by(Campaign, campaign_id="1").id

    writer.write_campaign_week(_bucket(internal_id, impressions=100, clicks=4, spend=2, sales=8, orders=1))
    row = store.get_by(CampaignWeek, campaign_id=internal_id, week_start=WEEK)
    assert row.acos == 25.0
    assert row.orders == 1


def test_search_term_without_campaign(store, writer, brand_id):
    bucket = _bucket("red widget", "unknown", clicks=3, spend=1)
    writer.write_search_term_week(bucket, None, brand_id)
    writer.write_search_term_week(_bucket("red widget", "unknown", clicks=5, spend=2), None, brand_id)

    rows = store.all_rows(SearchTermWeek)
    assert len(rows) == 1
    assert rows[0].clicks == 5
    assert rows[0].campaign_id is None


def test_target_asin_week_keyed_by_ad_type(store, writer, brand_id):
    writer.write_target_asin_week(_bucket("B0ABCDEFGH", "c1", clicks=1), None, brand_id, "SP")
    writer.write_target_asin_week(_bucket("B0ABCDEFGH", "c1", clicks=2), None, brand_id, "SD")
    assert len(store.all_rows(TargetAsinWeek)) == 2


# ── Failure isolation ────────────────────────────────────────────────

def test_database_error_returns_false():
    store = MagicMock()
    store.upsert.side_effect = OperationalError("INSERT", {}, Exception("locked"))
    writer = UpsertWriter(store)

    assert writer.write_brand_revenue(_bucket("b1", revenue=1, units=1, orders=1)) is False
