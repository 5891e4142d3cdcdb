"""Tests for services/alerts.py: stock/TACoS alerts, cleanup, strategic digest."""
from datetime import date, datetime, timedelta
from unittest.mock import MagicMock

import pytest

from amazon_brain.config import SyncTuning
from amazon_brain.db import Alert, Brand, BrandWeek, Sku, SkuWeek
from amazon_brain.services.alerts import AlertService

NOW = datetime(2024, 2, 7, 9, 0)
WEEK = date(2024, 2, 5)


@pytest.fixture
def notifier():
    n = MagicMock()
    n.send.return_value = True
    return n


@pytest.fixture
def service(store, notifier):
    return AlertService(store, notifier, SyncTuning(), recipients=["ops@example.com"], now=NOW)


def _brand(store, name="Acme", **kwargs):
    return store.insert(Brand, name=name, **kwargs)


# ── Stock alerts ─────────────────────────────────────────────────────

def test_stock_alert_below_brand_minimum(store, service):
    brand = _brand(store, min_stock_days=14)
    sku = store.insert(Sku, sku="SKU-1", brand_id=brand.id)
    store.insert(SkuWeek, sku_id=sku.id, week_start=WEEK, stock_level=10, stock_days=5.0)

    assert service.check_stock_alerts() == 1
    alert = store.all_rows(Alert)[0]
    assert alert.type == "stock"
    assert alert.level == "critical"
    assert alert.message == "SKU-1 has 5 days of stock remaining"


def test_stock_alert_not_duplicated(store, service):
    brand = _brand(store)
    sku = store.insert(Sku, sku="SKU-1", brand_id=brand.id)
    store.insert(SkuWeek, sku_id=sku.id, week_start=WEEK, stock_level=20, stock_days=10.0)

    assert service.check_stock_alerts() == 1
    assert service.check_stock_alerts() == 0
    assert store.all_rows(Alert)[0].level == "warning"


def test_sku_override_wins(store, service):
    brand = _brand(store, min_stock_days=14)
    sku = store.insert(Sku, sku="SKU-1", brand_id=brand.id, min_stock_override=7)
    store.insert(SkuWeek, sku_id=sku.id, week_start=WEEK, stock_level=20, stock_days=10.0)

    assert service.check_stock_alerts() == 0


def test_previous_week_stock_ignored(store, service):
    sku = store.insert(Sku, sku="SKU-1")
    store.insert(SkuWeek, sku_id=sku.id, week_start=WEEK - timedelta(days=7), stock_level=0, stock_days=0.0)
    assert service.check_stock_alerts() == 0


# ── TACoS alerts ─────────────────────────────────────────────────────

def test_tacos_alert_levels(store, service):
    warn = _brand(store, "Warn", tacos_target=15.0)
    crit = _brand(store, "Crit", tacos_target=10.0)
    ok = _brand(store, "Ok", tacos_target=20.0)
    store.insert(BrandWeek, brand_id=warn.id, week_start=WEEK, tacos=18.0)
    store.insert(BrandWeek, brand_id=crit.id, week_start=WEEK, tacos=16.0)
    store.insert(BrandWeek, brand_id=ok.id, week_start=WEEK, tacos=19.0)

    assert service.check_tacos_alerts() == 2
    levels = {a.entity_id: a.level for a in store.all_rows(Alert)}
    assert levels == {warn.id: "warning", crit.id: "critical"}


def test_tacos_alert_message(store, service):
    brand = _brand(store, tacos_target=15.0)
    store.insert(BrandWeek, brand_id=brand.id, week_start=WEEK, tacos=18.0)
    service.check_tacos_alerts()
    assert store.all_rows(Alert)[0].message == "Acme TACoS at 18.0% - exceeds 15% target by 3.0%"


# ── Cleanup ──────────────────────────────────────────────────────────

def test_cleanup_removes_old_resolved_only(store, service):
    common = {"type": "stock", "entity_type": "sku", "entity_id": "x", "message": "m"}
    store.insert(Alert, resolved_at=NOW - timedelta(days=40), **common)
    store.insert(Alert, resolved_at=NOW - timedelta(days=5), **common)
    store.insert(Alert, resolved_at=None, **common)

    assert service.cleanup_resolved_alerts() == 1
    assert len(store.all_rows(Alert)) == 2


# ── Strategic digest ─────────────────────────────────────────────────

def test_report_due_when_never_sent(service):
    assert service.report_due()


def test_report_sent_and_recorded(store, service, notifier):
    assert service.maybe_send_strategic_report() is True
    notifier.send.assert_called_once()
    subject, recipients, _ = notifier.send.call_args[0]
    assert subject == "Amazon Brain Strategic Report - 2024-02-07"
    assert recipients == ["ops@example.com"]
    assert store.account_settings().last_strategic_report == NOW


def test_report_not_due_yet(store, service, notifier):
    store.update_account_settings(last_strategic_report=NOW - timedelta(days=2))
    assert service.maybe_send_strategic_report() is False
    notifier.send.assert_not_called()


def test_report_recorded_even_when_send_skipped(store, service, notifier):
    notifier.send.return_value = False
    assert service.maybe_send_strategic_report() is False
    assert store.account_settings().last_strategic_report == NOW


def test_report_body(store, service):
    brand = _brand(store, tacos_target=10.0)
    store.insert(BrandWeek, brand_id=brand.id, week_start=WEEK, revenue_ex_vat=200.0, ad_spend=30.0, tacos=15.0)
    store.insert(BrandWeek, brand_id=brand.id, week_start=WEEK - timedelta(days=7), revenue_ex_vat=100.0, ad_spend=30.0)

    _, body = service.build_strategic_report()
    assert "Revenue: 200.00 (+100.0% vs last week)" in body
    assert "Ad Spend: 30.00 (+0.0% vs last week)" in body
    assert "Acme: TACoS at 15.0% (target: 10%)" in body


def test_report_body_no_actions(service):
    _, body = service.build_strategic_report()
    assert "No immediate actions needed." in body


# ── run ──────────────────────────────────────────────────────────────

def test_run_summary(service):
    result = service.run()
    assert result["success"] is True
    assert result["strategic_report"] is True
    assert result["stock_alerts"] == 0
    assert result["cleaned_alerts"] == 0
    assert result["timestamp"] == NOW.isoformat()
