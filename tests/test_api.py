"""Tests for api.py: sheets datasets, bearer auth, cron endpoint."""
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from amazon_brain.api import create_app
from amazon_brain.db import BrandWeek, Campaign, CampaignWeek, SearchTermWeek, SkuWeek
from amazon_brain.services.aggregation import week_start
from amazon_brain.services.resolver import EntityResolver

THIS_WEEK = week_start(datetime.now(timezone.utc))


@pytest.fixture
def client(fake_config, store):
    return TestClient(create_app(fake_config, store))


@pytest.fixture
def seeded(store):
    resolver = EntityResolver(store)
    acme = resolver.resolve_brand("Acme")
    sku_id = resolver.resolve_sku("SKU-1", "B0ABCDEFGH", "Widget", acme)
    campaign = store.insert(Campaign, campaign_id="111", brand_id=acme, name="Acme SP", type="SP")
    store.insert(BrandWeek, brand_id=acme, week_start=THIS_WEEK, revenue=100.0, tacos=12.0)
    store.insert(BrandWeek, brand_id=acme, week_start=THIS_WEEK - timedelta(weeks=20), revenue=5.0)
    store.insert(SkuWeek, sku_id=sku_id, week_start=THIS_WEEK, revenue=50.0, stock_level=4, stock_days=2.0)
    store.insert(CampaignWeek, campaign_id=campaign.id, week_start=THIS_WEEK,
                 impressions=1000, clicks=20, spend=10.0, sales=40.0, orders=2)
    store.insert(SearchTermWeek, term="red widget", campaign_id=campaign.id, brand_id=acme,
                 week_start=THIS_WEEK, clicks=10, orders=1)
    return acme


# ── Index ────────────────────────────────────────────────────────────

def test_index_lists_datasets(client):
    response = client.get("/api/sheets")
    assert response.status_code == 200
    names = [d["name"] for d in response.json()["datasets"]]
    assert "brand-week" in names
    assert "config" in names


# ── Datasets ─────────────────────────────────────────────────────────

def test_brand_week_respects_weeks(client, seeded):
    response = client.get("/api/sheets/brand-week", params={"weeks": 12})
    body = response.json()
    assert response.status_code == 200
    assert body["dataset"] == "brand-week"
    assert body["count"] == 1
    assert body["data"][0]["brand_name"] == "Acme"
    assert body["data"][0]["week_start"] == THIS_WEEK.isoformat()

    assert client.get("/api/sheets/brand-week", params={"weeks": 30}).json()["count"] == 2


def test_campaign_week_derives_ctr_cpc(client, seeded):
    row = client.get("/api/sheets/campaign-week").json()["data"][0]
    assert row["campaign_name"] == "Acme SP"
    assert row["ctr"] == 2.0
    assert row["cpc"] == 0.5


def test_searchterm_week_derives_cvr(client, seeded):
    row = client.get("/api/sheets/searchterm-week").json()["data"][0]
    assert row["term"] == "red widget"
    assert row["cvr"] == 10.0


def test_asin_week(client, seeded):
    row = client.get("/api/sheets/asin-week").json()["data"][0]
    assert (row["asin"], row["brand_name"], row["stock_days"]) == ("B0ABCDEFGH", "Acme", 2.0)


def test_brands_and_config(client, seeded):
    brands = client.get("/api/sheets/brands").json()
    assert brands["data"][0]["name"] == "Acme"
    config = client.get("/api/sheets/config").json()
    assert config["count"] == 1
    assert config["data"]["id"] == 1


def test_unknown_dataset(client):
    response = client.get("/api/sheets/nope")
    assert response.status_code == 400
    assert response.json() == {"error": "Unknown dataset: nope"}


def test_dataset_error_is_500(client):
    with patch("amazon_brain.api.DATASETS", {"brands": (lambda s, w: 1 / 0, "")}):
        response = client.get("/api/sheets/brands")
    assert response.status_code == 500
    assert "division by zero" in response.json()["error"]


# ── Auth ─────────────────────────────────────────────────────────────

def test_sheets_key_required_when_set(fake_config, store):
    fake_config.settings.sheets_api_key = "secret"
    client = TestClient(create_app(fake_config, store))

    assert client.get("/api/sheets/brands").status_code == 401
    assert client.get("/api/sheets/brands", headers={"Authorization": "Bearer wrong"}).json() == {
        "error": "Unauthorized"
    }
    assert client.get("/api/sheets/brands", headers={"Authorization": "Bearer secret"}).status_code == 200


def test_cron_secret(fake_config, store):
    fake_config.settings.cron_secret = "cron"
    client = TestClient(create_app(fake_config, store))

    assert client.get("/api/cron").status_code == 401
    response = client.get("/api/cron", headers={"Authorization": "Bearer cron"})
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    # no RESEND_API_KEY configured, so the digest is not sent
    assert body["strategic_report"] is False
