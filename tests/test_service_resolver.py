"""Tests for services/resolver.py: get-or-create and placeholder brand handling."""
from unittest.mock import MagicMock

from amazon_brain.db import Brand, Campaign, Sku
from amazon_brain.services.resolver import EntityResolver, truncate_title


def test_truncate_title():
    assert truncate_title("short", 150) == "short"
    long_title = "x" * 200
    clipped = truncate_title(long_title, 150)
    assert len(clipped) == 150
    assert clipped.endswith("...")
    assert truncate_title(None) == ""


# ── Brands ───────────────────────────────────────────────────────────

def test_resolve_brand_creates_in_growth_mode(store):
    resolver = EntityResolver(store)
    brand_id = resolver.resolve_brand("Acme")

    brand = store.get_by(Brand, id=brand_id)
    assert brand.name == "Acme"
    assert brand.mode == "growth"


def test_resolve_brand_is_cached_and_stable(store):
    brand_id = EntityResolver(store).resolve_brand("Acme")
    # a fresh resolver finds the stored row instead of creating another
    assert EntityResolver(store).resolve_brand("Acme") == brand_id
    assert len(store.all_rows(Brand)) == 1


def test_is_placeholder(store):
    resolver = EntityResolver(store)
    assert resolver.is_placeholder(resolver.resolve_brand("Default"))
    assert resolver.is_placeholder(resolver.resolve_brand("Unknown"))
    assert not resolver.is_placeholder(resolver.resolve_brand("Acme"))
    assert resolver.is_placeholder(None)


# ── SKUs ─────────────────────────────────────────────────────────────

def test_resolve_sku_creates_with_clipped_title(store):
    resolver = EntityResolver(store, title_max_length=10)
    brand_id = resolver.resolve_brand("Acme")
    sku_id = resolver.resolve_sku("SKU-1", "B0ABCDEFGH", "A very long product title", brand_id)

    sku = store.get_by(Sku, id=sku_id)
    assert sku.title == "A very ..."
    assert sku.brand_id == brand_id


def test_placeholder_never_replaces_real_brand(store):
    resolver = EntityResolver(store)
    acme = resolver.resolve_brand("Acme")
    unknown = resolver.resolve_brand("Unknown")
    sku_id = resolver.resolve_sku("SKU-1", "B0ABCDEFGH", "Widget", acme)

    assert resolver.resolve_sku("SKU-1", "B0ABCDEFGH", "Widget", unknown) == sku_id
    assert store.get_by(Sku, id=sku_id).brand_id == acme


def test_real_brand_replaces_placeholder(store):
    resolver = EntityResolver(store)
    default = resolver.resolve_brand("Default")
    acme = resolver.resolve_brand("Acme")
    sku_id = resolver.resolve_sku("SKU-1", "", "", default)

    resolver.resolve_sku("SKU-1", "B0ABCDEFGH", "Widget", acme)
    sku = store.get_by(Sku, id=sku_id)
    assert sku.brand_id == acme
    assert sku.asin == "B0ABCDEFGH"


def test_real_brand_replaces_other_real_brand(store):
    resolver = EntityResolver(store)
    acme = resolver.resolve_brand("Acme")
    globex = resolver.resolve_brand("Globex")
    sku_id = resolver.resolve_sku("SKU-1", "", "", acme)

    resolver.resolve_sku("SKU-1", "", "", globex)
    assert store.get_by(Sku, id=sku_id).brand_id == globex


# ── SKU brand lookup ─────────────────────────────────────────────────

def test_lookup_sku_brands_once_per_sku(store):
    sp = MagicMock()
    sp.get_listing_brand.side_effect = lambda sku: {"SKU-1": "Acme"}.get(sku, "Unknown")
    resolver = EntityResolver(store)

    resolver.lookup_sku_brands(sp, ["SKU-1", "SKU-1", "SKU-2", ""])
    resolver.lookup_sku_brands(sp, ["SKU-1"])

    assert sp.get_listing_brand.call_count == 2
    assert resolver.brand_for_sku("SKU-1") == "Acme"
    assert resolver.brand_for_sku("SKU-2") == "Unknown"
    assert resolver.brand_for_sku("never-seen") == "Unknown"


# ── Campaigns ────────────────────────────────────────────────────────

def test_resolve_campaign_brand(store):
    resolver = EntityResolver(store)
    acme = resolver.resolve_brand("Acme")
    default = resolver.resolve_brand("Default")
    store.insert(Campaign, campaign_id="111", brand_id=acme, name="C1")

    assert resolver.resolve_campaign_brand("111", default) == acme
    assert resolver.resolve_campaign_brand("999", default) == default
