"""Brand, SKU and campaign resolution with a per-run cache.

Natural keys (brand name, seller SKU, external campaign id) are looked up
before anything is inserted. Placeholder brands ("Default", "Unknown") are
only ever used when no real brand is known, and never replace one.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, TYPE_CHECKING

from amazon_brain.db import Brand, BrandMode, Campaign, DEFAULT_BRAND, Sku, UNKNOWN_BRAND
from amazon_brain.store import Store

if TYPE_CHECKING:
    from amazon_brain.services.selling_partner import SellingPartnerService

logger = logging.getLogger(__name__)

PLACEHOLDER_BRANDS = frozenset({DEFAULT_BRAND, UNKNOWN_BRAND})


def truncate_title(title: str | None, max_length: int = 150) -> str:
    """Clip a product title to *max_length* characters, ending in '...' when cut."""
    if not title:
        return ""
    if len(title) <= max_length:
        return title
    return title[: max_length - 3] + "..."


@dataclass
class EntityCache:
    """Lookups shared by every dataset sync within one orchestrator run."""
    brand_ids: dict[str, str] = field(default_factory=dict)
    sku_brands: dict[str, str] = field(default_factory=dict)


class EntityResolver:
    """Get-or-create for brands and SKUs, and brand lookup for campaigns."""

    def __init__(self, store: Store, cache: EntityCache | None = None, title_max_length: int = 150) -> None:
        self._store = store
        self.cache = cache or EntityCache()
        self._title_max_length = title_max_length
        self._brand_names: dict[str, str] = {}

    # ── Brands ───────────────────────────────────────────────────────

    def resolve_brand(self, name: str) -> str:
        """Id of the brand called *name*, creating it in growth mode if needed."""
        cached = self.cache.brand_ids.get(name)
        if cached:
            return cached

        brand = self._store.get_by(Brand, name=name)
        if brand is None:
            brand = self._store.insert(Brand, name=name, mode=BrandMode.GROWTH.value)
            logger.info(f"Created brand: {name}")

        self.cache.brand_ids[name] = brand.id
        self._brand_names[brand.id] = name
        return brand.id

    def is_placeholder(self, brand_id: str | None) -> bool:
        """True for a missing brand or one of the "Default"/"Unknown" buckets."""
        if not brand_id:
            return True
        if brand_id not in self._brand_names:
            brand = self._store.get_by(Brand, id=brand_id)
            self._brand_names[brand_id] = brand.name if brand is not None else ""
        return self._brand_names[brand_id] in PLACEHOLDER_BRANDS

    # ── SKUs ─────────────────────────────────────────────────────────

    def resolve_sku(self, sku: str, asin: str = "", title: str = "", brand_id: str | None = None) -> str:
        """Id of the SKU row for *sku*, creating or updating it.

        An existing row moves to *brand_id* only when that brand is real; a
        placeholder never takes a SKU away from a real brand.
        """
        title = truncate_title(title, self._title_max_length)
        existing = self._store.get_by(Sku, sku=sku)

        if existing is None:
            row = self._store.insert(Sku, sku=sku, asin=asin or None, title=title or None, brand_id=brand_id)
            return row.id

        if brand_id and existing.brand_id != brand_id:
            if not self.is_placeholder(brand_id) or self.is_placeholder(existing.brand_id):
                values = {"brand_id": brand_id}
                if asin:
                    values["asin"] = asin
                if title:
                    values["title"] = title
                self._store.update_where(Sku, {"id": existing.id}, values)
        return existing.id

    def lookup_sku_brands(self, sp: "SellingPartnerService", skus: Iterable[str]) -> dict[str, str]:
        """Fill the SKU -> brand name cache for any SKU not looked up yet.

        Lookups run one at a time to stay inside the listings API rate limit.
        """
        pending = [s for s in dict.fromkeys(skus) if s and s not in self.cache.sku_brands]
        total = len(pending)
        for processed, sku in enumerate(pending, start=1):
            self.cache.sku_brands[sku] = sp.get_listing_brand(sku)
            if processed % 10 == 0:
                logger.info(f"  Processed {processed}/{total} SKUs for brand lookup...")
        return self.cache.sku_brands

    def brand_for_sku(self, sku: str) -> str:
        return self.cache.sku_brands.get(sku) or UNKNOWN_BRAND

    # ── Campaigns ────────────────────────────────────────────────────

    def resolve_campaign_brand(self, campaign_id: str, default_brand_id: str) -> str:
        """Brand the campaign is stored under, else *default_brand_id*."""
        campaign = self._store.get_by(Campaign, campaign_id=str(campaign_id))
        if campaign is not None and campaign.brand_id:
            return campaign.brand_id
        return default_brand_id
