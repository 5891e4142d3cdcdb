"""Repair campaign -> brand links from ASINs embedded in campaign names."""

from __future__ import annotations

import logging
import re
from typing import Any

from amazon_brain.db import Brand, Campaign, Sku
from amazon_brain.store import Store

logger = logging.getLogger(__name__)

ASIN_PATTERN = re.compile(r"B0[A-Z0-9]{8,9}")


def asin_in_name(name: str | None) -> str | None:
    """First ASIN-looking token in a campaign name."""
    if not name:
        return None
    match = ASIN_PATTERN.search(name)
    return match.group(0) if match else None


def fix_campaign_brands(store: Store) -> list[dict[str, Any]]:
    """Move campaigns to the brand owning the ASIN in their name.

    Only campaigns whose ASIN maps to a known SKU are touched, so a campaign
    is never moved to a placeholder brand by this repair.
    """
    brand_names = {b.id: b.name for b in store.all_rows(Brand)}
    asin_brands = {
        s.asin: s.brand_id
        for s in store.all_rows(Sku)
        if s.asin and s.brand_id
    }
    logger.info(f"ASIN to brand mappings: {len(asin_brands)}")

    changes: list[dict[str, Any]] = []
    for campaign in store.all_rows(Campaign):
        asin = asin_in_name(campaign.name)
        if not asin:
            continue
        brand_id = asin_brands.get(asin)
        if not brand_id or brand_id == campaign.brand_id:
            continue

        store.update_where(Campaign, {"id": campaign.id}, {"brand_id": brand_id})
        changes.append({
            "campaign": (campaign.name or "")[:40],
            "asin": asin,
            "from": brand_names.get(campaign.brand_id, ""),
            "to": brand_names.get(brand_id, brand_id),
        })
        logger.info(f"Updated campaign '{(campaign.name or '')[:40]}' -> {brand_names.get(brand_id, brand_id)}")

    return changes
