"""Writes weekly buckets into the fact tables.

Every method writes a single (week, key) row and returns whether it was
written. A database error on one row is logged and reported as ``False``;
the caller carries on with the next bucket.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Callable

from sqlalchemy.exc import SQLAlchemyError

from amazon_brain.db import BrandWeek, Campaign, CampaignWeek, SearchTermWeek, SkuWeek, TargetAsinWeek
from amazon_brain.services.aggregation import Bucket, acos, remove_vat, tacos, with_ratios
from amazon_brain.store import Store

logger = logging.getLogger(__name__)

MAX_STOCK_DAYS = 999


def estimate_stock_days(quantity: int) -> float:
    """Rough days of cover, assuming two units sell per day."""
    if quantity <= 0:
        return 0.0
    return min(quantity / 2, MAX_STOCK_DAYS)


def _budget(value: Any) -> float:
    """SP lists nest the amount under budget.budget; SD returns a bare number."""
    if isinstance(value, dict):
        value = value.get("budget")
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def _ad_values(bucket: Bucket) -> dict[str, float | int]:
    return {
        "impressions": int(bucket.get("impressions")),
        "clicks": int(bucket.get("clicks")),
        "spend": bucket.get("spend"),
        "sales": bucket.get("sales"),
        "orders": int(bucket.get("orders")),
        "acos": acos(bucket.get("spend"), bucket.get("sales")),
    }


class UpsertWriter:
    """Idempotent per-bucket writes. VAT is stripped here and nowhere else."""

    def __init__(self, store: Store, vat_rate: float = 5.0) -> None:
        self._store = store
        self._vat_rate = vat_rate

    def _write(self, table: str, key: str, action: Callable[[], bool | None]) -> bool:
        try:
            result = action()
        except SQLAlchemyError as e:
            logger.error(f"Error writing {table} {key}: {e}")
            return False
        return result is not False

    # ── Sales ────────────────────────────────────────────────────────

    def write_brand_revenue(self, bucket: Bucket) -> bool:
        """Gross revenue, revenue ex-VAT, units and distinct orders for one brand-week."""
        (brand_id,) = bucket.keys
        revenue = bucket.get("revenue")
        values = {
            "brand_id": brand_id,
            "week_start": bucket.week_start,
            "revenue": revenue,
            "revenue_ex_vat": remove_vat(revenue, self._vat_rate),
            "units": int(bucket.get("units")),
            "orders": int(bucket.get("orders")),
        }
        return self._write(
            "brand_week", bucket.key,
            lambda: self._store.upsert(BrandWeek, ("brand_id", "week_start"), values),
        )

    def write_sku_revenue(self, bucket: Bucket) -> bool:
        (sku_id,) = bucket.keys
        revenue = bucket.get("revenue")
        values = {
            "sku_id": sku_id,
            "week_start": bucket.week_start,
            "revenue": revenue,
            "revenue_ex_vat": remove_vat(revenue, self._vat_rate),
            "units": int(bucket.get("units")),
        }
        return self._write(
            "sku_week", bucket.key,
            lambda: self._store.upsert(SkuWeek, ("sku_id", "week_start"), values),
        )

    def write_sku_stock(self, sku_id: str, week_start: date, quantity: int) -> bool:
        """Stock snapshot for the given week; sales columns are left alone."""
        values = {
            "sku_id": sku_id,
            "week_start": week_start,
            "stock_level": quantity,
            "stock_days": estimate_stock_days(quantity),
        }
        return self._write(
            "sku_week", f"{week_start.isoformat()}|{sku_id}",
            lambda: self._store.upsert(SkuWeek, ("sku_id", "week_start"), values),
        )

    # ── Ad metrics on top of sales ───────────────────────────────────

    def apply_brand_ad_metrics(self, bucket: Bucket) -> bool:
        """Add ad spend/sales to an existing brand-week and recompute TACoS and ACoS.

        Returns False without writing when the brand-week has no revenue row:
        TACoS is only meaningful once sales for that week are in.
        """
        (brand_id,) = bucket.keys

        def action() -> bool:
            existing = self._store.get_by(BrandWeek, brand_id=brand_id, week_start=bucket.week_start)
            if existing is None:
                logger.info(f"  No brand_week row for {bucket.key}, skipping ad metrics")
                return False

            spend = bucket.get("spend")
            sales = bucket.get("sales")
            self._store.update_where(
                BrandWeek,
                {"brand_id": brand_id, "week_start": bucket.week_start},
                {
                    "ad_spend": spend,
                    "ad_sales": sales,
                    "impressions": int(bucket.get("impressions")),
                    "clicks": int(bucket.get("clicks")),
                    "tacos": tacos(spend, existing.revenue or 0),
                    "acos": acos(spend, sales),
                },
            )
            return True

        return self._write("brand_week", bucket.key, action)

    def apply_sku_ad_metrics(self, bucket: Bucket) -> bool:
        """Ad metrics for one SKU-week; creates the row (zero revenue) if absent."""
        (sku_id,) = bucket.keys

        def action() -> None:
            existing = self._store.get_by(SkuWeek, sku_id=sku_id, week_start=bucket.week_start)
            revenue = existing.revenue if existing is not None else 0
            spend = bucket.get("spend")
            ratios = with_ratios(bucket.metrics)
            values = {
                "ad_spend": spend,
                "ad_sales": bucket.get("sales"),
                "impressions": int(bucket.get("impressions")),
                "clicks": int(bucket.get("clicks")),
                "ad_orders": int(bucket.get("orders")),
                "tacos": tacos(spend, revenue or 0),
                "acos": ratios["acos"],
                "ctr": ratios["ctr"],
                "cpc": ratios["cpc"],
                "cvr": ratios["cvr"],
            }
            if existing is not None:
                self._store.update_where(SkuWeek, {"sku_id": sku_id, "week_start": bucket.week_start}, values)
            else:
                self._store.insert(SkuWeek, sku_id=sku_id, week_start=bucket.week_start, **values)

        return self._write("sku_week", bucket.key, action)

    # ── Ad-only tables ───────────────────────────────────────────────

    def write_campaign(self, campaign: dict[str, Any], brand_id: str) -> bool:
        """Upsert one campaign from the SP/SD list endpoints under *brand_id*."""
        values = {
            "campaign_id": str(campaign["campaignId"]),
            "brand_id": brand_id,
            "name": campaign.get("name"),
            "type": campaign.get("adType", "SP"),
            "state": campaign.get("state"),
            "budget": _budget(campaign.get("budget")),
            "targeting_type": campaign.get("targetingType") or campaign.get("tactic"),
        }
        return self._write(
            "campaigns", values["campaign_id"],
            lambda: self._store.upsert(Campaign, ("campaign_id",), values),
        )

    def write_campaign_week(self, bucket: Bucket) -> bool:
        """Campaign-week metrics; the bucket key is the internal campaign id."""
        (campaign_id,) = bucket.keys
        values = {"campaign_id": campaign_id, "week_start": bucket.week_start, **_ad_values(bucket)}
        return self._write(
            "campaign_week", bucket.key,
            lambda: self._store.upsert(CampaignWeek, ("campaign_id", "week_start"), values),
        )

    def write_search_term_week(self, bucket: Bucket, campaign_id: str | None, brand_id: str) -> bool:
        """Search-term-week metrics. *campaign_id* is internal, None when not stored."""
        term = bucket.keys[0]
        values = {
            "term": term,
            "campaign_id": campaign_id,
            "brand_id": brand_id,
            "week_start": bucket.week_start,
            **_ad_values(bucket),
        }
        return self._write(
            "searchterm_week", bucket.key,
            lambda: self._store.upsert(SearchTermWeek, ("term", "campaign_id", "week_start"), values),
        )

    def write_target_asin_week(
        self,
        bucket: Bucket,
        campaign_id: str | None,
        brand_id: str,
        ad_type: str,
    ) -> bool:
        target_asin = bucket.keys[0]
        values = {
            "target_asin": target_asin,
            "campaign_id": campaign_id,
            "ad_type": ad_type,
            "brand_id": brand_id,
            "week_start": bucket.week_start,
            **_ad_values(bucket),
        }
        return self._write(
            "target_asin_week", bucket.key,
            lambda: self._store.upsert(
                TargetAsinWeek, ("target_asin", "campaign_id", "ad_type", "week_start"), values
            ),
        )
