"""Raw record shapes, one per source report, and their normalisation.

Each record type knows how to read itself from an API row and how to turn
itself into an ``AggregatableRecord`` once the caller has resolved the
grouping keys (brand id, sku id, campaign id, ...).
"""

from __future__ import annotations

import re
import datetime as dt
from datetime import date, datetime
from typing import Any, Literal

from pydantic import BaseModel

from amazon_brain.services.aggregation import AggregatableRecord, week_start

_ASIN_EXPRESSION = re.compile(r'asin[=:]"?([A-Z0-9]+)"?', re.IGNORECASE)


def parse_target_asin(expression: str | None) -> str | None:
    """Extract the ASIN from a targeting expression like ``asin="B0123XYZ"``."""
    if not expression or "asin" not in expression.lower():
        return None
    match = _ASIN_EXPRESSION.search(expression)
    return match.group(1).upper() if match else None


def _num(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def _id(value: Any) -> str:
    """External ids arrive as numbers or strings; compare them as strings."""
    return "" if value is None else str(value)


class OrderLineRecord(BaseModel):
    """One item of one order from the Orders API."""
    kind: Literal["order_line"] = "order_line"
    order_id: str
    purchase_date: datetime | date
    sku: str = ""
    asin: str = ""
    title: str = ""
    quantity: int = 0
    item_price: float = 0.0

    @classmethod
    def from_api(cls, order: dict[str, Any], item: dict[str, Any]) -> "OrderLineRecord":
        return cls(
            order_id=order["AmazonOrderId"],
            purchase_date=order.get("PurchaseDate") or datetime.now(),
            sku=item.get("SellerSKU") or "",
            asin=item.get("ASIN") or "",
            title=item.get("Title") or "",
            quantity=int(item.get("QuantityOrdered") or 0),
            item_price=_num((item.get("ItemPrice") or {}).get("Amount")),
        )

    def normalize(self, *keys: str) -> AggregatableRecord:
        return AggregatableRecord(
            week_start=week_start(self.purchase_date),
            keys=keys,
            metrics={"revenue": self.item_price, "units": float(self.quantity)},
            order_id=self.order_id,
        )


class AdMetrics(BaseModel):
    """Additive metrics shared by every ad report row."""
    date: dt.date | None = None
    campaign_id: str = ""
    impressions: float = 0
    clicks: float = 0
    spend: float = 0
    sales: float = 0
    orders: float = 0

    def normalize(self, *keys: str) -> AggregatableRecord:
        return AggregatableRecord(
            week_start=week_start(self.date or date.today()),
            keys=keys,
            metrics={
                "impressions": self.impressions,
                "clicks": self.clicks,
                "spend": self.spend,
                "sales": self.sales,
                "orders": self.orders,
            },
        )


def _sp_metrics(row: dict[str, Any]) -> dict[str, Any]:
    return {
        "date": row.get("date") or None,
        "campaign_id": _id(row.get("campaignId")),
        "impressions": _num(row.get("impressions")),
        "clicks": _num(row.get("clicks")),
        "spend": _num(row.get("cost")),
        "sales": _num(row.get("sales14d")),
        "orders": _num(row.get("purchases14d")),
    }


class AdPerformanceRecord(AdMetrics):
    """Campaign-level daily performance (spCampaigns)."""
    kind: Literal["ad_performance"] = "ad_performance"

    @classmethod
    def from_report(cls, row: dict[str, Any]) -> "AdPerformanceRecord":
        return cls(**_sp_metrics(row))


class SkuAdPerformanceRecord(AdMetrics):
    """Advertised-product daily performance (spAdvertisedProduct)."""
    kind: Literal["sku_ad_performance"] = "sku_ad_performance"
    asin: str = ""
    sku: str = ""

    @classmethod
    def from_report(cls, row: dict[str, Any]) -> "SkuAdPerformanceRecord":
        return cls(
            asin=row.get("advertisedAsin") or "",
            sku=row.get("advertisedSku") or "",
            **_sp_metrics(row),
        )


class SearchTermRecord(AdMetrics):
    """Customer search term daily performance (spSearchTerm)."""
    kind: Literal["search_term"] = "search_term"
    query: str = ""

    @classmethod
    def from_report(cls, row: dict[str, Any]) -> "SearchTermRecord":
        return cls(query=row.get("searchTerm") or "", **_sp_metrics(row))


class TargetingRecord(AdMetrics):
    """Product (ASIN) targeting daily performance, SP or SD."""
    kind: Literal["targeting"] = "targeting"
    target_asin: str
    ad_type: Literal["SP", "SD"] = "SP"

    @classmethod
    def from_sp_report(cls, row: dict[str, Any]) -> "TargetingRecord | None":
        target_asin = parse_target_asin(row.get("targeting"))
        if not target_asin:
            return None
        return cls(target_asin=target_asin, ad_type="SP", **_sp_metrics(row))

    @classmethod
    def from_sd_report(cls, row: dict[str, Any]) -> "TargetingRecord | None":
        target_asin = parse_target_asin(row.get("targetingExpression"))
        if not target_asin:
            return None
        return cls(
            target_asin=target_asin,
            ad_type="SD",
            date=row.get("date") or None,
            campaign_id=_id(row.get("campaignId")),
            impressions=_num(row.get("impressions")),
            clicks=_num(row.get("clicks")),
            spend=_num(row.get("cost")),
            sales=_num(row.get("sales")),
            orders=_num(row.get("purchases")),
        )
