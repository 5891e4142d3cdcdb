"""Weekly bucketing and derived-metric math.

``week_start`` is the single week-bucketing function for the whole project;
every sync, the alert cron and the sheets API go through it so that no two
callers can disagree about which week a record belongs to.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Iterable, Mapping, Sequence

from pydantic import BaseModel, Field


def _as_date(value: date | datetime | str) -> date:
    """Reduce a date, datetime or ISO string to a UTC calendar day."""
    if isinstance(value, str):
        value = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    return value


def week_start(value: date | datetime | str) -> date:
    """Monday of the week *value* falls in.

    Weekdays are numbered Sunday-first (0=Sunday .. 6=Saturday); Sunday goes
    back 6 days, any other day goes back weekday-1 days. Time of day is dropped.
    """
    day = _as_date(value)
    weekday = day.isoweekday() % 7
    shift = 6 if weekday == 0 else weekday - 1
    return day - timedelta(days=shift)


# ── Ratios ───────────────────────────────────────────────────────────

def safe_ratio(numerator: float, denominator: float, scale: float = 1.0) -> float:
    """numerator / denominator * scale, or 0 when the result would not be finite."""
    if not denominator:
        return 0.0
    result = numerator / denominator * scale
    return result if math.isfinite(result) else 0.0


def acos(spend: float, sales: float) -> float:
    return safe_ratio(spend, sales, 100.0)


def tacos(ad_spend: float, revenue: float) -> float:
    return safe_ratio(ad_spend, revenue, 100.0)


def ctr(clicks: float, impressions: float) -> float:
    return safe_ratio(clicks, impressions, 100.0)


def cvr(orders: float, clicks: float) -> float:
    return safe_ratio(orders, clicks, 100.0)


def cpc(spend: float, clicks: float) -> float:
    return safe_ratio(spend, clicks)


def remove_vat(amount: float, vat_rate: float) -> float:
    """Strip a flat VAT percentage from a gross amount."""
    return amount / (1 + vat_rate / 100)


def with_ratios(metrics: Mapping[str, float]) -> dict[str, float]:
    """ACoS, CTR, CVR and CPC for a bucket of summed ad metrics."""
    spend = metrics.get("spend", 0.0)
    clicks = metrics.get("clicks", 0.0)
    return {
        "acos": acos(spend, metrics.get("sales", 0.0)),
        "ctr": ctr(clicks, metrics.get("impressions", 0.0)),
        "cvr": cvr(metrics.get("orders", 0.0), clicks),
        "cpc": cpc(spend, clicks),
    }


# ── Aggregation ──────────────────────────────────────────────────────

class AggregatableRecord(BaseModel):
    """The one shape the aggregator accepts, whatever report a row came from."""
    week_start: date
    keys: tuple[str, ...]
    metrics: dict[str, float] = Field(default_factory=dict)
    order_id: str | None = None


@dataclass
class Bucket:
    """Summed metrics for one (week, group key) combination."""
    week_start: date
    keys: tuple[str, ...]
    metrics: dict[str, float] = field(default_factory=dict)
    order_ids: set[str] = field(default_factory=set)

    def get(self, name: str) -> float:
        return self.metrics.get(name, 0.0)

    @property
    def key(self) -> str:
        """Composite key such as ``2024-02-05|brand-id``."""
        return "|".join([self.week_start.isoformat(), *self.keys])


class WeeklyAggregator:
    """Sums records into (week_start, *keys) buckets.

    Records with an empty grouping key are dropped and counted in ``dropped``.
    With ``count_unique_orders`` the ``orders`` metric is the number of
    distinct order ids, so several line items of one order count once.
    """

    def __init__(self, metric_fields: Sequence[str], count_unique_orders: bool = False) -> None:
        self._metric_fields = tuple(metric_fields)
        self._count_unique_orders = count_unique_orders
        self._buckets: dict[tuple, Bucket] = {}
        self.dropped = 0

    def add(self, record: AggregatableRecord) -> bool:
        if not record.keys or any(not k for k in record.keys):
            self.dropped += 1
            return False

        bucket_key = (record.week_start, *record.keys)
        bucket = self._buckets.get(bucket_key)
        if bucket is None:
            bucket = Bucket(
                week_start=record.week_start,
                keys=record.keys,
                metrics={name: 0.0 for name in self._metric_fields},
            )
            self._buckets[bucket_key] = bucket

        for name in self._metric_fields:
            if name == "orders" and self._count_unique_orders:
                continue
            bucket.metrics[name] += float(record.metrics.get(name) or 0)

        if self._count_unique_orders and record.order_id:
            bucket.order_ids.add(record.order_id)
            bucket.metrics["orders"] = float(len(bucket.order_ids))
        return True

    def add_all(self, records: Iterable[AggregatableRecord]) -> "WeeklyAggregator":
        for record in records:
            self.add(record)
        return self

    def buckets(self) -> dict[tuple, Bucket]:
        return dict(self._buckets)

    def __len__(self) -> int:
        return len(self._buckets)
