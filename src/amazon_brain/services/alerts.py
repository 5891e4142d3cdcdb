"""Alert cron: stock and TACoS alerts, alert cleanup and the strategic digest."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from amazon_brain.config import SyncTuning
from amazon_brain.db import Alert, AlertLevel, AlertType, Brand, BrandWeek, Sku, SkuWeek
from amazon_brain.services.aggregation import safe_ratio, week_start
from amazon_brain.services.notifier import EmailNotifier
from amazon_brain.store import Store

logger = logging.getLogger(__name__)

DEFAULT_TACOS_TARGET = 15.0
CRITICAL_STOCK_DAYS = 7
CRITICAL_TACOS_FACTOR = 1.5
DIGEST_TACOS_FACTOR = 1.2


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _signed_pct(value: float) -> str:
    return f"{'+' if value >= 0 else ''}{value:.1f}%"


class AlertService:
    """Everything the periodic cron does, against one store."""

    def __init__(
        self,
        store: Store,
        notifier: EmailNotifier,
        tuning: SyncTuning | None = None,
        recipients: list[str] | None = None,
        now: datetime | None = None,
    ) -> None:
        self._store = store
        self._notifier = notifier
        self._tuning = tuning or SyncTuning()
        self._recipients = recipients or []
        self._now = now

    def now(self) -> datetime:
        return self._now or _utcnow()

    def run(self) -> dict[str, Any]:
        """Digest if due, then stock alerts, TACoS alerts and cleanup."""
        report_sent = self.maybe_send_strategic_report()
        stock = self.check_stock_alerts()
        tacos = self.check_tacos_alerts()
        cleaned = self.cleanup_resolved_alerts()
        return {
            "success": True,
            "timestamp": self.now().isoformat(),
            "strategic_report": report_sent,
            "stock_alerts": stock,
            "tacos_alerts": tacos,
            "cleaned_alerts": cleaned,
        }

    # ── Alerts ───────────────────────────────────────────────────────

    def _has_open_alert(self, alert_type: AlertType, entity_type: str, entity_id: str) -> bool:
        existing = self._store.get_by(
            Alert,
            type=alert_type.value,
            entity_type=entity_type,
            entity_id=entity_id,
            resolved_at=None,
        )
        return existing is not None

    def _stock_threshold(self, sku: Sku | None, brand: Brand | None) -> float:
        if sku is not None and sku.min_stock_override:
            return sku.min_stock_override
        if brand is not None and brand.min_stock_days:
            return brand.min_stock_days
        return self._tuning.stock_alert_days

    def check_stock_alerts(self) -> int:
        """One open stock alert per SKU whose days of cover are below its threshold."""
        current_week = week_start(self.now())
        skus = {s.id: s for s in self._store.all_rows(Sku)}
        brands = {b.id: b for b in self._store.all_rows(Brand)}
        rows = self._store.all_rows(
            SkuWeek, SkuWeek.week_start == current_week, SkuWeek.stock_days.is_not(None)
        )

        created = 0
        for row in rows:
            sku = skus.get(row.sku_id)
            brand = brands.get(sku.brand_id) if sku is not None else None
            if row.stock_days >= self._stock_threshold(sku, brand):
                continue
            if self._has_open_alert(AlertType.STOCK, "sku", row.sku_id):
                continue

            name = sku.sku if sku is not None else row.sku_id
            self._store.insert(
                Alert,
                type=AlertType.STOCK.value,
                entity_type="sku",
                entity_id=row.sku_id,
                message=f"{name} has {round(row.stock_days)} days of stock remaining",
                level=(AlertLevel.CRITICAL if row.stock_days < CRITICAL_STOCK_DAYS else AlertLevel.WARNING).value,
                created_at=self.now(),
            )
            created += 1

        logger.info(f"Created {created} stock alert(s)")
        return created

    def check_tacos_alerts(self) -> int:
        """One open TACoS alert per brand running above its target this week."""
        current_week = week_start(self.now())
        brands = {b.id: b for b in self._store.all_rows(Brand)}
        rows = self._store.all_rows(BrandWeek, BrandWeek.week_start == current_week)

        created = 0
        for row in rows:
            brand = brands.get(row.brand_id)
            target = (brand.tacos_target if brand is not None else None) or DEFAULT_TACOS_TARGET
            tacos = row.tacos or 0
            if tacos <= target:
                continue
            if self._has_open_alert(AlertType.TACOS, "brand", row.brand_id):
                continue

            name = brand.name if brand is not None else row.brand_id
            self._store.insert(
                Alert,
                type=AlertType.TACOS.value,
                entity_type="brand",
                entity_id=row.brand_id,
                message=(
                    f"{name} TACoS at {tacos:.1f}% - exceeds {target:g}% target "
                    f"by {tacos - target:.1f}%"
                ),
                level=(AlertLevel.CRITICAL if tacos > target * CRITICAL_TACOS_FACTOR else AlertLevel.WARNING).value,
                created_at=self.now(),
            )
            created += 1

        logger.info(f"Created {created} TACoS alert(s)")
        return created

    def cleanup_resolved_alerts(self, retention_days: int | None = None) -> int:
        """Delete alerts resolved more than *retention_days* ago."""
        retention_days = retention_days or self._tuning.retention_days
        cutoff = self.now() - timedelta(days=retention_days)
        deleted = self._store.delete_where(
            Alert, Alert.resolved_at.is_not(None), Alert.resolved_at < cutoff
        )
        logger.info(f"Removed {deleted} resolved alert(s) older than {retention_days} days")
        return deleted

    # ── Strategic digest ─────────────────────────────────────────────

    def report_due(self) -> bool:
        last = self._store.account_settings().last_strategic_report
        if last is None:
            return True
        return (self.now() - last).days >= self._tuning.strategic_report_every_days

    def maybe_send_strategic_report(self) -> bool:
        """Send the digest when the last one is old enough; returns whether it was sent."""
        if not self.report_due():
            return False

        subject, body = self.build_strategic_report()
        sent = self._notifier.send(subject, self._recipients, body)
        self._store.update_account_settings(last_strategic_report=self.now())
        return sent

    def build_strategic_report(self) -> tuple[str, str]:
        now = self.now()
        current_week = week_start(now)
        previous_week = week_start(now - timedelta(days=7))
        brands = {b.id: b for b in self._store.all_rows(Brand)}
        current = self._store.all_rows(BrandWeek, BrandWeek.week_start == current_week)
        previous = self._store.all_rows(BrandWeek, BrandWeek.week_start == previous_week)
        low_stock = self._store.all_rows(
            SkuWeek,
            SkuWeek.week_start == current_week,
            SkuWeek.stock_days < self._tuning.stock_alert_days,
        )

        revenue = sum(r.revenue_ex_vat or 0 for r in current)
        prev_revenue = sum(r.revenue_ex_vat or 0 for r in previous)
        ad_spend = sum(r.ad_spend or 0 for r in current)
        prev_ad_spend = sum(r.ad_spend or 0 for r in previous)

        lines = [
            "## What Happened This Week",
            "",
            f"- Revenue: {revenue:,.2f} ({_signed_pct(safe_ratio(revenue - prev_revenue, prev_revenue, 100.0))} vs last week)",
            f"- Ad Spend: {ad_spend:,.2f} ({_signed_pct(safe_ratio(ad_spend - prev_ad_spend, prev_ad_spend, 100.0))} vs last week)",
            "",
            "## Suggestions",
            "",
        ]

        suggestions = []
        for row in current:
            brand = brands.get(row.brand_id)
            target = (brand.tacos_target if brand is not None else None) or DEFAULT_TACOS_TARGET
            tacos = row.tacos or 0
            if tacos > target * DIGEST_TACOS_FACTOR:
                name = brand.name if brand is not None else row.brand_id
                suggestions.append(
                    f"- {name}: TACoS at {tacos:.1f}% (target: {target:g}%). "
                    "Consider reducing ad spend or switching to Profit mode."
                )
        if low_stock:
            suggestions.append(f"- Reorder Alert: {len(low_stock)} SKU(s) need reordering soon.")
        lines.extend(suggestions or ["No immediate actions needed."])
        lines.extend(["", "---", "Amazon Brain - Seller Analytics"])

        subject = f"Amazon Brain Strategic Report - {now.date().isoformat()}"
        return subject, "\n".join(lines)
