"""Dataset syncs and the orchestrator that runs them in dependency order.

products -> orders -> ads -> targeting -> searchterms -> inventory.
Products fill the SKU brand cache that orders attribute revenue with; ads
store campaign -> brand links that targeting and search terms rely on; ad
metrics are applied to brand weeks only after orders wrote their revenue.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Iterable

from rich.console import Console

from amazon_brain.config import Config
from amazon_brain.db import DEFAULT_BRAND
from amazon_brain.models.records import (
    AdPerformanceRecord,
    OrderLineRecord,
    SearchTermRecord,
    SkuAdPerformanceRecord,
    TargetingRecord,
)
from amazon_brain.models.reports import (
    SD_TARGETING,
    SP_ADVERTISED_PRODUCT,
    SP_CAMPAIGNS,
    SP_SEARCH_TERM,
    SP_TARGETING,
    SPONSORED_DISPLAY,
    SPONSORED_PRODUCTS,
)
from amazon_brain.services.aggregation import WeeklyAggregator, week_start
from amazon_brain.services.reporting import ReportClient
from amazon_brain.services.resolver import EntityResolver
from amazon_brain.services.selling_partner import (
    INVENTORY_REPORT,
    LISTINGS_REPORT,
    SellingPartnerService,
)
from amazon_brain.services.writer import UpsertWriter
from amazon_brain.store import Store
from amazon_brain.utils.chunking import ads_window, date_chunks, fetch_chunked

logger = logging.getLogger(__name__)
console = Console(stderr=True)

AD_METRICS = ("impressions", "clicks", "spend", "sales", "orders")
UNKNOWN_CAMPAIGN = "unknown"


class Dataset(str, Enum):
    PRODUCTS = "products"
    ORDERS = "orders"
    ADS = "ads"
    TARGETING = "targeting"
    SEARCHTERMS = "searchterms"
    INVENTORY = "inventory"


DATASET_ORDER = [
    Dataset.PRODUCTS,
    Dataset.ORDERS,
    Dataset.ADS,
    Dataset.TARGETING,
    Dataset.SEARCHTERMS,
    Dataset.INVENTORY,
]


def resolve_datasets(selected: Iterable[Dataset | str], all_: bool = False) -> list[Dataset]:
    """Datasets to run, in run order.

    No selection or ``all_`` means every dataset except the legacy inventory
    sync, which only runs when asked for by name.
    """
    chosen = {Dataset(d) for d in selected}
    if all_ or not chosen:
        chosen |= {d for d in DATASET_ORDER if d is not Dataset.INVENTORY}
    if Dataset.INVENTORY in chosen:
        logger.warning("inventory is deprecated, use products instead")
    return [d for d in DATASET_ORDER if d in chosen]


class DatasetState(str, Enum):
    PENDING = "pending"
    FETCHING = "fetching"
    AGGREGATING = "aggregating"
    WRITING = "writing"
    DONE = "done"
    FAILED = "failed"


@dataclass
class DatasetResult:
    """Outcome of one dataset sync."""
    dataset: Dataset
    status: str = "success"
    rows: int = 0
    written: int = 0
    unmapped: int = 0
    message: str = ""
    state: DatasetState = DatasetState.PENDING
    seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "dataset": self.dataset.value,
            "status": self.status,
            "rows": self.rows,
            "written": self.written,
            "unmapped": self.unmapped,
            "seconds": round(self.seconds, 1),
            "message": self.message,
        }


@dataclass
class SyncContext:
    """Everything a dataset sync needs. API services are built on first use."""
    config: Config
    store: Store
    resolver: EntityResolver
    writer: UpsertWriter
    ads_factory: Callable[[], ReportClient]
    sp_factory: Callable[[], SellingPartnerService]
    days: int
    now: datetime | None = None
    _ads: ReportClient | None = field(default=None, repr=False)
    _sp: SellingPartnerService | None = field(default=None, repr=False)

    @property
    def ads(self) -> ReportClient:
        if self._ads is None:
            self._ads = self.ads_factory()
        return self._ads

    @property
    def sp(self) -> SellingPartnerService:
        if self._sp is None:
            self._sp = self.sp_factory()
        return self._sp

    @property
    def ads_days(self) -> int:
        return ads_window(self.days, self.config.tuning.ads_max_days)

    def current_time(self) -> datetime:
        return self.now or datetime.now(timezone.utc)

    def close(self) -> None:
        for service in (self._ads, self._sp):
            if service is not None:
                service.close()


# ══════════════════════════════════════════════════════════════════════
#  DATASET SYNCS
# ══════════════════════════════════════════════════════════════════════

class DatasetSync:
    """One dataset: fetch, aggregate, write. Subclasses implement ``sync``."""
    dataset: Dataset

    def __init__(self, ctx: SyncContext) -> None:
        self.ctx = ctx
        self._campaigns: dict[str, tuple[str, str | None]] = {}
        self._campaign_brands: dict[str, str | None] = {}

    def run(self) -> DatasetResult:
        result = DatasetResult(dataset=self.dataset)
        self.sync(result)
        result.state = DatasetState.DONE
        return result

    def sync(self, result: DatasetResult) -> None:
        raise NotImplementedError

    @staticmethod
    def _enter(result: DatasetResult, state: DatasetState) -> None:
        result.state = state
        logger.debug(f"{result.dataset.value}: {state.value}")

    def _require_profile(self, result: DatasetResult) -> bool:
        if self.ctx.ads.resolve_profile_id():
            return True
        result.status = "skipped"
        result.message = "No advertising profiles found"
        return False

    def _load_campaigns(self) -> None:
        mapping = self.ctx.store.campaign_brand_map()
        self._campaigns = mapping
        self._campaign_brands = {internal_id: brand_id for internal_id, brand_id in mapping.values()}

    def _campaign_key(self, external_id: str, result: DatasetResult) -> str:
        """Internal campaign id for an external one, or ``"unknown"`` (counted as unmapped)."""
        internal_id, _ = self._campaigns.get(external_id or "", (None, None))
        if internal_id is None:
            result.unmapped += 1
            return UNKNOWN_CAMPAIGN
        return internal_id

    def _bucket_campaign(self, key: str) -> tuple[str | None, str | None]:
        """(internal campaign id, brand id) for a bucket's campaign key."""
        if key == UNKNOWN_CAMPAIGN:
            return None, None
        return key, self._campaign_brands.get(key)


class ProductsSync(DatasetSync):
    """Active listings -> brands and SKUs, plus a stock snapshot for this week."""
    dataset = Dataset.PRODUCTS

    def sync(self, result: DatasetResult) -> None:
        ctx = self.ctx
        self._enter(result, DatasetState.FETCHING)
        listings = ctx.sp.get_active_listings(ctx.config.tuning.report(LISTINGS_REPORT))
        result.rows = len(listings)
        logger.info(f"Found {len(listings)} active listing(s)")
        if not listings:
            result.message = "No active listings found"
            return

        skus = [listing["sku"] for listing in listings if listing["sku"]]
        logger.info(f"Looking up brands for {len(skus)} SKU(s)...")
        ctx.resolver.lookup_sku_brands(ctx.sp, skus)
        brands = sorted({ctx.resolver.brand_for_sku(sku) for sku in skus})
        logger.info(f"Found {len(brands)} unique brand(s): {', '.join(brands)}")

        self._enter(result, DatasetState.WRITING)
        current_week = week_start(ctx.current_time())
        for listing in listings:
            if not listing["sku"]:
                continue
            brand_id = ctx.resolver.resolve_brand(ctx.resolver.brand_for_sku(listing["sku"]))
            sku_id = ctx.resolver.resolve_sku(listing["sku"], listing["asin"], listing["name"], brand_id)
            if ctx.writer.write_sku_stock(sku_id, current_week, listing["quantity"]):
                result.written += 1

        result.message = f"{result.written} SKU(s) across {len(brands)} brand(s)"


class OrdersSync(DatasetSync):
    """Order lines -> brand_week and sku_week revenue, units and orders."""
    dataset = Dataset.ORDERS

    def sync(self, result: DatasetResult) -> None:
        ctx = self.ctx
        sp = ctx.sp
        created_after = (ctx.current_time() - timedelta(days=ctx.days)).isoformat()

        self._enter(result, DatasetState.FETCHING)
        orders = sp.list_orders(created_after)
        logger.info(f"Found {len(orders)} orders total")

        order_items: list[tuple[dict[str, Any], list[dict[str, Any]]]] = []
        for processed, order in enumerate(orders, start=1):
            order_items.append((order, sp.get_order_items(order["AmazonOrderId"])))
            if processed % 100 == 0 or processed == len(orders):
                logger.info(f"  Processed order items: {processed}/{len(orders)}")

        skus = [item.get("SellerSKU") for _, items in order_items for item in items]
        ctx.resolver.lookup_sku_brands(sp, [s for s in skus if s])

        self._enter(result, DatasetState.AGGREGATING)
        brand_weeks = WeeklyAggregator(("revenue", "units", "orders"), count_unique_orders=True)
        sku_weeks = WeeklyAggregator(("revenue", "units"))
        sku_ids: dict[str, str] = {}

        for order, items in order_items:
            for item in items:
                line = OrderLineRecord.from_api(order, item)
                result.rows += 1
                brand_id = ctx.resolver.resolve_brand(ctx.resolver.brand_for_sku(line.sku))
                brand_weeks.add(line.normalize(brand_id))
                if not line.sku:
                    continue
                if line.sku not in sku_ids:
                    sku_ids[line.sku] = ctx.resolver.resolve_sku(line.sku, line.asin, line.title, brand_id)
                sku_weeks.add(line.normalize(sku_ids[line.sku]))

        self._enter(result, DatasetState.WRITING)
        logger.info(f"Processing {len(brand_weeks)} brand-week bucket(s)...")
        for bucket in brand_weeks.buckets().values():
            if ctx.writer.write_brand_revenue(bucket):
                result.written += 1
        for bucket in sku_weeks.buckets().values():
            if ctx.writer.write_sku_revenue(bucket):
                result.written += 1

        result.message = f"{len(orders)} orders, {len(brand_weeks)} brand-weeks, {len(sku_weeks)} SKU-weeks"


class AdsSync(DatasetSync):
    """Campaign lists, then campaign and advertised-product performance."""
    dataset = Dataset.ADS

    def sync(self, result: DatasetResult) -> None:
        ctx = self.ctx
        self._enter(result, DatasetState.FETCHING)
        if not self._require_profile(result):
            return

        sp_campaigns = ctx.ads.list_campaigns(SPONSORED_PRODUCTS)
        sd_campaigns = ctx.ads.list_campaigns(SPONSORED_DISPLAY)
        logger.info(f"Found {len(sp_campaigns)} SP and {len(sd_campaigns)} SD campaigns")
        self._store_campaigns(sp_campaigns + sd_campaigns, result)

        self._campaign_performance(result)
        self._sku_performance(result)
        result.message = (
            f"{len(sp_campaigns)} SP + {len(sd_campaigns)} SD campaigns, "
            f"{result.unmapped} unmapped record(s)"
        )

    def _store_campaigns(self, campaigns: list[dict[str, Any]], result: DatasetResult) -> None:
        ctx = self.ctx
        default_brand_id = ctx.resolver.resolve_brand(DEFAULT_BRAND)
        for campaign in campaigns:
            brand_id = ctx.resolver.resolve_campaign_brand(str(campaign["campaignId"]), default_brand_id)
            if ctx.writer.write_campaign(campaign, brand_id):
                result.written += 1

    def _campaign_performance(self, result: DatasetResult) -> None:
        ctx = self.ctx
        tuning = ctx.config.tuning.report(SP_CAMPAIGNS.report_type_id)
        rows = fetch_chunked(
            lambda r: ctx.ads.run(SP_CAMPAIGNS, r.start, r.end, tuning),
            ctx.ads_days, tuning.chunk_days, ctx.now, label="performance data",
        )
        result.rows += len(rows)
        logger.info(f"Found {len(rows)} campaign performance records")
        if not rows:
            return

        self._enter(result, DatasetState.AGGREGATING)
        campaigns = ctx.store.campaign_brand_map()
        brand_weeks = WeeklyAggregator(AD_METRICS)
        campaign_weeks = WeeklyAggregator(AD_METRICS)
        unmapped = 0
        for row in rows:
            record = AdPerformanceRecord.from_report(row)
            internal_id, brand_id = campaigns.get(record.campaign_id, (None, None))
            if internal_id:
                campaign_weeks.add(record.normalize(internal_id))
            if not brand_id:
                unmapped += 1
                if unmapped <= 3:
                    logger.info(f"  Unmapped campaign: {record.campaign_id}")
                continue
            brand_weeks.add(record.normalize(brand_id))
        logger.info(f"Total unmapped campaign records: {unmapped}")
        result.unmapped += unmapped

        self._enter(result, DatasetState.WRITING)
        for bucket in campaign_weeks.buckets().values():
            if ctx.writer.write_campaign_week(bucket):
                result.written += 1
        skipped = 0
        for bucket in brand_weeks.buckets().values():
            if ctx.writer.apply_brand_ad_metrics(bucket):
                result.written += 1
            else:
                skipped += 1
        if skipped:
            logger.info(f"{skipped} brand-week(s) have no sales yet; ad metrics left for a later sync")

    def _sku_performance(self, result: DatasetResult) -> None:
        ctx = self.ctx
        tuning = ctx.config.tuning.report(SP_ADVERTISED_PRODUCT.report_type_id)
        rows = fetch_chunked(
            lambda r: ctx.ads.run(SP_ADVERTISED_PRODUCT, r.start, r.end, tuning),
            ctx.ads_days, tuning.chunk_days, ctx.now, label="SKU ad data",
        )
        result.rows += len(rows)
        logger.info(f"Found {len(rows)} SKU ad performance records")
        if not rows:
            return

        asin_skus = ctx.store.asin_sku_map()
        sku_weeks = WeeklyAggregator(AD_METRICS)
        unmapped = 0
        for row in rows:
            record = SkuAdPerformanceRecord.from_report(row)
            sku_id = asin_skus.get(record.asin)
            if not sku_id:
                unmapped += 1
                continue
            sku_weeks.add(record.normalize(sku_id))
        if unmapped:
            logger.info(f"  {unmapped} records with unmapped ASINs (not in skus table)")
        result.unmapped += unmapped

        for bucket in sku_weeks.buckets().values():
            if ctx.writer.apply_sku_ad_metrics(bucket):
                result.written += 1


class TargetingSync(DatasetSync):
    """SP and SD product-targeting performance -> target_asin_week."""
    dataset = Dataset.TARGETING

    def sync(self, result: DatasetResult) -> None:
        ctx = self.ctx
        self._enter(result, DatasetState.FETCHING)
        if not self._require_profile(result):
            return

        sp_tuning = ctx.config.tuning.report(SP_TARGETING.report_type_id)
        sd_tuning = ctx.config.tuning.report(SD_TARGETING.report_type_id)
        sp_rows: list[dict[str, Any]] = []
        sd_rows: list[dict[str, Any]] = []
        for chunk in date_chunks(ctx.ads_days, sp_tuning.chunk_days, ctx.now):
            logger.info(f"  Requesting targeting data: {chunk}")
            sp_rows.extend(ctx.ads.run(SP_TARGETING, chunk.start, chunk.end, sp_tuning))
            sd_rows.extend(ctx.ads.run(SD_TARGETING, chunk.start, chunk.end, sd_tuning))
        result.rows = len(sp_rows) + len(sd_rows)
        logger.info(f"Found {len(sp_rows)} SP and {len(sd_rows)} SD targeting records")

        self._load_campaigns()
        default_brand_id = ctx.resolver.resolve_brand(DEFAULT_BRAND)
        sp_written = self._write(
            [TargetingRecord.from_sp_report(r) for r in sp_rows], "SP", default_brand_id, result
        )
        sd_written = self._write(
            [TargetingRecord.from_sd_report(r) for r in sd_rows], "SD", default_brand_id, result
        )
        result.written = sp_written + sd_written
        result.message = (
            f"{sp_written} SP + {sd_written} SD target-ASIN weeks, "
            f"{result.unmapped} unmapped record(s)"
        )

    def _write(
        self,
        records: list[TargetingRecord | None],
        ad_type: str,
        default_brand_id: str,
        result: DatasetResult,
    ) -> int:
        self._enter(result, DatasetState.AGGREGATING)
        weeks = WeeklyAggregator(AD_METRICS)
        for record in records:
            if record is None:
                continue
            weeks.add(record.normalize(record.target_asin, self._campaign_key(record.campaign_id, result)))

        self._enter(result, DatasetState.WRITING)
        written = 0
        for bucket in weeks.buckets().values():
            campaign_id, brand_id = self._bucket_campaign(bucket.keys[1])
            if self.ctx.writer.write_target_asin_week(
                bucket, campaign_id, brand_id or default_brand_id, ad_type
            ):
                written += 1
        return written


class SearchTermsSync(DatasetSync):
    """Customer search terms -> searchterm_week, attributed to the campaign's brand."""
    dataset = Dataset.SEARCHTERMS

    def sync(self, result: DatasetResult) -> None:
        ctx = self.ctx
        self._enter(result, DatasetState.FETCHING)
        if not self._require_profile(result):
            return

        tuning = ctx.config.tuning.report(SP_SEARCH_TERM.report_type_id)
        logger.info(f"Fetching search term data for the last {ctx.ads_days} days ({tuning.chunk_days}-day chunks)...")
        rows = fetch_chunked(
            lambda r: ctx.ads.run(SP_SEARCH_TERM, r.start, r.end, tuning),
            ctx.ads_days, tuning.chunk_days, ctx.now, label="search terms",
        )
        result.rows = len(rows)
        if not rows:
            result.message = "No search term data"
            return

        self._enter(result, DatasetState.AGGREGATING)
        self._load_campaigns()
        weeks = WeeklyAggregator(AD_METRICS)
        for row in rows:
            record = SearchTermRecord.from_report(row)
            weeks.add(record.normalize(record.query, self._campaign_key(record.campaign_id, result)))
        if result.unmapped:
            logger.info(f"  {result.unmapped} search term record(s) without a stored campaign")

        self._enter(result, DatasetState.WRITING)
        default_brand_id = ctx.resolver.resolve_brand(DEFAULT_BRAND)
        for bucket in weeks.buckets().values():
            campaign_id, brand_id = self._bucket_campaign(bucket.keys[1])
            if ctx.writer.write_search_term_week(bucket, campaign_id, brand_id or default_brand_id):
                result.written += 1
        result.message = f"{result.written} search-term weeks, {result.unmapped} unmapped record(s)"


class InventorySync(DatasetSync):
    """Legacy FBA inventory snapshot, superseded by the products sync."""
    dataset = Dataset.INVENTORY

    def sync(self, result: DatasetResult) -> None:
        ctx = self.ctx
        self._enter(result, DatasetState.FETCHING)
        rows = ctx.sp.get_inventory_rows(ctx.config.tuning.report(INVENTORY_REPORT))
        result.rows = len(rows)
        if not rows:
            result.message = "No inventory data returned"
            return

        self._enter(result, DatasetState.WRITING)
        current_week = week_start(ctx.current_time())
        default_brand_id = ctx.resolver.resolve_brand(DEFAULT_BRAND)
        for row in rows:
            if not row["sku"]:
                continue
            sku_id = ctx.resolver.resolve_sku(row["sku"], row["asin"], row["name"], default_brand_id)
            if ctx.writer.write_sku_stock(sku_id, current_week, row["quantity"]):
                result.written += 1
        result.message = f"Inventory for {result.written} SKU(s)"


SYNCS: dict[Dataset, type[DatasetSync]] = {
    Dataset.PRODUCTS: ProductsSync,
    Dataset.ORDERS: OrdersSync,
    Dataset.ADS: AdsSync,
    Dataset.TARGETING: TargetingSync,
    Dataset.SEARCHTERMS: SearchTermsSync,
    Dataset.INVENTORY: InventorySync,
}


# ══════════════════════════════════════════════════════════════════════
#  ORCHESTRATOR
# ══════════════════════════════════════════════════════════════════════

@dataclass
class SyncSummary:
    results: list[DatasetResult] = field(default_factory=list)
    days: int = 0
    finished_at: datetime | None = None

    @property
    def ok(self) -> bool:
        return all(r.status != "failed" for r in self.results)

    @property
    def rows(self) -> int:
        return sum(r.rows for r in self.results)

    @property
    def written(self) -> int:
        return sum(r.written for r in self.results)

    @property
    def unmapped(self) -> int:
        return sum(r.unmapped for r in self.results)

    def to_rows(self) -> list[dict[str, Any]]:
        return [r.to_dict() for r in self.results]


class SyncOrchestrator:
    """Runs the selected dataset syncs in order and records the sync time.

    A dataset that raises is recorded as failed and the next one still runs.
    """

    def __init__(self, ctx: SyncContext, syncs: dict[Dataset, type[DatasetSync]] | None = None) -> None:
        self.ctx = ctx
        self._syncs = syncs or SYNCS

    def run(self, datasets: Iterable[Dataset]) -> SyncSummary:
        summary = SyncSummary(days=self.ctx.days)
        console.print(f"[bold]Amazon Brain data sync[/bold] ({self.ctx.days} days back)")

        try:
            for dataset in datasets:
                summary.results.append(self._run_one(dataset))
        finally:
            self.ctx.close()

        self.ctx.store.touch_last_sync()
        summary.finished_at = datetime.now(timezone.utc)
        console.print(
            f"Sync complete: {summary.written} row(s) written, "
            f"{summary.unmapped} unmapped record(s)"
        )
        return summary

    def _run_one(self, dataset: Dataset) -> DatasetResult:
        console.print(f"\n[bold]=== Syncing {dataset.value} ===[/bold]")
        started = time.monotonic()
        try:
            result = self._syncs[dataset](self.ctx).run()
        except Exception as e:
            logger.exception(f"Error syncing {dataset.value}")
            result = DatasetResult(
                dataset=dataset,
                status="failed",
                message=str(e),
                state=DatasetState.FAILED,
            )
        result.seconds = time.monotonic() - started
        _print_outcome(result)
        return result


def _print_outcome(result: DatasetResult) -> None:
    if result.status == "failed":
        console.print(f"[red]FAILED[/red] {result.dataset.value}: {result.message}")
    elif result.status == "skipped":
        console.print(f"[yellow]SKIPPED[/yellow] {result.dataset.value}: {result.message}")
    else:
        console.print(
            f"[green]OK[/green] {result.dataset.value}: {result.rows} row(s) read, "
            f"{result.written} written ({result.seconds:.1f}s) {result.message}"
        )
