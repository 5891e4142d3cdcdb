"""
Read-only HTTP API over the weekly tables, for spreadsheet consumers,
plus the cron endpoint that runs the alert job.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from amazon_brain.config import Config, get_config
from amazon_brain.db import (
    Brand, BrandWeek, Campaign, CampaignWeek, SearchTermWeek, Sku, SkuWeek,
    TargetAsinWeek, init_db, make_engine, make_session_factory,
)
from amazon_brain.services.aggregation import cpc, ctr, cvr, week_start
from amazon_brain.services.alerts import AlertService
from amazon_brain.services.notifier import EmailNotifier
from amazon_brain.store import Store

logger = logging.getLogger(__name__)

API_VERSION = "0.1.0"
DEFAULT_WEEKS = 12


# ══════════════════════════════════════════════════════════════════════
#  DATASETS
# ══════════════════════════════════════════════════════════════════════

def _since(weeks: int) -> Any:
    """Monday of the oldest week included in a ``weeks``-long window."""
    return week_start(datetime.now(timezone.utc)) - timedelta(weeks=max(weeks, 1) - 1)


def _names(store: Store, model: type) -> dict[str, Any]:
    return {row.id: row for row in store.all_rows(model)}


def brand_week(store: Store, weeks: int) -> list[dict[str, Any]]:
    brands = _names(store, Brand)
    rows = store.all_rows(BrandWeek, BrandWeek.week_start >= _since(weeks), order_by=[BrandWeek.week_start.desc()])
    data = []
    for row in rows:
        brand = brands.get(row.brand_id)
        if brand is None:
            continue
        data.append({
            "week_start": row.week_start,
            "brand_name": brand.name,
            "mode": brand.mode,
            "tacos_target": brand.tacos_target,
            "acos_target": brand.acos_target,
            "revenue": row.revenue,
            "revenue_ex_vat": row.revenue_ex_vat,
            "units": row.units,
            "orders": row.orders,
            "ad_spend": row.ad_spend,
            "ad_sales": row.ad_sales,
            "tacos": row.tacos,
            "acos": row.acos,
            "impressions": row.impressions,
            "clicks": row.clicks,
        })
    return data


def asin_week(store: Store, weeks: int) -> list[dict[str, Any]]:
    brands = _names(store, Brand)
    skus = _names(store, Sku)
    rows = store.all_rows(SkuWeek, SkuWeek.week_start >= _since(weeks), order_by=[SkuWeek.week_start.desc()])
    data = []
    for row in rows:
        sku = skus.get(row.sku_id)
        if sku is None:
            continue
        brand = brands.get(sku.brand_id)
        data.append({
            "week_start": row.week_start,
            "asin": sku.asin,
            "sku": sku.sku,
            "title": sku.title,
            "brand_name": brand.name if brand is not None else "",
            "revenue": row.revenue,
            "revenue_ex_vat": row.revenue_ex_vat,
            "units": row.units,
            "ad_spend": row.ad_spend,
            "ad_sales": row.ad_sales,
            "tacos": row.tacos,
            "acos": row.acos,
            "stock_level": row.stock_level,
            "stock_days": row.stock_days,
        })
    return data


def campaign_week(store: Store, weeks: int) -> list[dict[str, Any]]:
    brands = _names(store, Brand)
    campaigns = _names(store, Campaign)
    rows = store.all_rows(
        CampaignWeek, CampaignWeek.week_start >= _since(weeks), order_by=[CampaignWeek.week_start.desc()]
    )
    data = []
    for row in rows:
        campaign = campaigns.get(row.campaign_id)
        if campaign is None:
            continue
        brand = brands.get(campaign.brand_id)
        data.append({
            "week_start": row.week_start,
            "campaign_id": campaign.campaign_id,
            "campaign_name": campaign.name,
            "type": campaign.type,
            "state": campaign.state,
            "brand_name": brand.name if brand is not None else "",
            "impressions": row.impressions,
            "clicks": row.clicks,
            "spend": row.spend,
            "sales": row.sales,
            "orders": row.orders,
            "acos": row.acos,
            "ctr": round(ctr(row.clicks, row.impressions), 2),
            "cpc": round(cpc(row.spend, row.clicks), 2),
        })
    return data


def _ad_rows(store: Store, model: type, weeks: int, extra: Callable[[Any], dict[str, Any]]) -> list[dict[str, Any]]:
    brands = _names(store, Brand)
    campaigns = _names(store, Campaign)
    rows = store.all_rows(model, model.week_start >= _since(weeks), order_by=[model.week_start.desc()])
    data = []
    for row in rows:
        brand = brands.get(row.brand_id)
        campaign = campaigns.get(row.campaign_id)
        data.append({
            "week_start": row.week_start,
            **extra(row),
            "brand_name": brand.name if brand is not None else "",
            "campaign_name": campaign.name if campaign is not None else "",
            "impressions": row.impressions,
            "clicks": row.clicks,
            "orders": row.orders,
            "spend": row.spend,
            "sales": row.sales,
            "acos": row.acos,
        })
    return data


def searchterm_week(store: Store, weeks: int) -> list[dict[str, Any]]:
    data = _ad_rows(store, SearchTermWeek, weeks, lambda row: {"term": row.term})
    for item in data:
        item["cvr"] = round(cvr(item["orders"], item["clicks"]), 2)
    return data


def target_asin_week(store: Store, weeks: int) -> list[dict[str, Any]]:
    return _ad_rows(
        store, TargetAsinWeek, weeks,
        lambda row: {"target_asin": row.target_asin, "ad_type": row.ad_type},
    )


def brands(store: Store, weeks: int) -> list[dict[str, Any]]:
    return [
        {
            "id": b.id,
            "name": b.name,
            "mode": b.mode,
            "tacos_target": b.tacos_target,
            "acos_target": b.acos_target,
            "min_stock_days": b.min_stock_days,
        }
        for b in store.all_rows(Brand, order_by=[Brand.name])
    ]


def campaigns(store: Store, weeks: int) -> list[dict[str, Any]]:
    brand_rows = _names(store, Brand)
    data = []
    for c in store.all_rows(Campaign, order_by=[Campaign.name]):
        brand = brand_rows.get(c.brand_id)
        data.append({
            "id": c.id,
            "campaign_id": c.campaign_id,
            "name": c.name,
            "type": c.type,
            "state": c.state,
            "budget": c.budget,
            "targeting_type": c.targeting_type,
            "brand_name": brand.name if brand is not None else "",
        })
    return data


def account_config(store: Store, weeks: int) -> dict[str, Any]:
    settings = store.account_settings()
    return {
        "id": settings.id,
        "last_sync_at": settings.last_sync_at,
        "last_strategic_report": settings.last_strategic_report,
    }


DATASETS: dict[str, tuple[Callable[[Store, int], Any], str]] = {
    "brand-week": (brand_week, "Weekly brand-level aggregates"),
    "asin-week": (asin_week, "Weekly SKU/ASIN performance"),
    "campaign-week": (campaign_week, "Weekly campaign performance data"),
    "searchterm-week": (searchterm_week, "Weekly search term performance"),
    "target-asin-week": (target_asin_week, "Weekly targeting performance by ASIN"),
    "brands": (brands, "Brand list with targets"),
    "campaigns": (campaigns, "Campaign list with brand mapping"),
    "config": (account_config, "Account settings"),
}
WEEKLY_DATASETS = {"brand-week", "asin-week", "campaign-week", "searchterm-week", "target-asin-week"}


# ══════════════════════════════════════════════════════════════════════
#  APP
# ══════════════════════════════════════════════════════════════════════

def get_store(request: Request) -> Store:
    return request.app.state.store


def get_app_config(request: Request) -> Config:
    return request.app.state.config


def require_sheets_key(
    config: Config = Depends(get_app_config),
    authorization: str | None = Header(None),
) -> None:
    """Bearer token must equal SHEETS_API_KEY; no key configured means open access."""
    expected = config.settings.sheets_api_key
    if not expected:
        return
    token = (authorization or "").replace("Bearer ", "", 1)
    if token != expected:
        raise HTTPException(401, "Unauthorized")


def require_cron_secret(
    config: Config = Depends(get_app_config),
    authorization: str | None = Header(None),
) -> None:
    secret = config.settings.cron_secret
    if secret and authorization != f"Bearer {secret}":
        raise HTTPException(401, "Unauthorized")


def build_store(config: Config) -> Store:
    engine = make_engine(config.settings.database_url)
    init_db(engine)
    return Store(make_session_factory(engine))


def create_app(config: Config | None = None, store: Store | None = None) -> FastAPI:
    config = config or get_config()
    app = FastAPI(title="Amazon Brain Sheets API", version=API_VERSION)
    app.state.config = config
    app.state.store = store or build_store(config)

    @app.exception_handler(HTTPException)
    async def _error_body(request: Request, exc: HTTPException) -> JSONResponse:
        return JSONResponse({"error": exc.detail}, status_code=exc.status_code)

    @app.get("/api/sheets")
    def index(request: Request) -> dict[str, Any]:
        base_url = str(request.base_url).rstrip("/")
        datasets = []
        for name, (_, description) in DATASETS.items():
            entry: dict[str, Any] = {
                "name": name,
                "url": f"{base_url}/api/sheets/{name}",
                "description": description,
            }
            if name in WEEKLY_DATASETS:
                entry["params"] = {"weeks": f"number (default: {DEFAULT_WEEKS})"}
            datasets.append(entry)
        return {
            "name": "Amazon Brain Sheets API",
            "version": API_VERSION,
            "authentication": "Bearer token in Authorization header (SHEETS_API_KEY)",
            "datasets": datasets,
        }

    @app.get("/api/sheets/{dataset}", dependencies=[Depends(require_sheets_key)])
    def sheet(
        dataset: str,
        weeks: int = Query(DEFAULT_WEEKS, ge=1),
        store: Store = Depends(get_store),
    ) -> Any:
        if dataset not in DATASETS:
            raise HTTPException(400, f"Unknown dataset: {dataset}")

        handler, _ = DATASETS[dataset]
        try:
            data = handler(store, weeks)
        except Exception as e:
            logger.exception(f"Error fetching {dataset}")
            return JSONResponse({"error": str(e)}, status_code=500)

        return {
            "dataset": dataset,
            "updated_at": datetime.now(timezone.utc).isoformat(),
            "count": len(data) if isinstance(data, list) else 1,
            "data": data,
        }

    @app.get("/api/cron", dependencies=[Depends(require_cron_secret)])
    def cron(
        store: Store = Depends(get_store),
        config: Config = Depends(get_app_config),
    ) -> Any:
        settings = config.settings
        notifier = EmailNotifier(settings.resend_api_key, settings.email_from)
        try:
            return AlertService(store, notifier, config.tuning, settings.email_to).run()
        except Exception:
            logger.exception("Cron job error")
            return JSONResponse({"error": "Internal server error"}, status_code=500)
        finally:
            notifier.close()

    return app
