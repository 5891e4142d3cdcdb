"""CLI commands for the data sync and campaign brand repair."""

from __future__ import annotations

from typing import Annotated

import typer
from rich.console import Console

from amazon_brain.auth import AuthManager
from amazon_brain.client import AdsApiClient, SellingPartnerClient
from amazon_brain.config import Config, get_config
from amazon_brain.db import init_db, make_engine, make_session_factory
from amazon_brain.services.campaign_brands import fix_campaign_brands
from amazon_brain.services.reporting import ReportClient
from amazon_brain.services.resolver import EntityResolver
from amazon_brain.services.selling_partner import SellingPartnerService
from amazon_brain.services.sync import Dataset, SyncContext, SyncOrchestrator, resolve_datasets
from amazon_brain.services.writer import UpsertWriter
from amazon_brain.store import Store
from amazon_brain.utils.errors import BrainError, ConfigError, handle_error
from amazon_brain.utils.output import OutputFormat, print_output

console = Console(stderr=True)
app = typer.Typer(name="sync", help="Pull Amazon data into the weekly tables.")


def _build_store(config: Config) -> Store:
    engine = make_engine(config.settings.database_url)
    init_db(engine)
    return Store(make_session_factory(engine))


def _build_context(config: Config, days: int, verbose: bool = False) -> SyncContext:
    settings = config.settings
    store = _build_store(config)

    def ads_factory() -> ReportClient:
        auth = AuthManager(
            settings.ads_client_id,
            settings.ads_client_secret,
            settings.ads_refresh_token,
            config.endpoints.auth,
        )
        client = AdsApiClient(config.endpoints.ads_api, auth, profile_id=settings.ads_profile_id, verbose=verbose)
        return ReportClient(client)

    def sp_factory() -> SellingPartnerService:
        auth = AuthManager(
            settings.lwa_client_id,
            settings.lwa_client_secret,
            settings.sp_refresh_token,
            config.endpoints.auth,
        )
        client = SellingPartnerClient(config.endpoints.sp_api, auth, verbose=verbose)
        return SellingPartnerService(client, settings.marketplace_id, settings.seller_id)

    return SyncContext(
        config=config,
        store=store,
        resolver=EntityResolver(store, title_max_length=config.tuning.title_max_length),
        writer=UpsertWriter(store, vat_rate=settings.vat_rate),
        ads_factory=ads_factory,
        sp_factory=sp_factory,
        days=days,
    )


@app.command("run")
def run_sync(
    orders: Annotated[bool, typer.Option("--orders", help="Sync orders into brand/SKU weeks")] = False,
    ads: Annotated[bool, typer.Option("--ads", help="Sync campaigns and ad performance")] = False,
    targeting: Annotated[bool, typer.Option("--targeting", help="Sync product-targeting performance")] = False,
    searchterms: Annotated[bool, typer.Option("--searchterms", help="Sync customer search terms")] = False,
    products: Annotated[bool, typer.Option("--products", help="Sync active listings, brands and stock")] = False,
    inventory: Annotated[bool, typer.Option("--inventory", help="Legacy FBA inventory sync (deprecated)")] = False,
    all_: Annotated[bool, typer.Option("--all", help="Sync everything except inventory")] = False,
    days: Annotated[int | None, typer.Option("--days", "-d", help="Days back to sync (default SYNC_DAYS_BACK)")] = None,
    output: Annotated[OutputFormat, typer.Option("--output", "-o")] = OutputFormat.TABLE,
    verbose: Annotated[bool, typer.Option("--verbose", "-v")] = False,
) -> None:
    """Sync selected datasets; no flags means everything except inventory.

    Datasets run in a fixed order (products, orders, ads, targeting,
    searchterms, inventory). A failing dataset is reported in the results
    table and the rest still run; only missing configuration exits nonzero.
    """
    flags = {
        Dataset.PRODUCTS: products,
        Dataset.ORDERS: orders,
        Dataset.ADS: ads,
        Dataset.TARGETING: targeting,
        Dataset.SEARCHTERMS: searchterms,
        Dataset.INVENTORY: inventory,
    }
    datasets = resolve_datasets([d for d, on in flags.items() if on], all_=all_)

    try:
        config = get_config()
        config.require_credentials(d.value for d in datasets)
    except ConfigError as e:
        handle_error(e)
        raise typer.Exit(1)

    days = config.settings.sync_days_back if days is None else days
    if days < 1:
        console.print("[red]--days must be at least 1[/red]")
        raise typer.Exit(1)

    ctx = _build_context(config, days, verbose)
    summary = SyncOrchestrator(ctx).run(datasets)

    columns = ["dataset", "status", "rows", "written", "unmapped", "seconds", "message"]
    print_output(summary.to_rows(), output, columns=columns, title=f"Sync Results ({days} days)")


@app.command("fix-campaign-brands")
def fix_brands(
    output: Annotated[OutputFormat, typer.Option("--output", "-o")] = OutputFormat.TABLE,
) -> None:
    """Re-link campaigns to the brand owning the ASIN in their name."""
    try:
        store = _build_store(get_config())
        changes = fix_campaign_brands(store)
    except BrainError as e:
        handle_error(e)
        raise typer.Exit(1)

    console.print(f"Updated {len(changes)} campaign(s)")
    print_output(changes, output, columns=["campaign", "asin", "from", "to"], title="Campaign Brand Fixes")
