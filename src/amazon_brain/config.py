"""Configuration management for Amazon Brain.

Loads credentials from .env / .env.local and sync tunables from config/sync.yaml.
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Iterable

import yaml
from pydantic import BaseModel, Field
from dotenv import load_dotenv

from amazon_brain.utils.errors import ConfigError

SP_API_DATASETS = {"products", "orders", "inventory"}
ADS_API_DATASETS = {"ads", "targeting", "searchterms"}


class PollPolicy(BaseModel):
    """How often and how long to poll an asynchronous report."""
    interval_seconds: float = 6.0
    max_attempts: int = 90


class ReportTuning(PollPolicy):
    """Poll policy plus the date-chunk size used when fetching a report type."""
    chunk_days: int = 14


def _default_reports() -> dict[str, ReportTuning]:
    return {
        "spCampaigns": ReportTuning(chunk_days=7),
        "spAdvertisedProduct": ReportTuning(chunk_days=7),
        "spSearchTerm": ReportTuning(chunk_days=7),
        "spTargeting": ReportTuning(chunk_days=14),
        "sdTargeting": ReportTuning(chunk_days=14),
        "GET_MERCHANT_LISTINGS_ALL_DATA": ReportTuning(interval_seconds=8.0, max_attempts=15),
        "GET_FBA_MYI_UNSUPPRESSED_INVENTORY_DATA": ReportTuning(interval_seconds=8.0, max_attempts=15),
    }


class SyncTuning(BaseModel):
    """Tunables read from config/sync.yaml."""
    ads_max_days: int = 60
    title_max_length: int = 150
    reports: dict[str, ReportTuning] = Field(default_factory=_default_reports)
    retention_days: int = 30
    stock_alert_days: int = 14
    strategic_report_every_days: int = 5

    def report(self, report_type: str) -> ReportTuning:
        """Tuning for a report type, falling back to the generic defaults."""
        return self.reports.get(report_type, ReportTuning())


class Endpoints(BaseModel):
    """API hosts. Defaults target the EU marketplaces."""
    sp_api: str = "https://sellingpartnerapi-eu.amazon.com"
    ads_api: str = "https://advertising-api-eu.amazon.com"
    auth: str = "https://api.amazon.com/auth/o2/token"


class Settings(BaseModel):
    """Application settings loaded from environment variables."""
    lwa_client_id: str = Field(default="", description="Login with Amazon client ID (SP-API)")
    lwa_client_secret: str = Field(default="", description="Login with Amazon client secret (SP-API)")
    sp_refresh_token: str = Field(default="", description="SP-API refresh token")
    seller_id: str = Field(default="", description="Seller ID used by the Listings Items API")
    marketplace_id: str = Field(default="", description="Marketplace the account sells in")
    ads_client_id: str = Field(default="", description="Amazon Ads client ID")
    ads_client_secret: str = Field(default="", description="Amazon Ads client secret")
    ads_refresh_token: str = Field(default="", description="Amazon Ads refresh token")
    ads_profile_id: str = Field(default="", description="Ads profile; first available profile when empty")
    database_url: str = Field(default="sqlite:///./amazon_brain.db")
    sheets_api_key: str = Field(default="", description="Shared secret for the sheets API; empty disables auth")
    cron_secret: str = Field(default="", description="Shared secret for the cron endpoint")
    vat_rate: float = Field(default=5.0, description="VAT percentage removed from gross revenue")
    sync_days_back: int = Field(default=90, description="Default lookback window in days")
    resend_api_key: str = Field(default="")
    email_from: str = Field(default="Amazon Brain <noreply@yourdomain.com>")
    email_to: list[str] = Field(default_factory=list)


class Config(BaseModel):
    """Full application configuration."""
    settings: Settings
    endpoints: Endpoints = Field(default_factory=Endpoints)
    tuning: SyncTuning = Field(default_factory=SyncTuning)

    def missing_credentials(self, datasets: Iterable[str]) -> list[str]:
        """Names of the settings that the selected datasets need but are unset."""
        s = self.settings
        selected = set(datasets)
        required: dict[str, str] = {"DATABASE_URL": s.database_url}
        if selected & SP_API_DATASETS:
            required.update({
                "LWA_CLIENT_ID": s.lwa_client_id,
                "LWA_CLIENT_SECRET": s.lwa_client_secret,
                "REFRESH_TOKEN": s.sp_refresh_token,
                "MARKETPLACE_ID": s.marketplace_id,
            })
        if "products" in selected:
            required["SELLER_ID"] = s.seller_id
        if selected & ADS_API_DATASETS:
            required.update({
                "ADS_CLIENT_ID": s.ads_client_id,
                "ADS_CLIENT_SECRET": s.ads_client_secret,
                "ADS_REFRESH_TOKEN": s.ads_refresh_token,
            })
        return [name for name, value in required.items() if not value]

    def require_credentials(self, datasets: Iterable[str]) -> None:
        """Raise ConfigError if any credential needed by *datasets* is missing."""
        missing = self.missing_credentials(datasets)
        if missing:
            raise ConfigError(f"Missing credentials: {', '.join(missing)}")


def _find_project_root() -> Path:
    """Walk up from this file to find the project root (where config/ lives)."""
    current = Path(__file__).resolve().parent
    for parent in [current, *current.parents]:
        if (parent / "config" / "sync.yaml").exists():
            return parent
    # Fallback: cwd
    return Path.cwd()


def _load_tuning(project_root: Path) -> SyncTuning:
    """Load sync tunables from config/sync.yaml, if present."""
    tuning_path = project_root / "config" / "sync.yaml"
    if not tuning_path.exists():
        return SyncTuning()

    with open(tuning_path) as f:
        data = yaml.safe_load(f) or {}

    reports = _default_reports()
    for report_type, values in (data.get("reports") or {}).items():
        base = reports.get(report_type, ReportTuning())
        reports[report_type] = base.model_copy(update=values or {})

    alerts = data.get("alerts") or {}
    defaults = SyncTuning()
    return SyncTuning(
        ads_max_days=data.get("ads_max_days", defaults.ads_max_days),
        title_max_length=data.get("title_max_length", defaults.title_max_length),
        reports=reports,
        retention_days=alerts.get("retention_days", defaults.retention_days),
        stock_alert_days=alerts.get("stock_alert_days", defaults.stock_alert_days),
        strategic_report_every_days=alerts.get(
            "strategic_report_every_days", defaults.strategic_report_every_days
        ),
    )


def _env(*keys: str, default: str = "") -> str:
    """Try multiple env var names, return the first one found."""
    for key in keys:
        val = os.environ.get(key, "")
        if val:
            return val.strip().strip('"')
    return default


def _load_settings() -> Settings:
    """Load settings from environment variables.

    Ads credentials fall back to the SP-API (LWA) ones when unset.
    """
    lwa_client_id = _env("LWA_CLIENT_ID", "AMAZON_BRAIN_LWA_CLIENT_ID")
    lwa_client_secret = _env("LWA_CLIENT_SECRET", "AMAZON_BRAIN_LWA_CLIENT_SECRET")
    sp_refresh_token = _env("REFRESH_TOKEN", "AMAZON_BRAIN_REFRESH_TOKEN")
    email_to = _env("EMAIL_TO")
    return Settings(
        lwa_client_id=lwa_client_id,
        lwa_client_secret=lwa_client_secret,
        sp_refresh_token=sp_refresh_token,
        seller_id=_env("SELLER_ID"),
        marketplace_id=_env("MARKETPLACE_ID"),
        ads_client_id=_env("ADS_CLIENT_ID", default=lwa_client_id),
        ads_client_secret=_env("ADS_CLIENT_SECRET", default=lwa_client_secret),
        ads_refresh_token=_env("ADS_REFRESH_TOKEN", default=sp_refresh_token),
        ads_profile_id=_env("ADS_PROFILE_ID"),
        database_url=_env("DATABASE_URL", default="sqlite:///./amazon_brain.db"),
        sheets_api_key=_env("SHEETS_API_KEY"),
        cron_secret=_env("CRON_SECRET"),
        vat_rate=float(_env("VAT_RATE", default="5")),
        sync_days_back=int(_env("SYNC_DAYS_BACK", default="90")),
        resend_api_key=_env("RESEND_API_KEY"),
        email_from=_env("EMAIL_FROM", default="Amazon Brain <noreply@yourdomain.com>"),
        email_to=[addr.strip() for addr in email_to.split(",") if addr.strip()],
    )


def _load_endpoints() -> Endpoints:
    defaults = Endpoints()
    return Endpoints(
        sp_api=_env("SP_API_ENDPOINT", default=defaults.sp_api),
        ads_api=_env("ADS_API_ENDPOINT", default=defaults.ads_api),
        auth=_env("LWA_TOKEN_URL", default=defaults.auth),
    )


@lru_cache(maxsize=1)
def get_config() -> Config:
    """Load and cache the full application configuration."""
    project_root = _find_project_root()

    # .env.local wins over .env, matching the dashboard's convention
    for name in (".env.local", ".env"):
        env_path = project_root / name
        if env_path.exists():
            load_dotenv(env_path)

    return Config(
        settings=_load_settings(),
        endpoints=_load_endpoints(),
        tuning=_load_tuning(project_root),
    )
