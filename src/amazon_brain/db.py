"""
Database engine, session factory and ORM tables.

Weekly fact tables are keyed by a natural composite key plus ``week_start``
(always a Monday); every write against them is an upsert on that key.
"""

import enum
import logging
import uuid
from datetime import date, datetime, timezone

from sqlalchemy import (
    Date, DateTime, Float, ForeignKey, Integer, String, Text,
    UniqueConstraint, create_engine,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

DEFAULT_BRAND = "Default"
UNKNOWN_BRAND = "Unknown"


def _utcnow() -> datetime:
    """Naive UTC now, matching TIMESTAMP WITHOUT TIME ZONE columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _uuid() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    pass


# ══════════════════════════════════════════════════════════════════════
#  ENUMS
# ══════════════════════════════════════════════════════════════════════

class BrandMode(str, enum.Enum):
    LAUNCH = "launch"
    GROWTH = "growth"
    PROFIT = "profit"
    DEFEND = "defend"
    SEASONAL = "seasonal"
    LIQUIDATE = "liquidate"
    PAUSE = "pause"


class AlertType(str, enum.Enum):
    STOCK = "stock"
    TACOS = "tacos"
    BUDGET = "budget"
    GENERAL = "general"


class AlertLevel(str, enum.Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"


# ══════════════════════════════════════════════════════════════════════
#  DIMENSIONS
# ══════════════════════════════════════════════════════════════════════

class Brand(Base):
    __tablename__ = "brands"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    mode: Mapped[str] = mapped_column(String(20), default=BrandMode.GROWTH.value)
    tacos_target: Mapped[float] = mapped_column(Float, default=15.0)
    acos_target: Mapped[float] = mapped_column(Float, default=25.0)
    min_stock_days: Mapped[int] = mapped_column(Integer, default=14)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)


class Sku(Base):
    __tablename__ = "skus"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    sku: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    asin: Mapped[str] = mapped_column(String(20), nullable=True)
    title: Mapped[str] = mapped_column(String(150), nullable=True)
    brand_id: Mapped[str] = mapped_column(ForeignKey("brands.id"), nullable=True)
    min_stock_override: Mapped[int] = mapped_column(Integer, nullable=True)
    tacos_target_override: Mapped[float] = mapped_column(Float, nullable=True)
    acos_target_override: Mapped[float] = mapped_column(Float, nullable=True)


class Campaign(Base):
    """An advertising campaign. ``campaign_id`` is Amazon's id, ``id`` is ours."""
    __tablename__ = "campaigns"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    campaign_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    brand_id: Mapped[str] = mapped_column(ForeignKey("brands.id"), nullable=True)
    name: Mapped[str] = mapped_column(Text, nullable=True)
    type: Mapped[str] = mapped_column(String(4), default="SP")
    state: Mapped[str] = mapped_column(String(20), nullable=True)
    budget: Mapped[float] = mapped_column(Float, nullable=True)
    targeting_type: Mapped[str] = mapped_column(String(20), nullable=True)


# ══════════════════════════════════════════════════════════════════════
#  WEEKLY FACTS
# ══════════════════════════════════════════════════════════════════════

class BrandWeek(Base):
    __tablename__ = "brand_week"
    __table_args__ = (UniqueConstraint("brand_id", "week_start"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    brand_id: Mapped[str] = mapped_column(ForeignKey("brands.id"), nullable=False)
    week_start: Mapped[date] = mapped_column(Date, nullable=False)
    revenue: Mapped[float] = mapped_column(Float, default=0)
    revenue_ex_vat: Mapped[float] = mapped_column(Float, default=0)
    units: Mapped[int] = mapped_column(Integer, default=0)
    orders: Mapped[int] = mapped_column(Integer, default=0)
    ad_spend: Mapped[float] = mapped_column(Float, default=0)
    ad_sales: Mapped[float] = mapped_column(Float, default=0)
    tacos: Mapped[float] = mapped_column(Float, default=0)
    acos: Mapped[float] = mapped_column(Float, default=0)
    impressions: Mapped[int] = mapped_column(Integer, default=0)
    clicks: Mapped[int] = mapped_column(Integer, default=0)


class SkuWeek(Base):
    __tablename__ = "sku_week"
    __table_args__ = (UniqueConstraint("sku_id", "week_start"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    sku_id: Mapped[str] = mapped_column(ForeignKey("skus.id"), nullable=False)
    week_start: Mapped[date] = mapped_column(Date, nullable=False)
    revenue: Mapped[float] = mapped_column(Float, default=0)
    revenue_ex_vat: Mapped[float] = mapped_column(Float, default=0)
    units: Mapped[int] = mapped_column(Integer, default=0)
    ad_spend: Mapped[float] = mapped_column(Float, default=0)
    ad_sales: Mapped[float] = mapped_column(Float, default=0)
    impressions: Mapped[int] = mapped_column(Integer, default=0)
    clicks: Mapped[int] = mapped_column(Integer, default=0)
    ad_orders: Mapped[int] = mapped_column(Integer, default=0)
    tacos: Mapped[float] = mapped_column(Float, default=0)
    acos: Mapped[float] = mapped_column(Float, default=0)
    ctr: Mapped[float] = mapped_column(Float, default=0)
    cpc: Mapped[float] = mapped_column(Float, default=0)
    cvr: Mapped[float] = mapped_column(Float, default=0)
    stock_level: Mapped[int] = mapped_column(Integer, nullable=True)
    stock_days: Mapped[float] = mapped_column(Float, nullable=True)


class CampaignWeek(Base):
    __tablename__ = "campaign_week"
    __table_args__ = (UniqueConstraint("campaign_id", "week_start"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    campaign_id: Mapped[str] = mapped_column(ForeignKey("campaigns.id"), nullable=False)
    week_start: Mapped[date] = mapped_column(Date, nullable=False)
    impressions: Mapped[int] = mapped_column(Integer, default=0)
    clicks: Mapped[int] = mapped_column(Integer, default=0)
    spend: Mapped[float] = mapped_column(Float, default=0)
    sales: Mapped[float] = mapped_column(Float, default=0)
    orders: Mapped[int] = mapped_column(Integer, default=0)
    acos: Mapped[float] = mapped_column(Float, default=0)


class SearchTermWeek(Base):
    __tablename__ = "searchterm_week"
    __table_args__ = (UniqueConstraint("term", "campaign_id", "week_start"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    term: Mapped[str] = mapped_column(Text, nullable=False)
    campaign_id: Mapped[str] = mapped_column(ForeignKey("campaigns.id"), nullable=True)
    brand_id: Mapped[str] = mapped_column(ForeignKey("brands.id"), nullable=True)
    week_start: Mapped[date] = mapped_column(Date, nullable=False)
    impressions: Mapped[int] = mapped_column(Integer, default=0)
    clicks: Mapped[int] = mapped_column(Integer, default=0)
    spend: Mapped[float] = mapped_column(Float, default=0)
    sales: Mapped[float] = mapped_column(Float, default=0)
    orders: Mapped[int] = mapped_column(Integer, default=0)
    acos: Mapped[float] = mapped_column(Float, default=0)


class TargetAsinWeek(Base):
    __tablename__ = "target_asin_week"
    __table_args__ = (UniqueConstraint("target_asin", "campaign_id", "ad_type", "week_start"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    target_asin: Mapped[str] = mapped_column(String(20), nullable=False)
    campaign_id: Mapped[str] = mapped_column(ForeignKey("campaigns.id"), nullable=True)
    ad_type: Mapped[str] = mapped_column(String(4), default="SP")
    brand_id: Mapped[str] = mapped_column(ForeignKey("brands.id"), nullable=True)
    week_start: Mapped[date] = mapped_column(Date, nullable=False)
    impressions: Mapped[int] = mapped_column(Integer, default=0)
    clicks: Mapped[int] = mapped_column(Integer, default=0)
    spend: Mapped[float] = mapped_column(Float, default=0)
    sales: Mapped[float] = mapped_column(Float, default=0)
    orders: Mapped[int] = mapped_column(Integer, default=0)
    acos: Mapped[float] = mapped_column(Float, default=0)


# ══════════════════════════════════════════════════════════════════════
#  OPERATIONS
# ══════════════════════════════════════════════════════════════════════

class Alert(Base):
    __tablename__ = "alerts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(20), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(36), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    level: Mapped[str] = mapped_column(String(10), default=AlertLevel.WARNING.value)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    resolved_at: Mapped[datetime] = mapped_column(DateTime, nullable=True)


class AccountSettings(Base):
    """Singleton row holding run bookkeeping."""
    __tablename__ = "account_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=1)
    last_sync_at: Mapped[datetime] = mapped_column(DateTime, nullable=True)
    last_strategic_report: Mapped[datetime] = mapped_column(DateTime, nullable=True)


# ══════════════════════════════════════════════════════════════════════
#  ENGINE & SESSIONS
# ══════════════════════════════════════════════════════════════════════

def make_engine(database_url: str, echo: bool = False) -> Engine:
    """Create an engine; in-memory SQLite shares one connection across sessions."""
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, echo=echo, **kwargs)
    return create_engine(database_url, echo=echo, pool_pre_ping=True)


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, expire_on_commit=False)


def init_db(engine: Engine) -> None:
    """Create any missing tables. Safe to run repeatedly."""
    Base.metadata.create_all(engine)
    logger.info(f"Database ready with {len(Base.metadata.tables)} tables")
