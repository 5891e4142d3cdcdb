"""Relational store used by every sync, the alert cron and the sheets API.

Each public method opens its own session and commits before returning, so a
crash part-way through a sync leaves every bucket written so far in place.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Iterable, Sequence

from sqlalchemy import delete, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import sessionmaker

from amazon_brain.db import AccountSettings, Campaign, Sku

logger = logging.getLogger(__name__)

_NATIVE_UPSERT = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


def _key_clause(model: type, key: dict[str, Any]) -> list:
    """WHERE terms for a natural key, matching NULL key values with IS NULL."""
    clauses = []
    for name, value in key.items():
        column = getattr(model, name)
        clauses.append(column.is_(None) if value is None else column == value)
    return clauses


class Store:
    """Thin query layer over a SQLAlchemy session factory."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    @property
    def dialect(self) -> str:
        return self._session_factory.kw["bind"].dialect.name

    # ── Generic row access ───────────────────────────────────────────

    def get_by(self, model: type, **key: Any) -> Any | None:
        """First row matching the natural key, or None."""
        with self._session_factory() as session:
            return session.scalars(select(model).where(*_key_clause(model, key)).limit(1)).first()

    def insert(self, model: type, **values: Any) -> Any:
        with self._session_factory() as session:
            row = model(**values)
            session.add(row)
            session.commit()
            return row

    def update_where(self, model: type, key: dict[str, Any], values: dict[str, Any]) -> int:
        """Update rows matching *key*; returns the number of rows touched."""
        with self._session_factory() as session:
            result = session.execute(
                update(model).where(*_key_clause(model, key)).values(**values)
            )
            session.commit()
            return result.rowcount

    def delete_where(self, model: type, *criteria: Any) -> int:
        with self._session_factory() as session:
            result = session.execute(delete(model).where(*criteria))
            session.commit()
            return result.rowcount

    def upsert(self, model: type, key_fields: Sequence[str], values: dict[str, Any]) -> None:
        """Insert *values*, or update the non-key columns of the row with the same key.

        Columns absent from *values* are left alone on update. A NULL key value
        never conflicts in SQL, so such keys are matched with a select first.
        """
        key = {name: values.get(name) for name in key_fields}
        native = _NATIVE_UPSERT.get(self.dialect)

        with self._session_factory() as session:
            if native is None or any(v is None for v in key.values()):
                self._select_then_write(session, model, key, values)
            else:
                stmt = native(model).values(**values)
                changes = {k: v for k, v in values.items() if k not in key}
                if changes:
                    stmt = stmt.on_conflict_do_update(index_elements=list(key_fields), set_=changes)
                else:
                    stmt = stmt.on_conflict_do_nothing(index_elements=list(key_fields))
                session.execute(stmt)
            session.commit()

    @staticmethod
    def _select_then_write(session: Any, model: type, key: dict[str, Any], values: dict[str, Any]) -> None:
        existing = session.scalars(select(model).where(*_key_clause(model, key)).limit(1)).first()
        if existing is None:
            session.add(model(**values))
            return
        for name, value in values.items():
            if name not in key:
                setattr(existing, name, value)

    def all_rows(self, model: type, *criteria: Any, order_by: Iterable[Any] = ()) -> list[Any]:
        with self._session_factory() as session:
            stmt = select(model)
            if criteria:
                stmt = stmt.where(*criteria)
            order_by = list(order_by)
            if order_by:
                stmt = stmt.order_by(*order_by)
            return list(session.scalars(stmt))

    # ── Lookups used by the syncs ────────────────────────────────────

    def campaign_brand_map(self) -> dict[str, tuple[str, str | None]]:
        """External campaign id -> (internal campaign id, brand id)."""
        with self._session_factory() as session:
            rows = session.execute(select(Campaign.campaign_id, Campaign.id, Campaign.brand_id))
            return {str(ext_id): (internal_id, brand_id) for ext_id, internal_id, brand_id in rows}

    def asin_sku_map(self) -> dict[str, str]:
        """ASIN -> internal sku id, for SKUs that have an ASIN."""
        with self._session_factory() as session:
            rows = session.execute(select(Sku.asin, Sku.id).where(Sku.asin.is_not(None)))
            return {asin: sku_id for asin, sku_id in rows if asin}

    # ── Account bookkeeping ──────────────────────────────────────────

    def account_settings(self) -> AccountSettings:
        """The singleton settings row, created on first use."""
        with self._session_factory() as session:
            row = session.get(AccountSettings, 1)
            if row is None:
                row = AccountSettings(id=1)
                session.add(row)
                session.commit()
            return row

    def update_account_settings(self, **values: Any) -> None:
        self.account_settings()
        self.update_where(AccountSettings, {"id": 1}, values)

    def touch_last_sync(self, now: datetime | None = None) -> None:
        now = now or datetime.now(timezone.utc).replace(tzinfo=None)
        self.update_account_settings(last_sync_at=now)
        logger.info(f"Recorded last sync at {now.isoformat()}")
