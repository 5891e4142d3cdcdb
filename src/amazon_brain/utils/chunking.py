"""Date-range chunking for report requests.

Report generation degrades or times out on long spans, so a lookback
window is split into fixed-size, non-overlapping sub-ranges walking back
from today.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, NamedTuple

logger = logging.getLogger(__name__)


class DateRange(NamedTuple):
    """An inclusive range of calendar days."""
    start: date
    end: date

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    def __str__(self) -> str:
        return f"{self.start.isoformat()} to {self.end.isoformat()}"


def _today(now: datetime | date | None) -> date:
    if now is None:
        return datetime.now(timezone.utc).date()
    if isinstance(now, datetime):
        return now.date()
    return now


def date_chunks(
    days: int,
    chunk_days: int,
    now: datetime | date | None = None,
) -> list[DateRange]:
    """Split the window [today - days, today] into chunks of at most *chunk_days* days.

    Chunks are returned newest first. Together they cover every day of the
    window exactly once.
    """
    if chunk_days < 1:
        raise ValueError("chunk_days must be at least 1")

    today = _today(now)
    window_start = today - timedelta(days=max(days, 0))
    chunks: list[DateRange] = []

    offset = 0
    while True:
        end = today - timedelta(days=offset)
        start = max(end - timedelta(days=chunk_days - 1), window_start)
        if start > end:
            break
        chunks.append(DateRange(start, end))
        offset += chunk_days

    return chunks


def fetch_chunked(
    fetch: Callable[[DateRange], list[Any]],
    days: int,
    chunk_days: int,
    now: datetime | date | None = None,
    label: str = "report",
) -> list[Any]:
    """Call *fetch* once per chunk and concatenate the rows.

    An empty chunk (failed or timed-out report) does not stop the walk.
    """
    rows: list[Any] = []
    for chunk in date_chunks(days, chunk_days, now):
        logger.info(f"  Requesting {label}: {chunk}")
        rows.extend(fetch(chunk))
    return rows


def ads_window(days: int, cap: int = 60) -> int:
    """Clamp a lookback window to the ad reporting API's retention limit."""
    return min(days, cap)
