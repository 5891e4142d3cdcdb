"""Selling Partner API service: orders, listings brand lookup and flat-file reports."""

from __future__ import annotations

import csv
import logging
import time
from typing import Any
from urllib.parse import quote

import httpx

from amazon_brain.client import SellingPartnerClient
from amazon_brain.config import PollPolicy
from amazon_brain.db import UNKNOWN_BRAND
from amazon_brain.services.reporting import maybe_gunzip
from amazon_brain.utils.errors import ApiError
from amazon_brain.utils.pagination import paginate

logger = logging.getLogger(__name__)

ORDER_STATUSES = ("Shipped", "Unshipped", "PartiallyShipped")
LISTINGS_REPORT = "GET_MERCHANT_LISTINGS_ALL_DATA"
INVENTORY_REPORT = "GET_FBA_MYI_UNSUPPRESSED_INVENTORY_DATA"
REPORT_FAILED_STATES = ("FATAL", "CANCELLED")


def _payload(response: httpx.Response) -> dict[str, Any]:
    """SP-API v0 endpoints wrap results in ``payload``; newer ones do not."""
    data = response.json()
    if isinstance(data, dict) and isinstance(data.get("payload"), dict):
        return data["payload"]
    return data


def parse_flat_file(text: str) -> list[dict[str, str]]:
    """Parse a tab-separated report with a header line into row dicts."""
    lines = [line for line in text.splitlines() if line.strip()]
    if len(lines) <= 1:
        return []
    reader = csv.DictReader(lines, delimiter="\t", quoting=csv.QUOTE_NONE)
    return [
        {(k or "").strip(): (v or "").strip() for k, v in row.items() if k is not None}
        for row in reader
    ]


def _int(value: str | None) -> int:
    try:
        return int(float(value or 0))
    except ValueError:
        return 0


class SellingPartnerService:
    """Read-only calls against one seller account in one marketplace."""

    def __init__(self, client: SellingPartnerClient, marketplace_id: str, seller_id: str = "") -> None:
        self._client = client
        self._marketplace_id = marketplace_id
        self._seller_id = seller_id

    def close(self) -> None:
        self._client.close()

    # ── Orders ───────────────────────────────────────────────────────

    def list_orders(self, created_after: str) -> list[dict[str, Any]]:
        """All shipped/unshipped orders created after an ISO timestamp."""
        params = {
            "MarketplaceIds": self._marketplace_id,
            "CreatedAfter": created_after,
            "OrderStatuses": ",".join(ORDER_STATUSES),
        }
        pages = 0

        def fetch(query: dict[str, Any]) -> dict[str, Any]:
            nonlocal pages
            pages += 1
            if pages > 1:
                logger.info(f"  Fetching orders page {pages}...")
            return _payload(self._client.get("/orders/v0/orders", params=query))

        return paginate(fetch, params, "Orders", token_key="NextToken")

    def get_order_items(self, order_id: str) -> list[dict[str, Any]]:
        """Line items of one order; an error is logged and gives no items."""
        def fetch(query: dict[str, Any]) -> dict[str, Any]:
            return _payload(self._client.get(f"/orders/v0/orders/{order_id}/orderItems", params=query or None))

        try:
            return paginate(fetch, {}, "OrderItems", token_key="NextToken")
        except (ApiError, ValueError) as e:
            logger.error(f"Error getting items for order {order_id}: {e}")
            return []

    # ── Listings ─────────────────────────────────────────────────────

    def get_listing_brand(self, sku: str) -> str:
        """Brand attribute of a listing, or "Unknown" if it cannot be read."""
        try:
            response = self._client.get(
                f"/listings/2021-08-01/items/{self._seller_id}/{quote(sku, safe='')}",
                params={"marketplaceIds": self._marketplace_id, "includedData": "attributes"},
            )
            brands = (response.json().get("attributes") or {}).get("brand") or []
        except (ApiError, ValueError) as e:
            logger.debug(f"Brand lookup failed for {sku}: {e}")
            return UNKNOWN_BRAND
        if brands and brands[0].get("value"):
            return brands[0]["value"]
        return UNKNOWN_BRAND

    def get_active_listings(self, policy: PollPolicy | None = None) -> list[dict[str, Any]]:
        """Active rows of the merchant listings report as {sku, asin, name, quantity}."""
        rows = self.fetch_report(LISTINGS_REPORT, policy)
        return [
            {
                "sku": r.get("seller-sku") or r.get("sku") or "",
                "asin": r.get("asin1") or r.get("asin") or "",
                "name": r.get("item-name") or r.get("product-name") or "",
                "quantity": _int(r.get("quantity") or r.get("afn-fulfillable-quantity")),
            }
            for r in rows
            if r.get("status", "") == "Active"
        ]

    def get_inventory_rows(self, policy: PollPolicy | None = None) -> list[dict[str, Any]]:
        """FBA inventory as {sku, asin, name, quantity} (fulfillable units)."""
        rows = self.fetch_report(INVENTORY_REPORT, policy)
        return [
            {
                "sku": r.get("sku") or r.get("seller-sku") or "",
                "asin": r.get("asin") or "",
                "name": r.get("product-name") or "",
                "quantity": _int(r.get("afn-fulfillable-quantity")),
            }
            for r in rows
        ]

    # ── Reports ──────────────────────────────────────────────────────

    def fetch_report(self, report_type: str, policy: PollPolicy | None = None) -> list[dict[str, str]]:
        """Request a flat-file report, wait for it and parse its rows.

        Returns an empty list if the report fails, times out or cannot be read.
        """
        policy = policy or PollPolicy(interval_seconds=8.0, max_attempts=15)
        try:
            response = self._client.post(
                "/reports/2021-06-30/reports",
                body={"reportType": report_type, "marketplaceIds": [self._marketplace_id]},
            )
            report_id = response.json().get("reportId")
        except (ApiError, ValueError) as e:
            logger.warning(f"{report_type}: report request failed: {e}")
            return []

        if not report_id:
            logger.warning(f"{report_type}: no report ID returned")
            return []

        logger.info(f"{report_type}: report {report_id} requested, polling...")
        document_id = self._wait_for_document(report_id, policy)
        if not document_id:
            return []

        try:
            document = self._client.get(f"/reports/2021-06-30/documents/{document_id}").json()
            payload = self._client.download(document["url"])
        except (ApiError, httpx.HTTPError, ValueError, KeyError) as e:
            logger.warning(f"{report_type}: document download failed: {e}")
            return []

        text = maybe_gunzip(payload).decode("utf-8", errors="replace")
        return parse_flat_file(text)

    def _wait_for_document(self, report_id: str, policy: PollPolicy) -> str | None:
        for attempt in range(policy.max_attempts):
            try:
                status = self._client.get(f"/reports/2021-06-30/reports/{report_id}").json()
            except (ApiError, ValueError) as e:
                logger.warning(f"Report {report_id}: status check failed: {e}")
                return None

            state = status.get("processingStatus", "UNKNOWN")
            if state == "DONE":
                return status.get("reportDocumentId")
            if state in REPORT_FAILED_STATES:
                logger.warning(f"Report {report_id} finished with status {state}")
                return None

            if attempt < policy.max_attempts - 1:
                time.sleep(policy.interval_seconds)

        logger.warning(f"Report {report_id} timed out after {policy.max_attempts} attempts")
        return None
