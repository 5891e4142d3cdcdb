"""Report client for the Amazon Ads v3 async reporting API.

Every failure here (HTTP, report generation, timeout, malformed payload)
degrades to an empty row list plus a log line, so one broken report never
stops the rest of a sync.
"""

from __future__ import annotations

import gzip
import json
import logging
import time
import zlib
from datetime import date
from typing import Any

import httpx

from amazon_brain.client import AdsApiClient, CONTENT_TYPES
from amazon_brain.config import PollPolicy
from amazon_brain.models.reports import ReportSpec, SPONSORED_DISPLAY
from amazon_brain.utils.errors import ApiError, ReportError
from amazon_brain.utils.pagination import paginate

logger = logging.getLogger(__name__)

REPORT_CT_REQUEST = CONTENT_TYPES["reports_request"]
REPORT_CT_RESPONSE = CONTENT_TYPES["reports_response"]

FAILED_STATES = ("FAILURE", "FAILED", "CANCELLED")


def maybe_gunzip(payload: bytes) -> bytes:
    """Decompress a gzip payload; return it untouched if it is not gzip."""
    try:
        return gzip.decompress(payload)
    except (OSError, EOFError, zlib.error):
        return payload


def decode_json_rows(payload: bytes) -> list[dict[str, Any]]:
    """Decode a (possibly gzipped) JSON array of report rows."""
    try:
        data = json.loads(maybe_gunzip(payload))
    except (ValueError, UnicodeDecodeError) as e:
        logger.warning(f"Could not parse report payload: {e}")
        return []
    if not isinstance(data, list):
        logger.warning(f"Unexpected report payload type: {type(data).__name__}")
        return []
    return data


class ReportClient:
    """Creates, polls and downloads v3 ad reports, and lists campaigns."""

    def __init__(self, client: AdsApiClient) -> None:
        self._client = client

    # ── Profiles & campaigns ─────────────────────────────────────────

    def resolve_profile_id(self) -> str | None:
        """Use the configured profile, or fall back to the first one the account has."""
        if self._client.profile_id:
            return self._client.profile_id
        try:
            profiles = self._client.get("/v2/profiles").json()
        except (ApiError, ValueError) as e:
            logger.warning(f"Could not list advertising profiles: {e}")
            return None
        if not profiles:
            return None
        self._client.profile_id = str(profiles[0]["profileId"])
        return self._client.profile_id

    def list_campaigns(self, ad_product: str) -> list[dict[str, Any]]:
        """List all SP or SD campaigns, tagging each with its ad type."""
        if ad_product == SPONSORED_DISPLAY:
            path, content_type, ad_type = "/sd/campaigns/list", CONTENT_TYPES["sd_campaigns"], "SD"
        else:
            path, content_type, ad_type = "/sp/campaigns/list", CONTENT_TYPES["sp_campaigns"], "SP"

        def fetch(body: dict[str, Any]) -> dict[str, Any]:
            response = self._client.post(path, body=body, content_type=content_type, accept=content_type)
            return response.json()

        try:
            campaigns = paginate(fetch, {}, "campaigns")
        except (ApiError, ValueError) as e:
            logger.warning(f"Could not list {ad_type} campaigns: {e}")
            return []
        return [{**c, "adType": ad_type} for c in campaigns]

    # ── Reports ──────────────────────────────────────────────────────

    def create_report(self, spec: ReportSpec, start: date, end: date) -> str | None:
        """Submit a report request and return its handle."""
        response = self._client.post(
            "/reporting/reports",
            body=spec.request_body(start, end),
            content_type=REPORT_CT_REQUEST,
            accept=REPORT_CT_REQUEST,
        )
        return response.json().get("reportId")

    def get_report_status(self, report_id: str) -> dict[str, Any]:
        """Check the status of an async report ('status', and 'url' once completed)."""
        response = self._client.get(
            f"/reporting/reports/{report_id}",
            content_type=REPORT_CT_RESPONSE,
            accept=REPORT_CT_RESPONSE,
        )
        return response.json()

    def run(self, spec: ReportSpec, start: date, end: date, policy: PollPolicy) -> list[dict[str, Any]]:
        """Request a report for [start, end], wait for it and return its rows."""
        try:
            report_id = self.create_report(spec, start, end)
        except (ApiError, ValueError) as e:
            logger.warning(f"{spec.name}: report request failed: {e}")
            return []

        if not report_id:
            logger.warning(f"{spec.name}: no report ID returned")
            return []

        logger.info(f"{spec.name}: report {report_id} requested, polling...")
        return self.wait_and_download(report_id, policy)

    def wait_and_download(self, report_id: str, policy: PollPolicy) -> list[dict[str, Any]]:
        """Poll until the report is ready, then download and decode it.

        Returns an empty list on failure, on timeout, or on any transport error.
        """
        try:
            url = self.wait_for_url(report_id, policy)
        except ReportError as e:
            logger.warning(str(e))
            return []

        logger.info(f"Report {report_id} ready, downloading...")
        return self._download(url)

    def wait_for_url(self, report_id: str, policy: PollPolicy) -> str:
        """Poll the report status until it completes and return its download URL.

        Raises:
            ReportError: The report failed, timed out, or its status could not be read.
        """
        for attempt in range(policy.max_attempts):
            try:
                status = self.get_report_status(report_id)
            except (ApiError, ValueError) as e:
                raise ReportError(f"Report {report_id}: status check failed: {e}") from e

            state = status.get("status", "UNKNOWN")
            if state == "COMPLETED" and status.get("url"):
                return status["url"]

            if state in FAILED_STATES:
                reason = status.get("failureReason") or "unknown"
                raise ReportError(f"Report {report_id} generation failed: {reason}")

            if attempt % 3 == 0:
                logger.info(f"  Report status: {state}, attempt {attempt + 1}/{policy.max_attempts}...")

            if attempt < policy.max_attempts - 1:
                time.sleep(policy.interval_seconds)

        raise ReportError(f"Report {report_id} timed out after {policy.max_attempts} attempts")

    def _download(self, url: str) -> list[dict[str, Any]]:
        try:
            payload = self._client.download(url)
        except httpx.HTTPError as e:
            logger.warning(f"Report download failed: {e}")
            return []
        return decode_json_rows(payload)

    def close(self) -> None:
        self._client.close()
