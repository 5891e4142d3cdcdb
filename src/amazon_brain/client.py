"""HTTP clients for the Amazon Advertising API and the Selling Partner API.

Handles header injection, retry logic, rate limiting, and token refresh.
"""

from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from amazon_brain.auth import AuthManager
from amazon_brain.utils.errors import ApiError

logger = logging.getLogger(__name__)


# Versioned content types for Ads API entities
CONTENT_TYPES = {
    "sp_campaigns": "application/vnd.spCampaign.v3+json",
    "sd_campaigns": "application/vnd.sdcampaign.v3+json",
    "reports_request": "application/vnd.createasyncreportrequest.v3+json",
    "reports_response": "application/vnd.getasyncreportresponse.v3+json",
}


class ApiClient:
    """Base HTTP client with retry and auth handling."""

    def __init__(
        self,
        base_url: str,
        auth: AuthManager,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        verbose: bool = False,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._auth = auth
        self._max_retries = max_retries
        self._retry_delay = retry_delay
        self._verbose = verbose
        self._http = httpx.Client(timeout=60.0)

    def request(
        self,
        method: str,
        path: str,
        *,
        body: dict[str, Any] | list | None = None,
        content_type: str | None = None,
        accept: str | None = None,
        extra_headers: dict[str, str] | None = None,
        params: dict[str, Any] | None = None,
    ) -> httpx.Response:
        """Make an authenticated API request with retry logic.

        Args:
            method: HTTP method (GET, POST, PUT, DELETE).
            path: API path, appended to the client's base URL.
            body: JSON request body.
            content_type: Override Content-Type header.
            accept: Override Accept header.
            extra_headers: Additional headers to include.
            params: Query parameters.

        Returns:
            The httpx.Response object.

        Raises:
            ApiError: On a non-retryable error or when all retries are exhausted.
        """
        url = self._base_url + path

        for attempt in range(1, self._max_retries + 1):
            headers = self._build_headers(content_type, accept, extra_headers)

            if self._verbose:
                logger.info(f"[Attempt {attempt}/{self._max_retries}] {method} {url}")

            try:
                response = self._http.request(
                    method=method,
                    url=url,
                    headers=headers,
                    json=body,
                    params=params,
                )
            except httpx.HTTPError as e:
                if attempt == self._max_retries:
                    raise ApiError(f"Request failed after {self._max_retries} attempts: {e}")
                wait = self._backoff(attempt)
                logger.warning(f"HTTP error: {e}. Retrying in {wait:.1f}s...")
                time.sleep(wait)
                continue

            # 401: refresh token and retry
            if response.status_code == 401 and attempt < self._max_retries:
                logger.warning("Got 401, refreshing token and retrying...")
                self._auth.get_access_token(force_refresh=True)
                time.sleep(self._retry_delay)
                continue

            # 429: rate limited, exponential backoff
            if response.status_code == 429 and attempt < self._max_retries:
                wait = self._backoff(attempt)
                logger.warning(f"Rate limited (429). Waiting {wait:.1f}s...")
                time.sleep(wait)
                continue

            # 5xx: server error, exponential backoff
            if 500 <= response.status_code < 600 and attempt < self._max_retries:
                wait = self._backoff(attempt)
                logger.warning(f"Server error ({response.status_code}). Waiting {wait:.1f}s...")
                time.sleep(wait)
                continue

            if response.status_code >= 400:
                raise ApiError(
                    f"API error (HTTP {response.status_code}): {_error_detail(response)}",
                    status_code=response.status_code,
                )

            return response

        raise ApiError(f"Request to {url} failed after {self._max_retries} attempts")

    def get(self, path: str, **kwargs: Any) -> httpx.Response:
        """Convenience method for GET requests."""
        return self.request("GET", path, **kwargs)

    def post(self, path: str, **kwargs: Any) -> httpx.Response:
        """Convenience method for POST requests."""
        return self.request("POST", path, **kwargs)

    def download(self, url: str) -> bytes:
        """Fetch a pre-signed artifact URL (no auth headers) and return its bytes."""
        response = self._http.get(url, timeout=120.0)
        response.raise_for_status()
        return response.content

    def _build_headers(
        self,
        content_type: str | None = None,
        accept: str | None = None,
        extra_headers: dict[str, str] | None = None,
    ) -> dict[str, str]:
        headers = self._auth_headers()
        headers["Content-Type"] = content_type or "application/json"
        if accept:
            headers["Accept"] = accept
        if extra_headers:
            headers.update(extra_headers)
        return headers

    def _auth_headers(self) -> dict[str, str]:
        raise NotImplementedError

    def _backoff(self, attempt: int) -> float:
        """Calculate exponential backoff delay."""
        return self._retry_delay * (2 ** (attempt - 1))

    def close(self) -> None:
        """Close the underlying HTTP client."""
        self._http.close()
        self._auth.close()


class AdsApiClient(ApiClient):
    """Client for the Amazon Advertising API, scoped to one advertising profile."""

    def __init__(self, base_url: str, auth: AuthManager, profile_id: str = "", **kwargs: Any) -> None:
        super().__init__(base_url, auth, **kwargs)
        self.profile_id = profile_id

    def _auth_headers(self) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self._auth.get_access_token()}",
            "Amazon-Advertising-API-ClientId": self._auth.client_id,
        }
        if self.profile_id:
            headers["Amazon-Advertising-API-Scope"] = str(self.profile_id)
        return headers


class SellingPartnerClient(ApiClient):
    """Client for the Selling Partner API."""

    def _auth_headers(self) -> dict[str, str]:
        return {"x-amz-access-token": self._auth.get_access_token()}


def _error_detail(response: httpx.Response) -> str:
    """Best-effort error message from an API error response."""
    try:
        data = response.json()
    except ValueError:
        return response.text
    if isinstance(data, dict):
        if data.get("errors"):
            first = data["errors"][0]
            return first.get("message", str(first))
        return data.get("message", data.get("details", response.text))
    return response.text
