"""Login with Amazon (LWA) token handling.

Both the Selling Partner API and the Advertising API authenticate with an
access token minted from a long-lived refresh token. One AuthManager is
created per credential set.
"""

from __future__ import annotations

from datetime import datetime, timedelta

import httpx
from pydantic import BaseModel

from amazon_brain.utils.errors import ApiError, ConfigError


# Refresh this long before the token actually expires
EXPIRY_BUFFER = timedelta(minutes=5)


class TokenResponse(BaseModel):
    """Response from the LWA token endpoint."""
    access_token: str
    token_type: str = "bearer"
    expires_in: int = 3600


class AuthManager:
    """Caches and refreshes an LWA access token for one credential set."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        refresh_token: str,
        token_url: str,
    ) -> None:
        self.client_id = client_id
        self._client_secret = client_secret
        self._refresh_token_value = refresh_token
        self._token_url = token_url
        self._access_token: str | None = None
        self._token_expiry: datetime | None = None
        self._http = httpx.Client(timeout=30.0)

    def get_access_token(self, force_refresh: bool = False) -> str:
        """Get a valid access token, refreshing if needed."""
        if not force_refresh and self._is_token_valid():
            return self._access_token  # type: ignore[return-value]

        self._refresh_token()
        return self._access_token  # type: ignore[return-value]

    def _is_token_valid(self) -> bool:
        """Check if the current token is valid with a safety buffer."""
        if not self._access_token or not self._token_expiry:
            return False
        return datetime.now() + EXPIRY_BUFFER < self._token_expiry

    def _refresh_token(self) -> None:
        """Exchange the refresh token for a new access token."""
        if not self._refresh_token_value:
            raise ConfigError("Missing credentials: no refresh token configured")

        response = self._http.post(
            self._token_url,
            data={
                "grant_type": "refresh_token",
                "refresh_token": self._refresh_token_value,
                "client_id": self.client_id,
                "client_secret": self._client_secret,
            },
        )

        if response.status_code != 200:
            error_detail = response.text
            try:
                error_detail = response.json().get("error_description", response.text)
            except ValueError:
                pass
            raise ApiError(
                f"Token refresh failed (HTTP {response.status_code}): {error_detail}",
                status_code=response.status_code,
            )

        token_data = TokenResponse(**response.json())
        self._access_token = token_data.access_token
        self._token_expiry = datetime.now() + timedelta(seconds=token_data.expires_in)

    def close(self) -> None:
        """Close the underlying HTTP client."""
        self._http.close()
