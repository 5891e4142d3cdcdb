"""Email notifications through the Resend HTTP API."""

from __future__ import annotations

import logging

import httpx

logger = logging.getLogger(__name__)

RESEND_URL = "https://api.resend.com/emails"


class EmailNotifier:
    """Sends plain-text email. Without an API key every send is skipped."""

    def __init__(self, api_key: str, sender: str, http: httpx.Client | None = None) -> None:
        self._api_key = api_key
        self._sender = sender
        self._http = http or httpx.Client(timeout=30.0)

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    def send(self, subject: str, recipients: list[str], body: str) -> bool:
        """Send one message; returns False when skipped or rejected."""
        if not self.configured:
            logger.info("Email not configured (RESEND_API_KEY unset), skipping send")
            return False
        if not recipients:
            logger.info("No recipients configured (EMAIL_TO unset), skipping send")
            return False

        try:
            response = self._http.post(
                RESEND_URL,
                headers={"Authorization": f"Bearer {self._api_key}"},
                json={"from": self._sender, "to": recipients, "subject": subject, "text": body},
            )
        except httpx.HTTPError as e:
            logger.error(f"Failed to send email: {e}")
            return False

        if response.status_code >= 400:
            logger.error(f"Failed to send email (HTTP {response.status_code}): {response.text}")
            return False
        return True

    def close(self) -> None:
        self._http.close()
