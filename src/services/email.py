"""Outbound e-mail delivery over an HTTP mail API."""

from __future__ import annotations

import logging
from typing import Protocol

import httpx

from autopilot_shared.errors import DependencyFailure, codes
from config import settings

logger = logging.getLogger(__name__)


class EmailSender(Protocol):
    """Contract for sending a single HTML e-mail."""

    def send_email(self, address: str, subject: str, html_body: str) -> None:
        """Deliver one message or raise on failure."""


class HttpEmailSender:
    """Send e-mail by POSTing JSON to a configured mail API endpoint."""

    def __init__(
        self,
        *,
        api_url: str | None = None,
        api_key: str | None = None,
        from_address: str | None = None,
        timeout: float | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        self._api_url = api_url or settings.notifications.email_api_url
        self._api_key = api_key or settings.notifications.email_api_key
        self._from_address = from_address or settings.notifications.from_address
        self._timeout = timeout or settings.notifications.timeout_seconds
        self._client = client

    def send_email(self, address: str, subject: str, html_body: str) -> None:
        """Deliver a message, raising DependencyFailure on transport errors."""
        if not self._api_url:
            raise DependencyFailure(
                "E-mail API URL is not configured.",
                code=codes.DEPENDENCY_UNAVAILABLE,
            )
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        payload = {
            "from": self._from_address,
            "to": address,
            "subject": subject,
            "html": html_body,
        }
        try:
            if self._client is not None:
                response = self._client.post(
                    self._api_url, json=payload, headers=headers, timeout=self._timeout
                )
            else:
                with httpx.Client(timeout=self._timeout) as client:
                    response = client.post(self._api_url, json=payload, headers=headers)
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            logger.warning("E-mail delivery timed out: subject=%s", subject)
            raise DependencyFailure(
                "E-mail delivery timed out.", code=codes.DEPENDENCY_TIMEOUT
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning("E-mail delivery failed: subject=%s error=%s", subject, exc)
            raise DependencyFailure("E-mail delivery failed.") from exc
        logger.info("E-mail delivered: subject=%s", subject)
