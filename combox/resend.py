"""E-mail delivery through the Resend HTTP API."""

from __future__ import annotations

import json

import httpx

DEFAULT_BASE_URL = "https://api.resend.com"


class ResendError(Exception):
    """Raised on invalid configuration or a failed delivery."""


class ResendSender:
    """Send transactional e-mail through Resend."""

    def __init__(
        self,
        api_key: str,
        from_address: str,
        base_url: str | None = None,
        timeout: float = 10.0,
    ) -> None:
        if not api_key.strip():
            raise ResendError("resend api key is required")
        if not from_address.strip():
            raise ResendError("resend from is required")
        base = (base_url or "").strip() or DEFAULT_BASE_URL
        self._api_key = api_key
        self.from_address = from_address
        self.base_url = base.rstrip("/")
        self._http = httpx.Client(timeout=timeout)

    def send(self, to: str, subject: str, html: str, text: str) -> None:
        """Deliver one message; raise ResendError on a non-2xx response."""
        payload = {
            "from": self.from_address,
            "to": [to],
            "subject": subject,
            "html": html,
            "text": text,
        }
        response = self._http.post(
            f"{self.base_url}/emails",
            content=json.dumps(payload, ensure_ascii=False).encode("utf-8"),
            headers={
                "Authorization": f"Bearer {self._api_key}",
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
        )
        if not 200 <= response.status_code < 300:
            raise ResendError(f"resend returned status {response.status_code}")

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> ResendSender:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()