"""LINE Messaging API client (reply and push).

Only transport: no retries, no classification. Non-2xx responses raise
ProviderHTTPError; network failures propagate as requests.RequestException.
Security: NEVER log tokens, recipients or message text.
"""

from __future__ import annotations

import uuid
from typing import Any

import requests

REPLY_PATH = "/v2/bot/message/reply"
PUSH_PATH = "/v2/bot/message/push"

DEFAULT_BASE_URL = "https://api.line.me"
DEFAULT_TIMEOUT = 5


class ProviderHTTPError(Exception):
    """Provider answered with a non-2xx status."""

    def __init__(self, status_code: int, message: str = "", retry_after: float | None = None) -> None:
        super().__init__(f"provider returned {status_code}: {message}")
        self.status_code = status_code
        self.message = message
        self.retry_after = retry_after


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


def _error_message(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return ""
    if isinstance(body, dict):
        message = body.get("message")
        return message if isinstance(message, str) else ""
    return ""


class LineMessagingApi:
    """Thin requests-based client for the send endpoints."""

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT,
        session: requests.Session | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._session = session or requests.Session()

    def _post(self, path: str, body: dict[str, Any], access_token: str, retry_key: str | None = None) -> None:
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {access_token}",
        }
        if retry_key:
            headers["X-Line-Retry-Key"] = retry_key

        response = self._session.post(
            f"{self._base_url}{path}",
            json=body,
            headers=headers,
            timeout=self._timeout,
        )
        if response.status_code >= 300:
            raise ProviderHTTPError(
                response.status_code,
                _error_message(response),
                _parse_retry_after(response.headers.get("Retry-After")),
            )

    def reply(self, reply_token: str, payloads: list[dict[str, Any]], access_token: str) -> None:
        """Send messages as the reply to an event."""
        self._post(REPLY_PATH, {"replyToken": reply_token, "messages": payloads}, access_token)

    def push(
        self,
        to: str,
        payloads: list[dict[str, Any]],
        access_token: str,
        retry_key: str | None = None,
    ) -> None:
        """Send messages to a user, group or room id.

        retry_key makes provider-side deduplication of retried pushes possible;
        callers reuse the same key for every attempt of one logical push.
        """
        self._post(PUSH_PATH, {"to": to, "messages": payloads}, access_token, retry_key)


def new_retry_key() -> str:
    return str(uuid.uuid4())
