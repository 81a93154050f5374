"""Clinic backend (message store) client.

Thin synchronous layer over the backend's REST API using a ``requests``
session and the doctor's bearer token. Every payload is validated against
the models in ``models.py``; anything else becomes a ``StoreError``.
Callers on the event loop run these methods via ``asyncio.to_thread``.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

import requests
from pydantic import TypeAdapter, ValidationError

from .auth import AuthContext
from .errors import AuthorizationError, MalformedResponseError, StoreError
from .models import ConversationSummary, Message, NotificationPage

log = logging.getLogger(__name__)

_messages = TypeAdapter(list[Message])
_summaries = TypeAdapter(list[ConversationSummary])


def format_timestamp(ts: datetime) -> str:
    """ISO-8601 in UTC with millisecond precision, as the backend writes it."""
    return ts.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


class MessageStore:
    """Client for the doctor-messages and notifications endpoints."""

    def __init__(
        self,
        base_url: str,
        auth: AuthContext,
        *,
        timeout: float | None = None,
        session: requests.Session | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.auth = auth
        self.timeout = timeout
        self.http = session or requests.Session()

    def close(self) -> None:
        self.http.close()

    # -- messages --

    def fetch_messages(
        self, counterpart_id: str, since: datetime | None = None
    ) -> list[Message]:
        """Messages between the current doctor and ``counterpart_id``.

        With ``since``, only messages created strictly after it (delta fetch).
        Returned oldest first.
        """
        params: dict[str, str] = {"with": counterpart_id}
        if since:
            params["since"] = format_timestamp(since)
            params["polling"] = "true"
        data = self._request("GET", "/api/doctor-messages", params=params)
        return _validate(_messages, _field(data, "messages"), "messages")

    def send_message(self, receiver_id: str, body: str) -> Message:
        """Send ``body`` to ``receiver_id``. Returns the stored message."""
        sent_at = datetime.now(timezone.utc)
        data = self._request(
            "POST",
            "/api/doctor-messages",
            json={"receiverId": receiver_id, "message": body},
        )
        message_id = data.get("messageId")
        if not message_id:
            raise MalformedResponseError("Send response carries no messageId")
        return _validate(
            Message,
            {
                "_id": str(message_id),
                "senderId": self.auth.user_id,
                "receiverId": receiver_id,
                "message": body,
                "createdAt": data.get("createdAt") or sent_at,
                "isRead": False,
            },
            "sent message",
        )

    def mark_read(self, counterpart_id: str) -> None:
        """Flip the read flag on everything ``counterpart_id`` sent us."""
        self._request("PUT", "/api/doctor-messages", json={"senderId": counterpart_id})

    def list_conversations(self) -> list[ConversationSummary]:
        """Latest message and unread count per counterpart."""
        data = self._request("GET", "/api/doctor-messages")
        return _validate(_summaries, _field(data, "messages"), "conversations")

    # -- notifications --

    def fetch_notifications(
        self, *, include_read: bool = False, limit: int = 10
    ) -> NotificationPage:
        params = {"limit": str(limit)}
        if include_read:
            params["includeRead"] = "true"
        data = self._request("GET", "/api/notifications", params=params)
        return _validate(NotificationPage, data, "notifications")

    def mark_notification_read(self, notification_id: str) -> None:
        self._request("POST", "/api/notifications", json={"notificationId": notification_id})

    def mark_all_notifications_read(self) -> None:
        self._request("PUT", "/api/notifications")

    # -- internals --

    def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        headers = self.auth.headers()
        try:
            resp = self.http.request(
                method,
                f"{self.base_url}{path}",
                headers=headers,
                timeout=self.timeout,
                **kwargs,
            )
        except requests.RequestException as exc:
            raise StoreError(f"{method} {path} failed: {exc}") from exc

        if resp.status_code in (401, 403):
            raise AuthorizationError(f"{method} {path} rejected with HTTP {resp.status_code}")
        if not resp.ok:
            raise StoreError(f"{method} {path} returned HTTP {resp.status_code}")

        try:
            data = resp.json()
        except ValueError as exc:
            raise MalformedResponseError(f"{method} {path} returned non-JSON body") from exc
        if not isinstance(data, dict):
            raise MalformedResponseError(f"{method} {path} returned {type(data).__name__}")
        if data.get("success") is False:
            raise MalformedResponseError(
                f"{method} {path} reported failure: {data.get('message', 'no reason')}"
            )
        return data


def _validate(schema, payload: Any, what: str):
    try:
        if isinstance(schema, TypeAdapter):
            return schema.validate_python(payload)
        return schema.model_validate(payload)
    except ValidationError as exc:
        log.debug("Rejected %s payload: %s", what, payload)
        raise MalformedResponseError(f"Malformed {what}: {exc.error_count()} error(s)") from exc


def _field(data: dict[str, Any], key: str) -> Any:
    if key not in data:
        raise MalformedResponseError(f"Response has no {key!r} field")
    return data[key]
