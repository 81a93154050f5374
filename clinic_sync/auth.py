"""Doctor login against the clinic backend.

Handles:
  - Exchanging email/password for the backend's bearer token
  - Persisting the token and doctor id in SQLite
  - Holding the current identity for the store client and the pollers

The token is opaque here; the backend signs and verifies it.
"""

from __future__ import annotations

import logging
from typing import Any

import requests

from .errors import AuthorizationError, MalformedResponseError, StoreError

log = logging.getLogger(__name__)


class AuthContext:
    """Current doctor identity. Shared by reference, so a login or logout is
    seen immediately by every component holding it."""

    def __init__(self, user_id: str | None = None, token: str | None = None):
        self.user_id = user_id
        self.token = token

    @property
    def is_authenticated(self) -> bool:
        return bool(self.user_id and self.token)

    def set(self, user_id: str, token: str) -> None:
        self.user_id = user_id
        self.token = token

    def clear(self) -> None:
        self.user_id = None
        self.token = None

    def headers(self) -> dict[str, str]:
        if not self.token:
            raise AuthorizationError("Not authenticated. Log in via /auth/login first.")
        return {"Authorization": f"Bearer {self.token}"}


def login(
    base_url: str,
    email: str,
    password: str,
    *,
    session: requests.Session | None = None,
    timeout: float | None = None,
) -> dict[str, str]:
    """Log in as a doctor. Returns a dict with token and user_id."""
    http = session or requests.Session()
    try:
        resp = http.post(
            f"{base_url}/api/auth/login",
            json={"email": email, "password": password},
            timeout=timeout,
        )
    except requests.RequestException as exc:
        raise StoreError(f"Login request failed: {exc}") from exc

    if resp.status_code in (400, 401, 403):
        raise AuthorizationError("Invalid credentials")
    if not resp.ok:
        raise StoreError(f"Login failed with HTTP {resp.status_code}")

    try:
        data: dict[str, Any] = resp.json()
        token = data["token"]
        user_id = data["user"]["id"]
    except (ValueError, KeyError, TypeError) as exc:
        raise MalformedResponseError(f"Unexpected login response: {exc}") from exc
    if not token or not user_id:
        raise MalformedResponseError("Login response is missing the token or user id")
    return {"token": str(token), "user_id": str(user_id)}


def save_credentials(db, creds: dict[str, str]) -> None:
    db.put("auth", token=creds["token"], user_id=creds["user_id"])


def forget_credentials(db) -> None:
    db.clear("auth")


def load_auth_context(db) -> AuthContext:
    """Build the auth context from stored credentials.

    Returns an unauthenticated context if nothing is stored.
    """
    token = db.get("auth", "token")
    user_id = db.get("auth", "user_id")
    if token and user_id:
        log.info("Loaded stored credentials for doctor %s", user_id)
        return AuthContext(user_id=user_id, token=token)
    return AuthContext()
