"""FastAPI route handlers for the sidecar REST API."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from .auth import forget_credentials, login, save_credentials
from .conversation import ConversationSession
from .errors import AuthorizationError, StoreError

log = logging.getLogger(__name__)

router = APIRouter()


# ---------- Pydantic models ----------

class LoginBody(BaseModel):
    email: str
    password: str


class SendBody(BaseModel):
    body: str = Field(min_length=1)


# ---------- Auth ----------

@router.post("/auth/login")
async def auth_login(request: Request, body: LoginBody) -> dict[str, Any]:
    state = request.app.state
    try:
        creds = login(
            state.store.base_url,
            body.email,
            body.password,
            session=state.store.http,
            timeout=state.store.timeout,
        )
    except AuthorizationError as exc:
        raise HTTPException(status_code=401, detail=str(exc))
    except StoreError as exc:
        log.exception("Login failed")
        raise HTTPException(status_code=503, detail=str(exc))

    save_credentials(state.db, creds)
    state.auth.set(creds["user_id"], creds["token"])
    state.inbox.resume()
    state.feed.refresh()
    return {"status": "authenticated", "user_id": creds["user_id"]}


@router.post("/auth/logout")
async def auth_logout(request: Request) -> dict[str, str]:
    state = request.app.state
    await state.inbox.close_all()
    state.feed.poller.cancel()
    forget_credentials(state.db)
    state.auth.clear()
    return {"status": "logged_out"}


# ---------- Conversations ----------

@router.get("/conversations")
async def list_conversations(request: Request) -> list[dict[str, Any]]:
    _require_auth(request)
    try:
        return await request.app.state.inbox.list_conversations()
    except StoreError as exc:
        raise HTTPException(status_code=503, detail=str(exc))


@router.post("/conversations/{counterpart_id}/open")
async def open_conversation(request: Request, counterpart_id: str) -> dict[str, Any]:
    _require_auth(request)
    session = request.app.state.inbox.open(counterpart_id)
    return session.status()


@router.post("/conversations/{counterpart_id}/close")
async def close_conversation(request: Request, counterpart_id: str) -> dict[str, str]:
    request.app.state.inbox.close(counterpart_id)
    return {"status": "closed"}


@router.get("/conversations/{counterpart_id}/messages")
async def get_messages(request: Request, counterpart_id: str) -> dict[str, Any]:
    session = _session(request, counterpart_id)
    return {
        "messages": [m.model_dump(mode="json") for m in session.messages],
        "unread_count": session.unread_count,
        "connected": session.poller.connected,
    }


@router.post("/conversations/{counterpart_id}/messages")
async def send_message(request: Request, counterpart_id: str, body: SendBody) -> dict[str, Any]:
    session = _session(request, counterpart_id)
    text = body.body.strip()
    if not text:
        raise HTTPException(status_code=422, detail="Message body is empty")
    try:
        msg = await session.send(text)
    except StoreError as exc:
        log.warning("Sending to %s failed: %s", counterpart_id, exc)
        raise HTTPException(status_code=503, detail=str(exc))
    return {"status": "sent", "message": msg.model_dump(mode="json")}


@router.post("/conversations/{counterpart_id}/activity")
async def mark_activity(request: Request, counterpart_id: str) -> dict[str, Any]:
    session = _session(request, counterpart_id)
    session.mark_activity()
    return session.poller.polling_status()


@router.post("/conversations/{counterpart_id}/mark-read")
async def mark_read(request: Request, counterpart_id: str) -> dict[str, Any]:
    session = _session(request, counterpart_id)
    await session.mark_read()
    return {"unread_count": session.unread_count}


@router.get("/conversations/{counterpart_id}/polling")
async def polling_status(request: Request, counterpart_id: str) -> dict[str, Any]:
    return _session(request, counterpart_id).status()


# ---------- Notifications ----------

@router.get("/notifications")
async def get_notifications(request: Request) -> dict[str, Any]:
    return request.app.state.feed.snapshot()


@router.post("/notifications/read-all")
async def mark_all_notifications_read(request: Request) -> dict[str, int]:
    feed = request.app.state.feed
    await feed.mark_all_read()
    return {"unread_count": feed.unread_count}


@router.post("/notifications/{notification_id}/read")
async def mark_notification_read(request: Request, notification_id: str) -> dict[str, int]:
    feed = request.app.state.feed
    if not await feed.mark_read(notification_id):
        raise HTTPException(status_code=404, detail="Unknown notification")
    return {"unread_count": feed.unread_count}


# ---------- Status ----------

@router.get("/status")
async def status(request: Request) -> dict[str, Any]:
    state = request.app.state
    inbox_status = state.inbox.status()
    unread = inbox_status["unread"]
    return {
        "authenticated": state.auth.is_authenticated,
        "user_id": state.auth.user_id,
        "disconnected": not (inbox_status["connected"] and state.feed.poller.connected),
        "last_poll_at": state.db.last_poll_at,
        "unread_messages": sum(unread.values()),
        "unread_notifications": state.feed.unread_count,
        "conversations": inbox_status["open_conversations"],
    }


# ---------- Internal helpers ----------

def _require_auth(request: Request) -> None:
    if not request.app.state.auth.is_authenticated:
        raise HTTPException(status_code=401, detail="Not authenticated")


def _session(request: Request, counterpart_id: str) -> ConversationSession:
    try:
        return request.app.state.inbox.get(counterpart_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Conversation is not open")
