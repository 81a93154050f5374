from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest

from clinic_sync.models import ConversationSummary, Message, Notification, NotificationPage
from clinic_sync.poller import PollingOptions

ME = "doc-me"
PEER = "doc-peer"


def ts(ms: int) -> datetime:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)


def make_message(
    id: str,
    t: int,
    *,
    sender: str = PEER,
    receiver: str = ME,
    body: str = "hello",
    read: bool = False,
) -> Message:
    return Message(
        id=id, sender_id=sender, receiver_id=receiver, body=body, created_at=ts(t), is_read=read
    )


def make_notification(id: str, *, read: bool = False) -> Notification:
    return Notification(
        id=id, type="appointment", title=f"Notice {id}", message="Check this", created_at=ts(1000),
        is_read=read,
    )


OPTIONS = PollingOptions(
    intensive_interval_ms=1000, normal_interval_ms=5000, idle_timeout_ms=30000, max_retries=3
)


class FakeClock:
    """Virtual milliseconds clock whose sleep advances time instantly."""

    def __init__(self, now: float = 0.0):
        self.now = now
        self.sleeps: list[float] = []
        self.on_sleep = None

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds * 1000
        if self.on_sleep:
            self.on_sleep()
        await asyncio.sleep(0)


class FakeStore:
    """In-memory stand-in for MessageStore, same synchronous interface."""

    base_url = "http://store.test"
    timeout = None
    http = None

    def __init__(self, user_id: str = ME):
        self.user_id = user_id
        self.messages: list[Message] = []
        self.fetch_calls: list[tuple[str, datetime | None]] = []
        self.fetch_errors: list[Exception] = []
        self.mark_read_calls: list[str] = []
        self.mark_read_error: Exception | None = None
        self.sent: list[tuple[str, str]] = []
        self.send_error: Exception | None = None
        self.summaries: list[ConversationSummary] = []
        self.notifications: list[Notification] = []
        self.notification_calls: list[str] = []
        self.notification_error: Exception | None = None

    def fetch_messages(self, counterpart_id, since=None):
        self.fetch_calls.append((counterpart_id, since))
        if self.fetch_errors:
            raise self.fetch_errors.pop(0)
        pair = {self.user_id, counterpart_id}
        return [
            m
            for m in sorted(self.messages, key=lambda m: m.created_at)
            if {m.sender_id, m.receiver_id} == pair and (since is None or m.created_at > since)
        ]

    def send_message(self, receiver_id, body):
        if self.send_error:
            raise self.send_error
        self.sent.append((receiver_id, body))
        return make_message(
            f"sent-{len(self.sent)}", 10_000, sender=self.user_id, receiver=receiver_id, body=body
        )

    def mark_read(self, counterpart_id):
        self.mark_read_calls.append(counterpart_id)
        if self.mark_read_error:
            raise self.mark_read_error
        self.messages = [
            m.model_copy(update={"is_read": True})
            if m.sender_id == counterpart_id and m.receiver_id == self.user_id
            else m
            for m in self.messages
        ]

    def list_conversations(self):
        return list(self.summaries)

    def fetch_notifications(self, *, include_read=False, limit=10):
        items = [n for n in self.notifications if include_read or not n.is_read][:limit]
        return NotificationPage(
            notifications=items,
            count=len(items),
            unread_count=sum(1 for n in self.notifications if not n.is_read),
        )

    def mark_notification_read(self, notification_id):
        self.notification_calls.append(notification_id)
        if self.notification_error:
            raise self.notification_error

    def mark_all_notifications_read(self):
        self.notification_calls.append("*")
        if self.notification_error:
            raise self.notification_error


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()
