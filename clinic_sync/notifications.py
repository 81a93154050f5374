"""Notification feed kept fresh by a fixed-interval poller."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from . import config
from .errors import StoreError
from .models import Notification, NotificationPage
from .poller import Poller, PollingOptions, monotonic_ms

log = logging.getLogger(__name__)


class NotificationFeed:
    def __init__(
        self,
        store,
        *,
        interval_ms: int | None = None,
        limit: int | None = None,
        max_retries: int | None = None,
        guard: Callable[[], bool] | None = None,
        clock: Callable[[], float] = monotonic_ms,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._store = store
        self.limit = config.NOTIFICATION_LIMIT if limit is None else limit
        interval = config.NOTIFICATION_INTERVAL_MS if interval_ms is None else interval_ms
        if max_retries is None:
            max_retries = config.POLL_MAX_RETRIES
        # Same interval in both modes: the feed does not speed up on activity.
        options = PollingOptions(
            intensive_interval_ms=interval,
            normal_interval_ms=interval,
            max_retries=max_retries,
        )
        self.notifications: list[Notification] = []
        self.unread_count = 0
        self.poller = Poller(
            self._fetch,
            self._apply,
            options=options,
            guard=guard,
            clock=clock,
            sleep=sleep,
            name="notifications",
        )

    def start(self) -> None:
        self.poller.start()

    async def stop(self) -> None:
        await self.poller.stop()

    def refresh(self) -> None:
        """Revive the feed after a disconnect or a fresh login."""
        self.poller.touch()
        self.poller.start()

    async def mark_read(self, notification_id: str) -> bool:
        """Mark one notification read. Returns False if it is not in the feed."""
        target = next((n for n in self.notifications if n.id == notification_id), None)
        if target is None:
            return False
        if not target.is_read:
            self.notifications = [
                n.model_copy(update={"is_read": True}) if n.id == notification_id else n
                for n in self.notifications
            ]
            self.unread_count = max(0, self.unread_count - 1)
        try:
            await asyncio.to_thread(self._store.mark_notification_read, notification_id)
        except StoreError as exc:
            log.warning("Marking notification %s read failed: %s", notification_id, exc)
        return True

    async def mark_all_read(self) -> None:
        self.notifications = [n.model_copy(update={"is_read": True}) for n in self.notifications]
        self.unread_count = 0
        try:
            await asyncio.to_thread(self._store.mark_all_notifications_read)
        except StoreError as exc:
            log.warning("Marking all notifications read failed: %s", exc)

    def snapshot(self) -> dict[str, Any]:
        return {
            "notifications": [n.model_dump(mode="json") for n in self.notifications],
            "count": len(self.notifications),
            "unread_count": self.unread_count,
            "connected": self.poller.connected,
        }

    async def _fetch(self) -> NotificationPage:
        return await asyncio.to_thread(
            self._store.fetch_notifications, include_read=False, limit=self.limit
        )

    async def _apply(self, page: NotificationPage) -> None:
        if page.unread_count > self.unread_count:
            log.info("%d new notification(s)", page.unread_count - self.unread_count)
        self.notifications = page.notifications
        self.unread_count = page.unread_count
