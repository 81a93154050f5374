"""One open conversation: its local messages, unread counter and poller."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable

from .models import Message
from .poller import Poller, PollingOptions, monotonic_ms
from .read_state import ReadStateSynchronizer
from .reconcile import merge_messages

log = logging.getLogger(__name__)


class ConversationSession:
    """Keeps a conversation with ``counterpart_id`` in sync while it is open.

    ``messages`` is always replaced wholesale, never mutated in place, so a
    reader never sees a half-applied merge.
    """

    def __init__(
        self,
        store,
        current_user_id: str,
        counterpart_id: str,
        *,
        options: PollingOptions | None = None,
        guard: Callable[[], bool] | None = None,
        clock: Callable[[], float] = monotonic_ms,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        on_synced: Callable[[], None] | None = None,
    ):
        self._store = store
        self.current_user_id = current_user_id
        self.counterpart_id = counterpart_id
        self.messages: list[Message] = []
        self.read_state = ReadStateSynchronizer(store, current_user_id)
        self._cursor: datetime | None = None
        self._open = False
        self._auth_guard = guard or (lambda: True)
        self._on_synced = on_synced
        self.poller = Poller(
            self._fetch_delta,
            self._apply,
            options=options,
            guard=self._should_poll,
            clock=clock,
            sleep=sleep,
            name=f"conversation:{counterpart_id}",
        )

    @property
    def is_open(self) -> bool:
        return self._open

    @property
    def unread_count(self) -> int:
        return self.read_state.counter.get(self.counterpart_id)

    @property
    def cursor(self) -> datetime | None:
        return self._cursor

    def open(self) -> None:
        """Select the conversation: counts as activity and starts polling."""
        self._open = True
        self.poller.touch()
        self.poller.start()

    def close(self) -> None:
        self._open = False
        self.poller.cancel()

    def mark_activity(self) -> None:
        self.poller.touch()

    async def send(self, body: str) -> Message:
        """Send a message. It shows up locally once a poll returns it."""
        self.mark_activity()
        return await asyncio.to_thread(self._store.send_message, self.counterpart_id, body)

    async def mark_read(self) -> None:
        # A poll can merge while the push is pending, so the returned list
        # may be stale; the flip is published up front instead.
        await self.read_state.mark_conversation_read(
            self.counterpart_id, self.messages, publish=self._replace_messages
        )

    def _replace_messages(self, messages: list[Message]) -> None:
        self.messages = messages

    def status(self) -> dict[str, Any]:
        return {
            "counterpart_id": self.counterpart_id,
            "open": self._open,
            "message_count": len(self.messages),
            "unread_count": self.unread_count,
            "last_message_at": self._cursor.isoformat() if self._cursor else None,
            **self.poller.polling_status(),
        }

    def _should_poll(self) -> bool:
        return self._open and self._auth_guard()

    async def _fetch_delta(self) -> list[Message]:
        return await asyncio.to_thread(
            self._store.fetch_messages, self.counterpart_id, self._cursor
        )

    async def _apply(self, incoming: list[Message]) -> None:
        if incoming:
            newest = max(m.created_at for m in incoming)
            if self._cursor is None or newest > self._cursor:
                self._cursor = newest
            log.info(
                "conversation:%s: fetched %d message(s)", self.counterpart_id, len(incoming)
            )
        self.messages = merge_messages(self.messages, incoming)

        if any(
            m.sender_id == self.counterpart_id and self.read_state.is_unread_for_me(m)
            for m in self.messages
        ):
            await self.mark_read()

        self.read_state.recompute(self.messages)
        if self._on_synced:
            self._on_synced()
