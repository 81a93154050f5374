"""Read flags and unread counters for conversations."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Iterable

from .errors import StoreError
from .models import Message

log = logging.getLogger(__name__)


class UnreadCounter:
    """Unread messages addressed to the current doctor, per counterpart."""

    def __init__(self, counts: dict[str, int] | None = None):
        self._counts = {k: v for k, v in (counts or {}).items() if v > 0}

    def get(self, counterpart_id: str) -> int:
        return self._counts.get(counterpart_id, 0)

    def reset(self, counterpart_id: str) -> None:
        self._counts.pop(counterpart_id, None)

    @property
    def total(self) -> int:
        return sum(self._counts.values())

    def as_dict(self) -> dict[str, int]:
        return dict(self._counts)


class ReadStateSynchronizer:
    """Marks conversations read locally and in the store."""

    def __init__(self, store, current_user_id: str):
        self._store = store
        self.current_user_id = current_user_id
        self.counter = UnreadCounter()

    def is_unread_for_me(self, msg: Message) -> bool:
        return msg.receiver_id == self.current_user_id and not msg.is_read

    def recompute(self, messages: Iterable[Message]) -> UnreadCounter:
        counts: dict[str, int] = {}
        for msg in messages:
            if self.is_unread_for_me(msg):
                counts[msg.sender_id] = counts.get(msg.sender_id, 0) + 1
        self.counter = UnreadCounter(counts)
        return self.counter

    def mark_local(self, counterpart_id: str, messages: Iterable[Message]) -> list[Message]:
        """Return ``messages`` with everything ``counterpart_id`` sent us
        flagged read, and zero that counterpart's counter."""
        updated = [
            m.model_copy(update={"is_read": True})
            if m.sender_id == counterpart_id and self.is_unread_for_me(m)
            else m
            for m in messages
        ]
        self.counter.reset(counterpart_id)
        return updated

    async def push(self, counterpart_id: str) -> bool:
        """Persist the read flags. A failure is logged and left for the next
        fetch to reconcile; the local state is not rolled back."""
        try:
            await asyncio.to_thread(self._store.mark_read, counterpart_id)
        except StoreError as exc:
            log.warning("Marking conversation with %s read failed: %s", counterpart_id, exc)
            return False
        return True

    async def mark_conversation_read(
        self,
        counterpart_id: str,
        messages: Iterable[Message],
        publish: Callable[[list[Message]], None] | None = None,
    ) -> list[Message]:
        """Mark locally, then push. ``publish`` receives the flipped list
        before the store call, so readers see it while the push is pending."""
        updated = self.mark_local(counterpart_id, messages)
        if publish is not None:
            publish(updated)
        await self.push(counterpart_id)
        return updated
