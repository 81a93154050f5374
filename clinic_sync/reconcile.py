"""Merging freshly fetched messages into a conversation's local copy."""

from __future__ import annotations

from typing import Iterable

from .models import Message


def merge_messages(existing: Iterable[Message], incoming: Iterable[Message]) -> list[Message]:
    """Return a new list with ``incoming`` merged into ``existing``.

    Messages are matched by id only, so two messages with the same text are
    both kept. For an id already present the store's read flag wins; nothing
    else about a message can change. The result is sorted oldest first, and
    merging the same batch twice gives the same list as merging it once.
    """
    by_id: dict[str, Message] = {m.id: m for m in existing}
    for msg in incoming:
        current = by_id.get(msg.id)
        if current is None:
            by_id[msg.id] = msg
        elif current.is_read != msg.is_read:
            by_id[msg.id] = current.model_copy(update={"is_read": msg.is_read})
    return sorted(by_id.values(), key=lambda m: m.created_at)
