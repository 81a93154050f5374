"""All conversations the doctor currently has open.

Each session polls on its own with its own state; the inbox only creates,
looks up and tears down sessions, and aggregates their counters.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Any, Awaitable, Callable

from .auth import AuthContext
from .conversation import ConversationSession
from .poller import PollingOptions, monotonic_ms
from .read_state import ReadStateSynchronizer

log = logging.getLogger(__name__)


class Inbox:
    def __init__(
        self,
        store,
        auth: AuthContext,
        *,
        options: PollingOptions | None = None,
        clock: Callable[[], float] = monotonic_ms,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        on_synced: Callable[[], None] | None = None,
    ):
        self._store = store
        self._auth = auth
        self._options = options or PollingOptions()
        self._clock = clock
        self._sleep = sleep
        self._on_synced = on_synced
        self.sessions: dict[str, ConversationSession] = {}

    def open(self, counterpart_id: str) -> ConversationSession:
        """Open (or re-select) the conversation with ``counterpart_id``."""
        session = self.sessions.get(counterpart_id)
        if session is None or session.current_user_id != self._auth.user_id:
            if session is not None:
                session.close()
            session = ConversationSession(
                self._store,
                self._auth.user_id,
                counterpart_id,
                options=self._options,
                guard=lambda: self._auth.is_authenticated,
                clock=self._clock,
                sleep=self._sleep,
                on_synced=self._on_synced,
            )
            self.sessions[counterpart_id] = session
            log.info("Opened conversation with %s", counterpart_id)
        session.open()
        return session

    def get(self, counterpart_id: str) -> ConversationSession:
        """Return an open session; raises KeyError otherwise."""
        session = self.sessions.get(counterpart_id)
        if session is None or not session.is_open:
            raise KeyError(counterpart_id)
        return session

    def close(self, counterpart_id: str) -> None:
        session = self.sessions.pop(counterpart_id, None)
        if session:
            session.close()
            log.info("Closed conversation with %s", counterpart_id)

    def resume(self) -> None:
        """Restart polling on every open session, e.g. after a fresh login."""
        for counterpart_id in list(self.sessions):
            self.open(counterpart_id)

    async def close_all(self) -> None:
        sessions, self.sessions = list(self.sessions.values()), {}
        for session in sessions:
            session.close()
            await session.poller.stop()

    def unread_counts(self) -> dict[str, int]:
        if not self._auth.user_id:
            return {}
        sync = ReadStateSynchronizer(self._store, self._auth.user_id)
        all_messages = itertools.chain.from_iterable(
            s.messages for s in self.sessions.values()
        )
        return sync.recompute(all_messages).as_dict()

    async def list_conversations(self) -> list[dict[str, Any]]:
        """The store's conversation list, with counters of open sessions
        taken from local state."""
        summaries = await asyncio.to_thread(self._store.list_conversations)
        result = []
        for summary in summaries:
            session = self.sessions.get(summary.counterpart_id)
            unread = session.unread_count if session else summary.unread_count
            result.append(
                {
                    "counterpart_id": summary.counterpart_id,
                    "last_message": (
                        summary.last_message.model_dump(mode="json")
                        if summary.last_message
                        else None
                    ),
                    "unread_count": unread,
                    "open": session is not None and session.is_open,
                }
            )
        return result

    @property
    def connected(self) -> bool:
        return all(s.poller.connected for s in self.sessions.values())

    def status(self) -> dict[str, Any]:
        return {
            "connected": self.connected,
            "open_conversations": [s.status() for s in self.sessions.values()],
            "unread": self.unread_counts(),
        }
