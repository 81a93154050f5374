"""Adaptive polling engine for conversations and notifications.

State machine:
                 start()                  activity within idle timeout
    IDLE  ─────────────────►  INTENSIVE  ◄───────────────────────────┐
     ▲                          (1s)  │                              │
     │ cancel()                       │ idle timeout elapsed         │
     │                                ▼                              │
     └───────────────────────────  NORMAL  ──────────────────────────┘
                                    (5s)
    any polling state ──(max_retries failed fetches)──►  DISCONNECTED
    DISCONNECTED ──(touch)──► polling again

The mode is chosen lazily, when the next cycle is scheduled after a fetch
settles. There is exactly one asyncio task per poller, so fetches never
overlap.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable

from . import config

log = logging.getLogger(__name__)


def monotonic_ms() -> float:
    return time.monotonic() * 1000


class PollMode(str, Enum):
    INTENSIVE = "intensive"
    NORMAL = "normal"


class PollerState(str, Enum):
    IDLE = "idle"
    INTENSIVE = "intensive-polling"
    NORMAL = "normal-polling"
    DISCONNECTED = "disconnected"


@dataclass(frozen=True)
class PollingOptions:
    intensive_interval_ms: int = field(default_factory=lambda: config.POLL_INTENSIVE_INTERVAL_MS)
    normal_interval_ms: int = field(default_factory=lambda: config.POLL_NORMAL_INTERVAL_MS)
    idle_timeout_ms: int = field(default_factory=lambda: config.POLL_IDLE_TIMEOUT_MS)
    max_retries: int = field(default_factory=lambda: config.POLL_MAX_RETRIES)


@dataclass
class PollingState:
    last_activity_ms: float
    mode: PollMode = PollMode.INTENSIVE
    interval_ms: int = 0
    failures: int = 0


def select_mode(elapsed_ms: float, options: PollingOptions) -> tuple[PollMode, int]:
    """Pick the polling mode and interval for time since the last activity."""
    if elapsed_ms < options.idle_timeout_ms:
        return PollMode.INTENSIVE, options.intensive_interval_ms
    return PollMode.NORMAL, options.normal_interval_ms


class ActivityTracker:
    """Records when the user last did something (typed, sent, opened)."""

    def __init__(self, state: PollingState, clock: Callable[[], float] = monotonic_ms):
        self._state = state
        self._clock = clock

    def mark_activity(self) -> None:
        self._state.last_activity_ms = self._clock()

    def elapsed_ms(self) -> float:
        return self._clock() - self._state.last_activity_ms


class Poller:
    """Background polling loop with adaptive frequency."""

    def __init__(
        self,
        fetch: Callable[[], Awaitable[Any]],
        on_result: Callable[[Any], Awaitable[None]],
        *,
        options: PollingOptions | None = None,
        guard: Callable[[], bool] | None = None,
        clock: Callable[[], float] = monotonic_ms,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        name: str = "poller",
    ):
        """
        Args:
            fetch: Coroutine function performing one poll; raises on failure.
            on_result: Coroutine function receiving each successful result.
            options: Intervals, idle timeout and retry limit.
            guard: Polling runs only while this returns True
                   (e.g. conversation open and doctor logged in).
            clock: Milliseconds, monotonic. Injected by tests.
            sleep: Seconds. Injected by tests.
            name: Used in log lines.
        """
        self.fetch = fetch
        self.on_result = on_result
        self.options = options or PollingOptions()
        self.name = name
        self._guard = guard or (lambda: True)
        self._clock = clock
        self._sleep = sleep

        mode, interval = select_mode(0, self.options)
        self.state = PollingState(last_activity_ms=clock(), mode=mode, interval_ms=interval)
        self.tracker = ActivityTracker(self.state, clock)

        self._status = PollerState.IDLE
        self._running = False
        self._in_flight = False
        self._generation = 0
        self._task: asyncio.Task | None = None

    @property
    def status(self) -> PollerState:
        return self._status

    @property
    def connected(self) -> bool:
        return self._status is not PollerState.DISCONNECTED

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Start the polling loop. No-op if already running."""
        if self._running:
            return
        self._running = True
        self._generation += 1
        # A previous loop may still be waiting on a fetch; let it settle first.
        previous = self._task if self._task and not self._task.done() else None
        self._task = asyncio.create_task(self._loop(self._generation, previous))
        self._status = self._polling_state(self.state.mode)
        log.info("%s: polling started in %s mode", self.name, self.state.mode.value)

    def touch(self) -> None:
        """Record user activity. Resets the failure count and revives a
        disconnected poller."""
        self.tracker.mark_activity()
        self.state.failures = 0
        if self._status is PollerState.DISCONNECTED:
            log.info("%s: activity after disconnect, restarting", self.name)
            self.start()

    def cancel(self) -> None:
        """Stop polling now.

        A pending wait is cancelled immediately. A fetch already in flight is
        allowed to finish; its result is dropped.
        """
        if not self._running and self._status is PollerState.IDLE:
            return
        self._running = False
        self._status = PollerState.IDLE
        if self._task and not self._task.done() and not self._in_flight:
            self._task.cancel()
        log.info("%s: polling stopped", self.name)

    async def stop(self) -> None:
        """Cancel the background task, including any in-flight fetch."""
        self.cancel()
        task, self._task = self._task, None
        if task:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def join(self) -> None:
        """Wait for the current loop to finish."""
        if self._task:
            try:
                await self._task
            except asyncio.CancelledError:
                pass

    def polling_status(self) -> dict[str, Any]:
        return {
            "state": self._status.value,
            "mode": self.state.mode.value,
            "interval_ms": self.state.interval_ms,
            "connected": self.connected,
            "retry_count": self.state.failures,
        }

    def _active(self, generation: int) -> bool:
        return self._running and generation == self._generation and self._guard()

    async def _loop(self, generation: int, previous: asyncio.Task | None) -> None:
        if previous is not None:
            await asyncio.wait([previous])

        while self._active(generation):
            self._in_flight = True
            try:
                result = await self.fetch()
                failed = False
            except Exception:
                log.exception("%s: poll cycle failed", self.name)
                result, failed = None, True
            finally:
                self._in_flight = False

            if not self._active(generation):
                log.debug("%s: dropping poll result, polling was stopped", self.name)
                break

            if not failed:
                try:
                    await self.on_result(result)
                except Exception:
                    log.exception("%s: applying poll result failed", self.name)
                    failed = True

            if failed:
                self.state.failures += 1
                if self.state.failures >= self.options.max_retries:
                    log.warning(
                        "%s: %d consecutive failures, marking as disconnected",
                        self.name,
                        self.state.failures,
                    )
                    self._running = False
                    self._status = PollerState.DISCONNECTED
                    return
            else:
                self.state.failures = 0

            self._schedule_next()
            await self._sleep(self.state.interval_ms / 1000)

        if generation == self._generation and self._status is not PollerState.DISCONNECTED:
            self._running = False
            self._status = PollerState.IDLE

    def _schedule_next(self) -> None:
        mode, interval = select_mode(self.tracker.elapsed_ms(), self.options)
        if mode is not self.state.mode:
            log.info("%s: switching to %s mode (%dms)", self.name, mode.value, interval)
        self.state.mode = mode
        self.state.interval_ms = interval
        self._status = self._polling_state(mode)

    @staticmethod
    def _polling_state(mode: PollMode) -> PollerState:
        if mode is PollMode.INTENSIVE:
            return PollerState.INTENSIVE
        return PollerState.NORMAL
