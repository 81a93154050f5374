import asyncio

from clinic_sync.conversation import ConversationSession
from clinic_sync.errors import MalformedResponseError, StoreError
from clinic_sync.poller import PollerState

from conftest import ME, OPTIONS, PEER, make_message


def _session(store, clock, **kwargs):
    return ConversationSession(
        store, ME, PEER, options=OPTIONS, clock=clock, sleep=clock.sleep, **kwargs
    )


def _close_after(session, clock, cycles):
    def hook():
        if len(clock.sleeps) >= cycles:
            session.close()

    clock.on_sleep = hook


def test_open_loads_conversation_and_marks_it_read(store, clock):
    store.messages = [
        make_message("1", 100),
        make_message("2", 200, sender=ME, receiver=PEER),
        make_message("3", 300),
        make_message("x", 150, sender="doc-other"),
    ]
    synced = []

    async def scenario():
        session = _session(store, clock, on_synced=lambda: synced.append(1))
        _close_after(session, clock, 1)
        session.open()
        await session.poller.join()
        return session

    session = asyncio.run(scenario())

    assert store.fetch_calls == [(PEER, None)]
    assert [m.id for m in session.messages] == ["1", "2", "3"]
    assert all(m.is_read for m in session.messages if m.receiver_id == ME)
    assert session.unread_count == 0
    assert store.mark_read_calls == [PEER]
    assert synced == [1]
    assert not session.is_open
    assert session.poller.status is PollerState.IDLE


def test_delta_fetch_uses_newest_fetched_timestamp(store, clock):
    store.messages = [make_message("1", 100, read=True), make_message("3", 300, read=True)]

    async def scenario():
        session = _session(store, clock)

        def hook():
            if len(clock.sleeps) == 1:
                store.messages.append(make_message("4", 400))
            if len(clock.sleeps) >= 2:
                session.close()

        clock.on_sleep = hook
        session.open()
        await session.poller.join()
        return session

    session = asyncio.run(scenario())

    assert [since for _, since in store.fetch_calls] == [None, session.messages[1].created_at]
    assert [m.id for m in session.messages] == ["1", "3", "4"]
    assert session.cursor == session.messages[-1].created_at
    # the new incoming message was marked read because the conversation is open
    assert store.mark_read_calls == [PEER]
    assert session.messages[-1].is_read


def test_no_mark_read_call_when_nothing_unread(store, clock):
    store.messages = [make_message("1", 100, read=True)]

    async def scenario():
        session = _session(store, clock)
        _close_after(session, clock, 2)
        session.open()
        await session.poller.join()

    asyncio.run(scenario())
    assert store.mark_read_calls == []


def test_failed_mark_read_does_not_roll_back(store, clock):
    store.messages = [make_message("1", 100), make_message("2", 200)]
    store.mark_read_error = StoreError("HTTP 502")

    async def scenario():
        session = _session(store, clock)
        _close_after(session, clock, 1)
        session.open()
        await session.poller.join()
        return session

    session = asyncio.run(scenario())
    assert session.unread_count == 0
    assert all(m.is_read for m in session.messages)
    assert session.poller.connected


def test_sustained_failures_disconnect_but_keep_cached_messages(store, clock):
    store.messages = [make_message("1", 100, read=True)]

    async def scenario():
        first_poll = asyncio.Event()
        session = _session(store, clock, on_synced=first_poll.set)
        session.open()
        await first_poll.wait()
        # then the store goes bad
        store.fetch_errors = [MalformedResponseError("bad"), StoreError("down"), StoreError("down")]
        await session.poller.join()
        return session

    session = asyncio.run(scenario())

    assert session.poller.status is PollerState.DISCONNECTED
    assert session.status()["connected"] is False
    assert [m.id for m in session.messages] == ["1"]


def test_activity_after_disconnect_resumes(store, clock):
    store.fetch_errors = [StoreError("down")] * 3

    async def scenario():
        session = _session(store, clock)
        session.open()
        await session.poller.join()
        assert session.poller.status is PollerState.DISCONNECTED

        store.messages = [make_message("1", 100)]
        _close_after(session, clock, len(clock.sleeps) + 1)
        session.mark_activity()
        await session.poller.join()
        return session

    session = asyncio.run(scenario())
    assert [m.id for m in session.messages] == ["1"]
    assert session.poller.connected


def test_unauthenticated_session_does_not_poll(store, clock):
    async def scenario():
        session = _session(store, clock, guard=lambda: False)
        session.open()
        await session.poller.join()

    asyncio.run(scenario())
    assert store.fetch_calls == []


def test_send_marks_activity_and_waits_for_poll(store, clock):
    async def scenario():
        session = _session(store, clock)
        clock.now = 50_000
        msg = await session.send("See you at rounds")
        return session, msg

    session, msg = asyncio.run(scenario())

    assert store.sent == [(PEER, "See you at rounds")]
    assert msg.sender_id == ME
    assert session.messages == []
    assert session.poller.state.last_activity_ms == 50_000


def test_closed_session_drops_in_flight_result(store, clock):
    async def scenario():
        entered = asyncio.Event()
        release = asyncio.Event()
        session = _session(store, clock)

        async def slow_fetch():
            entered.set()
            await release.wait()
            return [make_message("1", 100)]

        session.poller.fetch = slow_fetch
        session.open()
        await entered.wait()
        session.close()
        release.set()
        await session.poller.join()
        return session

    session = asyncio.run(scenario())
    assert session.messages == []


def test_mark_read_flips_local_state_before_the_store_call(store, clock):
    session = _session(store, clock)
    session.messages = [make_message("1", 100), make_message("2", 200, sender=ME, receiver=PEER)]
    session.read_state.recompute(session.messages)
    seen = []

    def mark_read(counterpart_id):
        seen.append([m.is_read for m in session.messages])
        # a poll merges a newer message while the push is pending
        session.messages = session.messages + [make_message("3", 300)]

    store.mark_read = mark_read
    asyncio.run(session.mark_read())

    assert seen == [[True, False]]
    assert [m.id for m in session.messages] == ["1", "2", "3"]
    assert session.unread_count == 0


def test_mark_read_keeps_local_state_when_push_fails(store, clock):
    store.mark_read_error = StoreError("HTTP 500")
    session = _session(store, clock)
    session.messages = [make_message("1", 100), make_message("2", 200)]
    session.read_state.recompute(session.messages)
    assert session.unread_count == 2

    asyncio.run(session.mark_read())

    assert store.mark_read_calls == [PEER]
    assert all(m.is_read for m in session.messages)
    assert session.unread_count == 0
