"""Tests for the polling chat client — echo reconciliation and session lifecycle."""
import asyncio
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from app.client.chat_sync import ChatSession, ChatThread
from app.exceptions import ConflictError, ForbiddenError, NetworkError
from app.models.chat import MessageType
from app.models.match import MatchStatus
from app.schemas.chat import ChatMessageResponse
from app.schemas.match import MatchInfo

ME = uuid.uuid4()
THEM = uuid.uuid4()
MATCH_ID = uuid.uuid4()
T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def _msg(text, sender=ME, at=T0, msg_type=MessageType.TEXT, msg_id=None):
    return ChatMessageResponse(
        id=msg_id or uuid.uuid4(),
        match_id=MATCH_ID,
        sender_id=sender,
        type=msg_type,
        text=text,
        created_at=at,
    )


def _info(status=MatchStatus.MATCHED, seconds=600, messaged=False):
    return MatchInfo(
        match_id=MATCH_ID,
        status=status,
        time_left_seconds=seconds,
        tenant_messaged=messaged,
    )


class FakeApi:
    """In-memory stand-in for MatchApiClient that keeps a server thread."""

    def __init__(self, actor_id=ME):
        self.actor_id = actor_id
        self.server: list[ChatMessageResponse] = []
        self.info = _info()
        self.send_error: Exception | None = None
        self.messages_error: Exception | None = None
        self.gates: list[asyncio.Event] = []
        self.fetches = 0
        self.reads = 0

    async def messages(self, match_id):
        self.fetches += 1
        snapshot = list(self.server)
        if self.gates:
            await self.gates.pop(0).wait()
        if self.messages_error is not None:
            raise self.messages_error
        return snapshot

    async def match_info(self, match_id):
        return self.info

    async def send_message(self, match_id, text):
        if self.send_error is not None:
            raise self.send_error
        message = _msg(text, sender=self.actor_id, at=T0 + timedelta(seconds=len(self.server) + 1))
        self.server.append(message)
        return message

    async def mark_read(self, match_id):
        self.reads += 1
        return 0


# ── ChatThread ────────────────────────────────────────────────────────────────

class TestChatThread:

    def test_echo_shown_until_snapshot_contains_it(self):
        thread = ChatThread(ME, skew_tolerance_seconds=5)
        thread.apply_snapshot([_msg("hi", sender=THEM)])
        thread.add_echo("hello", T0)

        merged = thread.merged()
        assert [e.text for e in merged] == ["hi", "hello"]
        assert merged[-1].pending

        thread.apply_snapshot([_msg("hi", sender=THEM), _msg("hello", at=T0 + timedelta(seconds=1))])

        merged = thread.merged()
        assert [e.text for e in merged] == ["hi", "hello"]
        assert not any(e.pending for e in merged)
        assert thread.pending == []

    def test_confirmed_echo_matches_by_id(self):
        thread = ChatThread(ME, skew_tolerance_seconds=5)
        echo = thread.add_echo("same", T0)
        stored = _msg("same", at=T0 + timedelta(seconds=2))
        thread.confirm_echo(echo.temp_id, stored)

        # A second identical message from me must not swallow the confirmed echo.
        thread.apply_snapshot([_msg("same", at=T0 + timedelta(seconds=1))])
        assert len(thread.pending) == 1

        thread.apply_snapshot([_msg("same", at=T0 + timedelta(seconds=1)), stored])
        assert thread.pending == []
        assert len(thread.merged()) == 2

    def test_identical_sends_are_not_collapsed(self):
        thread = ChatThread(ME, skew_tolerance_seconds=5)
        thread.add_echo("ok", T0)
        thread.add_echo("ok", T0 + timedelta(milliseconds=10))

        thread.apply_snapshot([_msg("ok", at=T0 + timedelta(seconds=1))])

        assert len(thread.pending) == 1
        assert [e.text for e in thread.merged()] == ["ok", "ok"]

    def test_resend_after_reconcile_keeps_both(self):
        thread = ChatThread(ME, skew_tolerance_seconds=5)
        first = thread.add_echo("ok", T0)
        stored = _msg("ok", at=T0 + timedelta(milliseconds=200))
        thread.confirm_echo(first.temp_id, stored)
        thread.apply_snapshot([stored])
        assert thread.pending == []

        # Same text again inside the skew window, before the server has it.
        thread.add_echo("ok", T0 + timedelta(seconds=2))
        thread.apply_snapshot([stored])

        merged = thread.merged()
        assert [(e.text, e.pending) for e in merged] == [("ok", False), ("ok", True)]

        second = _msg("ok", at=T0 + timedelta(seconds=2, milliseconds=100))
        thread.apply_snapshot([stored, second])
        assert thread.pending == []
        assert [e.id for e in thread.merged()] == [str(stored.id), str(second.id)]

    def test_heuristic_match_binds_id_for_later_polls(self):
        thread = ChatThread(ME, skew_tolerance_seconds=5)
        thread.add_echo("yes", T0)
        stored = _msg("yes", at=T0 + timedelta(seconds=1))
        thread.apply_snapshot([stored])
        assert thread.pending == []

        thread.add_echo("yes", T0 + timedelta(seconds=3))
        thread.apply_snapshot([stored])

        assert len(thread.pending) == 1

    def test_older_message_does_not_claim_echo(self):
        thread = ChatThread(ME, skew_tolerance_seconds=5)
        thread.add_echo("ping", T0)

        thread.apply_snapshot([_msg("ping", at=T0 - timedelta(minutes=10))])

        assert len(thread.pending) == 1

    def test_skew_tolerance_allows_slightly_earlier_server_stamp(self):
        thread = ChatThread(ME, skew_tolerance_seconds=5)
        thread.add_echo("ping", T0)

        thread.apply_snapshot([_msg("ping", at=T0 - timedelta(seconds=3))])

        assert thread.pending == []

    def test_other_senders_text_not_matched(self):
        thread = ChatThread(ME, skew_tolerance_seconds=5)
        thread.add_echo("yes", T0)

        thread.apply_snapshot([_msg("yes", sender=THEM, at=T0 + timedelta(seconds=1))])

        assert len(thread.pending) == 1

    def test_snapshot_sorted_oldest_first(self):
        thread = ChatThread(ME, skew_tolerance_seconds=5)
        later = _msg("b", at=T0 + timedelta(seconds=5))
        earlier = _msg("a", at=T0)
        thread.apply_snapshot([later, earlier])
        assert [e.text for e in thread.merged()] == ["a", "b"]


# ── ChatSession ───────────────────────────────────────────────────────────────

def _session(api, **kwargs):
    kwargs.setdefault("poll_interval", 60)
    kwargs.setdefault("tick_seconds", 60)
    kwargs.setdefault("skew_tolerance_seconds", 5)
    kwargs.setdefault("clock", lambda: T0)
    return ChatSession(api, MATCH_ID, **kwargs)


class TestChatSessionSend:

    @pytest.mark.asyncio
    async def test_send_shows_echo_then_confirmed_message(self):
        api = FakeApi()
        updates: list[list] = []
        session = _session(api, on_update=updates.append)
        await session.start()

        message = await session.send("  hello  ")

        assert message.text == "hello"
        assert any(entry.pending for entry in updates[1])
        final = session.messages()
        assert [e.text for e in final] == ["hello"]
        assert not final[0].pending
        await session.stop()

    @pytest.mark.asyncio
    async def test_failed_send_removes_echo_and_raises(self):
        api = FakeApi()
        api.server.append(_msg("earlier", sender=THEM))
        session = _session(api)
        await session.start()
        api.send_error = NetworkError("offline")

        with pytest.raises(NetworkError):
            await session.send("lost")

        assert [e.text for e in session.messages()] == ["earlier"]
        assert session.thread.pending == []
        await session.stop()

    @pytest.mark.asyncio
    async def test_rejected_send_on_expired_match(self):
        api = FakeApi()
        session = _session(api)
        await session.start()
        api.send_error = ConflictError("Match has expired.")

        with pytest.raises(ConflictError):
            await session.send("too late")
        assert session.messages() == []
        await session.stop()


class TestChatSessionFetch:

    @pytest.mark.asyncio
    async def test_stale_response_discarded(self):
        api = FakeApi()
        session = _session(api)
        await session.start()

        api.server.append(_msg("old", sender=THEM))
        slow_gate = asyncio.Event()
        api.gates.append(slow_gate)
        slow = asyncio.create_task(session.fetch())
        await asyncio.sleep(0)

        api.server.append(_msg("new", sender=THEM, at=T0 + timedelta(seconds=1)))
        assert await session.fetch() is True

        slow_gate.set()
        assert await slow is False
        assert [e.text for e in session.messages()] == ["old", "new"]
        await session.stop()

    @pytest.mark.asyncio
    async def test_failed_fetch_keeps_snapshot(self):
        api = FakeApi()
        api.server.append(_msg("kept", sender=THEM))
        session = _session(api)
        await session.start()

        api.messages_error = NetworkError("timeout")
        assert await session.refresh() is False

        assert isinstance(session.last_error, NetworkError)
        assert [e.text for e in session.messages()] == ["kept"]
        await session.stop()

    @pytest.mark.asyncio
    async def test_response_after_stop_discarded(self):
        api = FakeApi()
        session = _session(api)
        await session.start()

        api.server.append(_msg("late", sender=THEM))
        gate = asyncio.Event()
        api.gates.append(gate)
        pending = asyncio.create_task(session.fetch())
        await asyncio.sleep(0)

        await session.stop()
        gate.set()

        assert await pending is False
        assert session.messages() == []


class TestChatSessionLifecycle:

    @pytest.mark.asyncio
    async def test_countdown_follows_match_info(self):
        api = FakeApi()
        session = _session(api)
        await session.start()

        assert session.countdown.running
        assert session.countdown.seconds_left == 600

        api.info = _info(messaged=True, seconds=0)
        await session.refresh_info()
        assert not session.countdown.running
        await session.stop()

    @pytest.mark.asyncio
    async def test_no_countdown_for_expired_match(self):
        api = FakeApi()
        api.info = _info(status=MatchStatus.EXPIRED, seconds=0)
        session = _session(api)
        await session.start()

        assert not session.countdown.running
        await session.stop()

    @pytest.mark.asyncio
    async def test_stop_cancels_poll_and_countdown(self):
        api = FakeApi()
        session = _session(api)
        await session.start()
        poll_task = session._poll_task

        await session.stop()

        assert session.closed
        assert poll_task.cancelled() or poll_task.done()
        assert not session.countdown.running

    @pytest.mark.asyncio
    async def test_poll_loop_fetches_and_marks_read(self):
        api = FakeApi()
        session = _session(api, poll_interval=0.01)
        await session.start()

        for _ in range(200):
            if api.reads >= 2:
                break
            await asyncio.sleep(0.01)
        await session.stop()

        assert api.reads >= 2
        assert api.fetches >= 3

    @pytest.mark.asyncio
    async def test_poll_stops_on_forbidden(self):
        api = FakeApi()
        session = _session(api, poll_interval=0.01)
        await session.start()
        task = session._poll_task

        api.messages_error = ForbiddenError("not a party")
        await asyncio.wait_for(task, timeout=2)

        assert isinstance(session.last_error, ForbiddenError)
        await session.stop()

    @pytest.mark.asyncio
    async def test_countdown_elapsed_triggers_refresh(self):
        api = FakeApi()
        api.info = _info(seconds=2)
        session = _session(api, tick_seconds=0.01)
        await session.start()
        fetches_after_start = api.fetches

        api.info = _info(status=MatchStatus.EXPIRED, seconds=0)
        for _ in range(200):
            if session.info.status == MatchStatus.EXPIRED:
                break
            await asyncio.sleep(0.01)

        assert api.fetches > fetches_after_start
        assert session.info.status == MatchStatus.EXPIRED
        await session.stop()

    @pytest.mark.asyncio
    async def test_stop_cancels_refresh_in_flight_from_countdown(self):
        api = FakeApi()
        api.info = _info(seconds=1)
        session = _session(api, tick_seconds=0.01)
        await session.start()

        # The refresh fired at zero hangs in its fetch.
        api.gates.append(asyncio.Event())
        for _ in range(200):
            if api.fetches >= 2:
                break
            await asyncio.sleep(0.01)
        assert api.fetches == 2
        refresh_task = session.countdown._elapsed_task

        await session.stop()

        assert refresh_task.cancelled()
        others = [t for t in asyncio.all_tasks() if t is not asyncio.current_task()]
        assert all(t.done() for t in others)

    @pytest.mark.asyncio
    async def test_countdown_refresh_error_is_recorded(self):
        api = FakeApi()
        api.info = _info(seconds=1)
        session = _session(api, tick_seconds=0.01)
        await session.start()

        api.messages_error = ForbiddenError("not a party")
        for _ in range(200):
            if session.last_error is not None:
                break
            await asyncio.sleep(0.01)

        assert isinstance(session.last_error, ForbiddenError)
        await session.stop()
