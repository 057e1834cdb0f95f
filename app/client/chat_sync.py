"""
Roomify Match Core — Client-side chat synchronisation

The server is the only source of truth; a client learns of new messages by
polling.  ``ChatThread`` holds the last applied server snapshot plus the
optimistic echoes of sends still in flight, and produces the merged view:

  merged = snapshot + echoes with no counterpart in the snapshot

An echo's counterpart is the message whose id the send returned, or, while
that id is unknown, the first unclaimed message from the same sender with
the same text created no earlier than the echo's send time minus the
clock-skew tolerance.  Each server message is claimed by at most one echo,
and an id once paired stays paired across polls, so two identical sends
never collapse into one.

``ChatSession`` owns the poll task and the response countdown for one open
match thread.
"""

from __future__ import annotations

import asyncio
import itertools
import uuid
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

import structlog

from app.client.api import MatchApiClient
from app.client.countdown import ResponseCountdown
from app.config import get_settings
from app.database import utcnow
from app.exceptions import NetworkError, RoomifyError, ValidationError
from app.models.chat import MessageType
from app.models.match import MatchStatus
from app.schemas.chat import ChatMessageResponse
from app.schemas.match import MatchInfo

logger = structlog.get_logger("roomify.client.chat_sync")

# Server ids already paired with an echo; never offered to a later echo.
_BOUND_HISTORY = 500


@dataclass
class PendingEcho:
    """A locally sent message not yet seen in a server snapshot."""

    temp_id: str
    sender_id: uuid.UUID
    text: str
    sent_at: datetime
    confirmed_id: uuid.UUID | None = None
    confirmed_at: datetime | None = None

    @property
    def created_at(self) -> datetime:
        return self.confirmed_at or self.sent_at


@dataclass(frozen=True)
class ThreadEntry:
    """One row of the merged thread as a UI would render it."""

    id: str
    sender_id: uuid.UUID | None
    type: MessageType
    text: str
    created_at: datetime
    pending: bool = False
    metadata: Any = None

    @classmethod
    def from_message(cls, message: ChatMessageResponse) -> "ThreadEntry":
        return cls(
            id=str(message.id),
            sender_id=message.sender_id,
            type=message.type,
            text=message.text,
            created_at=message.created_at,
            metadata=message.metadata,
        )

    @classmethod
    def from_echo(cls, echo: PendingEcho) -> "ThreadEntry":
        return cls(
            id=echo.temp_id,
            sender_id=echo.sender_id,
            type=MessageType.TEXT,
            text=echo.text,
            created_at=echo.created_at,
            pending=True,
        )


class ChatThread:
    """Snapshot + pending echoes for one match thread."""

    def __init__(self, me: uuid.UUID, skew_tolerance_seconds: float | None = None) -> None:
        if skew_tolerance_seconds is None:
            skew_tolerance_seconds = get_settings().CLOCK_SKEW_TOLERANCE_SECONDS
        self.me = me
        self.skew_tolerance = timedelta(seconds=skew_tolerance_seconds)
        self._snapshot: list[ChatMessageResponse] = []
        self._echoes: list[PendingEcho] = []
        self._temp_ids = itertools.count(1)
        self._bound: deque[uuid.UUID] = deque(maxlen=_BOUND_HISTORY)

    @property
    def snapshot(self) -> list[ChatMessageResponse]:
        return list(self._snapshot)

    @property
    def pending(self) -> list[PendingEcho]:
        return list(self._echoes)

    # ── Echo lifecycle ────────────────────────────────────────────────────

    def add_echo(self, text: str, sent_at: datetime) -> PendingEcho:
        echo = PendingEcho(
            temp_id=f"temp-{next(self._temp_ids)}",
            sender_id=self.me,
            text=text,
            sent_at=sent_at,
        )
        self._echoes.append(echo)
        return echo

    def confirm_echo(self, temp_id: str, message: ChatMessageResponse) -> None:
        for echo in self._echoes:
            if echo.temp_id == temp_id:
                echo.confirmed_id = message.id
                echo.confirmed_at = message.created_at
                self._bound.append(message.id)
                break
        self._prune()

    def drop_echo(self, temp_id: str) -> None:
        self._echoes = [e for e in self._echoes if e.temp_id != temp_id]

    # ── Snapshot ──────────────────────────────────────────────────────────

    def apply_snapshot(self, messages: list[ChatMessageResponse]) -> None:
        self._snapshot = sorted(messages, key=lambda m: (m.created_at, str(m.id)))
        self._prune()

    def merged(self) -> list[ThreadEntry]:
        entries = [ThreadEntry.from_message(m) for m in self._snapshot]
        entries.extend(ThreadEntry.from_echo(e) for e in self._echoes)
        entries.sort(key=lambda e: (e.created_at, e.pending, e.id))
        return entries

    # ── Reconciliation ────────────────────────────────────────────────────

    def _prune(self) -> None:
        """Drop every echo that the current snapshot already contains."""
        matched = self._counterparts()
        if matched:
            self._echoes = [e for e in self._echoes if e.temp_id not in matched]
            self._bound.extend(
                message_id for message_id in matched.values() if message_id not in self._bound
            )

    def _counterparts(self) -> dict[str, uuid.UUID]:
        by_id = {m.id: m for m in self._snapshot}
        claimed: set[uuid.UUID] = set(self._bound)
        found: dict[str, uuid.UUID] = {}

        for echo in self._echoes:
            if echo.confirmed_id is not None and echo.confirmed_id in by_id:
                claimed.add(echo.confirmed_id)
                found[echo.temp_id] = echo.confirmed_id

        for echo in sorted(self._echoes, key=lambda e: e.sent_at):
            if echo.confirmed_id is not None:
                continue
            earliest = echo.sent_at - self.skew_tolerance
            for message in self._snapshot:
                if (
                    message.id not in claimed
                    and message.type == MessageType.TEXT
                    and message.sender_id == echo.sender_id
                    and message.text == echo.text
                    and message.created_at >= earliest
                ):
                    claimed.add(message.id)
                    found[echo.temp_id] = message.id
                    break

        return found


class ChatSession:
    """Polling chat session for one match, from one actor's point of view.

    ``start()`` performs an immediate refresh and launches the poll task;
    ``stop()`` cancels the poll task and the countdown and makes any
    response still in flight a no-op.  A session can be started again
    after it was stopped.
    """

    def __init__(
        self,
        api: MatchApiClient,
        match_id: uuid.UUID,
        *,
        poll_interval: float | None = None,
        tick_seconds: float | None = None,
        skew_tolerance_seconds: float | None = None,
        clock: Callable[[], datetime] = utcnow,
        on_update: Optional[Callable[[list[ThreadEntry]], None]] = None,
    ) -> None:
        settings = get_settings()
        self.api = api
        self.match_id = match_id
        self.poll_interval = poll_interval or settings.CHAT_POLL_INTERVAL_SECONDS
        self.thread = ChatThread(api.actor_id, skew_tolerance_seconds)
        self.countdown = ResponseCountdown(
            on_elapsed=self._on_countdown_elapsed,
            tick_seconds=tick_seconds,
        )
        self.info: MatchInfo | None = None
        self.last_error: RoomifyError | None = None

        self._clock = clock
        self._on_update = on_update
        self._poll_task: asyncio.Task | None = None
        self._closed = True
        self._generation = 0
        self._issued = 0
        self._applied = 0
        self._info_issued = 0
        self._info_applied = 0
        self._log = logger.bind(match_id=str(match_id), actor_id=str(api.actor_id))

    # ── Lifecycle ─────────────────────────────────────────────────────────

    @property
    def closed(self) -> bool:
        return self._closed

    async def start(self) -> None:
        if not self._closed:
            return
        self._closed = False
        self._generation += 1
        self._log.info("chat_session_started", poll_interval=self.poll_interval)
        await self.refresh()
        if not self._closed:
            self._poll_task = asyncio.create_task(self._poll_loop())

    async def stop(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._generation += 1

        task = self._poll_task
        self._poll_task = None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self.countdown.stop()
        self._log.info("chat_session_stopped")

    # ── Reads ─────────────────────────────────────────────────────────────

    async def fetch(self) -> bool:
        """Replace the snapshot with the server's thread.

        Returns False when the response was discarded because a newer one
        was already applied or the session was stopped meanwhile.  Errors
        propagate and leave the previous snapshot in place.
        """
        generation = self._generation
        self._issued += 1
        seq = self._issued

        messages = await self.api.messages(self.match_id)

        if self._closed or generation != self._generation or seq < self._applied:
            self._log.debug("stale_fetch_discarded", seq=seq, applied=self._applied)
            return False
        self._applied = seq
        self.thread.apply_snapshot(messages)
        self._notify()
        return True

    async def refresh_info(self) -> MatchInfo | None:
        generation = self._generation
        self._info_issued += 1
        seq = self._info_issued

        info = await self.api.match_info(self.match_id)

        if self._closed or generation != self._generation or seq < self._info_applied:
            return None
        self._info_applied = seq
        self.info = info

        if info.status == MatchStatus.MATCHED and not info.tenant_messaged:
            self.countdown.resync(info.time_left_seconds)
        else:
            self.countdown.resync(0)
        return info

    async def refresh(self) -> bool:
        """Fetch the thread and the match info; transport failures are kept
        in ``last_error`` and leave the current state untouched."""
        try:
            await self.fetch()
            await self.refresh_info()
        except NetworkError as exc:
            self.last_error = exc
            self._log.warning("chat_refresh_failed", error=exc.message)
            return False
        self.last_error = None
        return True

    async def mark_read(self) -> int:
        if self._closed:
            return 0
        return await self.api.mark_read(self.match_id)

    # ── Writes ────────────────────────────────────────────────────────────

    async def send(self, text: str) -> ChatMessageResponse:
        """Send ``text`` with an optimistic echo.

        On failure the echo is removed and the error re-raised so the caller
        can keep the input for a retry.
        """
        content = (text or "").strip()
        if not content:
            raise ValidationError("Message text must not be empty.")

        echo = self.thread.add_echo(content, self._clock())
        self._notify()

        try:
            message = await self.api.send_message(self.match_id, content)
        except RoomifyError as exc:
            self.thread.drop_echo(echo.temp_id)
            self._notify()
            self._log.info("send_failed", temp_id=echo.temp_id, error=exc.message)
            raise

        self.thread.confirm_echo(echo.temp_id, message)
        self._notify()
        self._log.info("message_confirmed", temp_id=echo.temp_id, message_id=str(message.id))

        if not self._closed:
            try:
                await self.fetch()
            except NetworkError as exc:
                # The echo stays bound to its id until the next poll.
                self._log.warning("post_send_fetch_failed", error=exc.message)
        return message

    def messages(self) -> list[ThreadEntry]:
        return self.thread.merged()

    # ── Internals ─────────────────────────────────────────────────────────

    async def _poll_loop(self) -> None:
        while not self._closed:
            await asyncio.sleep(self.poll_interval)
            if self._closed:
                break
            try:
                await self.fetch()
                await self.refresh_info()
                await self.mark_read()
            except NetworkError as exc:
                self.last_error = exc
                self._log.warning("chat_poll_failed", error=exc.message)
                continue
            except RoomifyError as exc:
                self.last_error = exc
                self._log.error("chat_poll_aborted", error=exc.message)
                break
            self.last_error = None

    async def _on_countdown_elapsed(self) -> None:
        if self._closed:
            return
        self._log.info("countdown_elapsed_refresh")
        try:
            await self.refresh()
        except RoomifyError as exc:
            self.last_error = exc
            self._log.error("countdown_refresh_failed", error=exc.message)

    def _notify(self) -> None:
        if self._on_update is not None:
            self._on_update(self.thread.merged())
