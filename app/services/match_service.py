"""
Roomify Match Core — Match lifecycle & response window enforcement

Owns the canonical ``Match`` entity and its message thread:

  create_match        PENDING -> MATCHED, idempotent on (tenant, property)
  get_match_info      status + seconds left + whether the tenant has replied
  expire_if_due       MATCHED -> EXPIRED once the window lapses with no reply
  expire_due_matches  periodic sweep over every due match
  close_match         MATCHED -> CLOSED when the rent is paid

Every state transition runs with the match row locked (``SELECT ... FOR
UPDATE``) so concurrent clients serialise on it.  Messages are appended
through ``append_message`` so that the thread ordering and the tenant
first-reply timestamp are maintained in one place.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from typing import Callable

import structlog
from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.database import utcnow
from app.exceptions import ForbiddenError, NotFoundError
from app.models.chat import ChatMessage, MessageType
from app.models.match import Match, MatchStatus
from app.services.response_window import compute_deadline, format_window, is_due, seconds_left

logger = structlog.get_logger("roomify.match_service")

_MATCH_NOTICE = "It's a match! The tenant has {window} to send the first message."
_EXPIRED_NOTICE = "Time expired: the tenant did not reply within the response window."

# Keeps created_at strictly increasing inside one thread.
_ORDER_EPSILON = timedelta(microseconds=1)


class MatchService:
    """Match store backed by the ``matches`` and ``chat_messages`` tables."""

    def __init__(
        self,
        clock: Callable[[], datetime] | None = None,
        window_seconds: int | None = None,
    ) -> None:
        settings = get_settings()
        self.window_seconds: int = window_seconds or settings.RESPONSE_WINDOW_SECONDS
        self._clock = clock or utcnow

        logger.info("match_service_initialised", window_seconds=self.window_seconds)

    def now(self) -> datetime:
        return self._clock()

    # ── Creation ──────────────────────────────────────────────────────────

    async def create_match(
        self,
        tenant_id: uuid.UUID,
        landlord_id: uuid.UUID,
        property_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> Match:
        """Create the match for a mutual like, or return the open one.

        Two near-simultaneous mutual-like detections may both miss the
        initial lookup.  The partial unique index on (tenant, property)
        rejects the second insert; its savepoint is rolled back and the
        winner's row is returned instead.
        """
        log = logger.bind(tenant_id=str(tenant_id), property_id=str(property_id))

        existing = await self._find_open_match(tenant_id, property_id, db_session)
        if existing is not None:
            log.info("create_match_existing", match_id=str(existing.id))
            return existing

        now = self.now()
        match = Match(
            tenant_id=tenant_id,
            landlord_id=landlord_id,
            property_id=property_id,
            # Detection and matching are one step, PENDING is never persisted.
            status=MatchStatus.MATCHED,
            created_at=now,
            updated_at=now,
            response_deadline=compute_deadline(now, self.window_seconds),
        )

        try:
            async with db_session.begin_nested():
                db_session.add(match)
                await db_session.flush()
        except IntegrityError:
            log.info("create_match_race_lost")
            existing = await self._find_open_match(tenant_id, property_id, db_session)
            if existing is None:
                raise
            return existing

        await self.append_message(
            match,
            db_session,
            text=_MATCH_NOTICE.format(window=format_window(self.window_seconds)),
            message_type=MessageType.SYSTEM,
        )

        log.info(
            "match_created",
            match_id=str(match.id),
            response_deadline=match.response_deadline.isoformat(),
        )
        return match

    # ── Lookup ────────────────────────────────────────────────────────────

    async def get_match_for_party(
        self,
        match_id: uuid.UUID,
        actor_id: uuid.UUID,
        db_session: AsyncSession,
        lock: bool = False,
    ) -> Match:
        """Load a match the actor is party to.

        Raises
        ------
        NotFoundError
            The match does not exist.
        ForbiddenError
            The actor is neither the tenant nor the landlord of the match.
        """
        stmt = select(Match).where(Match.id == match_id)
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        match = (await db_session.execute(stmt)).scalar_one_or_none()

        if match is None:
            raise NotFoundError(f"Match {match_id} not found.")
        if match.party_of(actor_id) is None:
            logger.warning(
                "match_access_forbidden",
                match_id=str(match_id),
                actor_id=str(actor_id),
            )
            raise ForbiddenError("Actor is not part of this match.")
        return match

    async def tenant_messaged(self, match: Match, db_session: AsyncSession) -> bool:
        """True once any message authored by the tenant exists."""
        if match.tenant_first_reply_at is not None:
            return True

        stmt = select(func.min(ChatMessage.created_at)).where(
            ChatMessage.match_id == match.id,
            ChatMessage.sender_id == match.tenant_id,
        )
        first_reply = (await db_session.execute(stmt)).scalar_one_or_none()
        if first_reply is None:
            return False

        match.tenant_first_reply_at = first_reply
        return True

    async def get_match_info(
        self,
        match_id: uuid.UUID,
        actor_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> dict:
        """Return status, seconds left and tenant-reply flag for a match.

        The expiry check runs first, under the row lock, so the reported
        status is authoritative rather than a client-side guess.
        """
        match = await self.get_match_for_party(match_id, actor_id, db_session, lock=True)
        await self.expire_locked(match, db_session)

        messaged = await self.tenant_messaged(match, db_session)
        if match.status == MatchStatus.MATCHED and not messaged:
            time_left = seconds_left(match.response_deadline, None, self.now())
        else:
            time_left = 0

        return {
            "match_id": match.id,
            "status": match.status,
            "time_left_seconds": time_left,
            "tenant_messaged": messaged,
            "response_deadline": match.response_deadline,
            "viewing_date": match.viewing_date,
        }

    # ── Expiry ────────────────────────────────────────────────────────────

    async def expire_if_due(self, match_id: uuid.UUID, db_session: AsyncSession) -> Match:
        """Expire the match when its window lapsed with no tenant message.

        Safe to call any number of times; a match that has received a tenant
        message is never expired, however late the call.
        """
        match = await self.lock_match(match_id, db_session)
        await self.expire_locked(match, db_session)
        return match

    async def lock_match(self, match_id: uuid.UUID, db_session: AsyncSession) -> Match:
        """Load a match with its row locked for the rest of the transaction."""
        stmt = (
            select(Match)
            .where(Match.id == match_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        match = (await db_session.execute(stmt)).scalar_one_or_none()
        if match is None:
            raise NotFoundError(f"Match {match_id} not found.")
        return match

    async def expire_due_matches(self, db_session: AsyncSession) -> int:
        """Expire every due match.  Returns how many were expired."""
        stmt = select(Match.id).where(
            Match.status == MatchStatus.MATCHED,
            Match.tenant_first_reply_at.is_(None),
            Match.response_deadline <= self.now(),
        )
        candidate_ids = (await db_session.execute(stmt)).scalars().all()

        expired = 0
        for match_id in candidate_ids:
            match = await self.expire_if_due(match_id, db_session)
            if match.status == MatchStatus.EXPIRED:
                expired += 1

        if expired:
            logger.info("expiry_sweep_complete", expired=expired, scanned=len(candidate_ids))
        return expired

    async def expire_locked(self, match: Match, db_session: AsyncSession) -> bool:
        """Apply MATCHED -> EXPIRED on an already locked row if it is due."""
        if match.status != MatchStatus.MATCHED:
            return False
        if await self.tenant_messaged(match, db_session):
            return False
        if not is_due(match.response_deadline, None, self.now()):
            return False

        match.status = MatchStatus.EXPIRED
        await self.append_message(
            match,
            db_session,
            text=_EXPIRED_NOTICE,
            message_type=MessageType.SYSTEM,
        )
        logger.info("match_expired", match_id=str(match.id))
        return True

    # ── Closure ───────────────────────────────────────────────────────────

    async def close_match(self, match: Match, db_session: AsyncSession) -> Match:
        if match.status == MatchStatus.CLOSED:
            return match
        match.status = MatchStatus.CLOSED
        match.updated_at = self.now()
        await db_session.flush()
        logger.info("match_closed", match_id=str(match.id))
        return match

    # ── Thread ────────────────────────────────────────────────────────────

    async def append_message(
        self,
        match: Match,
        db_session: AsyncSession,
        *,
        text: str,
        message_type: MessageType = MessageType.TEXT,
        sender_id: uuid.UUID | None = None,
        payload: dict | None = None,
        ref_message_id: uuid.UUID | None = None,
    ) -> ChatMessage:
        """Append a message to the match thread.

        ``created_at`` is kept strictly increasing within the thread, and the
        first tenant-authored message stops the response clock.
        """
        now = self.now()
        last_stmt = select(func.max(ChatMessage.created_at)).where(
            ChatMessage.match_id == match.id
        )
        last_created = (await db_session.execute(last_stmt)).scalar_one_or_none()
        if last_created is not None and now <= last_created:
            now = last_created + _ORDER_EPSILON

        message = ChatMessage(
            match_id=match.id,
            sender_id=sender_id,
            type=message_type,
            text=text,
            action_payload=payload,
            ref_message_id=ref_message_id,
            created_at=now,
        )
        db_session.add(message)

        match.updated_at = now
        if sender_id is not None and sender_id == match.tenant_id:
            if match.tenant_first_reply_at is None:
                match.tenant_first_reply_at = now
                logger.info("tenant_first_reply", match_id=str(match.id))

        await db_session.flush()
        return message

    # ── Conversations ─────────────────────────────────────────────────────

    async def list_conversations(
        self,
        actor_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> list[dict]:
        """Return the actor's live conversations, most recent activity first."""
        stmt = (
            select(Match)
            .where(
                or_(Match.tenant_id == actor_id, Match.landlord_id == actor_id),
                Match.status != MatchStatus.EXPIRED,
            )
            .order_by(Match.updated_at.desc())
            .execution_options(populate_existing=True)
        )
        matches = (await db_session.execute(stmt)).scalars().all()

        items: list[dict] = []
        for m in matches:
            other = m.landlord if m.tenant_id == actor_id else m.tenant

            last_stmt = (
                select(ChatMessage)
                .where(ChatMessage.match_id == m.id)
                .order_by(ChatMessage.created_at.desc(), ChatMessage.id.desc())
                .limit(1)
            )
            last = (await db_session.execute(last_stmt)).scalar_one_or_none()

            unread_stmt = select(func.count(ChatMessage.id)).where(
                ChatMessage.match_id == m.id,
                ChatMessage.read_at.is_(None),
                or_(ChatMessage.sender_id.is_(None), ChatMessage.sender_id != actor_id),
            )
            unread = (await db_session.execute(unread_stmt)).scalar_one()

            items.append({
                "match_id": m.id,
                "status": m.status,
                "property_id": m.property_id,
                "property_title": m.property.title if m.property else "Unknown",
                "other_party_id": other.id,
                "other_party_name": other.display_name,
                "last_message": last.text if last else None,
                "last_message_at": last.created_at if last else None,
                "unread_count": unread,
                "updated_at": m.updated_at,
            })

        return items

    # ── Internals ─────────────────────────────────────────────────────────

    async def _find_open_match(
        self,
        tenant_id: uuid.UUID,
        property_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> Match | None:
        stmt = select(Match).where(
            Match.tenant_id == tenant_id,
            Match.property_id == property_id,
            Match.status != MatchStatus.CLOSED,
        )
        return (await db_session.execute(stmt)).scalar_one_or_none()
