"""
Roomify Match Core — Chat thread service

Server half of chat synchronisation.  Clients poll ``list_messages`` for the
full thread snapshot, post with ``send_message`` and flag the counterpart's
messages read with ``mark_read``.  Every operation requires the actor to be
party to the match.
"""

from __future__ import annotations

import uuid

import structlog
from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import ConflictError, ValidationError
from app.models.chat import ChatMessage, MessageType
from app.models.match import MatchStatus
from app.services.match_service import MatchService

logger = structlog.get_logger("roomify.chat_service")


class ChatService:

    def __init__(self, match_service: MatchService | None = None) -> None:
        self.match_service = match_service or MatchService()

    async def list_messages(
        self,
        match_id: uuid.UUID,
        actor_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> list[ChatMessage]:
        """Full thread, oldest first, ties broken by id."""
        await self.match_service.get_match_for_party(match_id, actor_id, db_session)

        stmt = (
            select(ChatMessage)
            .where(ChatMessage.match_id == match_id)
            .order_by(ChatMessage.created_at.asc(), ChatMessage.id.asc())
            .execution_options(populate_existing=True)
        )
        return list((await db_session.execute(stmt)).scalars().all())

    async def send_message(
        self,
        match_id: uuid.UUID,
        actor_id: uuid.UUID,
        text: str,
        db_session: AsyncSession,
    ) -> ChatMessage:
        """Append a TEXT message from the actor.

        A send that races the response deadline runs the expiry check under
        the same row lock first; if the window has already lapsed the send is
        rejected rather than resurrecting the match.
        """
        content = (text or "").strip()
        if not content:
            raise ValidationError("Message text must not be empty.")

        log = logger.bind(match_id=str(match_id), actor_id=str(actor_id))

        match = await self.match_service.get_match_for_party(
            match_id, actor_id, db_session, lock=True
        )
        if await self.match_service.expire_locked(match, db_session):
            # Keep the expiry even though this request fails.
            await db_session.commit()
        if match.status == MatchStatus.EXPIRED:
            log.info("send_rejected_expired")
            raise ConflictError("The response window for this match has expired.")

        message = await self.match_service.append_message(
            match,
            db_session,
            text=content,
            message_type=MessageType.TEXT,
            sender_id=actor_id,
        )
        log.info("message_sent", message_id=str(message.id))
        return message

    async def mark_read(
        self,
        match_id: uuid.UUID,
        actor_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> int:
        """Flag every unread message not sent by the actor as read."""
        await self.match_service.get_match_for_party(match_id, actor_id, db_session)

        stmt = (
            update(ChatMessage)
            .where(
                ChatMessage.match_id == match_id,
                ChatMessage.read_at.is_(None),
                or_(ChatMessage.sender_id.is_(None), ChatMessage.sender_id != actor_id),
            )
            .values(read_at=self.match_service.now())
            .execution_options(synchronize_session=False)
        )
        result = await db_session.execute(stmt)
        if result.rowcount:
            logger.debug(
                "messages_marked_read",
                match_id=str(match_id),
                actor_id=str(actor_id),
                count=result.rowcount,
            )
        return result.rowcount or 0

    async def post_system_message(
        self,
        match_id: uuid.UUID,
        text: str,
        db_session: AsyncSession,
        ref_message_id: uuid.UUID | None = None,
    ) -> ChatMessage:
        """Append an automated notice with no human sender."""
        match = await self.match_service.lock_match(match_id, db_session)
        return await self.match_service.append_message(
            match,
            db_session,
            text=text,
            message_type=MessageType.SYSTEM,
            ref_message_id=ref_message_id,
        )
