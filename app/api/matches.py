"""
Roomify Match Core — Match API

Conversation list and authoritative match info (status, seconds left on the
response window, tenant-reply flag).
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies import get_current_actor, get_match_service
from app.database import get_db
from app.models.user import User
from app.schemas.match import ConversationItem, MatchInfo
from app.services.match_service import MatchService

router = APIRouter()


@router.get(
    "",
    response_model=list[ConversationItem],
    summary="List the actor's live conversations",
)
async def list_conversations(
    actor: User = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    match_service: MatchService = Depends(get_match_service),
) -> list[ConversationItem]:
    items = await match_service.list_conversations(actor.id, db)
    return [ConversationItem(**item) for item in items]


@router.get(
    "/{match_id}/info",
    response_model=MatchInfo,
    summary="Match status and response-window countdown",
)
async def get_match_info(
    match_id: uuid.UUID,
    actor: User = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    match_service: MatchService = Depends(get_match_service),
) -> MatchInfo:
    """Runs the expiry check first, so a lapsed window is reported as
    EXPIRED on this very call."""
    info = await match_service.get_match_info(match_id, actor.id, db)
    return MatchInfo(**info)
