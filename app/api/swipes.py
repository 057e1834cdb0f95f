"""
Roomify Match Core — Swipe API

Records LIKE/PASS decisions and lists the tenants waiting on a landlord.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies import get_current_actor, get_swipe_service
from app.database import get_db
from app.exceptions import ForbiddenError
from app.models.user import ActorRole, User
from app.schemas.match import MatchOutcome, PendingLikeItem, SwipeCreate
from app.services.swipe_service import SwipeService

logger = structlog.get_logger("roomify.api.swipes")

router = APIRouter()


# ──────────────────────────────────────────────────────────────────────────────
# POST /  Record a swipe decision
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "",
    response_model=MatchOutcome,
    summary="Record a LIKE or PASS and report whether it formed a match",
)
async def record_swipe(
    body: SwipeCreate,
    actor: User = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    swipe_service: SwipeService = Depends(get_swipe_service),
) -> MatchOutcome:
    outcome = await swipe_service.record_swipe(
        actor_id=actor.id,
        role=body.role,
        candidate_id=body.candidate_id,
        direction=body.direction,
        db_session=db,
        property_id=body.property_id,
    )
    return MatchOutcome(**outcome)


# ──────────────────────────────────────────────────────────────────────────────
# GET /pending  Tenants who liked the landlord's listings
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/pending",
    response_model=list[PendingLikeItem],
    summary="List tenant likes awaiting the landlord's decision",
)
async def list_pending_likes(
    actor: User = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    swipe_service: SwipeService = Depends(get_swipe_service),
) -> list[PendingLikeItem]:
    if actor.role != ActorRole.LANDLORD:
        raise ForbiddenError("Only landlords have pending likes.")
    items = await swipe_service.list_pending_likes(actor.id, db)
    return [PendingLikeItem(**item) for item in items]
