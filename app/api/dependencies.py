"""
Roomify Match Core — Shared API dependencies

The acting user is identified by the ``X-Actor-Id`` header; authentication
itself happens upstream.  Services are lazy singletons exposed as
dependencies so tests can swap them through ``app.dependency_overrides``.
"""

from __future__ import annotations

import uuid
from typing import Optional

import structlog
from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.models.user import User
from app.services.action_workflow import ActionWorkflowService
from app.services.chat_service import ChatService
from app.services.match_service import MatchService
from app.services.swipe_service import SwipeService

logger = structlog.get_logger("roomify.api.dependencies")


# ── Service singletons ────────────────────────────────────────────────────────

_match_service: MatchService | None = None
_swipe_service: SwipeService | None = None
_chat_service: ChatService | None = None
_workflow_service: ActionWorkflowService | None = None


def get_match_service() -> MatchService:
    global _match_service
    if _match_service is None:
        _match_service = MatchService()
    return _match_service


def get_swipe_service(
    match_service: MatchService = Depends(get_match_service),
) -> SwipeService:
    global _swipe_service
    if _swipe_service is None or _swipe_service.match_service is not match_service:
        _swipe_service = SwipeService(match_service)
    return _swipe_service


def get_chat_service(
    match_service: MatchService = Depends(get_match_service),
) -> ChatService:
    global _chat_service
    if _chat_service is None or _chat_service.match_service is not match_service:
        _chat_service = ChatService(match_service)
    return _chat_service


def get_workflow_service(
    match_service: MatchService = Depends(get_match_service),
) -> ActionWorkflowService:
    global _workflow_service
    if _workflow_service is None or _workflow_service.match_service is not match_service:
        _workflow_service = ActionWorkflowService(match_service)
    return _workflow_service


# ── Acting user ───────────────────────────────────────────────────────────────

async def get_current_actor(
    x_actor_id: Optional[str] = Header(default=None, alias="X-Actor-Id"),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Resolve the ``X-Actor-Id`` header to an active user, or 401."""
    if not x_actor_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-Actor-Id header.",
        )
    try:
        actor_id = uuid.UUID(x_actor_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Malformed X-Actor-Id header.",
        )

    actor = await db.get(User, actor_id)
    if actor is None or not actor.is_active:
        logger.warning("unknown_actor", actor_id=x_actor_id)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unknown actor.",
        )
    return actor
