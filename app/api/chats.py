"""
Roomify Match Core — Chat & action-card API

Thread snapshot, sends, read receipts, and the viewing / rent proposal
cards.  Every route requires the actor to be party to the match.
"""

from __future__ import annotations

import uuid

import structlog
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies import get_chat_service, get_current_actor, get_workflow_service
from app.database import get_db
from app.models.user import User
from app.schemas.chat import (
    ChatMessageResponse,
    RentProposeRequest,
    SendMessageRequest,
    ViewingProposeRequest,
)
from app.services.action_workflow import ActionWorkflowService
from app.services.chat_service import ChatService

logger = structlog.get_logger("roomify.api.chats")

router = APIRouter()


# ── Thread ────────────────────────────────────────────────────────────────────

@router.get(
    "/{match_id}/messages",
    response_model=list[ChatMessageResponse],
    summary="Full message thread, oldest first",
)
async def list_messages(
    match_id: uuid.UUID,
    actor: User = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    chat_service: ChatService = Depends(get_chat_service),
) -> list[ChatMessageResponse]:
    messages = await chat_service.list_messages(match_id, actor.id, db)
    return [ChatMessageResponse.from_model(m) for m in messages]


@router.post(
    "/{match_id}/messages",
    response_model=ChatMessageResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Send a text message",
)
async def send_message(
    match_id: uuid.UUID,
    body: SendMessageRequest,
    actor: User = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    chat_service: ChatService = Depends(get_chat_service),
) -> ChatMessageResponse:
    message = await chat_service.send_message(match_id, actor.id, body.text, db)
    return ChatMessageResponse.from_model(message)


@router.post(
    "/{match_id}/read",
    summary="Mark the counterpart's messages as read",
)
async def mark_read(
    match_id: uuid.UUID,
    actor: User = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    chat_service: ChatService = Depends(get_chat_service),
) -> dict:
    updated = await chat_service.mark_read(match_id, actor.id, db)
    return {"updated": updated}


# ── Viewing proposals ─────────────────────────────────────────────────────────

@router.post(
    "/{match_id}/viewing/propose",
    response_model=ChatMessageResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Propose a viewing date/time",
)
async def propose_viewing(
    match_id: uuid.UUID,
    body: ViewingProposeRequest,
    actor: User = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    workflow: ActionWorkflowService = Depends(get_workflow_service),
) -> ChatMessageResponse:
    card = await workflow.propose_viewing(match_id, actor.id, body.date_time, db)
    return ChatMessageResponse.from_model(card)


@router.post(
    "/{match_id}/viewing/accept",
    response_model=ChatMessageResponse,
    summary="Accept the latest viewing proposal",
)
async def accept_viewing(
    match_id: uuid.UUID,
    actor: User = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    workflow: ActionWorkflowService = Depends(get_workflow_service),
) -> ChatMessageResponse:
    outcome = await workflow.accept_viewing(match_id, actor.id, db)
    return ChatMessageResponse.from_model(outcome)


@router.post(
    "/{match_id}/viewing/decline",
    response_model=ChatMessageResponse,
    summary="Decline the latest viewing proposal",
)
async def decline_viewing(
    match_id: uuid.UUID,
    actor: User = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    workflow: ActionWorkflowService = Depends(get_workflow_service),
) -> ChatMessageResponse:
    outcome = await workflow.decline_viewing(match_id, actor.id, db)
    return ChatMessageResponse.from_model(outcome)


# ── Rent proposals ────────────────────────────────────────────────────────────

@router.post(
    "/{match_id}/rent/propose",
    response_model=ChatMessageResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Landlord proposes rent terms",
)
async def send_rent_proposal(
    match_id: uuid.UUID,
    body: RentProposeRequest,
    actor: User = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    workflow: ActionWorkflowService = Depends(get_workflow_service),
) -> ChatMessageResponse:
    card = await workflow.send_rent_proposal(
        match_id,
        actor.id,
        body.price,
        body.lease_start,
        db,
        currency=body.currency,
    )
    return ChatMessageResponse.from_model(card)


@router.post(
    "/{match_id}/rent/decline",
    response_model=ChatMessageResponse,
    summary="Tenant declines the rent proposal",
)
async def decline_rent(
    match_id: uuid.UUID,
    actor: User = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    workflow: ActionWorkflowService = Depends(get_workflow_service),
) -> ChatMessageResponse:
    outcome = await workflow.decline_rent(match_id, actor.id, db)
    return ChatMessageResponse.from_model(outcome)


@router.post(
    "/{match_id}/rent/pay",
    response_model=ChatMessageResponse,
    summary="Record a confirmed rent payment and close the match",
)
async def pay_rent(
    match_id: uuid.UUID,
    actor: User = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    workflow: ActionWorkflowService = Depends(get_workflow_service),
) -> ChatMessageResponse:
    outcome = await workflow.pay_rent(match_id, actor.id, db)
    logger.info("rent_paid", match_id=str(match_id), actor_id=str(actor.id))
    return ChatMessageResponse.from_model(outcome)
