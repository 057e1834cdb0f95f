from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel

from app.models.match import MatchStatus, SwipeDirection
from app.models.user import ActorRole


class SwipeCreate(BaseModel):
    role: ActorRole
    candidate_id: UUID
    direction: SwipeDirection = SwipeDirection.LIKE
    property_id: Optional[UUID] = None  # required for landlord swipes


class MatchOutcome(BaseModel):
    matched: bool
    match_id: Optional[UUID] = None


class PendingLikeItem(BaseModel):
    tenant_id: UUID
    tenant_name: str
    property_id: UUID
    property_title: str
    liked_at: datetime


class MatchInfo(BaseModel):
    match_id: UUID
    status: MatchStatus
    time_left_seconds: int
    tenant_messaged: bool
    response_deadline: Optional[datetime] = None
    viewing_date: Optional[datetime] = None


class ConversationItem(BaseModel):
    match_id: UUID
    status: MatchStatus
    property_id: UUID
    property_title: str
    other_party_id: UUID
    other_party_name: str
    last_message: Optional[str] = None
    last_message_at: Optional[datetime] = None
    unread_count: int = 0
    updated_at: datetime
