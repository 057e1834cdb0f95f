"""
Chat message schemas, including the action-card payload variants.

``ActionCardPayload`` is a tagged union keyed on ``action``; it is what the
``metadata`` column of an ACTION_CARD message holds.
"""

import enum
from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, Field

from app.models.chat import ChatMessage, MessageType


class CardAction(str, enum.Enum):
    VIEWING_PROPOSAL = "VIEWING_PROPOSAL"
    RENT_PROPOSAL = "RENT_PROPOSAL"


class CardState(str, enum.Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    DECLINED = "DECLINED"
    PAID = "PAID"

    @property
    def is_terminal(self) -> bool:
        return self is not CardState.PENDING


class ViewingProposalPayload(BaseModel):
    action: Literal["VIEWING_PROPOSAL"] = "VIEWING_PROPOSAL"
    state: CardState = CardState.PENDING
    proposer_id: UUID
    proposed_date_time: datetime


class RentProposalPayload(BaseModel):
    action: Literal["RENT_PROPOSAL"] = "RENT_PROPOSAL"
    state: CardState = CardState.PENDING
    proposer_id: UUID
    price: Decimal
    currency: str = "EUR"
    lease_start: date


ActionCardPayload = Annotated[
    Union[ViewingProposalPayload, RentProposalPayload],
    Field(discriminator="action"),
]


class ChatMessageResponse(BaseModel):
    id: UUID
    match_id: UUID
    sender_id: Optional[UUID] = None
    type: MessageType
    text: str
    metadata: Optional[ActionCardPayload] = None
    ref_message_id: Optional[UUID] = None
    created_at: datetime
    read_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, message: ChatMessage) -> "ChatMessageResponse":
        return cls(
            id=message.id,
            match_id=message.match_id,
            sender_id=message.sender_id,
            type=message.type,
            text=message.text,
            metadata=message.action_payload,
            ref_message_id=message.ref_message_id,
            created_at=message.created_at,
            read_at=message.read_at,
        )


class SendMessageRequest(BaseModel):
    text: str = Field(min_length=1, max_length=4000)


class ViewingProposeRequest(BaseModel):
    date_time: str  # ISO-8601, parsed by the workflow service


class RentProposeRequest(BaseModel):
    price: Decimal
    lease_start: str  # ISO-8601 date
    currency: str = Field("EUR", min_length=3, max_length=3)
