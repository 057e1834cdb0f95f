"""
Roomify Match Core — Chat message model.
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import JSON, Enum, ForeignKey, Index, Text, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base, UTCDateTime, utcnow


class MessageType(str, enum.Enum):
    TEXT = "TEXT"
    SYSTEM = "SYSTEM"
    ACTION_CARD = "ACTION_CARD"


class ChatMessage(Base):
    __tablename__ = "chat_messages"
    __table_args__ = (
        Index("ix_chat_messages_match_created", "match_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    match_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("matches.id", ondelete="CASCADE"), nullable=False
    )
    sender_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        comment="NULL for SYSTEM messages",
    )
    type: Mapped[MessageType] = mapped_column(
        Enum(MessageType, native_enum=False, length=16),
        default=MessageType.TEXT,
        nullable=False,
    )
    text: Mapped[str] = mapped_column(Text, nullable=False)
    # ``metadata`` is reserved on declarative classes, hence the attribute name.
    action_payload: Mapped[dict | None] = mapped_column(
        "metadata",
        JSON().with_variant(JSONB(), "postgresql"),
        nullable=True,
        comment="ActionCardPayload for ACTION_CARD messages",
    )
    ref_message_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("chat_messages.id", ondelete="SET NULL"),
        nullable=True,
        comment="Action card a SYSTEM outcome message refers to",
    )
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, nullable=False
    )
    read_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    match: Mapped["Match"] = relationship("Match", back_populates="messages")

    def __repr__(self) -> str:
        return f"<ChatMessage {self.type.value} match={self.match_id} id={self.id}>"
