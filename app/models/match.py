"""
Roomify Match Core — Match and Swipe models.
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    Enum,
    ForeignKey,
    Index,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base, UTCDateTime, utcnow
from app.models.user import ActorRole


class MatchStatus(str, enum.Enum):
    PENDING = "PENDING"
    MATCHED = "MATCHED"
    EXPIRED = "EXPIRED"
    CLOSED = "CLOSED"


class SwipeDirection(str, enum.Enum):
    LIKE = "LIKE"
    PASS = "PASS"


_OPEN_MATCH = text("status <> 'CLOSED'")


class Match(Base):
    __tablename__ = "matches"
    __table_args__ = (
        Index(
            "uq_matches_open_pair",
            "tenant_id",
            "property_id",
            unique=True,
            postgresql_where=_OPEN_MATCH,
            sqlite_where=_OPEN_MATCH,
        ),
        Index(
            "ix_matches_due",
            "status",
            "response_deadline",
            postgresql_where=text("tenant_first_reply_at IS NULL"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
    )
    landlord_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
    )
    property_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("properties.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[MatchStatus] = mapped_column(
        Enum(MatchStatus, native_enum=False, length=16),
        default=MatchStatus.PENDING,
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, nullable=False
    )
    response_deadline: Mapped[datetime | None] = mapped_column(
        UTCDateTime, nullable=True, comment="Tenant must send a first message before this"
    )
    tenant_first_reply_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime, nullable=True
    )
    viewing_date: Mapped[datetime | None] = mapped_column(
        UTCDateTime, nullable=True, comment="Set when a viewing proposal is accepted"
    )

    # ── Relationships ──────────────────────────────────────────────
    tenant: Mapped["User"] = relationship(
        "User", foreign_keys=[tenant_id], lazy="selectin"
    )
    landlord: Mapped["User"] = relationship(
        "User", foreign_keys=[landlord_id], lazy="selectin"
    )
    property: Mapped["Property"] = relationship("Property", lazy="selectin")
    messages: Mapped[list["ChatMessage"]] = relationship(
        "ChatMessage",
        back_populates="match",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def party_of(self, actor_id: uuid.UUID) -> ActorRole | None:
        """Return which side of the match ``actor_id`` is on, if any."""
        if actor_id == self.tenant_id:
            return ActorRole.TENANT
        if actor_id == self.landlord_id:
            return ActorRole.LANDLORD
        return None

    def __repr__(self) -> str:
        return (
            f"<Match {self.tenant_id} <-> {self.landlord_id} "
            f"property={self.property_id} status={self.status.value}>"
        )


class Swipe(Base):
    """One actor's directional decision on one candidate.

    For a tenant swipe the candidate is the property; for a landlord swipe
    the candidate is the tenant and ``property_id`` carries the listing the
    decision was made for.
    """

    __tablename__ = "swipes"
    __table_args__ = (
        UniqueConstraint(
            "actor_id", "tenant_id", "property_id", name="uq_swipe_decision"
        ),
        Index("ix_swipes_mirror", "tenant_id", "property_id", "actor_role"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    actor_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    actor_role: Mapped[ActorRole] = mapped_column(
        Enum(ActorRole, native_enum=False, length=16), nullable=False
    )
    candidate_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    property_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("properties.id", ondelete="CASCADE"), nullable=False
    )
    direction: Mapped[SwipeDirection] = mapped_column(
        Enum(SwipeDirection, native_enum=False, length=8), nullable=False
    )
    decided_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, nullable=False
    )

    def __repr__(self) -> str:
        return (
            f"<Swipe {self.actor_role.value} {self.actor_id} -> {self.candidate_id} "
            f"dir={self.direction.value}>"
        )
