"""
Roomify Match Core — Action-card workflow (viewing & rent proposals)

Action cards are ACTION_CARD chat messages whose ``metadata`` holds an
``ActionCardPayload``.  Each card is a small state machine:

  VIEWING_PROPOSAL   PENDING -> ACCEPTED | DECLINED   (counterparty of proposer)
  RENT_PROPOSAL      PENDING -> DECLINED | PAID       (tenant only; landlord proposes)

Every transition appends a SYSTEM message referencing the card; that message
is the audit record of what happened.  The card's own payload state is
updated in place for display only.  Cards in a terminal state never move
again: repeating accept/decline/pay returns the existing outcome message, so
a retried network call is harmless.  ``PAID`` closes the match.

All transitions hold the match row lock, so two racing attempts serialise and
the loser sees the terminal state.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Union

import structlog
from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from app.models.chat import ChatMessage, MessageType
from app.models.match import Match, MatchStatus
from app.models.user import ActorRole
from app.schemas.chat import (
    ActionCardPayload,
    CardAction,
    CardState,
    RentProposalPayload,
    ViewingProposalPayload,
)
from app.services.match_service import MatchService

logger = structlog.get_logger("roomify.action_workflow")

_payload_adapter: TypeAdapter = TypeAdapter(ActionCardPayload)

# Allowed terminal targets from PENDING, per card type.
TRANSITIONS: dict[CardAction, frozenset[CardState]] = {
    CardAction.VIEWING_PROPOSAL: frozenset({CardState.ACCEPTED, CardState.DECLINED}),
    CardAction.RENT_PROPOSAL: frozenset({CardState.DECLINED, CardState.PAID}),
}

_VIEWING_FORMAT = "%A, %b %d at %H:%M"

AnyPayload = Union[ViewingProposalPayload, RentProposalPayload]


# ──────────────────────────────────────────────────────────────────────────────
# Input parsing (also used by the client before any network call)
# ──────────────────────────────────────────────────────────────────────────────

def parse_viewing_datetime(value: str) -> datetime:
    """Parse an ISO-8601 date-time.  Naive values are taken as UTC."""
    try:
        parsed = datetime.fromisoformat(value.strip())
    except (AttributeError, ValueError) as exc:
        raise ValidationError(f"Invalid date/time {value!r}; use ISO-8601.") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_lease_start(value: str) -> date:
    try:
        return date.fromisoformat(value.strip())
    except (AttributeError, ValueError) as exc:
        raise ValidationError(f"Invalid lease start {value!r}; use YYYY-MM-DD.") from exc


def validate_price(price) -> Decimal:
    try:
        amount = Decimal(str(price))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f"Invalid price {price!r}.") from exc
    if not amount.is_finite() or amount <= 0:
        raise ValidationError("Price must be a positive amount.")
    return amount.quantize(Decimal("0.01"))


def load_payload(message: ChatMessage) -> AnyPayload:
    """Decode an ACTION_CARD message's metadata into its payload variant."""
    try:
        return _payload_adapter.validate_python(message.action_payload)
    except PydanticValidationError as exc:
        raise ConflictError(f"Action card {message.id} has malformed metadata.") from exc


def check_transition(payload: AnyPayload, target: CardState) -> None:
    allowed = TRANSITIONS[CardAction(payload.action)]
    if target not in allowed:
        raise ValidationError(
            f"{payload.action} cannot move to {target.value}."
        )


class ActionWorkflowService:
    """Viewing and rent proposal state machines embedded in the chat thread."""

    def __init__(self, match_service: MatchService | None = None) -> None:
        self.match_service = match_service or MatchService()

    # ── Viewing ───────────────────────────────────────────────────────────

    async def propose_viewing(
        self,
        match_id: uuid.UUID,
        actor_id: uuid.UUID,
        date_time: str,
        db_session: AsyncSession,
    ) -> ChatMessage:
        """Post a viewing proposal card.  Either party may propose.

        A still-PENDING earlier proposal is superseded: it is declined and a
        SYSTEM notice records why.
        """
        proposed = parse_viewing_datetime(date_time)
        log = logger.bind(match_id=str(match_id), actor_id=str(actor_id))

        match = await self._lock_open_match(match_id, actor_id, db_session)

        previous = await self._latest_card(match.id, CardAction.VIEWING_PROPOSAL, db_session)
        if previous is not None:
            previous_payload = load_payload(previous)
            if previous_payload.state == CardState.PENDING:
                await self._transition(
                    match,
                    previous,
                    previous_payload,
                    CardState.DECLINED,
                    "Viewing proposal replaced by a new time.",
                    db_session,
                )
                log.info("viewing_proposal_superseded", card_id=str(previous.id))

        payload = ViewingProposalPayload(proposer_id=actor_id, proposed_date_time=proposed)
        card = await self.match_service.append_message(
            match,
            db_session,
            text=f"📅 Viewing proposal: {proposed.strftime(_VIEWING_FORMAT)}",
            message_type=MessageType.ACTION_CARD,
            sender_id=actor_id,
            payload=payload.model_dump(mode="json"),
        )
        log.info("viewing_proposed", card_id=str(card.id), date_time=proposed.isoformat())
        return card

    async def accept_viewing(
        self,
        match_id: uuid.UUID,
        actor_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> ChatMessage:
        return await self._resolve_viewing(match_id, actor_id, CardState.ACCEPTED, db_session)

    async def decline_viewing(
        self,
        match_id: uuid.UUID,
        actor_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> ChatMessage:
        return await self._resolve_viewing(match_id, actor_id, CardState.DECLINED, db_session)

    async def _resolve_viewing(
        self,
        match_id: uuid.UUID,
        actor_id: uuid.UUID,
        target: CardState,
        db_session: AsyncSession,
    ) -> ChatMessage:
        match = await self.match_service.get_match_for_party(
            match_id, actor_id, db_session, lock=True
        )
        card = await self._latest_card(match.id, CardAction.VIEWING_PROPOSAL, db_session)
        if card is None:
            raise NotFoundError("No viewing has been proposed for this match.")

        payload = load_payload(card)
        if payload.proposer_id == actor_id:
            raise ForbiddenError("Only the other party can answer a viewing proposal.")
        if payload.state.is_terminal:
            return await self._outcome_of(card, db_session)

        await self._require_live(match, db_session)
        if target == CardState.ACCEPTED:
            when = payload.proposed_date_time
            match.viewing_date = when
            text = f"✅ Viewing confirmed for {when.strftime(_VIEWING_FORMAT)}"
        else:
            text = "❌ Viewing proposal declined."

        return await self._transition(match, card, payload, target, text, db_session)

    # ── Rent ──────────────────────────────────────────────────────────────

    async def send_rent_proposal(
        self,
        match_id: uuid.UUID,
        actor_id: uuid.UUID,
        price,
        lease_start: str,
        db_session: AsyncSession,
        currency: str = "EUR",
    ) -> ChatMessage:
        """Post a rent proposal card.  Landlord only, after an accepted viewing."""
        amount = validate_price(price)
        start = parse_lease_start(lease_start)
        currency = currency.upper()

        match = await self._lock_open_match(match_id, actor_id, db_session)
        if match.party_of(actor_id) != ActorRole.LANDLORD:
            raise ForbiddenError("Only the landlord can send a rent proposal.")

        viewing = await self._latest_card(match.id, CardAction.VIEWING_PROPOSAL, db_session)
        if viewing is None or load_payload(viewing).state != CardState.ACCEPTED:
            raise ConflictError("A viewing must be scheduled before proposing rent.")

        previous = await self._latest_card(match.id, CardAction.RENT_PROPOSAL, db_session)
        if previous is not None and load_payload(previous).state == CardState.PENDING:
            raise ConflictError("A rent proposal is already pending for this match.")

        payload = RentProposalPayload(
            proposer_id=actor_id,
            price=amount,
            currency=currency,
            lease_start=start,
        )
        card = await self.match_service.append_message(
            match,
            db_session,
            text=f"💰 Rent proposal: {amount} {currency}/month from {start.isoformat()}",
            message_type=MessageType.ACTION_CARD,
            sender_id=actor_id,
            payload=payload.model_dump(mode="json"),
        )
        logger.info(
            "rent_proposed",
            match_id=str(match_id),
            card_id=str(card.id),
            price=str(amount),
            currency=currency,
        )
        return card

    async def decline_rent(
        self,
        match_id: uuid.UUID,
        actor_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> ChatMessage:
        return await self._resolve_rent(match_id, actor_id, CardState.DECLINED, db_session)

    async def pay_rent(
        self,
        match_id: uuid.UUID,
        actor_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> ChatMessage:
        """Record the rent as paid and close the match.

        Payment capture happens elsewhere; this only applies the state
        transition once the provider has confirmed.
        """
        return await self._resolve_rent(match_id, actor_id, CardState.PAID, db_session)

    async def _resolve_rent(
        self,
        match_id: uuid.UUID,
        actor_id: uuid.UUID,
        target: CardState,
        db_session: AsyncSession,
    ) -> ChatMessage:
        match = await self.match_service.get_match_for_party(
            match_id, actor_id, db_session, lock=True
        )
        if match.party_of(actor_id) != ActorRole.TENANT:
            raise ForbiddenError("Only the tenant can answer a rent proposal.")

        card = await self._latest_card(match.id, CardAction.RENT_PROPOSAL, db_session)
        if card is None:
            raise NotFoundError("No rent proposal exists for this match.")

        payload = load_payload(card)
        if payload.state.is_terminal:
            return await self._outcome_of(card, db_session)

        await self._require_live(match, db_session)
        if target == CardState.PAID:
            text = (
                f"🎉 Payment of {payload.price} {payload.currency} successful! "
                "Lease is now active."
            )
        else:
            text = "❌ Rent proposal declined."

        outcome = await self._transition(match, card, payload, target, text, db_session)
        if target == CardState.PAID:
            await self.match_service.close_match(match, db_session)
        return outcome

    # ── Internals ─────────────────────────────────────────────────────────

    async def _transition(
        self,
        match: Match,
        card: ChatMessage,
        payload: AnyPayload,
        target: CardState,
        text: str,
        db_session: AsyncSession,
    ) -> ChatMessage:
        check_transition(payload, target)

        # Reassign rather than mutate so the JSON column is flagged dirty.
        card.action_payload = payload.model_copy(update={"state": target}).model_dump(mode="json")

        outcome = await self.match_service.append_message(
            match,
            db_session,
            text=text,
            message_type=MessageType.SYSTEM,
            ref_message_id=card.id,
        )
        logger.info(
            "action_card_transition",
            match_id=str(match.id),
            card_id=str(card.id),
            action=payload.action,
            state=target.value,
        )
        return outcome

    async def _outcome_of(self, card: ChatMessage, db_session: AsyncSession) -> ChatMessage:
        """The SYSTEM message that recorded a terminal card's outcome."""
        stmt = (
            select(ChatMessage)
            .where(
                ChatMessage.ref_message_id == card.id,
                ChatMessage.type == MessageType.SYSTEM,
            )
            .order_by(ChatMessage.created_at.asc())
            .limit(1)
        )
        outcome = (await db_session.execute(stmt)).scalar_one_or_none()
        logger.info("action_card_noop", card_id=str(card.id))
        return outcome if outcome is not None else card

    async def _latest_card(
        self,
        match_id: uuid.UUID,
        action: CardAction,
        db_session: AsyncSession,
    ) -> ChatMessage | None:
        stmt = (
            select(ChatMessage)
            .where(
                ChatMessage.match_id == match_id,
                ChatMessage.type == MessageType.ACTION_CARD,
            )
            .order_by(ChatMessage.created_at.desc(), ChatMessage.id.desc())
        )
        for card in (await db_session.execute(stmt)).scalars():
            if (card.action_payload or {}).get("action") == action.value:
                return card
        return None

    async def _lock_open_match(
        self,
        match_id: uuid.UUID,
        actor_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> Match:
        match = await self.match_service.get_match_for_party(
            match_id, actor_id, db_session, lock=True
        )
        await self._require_live(match, db_session)
        return match

    async def _require_live(self, match: Match, db_session: AsyncSession) -> None:
        """Apply a lapsed deadline, then insist the match is still MATCHED."""
        if await self.match_service.expire_locked(match, db_session):
            # Keep the expiry even though this request fails.
            await db_session.commit()
        self._require_open(match)

    @staticmethod
    def _require_open(match: Match) -> None:
        if match.status != MatchStatus.MATCHED:
            raise ConflictError(f"Match is {match.status.value.lower()}.")
