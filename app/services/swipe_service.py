"""
Roomify Match Core — Swipe ledger & mutual-like detection

Records each actor's LIKE/PASS decision and turns a pair of opposite-role
LIKEs on the same (tenant, property) into exactly one ``Match``:

  tenant   LIKE property P  ->  mirror: P's owner LIKEd this tenant for P
  landlord LIKE tenant T/P  ->  mirror: T LIKEd P

Decisions are upserted on (actor, tenant, property); the last write wins.
A PASS never creates a match and never consults the mirror.
"""

from __future__ import annotations

import uuid

import structlog
from sqlalchemy import and_, exists, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from app.exceptions import ForbiddenError, NotFoundError, ValidationError
from app.models.match import Swipe, SwipeDirection
from app.models.user import ActorRole, Property, User
from app.services.match_service import MatchService

logger = structlog.get_logger("roomify.swipe_service")


def property_lock_statement(property_id: uuid.UUID):
    """Row lock on a listing, held until the swipe transaction ends."""
    return (
        select(Property)
        .where(Property.id == property_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )


class SwipeService:
    """Swipe ledger.  Match creation is delegated to ``MatchService``."""

    def __init__(self, match_service: MatchService | None = None) -> None:
        self.match_service = match_service or MatchService()

    # ── Public API ────────────────────────────────────────────────────────

    async def record_swipe(
        self,
        actor_id: uuid.UUID,
        role: ActorRole,
        candidate_id: uuid.UUID,
        direction: SwipeDirection,
        db_session: AsyncSession,
        property_id: uuid.UUID | None = None,
    ) -> dict:
        """Record a decision and report whether it completed a match.

        Parameters
        ----------
        actor_id:
            The authenticated user making the decision.
        role:
            The side the actor claims to swipe as; must equal their stored role.
        candidate_id:
            Property id for a tenant swipe, tenant user id for a landlord swipe.
        direction:
            ``LIKE`` or ``PASS``.
        db_session:
            Active SQLAlchemy async session.
        property_id:
            Listing a landlord swipe is made for.  Optional for tenants, where
            it must equal ``candidate_id`` if given.

        Returns
        -------
        dict
            ``{"matched": bool, "match_id": UUID | None}``
        """
        log = logger.bind(
            actor_id=str(actor_id),
            role=role.value,
            candidate_id=str(candidate_id),
            direction=direction.value,
        )

        actor = await db_session.get(User, actor_id)
        if actor is None:
            raise NotFoundError(f"User {actor_id} not found.")
        if actor.role != role:
            log.warning("swipe_role_mismatch", stored_role=actor.role.value)
            raise ForbiddenError(f"Actor is not a {role.value.lower()}.")

        if role == ActorRole.TENANT:
            prop = await self._resolve_tenant_candidate(actor, candidate_id, property_id, db_session)
            tenant_id, landlord_id = actor.id, prop.owner_id
        else:
            prop, tenant = await self._resolve_landlord_candidate(
                actor, candidate_id, property_id, db_session
            )
            tenant_id, landlord_id = tenant.id, actor.id

        # Both sides of a (tenant, property) pair queue on the listing row, so
        # the later LIKE always sees the earlier one when checking the mirror.
        await self._lock_property(prop.id, db_session)

        await self._upsert_decision(
            actor_id=actor.id,
            role=role,
            candidate_id=candidate_id,
            tenant_id=tenant_id,
            property_id=prop.id,
            direction=direction,
            db_session=db_session,
        )

        if direction == SwipeDirection.PASS:
            log.info("swipe_recorded", matched=False)
            return {"matched": False, "match_id": None}

        mirror_actor_id = landlord_id if role == ActorRole.TENANT else tenant_id
        mirror_role = ActorRole.LANDLORD if role == ActorRole.TENANT else ActorRole.TENANT
        if not await self._mirror_liked(
            mirror_actor_id, mirror_role, tenant_id, prop.id, db_session
        ):
            log.info("swipe_recorded", matched=False, reason="no_mirror_like")
            return {"matched": False, "match_id": None}

        match = await self.match_service.create_match(
            tenant_id=tenant_id,
            landlord_id=landlord_id,
            property_id=prop.id,
            db_session=db_session,
        )
        log.info("swipe_recorded", matched=True, match_id=str(match.id))
        return {"matched": True, "match_id": match.id}

    async def list_pending_likes(
        self,
        landlord_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> list[dict]:
        """Tenants who LIKEd one of the landlord's properties and are still
        waiting for the landlord's decision."""
        landlord_swipe = aliased(Swipe)
        decided = exists().where(
            and_(
                landlord_swipe.actor_id == landlord_id,
                landlord_swipe.tenant_id == Swipe.tenant_id,
                landlord_swipe.property_id == Swipe.property_id,
            )
        )
        stmt = (
            select(Swipe, User, Property)
            .join(Property, Property.id == Swipe.property_id)
            .join(User, User.id == Swipe.tenant_id)
            .where(
                Property.owner_id == landlord_id,
                Swipe.actor_role == ActorRole.TENANT,
                Swipe.direction == SwipeDirection.LIKE,
                ~decided,
            )
            .order_by(Swipe.decided_at.desc())
        )
        rows = (await db_session.execute(stmt)).all()

        return [
            {
                "tenant_id": tenant.id,
                "tenant_name": tenant.display_name,
                "property_id": prop.id,
                "property_title": prop.title,
                "liked_at": swipe.decided_at,
            }
            for swipe, tenant, prop in rows
        ]

    # ── Candidate resolution ──────────────────────────────────────────────

    async def _resolve_tenant_candidate(
        self,
        tenant: User,
        candidate_id: uuid.UUID,
        property_id: uuid.UUID | None,
        db_session: AsyncSession,
    ) -> Property:
        if property_id is not None and property_id != candidate_id:
            raise ValidationError("A tenant swipe's property must be the candidate.")

        prop = await db_session.get(Property, candidate_id)
        if prop is None:
            raise NotFoundError(f"Property {candidate_id} not found.")
        if not prop.is_active or prop.owner_id == tenant.id:
            raise ForbiddenError("Property is not available to this tenant.")
        return prop

    async def _resolve_landlord_candidate(
        self,
        landlord: User,
        candidate_id: uuid.UUID,
        property_id: uuid.UUID | None,
        db_session: AsyncSession,
    ) -> tuple[Property, User]:
        if property_id is None:
            raise ValidationError("A landlord swipe requires a property_id.")

        prop = await db_session.get(Property, property_id)
        if prop is None:
            raise NotFoundError(f"Property {property_id} not found.")
        if prop.owner_id != landlord.id:
            raise ForbiddenError("Unauthorized: not your property.")

        tenant = await db_session.get(User, candidate_id)
        if tenant is None:
            raise NotFoundError(f"User {candidate_id} not found.")
        if tenant.role != ActorRole.TENANT:
            raise ForbiddenError("Candidate is not a tenant.")
        return prop, tenant

    # ── Ledger ────────────────────────────────────────────────────────────

    async def _lock_property(self, property_id: uuid.UUID, db_session: AsyncSession) -> Property:
        return (await db_session.execute(property_lock_statement(property_id))).scalar_one()

    async def _upsert_decision(
        self,
        *,
        actor_id: uuid.UUID,
        role: ActorRole,
        candidate_id: uuid.UUID,
        tenant_id: uuid.UUID,
        property_id: uuid.UUID,
        direction: SwipeDirection,
        db_session: AsyncSession,
    ) -> Swipe:
        existing = await self._find_decision(actor_id, tenant_id, property_id, db_session)
        if existing is None:
            swipe = Swipe(
                actor_id=actor_id,
                actor_role=role,
                candidate_id=candidate_id,
                tenant_id=tenant_id,
                property_id=property_id,
                direction=direction,
                decided_at=self.match_service.now(),
            )
            try:
                async with db_session.begin_nested():
                    db_session.add(swipe)
                    await db_session.flush()
                return swipe
            except IntegrityError:
                # A duplicate submission inserted first; overwrite it below.
                existing = await self._find_decision(actor_id, tenant_id, property_id, db_session)
                if existing is None:
                    raise

        if existing.direction != direction:
            logger.info(
                "swipe_overwritten",
                actor_id=str(actor_id),
                previous=existing.direction.value,
                current=direction.value,
            )
        existing.direction = direction
        existing.decided_at = self.match_service.now()
        await db_session.flush()
        return existing

    async def _find_decision(
        self,
        actor_id: uuid.UUID,
        tenant_id: uuid.UUID,
        property_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> Swipe | None:
        stmt = (
            select(Swipe)
            .where(
                Swipe.actor_id == actor_id,
                Swipe.tenant_id == tenant_id,
                Swipe.property_id == property_id,
            )
            .execution_options(populate_existing=True)
        )
        return (await db_session.execute(stmt)).scalar_one_or_none()

    async def _mirror_liked(
        self,
        mirror_actor_id: uuid.UUID,
        mirror_role: ActorRole,
        tenant_id: uuid.UUID,
        property_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> bool:
        stmt = select(Swipe.id).where(
            Swipe.actor_id == mirror_actor_id,
            Swipe.actor_role == mirror_role,
            Swipe.tenant_id == tenant_id,
            Swipe.property_id == property_id,
            Swipe.direction == SwipeDirection.LIKE,
        )
        return (await db_session.execute(stmt)).first() is not None
