"""Tests for SwipeService — decision ledger and mutual-like detection."""
import uuid
from unittest.mock import patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql

from app.exceptions import ForbiddenError, NotFoundError, ValidationError
from app.models.chat import ChatMessage, MessageType
from app.models.match import Match, MatchStatus, Swipe, SwipeDirection
from app.models.user import ActorRole
from app.services.swipe_service import property_lock_statement

from tests.factories import make_property, make_user


async def _count(db_session, model, *where):
    stmt = select(func.count()).select_from(model).where(*where)
    return (await db_session.execute(stmt)).scalar_one()


class TestMutualLike:

    @pytest.mark.asyncio
    async def test_tenant_like_alone_does_not_match(self, db_session, swipe_service, tenant, listing):
        outcome = await swipe_service.record_swipe(
            tenant.id, ActorRole.TENANT, listing.id, SwipeDirection.LIKE, db_session
        )
        assert outcome == {"matched": False, "match_id": None}
        assert await _count(db_session, Match) == 0

    @pytest.mark.asyncio
    async def test_landlord_then_tenant_creates_one_match(
        self, db_session, swipe_service, tenant, landlord, listing
    ):
        first = await swipe_service.record_swipe(
            landlord.id, ActorRole.LANDLORD, tenant.id, SwipeDirection.LIKE, db_session,
            property_id=listing.id,
        )
        second = await swipe_service.record_swipe(
            tenant.id, ActorRole.TENANT, listing.id, SwipeDirection.LIKE, db_session
        )

        assert first["matched"] is False
        assert second["matched"] is True
        match = await db_session.get(Match, second["match_id"])
        assert match.status == MatchStatus.MATCHED
        assert match.tenant_id == tenant.id
        assert match.landlord_id == landlord.id
        assert match.response_deadline is not None

    @pytest.mark.asyncio
    async def test_tenant_then_landlord_creates_one_match(
        self, db_session, swipe_service, tenant, landlord, listing
    ):
        await swipe_service.record_swipe(
            tenant.id, ActorRole.TENANT, listing.id, SwipeDirection.LIKE, db_session
        )
        outcome = await swipe_service.record_swipe(
            landlord.id, ActorRole.LANDLORD, tenant.id, SwipeDirection.LIKE, db_session,
            property_id=listing.id,
        )
        assert outcome["matched"] is True
        assert await _count(db_session, Match) == 1

    @pytest.mark.asyncio
    async def test_match_posts_system_notice(self, db_session, swipe_service, tenant, landlord, listing):
        await swipe_service.record_swipe(
            tenant.id, ActorRole.TENANT, listing.id, SwipeDirection.LIKE, db_session
        )
        outcome = await swipe_service.record_swipe(
            landlord.id, ActorRole.LANDLORD, tenant.id, SwipeDirection.LIKE, db_session,
            property_id=listing.id,
        )
        notices = (await db_session.execute(
            select(ChatMessage).where(ChatMessage.match_id == outcome["match_id"])
        )).scalars().all()
        assert len(notices) == 1
        assert notices[0].type == MessageType.SYSTEM
        assert notices[0].sender_id is None
        assert "24h" in notices[0].text

    @pytest.mark.asyncio
    async def test_repeated_likes_return_same_match(
        self, db_session, swipe_service, tenant, landlord, listing
    ):
        await swipe_service.record_swipe(
            tenant.id, ActorRole.TENANT, listing.id, SwipeDirection.LIKE, db_session
        )
        first = await swipe_service.record_swipe(
            landlord.id, ActorRole.LANDLORD, tenant.id, SwipeDirection.LIKE, db_session,
            property_id=listing.id,
        )
        again = await swipe_service.record_swipe(
            tenant.id, ActorRole.TENANT, listing.id, SwipeDirection.LIKE, db_session
        )
        assert again == first
        assert await _count(db_session, Match) == 1
        assert await _count(db_session, Swipe) == 2

    @pytest.mark.asyncio
    async def test_pass_never_matches(self, db_session, swipe_service, tenant, landlord, listing):
        await swipe_service.record_swipe(
            landlord.id, ActorRole.LANDLORD, tenant.id, SwipeDirection.LIKE, db_session,
            property_id=listing.id,
        )
        outcome = await swipe_service.record_swipe(
            tenant.id, ActorRole.TENANT, listing.id, SwipeDirection.PASS, db_session
        )
        assert outcome["matched"] is False
        assert await _count(db_session, Match) == 0

    @pytest.mark.asyncio
    async def test_last_write_wins(self, db_session, swipe_service, tenant, landlord, listing):
        await swipe_service.record_swipe(
            landlord.id, ActorRole.LANDLORD, tenant.id, SwipeDirection.PASS, db_session,
            property_id=listing.id,
        )
        await swipe_service.record_swipe(
            landlord.id, ActorRole.LANDLORD, tenant.id, SwipeDirection.LIKE, db_session,
            property_id=listing.id,
        )
        outcome = await swipe_service.record_swipe(
            tenant.id, ActorRole.TENANT, listing.id, SwipeDirection.LIKE, db_session
        )
        assert outcome["matched"] is True
        assert await _count(db_session, Swipe, Swipe.actor_id == landlord.id) == 1

    @pytest.mark.asyncio
    async def test_like_for_other_property_does_not_match(
        self, db_session, swipe_service, tenant, landlord, listing
    ):
        other = await make_property(db_session, landlord, title="Other flat")
        await swipe_service.record_swipe(
            landlord.id, ActorRole.LANDLORD, tenant.id, SwipeDirection.LIKE, db_session,
            property_id=other.id,
        )
        outcome = await swipe_service.record_swipe(
            tenant.id, ActorRole.TENANT, listing.id, SwipeDirection.LIKE, db_session
        )
        assert outcome["matched"] is False

    @pytest.mark.asyncio
    async def test_lost_insert_race_returns_winner(
        self, db_session, swipe_service, match_service, tenant, landlord, listing
    ):
        """Both sides miss the open-match lookup; the unique index resolves it."""
        await swipe_service.record_swipe(
            tenant.id, ActorRole.TENANT, listing.id, SwipeDirection.LIKE, db_session
        )
        first = await swipe_service.record_swipe(
            landlord.id, ActorRole.LANDLORD, tenant.id, SwipeDirection.LIKE, db_session,
            property_id=listing.id,
        )

        real_find = match_service._find_open_match
        calls = []

        async def find_once_stale(*args, **kwargs):
            calls.append(args)
            if len(calls) == 1:
                return None
            return await real_find(*args, **kwargs)

        with patch.object(match_service, "_find_open_match", new=find_once_stale):
            second = await swipe_service.record_swipe(
                tenant.id, ActorRole.TENANT, listing.id, SwipeDirection.LIKE, db_session
            )

        assert second["match_id"] == first["match_id"]
        assert await _count(db_session, Match) == 1


class TestPairLock:

    def test_lock_statement_is_select_for_update(self):
        stmt = property_lock_statement(uuid.uuid4())
        sql = str(stmt.compile(dialect=postgresql.dialect()))
        assert "FROM properties" in sql
        assert sql.rstrip().endswith("FOR UPDATE")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("side", ["tenant", "landlord"])
    async def test_listing_locked_before_decision_written(
        self, db_session, swipe_service, tenant, landlord, listing, side
    ):
        events = []
        real_lock = swipe_service._lock_property
        real_upsert = swipe_service._upsert_decision

        async def lock(property_id, session):
            events.append(("lock", property_id))
            return await real_lock(property_id, session)

        async def upsert(**kwargs):
            events.append(("upsert", kwargs["property_id"]))
            return await real_upsert(**kwargs)

        with patch.object(swipe_service, "_lock_property", new=lock), \
                patch.object(swipe_service, "_upsert_decision", new=upsert):
            if side == "tenant":
                await swipe_service.record_swipe(
                    tenant.id, ActorRole.TENANT, listing.id, SwipeDirection.LIKE, db_session
                )
            else:
                await swipe_service.record_swipe(
                    landlord.id, ActorRole.LANDLORD, tenant.id, SwipeDirection.LIKE, db_session,
                    property_id=listing.id,
                )

        assert events == [("lock", listing.id), ("upsert", listing.id)]


class TestSwipeValidation:

    @pytest.mark.asyncio
    async def test_role_mismatch_forbidden(self, db_session, swipe_service, tenant, listing):
        with pytest.raises(ForbiddenError):
            await swipe_service.record_swipe(
                tenant.id, ActorRole.LANDLORD, uuid.uuid4(), SwipeDirection.LIKE, db_session,
                property_id=listing.id,
            )

    @pytest.mark.asyncio
    async def test_landlord_needs_property(self, db_session, swipe_service, landlord, tenant):
        with pytest.raises(ValidationError):
            await swipe_service.record_swipe(
                landlord.id, ActorRole.LANDLORD, tenant.id, SwipeDirection.LIKE, db_session
            )

    @pytest.mark.asyncio
    async def test_landlord_cannot_swipe_for_foreign_property(
        self, db_session, swipe_service, tenant, listing
    ):
        stranger = await make_user(db_session, ActorRole.LANDLORD, "Stan Stranger")
        with pytest.raises(ForbiddenError):
            await swipe_service.record_swipe(
                stranger.id, ActorRole.LANDLORD, tenant.id, SwipeDirection.LIKE, db_session,
                property_id=listing.id,
            )

    @pytest.mark.asyncio
    async def test_landlord_candidate_must_be_tenant(self, db_session, swipe_service, landlord, listing):
        other_landlord = await make_user(db_session, ActorRole.LANDLORD, "Lara Landlord")
        with pytest.raises(ForbiddenError):
            await swipe_service.record_swipe(
                landlord.id, ActorRole.LANDLORD, other_landlord.id, SwipeDirection.LIKE, db_session,
                property_id=listing.id,
            )

    @pytest.mark.asyncio
    async def test_unknown_property(self, db_session, swipe_service, tenant):
        with pytest.raises(NotFoundError):
            await swipe_service.record_swipe(
                tenant.id, ActorRole.TENANT, uuid.uuid4(), SwipeDirection.LIKE, db_session
            )

    @pytest.mark.asyncio
    async def test_inactive_property_forbidden(self, db_session, swipe_service, tenant, listing):
        listing.is_active = False
        await db_session.commit()
        with pytest.raises(ForbiddenError):
            await swipe_service.record_swipe(
                tenant.id, ActorRole.TENANT, listing.id, SwipeDirection.LIKE, db_session
            )

    @pytest.mark.asyncio
    async def test_unknown_actor(self, db_session, swipe_service, listing):
        with pytest.raises(NotFoundError):
            await swipe_service.record_swipe(
                uuid.uuid4(), ActorRole.TENANT, listing.id, SwipeDirection.LIKE, db_session
            )


class TestPendingLikes:

    @pytest.mark.asyncio
    async def test_lists_undecided_tenant_likes(
        self, db_session, swipe_service, tenant, outsider, landlord, listing
    ):
        await swipe_service.record_swipe(
            tenant.id, ActorRole.TENANT, listing.id, SwipeDirection.LIKE, db_session
        )
        await swipe_service.record_swipe(
            outsider.id, ActorRole.TENANT, listing.id, SwipeDirection.LIKE, db_session
        )
        await swipe_service.record_swipe(
            landlord.id, ActorRole.LANDLORD, outsider.id, SwipeDirection.PASS, db_session,
            property_id=listing.id,
        )

        pending = await swipe_service.list_pending_likes(landlord.id, db_session)

        assert [p["tenant_id"] for p in pending] == [tenant.id]
        assert pending[0]["property_title"] == listing.title

    @pytest.mark.asyncio
    async def test_tenant_pass_not_listed(self, db_session, swipe_service, tenant, landlord, listing):
        await swipe_service.record_swipe(
            tenant.id, ActorRole.TENANT, listing.id, SwipeDirection.PASS, db_session
        )
        assert await swipe_service.list_pending_likes(landlord.id, db_session) == []
