"""Shared pytest fixtures for Roomify match-core tests."""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("RESPONSE_WINDOW_SECONDS", "86400")

from datetime import datetime, timezone

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.database import Base, build_engine
from app.models.user import ActorRole
from app.services.action_workflow import ActionWorkflowService
from app.services.chat_service import ChatService
from app.services.match_service import MatchService
from app.services.swipe_service import SwipeService

from tests.factories import WINDOW_SECONDS, FrozenClock, make_property, make_user


@pytest.fixture
def clock():
    return FrozenClock(datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc))


@pytest_asyncio.fixture
async def engine():
    eng = build_engine("sqlite+aiosqlite:///:memory:")
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


# ── Services ──────────────────────────────────────────────────────────────────

@pytest.fixture
def match_service(clock):
    return MatchService(clock=clock, window_seconds=WINDOW_SECONDS)


@pytest.fixture
def swipe_service(match_service):
    return SwipeService(match_service)


@pytest.fixture
def chat_service(match_service):
    return ChatService(match_service)


@pytest.fixture
def workflow(match_service):
    return ActionWorkflowService(match_service)


# ── Data ──────────────────────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def tenant(db_session):
    return await make_user(db_session, ActorRole.TENANT, "Tara Tenant")


@pytest_asyncio.fixture
async def landlord(db_session):
    return await make_user(db_session, ActorRole.LANDLORD, "Lou Landlord")


@pytest_asyncio.fixture
async def outsider(db_session):
    return await make_user(db_session, ActorRole.TENANT, "Otto Outsider")


@pytest_asyncio.fixture
async def listing(db_session, landlord):
    return await make_property(db_session, landlord)


@pytest_asyncio.fixture
async def match(db_session, match_service, tenant, landlord, listing):
    """A fresh MATCHED match, committed, with its response clock running."""
    created = await match_service.create_match(tenant.id, landlord.id, listing.id, db_session)
    await db_session.commit()
    return created
