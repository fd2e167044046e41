"""Shared test fixtures for backend tests."""

import os

# Settings are read at import time; point them at throwaway backends first.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["ENVIRONMENT"] = "test"
os.environ["RATE_LIMIT_PER_MINUTE"] = "0"
os.environ["NOTIFICATION_WEBHOOK_URL"] = ""

import uuid  # noqa: E402
from datetime import date  # noqa: E402
from typing import AsyncGenerator  # noqa: E402

import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from cover.api.deps import get_db  # noqa: E402
from cover.auth.jwt import create_access_token  # noqa: E402
from cover.auth.roles import AppRole  # noqa: E402
from cover.database import Base  # noqa: E402
from cover.lifecycle.claim_items import ClaimItemStatus  # noqa: E402
from cover.lifecycle.claims import ClaimStatus  # noqa: E402
from cover.lifecycle.items import ItemCoverageStatus  # noqa: E402
from cover.main import app  # noqa: E402
from cover.models import (  # noqa: E402
    Claim,
    ClaimItem,
    IncidentType,
    Item,
    ItemCategory,
    PayoutOption,
    Policy,
    PolicyUser,
    User,
)


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_maker(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    async with session_maker() as session:
        yield session


# ── Factories ────────────────────────────────────────────────────────────────

async def make_user(session: AsyncSession, role: AppRole = AppRole.CUSTOMER, name: str = "user") -> User:
    user = User(
        email=f"{name}-{uuid.uuid4().hex[:8]}@example.org",
        first_name=name.title(),
        last_name="Tester",
        app_role=role,
    )
    session.add(user)
    await session.flush()
    return user


async def make_policy(session: AsyncSession, *members: User, name: str = "Household") -> Policy:
    policy = Policy(name=name)
    session.add(policy)
    await session.flush()
    for member in members:
        session.add(PolicyUser(policy_id=policy.id, user_id=member.id))
    await session.flush()
    return policy


async def make_category(
    session: AsyncSession, auto_approve_max: int = 200_000, require_make_model: bool = False,
) -> ItemCategory:
    category = ItemCategory(
        name=f"Category {uuid.uuid4().hex[:6]}",
        auto_approve_max=auto_approve_max,
        require_make_model=require_make_model,
    )
    session.add(category)
    await session.flush()
    return category


async def make_item(
    session: AsyncSession,
    policy: Policy,
    category: ItemCategory,
    status: ItemCoverageStatus = ItemCoverageStatus.DRAFT,
    amount: int = 100_000,
    **fields,
) -> Item:
    item = Item(
        policy_id=policy.id,
        category_id=category.id,
        name=fields.pop("name", "Laptop"),
        coverage_amount=amount,
        coverage_status=status,
        **fields,
    )
    session.add(item)
    await session.flush()
    return item


async def make_claim(
    session: AsyncSession,
    policy: Policy,
    status: ClaimStatus = ClaimStatus.DRAFT,
    incident_type: IncidentType = IncidentType.IMPACT,
) -> Claim:
    claim = Claim(
        policy_id=policy.id,
        reference_number="C" + uuid.uuid4().hex[:6].upper(),
        incident_date=date(2026, 3, 1),
        incident_type=incident_type,
        status=status,
    )
    session.add(claim)
    await session.flush()
    return claim


async def make_claim_item(
    session: AsyncSession,
    claim: Claim,
    item: Item,
    status: ClaimItemStatus = ClaimItemStatus.DRAFT,
    **fields,
) -> ClaimItem:
    fields.setdefault("payout_option", PayoutOption.REPLACEMENT)
    fields.setdefault("replace_estimate", 80_000)
    claim_item = ClaimItem(claim_id=claim.id, item_id=item.id, status=status, **fields)
    session.add(claim_item)
    await session.flush()
    return claim_item


# ── Actors and a policy they share ───────────────────────────────────────────

@pytest_asyncio.fixture
async def customer(db_session) -> User:
    return await make_user(db_session, AppRole.CUSTOMER, "customer")


@pytest_asyncio.fixture
async def outsider(db_session) -> User:
    return await make_user(db_session, AppRole.CUSTOMER, "outsider")


@pytest_asyncio.fixture
async def steward(db_session) -> User:
    return await make_user(db_session, AppRole.STEWARD, "steward")


@pytest_asyncio.fixture
async def signator(db_session) -> User:
    return await make_user(db_session, AppRole.SIGNATOR, "signator")


@pytest_asyncio.fixture
async def policy(db_session, customer) -> Policy:
    return await make_policy(db_session, customer)


@pytest_asyncio.fixture
async def category(db_session) -> ItemCategory:
    return await make_category(db_session)


# ── HTTP ─────────────────────────────────────────────────────────────────────

def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.id, user.email)}"}


def _override_db(session: AsyncSession):
    """Serve every request from the test session; the test owns the transaction."""
    async def _get_db():
        yield session
    return _get_db


@pytest_asyncio.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Unauthenticated client; pass ``headers=auth_headers(user)`` per request."""
    app.dependency_overrides[get_db] = _override_db(db_session)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as http:
        yield http
    app.dependency_overrides.clear()
