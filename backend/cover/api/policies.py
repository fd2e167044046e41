"""
Policy endpoints, including the collections that live under a policy:
items, claims, members, dependents, strikes and ledger entries.
"""

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cover.api.authz import ResourceType
from cover.api.deps import authorize, authorized, get_current_actor, get_db
from cover.models import (
    Claim,
    Item,
    LedgerEntry,
    Policy,
    PolicyDependent,
    PolicyUser,
    Strike,
    User,
)
from cover.schemas.schemas import (
    ClaimCreate,
    ClaimOut,
    DependentCreate,
    DependentOut,
    ItemCreate,
    ItemOut,
    LedgerEntryOut,
    PolicyCreate,
    PolicyOut,
    PolicyUpdate,
    StrikeInput,
    StrikeOut,
    UserOut,
)
from cover.services.audit_service import AuditService
from cover.services.claim_manager import ClaimManager
from cover.services.item_manager import ItemManager

router = APIRouter(prefix="/policies", tags=["policies"], dependencies=[Depends(authorize)])

_policy = authorized(ResourceType.POLICIES.value)


# ── Policies ─────────────────────────────────────────────────────────────────

@router.get("", response_model=list[PolicyOut])
async def list_policies(actor: User = Depends(get_current_actor), db: AsyncSession = Depends(get_db)):
    query = select(Policy).order_by(Policy.name)
    if not actor.is_admin:
        query = query.join(PolicyUser, PolicyUser.policy_id == Policy.id).where(PolicyUser.user_id == actor.id)
    result = await db.execute(query)
    return [PolicyOut.model_validate(p) for p in result.scalars().all()]


@router.post("", response_model=PolicyOut, status_code=201)
async def create_policy(
    body: PolicyCreate,
    actor: User = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Create a policy with the caller as its first member."""
    policy = Policy(**body.model_dump())
    db.add(policy)
    await db.flush()
    db.add(PolicyUser(policy_id=policy.id, user_id=actor.id))
    await db.flush()

    await AuditService(db).log_event(
        event_type="policy_created",
        actor=actor.email,
        action=f"Created policy {policy.name}",
        resource_type=ResourceType.POLICIES.value,
        resource_id=str(policy.id),
    )
    return PolicyOut.model_validate(policy)


@router.get("/{policy_id}", response_model=PolicyOut)
async def get_policy(policy_id: uuid.UUID, policy: Policy = Depends(_policy)):
    return PolicyOut.model_validate(policy)


@router.put("/{policy_id}", response_model=PolicyOut)
async def update_policy(
    policy_id: uuid.UUID,
    body: PolicyUpdate,
    policy: Policy = Depends(_policy),
    actor: User = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    changes = body.model_dump(exclude_unset=True)
    history = {k: (getattr(policy, k), v) for k, v in changes.items() if getattr(policy, k) != v}
    for k, v in changes.items():
        setattr(policy, k, v)
    await db.flush()
    await AuditService(db).log_field_changes(actor.email, ResourceType.POLICIES.value, policy.id, history)
    return PolicyOut.model_validate(policy)


# ── Items ────────────────────────────────────────────────────────────────────

@router.get("/{policy_id}/items", response_model=list[ItemOut])
async def list_policy_items(
    policy_id: uuid.UUID,
    policy: Policy = Depends(_policy),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(Item).where(Item.policy_id == policy.id).order_by(Item.created_at)
    )
    return [ItemOut.model_validate(i) for i in result.scalars().all()]


@router.post("/{policy_id}/items", response_model=ItemOut, status_code=201)
async def create_policy_item(
    policy_id: uuid.UUID,
    body: ItemCreate,
    policy: Policy = Depends(_policy),
    actor: User = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    item = await ItemManager(db, actor).create(policy, body.model_dump())
    return ItemOut.model_validate(item)


# ── Claims ───────────────────────────────────────────────────────────────────

@router.get("/{policy_id}/claims", response_model=list[ClaimOut])
async def list_policy_claims(
    policy_id: uuid.UUID,
    policy: Policy = Depends(_policy),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(Claim).where(Claim.policy_id == policy.id).order_by(Claim.created_at.desc())
    )
    return [ClaimOut.model_validate(c) for c in result.scalars().all()]


@router.post("/{policy_id}/claims", response_model=ClaimOut, status_code=201)
async def create_policy_claim(
    policy_id: uuid.UUID,
    body: ClaimCreate,
    policy: Policy = Depends(_policy),
    actor: User = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    claim = await ClaimManager(db, actor).create(policy, body.model_dump())
    return ClaimOut.model_validate(claim)


# ── Members and dependents ───────────────────────────────────────────────────

@router.get("/{policy_id}/members", response_model=list[UserOut])
async def list_policy_members(
    policy_id: uuid.UUID,
    policy: Policy = Depends(_policy),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(User)
        .join(PolicyUser, PolicyUser.user_id == User.id)
        .where(PolicyUser.policy_id == policy.id)
        .order_by(User.last_name, User.first_name)
    )
    return [UserOut.model_validate(u) for u in result.scalars().all()]


@router.get("/{policy_id}/dependents", response_model=list[DependentOut])
async def list_policy_dependents(
    policy_id: uuid.UUID,
    policy: Policy = Depends(_policy),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(PolicyDependent).where(PolicyDependent.policy_id == policy.id).order_by(PolicyDependent.name)
    )
    return [DependentOut.model_validate(d) for d in result.scalars().all()]


@router.post("/{policy_id}/dependents", response_model=DependentOut, status_code=201)
async def create_policy_dependent(
    policy_id: uuid.UUID,
    body: DependentCreate,
    policy: Policy = Depends(_policy),
    db: AsyncSession = Depends(get_db),
):
    dependent = PolicyDependent(policy_id=policy.id, **body.model_dump())
    db.add(dependent)
    await db.flush()
    return DependentOut.model_validate(dependent)


# ── Strikes (admin only) ─────────────────────────────────────────────────────

@router.get("/{policy_id}/strikes", response_model=list[StrikeOut])
async def list_policy_strikes(
    policy_id: uuid.UUID,
    policy: Policy = Depends(_policy),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(Strike).where(Strike.policy_id == policy.id).order_by(Strike.created_at.desc())
    )
    return [StrikeOut.model_validate(s) for s in result.scalars().all()]


@router.post("/{policy_id}/strikes", response_model=StrikeOut, status_code=201)
async def create_policy_strike(
    policy_id: uuid.UUID,
    body: StrikeInput,
    policy: Policy = Depends(_policy),
    db: AsyncSession = Depends(get_db),
):
    strike = Strike(policy_id=policy.id, description=body.description)
    db.add(strike)
    await db.flush()
    return StrikeOut.model_validate(strike)


# ── Ledger ───────────────────────────────────────────────────────────────────

@router.get("/{policy_id}/ledger", response_model=list[LedgerEntryOut])
async def list_policy_ledger(
    policy_id: uuid.UUID,
    policy: Policy = Depends(_policy),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(LedgerEntry).where(LedgerEntry.policy_id == policy.id).order_by(LedgerEntry.created_at)
    )
    return [LedgerEntryOut.model_validate(e) for e in result.scalars().all()]
