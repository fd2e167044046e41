"""Policy membership and dependents."""

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from cover.api.authz import ResourceType
from cover.api.deps import authorize, authorized, get_current_actor, get_db
from cover.api.errors import AppError, ErrorKey
from cover.models import Item, PolicyDependent, PolicyUser, User
from cover.schemas.schemas import DependentOut, DependentUpdate
from cover.services.audit_service import AuditService

policy_users_router = APIRouter(
    prefix="/policy-users", tags=["policies"], dependencies=[Depends(authorize)],
)
policy_dependents_router = APIRouter(
    prefix="/policy-dependents", tags=["policies"], dependencies=[Depends(authorize)],
)

_policy_user = authorized(ResourceType.POLICY_USERS.value)
_dependent = authorized(ResourceType.POLICY_DEPENDENTS.value)


# ── Policy users ─────────────────────────────────────────────────────────────

@policy_users_router.delete("/{policy_user_id}", status_code=204)
async def remove_policy_user(
    policy_user_id: uuid.UUID,
    membership: PolicyUser = Depends(_policy_user),
    actor: User = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Take a member off a policy. The last member cannot be removed."""
    remaining = await db.scalar(
        select(func.count(PolicyUser.id)).where(PolicyUser.policy_id == membership.policy_id)
    )
    if remaining <= 1:
        raise AppError("a policy must keep at least one member", ErrorKey.VALIDATION)

    await AuditService(db).log_event(
        event_type="policy_member_removed",
        actor=actor.email,
        action="Removed policy member",
        resource_type=ResourceType.POLICIES.value,
        resource_id=str(membership.policy_id),
        details={"user_id": str(membership.user_id)},
    )
    await db.delete(membership)
    await db.flush()


# ── Dependents ───────────────────────────────────────────────────────────────

@policy_dependents_router.put("/{dependent_id}", response_model=DependentOut)
async def update_dependent(
    dependent_id: uuid.UUID,
    body: DependentUpdate,
    dependent: PolicyDependent = Depends(_dependent),
    db: AsyncSession = Depends(get_db),
):
    for k, v in body.model_dump(exclude_unset=True).items():
        setattr(dependent, k, v)
    await db.flush()
    return DependentOut.model_validate(dependent)


@policy_dependents_router.delete("/{dependent_id}", status_code=204)
async def remove_dependent(
    dependent_id: uuid.UUID,
    dependent: PolicyDependent = Depends(_dependent),
    db: AsyncSession = Depends(get_db),
):
    in_use = await db.scalar(
        select(func.count(Item.id)).where(Item.policy_dependent_id == dependent.id)
    )
    if in_use:
        raise AppError("dependent is still assigned to items", ErrorKey.VALIDATION)
    await db.delete(dependent)
    await db.flush()
