"""
User accounts.

Identity comes from SSO, so there is no password handling here. Admins
manage accounts and roles; everyone may read and edit their own profile.
"""

import logging
import uuid

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cover.api.authz import ResourceType
from cover.api.deps import authorize, authorized, get_current_actor, get_db
from cover.api.errors import AppError, ErrorCategory, ErrorKey
from cover.models import Policy, PolicyUser, User
from cover.schemas.schemas import PolicyOut, UserCreate, UserOut, UserUpdate
from cover.services.audit_service import AuditService

logger = logging.getLogger(__name__)

# /users/me is answered for the actor itself, so it skips the dispatcher.
me_router = APIRouter(prefix="/users", tags=["users"])
router = APIRouter(prefix="/users", tags=["users"], dependencies=[Depends(authorize)])

_user = authorized(ResourceType.USERS.value)

ADMIN_ONLY_FIELDS = frozenset({"app_role", "is_active"})


@me_router.get("/me", response_model=UserOut)
async def get_me(actor: User = Depends(get_current_actor)):
    return UserOut.model_validate(actor)


@me_router.get("/me/policies", response_model=list[PolicyOut])
async def get_my_policies(actor: User = Depends(get_current_actor), db: AsyncSession = Depends(get_db)):
    result = await db.execute(
        select(Policy)
        .join(PolicyUser, PolicyUser.policy_id == Policy.id)
        .where(PolicyUser.user_id == actor.id)
        .order_by(Policy.name)
    )
    return [PolicyOut.model_validate(p) for p in result.scalars().all()]


@router.get("", response_model=list[UserOut])
async def list_users(db: AsyncSession = Depends(get_db)):
    result = await db.execute(select(User).order_by(User.last_name, User.first_name))
    return [UserOut.model_validate(u) for u in result.scalars().all()]


@router.post("", response_model=UserOut, status_code=201)
async def create_user(
    body: UserCreate,
    actor: User = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    existing = (await db.execute(
        select(User).where(User.email == body.email)
    )).scalar_one_or_none()
    if existing:
        raise AppError("Email already registered", ErrorKey.CONFLICT, ErrorCategory.CONFLICT)

    user = User(**body.model_dump())
    db.add(user)
    await db.flush()

    await AuditService(db).log_event(
        event_type="user_created",
        actor=actor.email,
        action=f"Created user {user.email} with role {user.app_role.value}",
        resource_type=ResourceType.USERS.value,
        resource_id=str(user.id),
    )
    logger.info("User created: %s (%s) by %s", user.email, user.app_role.value, actor.email)
    return UserOut.model_validate(user)


@router.get("/{user_id}", response_model=UserOut)
async def get_user(user_id: uuid.UUID, user: User = Depends(_user)):
    return UserOut.model_validate(user)


@router.put("/{user_id}", response_model=UserOut)
async def update_user(
    user_id: uuid.UUID,
    body: UserUpdate,
    user: User = Depends(_user),
    actor: User = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    changes = body.model_dump(exclude_unset=True)
    if not actor.is_admin and ADMIN_ONLY_FIELDS & changes.keys():
        raise AppError(
            "only administrators may change roles or account status",
            ErrorKey.NOT_AUTHORIZED,
            ErrorCategory.FORBIDDEN,
        )

    history = {k: (getattr(user, k), v) for k, v in changes.items() if getattr(user, k) != v}
    for k, v in changes.items():
        setattr(user, k, v)
    await db.flush()

    await AuditService(db).log_field_changes(actor.email, ResourceType.USERS.value, user.id, history)
    return UserOut.model_validate(user)
