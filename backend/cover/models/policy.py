import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import String, Integer, DateTime, ForeignKey, Text, Uuid, UniqueConstraint, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column
from starlette.requests import Request

from cover.auth.authable import Authable
from cover.auth.permissions import Permission, SubResource
from cover.database import Base, enum_column, utcnow
from cover.models.user import User


class PolicyType(str, Enum):
    HOUSEHOLD = "Household"
    TEAM = "Team"


async def is_policy_member(session: AsyncSession, policy_id: uuid.UUID | None, user_id: uuid.UUID | None) -> bool:
    """Whether ``user_id`` holds a PolicyUser row on ``policy_id``."""
    if policy_id is None or user_id is None:
        return False
    result = await session.execute(
        select(PolicyUser.id)
        .where(PolicyUser.policy_id == policy_id, PolicyUser.user_id == user_id)
        .limit(1)
    )
    return result.scalar_one_or_none() is not None


class Policy(Authable, Base):
    __tablename__ = "policies"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(200))
    type: Mapped[PolicyType] = mapped_column(enum_column(PolicyType), default=PolicyType.HOUSEHOLD)
    household_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    cost_center: Mapped[str | None] = mapped_column(String(64), nullable=True)
    account: Mapped[str | None] = mapped_column(String(64), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    async def is_actor_allowed_to(
        self,
        session: AsyncSession,
        actor: User,
        permission: Permission,
        sub_resource: SubResource,
        request: Request | None = None,
    ) -> bool:
        if permission is Permission.DENIED:
            return False
        if actor.is_admin:
            return True
        if sub_resource is SubResource.STRIKES:
            return False
        if permission is Permission.LIST:
            return True
        if permission is Permission.CREATE and sub_resource is SubResource.NONE:
            return True
        return await is_policy_member(session, self.id, actor.id)


class PolicyUser(Authable, Base):
    __tablename__ = "policy_users"
    __table_args__ = (UniqueConstraint("policy_id", "user_id", name="uq_policy_user"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    policy_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("policies.id", ondelete="CASCADE"), index=True)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    async def is_actor_allowed_to(
        self,
        session: AsyncSession,
        actor: User,
        permission: Permission,
        sub_resource: SubResource,
        request: Request | None = None,
    ) -> bool:
        if actor.is_admin:
            return True
        if permission is Permission.DENIED or sub_resource is not SubResource.NONE:
            return False
        return await is_policy_member(session, self.policy_id, actor.id)


class DependentRelationship(str, Enum):
    SPOUSE = "Spouse"
    CHILD = "Child"


class PolicyDependent(Authable, Base):
    __tablename__ = "policy_dependents"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    policy_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("policies.id", ondelete="CASCADE"), index=True)
    name: Mapped[str] = mapped_column(String(200))
    relationship: Mapped[DependentRelationship] = mapped_column(
        enum_column(DependentRelationship), default=DependentRelationship.CHILD,
    )
    country: Mapped[str | None] = mapped_column(String(64), nullable=True)
    child_birth_year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    async def is_actor_allowed_to(
        self,
        session: AsyncSession,
        actor: User,
        permission: Permission,
        sub_resource: SubResource,
        request: Request | None = None,
    ) -> bool:
        if actor.is_admin:
            return True
        if permission is Permission.DENIED or sub_resource is not SubResource.NONE:
            return False
        return await is_policy_member(session, self.policy_id, actor.id)


class Strike(Authable, Base):
    """A mark against a policy, visible to and managed by admins only."""

    __tablename__ = "strikes"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    policy_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("policies.id", ondelete="CASCADE"), index=True)
    description: Mapped[str] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    async def is_actor_allowed_to(
        self,
        session: AsyncSession,
        actor: User,
        permission: Permission,
        sub_resource: SubResource,
        request: Request | None = None,
    ) -> bool:
        return actor.is_admin and permission is not Permission.DENIED
