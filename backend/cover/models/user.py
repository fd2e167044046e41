import uuid
from datetime import datetime

from sqlalchemy import String, Boolean, DateTime, Uuid
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column
from starlette.requests import Request

from cover.auth.authable import Authable
from cover.auth.permissions import Permission, SubResource
from cover.auth.roles import AppRole, AdminCapability, capabilities_for
from cover.database import Base, enum_column, utcnow


class User(Authable, Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    first_name: Mapped[str] = mapped_column(String(100), default="")
    last_name: Mapped[str] = mapped_column(String(100), default="")
    staff_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    app_role: Mapped[AppRole] = mapped_column(enum_column(AppRole), default=AppRole.CUSTOMER)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    last_login_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    @property
    def name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip() or self.email

    @property
    def capabilities(self) -> frozenset[AdminCapability]:
        return capabilities_for(self.app_role)

    @property
    def is_admin(self) -> bool:
        return bool(self.capabilities)

    def has_capability(self, capability: AdminCapability) -> bool:
        return capability in self.capabilities

    async def is_actor_allowed_to(
        self,
        session: AsyncSession,
        actor: "User",
        permission: Permission,
        sub_resource: SubResource,
        request: Request | None = None,
    ) -> bool:
        if sub_resource is not SubResource.NONE:
            return actor.is_admin
        if permission in (Permission.VIEW, Permission.UPDATE):
            return actor.is_admin or actor.id == self.id
        if permission in (Permission.LIST, Permission.CREATE, Permission.DELETE):
            return actor.is_admin
        return False

    def __repr__(self) -> str:
        return f"<User {self.email} ({self.app_role})>"
