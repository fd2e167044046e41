import uuid
from datetime import date, datetime

from sqlalchemy import String, Integer, Boolean, Date, DateTime, ForeignKey, Text, Uuid
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column
from starlette.requests import Request

from cover.auth.authable import Authable
from cover.auth.permissions import Permission, SubResource
from cover.database import Base, enum_column, utcnow
from cover.lifecycle.items import ItemCoverageStatus, is_item_action_allowed
from cover.models.policy import is_policy_member
from cover.models.user import User


class ItemCategory(Base):
    __tablename__ = "item_categories"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(100), unique=True)
    help_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    auto_approve_max: Mapped[int] = mapped_column(Integer, default=0)
    require_make_model: Mapped[bool] = mapped_column(Boolean, default=False)
    status: Mapped[str] = mapped_column(String(20), default="Enabled")


class Item(Authable, Base):
    __tablename__ = "items"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    policy_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("policies.id", ondelete="CASCADE"), index=True)
    category_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("item_categories.id"))
    policy_user_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("users.id"), nullable=True)
    policy_dependent_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("policy_dependents.id", ondelete="SET NULL"), nullable=True,
    )
    name: Mapped[str] = mapped_column(String(200))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    make: Mapped[str | None] = mapped_column(String(100), nullable=True)
    model: Mapped[str | None] = mapped_column(String(100), nullable=True)
    serial_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    country: Mapped[str | None] = mapped_column(String(64), nullable=True)
    coverage_amount: Mapped[int] = mapped_column(Integer, default=0)
    coverage_status: Mapped[ItemCoverageStatus] = mapped_column(
        enum_column(ItemCoverageStatus), default=ItemCoverageStatus.DRAFT, index=True,
    )
    status_change: Mapped[str] = mapped_column(String(200), default="")
    status_reason: Mapped[str] = mapped_column(Text, default="")
    coverage_start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    paid_through_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    __mapper_args__ = {"version_id_col": version}

    async def is_actor_allowed_to(
        self,
        session: AsyncSession,
        actor: User,
        permission: Permission,
        sub_resource: SubResource,
        request: Request | None = None,
    ) -> bool:
        if not is_item_action_allowed(
            actor.is_admin, self.coverage_status, permission, sub_resource, actor.capabilities,
        ):
            return False
        if actor.is_admin:
            return True
        return await is_policy_member(session, self.policy_id, actor.id)

    def __repr__(self) -> str:
        return f"<Item {self.id} {self.coverage_status}>"
