import uuid
from datetime import date, datetime
from enum import Enum

from sqlalchemy import String, Integer, Date, DateTime, ForeignKey, Uuid
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column
from starlette.requests import Request

from cover.auth.authable import Authable
from cover.auth.permissions import Permission, SubResource
from cover.database import Base, enum_column, utcnow
from cover.models.policy import is_policy_member
from cover.models.user import User


class LedgerEntryType(str, Enum):
    NEW_COVERAGE = "NewCoverage"
    COVERAGE_CHANGE = "CoverageChange"
    POLICY_RENEWAL = "PolicyRenewal"
    CLAIM = "Claim"


class LedgerEntry(Base):
    __tablename__ = "ledger_entries"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    policy_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("policies.id", ondelete="CASCADE"), index=True)
    item_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("items.id", ondelete="SET NULL"), nullable=True)
    claim_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("claims.id", ondelete="SET NULL"), nullable=True)
    ledger_report_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("ledger_reports.id", ondelete="SET NULL"), nullable=True,
    )
    type: Mapped[LedgerEntryType] = mapped_column(enum_column(LedgerEntryType))
    amount: Mapped[int] = mapped_column(Integer)
    description: Mapped[str] = mapped_column(String(200), default="")
    date_submitted: Mapped[date] = mapped_column(Date)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class LedgerReport(Authable, Base):
    """A batch of ledger entries sent to accounting. Policy reports are member-visible."""

    __tablename__ = "ledger_reports"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    policy_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("policies.id", ondelete="CASCADE"), nullable=True, index=True,
    )
    type: Mapped[str] = mapped_column(String(20), default="Monthly")
    report_date: Mapped[date] = mapped_column(Date)
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
        if permission is not Permission.VIEW or sub_resource is not SubResource.NONE:
            return False
        return await is_policy_member(session, self.policy_id, actor.id)
