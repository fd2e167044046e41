import uuid
from datetime import date, datetime
from enum import Enum

from sqlalchemy import String, Integer, Boolean, Date, DateTime, ForeignKey, Text, Uuid
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column
from starlette.requests import Request

from cover.auth.authable import Authable
from cover.auth.permissions import Permission, SubResource
from cover.database import Base, enum_column, utcnow
from cover.lifecycle.claims import ClaimStatus, is_claim_action_allowed
from cover.lifecycle.claim_items import ClaimItemStatus
from cover.models.policy import is_policy_member
from cover.models.user import User


class IncidentType(str, Enum):
    THEFT = "Theft"
    IMPACT = "Impact"
    ELECTRICAL_SURGE = "Electrical Surge"
    WATER_DAMAGE = "Water Damage"
    EVACUATION = "Evacuation"
    OTHER = "Other"


class PayoutOption(str, Enum):
    REPAIR = "Repair"
    REPLACEMENT = "Replacement"
    FMV = "FMV"
    FIXED_FRACTION = "FixedFraction"


class ClaimFilePurpose(str, Enum):
    RECEIPT = "Receipt"
    REPAIR_ESTIMATE = "Repair Estimate"
    REPLACEMENT_ESTIMATE = "Replacement Estimate"
    POLICE_REPORT = "Police Report"
    OTHER = "Other"


class Claim(Authable, Base):
    __tablename__ = "claims"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    policy_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("policies.id", ondelete="CASCADE"), index=True)
    reference_number: Mapped[str] = mapped_column(String(7), unique=True, index=True)
    incident_date: Mapped[date] = mapped_column(Date)
    incident_type: Mapped[IncidentType] = mapped_column(enum_column(IncidentType))
    incident_description: Mapped[str] = mapped_column(Text, default="")
    status: Mapped[ClaimStatus] = mapped_column(enum_column(ClaimStatus), default=ClaimStatus.DRAFT, index=True)
    status_change: Mapped[str] = mapped_column(String(200), default="")
    status_reason: Mapped[str] = mapped_column(Text, default="")
    review_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    reviewer_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("users.id"), nullable=True)
    total_payout: Mapped[int] = mapped_column(Integer, default=0)
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
        if not is_claim_action_allowed(actor.capabilities, self.status, permission, sub_resource):
            return False
        if actor.is_admin or permission is Permission.LIST:
            return True
        return await is_policy_member(session, self.policy_id, actor.id)

    def __repr__(self) -> str:
        return f"<Claim {self.reference_number} {self.status}>"


class ClaimItem(Authable, Base):
    __tablename__ = "claim_items"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    claim_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("claims.id", ondelete="CASCADE"), index=True)
    item_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("items.id", ondelete="CASCADE"), index=True)
    status: Mapped[ClaimItemStatus] = mapped_column(enum_column(ClaimItemStatus), default=ClaimItemStatus.DRAFT)
    is_repairable: Mapped[bool] = mapped_column(Boolean, default=False)
    repair_estimate: Mapped[int] = mapped_column(Integer, default=0)
    repair_actual: Mapped[int] = mapped_column(Integer, default=0)
    replace_estimate: Mapped[int] = mapped_column(Integer, default=0)
    replace_actual: Mapped[int] = mapped_column(Integer, default=0)
    payout_option: Mapped[PayoutOption | None] = mapped_column(enum_column(PayoutOption), nullable=True)
    payout_amount: Mapped[int] = mapped_column(Integer, default=0)
    fmv: Mapped[int] = mapped_column(Integer, default=0)
    review_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    reviewer_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("users.id"), nullable=True)
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
        if permission is Permission.DENIED:
            return False
        if actor.is_admin:
            return True
        if sub_resource is not SubResource.NONE:
            return False

        # Imported here: the ownership helpers load Item and Claim rows.
        from cover.auth.ownership import resolve_claim_item_chain

        chain = await resolve_claim_item_chain(session, self)
        return await is_policy_member(session, chain.policy.id, actor.id)


class ClaimFile(Base):
    """Metadata for a document attached to a claim. The bytes live in object storage."""

    __tablename__ = "claim_files"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    claim_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("claims.id", ondelete="CASCADE"), index=True)
    claim_item_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("claim_items.id", ondelete="SET NULL"), nullable=True,
    )
    purpose: Mapped[ClaimFilePurpose] = mapped_column(enum_column(ClaimFilePurpose))
    file_name: Mapped[str] = mapped_column(String(255))
    storage_key: Mapped[str] = mapped_column(String(500))
    uploaded_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("users.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
