"""
Pydantic schemas for API request/response models.

Money is in integer cents throughout.
"""

import uuid
from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from cover.auth.roles import AppRole
from cover.lifecycle.claim_items import ClaimItemStatus
from cover.lifecycle.claims import ClaimStatus
from cover.lifecycle.items import ItemCoverageStatus
from cover.models import (
    ClaimFilePurpose,
    DependentRelationship,
    IncidentType,
    LedgerEntryType,
    PayoutOption,
    PolicyType,
)


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# ── Shared ──

class ReasonInput(BaseModel):
    reason: str = Field(..., min_length=1, max_length=2000)


class OptionalReasonInput(BaseModel):
    reason: str = Field("", max_length=2000)


# ── Users ──

class UserCreate(BaseModel):
    email: EmailStr
    first_name: str = Field("", max_length=100)
    last_name: str = Field("", max_length=100)
    staff_id: str | None = Field(None, max_length=32)
    app_role: AppRole = AppRole.CUSTOMER


class UserOut(ORMModel):
    id: uuid.UUID
    email: str
    first_name: str
    last_name: str
    app_role: AppRole
    is_active: bool


class UserUpdate(BaseModel):
    first_name: str | None = Field(None, max_length=100)
    last_name: str | None = Field(None, max_length=100)
    app_role: AppRole | None = None
    is_active: bool | None = None


# ── Policies ──

class PolicyCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    type: PolicyType = PolicyType.HOUSEHOLD
    household_id: str | None = None
    cost_center: str | None = None
    account: str | None = None
    notes: str | None = None


class PolicyUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=200)
    household_id: str | None = None
    cost_center: str | None = None
    account: str | None = None
    notes: str | None = None


class PolicyOut(ORMModel):
    id: uuid.UUID
    name: str
    type: PolicyType
    household_id: str | None
    cost_center: str | None
    account: str | None
    notes: str | None
    created_at: datetime


class PolicyMemberOut(ORMModel):
    id: uuid.UUID
    policy_id: uuid.UUID
    user_id: uuid.UUID


class DependentCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    relationship: DependentRelationship = DependentRelationship.CHILD
    country: str | None = None
    child_birth_year: int | None = Field(None, ge=1900, le=2100)


class DependentUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=200)
    relationship: DependentRelationship | None = None
    country: str | None = None
    child_birth_year: int | None = Field(None, ge=1900, le=2100)


class DependentOut(ORMModel):
    id: uuid.UUID
    policy_id: uuid.UUID
    name: str
    relationship: DependentRelationship
    country: str | None
    child_birth_year: int | None


class StrikeInput(BaseModel):
    description: str = Field(..., min_length=1, max_length=2000)


class StrikeOut(ORMModel):
    id: uuid.UUID
    policy_id: uuid.UUID
    description: str
    created_at: datetime


# ── Items ──

class ItemCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    category_id: uuid.UUID
    description: str | None = None
    make: str | None = None
    model: str | None = None
    serial_number: str | None = None
    country: str | None = None
    coverage_amount: int = Field(..., ge=0)
    policy_user_id: uuid.UUID | None = None
    policy_dependent_id: uuid.UUID | None = None


class ItemUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=200)
    category_id: uuid.UUID | None = None
    description: str | None = None
    make: str | None = None
    model: str | None = None
    serial_number: str | None = None
    country: str | None = None
    coverage_amount: int | None = Field(None, ge=0)
    policy_user_id: uuid.UUID | None = None
    policy_dependent_id: uuid.UUID | None = None


class ItemOut(ORMModel):
    id: uuid.UUID
    policy_id: uuid.UUID
    category_id: uuid.UUID
    name: str
    description: str | None
    make: str | None
    model: str | None
    serial_number: str | None
    coverage_amount: int
    coverage_status: ItemCoverageStatus
    status_change: str
    status_reason: str
    coverage_start_date: date | None
    paid_through_date: date | None
    policy_user_id: uuid.UUID | None
    policy_dependent_id: uuid.UUID | None


class ItemRemoved(BaseModel):
    deleted: bool
    item: ItemOut | None = None


# ── Claims ──

class ClaimCreate(BaseModel):
    incident_date: date
    incident_type: IncidentType
    incident_description: str = Field("", max_length=5000)


class ClaimUpdate(BaseModel):
    incident_date: date | None = None
    incident_type: IncidentType | None = None
    incident_description: str | None = Field(None, max_length=5000)


class ClaimItemCreate(BaseModel):
    item_id: uuid.UUID
    is_repairable: bool = False
    repair_estimate: int = Field(0, ge=0)
    replace_estimate: int = Field(0, ge=0)
    fmv: int = Field(0, ge=0)
    payout_option: PayoutOption | None = None


class ClaimItemUpdate(BaseModel):
    status: ClaimItemStatus | None = None
    is_repairable: bool | None = None
    repair_estimate: int | None = Field(None, ge=0)
    repair_actual: int | None = Field(None, ge=0)
    replace_estimate: int | None = Field(None, ge=0)
    replace_actual: int | None = Field(None, ge=0)
    payout_option: PayoutOption | None = None
    payout_amount: int | None = Field(None, ge=0)
    fmv: int | None = Field(None, ge=0)


class ClaimItemOut(ORMModel):
    id: uuid.UUID
    claim_id: uuid.UUID
    item_id: uuid.UUID
    status: ClaimItemStatus
    is_repairable: bool
    repair_estimate: int
    repair_actual: int
    replace_estimate: int
    replace_actual: int
    payout_option: PayoutOption | None
    payout_amount: int
    fmv: int


class ClaimFileCreate(BaseModel):
    purpose: ClaimFilePurpose
    file_name: str = Field(..., min_length=1, max_length=255)
    storage_key: str = Field(..., min_length=1, max_length=500)
    claim_item_id: uuid.UUID | None = None


class ClaimFileOut(ORMModel):
    id: uuid.UUID
    claim_id: uuid.UUID
    claim_item_id: uuid.UUID | None
    purpose: ClaimFilePurpose
    file_name: str
    created_at: datetime


class ClaimOut(ORMModel):
    id: uuid.UUID
    policy_id: uuid.UUID
    reference_number: str
    incident_date: date
    incident_type: IncidentType
    incident_description: str
    status: ClaimStatus
    status_change: str
    status_reason: str
    review_date: datetime | None
    reviewer_id: uuid.UUID | None
    total_payout: int


class ClaimDetail(ClaimOut):
    items: list[ClaimItemOut] = []
    files: list[ClaimFileOut] = []


# ── Ledger ──

class LedgerEntryOut(ORMModel):
    id: uuid.UUID
    policy_id: uuid.UUID
    item_id: uuid.UUID | None
    claim_id: uuid.UUID | None
    ledger_report_id: uuid.UUID | None
    type: LedgerEntryType
    amount: int
    description: str
    date_submitted: date


class LedgerReportCreate(BaseModel):
    policy_id: uuid.UUID | None = None
    type: str = Field("Monthly", max_length=20)


class LedgerReportOut(ORMModel):
    id: uuid.UUID
    policy_id: uuid.UUID | None
    type: str
    report_date: date


class LedgerReportDetail(LedgerReportOut):
    entries: list[LedgerEntryOut] = []
