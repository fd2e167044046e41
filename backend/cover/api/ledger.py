"""
Ledger reports.

Admins batch unreported ledger entries into a report for accounting.
Members may read the reports raised for their own policies.
"""

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cover.api.authz import ResourceType
from cover.api.deps import authorize, authorized, get_current_actor, get_db
from cover.models import LedgerEntry, LedgerReport, User
from cover.schemas.schemas import (
    LedgerEntryOut,
    LedgerReportCreate,
    LedgerReportDetail,
    LedgerReportOut,
)
from cover.services.audit_service import AuditService
from cover.services.ledger_service import LedgerService

router = APIRouter(prefix="/ledger-reports", tags=["ledger"], dependencies=[Depends(authorize)])

_report = authorized(ResourceType.LEDGER_REPORTS.value)


@router.get("", response_model=list[LedgerReportOut])
async def list_reports(db: AsyncSession = Depends(get_db)):
    result = await db.execute(select(LedgerReport).order_by(LedgerReport.report_date.desc()))
    return [LedgerReportOut.model_validate(r) for r in result.scalars().all()]


@router.post("", response_model=LedgerReportDetail, status_code=201)
async def create_report(
    body: LedgerReportCreate,
    actor: User = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    report, entries = await LedgerService(db).create_report(body.type, body.policy_id)
    await AuditService(db).log_event(
        event_type="ledger_report_created",
        actor=actor.email,
        action=f"Created {report.type} ledger report",
        resource_type=ResourceType.LEDGER_REPORTS.value,
        resource_id=str(report.id),
        details={"entries": len(entries), "total": sum(e.amount for e in entries)},
    )
    detail = LedgerReportDetail.model_validate(report)
    detail.entries = [LedgerEntryOut.model_validate(e) for e in entries]
    return detail


@router.get("/{report_id}", response_model=LedgerReportDetail)
async def get_report(
    report_id: uuid.UUID,
    report: LedgerReport = Depends(_report),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(LedgerEntry).where(LedgerEntry.ledger_report_id == report.id).order_by(LedgerEntry.created_at)
    )
    detail = LedgerReportDetail.model_validate(report)
    detail.entries = [LedgerEntryOut.model_validate(e) for e in result.scalars().all()]
    return detail
