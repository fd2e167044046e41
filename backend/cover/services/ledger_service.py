"""
Ledger entries raised by coverage and claim transitions.

Premiums are annual; coverage that starts (or is cancelled) part way
through a calendar year is prorated by the days left in that year.
"""

import calendar
import logging
from datetime import date

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cover.config import settings
from cover.models import Claim, ClaimItem, Item, LedgerEntry, LedgerEntryType, LedgerReport

logger = logging.getLogger(__name__)


def annual_premium(coverage_amount: int) -> int:
    return round(coverage_amount * settings.premium_factor)


def days_in_year(year: int) -> int:
    return 366 if calendar.isleap(year) else 365


def partial_year_value(value: int, start: date) -> int:
    """Share of an annual ``value`` remaining from ``start`` to the next 1 January."""
    if start.month == 1 and start.day == 1:
        return value
    remaining = (date(start.year + 1, 1, 1) - start).days
    return round(value * remaining / days_in_year(start.year))


class LedgerService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def _add(self, entry: LedgerEntry) -> LedgerEntry:
        self.session.add(entry)
        await self.session.flush()
        logger.info(
            "Ledger %s %d for policy %s", entry.type.value, entry.amount, entry.policy_id,
        )
        return entry

    async def record_new_coverage(self, item: Item, today: date | None = None) -> LedgerEntry:
        today = today or date.today()
        premium = partial_year_value(annual_premium(item.coverage_amount), today)
        return await self._add(LedgerEntry(
            policy_id=item.policy_id,
            item_id=item.id,
            type=LedgerEntryType.NEW_COVERAGE,
            amount=-premium,
            description=f"Coverage premium: {item.name}",
            date_submitted=today,
        ))

    async def record_cancellation_credit(self, item: Item, today: date | None = None) -> LedgerEntry:
        today = today or date.today()
        credit = partial_year_value(annual_premium(item.coverage_amount), today)
        return await self._add(LedgerEntry(
            policy_id=item.policy_id,
            item_id=item.id,
            type=LedgerEntryType.COVERAGE_CHANGE,
            amount=credit,
            description=f"Coverage cancelled: {item.name}",
            date_submitted=today,
        ))

    async def record_claim_payout(
        self, claim: Claim, claim_item: ClaimItem, item: Item, today: date | None = None,
    ) -> LedgerEntry:
        return await self._add(LedgerEntry(
            policy_id=claim.policy_id,
            item_id=item.id,
            claim_id=claim.id,
            type=LedgerEntryType.CLAIM,
            amount=claim_item.payout_amount,
            description=f"Claim {claim.reference_number}: {item.name}",
            date_submitted=today or date.today(),
        ))

    async def create_report(
        self, report_type: str = "Monthly", policy_id=None, today: date | None = None,
    ) -> tuple[LedgerReport, list[LedgerEntry]]:
        """Gather every unreported entry (optionally for one policy) into a new report."""
        report = LedgerReport(policy_id=policy_id, type=report_type, report_date=today or date.today())
        self.session.add(report)
        await self.session.flush()

        query = select(LedgerEntry).where(LedgerEntry.ledger_report_id.is_(None))
        if policy_id is not None:
            query = query.where(LedgerEntry.policy_id == policy_id)
        entries = list((await self.session.execute(query)).scalars().all())
        for entry in entries:
            entry.ledger_report_id = report.id
        await self.session.flush()
        logger.info("Ledger report %s: %d entries", report.id, len(entries))
        return report, entries
