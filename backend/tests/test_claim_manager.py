"""Tests for the claim review pipeline, claim item edits and payouts."""

import re
from datetime import date

import pytest
from sqlalchemy import select

from cover.api.errors import AppError, ErrorKey, InvalidTransition
from cover.lifecycle.claim_items import ClaimItemStatus
from cover.lifecycle.claims import ClaimStatus
from cover.lifecycle.items import ItemCoverageStatus
from cover.models import (
    Claim,
    ClaimFilePurpose,
    ClaimItem,
    IncidentType,
    LedgerEntry,
    LedgerEntryType,
    PayoutOption,
)
from cover.services.claim_manager import (
    ClaimItemManager,
    ClaimManager,
    calculate_payout,
    validate_for_submit,
)
from cover.services.events import EventKind, pending_events

from tests.conftest import make_claim, make_claim_item, make_item, make_policy


def event_kinds(session) -> list[EventKind]:
    return [e.kind for e in pending_events(session)]


def claim_item_fields(**overrides) -> ClaimItem:
    fields = {
        "is_repairable": False,
        "repair_estimate": 0,
        "repair_actual": 0,
        "replace_estimate": 0,
        "replace_actual": 0,
        "fmv": 0,
        "payout_option": PayoutOption.REPLACEMENT,
    }
    fields.update(overrides)
    return ClaimItem(**fields)


async def covered_item(session, policy, category, amount: int = 100_000):
    return await make_item(session, policy, category, ItemCoverageStatus.APPROVED, amount=amount)


# ── Submission checks ────────────────────────────────────────────────────────

class TestValidateForSubmit:
    def test_payout_option_required(self):
        claim = Claim(incident_type=IncidentType.IMPACT)
        with pytest.raises(AppError) as exc_info:
            validate_for_submit(claim, claim_item_fields(payout_option=None))
        assert exc_info.value.key is ErrorKey.CLAIM_ITEM_MISSING_PAYOUT_OPTION

    def test_evacuation_is_fixed_fraction_only(self):
        claim = Claim(incident_type=IncidentType.EVACUATION)
        with pytest.raises(AppError) as exc_info:
            validate_for_submit(claim, claim_item_fields(replace_estimate=10_000))
        assert exc_info.value.key is ErrorKey.CLAIM_ITEM_INVALID_PAYOUT_OPTION

        validate_for_submit(claim, claim_item_fields(payout_option=PayoutOption.FIXED_FRACTION))

    def test_theft_needs_estimate_for_option(self):
        claim = Claim(incident_type=IncidentType.THEFT)
        with pytest.raises(AppError) as exc_info:
            validate_for_submit(claim, claim_item_fields())
        assert exc_info.value.key is ErrorKey.CLAIM_ITEM_MISSING_ESTIMATE

        with pytest.raises(AppError):
            validate_for_submit(claim, claim_item_fields(payout_option=PayoutOption.FMV))

        validate_for_submit(claim, claim_item_fields(payout_option=PayoutOption.FMV, fmv=40_000))

    def test_repairable_needs_repair_estimate_and_fmv(self):
        claim = Claim(incident_type=IncidentType.IMPACT)
        with pytest.raises(AppError) as exc_info:
            validate_for_submit(claim, claim_item_fields(
                is_repairable=True, payout_option=PayoutOption.REPAIR, fmv=50_000,
            ))
        assert exc_info.value.key is ErrorKey.CLAIM_ITEM_MISSING_ESTIMATE

        with pytest.raises(AppError):
            validate_for_submit(claim, claim_item_fields(
                is_repairable=True, payout_option=PayoutOption.REPAIR, repair_estimate=20_000,
            ))

        validate_for_submit(claim, claim_item_fields(
            is_repairable=True, payout_option=PayoutOption.REPAIR, repair_estimate=20_000, fmv=50_000,
        ))

    def test_unrepairable_item_cannot_take_repair(self):
        claim = Claim(incident_type=IncidentType.WATER_DAMAGE)
        with pytest.raises(AppError) as exc_info:
            validate_for_submit(claim, claim_item_fields(payout_option=PayoutOption.REPAIR, repair_estimate=1))
        assert exc_info.value.key is ErrorKey.CLAIM_ITEM_INVALID_PAYOUT_OPTION

    def test_replacement_needs_estimate(self):
        claim = Claim(incident_type=IncidentType.ELECTRICAL_SURGE)
        with pytest.raises(AppError) as exc_info:
            validate_for_submit(claim, claim_item_fields())
        assert exc_info.value.key is ErrorKey.CLAIM_ITEM_MISSING_ESTIMATE

        validate_for_submit(claim, claim_item_fields(replace_estimate=60_000))


class TestCalculatePayout:
    def test_replacement_less_deductible(self):
        assert calculate_payout(claim_item_fields(replace_estimate=80_000), 100_000) == 76_000

    def test_actual_amount_wins_over_estimate(self):
        claim_item = claim_item_fields(
            payout_option=PayoutOption.REPAIR, repair_estimate=40_000, repair_actual=30_000,
        )
        assert calculate_payout(claim_item, 100_000) == 28_500

    def test_capped_at_coverage(self):
        assert calculate_payout(claim_item_fields(replace_estimate=200_000), 100_000) == 95_000

    def test_fmv(self):
        assert calculate_payout(claim_item_fields(payout_option=PayoutOption.FMV, fmv=50_000), 100_000) == 47_500

    def test_fixed_fraction_uses_coverage(self):
        claim_item = claim_item_fields(payout_option=PayoutOption.FIXED_FRACTION)
        assert calculate_payout(claim_item, 90_000) == 60_000

    def test_no_option_pays_nothing(self):
        assert calculate_payout(claim_item_fields(payout_option=None), 100_000) == 0


# ── Creation ─────────────────────────────────────────────────────────────────

class TestCreate:
    async def test_reference_number_format(self, db_session, customer, policy):
        claim = await ClaimManager(db_session, customer).create(policy, {
            "incident_date": date(2026, 5, 4),
            "incident_type": IncidentType.THEFT,
            "incident_description": "Taken from the car",
            "status": ClaimStatus.APPROVED,
        })

        assert re.fullmatch(r"C[A-Z]{2}\d{4}", claim.reference_number)
        assert claim.status is ClaimStatus.DRAFT
        assert claim.version == 1

    async def test_reference_numbers_are_unique(self, db_session, customer, policy):
        manager = ClaimManager(db_session, customer)
        refs = {
            (await manager.create(policy, {
                "incident_date": date(2026, 5, 4), "incident_type": IncidentType.OTHER,
            })).reference_number
            for _ in range(5)
        }
        assert len(refs) == 5


class TestAddItem:
    async def test_adds_covered_item(self, db_session, customer, policy, category):
        item = await covered_item(db_session, policy, category)
        claim = await make_claim(db_session, policy)

        claim_item = await ClaimManager(db_session, customer).add_item(claim, {
            "item_id": item.id,
            "payout_option": PayoutOption.REPLACEMENT,
            "replace_estimate": 50_000,
            "payout_amount": 1_000_000,
        })

        assert claim_item.status is ClaimItemStatus.DRAFT
        assert claim_item.payout_amount == 0

    async def test_uncovered_item_rejected(self, db_session, customer, policy, category):
        item = await make_item(db_session, policy, category, ItemCoverageStatus.PENDING)
        claim = await make_claim(db_session, policy)
        with pytest.raises(AppError) as exc_info:
            await ClaimManager(db_session, customer).add_item(claim, {"item_id": item.id})
        assert exc_info.value.key is ErrorKey.CLAIM_ITEM_NOT_COVERED

    async def test_item_from_other_policy_rejected(self, db_session, customer, policy, category):
        other = await make_policy(db_session, customer, name="Other")
        item = await covered_item(db_session, other, category)
        claim = await make_claim(db_session, policy)
        with pytest.raises(AppError) as exc_info:
            await ClaimManager(db_session, customer).add_item(claim, {"item_id": item.id})
        assert exc_info.value.key is ErrorKey.VALIDATION

    async def test_item_on_open_claim_rejected(self, db_session, customer, policy, category):
        item = await covered_item(db_session, policy, category)
        first = await make_claim(db_session, policy, ClaimStatus.REVIEW2)
        await make_claim_item(db_session, first, item, ClaimItemStatus.PENDING)
        second = await make_claim(db_session, policy)

        with pytest.raises(AppError) as exc_info:
            await ClaimManager(db_session, customer).add_item(second, {"item_id": item.id})
        assert exc_info.value.key is ErrorKey.ITEM_HAS_ACTIVE_CLAIM

    async def test_item_on_closed_claim_allowed(self, db_session, customer, policy, category):
        item = await covered_item(db_session, policy, category)
        first = await make_claim(db_session, policy, ClaimStatus.DENIED)
        await make_claim_item(db_session, first, item, ClaimItemStatus.DENIED)
        second = await make_claim(db_session, policy)

        claim_item = await ClaimManager(db_session, customer).add_item(second, {"item_id": item.id})
        assert claim_item.claim_id == second.id

    async def test_submitted_claim_takes_no_items(self, db_session, customer, policy, category):
        item = await covered_item(db_session, policy, category)
        claim = await make_claim(db_session, policy, ClaimStatus.PENDING)
        with pytest.raises(AppError) as exc_info:
            await ClaimManager(db_session, customer).add_item(claim, {"item_id": item.id})
        assert exc_info.value.key is ErrorKey.CLAIM_STATUS


# ── Review pipeline ──────────────────────────────────────────────────────────

class TestPipeline:
    async def test_full_approval(self, db_session, customer, steward, signator, policy, category):
        item = await covered_item(db_session, policy, category, amount=100_000)
        claim = await make_claim(db_session, policy)
        claim_item = await make_claim_item(db_session, claim, item, replace_estimate=80_000)

        await ClaimManager(db_session, customer).submit(claim)
        assert claim.status is ClaimStatus.PENDING
        assert claim_item.status is ClaimItemStatus.PENDING

        stewarding = ClaimManager(db_session, steward)
        await stewarding.approve(claim)
        assert claim.status is ClaimStatus.REVIEW1
        assert claim.reviewer_id == steward.id
        await stewarding.approve(claim)
        assert claim.status is ClaimStatus.REVIEW2
        await stewarding.approve(claim)
        assert claim.status is ClaimStatus.REVIEW3

        with pytest.raises(AppError) as exc_info:
            await stewarding.approve(claim)
        assert exc_info.value.key is ErrorKey.CLAIM_STATUS
        assert claim.status is ClaimStatus.REVIEW3

        await ClaimManager(db_session, signator).approve(claim)

        assert claim.status is ClaimStatus.APPROVED
        assert claim_item.status is ClaimItemStatus.APPROVED
        assert claim_item.payout_amount == 76_000
        assert claim.total_payout == 76_000

        entries = (await db_session.execute(
            select(LedgerEntry).where(LedgerEntry.claim_id == claim.id)
        )).scalars().all()
        assert [(e.type, e.amount) for e in entries] == [(LedgerEntryType.CLAIM, 76_000)]

        assert event_kinds(db_session) == [
            EventKind.CLAIM_SUBMITTED,
            EventKind.CLAIM_REVIEW1,
            EventKind.CLAIM_REVIEW2,
            EventKind.CLAIM_REVIEW3,
            EventKind.CLAIM_APPROVED,
        ]

    async def test_submit_without_items(self, db_session, customer, policy):
        claim = await make_claim(db_session, policy)
        with pytest.raises(AppError) as exc_info:
            await ClaimManager(db_session, customer).submit(claim)
        assert exc_info.value.key is ErrorKey.CLAIM_MISSING_CLAIM_ITEM
        assert claim.status is ClaimStatus.DRAFT

    async def test_submit_checks_every_item(self, db_session, customer, policy, category):
        claim = await make_claim(db_session, policy)
        first = await covered_item(db_session, policy, category)
        second = await covered_item(db_session, policy, category)
        await make_claim_item(db_session, claim, first)
        await make_claim_item(db_session, claim, second, payout_option=None)

        with pytest.raises(AppError) as exc_info:
            await ClaimManager(db_session, customer).submit(claim)
        assert exc_info.value.key is ErrorKey.CLAIM_ITEM_MISSING_PAYOUT_OPTION
        assert claim.status is ClaimStatus.DRAFT

    async def test_member_cannot_review(self, db_session, customer, policy, category):
        claim = await make_claim(db_session, policy, ClaimStatus.PENDING)
        with pytest.raises(AppError) as exc_info:
            await ClaimManager(db_session, customer).approve(claim)
        assert exc_info.value.key is ErrorKey.CLAIM_STATUS

    async def test_revision_needs_reason_and_reaches_items(self, db_session, customer, steward, policy, category):
        item = await covered_item(db_session, policy, category)
        claim = await make_claim(db_session, policy, ClaimStatus.REVIEW1)
        claim_item = await make_claim_item(db_session, claim, item, ClaimItemStatus.PENDING)
        manager = ClaimManager(db_session, steward)

        with pytest.raises(AppError) as exc_info:
            await manager.request_revision(claim, "")
        assert exc_info.value.key is ErrorKey.VALIDATION
        assert claim.status is ClaimStatus.REVIEW1

        await manager.request_revision(claim, "photos are blurry")
        assert claim.status is ClaimStatus.REVISION
        assert claim.status_reason == "photos are blurry"
        assert claim_item.status is ClaimItemStatus.REVISION

        await ClaimManager(db_session, customer).submit(claim)
        assert claim.status is ClaimStatus.PENDING
        assert claim.status_reason == ""
        assert claim_item.status is ClaimItemStatus.PENDING

    async def test_signator_sends_back_from_final_review(self, db_session, signator, policy, category):
        item = await covered_item(db_session, policy, category)
        claim = await make_claim(db_session, policy, ClaimStatus.REVIEW3)
        claim_item = await make_claim_item(db_session, claim, item, ClaimItemStatus.PENDING)

        await ClaimManager(db_session, signator).request_revision(claim, "estimate is stale")

        assert claim.status is ClaimStatus.REVISION
        assert claim_item.status is ClaimItemStatus.REVISION

    async def test_deny_cascades_to_items(self, db_session, steward, policy, category):
        item = await covered_item(db_session, policy, category)
        claim = await make_claim(db_session, policy, ClaimStatus.REVIEW2)
        claim_item = await make_claim_item(db_session, claim, item, ClaimItemStatus.PENDING)

        await ClaimManager(db_session, steward).deny(claim, "outside the policy period")

        assert claim.status is ClaimStatus.DENIED
        assert claim.status_reason == "outside the policy period"
        assert claim_item.status is ClaimItemStatus.DENIED
        assert pending_events(db_session)[0].reason == "outside the policy period"

    async def test_decided_items_are_left_alone(self, db_session, signator, policy, category):
        kept = await covered_item(db_session, policy, category)
        dropped = await covered_item(db_session, policy, category)
        claim = await make_claim(db_session, policy, ClaimStatus.REVIEW3)
        paid = await make_claim_item(db_session, claim, kept, ClaimItemStatus.PENDING)
        refused = await make_claim_item(db_session, claim, dropped, ClaimItemStatus.DENIED)

        await ClaimManager(db_session, signator).approve(claim)

        assert paid.status is ClaimItemStatus.APPROVED
        assert refused.status is ClaimItemStatus.DENIED
        assert refused.payout_amount == 0
        assert claim.total_payout == paid.payout_amount

    async def test_update_status_rejects_skipped_stage(self, db_session, steward, policy, category):
        item = await covered_item(db_session, policy, category)
        claim = await make_claim(db_session, policy, ClaimStatus.PENDING)
        await make_claim_item(db_session, claim, item, ClaimItemStatus.PENDING)

        with pytest.raises(InvalidTransition):
            await ClaimManager(db_session, steward).update_status(claim, ClaimStatus.APPROVED)
        assert claim.status is ClaimStatus.PENDING


class TestReceipt:
    async def test_receipt_required_before_resubmit(self, db_session, customer, steward, policy, category):
        item = await covered_item(db_session, policy, category)
        claim = await make_claim(db_session, policy, ClaimStatus.REVIEW1)
        await make_claim_item(db_session, claim, item, ClaimItemStatus.PENDING)

        await ClaimManager(db_session, steward).request_receipt(claim, "send the invoice")
        assert claim.status is ClaimStatus.RECEIPT
        assert claim.status_reason == "send the invoice"

        member = ClaimManager(db_session, customer)
        with pytest.raises(AppError) as exc_info:
            await member.submit(claim)
        assert exc_info.value.key is ErrorKey.MISSING_RECEIPT

        await member.attach_file(claim, {
            "purpose": ClaimFilePurpose.RECEIPT,
            "file_name": "invoice.pdf",
            "storage_key": f"claims/{claim.id}/invoice.pdf",
        })
        await member.submit(claim)

        assert claim.status is ClaimStatus.REVIEW2
        assert event_kinds(db_session) == [EventKind.CLAIM_RECEIPT, EventKind.CLAIM_REVIEW2]

    async def test_preapprove(self, db_session, steward, policy, category):
        item = await covered_item(db_session, policy, category)
        claim = await make_claim(db_session, policy, ClaimStatus.REVIEW1)
        await make_claim_item(db_session, claim, item, ClaimItemStatus.PENDING)

        await ClaimManager(db_session, steward).request_receipt(claim, preapprove=True)

        assert claim.status is ClaimStatus.RECEIPT
        assert event_kinds(db_session) == [EventKind.CLAIM_PREAPPROVED]

    async def test_member_may_only_fill_in_actuals(self, db_session, customer, policy, category):
        item = await covered_item(db_session, policy, category)
        claim = await make_claim(db_session, policy, ClaimStatus.RECEIPT)
        claim_item = await make_claim_item(db_session, claim, item, ClaimItemStatus.PENDING)
        manager = ClaimItemManager(db_session, customer)

        with pytest.raises(AppError) as exc_info:
            await manager.update(claim_item, {"replace_estimate": 90_000})
        assert exc_info.value.key is ErrorKey.CLAIM_STATUS

        await manager.update(claim_item, {"replace_actual": 79_000})
        assert claim_item.replace_actual == 79_000
        assert claim.status is ClaimStatus.RECEIPT


# ── Edits ────────────────────────────────────────────────────────────────────

class TestEdits:
    async def test_member_edit_pulls_claim_back_to_draft(self, db_session, customer, policy, category):
        item = await covered_item(db_session, policy, category)
        claim = await make_claim(db_session, policy, ClaimStatus.PENDING)
        await make_claim_item(db_session, claim, item, ClaimItemStatus.PENDING)

        await ClaimManager(db_session, customer).update(claim, {"incident_description": "It fell off the desk"})

        assert claim.status is ClaimStatus.DRAFT
        assert claim.incident_description == "It fell off the desk"

    async def test_unchanged_edit_keeps_status(self, db_session, customer, policy, category):
        item = await covered_item(db_session, policy, category)
        claim = await make_claim(db_session, policy, ClaimStatus.PENDING)
        await make_claim_item(db_session, claim, item, ClaimItemStatus.PENDING)

        await ClaimManager(db_session, customer).update(claim, {"incident_type": IncidentType.IMPACT})

        assert claim.status is ClaimStatus.PENDING

    async def test_steward_edit_keeps_status(self, db_session, steward, policy, category):
        item = await covered_item(db_session, policy, category)
        claim = await make_claim(db_session, policy, ClaimStatus.REVIEW1)
        await make_claim_item(db_session, claim, item, ClaimItemStatus.PENDING)

        await ClaimManager(db_session, steward).update(claim, {"incident_description": "Confirmed by phone"})

        assert claim.status is ClaimStatus.REVIEW1
        assert claim.reviewer_id == steward.id

    async def test_member_claim_item_edit_reverts_review1(self, db_session, customer, policy, category):
        item = await covered_item(db_session, policy, category)
        claim = await make_claim(db_session, policy, ClaimStatus.REVIEW1)
        claim_item = await make_claim_item(db_session, claim, item, ClaimItemStatus.PENDING)

        await ClaimItemManager(db_session, customer).update(claim_item, {"replace_estimate": 85_000})

        assert claim.status is ClaimStatus.DRAFT
        assert claim_item.replace_estimate == 85_000

    async def test_member_cannot_set_payout_or_status(self, db_session, customer, policy, category):
        item = await covered_item(db_session, policy, category)
        claim = await make_claim(db_session, policy)
        claim_item = await make_claim_item(db_session, claim, item)
        manager = ClaimItemManager(db_session, customer)

        with pytest.raises(AppError) as exc_info:
            await manager.update(claim_item, {"payout_amount": 1})
        assert exc_info.value.key is ErrorKey.VALIDATION

        with pytest.raises(AppError) as exc_info:
            await manager.update(claim_item, {}, ClaimItemStatus.PENDING)
        assert exc_info.value.key is ErrorKey.CLAIM_ITEM_STATUS

    async def test_member_cannot_edit_during_later_review(self, db_session, customer, policy, category):
        item = await covered_item(db_session, policy, category)
        claim = await make_claim(db_session, policy, ClaimStatus.REVIEW2)
        claim_item = await make_claim_item(db_session, claim, item, ClaimItemStatus.PENDING)

        with pytest.raises(AppError) as exc_info:
            await ClaimItemManager(db_session, customer).update(claim_item, {"fmv": 1})
        assert exc_info.value.key is ErrorKey.CLAIM_STATUS

    async def test_reviewer_decides_item(self, db_session, steward, policy, category):
        item = await covered_item(db_session, policy, category)
        claim = await make_claim(db_session, policy, ClaimStatus.REVIEW2)
        claim_item = await make_claim_item(db_session, claim, item, ClaimItemStatus.PENDING)

        await ClaimItemManager(db_session, steward).update(claim_item, {"fmv": 45_000}, ClaimItemStatus.DENIED)

        assert claim_item.status is ClaimItemStatus.DENIED
        assert claim_item.reviewer_id == steward.id

    async def test_invalid_claim_item_transition(self, db_session, steward, policy, category):
        item = await covered_item(db_session, policy, category)
        claim = await make_claim(db_session, policy, ClaimStatus.REVIEW2)
        claim_item = await make_claim_item(db_session, claim, item, ClaimItemStatus.DRAFT)

        with pytest.raises(InvalidTransition):
            await ClaimItemManager(db_session, steward).update(claim_item, {}, ClaimItemStatus.APPROVED)

    async def test_closed_claim_items_are_frozen(self, db_session, steward, policy, category):
        item = await covered_item(db_session, policy, category)
        claim = await make_claim(db_session, policy, ClaimStatus.APPROVED)
        claim_item = await make_claim_item(db_session, claim, item, ClaimItemStatus.APPROVED)

        with pytest.raises(AppError) as exc_info:
            await ClaimItemManager(db_session, steward).update(claim_item, {"fmv": 1})
        assert exc_info.value.key is ErrorKey.CLAIM_STATUS

    async def test_remove_draft_claim(self, db_session, customer, policy, category):
        item = await covered_item(db_session, policy, category)
        claim = await make_claim(db_session, policy)
        await make_claim_item(db_session, claim, item)
        claim_id = claim.id

        await ClaimManager(db_session, customer).remove(claim)

        assert await db_session.get(Claim, claim_id) is None
        remaining = (await db_session.execute(
            select(ClaimItem).where(ClaimItem.claim_id == claim_id)
        )).scalars().all()
        assert remaining == []

    async def test_submitted_claim_cannot_be_removed(self, db_session, customer, policy):
        claim = await make_claim(db_session, policy, ClaimStatus.PENDING)
        with pytest.raises(AppError) as exc_info:
            await ClaimManager(db_session, customer).remove(claim)
        assert exc_info.value.key is ErrorKey.CLAIM_STATUS
