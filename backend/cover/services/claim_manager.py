"""
Claim Manager

Manages claims and their items through the review pipeline:
- Draft creation with a unique reference number
- Member edits (which pull a claim back out of early review)
- Submission checks per claim item
- Steward / signator review actions
- Payout calculation and ledger entries on final approval

Status changes on claims and claim items go through ``update_status`` so
the transition tables are enforced on every path.
"""

import logging
import random
import string

from sqlalchemy import select, func, delete
from sqlalchemy.ext.asyncio import AsyncSession

from cover.api.errors import AppError, ErrorCategory, ErrorKey, InvalidTransition
from cover.auth.permissions import Permission, SubResource
from cover.config import settings
from cover.database import utcnow
from cover.lifecycle import gate_allows
from cover.lifecycle.claims import (
    ClaimStatus,
    EDIT_REVERTS_TO_DRAFT,
    REVIEW_STATUSES,
    TERMINAL_STATUSES,
    claim_action,
    is_claim_action_allowed,
    is_claim_transition_valid,
)
from cover.lifecycle.claim_items import (
    ClaimItemStatus,
    DECIDED_STATUSES,
    ITEM_STATUS_FOR_CLAIM,
    MEMBER_EDITABLE_CLAIM_STATUSES,
    RECEIPT_FIELDS,
    is_claim_item_transition_valid,
)
from cover.lifecycle.items import ItemCoverageStatus
from cover.middleware.metrics import record_transition
from cover.models import (
    Claim,
    ClaimFile,
    ClaimFilePurpose,
    ClaimItem,
    IncidentType,
    Item,
    PayoutOption,
    Policy,
    User,
)
from cover.services.audit_service import AuditService
from cover.services.events import DomainEvent, EventKind, emit
from cover.services.ledger_service import LedgerService

logger = logging.getLogger(__name__)

CLAIM_RESOURCE = "claims"
CLAIM_ITEM_RESOURCE = "claim-items"

CLAIM_FIELDS = frozenset({"incident_date", "incident_type", "incident_description"})

CLAIM_ITEM_FIELDS = frozenset({
    "is_repairable",
    "repair_estimate",
    "repair_actual",
    "replace_estimate",
    "replace_actual",
    "payout_option",
    "payout_amount",
    "fmv",
})

# Claim statuses whose reason is kept; every other status clears it.
_REASON_STATUSES = frozenset({ClaimStatus.REVISION, ClaimStatus.DENIED, ClaimStatus.RECEIPT})
_REASON_REQUIRED = frozenset({ClaimStatus.REVISION, ClaimStatus.DENIED})

_SUBMIT_EVENTS = {
    ClaimStatus.PENDING: EventKind.CLAIM_SUBMITTED,
    ClaimStatus.REVIEW2: EventKind.CLAIM_REVIEW2,
}

_APPROVE_EVENTS = {
    ClaimStatus.REVIEW1: EventKind.CLAIM_REVIEW1,
    ClaimStatus.REVIEW2: EventKind.CLAIM_REVIEW2,
    ClaimStatus.REVIEW3: EventKind.CLAIM_REVIEW3,
    ClaimStatus.APPROVED: EventKind.CLAIM_APPROVED,
}

REFERENCE_LETTERS = 2
REFERENCE_DIGITS = 4


def validate_for_submit(claim: Claim, claim_item: ClaimItem) -> None:
    """Raise AppError if ``claim_item`` is not complete enough to submit."""
    option = claim_item.payout_option
    if option is None:
        raise AppError(
            "a payout option is required for every claim item",
            ErrorKey.CLAIM_ITEM_MISSING_PAYOUT_OPTION,
        )

    if claim.incident_type is IncidentType.EVACUATION:
        if option is not PayoutOption.FIXED_FRACTION:
            raise AppError(
                "evacuation claims are paid as a fixed fraction",
                ErrorKey.CLAIM_ITEM_INVALID_PAYOUT_OPTION,
            )
        return

    if claim.incident_type is IncidentType.THEFT:
        if option is PayoutOption.REPLACEMENT and not claim_item.replace_estimate:
            raise AppError("a replacement estimate is required", ErrorKey.CLAIM_ITEM_MISSING_ESTIMATE)
        if option is PayoutOption.FMV and not claim_item.fmv:
            raise AppError("a fair market value is required", ErrorKey.CLAIM_ITEM_MISSING_ESTIMATE)
        return

    if claim_item.is_repairable:
        if not claim_item.repair_estimate:
            raise AppError("a repair estimate is required", ErrorKey.CLAIM_ITEM_MISSING_ESTIMATE)
        if not claim_item.fmv:
            raise AppError("a fair market value is required", ErrorKey.CLAIM_ITEM_MISSING_ESTIMATE)
    elif option is PayoutOption.REPAIR:
        raise AppError(
            "an item that cannot be repaired cannot be paid out as a repair",
            ErrorKey.CLAIM_ITEM_INVALID_PAYOUT_OPTION,
        )
    if option is PayoutOption.REPLACEMENT and not claim_item.replace_estimate:
        raise AppError("a replacement estimate is required", ErrorKey.CLAIM_ITEM_MISSING_ESTIMATE)


def calculate_payout(claim_item: ClaimItem, coverage_amount: int) -> int:
    """Payout for ``claim_item``, capped at the item's coverage, less the deductible."""
    option = claim_item.payout_option
    if option is PayoutOption.REPAIR:
        amount = claim_item.repair_actual or claim_item.repair_estimate
    elif option is PayoutOption.REPLACEMENT:
        amount = claim_item.replace_actual or claim_item.replace_estimate
    elif option is PayoutOption.FMV:
        amount = claim_item.fmv
    elif option is PayoutOption.FIXED_FRACTION:
        amount = coverage_amount
    else:
        return 0

    deductible = (
        settings.fixed_fraction_deductible
        if option is PayoutOption.FIXED_FRACTION
        else settings.claim_deductible
    )
    return round(min(amount, coverage_amount) * (1 - deductible))


class ClaimItemManager:
    """Edits and status changes for a single claim item."""

    def __init__(self, session: AsyncSession, actor: User):
        self.session = session
        self.actor = actor
        self.audit = AuditService(session)

    async def update_status(self, claim_item: ClaimItem, new_status: ClaimItemStatus | str) -> ClaimItem:
        old_status = claim_item.status
        try:
            new_status = ClaimItemStatus(new_status)
        except ValueError:
            raise InvalidTransition("claim item", old_status, new_status)

        if not is_claim_item_transition_valid(old_status, new_status):
            raise InvalidTransition("claim item", old_status, new_status)

        if old_status == new_status:
            await self.session.flush()
            return claim_item

        claim_item.status = new_status
        await self.session.flush()

        record_transition("claim_item", old_status, new_status)
        await self.audit.log_status_change(
            self.actor.email, CLAIM_ITEM_RESOURCE, claim_item.id, old_status, new_status,
        )
        return claim_item

    async def update(
        self,
        claim_item: ClaimItem,
        changes: dict,
        new_status: ClaimItemStatus | str | None = None,
    ) -> ClaimItem:
        """
        Apply field edits and an optional status change.

        Members may edit while the claim is still with them or in early
        review; once receipts are requested only the actual amounts may
        change. A member edit to a Pending or Review1 claim sends the
        claim back to Draft.
        """
        claim = await self.session.get(Claim, claim_item.claim_id)
        if claim is None:
            raise AppError(
                f"claim {claim_item.claim_id} could not be loaded",
                ErrorKey.QUERY_FAILURE,
                ErrorCategory.INTERNAL,
            )

        fields = {k: v for k, v in changes.items() if k in CLAIM_ITEM_FIELDS}
        changed = {k: (getattr(claim_item, k), v) for k, v in fields.items() if getattr(claim_item, k) != v}

        if new_status is not None and not is_claim_item_transition_valid(claim_item.status, new_status):
            raise InvalidTransition("claim item", claim_item.status, new_status)

        if claim.status in TERMINAL_STATUSES:
            raise AppError(
                f"claim items cannot be edited once the claim is {claim.status.value}",
                ErrorKey.CLAIM_STATUS,
            )

        if not self.actor.is_admin:
            self._check_member_edit(claim, claim_item, changed, new_status)

        for k, v in fields.items():
            setattr(claim_item, k, v)

        if new_status is not None:
            await self.update_status(claim_item, new_status)
        else:
            await self.session.flush()

        if self.actor.is_admin and claim.status in REVIEW_STATUSES:
            claim_item.reviewer_id = self.actor.id
            claim_item.review_date = utcnow()
        elif (
            not self.actor.is_admin
            and claim.status in EDIT_REVERTS_TO_DRAFT
            and set(changed) - RECEIPT_FIELDS
        ):
            await ClaimManager(self.session, self.actor).update_status(
                claim, ClaimStatus.DRAFT, status_change=f"Edited by {self.actor.name}",
            )

        await self.audit.log_field_changes(self.actor.email, CLAIM_ITEM_RESOURCE, claim_item.id, changed)
        return claim_item

    def _check_member_edit(self, claim: Claim, claim_item: ClaimItem, changed: dict, new_status) -> None:
        if claim.status not in MEMBER_EDITABLE_CLAIM_STATUSES:
            raise AppError(
                f"claim items cannot be edited while the claim is {claim.status.value}",
                ErrorKey.CLAIM_STATUS,
            )
        if new_status is not None and ClaimItemStatus(new_status) != claim_item.status:
            raise AppError("only reviewers may change a claim item's status", ErrorKey.CLAIM_ITEM_STATUS)
        if "payout_amount" in changed:
            raise AppError("the payout amount is set by reviewers", ErrorKey.VALIDATION)
        if claim.status is ClaimStatus.RECEIPT and set(changed) - RECEIPT_FIELDS:
            raise AppError(
                "only the actual repair or replacement amounts may change while receipts are requested",
                ErrorKey.CLAIM_STATUS,
            )


class ClaimManager:
    """Manages the claim review pipeline on behalf of one actor."""

    def __init__(self, session: AsyncSession, actor: User):
        self.session = session
        self.actor = actor
        self.audit = AuditService(session)
        self.ledger = LedgerService(session)
        self.items = ClaimItemManager(session, actor)

    # ── Queries ──────────────────────────────────────────────────────────

    async def claim_items(self, claim: Claim) -> list[ClaimItem]:
        result = await self.session.execute(
            select(ClaimItem).where(ClaimItem.claim_id == claim.id).order_by(ClaimItem.created_at)
        )
        return list(result.scalars().all())

    async def has_receipt(self, claim: Claim) -> bool:
        count = await self.session.scalar(
            select(func.count(ClaimFile.id)).where(
                ClaimFile.claim_id == claim.id,
                ClaimFile.purpose == ClaimFilePurpose.RECEIPT,
            )
        )
        return bool(count)

    async def generate_reference_number(self) -> str:
        """``C`` + two uppercase letters + four digits, unique across claims."""
        while True:
            candidate = "C" + "".join(random.choices(string.ascii_uppercase, k=REFERENCE_LETTERS)) + "".join(
                random.choices(string.digits, k=REFERENCE_DIGITS)
            )
            exists = await self.session.scalar(
                select(func.count(Claim.id)).where(Claim.reference_number == candidate)
            )
            if not exists:
                return candidate

    def _require_access(self, claim: Claim, permission: Permission, sub_resource: SubResource) -> None:
        if not is_claim_action_allowed(self.actor.capabilities, claim.status, permission, sub_resource):
            action = sub_resource.value or permission.value
            raise AppError(
                f"cannot {action} a claim in status {claim.status.value}",
                ErrorKey.CLAIM_STATUS,
            )

    # ── Creation and edits ───────────────────────────────────────────────

    async def create(self, policy: Policy, data: dict) -> Claim:
        fields = {k: v for k, v in data.items() if k in CLAIM_FIELDS}
        claim = Claim(
            policy_id=policy.id,
            reference_number=await self.generate_reference_number(),
            status=ClaimStatus.DRAFT,
            status_change=f"Created by {self.actor.name}",
            **fields,
        )
        self.session.add(claim)
        await self.session.flush()

        await self.audit.log_event(
            event_type="claim_created",
            actor=self.actor.email,
            action=f"Created claim {claim.reference_number}",
            resource_type=CLAIM_RESOURCE,
            resource_id=str(claim.id),
            details={"policy_id": str(policy.id), "incident_type": claim.incident_type.value},
        )
        return claim

    async def update(self, claim: Claim, changes: dict) -> Claim:
        self._require_access(claim, Permission.UPDATE, SubResource.NONE)

        fields = {k: v for k, v in changes.items() if k in CLAIM_FIELDS}
        history = {k: (getattr(claim, k), v) for k, v in fields.items() if getattr(claim, k) != v}
        for k, v in fields.items():
            setattr(claim, k, v)

        if self.actor.is_admin:
            if claim.status in REVIEW_STATUSES:
                self._set_reviewer(claim)
            await self.session.flush()
        elif history and claim.status in EDIT_REVERTS_TO_DRAFT:
            await self.update_status(claim, ClaimStatus.DRAFT, status_change=f"Edited by {self.actor.name}")
        else:
            await self.session.flush()

        await self.audit.log_field_changes(self.actor.email, CLAIM_RESOURCE, claim.id, history)
        return claim

    async def add_item(self, claim: Claim, data: dict) -> ClaimItem:
        self._require_access(claim, Permission.CREATE, SubResource.ITEMS)

        item = await self.session.get(Item, data.get("item_id"))
        if item is None or item.policy_id != claim.policy_id:
            raise AppError("item is not on this claim's policy", ErrorKey.VALIDATION)
        if item.coverage_status is not ItemCoverageStatus.APPROVED:
            raise AppError("item does not have active coverage", ErrorKey.CLAIM_ITEM_NOT_COVERED)

        open_claim = await self.session.scalar(
            select(func.count(ClaimItem.id))
            .join(Claim, Claim.id == ClaimItem.claim_id)
            .where(ClaimItem.item_id == item.id, Claim.status.not_in(list(TERMINAL_STATUSES)))
        )
        if open_claim:
            raise AppError("item is already on an open claim", ErrorKey.ITEM_HAS_ACTIVE_CLAIM)

        fields = {k: v for k, v in data.items() if k in CLAIM_ITEM_FIELDS and k != "payout_amount"}
        claim_item = ClaimItem(
            claim_id=claim.id,
            item_id=item.id,
            status=ClaimItemStatus.DRAFT,
            **fields,
        )
        self.session.add(claim_item)
        await self.session.flush()

        await self.audit.log_event(
            event_type="claim_item_created",
            actor=self.actor.email,
            action=f"Added {item.name} to claim {claim.reference_number}",
            resource_type=CLAIM_ITEM_RESOURCE,
            resource_id=str(claim_item.id),
            details={"claim_id": str(claim.id), "item_id": str(item.id)},
        )
        return claim_item

    async def attach_file(self, claim: Claim, data: dict) -> ClaimFile:
        self._require_access(claim, Permission.CREATE, SubResource.FILES)
        claim_file = ClaimFile(
            claim_id=claim.id,
            claim_item_id=data.get("claim_item_id"),
            purpose=data["purpose"],
            file_name=data["file_name"],
            storage_key=data["storage_key"],
            uploaded_by=self.actor.id,
        )
        self.session.add(claim_file)
        await self.session.flush()
        return claim_file

    async def remove(self, claim: Claim) -> None:
        self._require_access(claim, Permission.DELETE, SubResource.NONE)
        await self.session.execute(delete(ClaimFile).where(ClaimFile.claim_id == claim.id))
        await self.session.execute(delete(ClaimItem).where(ClaimItem.claim_id == claim.id))
        await self.audit.log_event(
            event_type="claim_deleted",
            actor=self.actor.email,
            action=f"Deleted claim {claim.reference_number}",
            resource_type=CLAIM_RESOURCE,
            resource_id=str(claim.id),
        )
        await self.session.delete(claim)
        await self.session.flush()

    # ── Status core ──────────────────────────────────────────────────────

    async def update_status(
        self,
        claim: Claim,
        new_status: ClaimStatus | str,
        *,
        status_change: str = "",
        reason: str | None = None,
    ) -> Claim:
        """
        Move ``claim`` to ``new_status`` and carry its items along.

        Any status past Draft needs at least one claim item.
        """
        old_status = claim.status
        try:
            new_status = ClaimStatus(new_status)
        except ValueError:
            raise InvalidTransition("claim", old_status, new_status)

        if not is_claim_transition_valid(old_status, new_status):
            raise InvalidTransition("claim", old_status, new_status)

        if old_status == new_status:
            await self.session.flush()
            return claim

        claim_items = await self.claim_items(claim)
        if new_status is not ClaimStatus.DRAFT and not claim_items:
            raise AppError("a claim needs at least one item", ErrorKey.CLAIM_MISSING_CLAIM_ITEM)
        if new_status in _REASON_REQUIRED and not (reason or "").strip():
            raise AppError(
                f"a reason is required to move a claim to {new_status.value}",
                ErrorKey.VALIDATION,
            )

        claim.status = new_status
        claim.status_change = status_change
        claim.status_reason = (reason or "") if new_status in _REASON_STATUSES else ""

        item_status = ITEM_STATUS_FOR_CLAIM.get(new_status)
        if item_status is not None:
            for claim_item in claim_items:
                if claim_item.status in DECIDED_STATUSES:
                    continue
                await self.items.update_status(claim_item, item_status)

        await self.session.flush()
        record_transition("claim", old_status, new_status)
        await self.audit.log_status_change(
            self.actor.email, CLAIM_RESOURCE, claim.id, old_status, new_status, status_change,
        )
        logger.info("Claim %s: %s -> %s", claim.reference_number, old_status.value, new_status.value)
        return claim

    def _action_target(self, claim: Claim, sub_resource: SubResource) -> ClaimStatus:
        action = claim_action(claim.status, sub_resource)
        if action is None or not gate_allows(action.gate, self.actor.capabilities):
            raise AppError(
                f"cannot {sub_resource.value} a claim in status {claim.status.value}",
                ErrorKey.CLAIM_STATUS,
            )
        return action.target

    def _set_reviewer(self, claim: Claim) -> None:
        claim.reviewer_id = self.actor.id
        claim.review_date = utcnow()

    async def _emit(self, claim: Claim, kind: EventKind, reason: str = "") -> None:
        await emit(
            self.session,
            DomainEvent(
                kind=kind, resource_type=CLAIM_RESOURCE, resource_id=claim.id,
                policy_id=claim.policy_id, reason=reason,
            ),
            actor=self.actor.email,
        )

    # ── Member actions ───────────────────────────────────────────────────

    async def submit(self, claim: Claim) -> Claim:
        target = self._action_target(claim, SubResource.SUBMIT)

        claim_items = await self.claim_items(claim)
        if not claim_items:
            raise AppError("a claim needs at least one item", ErrorKey.CLAIM_MISSING_CLAIM_ITEM)

        if claim.status is ClaimStatus.RECEIPT:
            if not await self.has_receipt(claim):
                raise AppError("a receipt must be attached before resubmitting", ErrorKey.MISSING_RECEIPT)
        else:
            for claim_item in claim_items:
                if claim_item.status not in (ClaimItemStatus.DRAFT, ClaimItemStatus.REVISION, ClaimItemStatus.PENDING):
                    raise AppError(
                        f"claim item in status {claim_item.status.value} cannot be submitted",
                        ErrorKey.CLAIM_ITEM_STATUS,
                    )
                validate_for_submit(claim, claim_item)

        await self.update_status(claim, target, status_change=f"Submitted by {self.actor.name}")
        await self._emit(claim, _SUBMIT_EVENTS[target])
        return claim

    # ── Review actions ───────────────────────────────────────────────────

    async def approve(self, claim: Claim) -> Claim:
        target = self._action_target(claim, SubResource.APPROVE)
        self._set_reviewer(claim)

        if target is ClaimStatus.APPROVED:
            await self._pay_out(claim)

        await self.update_status(claim, target, status_change=f"Approved by {self.actor.name}")
        await self._emit(claim, _APPROVE_EVENTS[target])
        return claim

    async def request_receipt(self, claim: Claim, reason: str = "", *, preapprove: bool = False) -> Claim:
        sub_resource = SubResource.PREAPPROVE if preapprove else SubResource.RECEIPT
        target = self._action_target(claim, sub_resource)
        self._set_reviewer(claim)
        note = "Preapproved" if preapprove else "Receipt requested"
        await self.update_status(claim, target, status_change=f"{note} by {self.actor.name}", reason=reason)
        await self._emit(claim, EventKind.CLAIM_PREAPPROVED if preapprove else EventKind.CLAIM_RECEIPT, reason)
        return claim

    async def request_revision(self, claim: Claim, reason: str) -> Claim:
        target = self._action_target(claim, SubResource.REVISION)
        self._set_reviewer(claim)
        await self.update_status(
            claim, target, status_change=f"Revisions requested by {self.actor.name}", reason=reason,
        )
        await self._emit(claim, EventKind.CLAIM_REVISION, reason)
        return claim

    async def deny(self, claim: Claim, reason: str) -> Claim:
        target = self._action_target(claim, SubResource.DENY)
        self._set_reviewer(claim)
        await self.update_status(claim, target, status_change=f"Denied by {self.actor.name}", reason=reason)
        await self._emit(claim, EventKind.CLAIM_DENIED, reason)
        return claim

    async def _pay_out(self, claim: Claim) -> None:
        total = 0
        for claim_item in await self.claim_items(claim):
            if claim_item.status is ClaimItemStatus.DENIED:
                continue
            item = await self.session.get(Item, claim_item.item_id)
            if item is None:
                raise AppError(
                    f"item {claim_item.item_id} could not be loaded",
                    ErrorKey.QUERY_FAILURE,
                    ErrorCategory.INTERNAL,
                )
            claim_item.payout_amount = calculate_payout(claim_item, item.coverage_amount)
            claim_item.reviewer_id = self.actor.id
            claim_item.review_date = utcnow()
            total += claim_item.payout_amount
            await self.ledger.record_claim_payout(claim, claim_item, item)
        claim.total_payout = total
