"""
Item Manager

Coverage lifecycle for items:
- Creation as Draft
- Field edits with history
- Submit, with the auto-approval fast path
- Approve / Deny / Revision review actions
- Removal (hard delete inside the grace window, otherwise inactivation)

Every status change goes through ``update_status``, which enforces the
transition table no matter which action asked for it.
"""

import logging
from datetime import date, timedelta

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from cover.api.errors import AppError, ErrorKey, InvalidTransition
from cover.auth.permissions import Permission, SubResource
from cover.config import settings
from cover.database import utcnow
from cover.lifecycle.claims import TERMINAL_STATUSES
from cover.lifecycle.items import (
    ItemCoverageStatus,
    REASON_STATUSES,
    is_item_action_allowed,
    is_item_transition_valid,
    status_reason_after,
)
from cover.middleware.metrics import record_transition
from cover.models import (
    Claim,
    ClaimItem,
    Item,
    ItemCategory,
    LedgerEntry,
    Policy,
    PolicyDependent,
    User,
)
from cover.models.policy import is_policy_member
from cover.services.audit_service import AuditService
from cover.services.events import DomainEvent, EventKind, emit
from cover.services.ledger_service import LedgerService

logger = logging.getLogger(__name__)

RESOURCE = "items"

# Items counted against the policy and dependent coverage ceilings.
_COUNTED_STATUSES = (ItemCoverageStatus.PENDING, ItemCoverageStatus.APPROVED)

EDITABLE_FIELDS = frozenset({
    "name",
    "description",
    "category_id",
    "make",
    "model",
    "serial_number",
    "country",
    "coverage_amount",
    "policy_user_id",
    "policy_dependent_id",
})


class ItemManager:
    """Manages the item coverage lifecycle on behalf of one actor."""

    def __init__(self, session: AsyncSession, actor: User):
        self.session = session
        self.actor = actor
        self.audit = AuditService(session)
        self.ledger = LedgerService(session)

    @property
    def _actor_label(self) -> str:
        return self.actor.email

    # ── Creation and edits ───────────────────────────────────────────────

    async def create(self, policy: Policy, data: dict) -> Item:
        fields = {k: v for k, v in data.items() if k in EDITABLE_FIELDS}
        await self._validate_fields(policy.id, fields)

        item = Item(
            policy_id=policy.id,
            coverage_status=ItemCoverageStatus.DRAFT,
            status_change=f"Created by {self.actor.name}",
            **fields,
        )
        self.session.add(item)
        await self.session.flush()

        await self.audit.log_event(
            event_type="item_created",
            actor=self._actor_label,
            action=f"Created item {item.name}",
            resource_type=RESOURCE,
            resource_id=str(item.id),
            details={"policy_id": str(policy.id), "coverage_amount": item.coverage_amount},
        )
        return item

    async def update(self, item: Item, changes: dict) -> Item:
        """Apply field edits. The coverage status is not a client-editable field."""
        self._require_action(item, Permission.UPDATE, SubResource.NONE)
        fields = {k: v for k, v in changes.items() if k in EDITABLE_FIELDS}
        await self._validate_fields(item.policy_id, fields)

        history = {
            k: (getattr(item, k), v) for k, v in fields.items() if getattr(item, k) != v
        }
        for k, v in fields.items():
            setattr(item, k, v)

        await self.update_status(item, item.coverage_status)
        await self.audit.log_field_changes(self._actor_label, RESOURCE, item.id, history)
        return item

    async def _validate_fields(self, policy_id, fields: dict) -> None:
        if "category_id" in fields:
            category = await self.session.get(ItemCategory, fields["category_id"])
            if category is None:
                raise AppError("item category not found", ErrorKey.ITEM_CATEGORY_NOT_FOUND)

        if fields.get("coverage_amount") is not None and fields["coverage_amount"] < 0:
            raise AppError("coverage amount must not be negative", ErrorKey.VALIDATION)

        dependent_id = fields.get("policy_dependent_id")
        if dependent_id is not None:
            dependent = await self.session.get(PolicyDependent, dependent_id)
            if dependent is None or dependent.policy_id != policy_id:
                raise AppError("dependent is not on this policy", ErrorKey.VALIDATION)

        user_id = fields.get("policy_user_id")
        if user_id is not None and not await is_policy_member(self.session, policy_id, user_id):
            raise AppError("accountable person is not a policy member", ErrorKey.VALIDATION)

    # ── Status core ──────────────────────────────────────────────────────

    async def update_status(
        self,
        item: Item,
        new_status: ItemCoverageStatus | str,
        *,
        status_change: str = "",
        reason: str | None = None,
    ) -> Item:
        """
        Move ``item`` to ``new_status`` if the edge is in the transition table.

        Same-state calls always succeed and leave the status fields alone.
        Entering Revision or Denied needs a reason; every other status
        clears it.
        """
        old_status = item.coverage_status
        try:
            new_status = ItemCoverageStatus(new_status)
        except ValueError:
            raise InvalidTransition("item coverage", old_status, new_status)

        if not is_item_transition_valid(old_status, new_status):
            raise InvalidTransition("item coverage", old_status, new_status)

        if old_status == new_status:
            await self.session.flush()
            return item

        if new_status in REASON_STATUSES and not (reason or "").strip():
            raise AppError(
                f"a reason is required to move an item to {new_status.value}",
                ErrorKey.VALIDATION,
            )

        item.coverage_status = new_status
        item.status_reason = status_reason_after(new_status, reason)
        item.status_change = status_change
        await self.session.flush()

        record_transition("item", old_status, new_status)
        await self.audit.log_status_change(
            self._actor_label, RESOURCE, item.id, old_status, new_status, status_change,
        )
        logger.info("Item %s: %s -> %s", item.id, old_status.value, new_status.value)
        return item

    def _require_action(self, item: Item, permission: Permission, sub_resource: SubResource) -> None:
        if not is_item_action_allowed(
            self.actor.is_admin, item.coverage_status, permission, sub_resource, self.actor.capabilities,
        ):
            action = sub_resource.value or permission.value
            raise AppError(
                f"cannot {action} an item with coverage status {item.coverage_status.value}",
                ErrorKey.ITEM_STATUS,
            )

    async def _emit(self, item: Item, kind: EventKind, reason: str = "") -> None:
        await emit(
            self.session,
            DomainEvent(kind=kind, resource_type=RESOURCE, resource_id=item.id, policy_id=item.policy_id, reason=reason),
            actor=self._actor_label,
        )

    # ── Review actions ───────────────────────────────────────────────────

    async def submit(self, item: Item) -> Item:
        """Draft or Revision -> Pending, or straight to Approved when eligible."""
        self._require_action(item, Permission.CREATE, SubResource.SUBMIT)

        if item.coverage_status is ItemCoverageStatus.DRAFT and await self.can_auto_approve(item):
            await self.update_status(item, ItemCoverageStatus.APPROVED, status_change="Auto approved")
            await self._start_coverage(item)
            await self._emit(item, EventKind.ITEM_AUTO_APPROVED)
            return item

        await self.update_status(item, ItemCoverageStatus.PENDING, status_change="Submitted for approval")
        await self._emit(item, EventKind.ITEM_SUBMITTED)
        return item

    async def approve(self, item: Item) -> Item:
        self._require_action(item, Permission.CREATE, SubResource.APPROVE)
        await self.update_status(
            item, ItemCoverageStatus.APPROVED, status_change=f"Approved by {self.actor.name}",
        )
        await self._start_coverage(item)
        await self._emit(item, EventKind.ITEM_APPROVED)
        return item

    async def deny(self, item: Item, reason: str) -> Item:
        self._require_action(item, Permission.CREATE, SubResource.DENY)
        await self.update_status(
            item, ItemCoverageStatus.DENIED, status_change=f"Denied by {self.actor.name}", reason=reason,
        )
        await self._emit(item, EventKind.ITEM_DENIED, reason)
        return item

    async def request_revision(self, item: Item, reason: str) -> Item:
        self._require_action(item, Permission.CREATE, SubResource.REVISION)
        await self.update_status(
            item, ItemCoverageStatus.REVISION,
            status_change=f"Revisions requested by {self.actor.name}", reason=reason,
        )
        await self._emit(item, EventKind.ITEM_REVISION, reason)
        return item

    async def _start_coverage(self, item: Item) -> None:
        item.coverage_start_date = date.today()
        await self.ledger.record_new_coverage(item)

    # ── Removal ──────────────────────────────────────────────────────────

    async def remove(self, item: Item) -> bool:
        """Delete the item if it is still disposable, otherwise inactivate it.

        Returns True when the row was deleted.
        """
        self._require_action(item, Permission.DELETE, SubResource.NONE)

        if await self._can_hard_delete(item):
            await self.audit.log_event(
                event_type="item_deleted",
                actor=self._actor_label,
                action=f"Deleted item {item.name}",
                resource_type=RESOURCE,
                resource_id=str(item.id),
                details={"coverage_status": item.coverage_status.value},
            )
            await self.session.delete(item)
            await self.session.flush()
            return True

        await self.inactivate(item)
        return False

    async def _can_hard_delete(self, item: Item) -> bool:
        if await self._has_dependents(item):
            return False
        if item.coverage_status is ItemCoverageStatus.DRAFT:
            return True
        cutoff = timedelta(hours=settings.item_delete_cutoff_hours)
        return item.created_at is not None and utcnow() - item.created_at < cutoff

    async def _has_dependents(self, item: Item) -> bool:
        claim_items = await self.session.scalar(
            select(func.count(ClaimItem.id)).where(ClaimItem.item_id == item.id)
        )
        ledger_entries = await self.session.scalar(
            select(func.count(LedgerEntry.id)).where(LedgerEntry.item_id == item.id)
        )
        return bool(claim_items or ledger_entries)

    async def inactivate(self, item: Item) -> Item:
        old_status = item.coverage_status
        if old_status is ItemCoverageStatus.INACTIVE:
            return item
        if await self.has_open_claim(item):
            raise AppError("item has an open claim", ErrorKey.ITEM_HAS_ACTIVE_CLAIM)

        await self.update_status(
            item, ItemCoverageStatus.INACTIVE, status_change=f"Deactivated by {self.actor.name}",
        )
        if old_status is ItemCoverageStatus.APPROVED:
            item.paid_through_date = date.today()
            await self.ledger.record_cancellation_credit(item)
        return item

    async def has_open_claim(self, item: Item) -> bool:
        result = await self.session.execute(
            select(ClaimItem.id)
            .join(Claim, Claim.id == ClaimItem.claim_id)
            .where(ClaimItem.item_id == item.id, Claim.status.not_in(list(TERMINAL_STATUSES)))
            .limit(1)
        )
        return result.scalar_one_or_none() is not None

    # ── Auto-approval ────────────────────────────────────────────────────

    async def can_auto_approve(self, item: Item) -> bool:
        category = await self.session.get(ItemCategory, item.category_id)
        if category is None:
            return False
        if item.coverage_amount > category.auto_approve_max:
            return False
        if category.require_make_model and not (item.make and item.model):
            return False

        policy_total = await self._covered_total(Item.policy_id == item.policy_id, item)
        if policy_total + item.coverage_amount > settings.policy_max_coverage:
            return False

        if item.policy_dependent_id is not None:
            dependent_total = await self._covered_total(
                Item.policy_dependent_id == item.policy_dependent_id, item,
            )
            if dependent_total + item.coverage_amount > settings.dependent_auto_approve_max:
                return False

        return True

    async def _covered_total(self, scope, item: Item) -> int:
        total = await self.session.scalar(
            select(func.coalesce(func.sum(Item.coverage_amount), 0)).where(
                scope,
                Item.id != item.id,
                Item.coverage_status.in_(_COUNTED_STATUSES),
            )
        )
        return int(total or 0)
