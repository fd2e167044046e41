"""
Claim review pipeline.

A member submits a Draft (or a claim sent back for Revision) to Pending. A
steward accepts it into Review1 and advances it through Review2 to
Review3, may ask for receipts (Review1 or Review2 to Receipt), may send it
back for Revision from Review1, and may deny it. Receipt is resubmitted by
the member straight to Review2. Review3 is the signator stage: only a
signator may approve, deny or send back a claim sitting there.
"""

from enum import Enum
from typing import NamedTuple

from cover.auth.permissions import Permission, SubResource
from cover.auth.roles import AdminCapability
from cover.lifecycle import Gate, gate_allows, is_edge


class ClaimStatus(str, Enum):
    DRAFT = "Draft"
    PENDING = "Pending"
    REVIEW1 = "Review1"
    REVIEW2 = "Review2"
    REVIEW3 = "Review3"
    RECEIPT = "Receipt"
    REVISION = "Revision"
    APPROVED = "Approved"
    DENIED = "Denied"


S = ClaimStatus

CLAIM_TRANSITIONS: dict[ClaimStatus, frozenset[ClaimStatus]] = {
    S.DRAFT: frozenset({S.PENDING}),
    S.PENDING: frozenset({S.DRAFT, S.REVIEW1}),
    S.REVIEW1: frozenset({S.DRAFT, S.REVIEW2, S.RECEIPT, S.REVISION, S.DENIED}),
    S.REVIEW2: frozenset({S.REVIEW3, S.RECEIPT, S.DENIED}),
    S.REVIEW3: frozenset({S.APPROVED, S.REVISION, S.DENIED}),
    S.RECEIPT: frozenset({S.REVIEW2}),
    S.REVISION: frozenset({S.PENDING}),
    S.APPROVED: frozenset(),
    S.DENIED: frozenset(),
}

TERMINAL_STATUSES = frozenset({S.APPROVED, S.DENIED})
REVIEW_STATUSES = frozenset({S.REVIEW1, S.REVIEW2, S.REVIEW3})

# Member edits while a claim waits for its first review take it back to Draft.
EDIT_REVERTS_TO_DRAFT = frozenset({S.PENDING, S.REVIEW1})


class ClaimAction(NamedTuple):
    target: ClaimStatus
    gate: Gate


CLAIM_ACTIONS: dict[tuple[ClaimStatus, SubResource], ClaimAction] = {
    (S.DRAFT, SubResource.SUBMIT): ClaimAction(S.PENDING, Gate.MEMBER),
    (S.REVISION, SubResource.SUBMIT): ClaimAction(S.PENDING, Gate.MEMBER),
    (S.RECEIPT, SubResource.SUBMIT): ClaimAction(S.REVIEW2, Gate.MEMBER),
    (S.PENDING, SubResource.APPROVE): ClaimAction(S.REVIEW1, Gate.STEWARD),
    (S.REVIEW1, SubResource.APPROVE): ClaimAction(S.REVIEW2, Gate.STEWARD),
    (S.REVIEW2, SubResource.APPROVE): ClaimAction(S.REVIEW3, Gate.STEWARD),
    (S.REVIEW3, SubResource.APPROVE): ClaimAction(S.APPROVED, Gate.SIGNATOR),
    (S.REVIEW1, SubResource.PREAPPROVE): ClaimAction(S.RECEIPT, Gate.STEWARD),
    (S.REVIEW1, SubResource.RECEIPT): ClaimAction(S.RECEIPT, Gate.STEWARD),
    (S.REVIEW2, SubResource.RECEIPT): ClaimAction(S.RECEIPT, Gate.STEWARD),
    (S.REVIEW1, SubResource.REVISION): ClaimAction(S.REVISION, Gate.STEWARD),
    (S.REVIEW3, SubResource.REVISION): ClaimAction(S.REVISION, Gate.SIGNATOR),
    (S.REVIEW1, SubResource.DENY): ClaimAction(S.DENIED, Gate.STEWARD),
    (S.REVIEW2, SubResource.DENY): ClaimAction(S.DENIED, Gate.STEWARD),
    (S.REVIEW3, SubResource.DENY): ClaimAction(S.DENIED, Gate.SIGNATOR),
}

ACTION_SUB_RESOURCES = frozenset(sub for _, sub in CLAIM_ACTIONS)

_ALL = frozenset(ClaimStatus)
_OPEN = _ALL - TERMINAL_STATUSES


class ClaimAccess(NamedTuple):
    """Statuses in which a plain (non-action) request is allowed."""

    member: frozenset[ClaimStatus]
    admin: frozenset[ClaimStatus]


CLAIM_ACCESS: dict[tuple[Permission, SubResource], ClaimAccess] = {
    (Permission.VIEW, SubResource.NONE): ClaimAccess(_ALL, _ALL),
    (Permission.UPDATE, SubResource.NONE): ClaimAccess(
        frozenset({S.DRAFT, S.PENDING, S.REVISION, S.REVIEW1}), _OPEN,
    ),
    (Permission.DELETE, SubResource.NONE): ClaimAccess(frozenset({S.DRAFT}), frozenset({S.DRAFT})),
    (Permission.VIEW, SubResource.ITEMS): ClaimAccess(_ALL, _ALL),
    (Permission.CREATE, SubResource.ITEMS): ClaimAccess(
        frozenset({S.DRAFT, S.REVISION}), frozenset({S.DRAFT, S.REVISION}),
    ),
    (Permission.VIEW, SubResource.FILES): ClaimAccess(_ALL, _ALL),
    (Permission.CREATE, SubResource.FILES): ClaimAccess(_OPEN, _OPEN),
}


def _coerce(status) -> ClaimStatus | None:
    try:
        return ClaimStatus(status)
    except ValueError:
        return None


def is_claim_transition_valid(old, new) -> bool:
    old_status, new_status = _coerce(old), _coerce(new)
    if old_status is None or new_status is None:
        return False
    return is_edge(CLAIM_TRANSITIONS, old_status, new_status)


def claim_action(status, sub_resource: SubResource) -> ClaimAction | None:
    status = _coerce(status)
    if status is None:
        return None
    return CLAIM_ACTIONS.get((status, sub_resource))


def is_claim_action_allowed(
    capabilities: frozenset[AdminCapability],
    status,
    permission: Permission,
    sub_resource: SubResource,
) -> bool:
    """Whether the request may be attempted on a claim in ``status``.

    Policy membership of a non-admin actor is checked by the caller.
    """
    if permission is Permission.LIST and sub_resource is SubResource.NONE:
        return True

    if sub_resource in ACTION_SUB_RESOURCES:
        if permission is not Permission.CREATE:
            return False
        action = claim_action(status, sub_resource)
        return action is not None and gate_allows(action.gate, capabilities)

    status = _coerce(status)
    access = CLAIM_ACCESS.get((permission, sub_resource))
    if status is None or access is None:
        return False
    allowed = access.admin if capabilities else access.member
    return status in allowed
