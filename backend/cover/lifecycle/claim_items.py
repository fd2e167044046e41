"""ClaimItem status table and the claim statuses that govern item edits."""

from enum import Enum

from cover.lifecycle import is_edge
from cover.lifecycle.claims import ClaimStatus


class ClaimItemStatus(str, Enum):
    DRAFT = "Draft"
    PENDING = "Pending"
    REVISION = "Revision"
    APPROVED = "Approved"
    DENIED = "Denied"


S = ClaimItemStatus

CLAIM_ITEM_TRANSITIONS: dict[ClaimItemStatus, frozenset[ClaimItemStatus]] = {
    S.DRAFT: frozenset({S.PENDING}),
    S.PENDING: frozenset({S.REVISION, S.APPROVED, S.DENIED}),
    S.REVISION: frozenset({S.PENDING}),
    S.APPROVED: frozenset(),
    S.DENIED: frozenset(),
}

# Claim statuses in which a policy member may edit the claim's items.
MEMBER_EDITABLE_CLAIM_STATUSES = frozenset({
    ClaimStatus.DRAFT,
    ClaimStatus.PENDING,
    ClaimStatus.REVISION,
    ClaimStatus.REVIEW1,
    ClaimStatus.RECEIPT,
})

# Fields a member may still fill in once receipts are requested.
RECEIPT_FIELDS = frozenset({"repair_actual", "replace_actual"})

# Items a reviewer has already decided; claim status changes leave them alone.
DECIDED_STATUSES = frozenset({S.APPROVED, S.DENIED})

# Item status that follows each claim status.
ITEM_STATUS_FOR_CLAIM: dict[ClaimStatus, ClaimItemStatus] = {
    ClaimStatus.PENDING: S.PENDING,
    ClaimStatus.REVISION: S.REVISION,
    ClaimStatus.APPROVED: S.APPROVED,
    ClaimStatus.DENIED: S.DENIED,
}


def is_claim_item_transition_valid(old, new) -> bool:
    try:
        old_status, new_status = ClaimItemStatus(old), ClaimItemStatus(new)
    except ValueError:
        return False
    return is_edge(CLAIM_ITEM_TRANSITIONS, old_status, new_status)
