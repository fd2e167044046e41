"""
Item coverage lifecycle.

Draft is submitted to Pending, or auto-approved straight to Approved. A
steward moves Pending to Approved, Denied or Revision; Revision is
resubmitted to Pending. Approved coverage can only be inactivated.
Denied and Inactive are terminal.
"""

from enum import Enum

from cover.auth.permissions import Permission, SubResource
from cover.auth.roles import AdminCapability
from cover.lifecycle import Gate, gate_allows, is_edge


class ItemCoverageStatus(str, Enum):
    DRAFT = "Draft"
    PENDING = "Pending"
    REVISION = "Revision"
    APPROVED = "Approved"
    DENIED = "Denied"
    INACTIVE = "Inactive"


S = ItemCoverageStatus

ITEM_TRANSITIONS: dict[ItemCoverageStatus, frozenset[ItemCoverageStatus]] = {
    S.DRAFT: frozenset({S.PENDING, S.APPROVED, S.INACTIVE}),
    S.PENDING: frozenset({S.REVISION, S.APPROVED, S.DENIED, S.INACTIVE}),
    S.REVISION: frozenset({S.PENDING, S.INACTIVE}),
    S.APPROVED: frozenset({S.INACTIVE}),
    S.DENIED: frozenset(),
    S.INACTIVE: frozenset(),
}

_EDITABLE = {
    (Permission.UPDATE, SubResource.NONE): Gate.MEMBER,
    (Permission.CREATE, SubResource.SUBMIT): Gate.MEMBER,
    (Permission.DELETE, SubResource.NONE): Gate.MEMBER,
}

ITEM_ACTIONS: dict[ItemCoverageStatus, dict[tuple[Permission, SubResource], Gate]] = {
    S.DRAFT: _EDITABLE,
    S.REVISION: _EDITABLE,
    S.PENDING: {
        (Permission.CREATE, SubResource.REVISION): Gate.STEWARD,
        (Permission.CREATE, SubResource.APPROVE): Gate.STEWARD,
        (Permission.CREATE, SubResource.DENY): Gate.STEWARD,
        (Permission.DELETE, SubResource.NONE): Gate.MEMBER,
    },
    S.APPROVED: {
        (Permission.DELETE, SubResource.NONE): Gate.MEMBER,
    },
}

# Statuses whose reason survives the transition into them.
REASON_STATUSES = frozenset({S.REVISION, S.DENIED})

# Where each review action leads.
ITEM_ACTION_TARGETS: dict[SubResource, ItemCoverageStatus] = {
    SubResource.SUBMIT: S.PENDING,
    SubResource.REVISION: S.REVISION,
    SubResource.APPROVE: S.APPROVED,
    SubResource.DENY: S.DENIED,
}


def _coerce(status) -> ItemCoverageStatus | None:
    try:
        return ItemCoverageStatus(status)
    except ValueError:
        return None


def is_item_transition_valid(old, new) -> bool:
    old_status, new_status = _coerce(old), _coerce(new)
    if old_status is None or new_status is None:
        return False
    return is_edge(ITEM_TRANSITIONS, old_status, new_status)


def item_action_gate(status, permission: Permission, sub_resource: SubResource) -> Gate | None:
    status = _coerce(status)
    if status is None:
        return None
    return ITEM_ACTIONS.get(status, {}).get((permission, sub_resource))


def is_item_action_allowed(
    actor_is_admin: bool,
    status,
    permission: Permission,
    sub_resource: SubResource,
    capabilities: frozenset[AdminCapability] | None = None,
) -> bool:
    """Whether the action may be attempted on an item in ``status``.

    Admin-only actions need the steward capability; when ``capabilities``
    is not given, any admin is assumed to hold it.
    """
    gate = item_action_gate(status, permission, sub_resource)
    if gate is None:
        return False
    if gate is Gate.MEMBER:
        return True
    if capabilities is None:
        capabilities = frozenset({AdminCapability.STEWARD}) if actor_is_admin else frozenset()
    return gate_allows(gate, capabilities)


def status_reason_after(new_status: ItemCoverageStatus, reason: str | None) -> str:
    if new_status in REASON_STATUSES:
        return reason or ""
    return ""
