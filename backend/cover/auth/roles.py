"""
Application roles and the admin capabilities they grant.

Customers are ordinary policy members. Stewards and Signators are both
admins; claim review is split between them, and the Signator role holds
every Steward capability plus final approval:

    CUSTOMER < STEWARD < SIGNATOR
"""

from enum import Enum


class AppRole(str, Enum):
    CUSTOMER = "Customer"
    STEWARD = "Steward"
    SIGNATOR = "Signator"


class AdminCapability(str, Enum):
    STEWARD = "steward"
    SIGNATOR = "signator"


# ── Customer: no admin capability ──
_CUSTOMER_CAPS: frozenset[AdminCapability] = frozenset()

# ── Steward: day-to-day review ──
_STEWARD_CAPS: frozenset[AdminCapability] = frozenset({AdminCapability.STEWARD})

# ── Signator: steward + final sign-off ──
_SIGNATOR_CAPS: frozenset[AdminCapability] = frozenset({
    *_STEWARD_CAPS,
    AdminCapability.SIGNATOR,
})


ROLE_CAPABILITIES: dict[AppRole, frozenset[AdminCapability]] = {
    AppRole.CUSTOMER: _CUSTOMER_CAPS,
    AppRole.STEWARD: _STEWARD_CAPS,
    AppRole.SIGNATOR: _SIGNATOR_CAPS,
}


def capabilities_for(role: AppRole | str | None) -> frozenset[AdminCapability]:
    try:
        return ROLE_CAPABILITIES[AppRole(role)]
    except ValueError:
        return _CUSTOMER_CAPS


def is_admin_role(role: AppRole | str | None) -> bool:
    return bool(capabilities_for(role))
