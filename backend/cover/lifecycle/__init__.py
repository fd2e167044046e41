"""
Lifecycle tables for Items, Claims and ClaimItems.

Each entity has two tables: an adjacency table of legal status edges, and
a gating table of which (status, permission, sub-resource) combinations may
be attempted and by whom. Lookups that miss either table are denials.
"""

from enum import Enum

from cover.auth.roles import AdminCapability


class Gate(str, Enum):
    """Who may attempt an action. MEMBER also admits any admin."""

    MEMBER = "member"
    STEWARD = "steward"
    SIGNATOR = "signator"


_GATE_CAPABILITY: dict[Gate, AdminCapability] = {
    Gate.STEWARD: AdminCapability.STEWARD,
    Gate.SIGNATOR: AdminCapability.SIGNATOR,
}


def gate_allows(gate: Gate, capabilities: frozenset[AdminCapability]) -> bool:
    """Whether the actor's capabilities satisfy ``gate``.

    Membership is not checked here; a MEMBER gate still requires the caller
    to confirm a non-admin actor belongs to the owning policy.
    """
    if gate is Gate.MEMBER:
        return True
    return _GATE_CAPABILITY[gate] in capabilities


def is_edge(table: dict, old, new) -> bool:
    """Same-state is always legal; otherwise ``new`` must be listed under ``old``."""
    if old == new:
        return True
    return new in table.get(old, frozenset())
