"""
Ownership chain resolution.

A ClaimItem does not belong to a policy directly: it hangs off an Item,
which belongs to a Policy, and off a Claim on the same policy. These
helpers load each hop explicitly so the authorization check never relies
on relationships being pre-loaded.

A missing link is a data problem, not a denial, and is raised as
OwnershipLookupError.
"""

import uuid
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from cover.models.claim import Claim, ClaimItem
from cover.models.item import Item
from cover.models.policy import Policy


class OwnershipLookupError(Exception):
    """A record needed to decide ownership could not be loaded."""

    def __init__(self, kind: str, record_id: uuid.UUID | None, owner: str):
        super().__init__(f"{owner} references {kind} {record_id} which could not be loaded")
        self.kind = kind
        self.record_id = record_id


@dataclass(frozen=True)
class OwnershipChain:
    policy: Policy
    item: Item | None = None
    claim: Claim | None = None


async def _load(session: AsyncSession, model, record_id: uuid.UUID | None, owner: str):
    obj = await session.get(model, record_id) if record_id is not None else None
    if obj is None:
        raise OwnershipLookupError(model.__name__, record_id, owner)
    return obj


async def resolve_item_chain(session: AsyncSession, item: Item) -> OwnershipChain:
    policy = await _load(session, Policy, item.policy_id, f"Item {item.id}")
    return OwnershipChain(policy=policy, item=item)


async def resolve_claim_item_chain(session: AsyncSession, claim_item: ClaimItem) -> OwnershipChain:
    """ClaimItem -> Item -> Policy, with the Claim loaded alongside."""
    owner = f"ClaimItem {claim_item.id}"
    item = await _load(session, Item, claim_item.item_id, owner)
    policy = await _load(session, Policy, item.policy_id, f"Item {item.id}")
    claim = await _load(session, Claim, claim_item.claim_id, owner)
    if claim.policy_id != policy.id:
        raise OwnershipLookupError("Claim", claim.id, f"{owner} (policy mismatch)")
    return OwnershipChain(policy=policy, item=item, claim=claim)
