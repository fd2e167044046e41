"""Claim item endpoints. Items are added through /claims/{id}/items."""

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from cover.api.authz import ResourceType
from cover.api.deps import authorize, authorized, get_current_actor, get_db
from cover.models import ClaimItem, User
from cover.schemas.schemas import ClaimItemOut, ClaimItemUpdate
from cover.services.claim_manager import ClaimItemManager

router = APIRouter(prefix="/claim-items", tags=["claims"], dependencies=[Depends(authorize)])

_claim_item = authorized(ResourceType.CLAIM_ITEMS.value)


@router.get("/{claim_item_id}", response_model=ClaimItemOut)
async def get_claim_item(claim_item_id: uuid.UUID, claim_item: ClaimItem = Depends(_claim_item)):
    return ClaimItemOut.model_validate(claim_item)


@router.put("/{claim_item_id}", response_model=ClaimItemOut)
async def update_claim_item(
    claim_item_id: uuid.UUID,
    body: ClaimItemUpdate,
    claim_item: ClaimItem = Depends(_claim_item),
    actor: User = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    changes = body.model_dump(exclude_unset=True)
    new_status = changes.pop("status", None)
    await ClaimItemManager(db, actor).update(claim_item, changes, new_status)
    return ClaimItemOut.model_validate(claim_item)
