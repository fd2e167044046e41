"""
Item endpoints.

Items are created and listed under /policies/{id}/items; this router holds
the per-item edits and review actions. The dispatcher has already checked
the (coverage status, action) gate before any handler runs.
"""

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from cover.api.authz import ResourceType
from cover.api.deps import authorize, authorized, get_current_actor, get_db
from cover.models import Item, User
from cover.schemas.schemas import ItemOut, ItemRemoved, ItemUpdate, ReasonInput
from cover.services.item_manager import ItemManager

router = APIRouter(prefix="/items", tags=["items"], dependencies=[Depends(authorize)])

_item = authorized(ResourceType.ITEMS.value)


@router.put("/{item_id}", response_model=ItemOut)
async def update_item(
    item_id: uuid.UUID,
    body: ItemUpdate,
    item: Item = Depends(_item),
    actor: User = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    await ItemManager(db, actor).update(item, body.model_dump(exclude_unset=True))
    return ItemOut.model_validate(item)


@router.delete("/{item_id}", response_model=ItemRemoved)
async def remove_item(
    item_id: uuid.UUID,
    item: Item = Depends(_item),
    actor: User = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Delete a draft (or a fresh item with no history), otherwise inactivate it."""
    deleted = await ItemManager(db, actor).remove(item)
    if deleted:
        return ItemRemoved(deleted=True)
    return ItemRemoved(deleted=False, item=ItemOut.model_validate(item))


# ── Review actions ───────────────────────────────────────────────────────────

@router.post("/{item_id}/submit", response_model=ItemOut)
async def submit_item(
    item_id: uuid.UUID,
    item: Item = Depends(_item),
    actor: User = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    await ItemManager(db, actor).submit(item)
    return ItemOut.model_validate(item)


@router.post("/{item_id}/approve", response_model=ItemOut)
async def approve_item(
    item_id: uuid.UUID,
    item: Item = Depends(_item),
    actor: User = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    await ItemManager(db, actor).approve(item)
    return ItemOut.model_validate(item)


@router.post("/{item_id}/deny", response_model=ItemOut)
async def deny_item(
    item_id: uuid.UUID,
    body: ReasonInput,
    item: Item = Depends(_item),
    actor: User = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    await ItemManager(db, actor).deny(item, body.reason)
    return ItemOut.model_validate(item)


@router.post("/{item_id}/revision", response_model=ItemOut)
async def request_item_revision(
    item_id: uuid.UUID,
    body: ReasonInput,
    item: Item = Depends(_item),
    actor: User = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    await ItemManager(db, actor).request_revision(item, body.reason)
    return ItemOut.model_validate(item)
