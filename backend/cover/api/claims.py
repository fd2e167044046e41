"""
Claim endpoints.

Claims are opened under /policies/{id}/claims. Review actions are POSTs to
a sub-resource (``/claims/{id}/approve``); the dispatcher has already
checked that the actor's admin capability matches the claim's review
stage.
"""

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cover.api.authz import ResourceType
from cover.api.deps import authorize, authorized, get_current_actor, get_db
from cover.lifecycle.claims import ClaimStatus
from cover.models import Claim, ClaimFile, PolicyUser, User
from cover.schemas.schemas import (
    ClaimDetail,
    ClaimFileCreate,
    ClaimFileOut,
    ClaimItemCreate,
    ClaimItemOut,
    ClaimOut,
    ClaimUpdate,
    OptionalReasonInput,
    ReasonInput,
)
from cover.services.claim_manager import ClaimManager

router = APIRouter(prefix="/claims", tags=["claims"], dependencies=[Depends(authorize)])

_claim = authorized(ResourceType.CLAIMS.value)


async def _claim_detail(claim: Claim, manager: ClaimManager, db: AsyncSession) -> ClaimDetail:
    items = await manager.claim_items(claim)
    files = (await db.execute(
        select(ClaimFile).where(ClaimFile.claim_id == claim.id).order_by(ClaimFile.created_at)
    )).scalars().all()
    detail = ClaimDetail.model_validate(claim)
    detail.items = [ClaimItemOut.model_validate(ci) for ci in items]
    detail.files = [ClaimFileOut.model_validate(f) for f in files]
    return detail


# ── GET /claims: review queue for admins, own claims for members ───────────

@router.get("", response_model=list[ClaimOut])
async def list_claims(
    status: ClaimStatus | None = Query(None),
    actor: User = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    query = select(Claim)
    if not actor.is_admin:
        member_policies = select(PolicyUser.policy_id).where(PolicyUser.user_id == actor.id)
        query = query.where(Claim.policy_id.in_(member_policies))
    if status is not None:
        query = query.where(Claim.status == status)
    result = await db.execute(query.order_by(Claim.created_at.desc()))
    return [ClaimOut.model_validate(c) for c in result.scalars().all()]


@router.get("/{claim_id}", response_model=ClaimDetail)
async def get_claim(
    claim_id: uuid.UUID,
    claim: Claim = Depends(_claim),
    actor: User = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    return await _claim_detail(claim, ClaimManager(db, actor), db)


@router.put("/{claim_id}", response_model=ClaimOut)
async def update_claim(
    claim_id: uuid.UUID,
    body: ClaimUpdate,
    claim: Claim = Depends(_claim),
    actor: User = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    await ClaimManager(db, actor).update(claim, body.model_dump(exclude_unset=True))
    return ClaimOut.model_validate(claim)


@router.delete("/{claim_id}", status_code=204)
async def delete_claim(
    claim_id: uuid.UUID,
    claim: Claim = Depends(_claim),
    actor: User = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    await ClaimManager(db, actor).remove(claim)


# ── Claim items and files ────────────────────────────────────────────────────

@router.get("/{claim_id}/items", response_model=list[ClaimItemOut])
async def list_claim_items(
    claim_id: uuid.UUID,
    claim: Claim = Depends(_claim),
    actor: User = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    items = await ClaimManager(db, actor).claim_items(claim)
    return [ClaimItemOut.model_validate(ci) for ci in items]


@router.post("/{claim_id}/items", response_model=ClaimItemOut, status_code=201)
async def add_claim_item(
    claim_id: uuid.UUID,
    body: ClaimItemCreate,
    claim: Claim = Depends(_claim),
    actor: User = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    claim_item = await ClaimManager(db, actor).add_item(claim, body.model_dump())
    return ClaimItemOut.model_validate(claim_item)


@router.get("/{claim_id}/files", response_model=list[ClaimFileOut])
async def list_claim_files(
    claim_id: uuid.UUID,
    claim: Claim = Depends(_claim),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(select(ClaimFile).where(ClaimFile.claim_id == claim.id))
    return [ClaimFileOut.model_validate(f) for f in result.scalars().all()]


@router.post("/{claim_id}/files", response_model=ClaimFileOut, status_code=201)
async def attach_claim_file(
    claim_id: uuid.UUID,
    body: ClaimFileCreate,
    claim: Claim = Depends(_claim),
    actor: User = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    claim_file = await ClaimManager(db, actor).attach_file(claim, body.model_dump())
    return ClaimFileOut.model_validate(claim_file)


# ── Lifecycle actions ────────────────────────────────────────────────────────

@router.post("/{claim_id}/submit", response_model=ClaimOut)
async def submit_claim(
    claim_id: uuid.UUID,
    claim: Claim = Depends(_claim),
    actor: User = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    await ClaimManager(db, actor).submit(claim)
    return ClaimOut.model_validate(claim)


@router.post("/{claim_id}/approve", response_model=ClaimOut)
async def approve_claim(
    claim_id: uuid.UUID,
    claim: Claim = Depends(_claim),
    actor: User = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    await ClaimManager(db, actor).approve(claim)
    return ClaimOut.model_validate(claim)


@router.post("/{claim_id}/preapprove", response_model=ClaimOut)
async def preapprove_claim(
    claim_id: uuid.UUID,
    body: OptionalReasonInput,
    claim: Claim = Depends(_claim),
    actor: User = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    await ClaimManager(db, actor).request_receipt(claim, body.reason, preapprove=True)
    return ClaimOut.model_validate(claim)


@router.post("/{claim_id}/receipt", response_model=ClaimOut)
async def request_claim_receipt(
    claim_id: uuid.UUID,
    body: OptionalReasonInput,
    claim: Claim = Depends(_claim),
    actor: User = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    await ClaimManager(db, actor).request_receipt(claim, body.reason)
    return ClaimOut.model_validate(claim)


@router.post("/{claim_id}/revision", response_model=ClaimOut)
async def request_claim_revision(
    claim_id: uuid.UUID,
    body: ReasonInput,
    claim: Claim = Depends(_claim),
    actor: User = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    await ClaimManager(db, actor).request_revision(claim, body.reason)
    return ClaimOut.model_validate(claim)


@router.post("/{claim_id}/deny", response_model=ClaimOut)
async def deny_claim(
    claim_id: uuid.UUID,
    body: ReasonInput,
    claim: Claim = Depends(_claim),
    actor: User = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    await ClaimManager(db, actor).deny(claim, body.reason)
    return ClaimOut.model_validate(claim)
