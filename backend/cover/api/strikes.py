"""Strikes against a policy. Admin only; the dispatcher refuses everyone else."""

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from cover.api.authz import ResourceType
from cover.api.deps import authorize, authorized, get_db
from cover.models import Strike
from cover.schemas.schemas import StrikeInput, StrikeOut

router = APIRouter(prefix="/strikes", tags=["strikes"], dependencies=[Depends(authorize)])

_strike = authorized(ResourceType.STRIKES.value)


@router.get("/{strike_id}", response_model=StrikeOut)
async def get_strike(strike_id: uuid.UUID, strike: Strike = Depends(_strike)):
    return StrikeOut.model_validate(strike)


@router.put("/{strike_id}", response_model=StrikeOut)
async def update_strike(
    strike_id: uuid.UUID,
    body: StrikeInput,
    strike: Strike = Depends(_strike),
    db: AsyncSession = Depends(get_db),
):
    strike.description = body.description
    await db.flush()
    return StrikeOut.model_validate(strike)


@router.delete("/{strike_id}", status_code=204)
async def delete_strike(
    strike_id: uuid.UUID,
    strike: Strike = Depends(_strike),
    db: AsyncSession = Depends(get_db),
):
    await db.delete(strike)
    await db.flush()
