"""Outcome lookup endpoint."""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from batcheval.database import get_db
from batcheval.schemas.api import OutcomeOut
from batcheval.storage.repositories import get_latest_outcome

router = APIRouter()


@router.get("/outcomes/{identity}", response_model=OutcomeOut)
async def get_outcome(
    identity: str,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Authoritative (or latest) evaluation outcome for an identity."""
    record = await get_latest_outcome(db, identity.strip())
    if not record:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No evaluation outcome for identity",
        )
    return OutcomeOut.model_validate(record)
