"""Billing and credits router."""

from __future__ import annotations

import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from services.credits import get_account, get_credit_summary, list_transactions, purchase_credits, serialize_transaction
from services.money import to_credits

router = APIRouter()
logger = logging.getLogger(__name__)


class CreditTopUpRequest(BaseModel):
    user_id: str
    credits: int = Field(ge=1, le=100000)
    billing_reference: Optional[str] = None


@router.get("/credits")
async def credits_summary(
    user_id: str = Query(...),
    db: AsyncSession = Depends(get_db),
):
    return await get_credit_summary(db, user_id)


@router.get("/transactions")
async def credit_transactions(
    user_id: str = Query(...),
    limit: int = Query(default=50, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    await get_account(db, user_id)
    entries = await list_transactions(db, user_id, limit=limit)
    return {"user_id": user_id, "transactions": [serialize_transaction(entry) for entry in entries]}


@router.post("/topup")
async def manual_topup(
    request: CreditTopUpRequest,
    db: AsyncSession = Depends(get_db),
):
    billing_reference = request.billing_reference or f"manual:{uuid.uuid4()}"
    result = await purchase_credits(
        db,
        request.user_id,
        request.credits,
        billing_reference=billing_reference,
    )
    return {
        "ok": True,
        "credits_added": 0 if result["replayed"] else request.credits,
        "replayed": result["replayed"],
        "billing_reference": billing_reference,
        "balance_after": str(to_credits(result["balance_after"])),
    }
