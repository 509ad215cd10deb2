"""User signup router."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from services.credits import open_account
from services.money import to_credits

router = APIRouter()


class CreateUserRequest(BaseModel):
    user_id: Optional[str] = Field(default=None, min_length=1, max_length=64)
    email: str = Field(min_length=3, max_length=320)
    name: Optional[str] = None


@router.post("", status_code=201)
async def create_user(request: CreateUserRequest, db: AsyncSession = Depends(get_db)):
    account = await open_account(db, email=request.email, user_id=request.user_id, name=request.name)
    return {"user_id": account.user_id, "balance": str(to_credits(account.balance))}
