"""Service pricing router."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from services.pricing import list_active_pricing

router = APIRouter()


@router.get("")
async def active_pricing(db: AsyncSession = Depends(get_db)):
    """Active services and their current prices, in credits."""
    return {"services": await list_active_pricing(db)}
