"""Expertise report router."""

from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from services.credits import get_account
from services.dispatcher import dispatch_report
from services.expertise import create_expertise_report
from services.money import to_credits
from services.reports import get_report, get_report_status, list_reports

router = APIRouter()
logger = logging.getLogger(__name__)


class VehicleInfo(BaseModel):
    plate: Optional[str] = None
    vin: Optional[str] = None
    make: Optional[str] = None
    model: Optional[str] = None
    year: Optional[int] = None
    mileage: Optional[int] = Field(default=None, ge=0)


class AttachmentRequest(BaseModel):
    kind: str
    uri: str
    mime_type: Optional[str] = None
    size_bytes: Optional[int] = None


class CreateReportRequest(BaseModel):
    user_id: str
    service_type: str
    vehicle: VehicleInfo
    attachments: List[AttachmentRequest] = Field(default_factory=list)


@router.post("/reports", status_code=201)
async def create_report(
    request: CreateReportRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
):
    """Charge the service price and start the analysis.

    The response only confirms the debit; poll the report for the outcome.
    """
    report = await create_expertise_report(
        db,
        user_id=request.user_id,
        service_type=request.service_type,
        vehicle=request.vehicle.model_dump(exclude_none=True),
        attachments=[attachment.model_dump() for attachment in request.attachments],
    )
    await dispatch_report(report.id, background_tasks)
    # Re-read: a failed enqueue has already failed and refunded the report.
    report = await get_report(db, report.id)
    account = await get_account(db, request.user_id)
    return {
        "report_id": report.id,
        "status": report.status,
        "total_cost": str(to_credits(report.total_cost)),
        "balance_after": str(to_credits(account.balance)),
    }


@router.get("/reports/{report_id}")
async def report_status(
    report_id: str,
    user_id: str = Query(...),
    db: AsyncSession = Depends(get_db),
):
    return await get_report_status(db, report_id, user_id=user_id)


@router.get("/reports")
async def recent_reports(
    user_id: str = Query(...),
    limit: int = Query(default=20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    await get_account(db, user_id)
    return {"user_id": user_id, "reports": await list_reports(db, user_id, limit=limit)}
