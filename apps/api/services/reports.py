"""Expertise report state machine and read helpers."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.orm import selectinload

from models.credit_transaction import REFUND, USAGE, CreditTransaction
from models.report import COMPLETED, FAILED, PROCESSING, TERMINAL_STATUSES, Report
from services.errors import ReportNotFoundError
from services.money import to_credits

logger = logging.getLogger(__name__)

STATUS_PROGRESS = {
    PROCESSING: 50,
    COMPLETED: 100,
    FAILED: 0,
}


@dataclass(frozen=True)
class AttachmentInput:
    kind: str
    uri: str
    mime_type: Optional[str] = None
    size_bytes: Optional[int] = None


@dataclass(frozen=True)
class ReportDraft:
    """Everything needed to create a report row except its price snapshot."""

    service_type: str
    vehicle: Dict[str, Any] = field(default_factory=dict)
    attachments: List[AttachmentInput] = field(default_factory=list)
    description: Optional[str] = None


async def transition_report(
    db: AsyncSession,
    report_id: str,
    target: str,
    *,
    result: Optional[Dict[str, Any]] = None,
    reason: Optional[str] = None,
) -> bool:
    """Move a PROCESSING report to a terminal status.

    Single conditional UPDATE: only one of several racing signals can win.
    Returns False, without side effects, when the report is already terminal.
    Does not commit.
    """
    if target not in TERMINAL_STATUSES:
        raise ValueError(f"{target!r} is not a terminal report status")
    now = datetime.now(timezone.utc)
    values: Dict[str, Any] = {"status": target, "updated_at": now, "completed_at": now}
    if target == COMPLETED:
        values["result_json"] = result
    else:
        values["failure_reason"] = (reason or "analysis failed")[:1000]

    outcome = await db.execute(
        update(Report)
        .where(Report.id == report_id, Report.status == PROCESSING)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    applied = outcome.rowcount == 1
    if applied:
        logger.info("Report %s -> %s", report_id, target)
    else:
        logger.info("Report %s already terminal; %s signal ignored", report_id, target)
    return applied


async def get_report(
    db: AsyncSession,
    report_id: str,
    *,
    user_id: Optional[str] = None,
    with_attachments: bool = False,
) -> Report:
    stmt = select(Report).where(Report.id == report_id)
    if user_id is not None:
        stmt = stmt.where(Report.user_id == user_id)
    if with_attachments:
        stmt = stmt.options(selectinload(Report.attachments))
    result = await db.execute(stmt.execution_options(populate_existing=True))
    report = result.scalar_one_or_none()
    if report is None:
        raise ReportNotFoundError(f"Report {report_id} not found")
    return report


async def _refund_for_report(db: AsyncSession, report_id: str) -> Optional[CreditTransaction]:
    usage_ids = select(CreditTransaction.id).where(
        CreditTransaction.transaction_type == USAGE,
        CreditTransaction.reference_id == report_id,
    )
    result = await db.execute(
        select(CreditTransaction).where(
            CreditTransaction.transaction_type == REFUND,
            CreditTransaction.reference_id.in_(usage_ids),
        )
    )
    return result.scalar_one_or_none()


async def get_report_status(db: AsyncSession, report_id: str, *, user_id: str) -> Dict[str, Any]:
    """Polling view of a report, including whether its credits came back."""
    report = await get_report(db, report_id, user_id=user_id)
    refund = await _refund_for_report(db, report.id) if report.status == FAILED else None
    return {
        "report_id": report.id,
        "service_type": report.service_type,
        "status": report.status,
        "progress": STATUS_PROGRESS.get(report.status, 0),
        "total_cost": str(to_credits(report.total_cost)),
        "result": report.result_json if report.status == COMPLETED else None,
        "failure_reason": report.failure_reason if report.status == FAILED else None,
        "credit_refunded": refund is not None,
        "refund_amount": str(to_credits(refund.amount)) if refund is not None else None,
        "created_at": report.created_at.isoformat() if report.created_at else None,
        "updated_at": report.updated_at.isoformat() if report.updated_at else None,
    }


async def list_reports(db: AsyncSession, user_id: str, *, limit: int = 20) -> List[Dict[str, Any]]:
    result = await db.execute(
        select(Report)
        .where(Report.user_id == user_id)
        .order_by(Report.created_at.desc())
        .limit(max(int(limit), 1))
    )
    return [
        {
            "report_id": report.id,
            "service_type": report.service_type,
            "status": report.status,
            "progress": STATUS_PROGRESS.get(report.status, 0),
            "total_cost": str(to_credits(report.total_cost)),
            "created_at": report.created_at.isoformat() if report.created_at else None,
            "completed_at": report.completed_at.isoformat() if report.completed_at else None,
        }
        for report in result.scalars().all()
    ]
