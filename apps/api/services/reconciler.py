"""Finalize expertise reports from provider outcomes."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from models.report import COMPLETED, FAILED
from services.credits import get_account, refund_usage, run_with_account_retry
from services.money import to_credits
from services.reports import get_report, transition_report

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconcileOutcome:
    report_id: str
    applied: bool
    status: str
    refunded: bool = False
    refund_amount: Optional[Decimal] = None
    balance_after: Optional[Decimal] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "report_id": self.report_id,
            "applied": self.applied,
            "status": self.status,
            "credit_refunded": self.refunded,
            "refund_amount": str(self.refund_amount) if self.refund_amount is not None else None,
            "balance_after": str(self.balance_after) if self.balance_after is not None else None,
        }


async def on_success(db: AsyncSession, report_id: str, result: Dict[str, Any]) -> ReconcileOutcome:
    """Complete the report with the provider result; late or duplicate signals are dropped."""
    await get_report(db, report_id)
    try:
        applied = await transition_report(db, report_id, COMPLETED, result=result)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    if not applied:
        report = await get_report(db, report_id)
        logger.info("Discarding result for report %s (status=%s)", report_id, report.status)
        return ReconcileOutcome(report_id=report_id, applied=False, status=report.status)
    return ReconcileOutcome(report_id=report_id, applied=True, status=COMPLETED)


async def on_failure(db: AsyncSession, report_id: str, reason: str) -> ReconcileOutcome:
    """Fail the report and refund its debit, both in one transaction.

    The refund is issued only by the call whose transition actually applied,
    and never when a REFUND for the same USAGE entry already exists.
    """
    report = await get_report(db, report_id)
    owner_id = report.user_id

    async def _attempt() -> ReconcileOutcome:
        applied = await transition_report(db, report_id, FAILED, reason=reason)
        if not applied:
            await db.rollback()
            current = await get_report(db, report_id)
            return ReconcileOutcome(report_id=report_id, applied=False, status=current.status)

        refund = await refund_usage(db, report_id, reason=reason)
        await db.commit()
        if refund is None:
            return ReconcileOutcome(report_id=report_id, applied=True, status=FAILED)
        account = await get_account(db, owner_id)
        return ReconcileOutcome(
            report_id=report_id,
            applied=True,
            status=FAILED,
            refunded=True,
            refund_amount=to_credits(refund.amount),
            balance_after=to_credits(account.balance),
        )

    outcome = await run_with_account_retry(db, _attempt, label="refund")
    if outcome.refunded:
        logger.info(
            "Report %s failed (%s); refunded %s credits, balance now %s",
            report_id,
            reason,
            outcome.refund_amount,
            outcome.balance_after,
        )
    elif outcome.applied:
        logger.warning("Report %s failed (%s) without a refund", report_id, reason)
    return outcome
