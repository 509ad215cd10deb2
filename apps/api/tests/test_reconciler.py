from decimal import Decimal

import pytest
from sqlalchemy.future import select

from models.credit_transaction import REFUND, USAGE, CreditTransaction
from models.report import COMPLETED, FAILED, PROCESSING
from services.credits import get_account, ledger_balance, refund_usage
from services.expertise import create_expertise_report
from services.money import to_credits
from services.pricing import PAINT_ANALYSIS, set_service_price
from services.reconciler import on_failure, on_success
from services.reports import get_report, get_report_status, transition_report


PAINT_RESULT = {
    "overall_score": 82,
    "paint_condition": "good",
    "recommendations": ["Polish the hood"],
    "confidence": 90,
}
VEHICLE = {"plate": "06 xyz 42", "make": "Fiat", "model": "Egea", "year": 2019}
IMAGES = [{"kind": "image", "uri": "https://cdn.example.com/car-1.jpg", "mime_type": "image/jpeg"}]


async def _start_report(session_maker, user_id: str, price: str = "100") -> str:
    async with session_maker() as db:
        await set_service_price(db, PAINT_ANALYSIS, base_price=Decimal(price))
        report = await create_expertise_report(
            db,
            user_id=user_id,
            service_type=PAINT_ANALYSIS,
            vehicle=VEHICLE,
            attachments=IMAGES,
        )
        return report.id


async def _entries(db, user_id):
    result = await db.execute(
        select(CreditTransaction)
        .where(CreditTransaction.user_id == user_id)
        .order_by(CreditTransaction.created_at.asc())
    )
    return list(result.scalars().all())


@pytest.mark.asyncio
async def test_success_completes_report_and_keeps_debit(session_maker, funded_user):
    user_id = await funded_user(1000)
    report_id = await _start_report(session_maker, user_id)

    async with session_maker() as db:
        outcome = await on_success(db, report_id, PAINT_RESULT)
        assert outcome.applied is True
        assert outcome.status == COMPLETED

        report = await get_report(db, report_id)
        assert report.status == COMPLETED
        assert report.result_json["paint_condition"] == "good"
        assert report.completed_at is not None

        account = await get_account(db, user_id)
        assert to_credits(account.balance) == Decimal("900.00")
        usage = [entry for entry in await _entries(db, user_id) if entry.transaction_type == USAGE]
        assert len(usage) == 1
        assert to_credits(usage[0].amount) == Decimal("100.00")


@pytest.mark.asyncio
async def test_failure_refunds_once(session_maker, funded_user):
    user_id = await funded_user(1000)
    report_id = await _start_report(session_maker, user_id)

    async with session_maker() as db:
        outcome = await on_failure(db, report_id, "provider_error: boom")
        assert outcome.applied is True
        assert outcome.refunded is True
        assert outcome.refund_amount == Decimal("100.00")
        assert outcome.balance_after == Decimal("1000.00")

        report = await get_report(db, report_id)
        assert report.status == FAILED
        assert report.failure_reason == "provider_error: boom"

        entries = await _entries(db, user_id)
        types = [entry.transaction_type for entry in entries]
        assert types[-2:] == [USAGE, REFUND]
        usage, refund = entries[-2], entries[-1]
        assert refund.reference_id == usage.id
        assert to_credits(refund.amount) == to_credits(usage.amount)

    # A duplicate failure signal must not refund again.
    async with session_maker() as db:
        duplicate = await on_failure(db, report_id, "provider_error: boom again")
        assert duplicate.applied is False
        assert duplicate.refunded is False
        assert duplicate.status == FAILED

        assert await refund_usage(db, report_id, reason="manual") is None
        await db.rollback()

        refunds = [entry for entry in await _entries(db, user_id) if entry.transaction_type == REFUND]
        assert len(refunds) == 1
        account = await get_account(db, user_id)
        assert to_credits(account.balance) == Decimal("1000.00")
        assert to_credits(account.total_used) == Decimal("0.00")
        assert await ledger_balance(db, user_id) == Decimal("1000.00")


@pytest.mark.asyncio
async def test_terminal_reports_ignore_late_signals(session_maker, funded_user):
    user_id = await funded_user(300)
    completed_id = await _start_report(session_maker, user_id)
    failed_id = await _start_report(session_maker, user_id)

    async with session_maker() as db:
        await on_success(db, completed_id, PAINT_RESULT)
        late_failure = await on_failure(db, completed_id, "provider_timeout: late")
        assert late_failure.applied is False
        assert late_failure.status == COMPLETED

        await on_failure(db, failed_id, "invalid_result: missing overall_score")
        late_success = await on_success(db, failed_id, PAINT_RESULT)
        assert late_success.applied is False
        assert late_success.status == FAILED

        assert await transition_report(db, completed_id, FAILED, reason="again") is False
        await db.rollback()

        failed = await get_report(db, failed_id)
        assert failed.result_json is None
        account = await get_account(db, user_id)
        # One report kept its debit, the other was refunded.
        assert to_credits(account.balance) == Decimal("200.00")


@pytest.mark.asyncio
async def test_transition_rejects_non_terminal_target(session_maker, funded_user):
    user_id = await funded_user(100)
    report_id = await _start_report(session_maker, user_id)
    async with session_maker() as db:
        with pytest.raises(ValueError):
            await transition_report(db, report_id, PROCESSING)


@pytest.mark.asyncio
async def test_status_view_reports_progress_and_refund(session_maker, funded_user):
    user_id = await funded_user(500)
    pending_id = await _start_report(session_maker, user_id)
    failed_id = await _start_report(session_maker, user_id)

    async with session_maker() as db:
        pending = await get_report_status(db, pending_id, user_id=user_id)
        assert pending["status"] == PROCESSING
        assert pending["progress"] == 50
        assert pending["result"] is None
        assert pending["credit_refunded"] is False

        await on_failure(db, failed_id, "provider_error: offline")
        failed = await get_report_status(db, failed_id, user_id=user_id)
        assert failed["status"] == FAILED
        assert failed["progress"] == 0
        assert failed["credit_refunded"] is True
        assert failed["refund_amount"] == "100.00"
        assert failed["failure_reason"] == "provider_error: offline"


@pytest.mark.asyncio
async def test_price_change_does_not_touch_existing_reports(session_maker, funded_user):
    user_id = await funded_user(1000)
    report_id = await _start_report(session_maker, user_id, price="100")

    async with session_maker() as db:
        await set_service_price(db, PAINT_ANALYSIS, base_price=Decimal("250"))
        outcome = await on_failure(db, report_id, "provider_error: boom")
        report = await get_report(db, report_id)

        assert to_credits(report.total_cost) == Decimal("100.00")
        assert outcome.refund_amount == Decimal("100.00")
