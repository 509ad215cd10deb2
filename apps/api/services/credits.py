"""Credit ledger and account accounting helpers."""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

from sqlalchemy import case, func, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from models.credit_account import CreditAccount
from models.credit_transaction import BONUS, CREDIT_TYPES, PURCHASE, REFUND, USAGE, CreditTransaction
from models.report import PROCESSING, Report, ReportAttachment
from models.user import User
from services.errors import (
    ConcurrencyConflictError,
    InsufficientBalanceError,
    TransientReserveError,
    UnknownUserError,
    ValidationError,
)
from services.money import ZERO, to_credits
from services.reports import ReportDraft

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def _load_account(db: AsyncSession, user_id: str, *, for_update: bool = False) -> Optional[CreditAccount]:
    stmt = select(CreditAccount).where(CreditAccount.user_id == user_id)
    if for_update:
        # Row lock on PostgreSQL; SQLite ignores it and relies on the version check below.
        stmt = stmt.with_for_update()
    result = await db.execute(stmt.execution_options(populate_existing=True))
    return result.scalar_one_or_none()


async def get_account(db: AsyncSession, user_id: str) -> CreditAccount:
    account = await _load_account(db, user_id)
    if account is None:
        raise UnknownUserError(f"User {user_id} has no credit account.")
    return account


async def _apply_account_delta(
    db: AsyncSession,
    account: CreditAccount,
    *,
    balance_delta: Decimal = ZERO,
    purchased_delta: Decimal = ZERO,
    used_delta: Decimal = ZERO,
) -> Decimal:
    """Compare-and-set write of the account counters. Returns the new balance."""
    seen_version = int(account.version or 0)
    new_balance = to_credits(account.balance) + balance_delta
    if new_balance < ZERO:
        raise InsufficientBalanceError(-balance_delta, to_credits(account.balance))
    guards = [CreditAccount.user_id == account.user_id, CreditAccount.version == seen_version]
    if balance_delta < ZERO:
        guards.append(CreditAccount.balance >= -balance_delta)
    result = await db.execute(
        update(CreditAccount)
        .where(*guards)
        .values(
            balance=new_balance,
            total_purchased=to_credits(account.total_purchased) + purchased_delta,
            total_used=to_credits(account.total_used) + used_delta,
            version=seen_version + 1,
            updated_at=_utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ConcurrencyConflictError(f"Credit account {account.user_id} changed concurrently.")
    return new_balance


def _append_entry(
    db: AsyncSession,
    *,
    user_id: str,
    transaction_type: str,
    amount: Decimal,
    description: Optional[str] = None,
    reference_id: Optional[str] = None,
) -> CreditTransaction:
    entry = CreditTransaction(
        id=str(uuid.uuid4()),
        user_id=user_id,
        transaction_type=transaction_type,
        amount=to_credits(amount),
        description=description,
        reference_id=reference_id,
        created_at=_utcnow(),
    )
    db.add(entry)
    return entry


async def run_with_account_retry(
    db: AsyncSession,
    operation: Callable[[], Awaitable[T]],
    *,
    label: str,
    max_attempts: Optional[int] = None,
) -> T:
    """Run one unit of work, retrying it from scratch on account write conflicts."""
    attempts = max(int(max_attempts or settings.RESERVE_MAX_ATTEMPTS), 1)
    backoff = max(float(settings.RESERVE_RETRY_BACKOFF_SECONDS), 0.0)
    last_error: Optional[Exception] = None
    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except (ConcurrencyConflictError, OperationalError) as exc:
            await db.rollback()
            last_error = exc
            logger.info("%s conflict on attempt %s/%s: %s", label, attempt, attempts, exc)
            if attempt < attempts and backoff:
                await asyncio.sleep(backoff * attempt)
        except Exception:
            await db.rollback()
            raise
    raise TransientReserveError(f"{label} could not complete after {attempts} attempts.") from last_error


async def reserve(
    db: AsyncSession,
    user_id: str,
    amount: Any,
    draft: ReportDraft,
    *,
    max_attempts: Optional[int] = None,
) -> Report:
    """Debit `amount` and create the PROCESSING report in one transaction.

    The account row is re-read on every attempt and written with a version
    check, so two concurrent reserves for the same user can never both spend
    the same balance. Nothing is persisted when this raises.
    """
    debit = to_credits(amount)
    if debit <= ZERO:
        raise ValidationError("Reserve amount must be greater than 0.")

    async def _attempt() -> Report:
        account = await _load_account(db, user_id, for_update=True)
        if account is None:
            raise UnknownUserError(f"User {user_id} has no credit account.")
        available = to_credits(account.balance)
        if available < debit:
            raise InsufficientBalanceError(debit, available)

        await _apply_account_delta(db, account, balance_delta=-debit, used_delta=debit)

        report_id = str(uuid.uuid4())
        now = _utcnow()
        report = Report(
            id=report_id,
            user_id=user_id,
            service_type=draft.service_type,
            status=PROCESSING,
            total_cost=debit,
            vehicle_json=dict(draft.vehicle or {}),
            created_at=now,
            updated_at=now,
        )
        db.add(report)
        for position, attachment in enumerate(draft.attachments):
            db.add(
                ReportAttachment(
                    id=str(uuid.uuid4()),
                    report_id=report_id,
                    position=position,
                    kind=attachment.kind,
                    uri=attachment.uri,
                    mime_type=attachment.mime_type,
                    size_bytes=attachment.size_bytes,
                )
            )
        _append_entry(
            db,
            user_id=user_id,
            transaction_type=USAGE,
            amount=debit,
            description=draft.description or f"{draft.service_type} analysis",
            reference_id=report_id,
        )
        await db.commit()
        return report

    report = await run_with_account_retry(db, _attempt, label="reserve", max_attempts=max_attempts)
    logger.info("Reserved %s credits for report %s (user=%s)", debit, report.id, user_id)
    return report


async def find_entry(db: AsyncSession, transaction_type: str, reference_id: str) -> Optional[CreditTransaction]:
    result = await db.execute(
        select(CreditTransaction).where(
            CreditTransaction.transaction_type == transaction_type,
            CreditTransaction.reference_id == reference_id,
        )
    )
    return result.scalar_one_or_none()


async def refund_usage(db: AsyncSession, report_id: str, *, reason: str) -> Optional[CreditTransaction]:
    """Stage a REFUND reversing the report's USAGE entry. Caller commits.

    Returns None when the report has no debit or was already refunded.
    """
    usage = await find_entry(db, USAGE, report_id)
    if usage is None:
        logger.warning("Report %s has no USAGE entry; nothing to refund", report_id)
        return None
    if await find_entry(db, REFUND, usage.id) is not None:
        logger.info("Report %s already refunded; skipping", report_id)
        return None

    account = await _load_account(db, usage.user_id, for_update=True)
    if account is None:
        raise UnknownUserError(f"User {usage.user_id} has no credit account.")
    amount = to_credits(usage.amount)
    await _apply_account_delta(db, account, balance_delta=amount, used_delta=-amount)
    return _append_entry(
        db,
        user_id=usage.user_id,
        transaction_type=REFUND,
        amount=amount,
        description=f"Report {report_id} refund: {reason}"[:500],
        reference_id=usage.id,
    )


async def _replay(db: AsyncSession, existing: CreditTransaction, user_id: str) -> Dict[str, Any]:
    """Answer a repeated credit with the entry already recorded for the same reference."""
    if existing.user_id != user_id:
        raise ValidationError(
            f"{existing.transaction_type.lower()} reference {existing.reference_id!r} belongs to another account"
        )
    account = await get_account(db, user_id)
    return {"entry_id": existing.id, "replayed": True, "balance_after": to_credits(account.balance)}


async def _credit_account(
    db: AsyncSession,
    user_id: str,
    *,
    transaction_type: str,
    amount: Any,
    description: str,
    reference_id: Optional[str],
) -> Dict[str, Any]:
    grant = to_credits(amount)
    if grant <= ZERO:
        raise ValidationError("credits must be greater than 0")

    async def _attempt() -> Dict[str, Any]:
        if reference_id:
            existing = await find_entry(db, transaction_type, reference_id)
            if existing is not None:
                return await _replay(db, existing, user_id)
        account = await _load_account(db, user_id, for_update=True)
        if account is None:
            raise UnknownUserError(f"User {user_id} has no credit account.")
        balance_after = await _apply_account_delta(db, account, balance_delta=grant, purchased_delta=grant)
        entry = _append_entry(
            db,
            user_id=user_id,
            transaction_type=transaction_type,
            amount=grant,
            description=description,
            reference_id=reference_id,
        )
        await db.commit()
        return {"entry_id": entry.id, "replayed": False, "balance_after": balance_after}

    try:
        outcome = await run_with_account_retry(db, _attempt, label=transaction_type.lower())
    except IntegrityError:
        # Lost a race on the same reference; the winner's entry stands.
        existing = await find_entry(db, transaction_type, reference_id) if reference_id else None
        if existing is None:
            raise
        return await _replay(db, existing, user_id)
    if not outcome["replayed"]:
        logger.info("%s of %s credits for user %s", transaction_type, grant, user_id)
    return outcome


async def purchase_credits(
    db: AsyncSession,
    user_id: str,
    amount: Any,
    *,
    billing_reference: str,
    description: str = "Credit purchase",
) -> Dict[str, Any]:
    """Record a PURCHASE. Replaying the same billing reference is a no-op."""
    if not billing_reference:
        raise ValidationError("billing_reference is required")
    return await _credit_account(
        db,
        user_id,
        transaction_type=PURCHASE,
        amount=amount,
        description=description,
        reference_id=billing_reference,
    )


async def grant_bonus(
    db: AsyncSession,
    user_id: str,
    amount: Any,
    *,
    reason: str,
    reference_id: Optional[str] = None,
) -> Dict[str, Any]:
    return await _credit_account(
        db,
        user_id,
        transaction_type=BONUS,
        amount=amount,
        description=reason,
        reference_id=reference_id,
    )


async def _is_registered(db: AsyncSession, *, email: str, user_id: str) -> bool:
    result = await db.execute(select(User.id).where((User.email == email) | (User.id == user_id)))
    return result.first() is not None


async def open_account(
    db: AsyncSession,
    *,
    email: str,
    user_id: Optional[str] = None,
    name: Optional[str] = None,
) -> CreditAccount:
    """Create a user with its zero-balance credit account."""
    normalized_email = str(email or "").strip().lower()
    if not normalized_email:
        raise ValidationError("email is required")
    new_user_id = user_id or str(uuid.uuid4())
    if await _is_registered(db, email=normalized_email, user_id=new_user_id):
        raise ValidationError(f"{normalized_email} or user {new_user_id} is already registered")
    db.add(User(id=new_user_id, email=normalized_email, name=name))
    account = CreditAccount(
        user_id=new_user_id,
        balance=ZERO,
        total_purchased=ZERO,
        total_used=ZERO,
        version=0,
    )
    db.add(account)
    try:
        await db.commit()
    except IntegrityError as exc:
        # A concurrent signup for the same email or id won.
        await db.rollback()
        raise ValidationError(f"{normalized_email} or user {new_user_id} is already registered") from exc
    logger.info("Opened credit account for user %s", new_user_id)

    signup_bonus = max(int(settings.SIGNUP_BONUS_CREDITS), 0)
    if signup_bonus:
        await grant_bonus(
            db,
            new_user_id,
            signup_bonus,
            reason="Signup bonus",
            reference_id=f"signup:{new_user_id}",
        )
        account = await get_account(db, new_user_id)
    return account


async def ledger_balance(db: AsyncSession, user_id: str) -> Decimal:
    """Balance derived purely from the ledger: the running sum of signed entries."""
    signed = case(
        (CreditTransaction.transaction_type.in_(CREDIT_TYPES), CreditTransaction.amount),
        else_=-CreditTransaction.amount,
    )
    result = await db.execute(
        select(func.coalesce(func.sum(signed), 0)).where(CreditTransaction.user_id == user_id)
    )
    return to_credits(result.scalar() or 0)


async def list_transactions(db: AsyncSession, user_id: str, *, limit: int = 50) -> List[CreditTransaction]:
    result = await db.execute(
        select(CreditTransaction)
        .where(CreditTransaction.user_id == user_id)
        .order_by(CreditTransaction.created_at.desc())
        .limit(max(int(limit), 1))
    )
    return list(result.scalars().all())


def serialize_transaction(entry: CreditTransaction) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "transaction_type": entry.transaction_type,
        "amount": str(to_credits(entry.amount)),
        "signed_amount": str(to_credits(entry.signed_amount)),
        "description": entry.description,
        "reference_id": entry.reference_id,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }


async def get_credit_summary(db: AsyncSession, user_id: str) -> Dict[str, Any]:
    account = await get_account(db, user_id)
    derived = await ledger_balance(db, user_id)
    entries = await list_transactions(db, user_id, limit=30)
    balance = to_credits(account.balance)
    return {
        "user_id": user_id,
        "balance": str(balance),
        "total_purchased": str(to_credits(account.total_purchased)),
        "total_used": str(to_credits(account.total_used)),
        "ledger_balance": str(derived),
        "consistent": derived == balance,
        "recent_entries": [serialize_transaction(entry) for entry in entries],
    }
