"""CreditAccount model: per-user balance and cumulative counters."""

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import relationship

from database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CreditAccount(Base):
    """Balance row mutated only alongside a ledger entry."""

    __tablename__ = "credit_accounts"
    __table_args__ = (CheckConstraint("balance >= 0", name="ck_credit_accounts_balance_non_negative"),)

    user_id = Column(String, ForeignKey("users.id"), primary_key=True)
    balance = Column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    total_purchased = Column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    total_used = Column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    # Compare-and-set counter; every balance write bumps it.
    version = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    user = relationship("User", back_populates="credit_account")
