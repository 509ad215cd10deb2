"""CreditTransaction model: immutable, append-only ledger entry."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Numeric, String, UniqueConstraint
from sqlalchemy.orm import relationship

from database import Base

PURCHASE = "PURCHASE"
USAGE = "USAGE"
REFUND = "REFUND"
BONUS = "BONUS"

TRANSACTION_TYPES = (PURCHASE, USAGE, REFUND, BONUS)
# Entries that add to the balance; USAGE is the only debit.
CREDIT_TYPES = (PURCHASE, REFUND, BONUS)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CreditTransaction(Base):
    """Ledger entry. `amount` is always a positive magnitude; the sign comes from the type."""

    __tablename__ = "credit_transactions"
    __table_args__ = (
        # USAGE.reference_id -> report id, REFUND.reference_id -> usage entry id,
        # PURCHASE.reference_id -> billing reference.
        UniqueConstraint("transaction_type", "reference_id", name="uq_credit_transactions_type_reference"),
        CheckConstraint("amount > 0", name="ck_credit_transactions_amount_positive"),
        CheckConstraint(
            "transaction_type IN (" + ", ".join(f"'{kind}'" for kind in TRANSACTION_TYPES) + ")",
            name="ck_credit_transactions_type",
        ),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    transaction_type = Column(String, nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    description = Column(String, nullable=True)
    reference_id = Column(String, nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, index=True)

    user = relationship("User", back_populates="credit_transactions")

    @property
    def signed_amount(self):
        return self.amount if self.transaction_type in CREDIT_TYPES else -self.amount
