"""ServicePricing model for the expertise price catalog."""

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Numeric, String

from database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ServicePricing(Base):
    """Current price of one expertise service type."""

    __tablename__ = "service_pricing"

    service_type = Column(String, primary_key=True)
    display_name = Column(String, nullable=True)
    base_price = Column(Numeric(12, 2), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
