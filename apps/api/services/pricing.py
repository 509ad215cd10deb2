"""Expertise price catalog."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.service_pricing import ServicePricing
from services.errors import ServiceUnavailableError, ValidationError
from services.money import to_credits

logger = logging.getLogger(__name__)

PAINT_ANALYSIS = "PAINT_ANALYSIS"
DAMAGE_ANALYSIS = "DAMAGE_ANALYSIS"
ENGINE_SOUND_ANALYSIS = "ENGINE_SOUND_ANALYSIS"
VALUE_ESTIMATION = "VALUE_ESTIMATION"
COMPREHENSIVE_EXPERTISE = "COMPREHENSIVE_EXPERTISE"

SERVICE_TYPES = (
    PAINT_ANALYSIS,
    DAMAGE_ANALYSIS,
    ENGINE_SOUND_ANALYSIS,
    VALUE_ESTIMATION,
    COMPREHENSIVE_EXPERTISE,
)

# 1 credit = 1 TL.
DEFAULT_PRICING: Dict[str, Dict[str, Any]] = {
    PAINT_ANALYSIS: {"display_name": "Paint analysis", "base_price": Decimal("49.00")},
    DAMAGE_ANALYSIS: {"display_name": "Damage assessment", "base_price": Decimal("69.00")},
    ENGINE_SOUND_ANALYSIS: {"display_name": "Engine sound analysis", "base_price": Decimal("79.00")},
    VALUE_ESTIMATION: {"display_name": "Value estimation", "base_price": Decimal("49.00")},
    COMPREHENSIVE_EXPERTISE: {"display_name": "Comprehensive expertise", "base_price": Decimal("179.00")},
}


def normalize_service_type(service_type: str) -> str:
    return str(service_type or "").strip().upper()


async def _get_pricing_row(db: AsyncSession, service_type: str) -> Optional[ServicePricing]:
    result = await db.execute(
        select(ServicePricing).where(ServicePricing.service_type == normalize_service_type(service_type))
    )
    return result.scalar_one_or_none()


async def get_active_price(db: AsyncSession, service_type: str) -> Decimal:
    """Return the current price for an active service type. No side effects."""
    row = await _get_pricing_row(db, service_type)
    if row is None or not row.is_active:
        raise ServiceUnavailableError(f"Service type {service_type!r} is not available.")
    return to_credits(row.base_price)


async def list_active_pricing(db: AsyncSession) -> List[Dict[str, Any]]:
    result = await db.execute(
        select(ServicePricing)
        .where(ServicePricing.is_active.is_(True))
        .order_by(ServicePricing.service_type)
    )
    return [
        {
            "service_type": row.service_type,
            "display_name": row.display_name,
            "base_price": str(to_credits(row.base_price)),
        }
        for row in result.scalars().all()
    ]


async def set_service_price(
    db: AsyncSession,
    service_type: str,
    *,
    base_price: Optional[Any] = None,
    is_active: Optional[bool] = None,
    display_name: Optional[str] = None,
) -> ServicePricing:
    """Create or update a catalog entry. Existing reports keep their snapshot."""
    key = normalize_service_type(service_type)
    if not key:
        raise ValidationError("service_type is required")
    price = to_credits(base_price) if base_price is not None else None
    if price is not None and price <= 0:
        raise ValidationError("base_price must be greater than 0")

    row = await _get_pricing_row(db, key)
    if row is None:
        if price is None:
            raise ValidationError(f"base_price is required for new service type {key}")
        row = ServicePricing(service_type=key, base_price=price, is_active=True)
        db.add(row)
    if price is not None:
        row.base_price = price
    if is_active is not None:
        row.is_active = bool(is_active)
    if display_name is not None:
        row.display_name = display_name
    await db.commit()
    logger.info("Pricing updated for %s: price=%s active=%s", key, row.base_price, row.is_active)
    return row


async def seed_default_pricing(db: AsyncSession) -> int:
    """Insert catalog defaults that are missing. Existing rows are left untouched."""
    result = await db.execute(select(ServicePricing.service_type))
    existing = set(result.scalars().all())
    created = 0
    for service_type, defaults in DEFAULT_PRICING.items():
        if service_type in existing:
            continue
        db.add(
            ServicePricing(
                service_type=service_type,
                display_name=defaults["display_name"],
                base_price=defaults["base_price"],
                is_active=True,
            )
        )
        created += 1
    if created:
        await db.commit()
    return created
