"""Paid expertise request flow shared by every service type."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from models.report import Report
from services.credits import reserve
from services.errors import ValidationError
from services.pricing import (
    COMPREHENSIVE_EXPERTISE,
    DAMAGE_ANALYSIS,
    ENGINE_SOUND_ANALYSIS,
    PAINT_ANALYSIS,
    VALUE_ESTIMATION,
    get_active_price,
    normalize_service_type,
)
from services.reports import AttachmentInput, ReportDraft

logger = logging.getLogger(__name__)

ATTACHMENT_KINDS = ("image", "audio")
ALLOWED_MIME_PREFIXES = {"image": "image/", "audio": "audio/"}
MAX_ATTACHMENT_BYTES = {"image": 15 * 1024 * 1024, "audio": 50 * 1024 * 1024}
MIN_VEHICLE_YEAR = 1950


def _attachment_rules(service_type: str) -> Dict[str, Tuple[int, Optional[int]]]:
    """(min, max) attachment counts per kind; kinds not listed are rejected."""
    max_images = max(int(settings.MAX_IMAGE_ATTACHMENTS), 1)
    if service_type in (PAINT_ANALYSIS, DAMAGE_ANALYSIS):
        return {"image": (1, max_images)}
    if service_type == ENGINE_SOUND_ANALYSIS:
        return {"audio": (1, None)}
    if service_type == VALUE_ESTIMATION:
        return {"image": (0, max_images)}
    if service_type == COMPREHENSIVE_EXPERTISE:
        return {"image": (1, max_images), "audio": (0, None)}
    return {}


def build_attachments(service_type: str, raw_attachments: Sequence[Mapping[str, Any]]) -> List[AttachmentInput]:
    rules = _attachment_rules(service_type)
    attachments: List[AttachmentInput] = []
    counts = {kind: 0 for kind in ATTACHMENT_KINDS}
    for raw in raw_attachments or []:
        kind = str(raw.get("kind") or "").strip().lower()
        uri = str(raw.get("uri") or "").strip()
        mime_type = (raw.get("mime_type") or None) and str(raw.get("mime_type")).lower()
        size_bytes = raw.get("size_bytes")
        if kind not in ATTACHMENT_KINDS:
            raise ValidationError(f"Unsupported attachment kind {kind!r}.")
        if kind not in rules:
            raise ValidationError(f"{service_type} does not accept {kind} attachments.")
        if not uri:
            raise ValidationError("Attachment uri is required.")
        if mime_type and not mime_type.startswith(ALLOWED_MIME_PREFIXES[kind]):
            raise ValidationError(f"Attachment {uri} is not a valid {kind} file ({mime_type}).")
        if size_bytes is not None:
            size_bytes = int(size_bytes)
            if size_bytes <= 0 or size_bytes > MAX_ATTACHMENT_BYTES[kind]:
                raise ValidationError(f"Attachment {uri} has an invalid size.")
        counts[kind] += 1
        attachments.append(AttachmentInput(kind=kind, uri=uri, mime_type=mime_type, size_bytes=size_bytes))

    for kind, (minimum, maximum) in rules.items():
        if counts[kind] < minimum:
            raise ValidationError(f"{service_type} requires at least {minimum} {kind} attachment(s).")
        if maximum is not None and counts[kind] > maximum:
            raise ValidationError(f"{service_type} accepts at most {maximum} {kind} attachment(s).")
    return attachments


def normalize_vehicle(vehicle: Mapping[str, Any]) -> Dict[str, Any]:
    info = {key: value for key, value in dict(vehicle or {}).items() if value not in (None, "")}
    if not info.get("make") and info.get("brand"):
        info["make"] = info.pop("brand")
    plate = str(info.get("plate") or "").replace(" ", "").upper()
    if not plate and not info.get("vin"):
        raise ValidationError("Vehicle plate or VIN is required.")
    if plate:
        info["plate"] = plate
    if not info.get("make") or not info.get("model"):
        raise ValidationError("Vehicle make and model are required.")
    if "year" in info:
        try:
            year = int(info["year"])
        except (TypeError, ValueError) as exc:
            raise ValidationError("Vehicle year must be a number.") from exc
        if year < MIN_VEHICLE_YEAR or year > datetime.now(timezone.utc).year + 1:
            raise ValidationError("Vehicle year is out of range.")
        info["year"] = year
    return info


async def create_expertise_report(
    db: AsyncSession,
    *,
    user_id: str,
    service_type: str,
    vehicle: Mapping[str, Any],
    attachments: Sequence[Mapping[str, Any]] = (),
) -> Report:
    """Price, validate and reserve a new expertise report.

    Every failure here happens before the debit and leaves no rows behind.
    Dispatching the provider is the caller's job, after this returns.
    """
    key = normalize_service_type(service_type)
    price = await get_active_price(db, key)
    draft = ReportDraft(
        service_type=key,
        vehicle=normalize_vehicle(vehicle),
        attachments=build_attachments(key, attachments),
        description=f"{key} analysis",
    )
    report = await reserve(db, user_id, price, draft)
    logger.info("Created %s report %s for user %s at %s credits", key, report.id, user_id, price)
    return report
