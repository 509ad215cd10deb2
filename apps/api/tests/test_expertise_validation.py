from decimal import Decimal

import pytest
from sqlalchemy import func
from sqlalchemy.future import select

from models.report import Report
from services.errors import ServiceUnavailableError, ValidationError
from services.expertise import build_attachments, create_expertise_report, normalize_vehicle
from services.pricing import (
    COMPREHENSIVE_EXPERTISE,
    DAMAGE_ANALYSIS,
    ENGINE_SOUND_ANALYSIS,
    PAINT_ANALYSIS,
    VALUE_ESTIMATION,
    get_active_price,
    list_active_pricing,
    seed_default_pricing,
    set_service_price,
)


def _images(count):
    return [{"kind": "image", "uri": f"https://cdn.example.com/{i}.jpg", "mime_type": "image/jpeg"} for i in range(count)]


def test_image_services_need_one_to_five_images():
    assert len(build_attachments(PAINT_ANALYSIS, _images(1))) == 1
    assert len(build_attachments(DAMAGE_ANALYSIS, _images(5))) == 5
    with pytest.raises(ValidationError):
        build_attachments(PAINT_ANALYSIS, [])
    with pytest.raises(ValidationError):
        build_attachments(DAMAGE_ANALYSIS, _images(6))


def test_engine_sound_needs_audio_only():
    audio = [{"kind": "audio", "uri": "s3://sounds/rev.wav", "mime_type": "audio/wav", "size_bytes": 2048}]
    built = build_attachments(ENGINE_SOUND_ANALYSIS, audio)
    assert built[0].kind == "audio"
    assert built[0].size_bytes == 2048
    with pytest.raises(ValidationError):
        build_attachments(ENGINE_SOUND_ANALYSIS, [])
    with pytest.raises(ValidationError):
        build_attachments(ENGINE_SOUND_ANALYSIS, audio + _images(1))


def test_value_estimation_and_comprehensive_rules():
    assert build_attachments(VALUE_ESTIMATION, []) == []
    with pytest.raises(ValidationError):
        build_attachments(COMPREHENSIVE_EXPERTISE, [])
    mixed = _images(2) + [{"kind": "audio", "uri": "s3://sounds/idle.mp3", "mime_type": "audio/mpeg"}]
    assert [a.kind for a in build_attachments(COMPREHENSIVE_EXPERTISE, mixed)] == ["image", "image", "audio"]


def test_attachment_mime_and_size_checks():
    with pytest.raises(ValidationError):
        build_attachments(PAINT_ANALYSIS, [{"kind": "image", "uri": "s3://x/a.mp3", "mime_type": "audio/mpeg"}])
    with pytest.raises(ValidationError):
        build_attachments(PAINT_ANALYSIS, [{"kind": "image", "uri": "s3://x/a.jpg", "size_bytes": 0}])
    with pytest.raises(ValidationError):
        build_attachments(PAINT_ANALYSIS, [{"kind": "video", "uri": "s3://x/a.mp4"}])


def test_vehicle_normalization():
    vehicle = normalize_vehicle({"plate": "34 abc 123", "brand": "Ford", "model": "Focus", "year": "2018"})
    assert vehicle == {"plate": "34ABC123", "make": "Ford", "model": "Focus", "year": 2018}
    assert normalize_vehicle({"vin": "WF0XXXGCDX1234567", "make": "Ford", "model": "Focus"})["vin"]
    with pytest.raises(ValidationError):
        normalize_vehicle({"make": "Ford", "model": "Focus"})
    with pytest.raises(ValidationError):
        normalize_vehicle({"plate": "34ABC123", "make": "Ford"})
    with pytest.raises(ValidationError):
        normalize_vehicle({"plate": "34ABC123", "make": "Ford", "model": "Focus", "year": 1890})


@pytest.mark.asyncio
async def test_seeded_catalog_and_inactive_services(session_maker):
    async with session_maker() as db:
        assert await get_active_price(db, PAINT_ANALYSIS) == Decimal("49.00")
        assert await get_active_price(db, "comprehensive_expertise") == Decimal("179.00")
        assert await seed_default_pricing(db) == 0

        await set_service_price(db, VALUE_ESTIMATION, is_active=False)
        with pytest.raises(ServiceUnavailableError):
            await get_active_price(db, VALUE_ESTIMATION)
        with pytest.raises(ServiceUnavailableError):
            await get_active_price(db, "TIRE_ANALYSIS")

        listed = [row["service_type"] for row in await list_active_pricing(db)]
        assert VALUE_ESTIMATION not in listed
        assert PAINT_ANALYSIS in listed


@pytest.mark.asyncio
async def test_rejected_requests_leave_no_rows(session_maker, funded_user):
    user_id = await funded_user(1000)
    async with session_maker() as db:
        with pytest.raises(ServiceUnavailableError):
            await create_expertise_report(
                db, user_id=user_id, service_type="TIRE_ANALYSIS", vehicle={}, attachments=[]
            )
        with pytest.raises(ValidationError):
            await create_expertise_report(
                db,
                user_id=user_id,
                service_type=PAINT_ANALYSIS,
                vehicle={"plate": "34ABC123", "make": "Ford", "model": "Focus"},
                attachments=[],
            )
        count = await db.execute(select(func.count()).select_from(Report))
        assert count.scalar() == 0
