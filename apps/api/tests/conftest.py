import asyncio
from decimal import Decimal
from typing import Any, Dict, Optional, Sequence

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from database import Base
import models  # noqa: F401
from services.credits import open_account, purchase_credits
from services.pricing import PAINT_ANALYSIS, seed_default_pricing
from services.providers import BaseExpertiseProvider, get_provider, register_provider, reset_providers


class FakeExpertiseProvider(BaseExpertiseProvider):
    """Scripted provider: returns `result`, raises `error`, or sleeps past the timeout."""

    def __init__(self, service_type, result_model, *, result=None, error=None, delay=0.0):
        self.service_type = service_type
        self.result_model = result_model
        self.result = result
        self.error = error
        self.delay = delay
        self.calls = []

    async def analyze(self, attachments: Sequence[Any], vehicle_info: Dict[str, Any]) -> Dict[str, Any]:
        self.calls.append((list(attachments), dict(vehicle_info)))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture(autouse=True)
def reset_provider_registry():
    """Keep fake providers from leaking between tests."""
    reset_providers()
    yield
    reset_providers()


@pytest.fixture
def fake_provider():
    def _register(service_type: str = PAINT_ANALYSIS, **kwargs) -> FakeExpertiseProvider:
        result_model = get_provider(service_type).result_model
        provider = FakeExpertiseProvider(service_type, result_model, **kwargs)
        register_provider(provider)
        return provider

    return _register


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    db_path = tmp_path / "expertise.db"
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}")
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    async with maker() as db:
        await seed_default_pricing(db)

    yield maker
    await engine.dispose()


@pytest.fixture
def funded_user(session_maker):
    """Open an account and top it up to `balance` credits."""

    async def _create(balance, user_id: str = "driver-1", email: Optional[str] = None) -> str:
        async with session_maker() as db:
            await open_account(db, email=email or f"{user_id}@example.com", user_id=user_id)
            if Decimal(str(balance)) > 0:
                await purchase_credits(db, user_id, balance, billing_reference=f"seed:{user_id}")
        return user_id

    return _create
