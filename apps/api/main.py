"""
Vehicle Expertise Credits - FastAPI Backend
Main application entry point with health check and API routing.
"""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import settings, validate_pipeline_settings
from database import engine, Base, async_session_maker
import models  # noqa: F401
from routers import (
    health,
    users,
    pricing,
    expertise,
    billing,
)
from services.dispatcher import recover_stalled_reports
from services.errors import ExpertiseError
from services.pricing import seed_default_pricing

logging.basicConfig(
    level=getattr(logging, str(settings.LOG_LEVEL).upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


async def _periodic_stalled_recovery() -> None:
    interval_minutes = max(int(settings.STALLED_REPORT_SWEEP_INTERVAL_MINUTES), 0)
    if interval_minutes <= 0:
        return
    while True:
        await asyncio.sleep(interval_minutes * 60)
        try:
            recovered = await recover_stalled_reports()
            if recovered:
                print(f"♻️ Stalled sweep failed and refunded {recovered} reports.")
        except Exception as exc:
            print(f"⚠️ Stalled report sweep tick failed: {exc}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    print("🚀 Starting Vehicle Expertise API...")
    validate_pipeline_settings()
    if settings.AUTO_CREATE_DB_SCHEMA:
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            print("🗄️ Database schema verified.")
        except Exception as e:
            print(f"⚠️ Database bootstrap skipped: {e}")
    try:
        async with async_session_maker() as db:
            seeded = await seed_default_pricing(db)
        if seeded:
            print(f"💰 Seeded {seeded} default service prices.")
    except Exception as exc:
        print(f"⚠️ Pricing seed skipped: {exc}")
    try:
        recovered = await recover_stalled_reports()
        if recovered:
            print(f"♻️ Failed and refunded {recovered} stalled reports after startup.")
    except Exception as exc:
        print(f"⚠️ Stalled report recovery skipped: {exc}")
    sweep_task = None
    if int(settings.STALLED_REPORT_SWEEP_INTERVAL_MINUTES) > 0:
        sweep_task = asyncio.create_task(_periodic_stalled_recovery())
        print(
            "📅 Stalled report sweep enabled "
            f"(every {int(settings.STALLED_REPORT_SWEEP_INTERVAL_MINUTES)} min)."
        )
    yield
    # Shutdown
    if sweep_task is not None:
        sweep_task.cancel()
        try:
            await sweep_task
        except asyncio.CancelledError:
            pass
    print("👋 Shutting down API...")


app = FastAPI(
    title="Vehicle Expertise API",
    description="Pay-per-analysis vehicle expertise reports backed by a prepaid credit ledger",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ExpertiseError)
async def expertise_error_handler(request: Request, exc: ExpertiseError):
    if exc.status_code >= 500:
        logger.warning("%s %s -> %s: %s", request.method, request.url.path, exc.code, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.code, "detail": exc.message},
    )


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"error": "ValidationError", "detail": jsonable_encoder(exc.errors())},
    )


# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(users.router, prefix="/users", tags=["Users"])
app.include_router(pricing.router, prefix="/pricing", tags=["Pricing"])
app.include_router(expertise.router, prefix="/expertise", tags=["Expertise"])
app.include_router(billing.router, prefix="/billing", tags=["Billing"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Vehicle Expertise API",
        "version": "0.1.0",
        "status": "running"
    }
