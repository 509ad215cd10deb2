"""Expertise job dispatch (Redis/RQ or in-process) and provider execution."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from fastapi import BackgroundTasks
from redis import Redis
from redis.exceptions import RedisError
from rq import Queue
from rq.job import Job
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.future import select

from config import settings
from database import async_session_maker
from models.report import PROCESSING, Report
from services.errors import (
    InvalidProviderResultError,
    ProviderTimeoutError,
    ReportNotFoundError,
    TransientReserveError,
)
from services.providers import ProviderAttachment, get_provider
from services.reconciler import ReconcileOutcome, on_failure, on_success
from services.reports import get_report

logger = logging.getLogger(__name__)

EXPERTISE_QUEUE_NAME = "expertise_jobs"
# Headroom over the provider timeout so RQ never kills a job before it can reconcile.
JOB_TIMEOUT_MARGIN_SECONDS = 60


def _job_timeout() -> int:
    return int(settings.PROVIDER_TIMEOUT_SECONDS) + JOB_TIMEOUT_MARGIN_SECONDS


def get_redis_connection() -> Redis:
    """Build Redis connection used by RQ."""
    return Redis.from_url(settings.REDIS_URL)


def get_expertise_queue() -> Queue:
    """Return the configured expertise queue."""
    return Queue(
        name=EXPERTISE_QUEUE_NAME,
        connection=get_redis_connection(),
        default_timeout=_job_timeout(),
    )


def enqueue_expertise_job(report_id: str) -> Job:
    """Enqueue exactly one provider attempt for a report (no RQ retry)."""
    queue = get_expertise_queue()
    return queue.enqueue(
        "services.dispatcher.process_expertise_job",
        report_id,
        job_id=f"expertise:{report_id}",
        job_timeout=_job_timeout(),
        result_ttl=86400,
        failure_ttl=86400,
    )


async def dispatch_report(
    report_id: str,
    background_tasks: Optional[BackgroundTasks] = None,
) -> str:
    """Hand a freshly reserved report to the configured backend.

    Returns a dispatch reference. If the queue cannot accept the job the
    report is failed and refunded right away instead of waiting for recovery.
    """
    if settings.EXPERTISE_DISPATCH_BACKEND == "background" and background_tasks is not None:
        background_tasks.add_task(process_expertise_job_async, report_id)
        return f"background:{report_id}"

    try:
        job = enqueue_expertise_job(report_id)
    except RedisError as exc:
        logger.exception("Could not enqueue report %s: %s", report_id, exc)
        await _reconcile(async_session_maker, report_id, None, f"dispatch_failed: {exc}")
        return f"failed:{report_id}"
    logger.info("Enqueued report %s as job %s", report_id, job.id)
    return job.id


async def _load_job_input(db: AsyncSession, report_id: str) -> Optional[Dict[str, Any]]:
    try:
        report = await get_report(db, report_id, with_attachments=True)
    except ReportNotFoundError:
        logger.warning("Expertise report %s not found", report_id)
        return None
    if report.status != PROCESSING:
        # At-least-once delivery: the report was already finalized.
        logger.info("Report %s is %s; skipping provider call", report_id, report.status)
        return None
    return {
        "service_type": report.service_type,
        "vehicle": dict(report.vehicle_json or {}),
        "attachments": [
            ProviderAttachment(
                kind=attachment.kind,
                uri=attachment.uri,
                mime_type=attachment.mime_type,
                size_bytes=attachment.size_bytes,
            )
            for attachment in report.attachments
        ],
    }


async def _call_provider(job_input: Dict[str, Any]) -> Dict[str, Any]:
    """Single provider attempt, bounded by PROVIDER_TIMEOUT_SECONDS."""
    timeout = float(settings.PROVIDER_TIMEOUT_SECONDS)
    provider = get_provider(job_input["service_type"])
    try:
        raw = await asyncio.wait_for(
            provider.analyze(job_input["attachments"], job_input["vehicle"]),
            timeout=timeout,
        )
    except asyncio.TimeoutError as exc:
        raise ProviderTimeoutError(f"no answer within {timeout:g}s") from exc
    return provider.validate_result(raw)


async def _reconcile(
    maker: async_sessionmaker,
    report_id: str,
    result: Optional[Dict[str, Any]],
    failure_reason: Optional[str],
) -> Optional[ReconcileOutcome]:
    """Persist a provider outcome, retrying only the database step.

    Returns None when every attempt failed; the report then stays PROCESSING
    until the stalled sweep fails and refunds it.
    """
    attempts = max(int(settings.RECONCILE_MAX_ATTEMPTS), 1)
    backoff = max(float(settings.RECONCILE_RETRY_BACKOFF_SECONDS), 0.0)
    for attempt in range(1, attempts + 1):
        try:
            async with maker() as db:
                if failure_reason is not None:
                    return await on_failure(db, report_id, failure_reason)
                return await on_success(db, report_id, result or {})
        except (TransientReserveError, OperationalError) as exc:
            logger.warning(
                "Reconcile of report %s failed on attempt %s/%s: %s", report_id, attempt, attempts, exc
            )
            if attempt < attempts and backoff:
                await asyncio.sleep(backoff * attempt)
    logger.error("Report %s still PROCESSING after %s reconcile attempts", report_id, attempts)
    return None


async def process_expertise_job_async(
    report_id: str,
    *,
    session_maker: Optional[async_sessionmaker] = None,
) -> Optional[ReconcileOutcome]:
    """Run the provider for one report and reconcile the outcome.

    No database connection is held while the provider runs.
    """
    maker = session_maker or async_session_maker
    async with maker() as db:
        job_input = await _load_job_input(db, report_id)
    if job_input is None:
        return None

    result: Optional[Dict[str, Any]] = None
    failure_reason: Optional[str] = None
    try:
        result = await _call_provider(job_input)
    except ProviderTimeoutError as exc:
        failure_reason = f"provider_timeout: {exc}"
        logger.warning("Provider timed out for report %s: %s", report_id, exc)
    except InvalidProviderResultError as exc:
        failure_reason = f"invalid_result: {exc}"
        logger.warning("Provider returned an invalid result for report %s: %s", report_id, exc)
    except Exception as exc:
        failure_reason = f"provider_error: {exc}"
        logger.exception("Provider failed for report %s: %s", report_id, exc)

    return await _reconcile(maker, report_id, result, failure_reason)


def process_expertise_job(report_id: str) -> None:
    """RQ worker entrypoint for expertise jobs."""
    asyncio.run(process_expertise_job_async(report_id))


async def recover_stalled_reports(
    max_age_minutes: Optional[int] = None,
    *,
    session_maker: Optional[async_sessionmaker] = None,
) -> int:
    """Fail and refund reports left PROCESSING after restarts/worker interruptions."""
    age = max(int(max_age_minutes or settings.STALLED_REPORT_MAX_AGE_MINUTES), 1)
    cutoff = datetime.now(timezone.utc) - timedelta(minutes=age)
    maker = session_maker or async_session_maker
    async with maker() as db:
        result = await db.execute(
            select(Report.id).where(
                Report.status == PROCESSING,
                Report.created_at < cutoff,
            )
        )
        stalled_ids: List[str] = list(result.scalars().all())

    recovered = 0
    for report_id in stalled_ids:
        try:
            async with maker() as db:
                outcome = await on_failure(db, report_id, f"stalled: no outcome after {age} minutes")
        except Exception as exc:
            # Left for the next sweep.
            logger.exception("Could not recover stalled report %s: %s", report_id, exc)
            continue
        if outcome.applied:
            recovered += 1
    return recovered
