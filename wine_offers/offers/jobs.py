"""
Background Jobs Module
======================

Defines arq tasks for offer refreshes and the nightly batch.
Uses Redis as the job queue backend.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from arq import create_pool, cron
from arq.connections import RedisSettings

from wine_offers.db.engine import get_session
from wine_offers.offers.service import OfferRefreshService
from wine_offers.offers.settings import get_default_config

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    """Status of a refresh job."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class JobResult:
    """Result of a refresh job."""

    job_id: str
    kind: str
    status: JobStatus
    started_at: datetime | None = None
    completed_at: datetime | None = None
    wine_id: str | None = None
    processed: int = 0
    total_wines: int = 0
    offers_updated: int = 0
    errors: list[str] = field(default_factory=list)
    duration_seconds: float | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "job_id": self.job_id,
            "kind": self.kind,
            "status": self.status.value,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "wine_id": self.wine_id,
            "processed": self.processed,
            "total_wines": self.total_wines,
            "offers_updated": self.offers_updated,
            "errors": self.errors,
            "duration_seconds": self.duration_seconds,
        }


def get_redis_settings() -> RedisSettings:
    """Get Redis connection settings from environment."""
    return RedisSettings(
        host=os.environ.get("REDIS_HOST", "localhost"),
        port=int(os.environ.get("REDIS_PORT", "6379")),
        database=int(os.environ.get("REDIS_DB", "0")),
    )


def _finish(result: JobResult) -> dict[str, Any]:
    result.completed_at = datetime.now(UTC)
    if result.started_at:
        result.duration_seconds = (result.completed_at - result.started_at).total_seconds()
    return result.to_dict()


async def refresh_wine_task(
    ctx: dict[str, Any],
    wine_id: str,
    match_threshold: float | None = None,
    source_id: str | None = None,
) -> dict[str, Any]:
    """
    Refresh offers for one wine against every active source.

    Args:
        ctx: arq context (contains Redis connection)
        wine_id: Catalog wine ID
        match_threshold: Optional threshold override
        source_id: Only refresh against this source

    Returns:
        JobResult as dictionary
    """
    result = JobResult(
        job_id=ctx.get("job_id", str(uuid4())),
        kind="refresh_wine",
        status=JobStatus.RUNNING,
        started_at=datetime.now(UTC),
        wine_id=wine_id,
    )

    try:
        with get_session() as session:
            service = OfferRefreshService(session)
            wine_result = await service.refresh_wine(
                wine_id, match_threshold=match_threshold, source_id=source_id
            )
        result.processed = 1
        result.total_wines = 1
        result.offers_updated = wine_result.offers_updated
        result.errors.extend(wine_result.errors)
        result.status = JobStatus.COMPLETED
    except Exception as e:
        logger.exception(f"Refresh job failed for wine {wine_id}: {e}")
        result.status = JobStatus.FAILED
        result.errors.append(str(e))

    return _finish(result)


async def refresh_all_wines_task(
    ctx: dict[str, Any],
    match_threshold: float | None = None,
    batch_size: int | None = None,
    source_id: str | None = None,
) -> dict[str, Any]:
    """
    Refresh offers for every catalog wine.

    Also runs as the nightly cron job with default arguments.

    Args:
        ctx: arq context (contains Redis connection)
        match_threshold: Optional threshold override
        batch_size: Only process the first N wines
        source_id: Only refresh against this source

    Returns:
        JobResult as dictionary
    """
    result = JobResult(
        job_id=ctx.get("job_id", str(uuid4())),
        kind="refresh_all",
        status=JobStatus.RUNNING,
        started_at=datetime.now(UTC),
    )

    try:
        with get_session() as session:
            service = OfferRefreshService(session)
            batch = await service.refresh_all_wines(
                match_threshold=match_threshold, batch_size=batch_size, source_id=source_id
            )
        result.processed = batch.processed
        result.total_wines = batch.total_wines
        result.errors.extend(batch.errors)
        result.status = JobStatus.COMPLETED
    except Exception as e:
        logger.exception(f"Batch refresh job failed: {e}")
        result.status = JobStatus.FAILED
        result.errors.append(str(e))

    return _finish(result)


async def nightly_refresh(ctx: dict[str, Any]) -> dict[str, Any]:
    """Cron entry point for the nightly batch."""
    return await refresh_all_wines_task(ctx)


async def enqueue_refresh_wine(
    wine_id: str,
    match_threshold: float | None = None,
    source_id: str | None = None,
) -> str:
    """
    Enqueue a single-wine refresh for async processing.

    Returns:
        Job ID
    """
    redis = await create_pool(get_redis_settings())
    job = await redis.enqueue_job("refresh_wine_task", wine_id, match_threshold, source_id)
    await redis.close()
    return job.job_id


async def enqueue_refresh_all(
    match_threshold: float | None = None,
    batch_size: int | None = None,
    source_id: str | None = None,
) -> str:
    """
    Enqueue a batch refresh for async processing.

    Returns:
        Job ID
    """
    redis = await create_pool(get_redis_settings())
    job = await redis.enqueue_job(
        "refresh_all_wines_task", match_threshold, batch_size, source_id
    )
    await redis.close()
    return job.job_id


class WorkerSettings:
    """arq worker settings."""

    functions = [refresh_wine_task, refresh_all_wines_task]
    cron_jobs = [
        cron(nightly_refresh, hour={get_default_config().refresh.batch_cron_hour}, minute={0})
    ]
    redis_settings = get_redis_settings()
    max_jobs = 1
    job_timeout = 6 * 3600
    keep_result = 86400  # 24 hours
