"""
ARQ Worker for background task processing.

This worker handles:
- create_baseline_snapshot: Persists a baseline of a large schedule outside
  the request. Retryable persistence failures are retried by arq with a
  growing delay, up to ``persistence_max_retries`` attempts.

The API only enqueues these jobs with the sql persistence backend, so the
worker and the API share one baseline table.

Usage:
    arq programme.worker.WorkerSettings
"""

from dataclasses import asdict
from typing import Any, Optional

from arq import Retry, create_pool
from arq.connections import ArqRedis, RedisSettings

from programme.config import get_settings
from programme.exceptions import PersistenceError
from programme.logging_config import get_logger, setup_logging
from programme.services.baseline_store import BaselineStore, SnapshotInput
from programme.services.engine import build_baseline_store

# Initialize logging for the worker
setup_logging()
logger = get_logger(__name__)

settings = get_settings()

RETRY_DELAY_SECONDS = 5


def parse_redis_url(url: str) -> RedisSettings:
    """Parse redis URL into RedisSettings."""
    return RedisSettings.from_dsn(url)


async def create_baseline_snapshot(
    ctx: dict,
    project_id: str,
    name: Optional[str],
    snapshot_inputs: list[dict[str, Any]],
    created_by: str = "system",
) -> str:
    """Create a baseline from pre-captured task values. Returns the baseline id."""
    store: BaselineStore = ctx["baselines"]
    job_try = ctx.get("job_try", 1)
    inputs = [SnapshotInput(**item) for item in snapshot_inputs]

    try:
        baseline = await store.create_baseline(project_id, name, inputs, created_by)
    except PersistenceError as e:
        max_tries = ctx.get("max_tries", settings.persistence_max_retries)
        if e.retryable and job_try < max_tries:
            logger.warning(
                f"Baseline job for project {project_id} failed on try {job_try}: "
                f"{e.message}; retrying"
            )
            raise Retry(defer=job_try * RETRY_DELAY_SECONDS)
        logger.error(f"Baseline job for project {project_id} gave up after {job_try} tries: {e.message}")
        raise

    logger.info(f"Baseline job stored baseline {baseline.id} for project {project_id}")
    return str(baseline.id)


async def startup(ctx: dict) -> None:
    """Worker startup - build the baseline store."""
    logger.info("ARQ Worker starting up...")
    logger.info(f"Redis: {settings.redis_url}")
    ctx["baselines"] = build_baseline_store(settings)
    ctx["max_tries"] = settings.persistence_max_retries


async def shutdown(ctx: dict) -> None:
    """Worker shutdown - cleanup."""
    logger.info("ARQ Worker shutting down...")


class WorkerSettings:
    """ARQ Worker configuration."""

    functions = [create_baseline_snapshot]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = parse_redis_url(settings.redis_url)
    max_jobs = 10
    max_tries = settings.persistence_max_retries
    job_timeout = 300  # 5 minutes max per job


# Redis pool for enqueuing jobs from the API
_arq_pool: ArqRedis | None = None


async def get_arq_pool() -> ArqRedis:
    """Get or create the ARQ Redis pool for enqueuing jobs."""
    global _arq_pool
    if _arq_pool is None:
        logger.debug("Creating ARQ Redis pool")
        _arq_pool = await create_pool(parse_redis_url(settings.redis_url))
    return _arq_pool


async def enqueue_baseline_snapshot(
    project_id: str,
    name: Optional[str],
    snapshot_inputs: list[SnapshotInput],
    created_by: str = "system",
) -> Optional[str]:
    """Enqueue a baseline job. Returns the arq job id."""
    pool = await get_arq_pool()
    logger.debug(f"Enqueuing baseline job: project={project_id} tasks={len(snapshot_inputs)}")
    job = await pool.enqueue_job(
        "create_baseline_snapshot",
        project_id,
        name,
        [asdict(item) for item in snapshot_inputs],
        created_by,
    )
    return job.job_id if job else None
