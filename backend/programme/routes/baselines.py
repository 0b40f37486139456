"""
Baseline and variance routes.
"""

import uuid

from fastapi import APIRouter, Depends, Response, status

from programme.exceptions import PersistenceError
from programme.logging_config import get_logger
from programme.models import Baseline
from programme.registry import get_programme
from programme.schemas import (
    BaselineCreate,
    BaselineDetail,
    BaselineJobAccepted,
    BaselineRead,
    ComparisonRead,
    QuotaRead,
    SnapshotRead,
)
from programme.services.baseline_store import snapshot_inputs_from_tasks
from programme.services.engine import ProgrammeEngine
from programme.worker import enqueue_baseline_snapshot

logger = get_logger(__name__)

router = APIRouter()


@router.post("/baselines/", response_model=BaselineRead, status_code=status.HTTP_201_CREATED)
async def create_baseline(
    baseline_in: BaselineCreate,
    engine: ProgrammeEngine = Depends(get_programme),
) -> Baseline:
    """
    Snapshot the current schedule as a new, inactive baseline.

    Returns 409 when the quota policy refuses it.
    """
    return await engine.create_baseline(baseline_in.name, baseline_in.created_by)


@router.post(
    "/baselines/jobs",
    response_model=BaselineJobAccepted,
    status_code=status.HTTP_202_ACCEPTED,
)
async def enqueue_baseline(
    baseline_in: BaselineCreate,
    engine: ProgrammeEngine = Depends(get_programme),
) -> BaselineJobAccepted:
    """
    Capture the schedule now and persist the baseline in the background worker.

    The worker runs in its own process, so this needs the sql persistence
    backend (503 otherwise).
    """
    if engine.settings.persistence_backend != "sql":
        raise PersistenceError(
            "enqueue_baseline",
            "background baselines need the sql persistence backend",
            retryable=False,
        )
    inputs = snapshot_inputs_from_tasks(engine.list_tasks())
    job_id = await enqueue_baseline_snapshot(
        engine.project_id, baseline_in.name, inputs, baseline_in.created_by
    )
    return BaselineJobAccepted(job_id=job_id, project_id=engine.project_id, task_count=len(inputs))


@router.get("/baselines/", response_model=list[BaselineRead])
async def list_baselines(engine: ProgrammeEngine = Depends(get_programme)) -> list[Baseline]:
    return await engine.baselines.list_baselines(engine.project_id)


@router.get("/baselines/active", response_model=BaselineRead | None)
async def get_active_baseline(engine: ProgrammeEngine = Depends(get_programme)) -> Baseline | None:
    """The active baseline, or null when none is active."""
    return await engine.baselines.get_active(engine.project_id)


@router.get("/baselines/quota", response_model=QuotaRead)
async def get_quota(engine: ProgrammeEngine = Depends(get_programme)) -> QuotaRead:
    quota = engine.baselines.quota
    return QuotaRead(
        max_baselines_per_project=quota.max_baselines_per_project,
        max_tasks_per_baseline=quota.max_tasks_per_baseline,
        tag=quota.tag,
        restrictions=quota.describe(),
    )


@router.get("/baselines/{baseline_id}", response_model=BaselineDetail)
async def get_baseline(
    baseline_id: uuid.UUID,
    engine: ProgrammeEngine = Depends(get_programme),
) -> BaselineDetail:
    baseline = await engine.get_own_baseline(baseline_id)
    snapshots = await engine.baselines.get_snapshots(baseline_id)
    return BaselineDetail(
        **BaselineRead.model_validate(baseline).model_dump(),
        tasks=[SnapshotRead.model_validate(s) for s in snapshots],
    )


@router.post("/baselines/{baseline_id}/activate", response_model=BaselineRead)
async def activate_baseline(
    baseline_id: uuid.UUID,
    engine: ProgrammeEngine = Depends(get_programme),
) -> Baseline:
    """Make this the only active baseline of its project."""
    await engine.get_own_baseline(baseline_id)
    return await engine.baselines.set_active(baseline_id)


@router.delete("/baselines/{baseline_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_baseline(
    baseline_id: uuid.UUID,
    engine: ProgrammeEngine = Depends(get_programme),
) -> Response:
    await engine.get_own_baseline(baseline_id)
    await engine.baselines.delete(baseline_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/variance", response_model=ComparisonRead | None)
async def get_variance(
    baseline_id: uuid.UUID | None = None,
    engine: ProgrammeEngine = Depends(get_programme),
) -> ComparisonRead | None:
    """
    Compare the current schedule with a baseline (the active one by default).

    Returns null when there is no baseline to compare against.
    """
    comparison = await engine.variance(baseline_id)
    return ComparisonRead.model_validate(comparison) if comparison is not None else None
