"""
Baseline store.

Creates immutable schedule snapshots, keeps at most one active baseline per
project and enforces the quota policy before anything is written. Writes are
serialised by an asyncio.Lock so quota checks and flag flips cannot interleave.
"""

import asyncio
import uuid
from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable, Optional

from programme.config import Settings, get_settings
from programme.domain.task import Task, TaskType, date_order_problem
from programme.exceptions import (
    NotFoundError,
    PersistenceError,
    QuotaExceededError,
    ValidationError,
)
from programme.logging_config import get_logger
from programme.models import Baseline, BaselineTaskSnapshot
from programme.services.repository import BaselineRepository

logger = get_logger(__name__)


@dataclass
class SnapshotInput:
    """The values of one task frozen into a baseline."""
    task_id: str
    name: str
    start: date
    end: date
    percent_complete: float = 0.0
    is_milestone: bool = False
    parent_id: Optional[str] = None


@dataclass
class BaselineImport:
    """A baseline read from an exported project, to be recreated elsewhere."""
    name: str
    snapshot_inputs: list[SnapshotInput]
    created_by: str = "system"
    created_at: Optional[datetime] = None
    is_active: bool = False


def snapshot_inputs_from_tasks(tasks: Iterable[Task]) -> list[SnapshotInput]:
    return [
        SnapshotInput(
            task_id=task.id,
            name=task.name,
            start=task.start,
            end=task.end,
            percent_complete=task.percent_complete,
            is_milestone=task.is_milestone,
            parent_id=task.parent_id,
        )
        for task in tasks
    ]


@dataclass(frozen=True)
class QuotaPolicy:
    """Limits on baseline creation. ``None`` means unlimited."""
    max_baselines_per_project: Optional[int] = None
    max_tasks_per_baseline: Optional[int] = None
    tag: Optional[str] = None

    @classmethod
    def demo(cls, max_baselines: int = 1, max_tasks: int = 10, tag: str = "demo") -> "QuotaPolicy":
        return cls(max_baselines, max_tasks, tag)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "QuotaPolicy":
        settings = settings or get_settings()
        if settings.demo_mode:
            return cls.demo(
                settings.demo_max_baselines_per_project,
                settings.demo_max_tasks_per_baseline,
                settings.demo_tag,
            )
        return cls(settings.max_baselines_per_project, settings.max_tasks_per_baseline)

    def check(self, existing_baselines: int, task_count: int) -> Optional[str]:
        """Return the reason a new baseline is refused, or None."""
        if self.max_baselines_per_project is not None and existing_baselines >= self.max_baselines_per_project:
            return f"Maximum {self.max_baselines_per_project} baseline(s) per project reached"
        if self.max_tasks_per_baseline is not None and task_count > self.max_tasks_per_baseline:
            return (
                f"{task_count} tasks exceed the maximum of "
                f"{self.max_tasks_per_baseline} tasks per baseline"
            )
        return None

    def describe(self) -> list[str]:
        restrictions = []
        if self.max_baselines_per_project is not None:
            noun = "baseline" if self.max_baselines_per_project == 1 else "baselines"
            restrictions.append(f"Maximum {self.max_baselines_per_project} {noun} per project")
        if self.max_tasks_per_baseline is not None:
            restrictions.append(f"Maximum {self.max_tasks_per_baseline} tasks per baseline")
        if self.tag:
            restrictions.append(f"All data tagged as {self.tag}")
        return restrictions


def _input_problems(inputs: list[SnapshotInput]) -> list[dict]:
    problems = []
    seen: set[str] = set()
    for index, item in enumerate(inputs):
        loc = ["tasks", str(index)]
        if item.task_id in seen:
            problems.append({"loc": loc + ["task_id"], "msg": f"duplicate task id {item.task_id}", "type": "value_error"})
        seen.add(item.task_id)
        task_type = TaskType.MILESTONE if item.is_milestone else TaskType.NORMAL
        problem = date_order_problem(task_type, item.start, item.end)
        if problem:
            problems.append({"loc": loc + ["start"], "msg": problem, "type": "date_order_error"})
        if not 0 <= item.percent_complete <= 100:
            problems.append({
                "loc": loc + ["percent_complete"],
                "msg": f"percent_complete must be between 0 and 100, got {item.percent_complete}",
                "type": "value_error",
            })
    return problems


class BaselineStore:
    """Baselines of all projects, backed by a BaselineRepository."""

    def __init__(self, repository: BaselineRepository, quota: Optional[QuotaPolicy] = None):
        self.repository = repository
        self.quota = quota or QuotaPolicy()
        self._lock = asyncio.Lock()

    async def create_baseline(
        self,
        project_id: str,
        name: Optional[str],
        snapshot_inputs: list[SnapshotInput],
        created_by: str = "system",
        created_at: Optional[datetime] = None,
    ) -> Baseline:
        """
        Snapshot the given tasks as a new (inactive) baseline.

        The quota is checked before anything is written. If the snapshots
        cannot be saved, the baseline row is removed again and
        PersistenceError is raised.
        """
        problems = _input_problems(snapshot_inputs)
        if problems:
            raise ValidationError(f"Invalid baseline input: {len(problems)} problem(s)", details=problems)

        name = (name or "").strip() or f"Baseline {date.today().isoformat()}"

        async with self._lock:
            existing = await self.repository.load_baselines_for_project(project_id)
            reason = self.quota.check(len(existing), len(snapshot_inputs))
            if reason:
                logger.warning(f"Baseline for project {project_id} refused: {reason}")
                raise QuotaExceededError(reason)

            baseline = await self.repository.save_baseline(
                Baseline(
                    id=uuid.uuid4(),
                    project_id=project_id,
                    name=name,
                    created_at=created_at or datetime.utcnow(),
                    created_by=created_by,
                    is_active=False,
                    tag=self.quota.tag,
                ),
                max_baselines=self.quota.max_baselines_per_project,
            )

            snapshots = [
                BaselineTaskSnapshot(
                    baseline_id=baseline.id,
                    task_id=item.task_id,
                    name=item.name,
                    baseline_start=item.start,
                    baseline_end=item.end,
                    percent_complete=item.percent_complete,
                    is_milestone=item.is_milestone,
                    parent_id=item.parent_id,
                    tag=self.quota.tag,
                )
                for item in snapshot_inputs
            ]
            try:
                await self.repository.save_baseline_snapshots(baseline.id, snapshots)
            except PersistenceError as e:
                logger.error(f"Saving snapshots for baseline {baseline.id} failed, rolling back: {e.message}")
                await self.repository.delete_baseline(baseline.id)
                raise

        logger.info(
            f"Created baseline '{name}' ({baseline.id}) for project {project_id} "
            f"with {len(snapshots)} task(s)"
        )
        return baseline

    async def set_active(self, baseline_id: uuid.UUID) -> Baseline:
        async with self._lock:
            baseline = await self.get_baseline(baseline_id)
            await self.repository.set_baseline_active_flag(baseline.project_id, baseline.id)
        logger.info(f"Baseline {baseline_id} is now active for project {baseline.project_id}")
        return await self.get_baseline(baseline_id)

    async def delete(self, baseline_id: uuid.UUID) -> None:
        async with self._lock:
            deleted = await self.repository.delete_baseline(baseline_id)
        if not deleted:
            raise NotFoundError("Baseline", str(baseline_id))
        logger.info(f"Deleted baseline {baseline_id}")

    async def get_baseline(self, baseline_id: uuid.UUID) -> Baseline:
        baseline = await self.repository.load_baseline(baseline_id)
        if baseline is None:
            raise NotFoundError("Baseline", str(baseline_id))
        return baseline

    async def get_active(self, project_id: str) -> Optional[Baseline]:
        baselines = await self.repository.load_baselines_for_project(project_id)
        return next((b for b in baselines if b.is_active), None)

    async def list_baselines(self, project_id: str) -> list[Baseline]:
        return await self.repository.load_baselines_for_project(project_id)

    async def get_snapshots(self, baseline_id: uuid.UUID) -> list[BaselineTaskSnapshot]:
        await self.get_baseline(baseline_id)
        return await self.repository.load_snapshots_for_baseline(baseline_id)

    async def restore_baselines(self, project_id: str, imports: list[BaselineImport]) -> list[Baseline]:
        """
        Recreate exported baselines under ``project_id`` with fresh ids.

        The quota must admit every one of them. If any creation fails, the
        baselines already recreated are deleted again. An imported active
        baseline becomes the project's active baseline.
        """
        if not imports:
            return []

        existing = await self.repository.load_baselines_for_project(project_id)
        largest = max(len(item.snapshot_inputs) for item in imports)
        reason = self.quota.check(len(existing) + len(imports) - 1, largest)
        if reason:
            logger.warning(f"Import of {len(imports)} baseline(s) into project {project_id} refused: {reason}")
            raise QuotaExceededError(reason)

        created: list[Baseline] = []
        try:
            for item in imports:
                created.append(await self.create_baseline(
                    project_id, item.name, item.snapshot_inputs, item.created_by, item.created_at
                ))
        except Exception:
            for baseline in created:
                await self.repository.delete_baseline(baseline.id)
            raise

        active = [b for b, item in zip(created, imports) if item.is_active]
        if active:
            await self.set_active(active[-1].id)
        logger.info(f"Restored {len(created)} baseline(s) into project {project_id}")
        return [await self.get_baseline(b.id) for b in created]
