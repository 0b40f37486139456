"""
Programme engine: one per project session.

Wires the TaskStore, DependencyEngine and ScheduleCommandProcessor together
and guards them with a re-entrant lock. Every mutation holds the lock; reads
hand out copies so callers never see a store mid-change.
"""

import threading
import uuid
from contextlib import contextmanager
from typing import Any, Iterator, Optional

from programme.config import Settings, get_settings
from programme.domain.task import Dependency, DependencyType, Task
from programme.exceptions import NotFoundError
from programme.logging_config import get_logger
from programme.models import Baseline
from programme.services.baseline_store import (
    BaselineImport,
    BaselineStore,
    QuotaPolicy,
    SnapshotInput,
    snapshot_inputs_from_tasks,
)
from programme.services.codec import ImportedProject, export_project, import_project
from programme.services.commands import CommandResult, ScheduleCommandProcessor
from programme.services.critical_path import ProjectAnalysis, analyze_critical_path, apply_critical_flags
from programme.services.graph import DependencyEngine, GraphViolation
from programme.services.repository import InMemoryBaselineRepository, SqlBaselineRepository
from programme.services.task_store import TaskStore
from programme.services.variance import BaselineComparison, compare

logger = get_logger(__name__)


class ProgrammeEngine:
    """Task store, dependency rules and batch commands of one project."""

    def __init__(
        self,
        project_id: str,
        baselines: BaselineStore,
        settings: Optional[Settings] = None,
        project_name: Optional[str] = None,
    ):
        self.settings = settings or get_settings()
        self.project_id = project_id
        self.project_name = project_name or project_id
        self.project_description: Optional[str] = None
        self.baselines = baselines
        self._lock = threading.RLock()
        self._store = TaskStore()
        self._dependencies = DependencyEngine(self._store)
        self._commands = ScheduleCommandProcessor.from_settings(self._store, self.settings)

    @contextmanager
    def write(self) -> Iterator[TaskStore]:
        """Hold the write lock on the live store."""
        with self._lock:
            yield self._store

    def snapshot(self) -> TaskStore:
        """A consistent copy of the store for long reads."""
        with self._lock:
            return self._store.copy()

    # =========================================================================
    # Tasks
    # =========================================================================

    def create_task(self, name: str, start, end, **fields: Any) -> Task:
        with self._lock:
            task_id = self._store.create_task(name, start, end, **fields)
            return self._store.get_task(task_id).clone()

    def get_task(self, task_id: str) -> Task:
        with self._lock:
            return self._store.get_task(task_id).clone()

    def list_tasks(self) -> list[Task]:
        return self.snapshot().tasks()

    def visible_tasks(self) -> list[Task]:
        return self.snapshot().get_visible_tasks()

    def update_task(self, task_id: str, **changes: Any) -> Task:
        with self._lock:
            return self._store.update_task(task_id, **changes).clone()

    def delete_task(self, task_id: str) -> list[str]:
        with self._lock:
            return self._store.delete_task(task_id)

    def reparent(self, task_id: str, new_parent_id: Optional[str], insert_after: Optional[str] = None) -> Task:
        with self._lock:
            return self._store.reparent(task_id, new_parent_id, insert_after).clone()

    def toggle_expansion(self, task_id: str) -> Task:
        with self._lock:
            return self._store.toggle_expansion(task_id).clone()

    def project_summary(self) -> dict[str, Any]:
        store = self.snapshot()
        span = store.project_span()
        return {
            "project_id": self.project_id,
            "name": self.project_name,
            "task_count": len(store),
            "progress": store.project_progress(),
            "start": span[0] if span else None,
            "end": span[1] if span else None,
        }

    # =========================================================================
    # Dependencies
    # =========================================================================

    def link(self, from_id: str, to_id: str, dep_type: DependencyType = DependencyType.FS, lag: int = 0) -> Dependency:
        with self._lock:
            return self._dependencies.link(from_id, to_id, dep_type, lag)

    def unlink(self, from_id: str, to_id: str) -> None:
        with self._lock:
            self._dependencies.unlink(from_id, to_id)

    def dependencies(self) -> list[tuple[str, str, Dependency]]:
        return DependencyEngine(self.snapshot()).edges()

    def validate_graph(self) -> list[GraphViolation]:
        engine = DependencyEngine(self.snapshot())
        return engine.validate_graph() + engine.find_dangling_references()

    # =========================================================================
    # Commands
    # =========================================================================

    def execute(self, action: str, task_ids: Optional[list[str]] = None, **options: Any) -> CommandResult:
        with self._lock:
            return self._commands.execute(action, task_ids, **options)

    def paste(self, parent_id: Optional[str] = None) -> CommandResult:
        with self._lock:
            return self._commands.paste(parent_id)

    def auto_schedule(self) -> CommandResult:
        with self._lock:
            return self._commands.auto_schedule()

    def critical_path(self, apply: bool = False) -> Optional[ProjectAnalysis]:
        """CPM on a snapshot; ``apply`` writes the flags back to the live store."""
        analysis = analyze_critical_path(self.snapshot(), self.settings.critical_float_threshold)
        if apply and analysis is not None:
            with self._lock:
                apply_critical_flags(self._store, analysis)
        return analysis

    # =========================================================================
    # Baselines
    # =========================================================================

    async def create_baseline(self, name: Optional[str], created_by: str = "system") -> Baseline:
        inputs = snapshot_inputs_from_tasks(self.snapshot().tasks())
        return await self.baselines.create_baseline(self.project_id, name, inputs, created_by)

    async def get_own_baseline(self, baseline_id: uuid.UUID) -> Baseline:
        """A baseline of this project; baselines of other projects are not found."""
        baseline = await self.baselines.get_baseline(baseline_id)
        if baseline.project_id != self.project_id:
            raise NotFoundError("Baseline", str(baseline_id))
        return baseline

    async def variance(self, baseline_id: Optional[uuid.UUID] = None) -> Optional[BaselineComparison]:
        """Compare the current schedule with a baseline (the active one by default)."""
        if baseline_id is not None:
            baseline = await self.get_own_baseline(baseline_id)
        else:
            baseline = await self.baselines.get_active(self.project_id)
        if baseline is None:
            return None
        snapshots = await self.baselines.get_snapshots(baseline.id)
        return compare(snapshots, self.list_tasks(), str(baseline.id))

    # =========================================================================
    # Exchange
    # =========================================================================

    async def export(self, fmt: str, include_baselines: bool = True) -> str:
        baselines = []
        if include_baselines and fmt == "json":
            for baseline in await self.baselines.list_baselines(self.project_id):
                baselines.append((baseline, await self.baselines.get_snapshots(baseline.id)))
        return export_project(
            fmt,
            self.list_tasks(),
            self.project_name,
            self.project_description,
            baselines,
        )

    async def import_document(self, fmt: str, text: str) -> tuple[ImportedProject, list[Baseline]]:
        """
        Replace every task with the imported ones and recreate any exported
        baselines. Nothing changes on error.
        """
        imported = import_project(fmt, text)
        restored = await self.baselines.restore_baselines(self.project_id, [
            BaselineImport(
                name=doc.name,
                snapshot_inputs=[
                    SnapshotInput(
                        task_id=s.task_id,
                        name=s.name,
                        start=s.baseline_start,
                        end=s.baseline_end,
                        percent_complete=s.percent_complete,
                        is_milestone=s.is_milestone,
                        parent_id=s.parent_id,
                    )
                    for s in doc.tasks
                ],
                created_by=doc.created_by,
                created_at=doc.created_at,
                is_active=doc.is_active,
            )
            for doc in imported.baselines
        ])
        self.install(imported)
        return imported, restored

    def install(self, imported: ImportedProject) -> None:
        """Replace every task with a validated import."""
        with self._lock:
            self._store.commit(imported.store.copy())
            if imported.project_name:
                self.project_name = imported.project_name
            if imported.project_description:
                self.project_description = imported.project_description
        logger.info(f"Project {self.project_id}: replaced tasks with {len(imported.store)} imported task(s)")


def build_baseline_store(settings: Optional[Settings] = None) -> BaselineStore:
    settings = settings or get_settings()
    quota = QuotaPolicy.from_settings(settings)
    if settings.persistence_backend == "sql":
        from programme.database import get_session_maker

        repository = SqlBaselineRepository(get_session_maker(), settings.persistence_timeout_seconds)
    else:
        repository = InMemoryBaselineRepository()
    logger.info(f"Baseline store: {settings.persistence_backend} backend, quota {quota.describe() or 'unlimited'}")
    return BaselineStore(repository, quota)


class EngineRegistry:
    """Programme engines by project id. Writes create a project; reads of unknown ids fail."""

    def __init__(self, baselines: BaselineStore, settings: Optional[Settings] = None):
        self.baselines = baselines
        self.settings = settings or get_settings()
        self._engines: dict[str, ProgrammeEngine] = {}
        self._lock = threading.Lock()

    def get(self, project_id: str) -> ProgrammeEngine:
        with self._lock:
            engine = self._engines.get(project_id)
        if engine is None:
            raise NotFoundError("Project", project_id)
        return engine

    def open(self, project_id: str) -> ProgrammeEngine:
        """The project's engine, created on first use."""
        with self._lock:
            engine = self._engines.get(project_id)
            if engine is None:
                engine = ProgrammeEngine(project_id, self.baselines, self.settings)
                self._engines[project_id] = engine
                logger.debug(f"Created engine for project {project_id}")
            return engine

    def drop(self, project_id: str) -> bool:
        with self._lock:
            return self._engines.pop(project_id, None) is not None

    def project_ids(self) -> list[str]:
        with self._lock:
            return list(self._engines)
