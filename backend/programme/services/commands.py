"""
Schedule command processor.

Batch editing operations behind the Gantt ribbon: indent/outdent, link/unlink,
clipboard, alignment, gap and slack removal, link checks. Every batch runs on a
working copy of the TaskStore. Failures are collected per sub-operation; if any
occurred a BatchOperationError is raised and the live store is untouched,
otherwise the working copy is committed in one step.
"""

import copy
import inspect
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Iterator, Optional

from programme.config import Settings, get_settings
from programme.domain.task import (
    DependencyType,
    Priority,
    Task,
    TaskStatus,
    TaskType,
    new_task_id,
)
from programme.exceptions import (
    BatchOperationError,
    ProgrammeException,
    ValidationError,
)
from programme.logging_config import get_logger
from programme.services.critical_path import analyze_critical_path, apply_critical_flags
from programme.services.graph import DependencyEngine
from programme.services.recalc import auto_schedule, required_start
from programme.services.task_store import EDITABLE_FIELDS, TaskStore

logger = get_logger(__name__)


# Ribbon action name -> processor method
ACTIONS = {
    "cut-tasks": "cut",
    "copy-tasks": "copy",
    "paste-tasks": "paste",
    "delete-task": "delete",
    "delete-tasks": "delete",
    "insert-task": "insert_task",
    "insert-summary": "insert_summary",
    "indent-task": "indent",
    "outdent-task": "outdent",
    "link-task": "link",
    "link-tasks": "link",
    "unlink-task": "unlink",
    "unlink-tasks": "unlink",
    "expand-all": "expand_all",
    "collapse-all": "collapse_all",
    "mark-complete": "mark_complete",
    "auto-schedule": "auto_schedule",
    "show-critical-path": "show_critical_path",
    "align-starts": "align_starts",
    "align-ends": "align_ends",
    "remove-gaps": "remove_gaps",
    "clear-slack": "clear_slack",
    "check-links": "check_links",
}

# Actions that do not operate on a selection
_UNSELECTED = {"paste", "insert_task", "insert_summary", "expand_all", "collapse_all",
               "auto_schedule", "show_critical_path"}

# Values copied onto pasted tasks besides name and dates
_CLONED_FIELDS = EDITABLE_FIELDS - {"name", "start", "end", "is_critical", "total_float"}


@dataclass
class CommandResult:
    success: bool
    message: str
    affected_ids: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class Clipboard:
    """Deep clones of the clipped tasks (pre-order) and the kind of clip."""
    tasks: list[Task]
    is_cut: bool

    @property
    def root_ids(self) -> list[str]:
        clipped = {task.id for task in self.tasks}
        return [task.id for task in self.tasks if task.parent_id not in clipped]


def _failure(operation: str, task_id: Optional[str], error: Any) -> dict[str, Any]:
    entry = {"operation": operation, "task_id": task_id, "reason": str(error)}
    if isinstance(error, ProgrammeException):
        entry["reason"] = error.message
        entry["type"] = error.error_code
    return entry


def _unique(task_ids: list[str]) -> list[str]:
    return list(dict.fromkeys(task_ids))


class ScheduleCommandProcessor:
    """Batch operations over one TaskStore."""

    def __init__(
        self,
        store: TaskStore,
        max_indent_depth: int = 5,
        paste_shift_days: int = 7,
        critical_float_threshold: int = 0,
    ):
        self.store = store
        self.max_indent_depth = max_indent_depth
        self.paste_shift_days = paste_shift_days
        self.critical_float_threshold = critical_float_threshold
        self.clipboard: Optional[Clipboard] = None

    @classmethod
    def from_settings(cls, store: TaskStore, settings: Optional[Settings] = None) -> "ScheduleCommandProcessor":
        settings = settings or get_settings()
        return cls(
            store,
            max_indent_depth=settings.max_indent_depth,
            paste_shift_days=settings.paste_shift_days,
            critical_float_threshold=settings.critical_float_threshold,
        )

    @contextmanager
    def _transaction(self, operation: str) -> Iterator[tuple[TaskStore, list[dict[str, Any]]]]:
        working = self.store.copy()
        failures: list[dict[str, Any]] = []
        yield working, failures
        if failures:
            logger.warning(f"{operation} rejected: {len(failures)} failure(s), nothing applied")
            raise BatchOperationError(operation, failures)
        self.store.commit(working)

    def _require(self, task_ids: list[str], operation: str, minimum: int = 1) -> list[str]:
        task_ids = _unique(task_ids or [])
        if len(task_ids) < minimum:
            noun = "task" if minimum == 1 else "tasks"
            raise ValidationError(f"At least {minimum} {noun} must be selected for {operation}")
        return task_ids

    @staticmethod
    def _missing(working: TaskStore, task_ids: list[str], operation: str,
                 failures: list[dict[str, Any]]) -> list[str]:
        """Record a failure for every unknown id and return the known ones."""
        known = []
        for task_id in task_ids:
            if task_id in working:
                known.append(task_id)
            else:
                failures.append(_failure(operation, task_id, "Task not found"))
        return known

    @staticmethod
    def _outermost(working: TaskStore, task_ids: list[str]) -> list[str]:
        """Drop ids whose ancestor is also selected, in document order."""
        selected = set(task_ids)
        order = {task_id: index for index, task_id in enumerate(working.task_ids())}
        outer = [
            task_id for task_id in task_ids
            if not selected.intersection(working.ancestors_of(task_id))
        ]
        return sorted(outer, key=order.__getitem__)

    # =========================================================================
    # Structure
    # =========================================================================

    def indent(self, task_ids: list[str]) -> CommandResult:
        task_ids = self._require(task_ids, "indent")
        with self._transaction("indent") as (working, failures):
            known = self._missing(working, task_ids, "indent", failures)
            for task_id in self._outermost(working, known):
                previous = working.preceding_sibling(task_id)
                if previous is None:
                    failures.append(_failure("indent", task_id, "Task has no preceding sibling to indent under"))
                    continue
                deepest = working.get_task(previous).level + 1 + working.subtree_height(task_id)
                if deepest > self.max_indent_depth:
                    failures.append(_failure(
                        "indent", task_id,
                        f"Indenting would exceed the maximum depth of {self.max_indent_depth}",
                    ))
                    continue
                working.reparent(task_id, previous)

        logger.info(f"Indented {len(task_ids)} task(s)")
        return CommandResult(True, f"{len(task_ids)} task(s) indented successfully", task_ids)

    def outdent(self, task_ids: list[str]) -> CommandResult:
        task_ids = self._require(task_ids, "outdent")
        with self._transaction("outdent") as (working, failures):
            known = self._missing(working, task_ids, "outdent", failures)
            # Deepest first keeps each former parent in place for the anchor
            for task_id in reversed(self._outermost(working, known)):
                task = working.get_task(task_id)
                if task.parent_id is None:
                    failures.append(_failure("outdent", task_id, "Task is already at the top level"))
                    continue
                parent = working.get_task(task.parent_id)
                working.reparent(task_id, parent.parent_id, insert_after=parent.id)

        logger.info(f"Outdented {len(task_ids)} task(s)")
        return CommandResult(True, f"{len(task_ids)} task(s) outdented successfully", task_ids)

    # =========================================================================
    # Dependencies
    # =========================================================================

    def link(
        self,
        task_ids: list[str],
        dep_type: DependencyType = DependencyType.FS,
        lag: int = 0,
    ) -> CommandResult:
        """Chain the tasks in the order given: ids[0] -> ids[1] -> ..."""
        task_ids = self._require(task_ids, "link", minimum=2)
        created = []
        with self._transaction("link") as (working, failures):
            engine = DependencyEngine(working)
            known = set(self._missing(working, task_ids, "link", failures))
            for from_id, to_id in zip(task_ids, task_ids[1:]):
                if from_id not in known or to_id not in known:
                    continue
                if working.get_task(to_id).predecessor(from_id) is not None:
                    continue
                try:
                    engine.link(from_id, to_id, dep_type, lag)
                except ProgrammeException as e:
                    failures.append(_failure("link", to_id, f"{from_id} -> {to_id}: {e.message}"))
                    continue
                created.append({"from": from_id, "to": to_id})

        return CommandResult(
            True,
            f"{len(created)} link(s) created",
            task_ids,
            {"links": created},
        )

    def unlink(self, task_ids: list[str]) -> CommandResult:
        """
        One task: remove all of its links.
        Several tasks: remove every link between any two of them.
        """
        task_ids = self._require(task_ids, "unlink")
        removed = 0
        with self._transaction("unlink") as (working, failures):
            engine = DependencyEngine(working)
            known = self._missing(working, task_ids, "unlink", failures)
            if len(task_ids) == 1:
                for task_id in known:
                    removed += engine.unlink_all(task_id)
            else:
                selected = set(known)
                for from_id, to_id, _ in engine.edges():
                    if from_id in selected and to_id in selected:
                        engine.unlink(from_id, to_id)
                        removed += 1

        return CommandResult(True, f"{removed} link(s) removed", task_ids, {"removed": removed})

    # =========================================================================
    # Clipboard
    # =========================================================================

    def _clip(self, working: TaskStore, task_ids: list[str]) -> list[Task]:
        clipped_ids = [
            subtree_id
            for root_id in self._outermost(working, task_ids)
            for subtree_id in working.subtree_ids(root_id)
        ]
        return [working.get_task(task_id).clone() for task_id in clipped_ids]

    def copy(self, task_ids: list[str]) -> CommandResult:
        task_ids = self._require(task_ids, "copy")
        with self._transaction("copy") as (working, failures):
            known = self._missing(working, task_ids, "copy", failures)
            clipped = self._clip(working, known)
        self.clipboard = Clipboard(clipped, is_cut=False)
        return CommandResult(True, f"{len(clipped)} task(s) copied to clipboard", task_ids)

    def cut(self, task_ids: list[str]) -> CommandResult:
        task_ids = self._require(task_ids, "cut")
        with self._transaction("cut") as (working, failures):
            known = self._missing(working, task_ids, "cut", failures)
            clipped = self._clip(working, known)
            for root_id in self._outermost(working, known):
                working.delete_task(root_id)
        self.clipboard = Clipboard(clipped, is_cut=True)
        return CommandResult(True, f"{len(clipped)} task(s) cut to clipboard", [t.id for t in clipped])

    def paste(self, parent_id: Optional[str] = None) -> CommandResult:
        """
        Insert the clipboard under ``parent_id`` (or at the top level).

        Fresh ids are generated, dates shift by ``paste_shift_days`` and links
        between clipped tasks are recreated.
        """
        if not self.clipboard or not self.clipboard.tasks:
            raise ValidationError("Clipboard is empty")

        clipboard = self.clipboard
        shift = timedelta(days=self.paste_shift_days)
        id_map = {task.id: new_task_id() for task in clipboard.tasks}
        roots = set(clipboard.root_ids)

        with self._transaction("paste") as (working, failures):
            if parent_id is not None and parent_id not in working:
                failures.append(_failure("paste", parent_id, "Paste target not found"))
            else:
                for task in clipboard.tasks:
                    values = {key: copy.deepcopy(getattr(task, key)) for key in _CLONED_FIELDS}
                    if task.constraint_date is not None:
                        values["constraint_date"] = task.constraint_date + shift
                    working.create_task(
                        task.name if clipboard.is_cut else f"{task.name} (Copy)",
                        task.start + shift,
                        task.end + shift,
                        parent_id=parent_id if task.id in roots else id_map[task.parent_id],
                        task_id=id_map[task.id],
                        **values,
                    )
                engine = DependencyEngine(working)
                for task in clipboard.tasks:
                    for dep in task.predecessors:
                        if dep.task_id in id_map:
                            engine.link(id_map[dep.task_id], id_map[task.id], dep.type, dep.lag)

        if clipboard.is_cut:
            self.clipboard = None

        pasted = list(id_map.values())
        logger.info(f"Pasted {len(pasted)} task(s) under {parent_id or 'top level'}")
        return CommandResult(True, f"{len(pasted)} task(s) pasted successfully", pasted)

    # =========================================================================
    # Task operations
    # =========================================================================

    def delete(self, task_ids: list[str]) -> CommandResult:
        task_ids = self._require(task_ids, "delete")
        deleted: list[str] = []
        with self._transaction("delete") as (working, failures):
            known = self._missing(working, task_ids, "delete", failures)
            for task_id in self._outermost(working, known):
                deleted.extend(working.delete_task(task_id))
        return CommandResult(True, f"{len(deleted)} task(s) deleted successfully", deleted)

    def mark_complete(self, task_ids: list[str]) -> CommandResult:
        task_ids = self._require(task_ids, "mark complete")
        with self._transaction("mark_complete") as (working, failures):
            for task_id in self._missing(working, task_ids, "mark_complete", failures):
                working.update_task(task_id, status=TaskStatus.COMPLETED, percent_complete=100.0)
        return CommandResult(True, f"{len(task_ids)} task(s) marked as complete", task_ids)

    def _insert(
        self,
        name: str,
        task_type: TaskType,
        days: int,
        start: Optional[date],
        parent_id: Optional[str],
        insert_after: Optional[str],
    ) -> CommandResult:
        start = start or date.today()
        with self._transaction("insert") as (working, failures):
            task_id = working.create_task(
                name,
                start,
                start + timedelta(days=days),
                parent_id=parent_id,
                insert_after=insert_after,
                task_type=task_type,
                priority=Priority.MEDIUM,
            )
        return CommandResult(True, f"New {task_type.value} task inserted successfully", [task_id])

    def insert_task(
        self,
        name: str = "New Task",
        start: Optional[date] = None,
        parent_id: Optional[str] = None,
        insert_after: Optional[str] = None,
    ) -> CommandResult:
        return self._insert(name, TaskType.NORMAL, 7, start, parent_id, insert_after)

    def insert_summary(
        self,
        name: str = "New Summary",
        start: Optional[date] = None,
        parent_id: Optional[str] = None,
        insert_after: Optional[str] = None,
    ) -> CommandResult:
        return self._insert(name, TaskType.SUMMARY, 14, start, parent_id, insert_after)

    def expand_all(self) -> CommandResult:
        changed = self.store.set_expanded_all(True)
        return CommandResult(True, "All tasks expanded", data={"changed": changed})

    def collapse_all(self) -> CommandResult:
        changed = self.store.set_expanded_all(False)
        return CommandResult(True, "All tasks collapsed", data={"changed": changed})

    # =========================================================================
    # Scheduling
    # =========================================================================

    def align_starts(self, task_ids: list[str]) -> CommandResult:
        """Move every task to start with the first one, keeping durations."""
        return self._align(task_ids, "align_starts", use_end=False)

    def align_ends(self, task_ids: list[str]) -> CommandResult:
        """Move every task to end with the first one, keeping durations."""
        return self._align(task_ids, "align_ends", use_end=True)

    def _align(self, task_ids: list[str], operation: str, use_end: bool) -> CommandResult:
        task_ids = self._require(task_ids, operation, minimum=2)
        moved = []
        with self._transaction(operation) as (working, failures):
            known = self._missing(working, task_ids, operation, failures)
            anchor = working.get_task(known[0]) if known else None
            for task_id in known[1:]:
                task = working.get_task(task_id)
                span = timedelta(days=task.duration)
                if use_end:
                    new_start, new_end = anchor.end - span, anchor.end
                else:
                    new_start, new_end = anchor.start, anchor.start + span
                if (new_start, new_end) != (task.start, task.end):
                    task.start, task.end = new_start, new_end
                    moved.append(task_id)
        return CommandResult(True, f"{len(moved)} task(s) aligned", moved)

    def remove_gaps(self, task_ids: list[str]) -> CommandResult:
        """
        Close the gaps between tasks taken in start order: a task starting
        after the previous one ends is pulled back to that end.
        """
        task_ids = self._require(task_ids, "remove gaps", minimum=2)
        moved = []
        with self._transaction("remove_gaps") as (working, failures):
            known = self._missing(working, task_ids, "remove_gaps", failures)
            ordered = sorted((working.get_task(i) for i in known), key=lambda t: t.start)
            for previous, task in zip(ordered, ordered[1:]):
                if task.start > previous.end:
                    span = timedelta(days=task.duration)
                    task.start = previous.end
                    task.end = previous.end + span
                    moved.append(task.id)
        return CommandResult(True, f"{len(moved)} gap(s) removed", moved)

    def clear_slack(self, task_ids: list[str]) -> CommandResult:
        """Pull tasks back to the earliest start their FS predecessors allow."""
        task_ids = self._require(task_ids, "clear slack")
        moved = []
        with self._transaction("clear_slack") as (working, failures):
            for task_id in self._missing(working, task_ids, "clear_slack", failures):
                task = working.get_task(task_id)
                boundaries = [
                    working.get_task(dep.task_id).end + timedelta(days=dep.lag)
                    for dep in task.predecessors
                    if dep.type == DependencyType.FS and dep.task_id in working
                ]
                if not boundaries:
                    continue
                required = max(boundaries)
                if task.start > required:
                    span = timedelta(days=task.duration)
                    task.start, task.end = required, required + span
                    moved.append(task_id)
        return CommandResult(True, f"Slack cleared on {len(moved)} task(s)", moved)

    def check_links(self, task_ids: Optional[list[str]] = None) -> CommandResult:
        """Read-only report of cycles, dangling references and broken date logic."""
        selected = set(_unique(task_ids or [])) or set(self.store.task_ids())
        engine = DependencyEngine(self.store)
        issues = []

        for violation in engine.validate_graph() + engine.find_dangling_references():
            if selected.intersection(violation.task_ids):
                issues.append(violation.message)

        for from_id, to_id, dep in engine.edges():
            if from_id not in selected and to_id not in selected:
                continue
            pred = self.store.find_task(from_id)
            succ = self.store.find_task(to_id)
            if pred is None or succ is None:
                continue
            allowed = required_start(dep.type, dep.lag, pred.start, pred.end, succ.duration)
            if succ.start < allowed:
                issues.append(
                    f"Task '{succ.name}' starts {succ.start} but its {dep.type.value} "
                    f"predecessor '{pred.name}' allows {allowed} at the earliest"
                )

        message = "All links are valid" if not issues else f"{len(issues)} link issue(s) found"
        return CommandResult(not issues, message, sorted(selected), {"issues": issues})

    def auto_schedule(self) -> CommandResult:
        with self._transaction("auto_schedule") as (working, failures):
            result = auto_schedule(working)
        return CommandResult(
            True,
            f"{len(result.changes)} task(s) rescheduled",
            [change.task_id for change in result.changes],
            {
                "changes": [
                    {
                        "task_id": c.task_id,
                        "old_start": c.old_start,
                        "new_start": c.new_start,
                        "new_end": c.new_end,
                        "delta_days": c.delta_days,
                    }
                    for c in result.changes
                ],
                "warnings": result.warnings,
            },
        )

    def show_critical_path(self) -> CommandResult:
        with self._transaction("show_critical_path") as (working, failures):
            analysis = analyze_critical_path(working, self.critical_float_threshold)
            if analysis is not None:
                apply_critical_flags(working, analysis)
        if analysis is None:
            return CommandResult(True, "No tasks to analyse", data={"critical_path": []})
        return CommandResult(
            True,
            f"{len(analysis.critical_path_task_ids)} critical task(s)",
            analysis.critical_path_task_ids,
            {
                "critical_path": analysis.critical_path_task_ids,
                "project_end_date": analysis.project_end_date,
            },
        )

    # =========================================================================
    # Dispatcher
    # =========================================================================

    def execute(self, action: str, task_ids: Optional[list[str]] = None, **options: Any) -> CommandResult:
        """Run a ribbon action by name, e.g. ``execute("indent-task", ["t1"])``."""
        method_name = ACTIONS.get(action)
        if method_name is None:
            raise ValidationError(f"Unknown action: {action}")
        method = getattr(self, method_name)

        args = () if method_name in _UNSELECTED else (task_ids or [],)
        try:
            inspect.signature(method).bind(*args, **options)
        except TypeError as e:
            raise ValidationError(f"Invalid options for {action}: {e}")

        logger.debug(f"Executing {action} on {len(task_ids or [])} task(s)")
        return method(*args, **options)
