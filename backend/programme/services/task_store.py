"""
Task Store: owns every Task and the parent/child forest.

Responsibilities:
- CRUD on tasks with date-order validation
- Hierarchy maintenance (children order, dense positions, levels)
- Read views (pre-order traversal, visible rows for the Gantt grid)

The store never calls outward. Dependency edges live on the tasks but are
only created through the DependencyEngine, which validates them first.
"""

import copy
from datetime import date
from enum import Enum
from typing import Any, Iterable, Iterator, Optional

from programme.domain.task import (
    ConstraintType,
    Dependency,
    DependencyType,
    Priority,
    Task,
    TaskStatus,
    TaskType,
    date_order_problem,
    new_task_id,
)
from programme.exceptions import (
    HierarchyError,
    InvalidDateOrderError,
    NotFoundError,
    ValidationError,
)
from programme.logging_config import get_logger

logger = get_logger(__name__)


# Fields a caller may set through create_task / update_task
EDITABLE_FIELDS = {
    "name",
    "start",
    "end",
    "percent_complete",
    "status",
    "priority",
    "task_type",
    "constraint_type",
    "constraint_date",
    "notes",
    "assigned_to",
    "resources",
    "cost",
    "custom_fields",
    "is_expanded",
    "is_critical",
    "total_float",
}

# Editable fields that can never hold None
NON_NULLABLE_FIELDS = EDITABLE_FIELDS - {
    "priority",
    "constraint_date",
    "notes",
    "assigned_to",
    "total_float",
}

_ENUM_FIELDS: dict[str, type[Enum]] = {
    "status": TaskStatus,
    "priority": Priority,
    "task_type": TaskType,
    "constraint_type": ConstraintType,
}


def _coerce(field_name: str, value: Any) -> Any:
    enum_cls = _ENUM_FIELDS.get(field_name)
    if enum_cls is None or value is None or isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationError(
            f"Invalid {field_name} '{value}' (expected one of: {allowed})",
            details=[{"loc": [field_name], "msg": f"invalid value '{value}'", "type": "enum_error"}],
        )


def _null_problems(values: dict[str, Any]) -> list[dict[str, Any]]:
    return [
        {"loc": [key], "msg": "may not be null", "type": "null_error"}
        for key in sorted(NON_NULLABLE_FIELDS & set(values))
        if values[key] is None
    ]


def _field_problems(task_id: str, values: dict[str, Any]) -> list[str]:
    """Non-date validation of a full set of task values."""
    problems = []
    percent = values.get("percent_complete", 0)
    if percent is None or not 0 <= percent <= 100:
        problems.append(f"percent_complete must be between 0 and 100, got {percent}")
    constraint = values.get("constraint_type") or ConstraintType.AS_SOON_AS_POSSIBLE
    if constraint != ConstraintType.AS_SOON_AS_POSSIBLE and values.get("constraint_date") is None:
        problems.append(f"constraint {constraint.value} requires a constraint_date")
    if not values.get("name"):
        problems.append("name must not be empty")
    return problems


class TaskStore:
    """In-memory owner of all tasks of one programme."""

    def __init__(self) -> None:
        self._tasks: dict[str, Task] = {}
        self._roots: list[str] = []

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._tasks

    # =========================================================================
    # CRUD
    # =========================================================================

    def create_task(
        self,
        name: str,
        start: date,
        end: date,
        *,
        parent_id: Optional[str] = None,
        insert_after: Optional[str] = None,
        task_id: Optional[str] = None,
        **fields: Any,
    ) -> str:
        """
        Create a task and return its id.

        The task is appended to its parent's children (or to the roots), or
        placed right after ``insert_after`` when given.
        """
        unknown = set(fields) - EDITABLE_FIELDS
        if unknown:
            raise ValidationError(f"Unknown task field(s): {', '.join(sorted(unknown))}")

        task_id = task_id or new_task_id()
        if task_id in self._tasks:
            raise ValidationError(f"Task id {task_id} already exists")

        values = {key: _coerce(key, value) for key, value in fields.items()}
        values.update(name=name, start=start, end=end)
        nulls = _null_problems(values)
        if nulls:
            raise ValidationError("Task fields may not be null", details=nulls)
        task_type = values.get("task_type") or TaskType.NORMAL
        problem = date_order_problem(task_type, start, end)
        if problem:
            raise InvalidDateOrderError(task_id, problem)
        problems = _field_problems(task_id, values)
        if problems:
            raise ValidationError("; ".join(problems))

        siblings = self._sibling_list(parent_id)
        index = self._insert_index(siblings, insert_after, task_id)

        task = Task(id=task_id, **values)
        task.parent_id = parent_id
        task.level = self._tasks[parent_id].level + 1 if parent_id else 0
        self._tasks[task_id] = task
        siblings.insert(index, task_id)
        self._renumber(siblings)

        logger.debug(f"Created task {task_id} '{name}' parent={parent_id} level={task.level}")
        return task_id

    def get_task(self, task_id: str) -> Task:
        """Return the live task (callers must not keep it across mutations)."""
        task = self._tasks.get(task_id)
        if task is None:
            raise NotFoundError("Task", task_id)
        return task

    def find_task(self, task_id: str) -> Optional[Task]:
        return self._tasks.get(task_id)

    def update_task(self, task_id: str, **changes: Any) -> Task:
        """
        Apply a partial update.

        Dates, percent and constraints are validated on the merged values
        before anything is written. ``parent_id`` is routed through reparent().
        """
        task = self.get_task(task_id)

        new_parent = changes.pop("parent_id", task.parent_id)
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValidationError(
                f"Field(s) cannot be updated directly: {', '.join(sorted(unknown))}"
            )

        nulls = _null_problems(changes)
        if nulls:
            raise ValidationError("Task fields may not be null", details=nulls)

        coerced = {key: _coerce(key, value) for key, value in changes.items()}
        merged = {key: getattr(task, key) for key in EDITABLE_FIELDS}
        merged.update(coerced)

        problem = date_order_problem(merged["task_type"], merged["start"], merged["end"])
        if problem:
            raise InvalidDateOrderError(task_id, problem)
        problems = _field_problems(task_id, merged)
        if problems:
            raise ValidationError("; ".join(problems))

        if new_parent != task.parent_id:
            self.reparent(task_id, new_parent)

        for key, value in coerced.items():
            setattr(task, key, value)
        return task

    def delete_task(self, task_id: str) -> list[str]:
        """
        Delete a task and, recursively, its children.

        Every edge touching a deleted task is stripped from the survivors.
        Returns the deleted ids in pre-order.
        """
        task = self.get_task(task_id)
        removed = self.subtree_ids(task_id)
        removed_set = set(removed)

        siblings = self._sibling_list(task.parent_id)
        siblings.remove(task_id)
        self._renumber(siblings)

        for removed_id in removed:
            del self._tasks[removed_id]

        for other in self._tasks.values():
            other.predecessors = [d for d in other.predecessors if d.task_id not in removed_set]
            other.successors = [d for d in other.successors if d.task_id not in removed_set]

        logger.debug(f"Deleted task {task_id} and {len(removed) - 1} descendant(s)")
        return removed

    def reparent(
        self,
        task_id: str,
        new_parent_id: Optional[str],
        insert_after: Optional[str] = None,
    ) -> Task:
        """
        Move a task (with its subtree) under a new parent.

        Levels of the moved subtree are recomputed and both the old and the
        new sibling lists are renumbered densely.
        """
        task = self.get_task(task_id)
        if new_parent_id is not None:
            self.get_task(new_parent_id)
            if new_parent_id == task_id or new_parent_id in self.subtree_ids(task_id):
                raise HierarchyError(
                    task_id,
                    f"Cannot move task {task_id} under itself or one of its descendants",
                )

        old_siblings = self._sibling_list(task.parent_id)
        new_siblings = self._sibling_list(new_parent_id)
        if insert_after == task_id:
            raise HierarchyError(task_id, "A task cannot be placed after itself")
        # Validate the anchor before touching anything
        self._insert_index(new_siblings, insert_after, task_id)

        old_siblings.remove(task_id)
        self._renumber(old_siblings)
        new_siblings.insert(self._insert_index(new_siblings, insert_after, task_id), task_id)
        self._renumber(new_siblings)

        task.parent_id = new_parent_id
        base_level = self._tasks[new_parent_id].level + 1 if new_parent_id else 0
        self._relevel(task_id, base_level)
        return task

    # =========================================================================
    # Read views
    # =========================================================================

    def tasks(self) -> list[Task]:
        """All tasks in pre-order (parents before children, siblings by position)."""
        return list(self._walk(self._roots))

    def task_ids(self) -> list[str]:
        return [task.id for task in self._walk(self._roots)]

    def roots(self) -> list[Task]:
        return [self._tasks[task_id] for task_id in self._roots]

    def children_of(self, task_id: str) -> list[Task]:
        return [self._tasks[child] for child in self.get_task(task_id).children]

    def get_visible_tasks(self) -> list[Task]:
        """Pre-order traversal that skips the children of collapsed tasks."""
        return list(self._walk(self._roots, visible_only=True))

    def subtree_ids(self, task_id: str) -> list[str]:
        """The task and all of its descendants, pre-order."""
        return [task.id for task in self._walk([task_id])]

    def ancestors_of(self, task_id: str) -> list[str]:
        """Parent chain from the direct parent up to the root."""
        chain = []
        parent_id = self.get_task(task_id).parent_id
        while parent_id is not None:
            chain.append(parent_id)
            parent_id = self._tasks[parent_id].parent_id
        return chain

    def preceding_sibling(self, task_id: str) -> Optional[str]:
        task = self.get_task(task_id)
        siblings = self._sibling_list(task.parent_id)
        index = siblings.index(task_id)
        return siblings[index - 1] if index > 0 else None

    def subtree_height(self, task_id: str) -> int:
        """Levels below the task (0 for a leaf)."""
        base = self.get_task(task_id).level
        return max(t.level for t in self._walk([task_id])) - base

    def project_span(self) -> Optional[tuple[date, date]]:
        if not self._tasks:
            return None
        return (
            min(t.start for t in self._tasks.values()),
            max(t.end for t in self._tasks.values()),
        )

    def project_progress(self) -> int:
        """Mean percent complete over normal tasks, rounded."""
        normal = [t for t in self._tasks.values() if t.task_type == TaskType.NORMAL]
        if not normal:
            return 0
        return round(sum(t.percent_complete for t in normal) / len(normal))

    # =========================================================================
    # UI state
    # =========================================================================

    def toggle_expansion(self, task_id: str) -> Task:
        task = self.get_task(task_id)
        task.is_expanded = not task.is_expanded
        return task

    def set_expanded_all(self, expanded: bool) -> int:
        """Expand or collapse every task that has children. Returns how many changed."""
        changed = 0
        for task in self._tasks.values():
            if task.children and task.is_expanded != expanded:
                task.is_expanded = expanded
                changed += 1
        return changed

    # =========================================================================
    # Working copies
    # =========================================================================

    def copy(self) -> "TaskStore":
        """Deep copy, used as a working copy for batch commands and for reads."""
        clone = TaskStore()
        clone._tasks = copy.deepcopy(self._tasks)
        clone._roots = list(self._roots)
        return clone

    def commit(self, other: "TaskStore") -> None:
        """Adopt the state of a working copy."""
        self._tasks = other._tasks
        self._roots = other._roots

    def load(self, tasks: Iterable[Task]) -> None:
        """Replace the whole content with a validated task list."""
        self.commit(TaskStore.from_tasks(tasks))
        logger.info(f"Loaded {len(self._tasks)} task(s)")

    @classmethod
    def from_tasks(cls, tasks: Iterable[Task]) -> "TaskStore":
        """
        Build a store from a flat task list (import path).

        ``parent_id`` and ``position`` are authoritative for the hierarchy,
        predecessor edges are authoritative for dependencies (successor-only
        edges are accepted too). Every problem is collected before raising.
        """
        tasks = [task.clone() for task in tasks]
        problems: list[dict[str, Any]] = []

        def problem(task_id: str, field_name: str, msg: str) -> None:
            problems.append({"loc": ["tasks", task_id, field_name], "msg": msg, "type": "structure_error"})

        by_id: dict[str, Task] = {}
        for task in tasks:
            if task.id in by_id:
                problem(task.id, "id", f"duplicate task id {task.id}")
                continue
            by_id[task.id] = task

        for task in by_id.values():
            date_problem = date_order_problem(task.task_type, task.start, task.end)
            if date_problem:
                problem(task.id, "start", date_problem)
            for msg in _field_problems(task.id, {
                "name": task.name,
                "percent_complete": task.percent_complete,
                "constraint_type": task.constraint_type,
                "constraint_date": task.constraint_date,
            }):
                problem(task.id, "fields", msg)
            if task.parent_id is not None and task.parent_id not in by_id:
                problem(task.id, "parent_id", f"parent {task.parent_id} does not exist")

        # Parent chains must terminate at a root
        for task in by_id.values():
            seen = {task.id}
            parent_id = task.parent_id
            while parent_id is not None and parent_id in by_id:
                if parent_id in seen:
                    problem(task.id, "parent_id", "task is its own ancestor")
                    break
                seen.add(parent_id)
                parent_id = by_id[parent_id].parent_id

        edges: dict[tuple[str, str], Dependency] = {}
        for task in by_id.values():
            for dep in task.predecessors:
                edges.setdefault((dep.task_id, task.id), Dependency(dep.task_id, DependencyType(dep.type), dep.lag))
        for task in by_id.values():
            for dep in task.successors:
                edges.setdefault((task.id, dep.task_id), Dependency(task.id, DependencyType(dep.type), dep.lag))
        for (pred_id, succ_id) in edges:
            if pred_id not in by_id:
                problem(succ_id, "predecessors", f"predecessor {pred_id} does not exist")
            if succ_id not in by_id:
                problem(pred_id, "successors", f"successor {succ_id} does not exist")
            if pred_id == succ_id:
                problem(pred_id, "predecessors", "task depends on itself")

        if problems:
            raise ValidationError(
                f"Task list is structurally invalid: {len(problems)} problem(s)",
                details=problems,
            )

        store = cls()
        order = {task.id: index for index, task in enumerate(tasks)}
        successor_order = {
            task.id: {dep.task_id: index for index, dep in enumerate(task.successors)}
            for task in by_id.values()
        }
        for task in by_id.values():
            task.children = []
            task.predecessors = []
            task.successors = []
        ranked = sorted(by_id.values(), key=lambda t: (t.position, order[t.id]))
        for task in ranked:
            if task.parent_id is None:
                store._roots.append(task.id)
            else:
                by_id[task.parent_id].children.append(task.id)
        for (pred_id, succ_id), dep in edges.items():
            by_id[succ_id].predecessors.append(Dependency(pred_id, dep.type, dep.lag))
            by_id[pred_id].successors.append(Dependency(succ_id, dep.type, dep.lag))
        for task in by_id.values():
            known = successor_order[task.id]
            task.successors.sort(key=lambda d: known.get(d.task_id, len(known)))

        store._tasks = by_id
        store._renumber(store._roots)
        for root_id in store._roots:
            store._relevel(root_id, 0)
        for task in by_id.values():
            store._renumber(task.children)
        return store

    # =========================================================================
    # Invariants
    # =========================================================================

    def check_invariants(self) -> list[str]:
        """
        Report hierarchy, reference and date violations.

        Dependency acyclicity is checked by DependencyEngine.validate_graph().
        """
        violations = []
        reached = self.task_ids()
        if len(reached) != len(self._tasks) or set(reached) != set(self._tasks):
            violations.append("hierarchy is not a forest reachable from the roots")

        for sibling_list in [self._roots] + [t.children for t in self._tasks.values()]:
            positions = [self._tasks[i].position for i in sibling_list if i in self._tasks]
            if positions != list(range(len(sibling_list))):
                violations.append(f"sibling positions are not dense: {sibling_list}")

        for task in self._tasks.values():
            expected = self._tasks[task.parent_id].level + 1 if task.parent_id in self._tasks else 0
            if task.level != expected:
                violations.append(f"task {task.id} has level {task.level}, expected {expected}")
            parent = self._tasks.get(task.parent_id) if task.parent_id else None
            if task.parent_id is not None and (parent is None or task.id not in parent.children):
                violations.append(f"task {task.id} is missing from its parent's children")
            problem = date_order_problem(task.task_type, task.start, task.end)
            if problem:
                violations.append(f"task {task.id}: {problem}")
            for dep in task.predecessors:
                other = self._tasks.get(dep.task_id)
                if other is None:
                    violations.append(f"task {task.id} has dangling predecessor {dep.task_id}")
                elif other.successor(task.id) is None:
                    violations.append(f"edge {dep.task_id} -> {task.id} is not mirrored")
            for dep in task.successors:
                if dep.task_id not in self._tasks:
                    violations.append(f"task {task.id} has dangling successor {dep.task_id}")
        return violations

    # =========================================================================
    # Internals
    # =========================================================================

    def _walk(self, ids: Iterable[str], visible_only: bool = False) -> Iterator[Task]:
        for task_id in ids:
            task = self._tasks[task_id]
            yield task
            if not visible_only or task.is_expanded:
                yield from self._walk(task.children, visible_only)

    def _sibling_list(self, parent_id: Optional[str]) -> list[str]:
        if parent_id is None:
            return self._roots
        return self.get_task(parent_id).children

    def _insert_index(self, siblings: list[str], insert_after: Optional[str], task_id: str) -> int:
        if insert_after is None:
            return len(siblings)
        if insert_after not in siblings:
            raise HierarchyError(
                task_id,
                f"Task {insert_after} is not a sibling at the target location",
            )
        return siblings.index(insert_after) + 1

    def _renumber(self, siblings: list[str]) -> None:
        for index, sibling_id in enumerate(siblings):
            self._tasks[sibling_id].position = index

    def _relevel(self, task_id: str, level: int) -> None:
        task = self._tasks[task_id]
        task.level = level
        for child_id in task.children:
            self._relevel(child_id, level + 1)
