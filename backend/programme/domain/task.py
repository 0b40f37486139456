"""
Task domain model.

A task's ``start`` and ``end`` are the source of truth; ``duration`` is always
derived from them as whole days. Milestones have ``start == end``, every other
task has ``start < end``.
"""

import copy
import uuid
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Optional, Union


class TaskType(str, Enum):
    NORMAL = "normal"
    MILESTONE = "milestone"
    SUMMARY = "summary"
    HAMMOCK = "hammock"
    LEVEL_OF_EFFORT = "level-of-effort"
    WBS = "wbs"
    DELIVERABLE = "deliverable"


class TaskStatus(str, Enum):
    NOT_STARTED = "not-started"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ConstraintType(str, Enum):
    AS_SOON_AS_POSSIBLE = "as-soon-as-possible"
    MUST_START_ON = "must-start-on"
    MUST_FINISH_ON = "must-finish-on"
    FINISH_NO_LATER_THAN = "finish-no-later-than"
    START_NO_EARLIER_THAN = "start-no-earlier-than"


class DependencyType(str, Enum):
    """Finish-to-Start, Start-to-Start, Finish-to-Finish, Start-to-Finish."""
    FS = "FS"
    SS = "SS"
    FF = "FF"
    SF = "SF"


# Open map of primitive values for user-defined columns
CustomValue = Union[str, int, float, bool, None]


@dataclass
class Dependency:
    """
    One end of a dependency edge.

    On a task's ``predecessors`` list, ``task_id`` is the predecessor; on its
    ``successors`` list, ``task_id`` is the successor. ``lag`` is in days,
    negative for a lead, and is mirrored on both ends of the edge.
    """
    task_id: str
    type: DependencyType = DependencyType.FS
    lag: int = 0


def new_task_id() -> str:
    return str(uuid.uuid4())


@dataclass
class Task:
    """A scheduled unit of work, owned by the TaskStore."""
    id: str
    name: str
    start: date
    end: date
    percent_complete: float = 0.0
    status: TaskStatus = TaskStatus.NOT_STARTED
    priority: Optional[Priority] = None
    task_type: TaskType = TaskType.NORMAL

    # Hierarchy (maintained by the store)
    parent_id: Optional[str] = None
    children: list[str] = field(default_factory=list)
    level: int = 0
    position: int = 0
    is_expanded: bool = True

    # Scheduling metadata
    constraint_type: ConstraintType = ConstraintType.AS_SOON_AS_POSSIBLE
    constraint_date: Optional[date] = None

    # Relations (maintained by the dependency engine)
    predecessors: list[Dependency] = field(default_factory=list)
    successors: list[Dependency] = field(default_factory=list)

    notes: Optional[str] = None
    assigned_to: Optional[str] = None
    resources: list[str] = field(default_factory=list)
    cost: float = 0.0
    custom_fields: dict[str, CustomValue] = field(default_factory=dict)

    # CPM output
    is_critical: bool = False
    total_float: Optional[int] = None

    @property
    def duration(self) -> int:
        """Whole days between start and end (0 for milestones)."""
        return (self.end - self.start).days

    @property
    def is_milestone(self) -> bool:
        return self.task_type == TaskType.MILESTONE

    def predecessor(self, task_id: str) -> Optional[Dependency]:
        return next((d for d in self.predecessors if d.task_id == task_id), None)

    def successor(self, task_id: str) -> Optional[Dependency]:
        return next((d for d in self.successors if d.task_id == task_id), None)

    def clone(self) -> "Task":
        return copy.deepcopy(self)


def date_order_problem(task_type: TaskType, start: date, end: date) -> Optional[str]:
    """Return a message if the dates break the ordering rule for the type."""
    if task_type == TaskType.MILESTONE:
        if start != end:
            return f"Milestone start {start} must equal end {end}"
        return None
    if start >= end:
        return f"Start date {start} must be before end date {end}"
    return None
