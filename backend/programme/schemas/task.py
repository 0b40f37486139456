from datetime import date
from typing import Optional

from pydantic import BaseModel, Field, ValidationInfo, computed_field, field_validator

from programme.domain.task import (
    ConstraintType,
    CustomValue,
    DependencyType,
    Priority,
    TaskStatus,
    TaskType,
)


class TaskCreate(BaseModel):
    """Schema for creating a new task."""
    name: str = Field(min_length=1)
    start: date
    end: date
    parent_id: Optional[str] = None
    insert_after: Optional[str] = None  # Sibling to place the task after
    task_type: TaskType = TaskType.NORMAL
    status: TaskStatus = TaskStatus.NOT_STARTED
    priority: Optional[Priority] = None
    percent_complete: float = Field(default=0.0, ge=0, le=100)
    constraint_type: ConstraintType = ConstraintType.AS_SOON_AS_POSSIBLE
    constraint_date: Optional[date] = None
    notes: Optional[str] = None
    assigned_to: Optional[str] = None
    resources: list[str] = []
    cost: float = 0.0
    custom_fields: dict[str, CustomValue] = {}


class TaskUpdate(BaseModel):
    """Schema for updating a task. Only the fields sent are changed."""
    name: Optional[str] = Field(default=None, min_length=1)
    start: Optional[date] = None
    end: Optional[date] = None
    parent_id: Optional[str] = None
    task_type: Optional[TaskType] = None
    status: Optional[TaskStatus] = None
    priority: Optional[Priority] = None
    percent_complete: Optional[float] = Field(default=None, ge=0, le=100)
    constraint_type: Optional[ConstraintType] = None
    constraint_date: Optional[date] = None
    notes: Optional[str] = None
    assigned_to: Optional[str] = None
    resources: Optional[list[str]] = None
    cost: Optional[float] = None
    custom_fields: Optional[dict[str, CustomValue]] = None
    is_expanded: Optional[bool] = None

    @field_validator(
        "name", "start", "end", "status", "task_type", "constraint_type",
        "percent_complete", "cost", "resources", "custom_fields", "is_expanded",
    )
    @classmethod
    def reject_null(cls, value, info: ValidationInfo):
        # Omitted means unchanged; these fields cannot be cleared
        if value is None:
            raise ValueError(f"{info.field_name} may not be null")
        return value


class TaskReparent(BaseModel):
    new_parent_id: Optional[str] = None
    insert_after: Optional[str] = None


class TaskLink(BaseModel):
    """One end of a dependency as seen from a task."""
    task_id: str
    type: DependencyType
    lag: int

    model_config = {"from_attributes": True}


class TaskRead(BaseModel):
    """Schema for reading a task with its derived duration."""
    id: str
    name: str
    start: date
    end: date
    percent_complete: float
    status: TaskStatus
    priority: Optional[Priority]
    task_type: TaskType
    parent_id: Optional[str]
    children: list[str]
    level: int
    position: int
    is_expanded: bool
    constraint_type: ConstraintType
    constraint_date: Optional[date]
    predecessors: list[TaskLink]
    successors: list[TaskLink]
    notes: Optional[str]
    assigned_to: Optional[str]
    resources: list[str]
    cost: float
    custom_fields: dict[str, CustomValue]
    is_critical: bool
    total_float: Optional[int]

    @computed_field
    @property
    def duration(self) -> int:
        """Whole days from start to end; 0 for milestones."""
        return (self.end - self.start).days

    model_config = {"from_attributes": True}
