from programme.domain.task import (
    ConstraintType,
    CustomValue,
    Dependency,
    DependencyType,
    Priority,
    Task,
    TaskStatus,
    TaskType,
    date_order_problem,
    new_task_id,
)

__all__ = [
    "ConstraintType",
    "CustomValue",
    "Dependency",
    "DependencyType",
    "Priority",
    "Task",
    "TaskStatus",
    "TaskType",
    "date_order_problem",
    "new_task_id",
]
