from datetime import date

from pydantic import BaseModel


class TaskAnalysisRead(BaseModel):
    """CPM results for one task."""
    task_id: str
    name: str
    duration_days: int
    earliest_start: date
    earliest_finish: date
    latest_start: date
    latest_finish: date
    total_float: int
    is_critical: bool

    model_config = {"from_attributes": True}


class CriticalPathResponse(BaseModel):
    project_end_date: date | None
    critical_path_task_ids: list[str]
    task_analyses: list[TaskAnalysisRead]
