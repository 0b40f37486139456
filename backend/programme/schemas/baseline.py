import uuid
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel

from programme.services.variance import VarianceStatus


class BaselineCreate(BaseModel):
    """Schema for creating a baseline from the current schedule."""
    name: Optional[str] = None  # Defaults to "Baseline <date>"
    created_by: str = "system"


class BaselineRead(BaseModel):
    id: uuid.UUID
    project_id: str
    name: str
    created_at: datetime
    created_by: str
    is_active: bool
    tag: Optional[str]

    model_config = {"from_attributes": True}


class SnapshotRead(BaseModel):
    task_id: str
    name: str
    baseline_start: date
    baseline_end: date
    percent_complete: float
    is_milestone: bool
    parent_id: Optional[str]

    model_config = {"from_attributes": True}


class BaselineDetail(BaselineRead):
    tasks: list[SnapshotRead]


class BaselineJobAccepted(BaseModel):
    job_id: Optional[str]
    project_id: str
    task_count: int


class VarianceRead(BaseModel):
    task_id: str
    baseline_start: date
    baseline_end: date
    current_start: date
    current_end: date
    start_variance: int
    end_variance: int
    duration_variance: int
    start_variance_percent: float
    end_variance_percent: float
    duration_variance_percent: float
    status: VarianceStatus

    model_config = {"from_attributes": True}


class ComparisonRead(BaseModel):
    """Current schedule against a baseline."""
    baseline_id: Optional[str]
    total_tasks: int
    on_time_tasks: int
    delayed_tasks: int
    early_tasks: int
    total_duration_change: int
    missing_from_current: list[str]
    new_since_baseline: list[str]
    variances: list[VarianceRead]

    model_config = {"from_attributes": True}


class QuotaRead(BaseModel):
    max_baselines_per_project: Optional[int]
    max_tasks_per_baseline: Optional[int]
    tag: Optional[str]
    restrictions: list[str]
