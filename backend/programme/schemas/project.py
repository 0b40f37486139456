from datetime import date
from typing import Optional

from pydantic import BaseModel


class ProjectSummary(BaseModel):
    """Schema for reading a project's headline figures."""
    project_id: str
    name: str
    task_count: int
    progress: int
    start: Optional[date]
    end: Optional[date]


class ImportResponse(BaseModel):
    project_id: str
    format: str
    imported_tasks: int
    imported_baselines: int = 0
    project_name: Optional[str]
