import uuid
from datetime import date, datetime
from typing import Optional

from sqlmodel import Field, SQLModel


class Baseline(SQLModel, table=True):
    """
    An immutable snapshot header for a project's schedule.

    Only ``is_active`` changes after creation. At most one baseline per
    project is active at a time.
    """

    __tablename__ = "programme_baselines"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    project_id: str = Field(index=True)
    name: str
    created_at: datetime = Field(default_factory=datetime.utcnow)
    created_by: str = Field(default="system")
    is_active: bool = Field(default=False)
    tag: Optional[str] = Field(default=None, index=True)


class BaselineTaskSnapshot(SQLModel, table=True):
    """Frozen dates and progress of one task at baseline time."""

    __tablename__ = "programme_baseline_tasks"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    baseline_id: uuid.UUID = Field(
        foreign_key="programme_baselines.id",
        index=True,
        ondelete="CASCADE",
    )
    task_id: str = Field(index=True)
    name: str
    baseline_start: date
    baseline_end: date
    percent_complete: float = Field(default=0.0, ge=0, le=100)
    is_milestone: bool = Field(default=False)
    parent_id: Optional[str] = Field(default=None)
    tag: Optional[str] = Field(default=None)
