from datetime import date
from typing import Any, Optional

from pydantic import BaseModel

from programme.domain.task import DependencyType


class CommandRequest(BaseModel):
    """
    Selection plus the options an action understands.

    Only the options that are sent with a value are passed on, e.g. ``dep_type``/``lag``
    for link-tasks or ``name``/``start`` for insert-task.
    """
    task_ids: list[str] = []
    dep_type: Optional[DependencyType] = None
    lag: Optional[int] = None
    name: Optional[str] = None
    start: Optional[date] = None
    parent_id: Optional[str] = None
    insert_after: Optional[str] = None

    def options(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True, exclude_none=True, exclude={"task_ids"})


class PasteRequest(BaseModel):
    parent_id: Optional[str] = None


class CommandResponse(BaseModel):
    success: bool
    message: str
    affected_ids: list[str]
    data: dict[str, Any]

    model_config = {"from_attributes": True}
