from pydantic import BaseModel

from programme.domain.task import DependencyType


class DependencyCreate(BaseModel):
    """Schema for creating a new dependency."""
    predecessor_id: str  # The driving task
    successor_id: str    # The driven task
    type: DependencyType = DependencyType.FS
    lag: int = 0  # Days, negative for a lead


class DependencyRead(BaseModel):
    """Schema for reading a dependency."""
    predecessor_id: str
    successor_id: str
    type: DependencyType
    lag: int


class GraphViolationRead(BaseModel):
    kind: str
    task_ids: list[str]
    message: str

    model_config = {"from_attributes": True}


class GraphValidationResponse(BaseModel):
    valid: bool
    violations: list[GraphViolationRead]
