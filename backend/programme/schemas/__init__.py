from programme.schemas.task import TaskCreate, TaskUpdate, TaskRead, TaskReparent
from programme.schemas.dependency import (
    DependencyCreate,
    DependencyRead,
    GraphValidationResponse,
    GraphViolationRead,
)
from programme.schemas.command import CommandRequest, CommandResponse, PasteRequest
from programme.schemas.schedule import CriticalPathResponse, TaskAnalysisRead
from programme.schemas.baseline import (
    BaselineCreate,
    BaselineDetail,
    BaselineJobAccepted,
    BaselineRead,
    ComparisonRead,
    QuotaRead,
    SnapshotRead,
    VarianceRead,
)
from programme.schemas.project import ImportResponse, ProjectSummary

__all__ = [
    "TaskCreate",
    "TaskUpdate",
    "TaskRead",
    "TaskReparent",
    "DependencyCreate",
    "DependencyRead",
    "GraphValidationResponse",
    "GraphViolationRead",
    "CommandRequest",
    "CommandResponse",
    "PasteRequest",
    "CriticalPathResponse",
    "TaskAnalysisRead",
    "BaselineCreate",
    "BaselineDetail",
    "BaselineJobAccepted",
    "BaselineRead",
    "ComparisonRead",
    "QuotaRead",
    "SnapshotRead",
    "VarianceRead",
    "ImportResponse",
    "ProjectSummary",
]
