"""
Structured exceptions and error responses for the programme engine.

Provides consistent error handling across the engine and the API with:
- Custom exception classes
- Structured error response format
- FastAPI exception handlers
"""

from typing import Any, Dict, Optional, List
from fastapi import Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel


# =============================================================================
# Error Response Schema
# =============================================================================

class ErrorDetail(BaseModel):
    """Detail of a single error."""
    loc: Optional[List[str]] = None  # Location of error (e.g., ["tasks", "3", "start"])
    msg: str
    type: str


class ErrorResponse(BaseModel):
    """Structured error response format."""
    error: str  # Error code (e.g., "not_found", "cycle_detected")
    message: str  # Human-readable message
    details: Optional[List[ErrorDetail]] = None


# =============================================================================
# Custom Exceptions
# =============================================================================

class ProgrammeException(Exception):
    """Base exception for all programme engine errors."""

    def __init__(
        self,
        message: str,
        error_code: str = "internal_error",
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[List[Dict[str, Any]]] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details
        super().__init__(message)


class NotFoundError(ProgrammeException):
    """Resource not found."""

    def __init__(self, resource: str, resource_id: str):
        super().__init__(
            message=f"{resource} with ID {resource_id} not found",
            error_code="not_found",
            status_code=status.HTTP_404_NOT_FOUND,
        )
        self.resource = resource
        self.resource_id = resource_id


class CycleDetectedError(ProgrammeException):
    """Adding a dependency would create a cycle."""

    def __init__(self, predecessor_id: str, successor_id: str):
        super().__init__(
            message="Adding this dependency would create a cycle in the task graph",
            error_code="cycle_detected",
            status_code=status.HTTP_400_BAD_REQUEST,
            details=[{
                "loc": ["body"],
                "msg": f"Dependency {predecessor_id} -> {successor_id} would create a cycle",
                "type": "cycle_error",
            }],
        )
        self.predecessor_id = predecessor_id
        self.successor_id = successor_id


class DuplicateDependencyError(ProgrammeException):
    """Dependency already exists."""

    def __init__(self, predecessor_id: str, successor_id: str):
        super().__init__(
            message="This dependency already exists",
            error_code="duplicate_dependency",
            status_code=status.HTTP_409_CONFLICT,
        )
        self.predecessor_id = predecessor_id
        self.successor_id = successor_id


class SelfDependencyError(ProgrammeException):
    """Task cannot depend on itself."""

    def __init__(self, task_id: str):
        super().__init__(
            message="A task cannot depend on itself",
            error_code="self_dependency",
            status_code=status.HTTP_400_BAD_REQUEST,
        )
        self.task_id = task_id


class InvalidDateOrderError(ProgrammeException):
    """Start/end dates are out of order for the task type."""

    def __init__(self, task_id: str, message: str):
        super().__init__(
            message=message,
            error_code="invalid_date_order",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=[{
                "loc": ["task", task_id],
                "msg": message,
                "type": "date_order_error",
            }],
        )
        self.task_id = task_id


class HierarchyError(ProgrammeException):
    """A move would break the task tree (self-parenting, depth limit, bad anchor)."""

    def __init__(self, task_id: str, message: str):
        super().__init__(
            message=message,
            error_code="hierarchy_error",
            status_code=status.HTTP_400_BAD_REQUEST,
        )
        self.task_id = task_id


class ValidationError(ProgrammeException):
    """Request validation error."""

    def __init__(self, message: str, details: Optional[List[Dict[str, Any]]] = None):
        super().__init__(
            message=message,
            error_code="validation_error",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details,
        )


class BatchOperationError(ProgrammeException):
    """A batch command was rejected; nothing was applied."""

    def __init__(self, operation: str, failures: List[Dict[str, Any]]):
        super().__init__(
            message=f"{operation} rejected: {len(failures)} sub-operation(s) failed, no changes applied",
            error_code="batch_rejected",
            status_code=status.HTTP_409_CONFLICT,
            details=[
                {
                    "loc": [failure["operation"], failure["task_id"]],
                    "msg": failure["reason"],
                    "type": failure.get("type", "batch_error"),
                }
                for failure in failures
            ],
        )
        self.operation = operation
        self.failures = failures


class QuotaExceededError(ProgrammeException):
    """The quota policy forbids the baseline operation."""

    def __init__(self, reason: str):
        super().__init__(
            message=f"Baseline quota exceeded: {reason}",
            error_code="quota_exceeded",
            status_code=status.HTTP_409_CONFLICT,
        )
        self.reason = reason


class PersistenceError(ProgrammeException):
    """The persistence collaborator failed. Callers may retry."""

    def __init__(self, operation: str, message: str, retryable: bool = True):
        super().__init__(
            message=f"Persistence failure during {operation}: {message}",
            error_code="persistence_error",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )
        self.operation = operation
        self.retryable = retryable


class ImportFormatError(ProgrammeException):
    """Malformed import payload. Details list every problem found."""

    def __init__(self, fmt: str, problems: List[Dict[str, Any]]):
        super().__init__(
            message=f"Failed to import {fmt.upper()}: {len(problems)} problem(s) found",
            error_code="import_format_error",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=problems,
        )
        self.format = fmt
        self.problems = problems


# =============================================================================
# Exception Handlers
# =============================================================================

async def programme_exception_handler(request: Request, exc: ProgrammeException) -> JSONResponse:
    """Handle ProgrammeException and return structured response."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.error_code,
            "message": exc.message,
            "details": exc.details,
        },
    )


def register_exception_handlers(app):
    """Register all exception handlers with the FastAPI app."""
    app.add_exception_handler(ProgrammeException, programme_exception_handler)
