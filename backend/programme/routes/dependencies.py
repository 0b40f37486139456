"""
Dependency routes for the programme API.
"""

import asyncio

from fastapi import APIRouter, Depends, Response, status

from programme.logging_config import get_logger
from programme.registry import get_programme
from programme.schemas import DependencyCreate, DependencyRead, GraphValidationResponse, GraphViolationRead
from programme.services.engine import ProgrammeEngine

logger = get_logger(__name__)

router = APIRouter()


@router.post("/", response_model=DependencyRead, status_code=status.HTTP_201_CREATED)
async def create_dependency(
    dep_in: DependencyCreate,
    engine: ProgrammeEngine = Depends(get_programme),
) -> DependencyRead:
    """
    Create a new dependency (edge in the task DAG).

    Performs cycle detection before creating the dependency.
    If adding this edge would create a cycle, returns 400 Bad Request.
    """
    logger.info(f"Creating dependency: {dep_in.predecessor_id} -> {dep_in.successor_id}")
    dep = engine.link(dep_in.predecessor_id, dep_in.successor_id, dep_in.type, dep_in.lag)
    return DependencyRead(
        predecessor_id=dep.task_id,
        successor_id=dep_in.successor_id,
        type=dep.type,
        lag=dep.lag,
    )


@router.get("/", response_model=list[DependencyRead])
async def list_dependencies(engine: ProgrammeEngine = Depends(get_programme)) -> list[DependencyRead]:
    """List every dependency of the project."""
    return [
        DependencyRead(predecessor_id=pred_id, successor_id=succ_id, type=dep.type, lag=dep.lag)
        for pred_id, succ_id, dep in engine.dependencies()
    ]


@router.get("/validate", response_model=GraphValidationResponse)
async def validate_dependencies(engine: ProgrammeEngine = Depends(get_programme)) -> GraphValidationResponse:
    """Full scan for cycles and dangling references."""
    violations = await asyncio.to_thread(engine.validate_graph)
    return GraphValidationResponse(
        valid=not violations,
        violations=[GraphViolationRead.model_validate(v) for v in violations],
    )


@router.delete("/{predecessor_id}/{successor_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_dependency(
    predecessor_id: str,
    successor_id: str,
    engine: ProgrammeEngine = Depends(get_programme),
) -> Response:
    """Delete a dependency."""
    engine.unlink(predecessor_id, successor_id)
    logger.info(f"Deleted dependency: {predecessor_id} -> {successor_id}")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
