"""
Project routes for the programme API.
"""

from fastapi import APIRouter, Depends, Response, status

from programme.exceptions import NotFoundError
from programme.registry import get_programme, get_registry, open_programme
from programme.schemas import ProjectSummary
from programme.services.engine import EngineRegistry, ProgrammeEngine

router = APIRouter()


@router.get("/", response_model=list[str])
async def list_projects(registry: EngineRegistry = Depends(get_registry)) -> list[str]:
    """Ids of the projects loaded in this process."""
    return registry.project_ids()


@router.get("/{project_id}", response_model=ProjectSummary)
async def get_project(engine: ProgrammeEngine = Depends(get_programme)) -> dict:
    """Headline figures: task count, progress and date span."""
    return engine.project_summary()


@router.put("/{project_id}", response_model=ProjectSummary)
async def open_project(engine: ProgrammeEngine = Depends(open_programme)) -> dict:
    """Start an empty project session, or return the existing one."""
    return engine.project_summary()


@router.delete("/{project_id}", status_code=status.HTTP_204_NO_CONTENT)
async def close_project(
    project_id: str,
    registry: EngineRegistry = Depends(get_registry),
) -> Response:
    """Drop the project's in-memory session (baselines are kept)."""
    if not registry.drop(project_id):
        raise NotFoundError("Project", project_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
