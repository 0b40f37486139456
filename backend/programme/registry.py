"""
FastAPI dependencies that hand the routes their ProgrammeEngine.

The EngineRegistry lives on ``app.state`` and is created in the app lifespan;
tests override ``get_registry`` with their own instance.
"""

from fastapi import Depends, Request

from programme.services.engine import EngineRegistry, ProgrammeEngine


def get_registry(request: Request) -> EngineRegistry:
    return request.app.state.registry


def get_programme(project_id: str, registry: EngineRegistry = Depends(get_registry)) -> ProgrammeEngine:
    """Engine of the project named in the path; 404 if it was never written to."""
    return registry.get(project_id)


def open_programme(project_id: str, registry: EngineRegistry = Depends(get_registry)) -> ProgrammeEngine:
    """Engine of the project named in the path, created on first write."""
    return registry.open(project_id)
