"""
Ribbon command and scheduling routes.
"""

import asyncio

from fastapi import APIRouter, Depends

from programme.logging_config import get_logger
from programme.registry import get_programme, open_programme
from programme.schemas import (
    CommandRequest,
    CommandResponse,
    CriticalPathResponse,
    PasteRequest,
    TaskAnalysisRead,
)
from programme.services.commands import CommandResult
from programme.services.engine import ProgrammeEngine

logger = get_logger(__name__)

router = APIRouter()


@router.post("/commands/paste", response_model=CommandResponse)
async def paste(
    request: PasteRequest,
    engine: ProgrammeEngine = Depends(get_programme),
) -> CommandResult:
    """Paste the clipboard under ``parent_id`` (top level when omitted)."""
    return engine.paste(request.parent_id)


@router.post("/commands/{action}", response_model=CommandResponse)
async def execute_command(
    action: str,
    request: CommandRequest,
    engine: ProgrammeEngine = Depends(open_programme),
) -> CommandResult:
    """
    Run a ribbon action (``indent-task``, ``link-tasks``, ``align-starts``, ...)
    on the selected tasks.

    A batch is all-or-nothing: if any selected task fails, the response is
    409 with one detail per failure and the schedule is unchanged.
    """
    logger.info(f"Command {action} on {len(request.task_ids)} task(s) in project={engine.project_id}")
    return engine.execute(action, request.task_ids, **request.options())


@router.post("/schedule", response_model=CommandResponse)
async def auto_schedule(engine: ProgrammeEngine = Depends(get_programme)) -> CommandResult:
    """Push tasks later where their links or constraints require it."""
    return engine.auto_schedule()


@router.get("/critical-path", response_model=CriticalPathResponse)
async def get_critical_path(
    apply: bool = False,
    engine: ProgrammeEngine = Depends(get_programme),
) -> CriticalPathResponse:
    """
    CPM analysis: early/late dates, total float and the critical tasks.

    With ``apply=true`` the critical flags are stored on the tasks.
    """
    analysis = await asyncio.to_thread(engine.critical_path, apply)
    if analysis is None:
        return CriticalPathResponse(project_end_date=None, critical_path_task_ids=[], task_analyses=[])
    return CriticalPathResponse(
        project_end_date=analysis.project_end_date,
        critical_path_task_ids=analysis.critical_path_task_ids,
        task_analyses=[TaskAnalysisRead.model_validate(a) for a in analysis.task_analyses],
    )
