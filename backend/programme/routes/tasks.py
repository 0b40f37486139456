"""
Task routes for the programme API.
"""

from fastapi import APIRouter, Depends, Response, status

from programme.domain.task import Task
from programme.logging_config import get_logger
from programme.registry import get_programme, open_programme
from programme.schemas import TaskCreate, TaskRead, TaskReparent, TaskUpdate
from programme.services.engine import ProgrammeEngine

logger = get_logger(__name__)

router = APIRouter()


@router.post("/", response_model=TaskRead, status_code=status.HTTP_201_CREATED)
async def create_task(
    task_in: TaskCreate,
    engine: ProgrammeEngine = Depends(open_programme),
) -> Task:
    """
    Create a new task.

    The task is appended to its parent's children, or placed right after
    ``insert_after`` when given.
    """
    data = task_in.model_dump()
    task = engine.create_task(
        data.pop("name"),
        data.pop("start"),
        data.pop("end"),
        **data,
    )
    logger.info(f"Created task: id={task.id} name='{task.name}' project={engine.project_id}")
    return task


@router.get("/", response_model=list[TaskRead])
async def list_tasks(engine: ProgrammeEngine = Depends(get_programme)) -> list[Task]:
    """List every task in pre-order (parents before their children)."""
    tasks = engine.list_tasks()
    logger.debug(f"Listed {len(tasks)} tasks for project={engine.project_id}")
    return tasks


@router.get("/visible", response_model=list[TaskRead])
async def list_visible_tasks(engine: ProgrammeEngine = Depends(get_programme)) -> list[Task]:
    """Rows shown in the Gantt grid: children of collapsed tasks are skipped."""
    return engine.visible_tasks()


@router.get("/{task_id}", response_model=TaskRead)
async def get_task(task_id: str, engine: ProgrammeEngine = Depends(get_programme)) -> Task:
    """Get a task by ID."""
    return engine.get_task(task_id)


@router.patch("/{task_id}", response_model=TaskRead)
async def update_task(
    task_id: str,
    task_in: TaskUpdate,
    engine: ProgrammeEngine = Depends(get_programme),
) -> Task:
    """
    Update a task.

    Dates are validated on the merged values; nothing is written if the
    result would be out of order.
    """
    changes = task_in.model_dump(exclude_unset=True)
    task = engine.update_task(task_id, **changes)
    logger.info(f"Updated task {task_id}: {sorted(changes)}")
    return task


@router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_task(task_id: str, engine: ProgrammeEngine = Depends(get_programme)) -> Response:
    """Delete a task, its subtree and every link touching them."""
    deleted = engine.delete_task(task_id)
    logger.info(f"Deleted task {task_id} ({len(deleted)} task(s) removed)")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{task_id}/reparent", response_model=TaskRead)
async def reparent_task(
    task_id: str,
    move: TaskReparent,
    engine: ProgrammeEngine = Depends(get_programme),
) -> Task:
    """Move a task with its subtree under another parent (or to the top level)."""
    return engine.reparent(task_id, move.new_parent_id, move.insert_after)


@router.post("/{task_id}/toggle", response_model=TaskRead)
async def toggle_task(task_id: str, engine: ProgrammeEngine = Depends(get_programme)) -> Task:
    """Expand or collapse a task in the grid."""
    return engine.toggle_expansion(task_id)
