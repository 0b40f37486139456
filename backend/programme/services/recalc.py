"""
Recalculation service for propagating date changes through the task DAG.

This implements a Critical Path Method (CPM) style forward pass:
- Tasks are visited in topological order
- Each incoming edge gives a lower bound on the successor's dates:
    FS: start >= pred.end + lag      SS: start >= pred.start + lag
    FF: end   >= pred.end + lag      SF: end   >= pred.start + lag
- Tasks only ever move later; slack the user added is preserved
- Date constraints (start-no-earlier-than, must-start-on, must-finish-on)
  are applied; finish-no-later-than is reported, never enforced
"""

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Optional

import networkx as nx

from programme.domain.task import ConstraintType, DependencyType, TaskType
from programme.logging_config import get_logger
from programme.services.graph import build_graph, topological_sort
from programme.services.task_store import TaskStore

logger = get_logger(__name__)


ROLLUP_TYPES = {TaskType.SUMMARY, TaskType.WBS}


@dataclass
class DateChange:
    """A task whose dates were moved by the pass."""
    task_id: str
    name: str
    old_start: date
    old_end: date
    new_start: date
    new_end: date

    @property
    def delta_days(self) -> int:
        return (self.new_start - self.old_start).days


@dataclass
class ScheduleResult:
    changes: list[DateChange] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def required_start(
    dep_type: DependencyType,
    lag: int,
    pred_start: date,
    pred_end: date,
    duration: int,
) -> date:
    """Earliest start a successor of ``duration`` days may have for one edge."""
    offset = timedelta(days=lag)
    if dep_type == DependencyType.FS:
        return pred_end + offset
    if dep_type == DependencyType.SS:
        return pred_start + offset
    if dep_type == DependencyType.FF:
        return pred_end + offset - timedelta(days=duration)
    # SF
    return pred_start + offset - timedelta(days=duration)


def calculate_dates(graph: nx.DiGraph, calculation_order: list[str]) -> ScheduleResult:
    """
    Calculate new dates using a forward pass.

    Node data is updated in place (``start``/``end``) so downstream tasks
    see the moved dates of their predecessors.

    Returns the tasks whose dates changed plus constraint warnings.
    """
    result = ScheduleResult()

    for task_id in calculation_order:
        node = graph.nodes[task_id]
        task = node["task"]
        start = node.setdefault("start", task.start)
        end = node.setdefault("end", task.end)
        duration = (end - start).days

        earliest: Optional[date] = None
        for pred_id in graph.predecessors(task_id):
            edge = graph.edges[pred_id, task_id]
            pred = graph.nodes[pred_id]
            candidate = required_start(
                edge["type"], edge["lag"],
                pred.get("start", pred["task"].start),
                pred.get("end", pred["task"].end),
                duration,
            )
            earliest = candidate if earliest is None else max(earliest, candidate)

        new_start = start if earliest is None else max(start, earliest)

        constraint = task.constraint_type
        constraint_date = task.constraint_date
        if constraint == ConstraintType.START_NO_EARLIER_THAN and constraint_date:
            new_start = max(new_start, constraint_date)
        elif constraint == ConstraintType.MUST_START_ON and constraint_date:
            if earliest is not None and constraint_date < earliest:
                result.warnings.append(
                    f"Task '{task.name}' must start on {constraint_date} but its "
                    f"predecessors allow {earliest} at the earliest"
                )
            new_start = constraint_date
        elif constraint == ConstraintType.MUST_FINISH_ON and constraint_date:
            new_start = constraint_date - timedelta(days=duration)
            if earliest is not None and new_start < earliest:
                result.warnings.append(
                    f"Task '{task.name}' must finish on {constraint_date} but its "
                    f"predecessors push it to start {earliest}"
                )

        new_end = new_start + timedelta(days=duration)
        if (
            constraint == ConstraintType.FINISH_NO_LATER_THAN
            and constraint_date
            and new_end > constraint_date
        ):
            result.warnings.append(
                f"Task '{task.name}' finishes {new_end}, after its deadline {constraint_date}"
            )

        node["start"] = new_start
        node["end"] = new_end

        if new_start != task.start:
            result.changes.append(DateChange(
                task_id=task_id,
                name=task.name,
                old_start=task.start,
                old_end=task.end,
                new_start=new_start,
                new_end=new_end,
            ))

    return result


def roll_up_summaries(store: TaskStore) -> list[DateChange]:
    """
    Stretch summary/WBS tasks over the span of their children (bottom-up).

    A span that would leave a summary with start == end is skipped.
    """
    changes = []
    for task in reversed(store.tasks()):
        if task.task_type not in ROLLUP_TYPES or not task.children:
            continue
        children = store.children_of(task.id)
        start = min(child.start for child in children)
        end = max(child.end for child in children)
        if start >= end or (start, end) == (task.start, task.end):
            continue
        changes.append(DateChange(task.id, task.name, task.start, task.end, start, end))
        task.start, task.end = start, end
    return changes


def auto_schedule(store: TaskStore) -> ScheduleResult:
    """
    Run the forward pass over the whole store and write the moved dates back.

    Raises CycleDetectedError if the graph is not a DAG.
    """
    graph = build_graph(store.tasks())
    calculation_order = topological_sort(graph)
    result = calculate_dates(graph, calculation_order)

    for change in result.changes:
        task = store.get_task(change.task_id)
        task.start = change.new_start
        task.end = change.new_end

    result.changes.extend(roll_up_summaries(store))
    logger.info(
        f"Auto-schedule moved {len(result.changes)} task(s), "
        f"{len(result.warnings)} constraint warning(s)"
    )
    return result
