"""
Critical Path Method (CPM) implementation.

Calculates:
- Forward pass: Earliest Start (ES), Earliest Finish (EF)
- Backward pass: Latest Start (LS), Latest Finish (LF)
- Slack/Float: LS - ES
- Critical Path: Tasks whose float is at or below the configured threshold

Dates are day-granular with an exclusive end (EF = ES + duration), and every
edge type (FS/SS/FF/SF) with its lag is honoured in both passes. Summary and
WBS rows roll up their children and are left out of the network.
"""

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional

import networkx as nx

from programme.domain.task import DependencyType
from programme.logging_config import get_logger
from programme.services.graph import build_graph, topological_sort
from programme.services.recalc import ROLLUP_TYPES, required_start
from programme.services.task_store import TaskStore

logger = get_logger(__name__)


@dataclass
class TaskAnalysis:
    """Analysis results for a single task."""
    task_id: str
    name: str
    duration_days: int
    # Forward pass results
    earliest_start: date
    earliest_finish: date
    # Backward pass results
    latest_start: date
    latest_finish: date
    # Slack
    total_float: int  # Days of float (0 = critical)
    is_critical: bool


@dataclass
class ProjectAnalysis:
    """Complete CPM analysis for a programme."""
    project_end_date: date  # Latest early finish
    task_analyses: list[TaskAnalysis]
    critical_path_task_ids: list[str]


def analyze_critical_path(
    store: TaskStore,
    float_threshold: int = 0,
) -> Optional[ProjectAnalysis]:
    """
    Perform complete CPM analysis on the store's schedulable tasks.

    Returns None when there is nothing to analyse.
    """
    tasks = [t for t in store.tasks() if t.task_type not in ROLLUP_TYPES]
    if not tasks:
        return None

    graph = build_graph(tasks)
    for task in tasks:
        node = graph.nodes[task.id]
        node["name"] = task.name
        node["duration_days"] = task.duration
        node["start_date"] = task.start

    return _calculate_cpm(graph, float_threshold)


def latest_finish_for(
    dep_type: DependencyType,
    lag: int,
    succ_ls: date,
    succ_lf: date,
    duration: int,
) -> date:
    """Latest finish a predecessor of ``duration`` days may have for one edge."""
    offset = timedelta(days=lag)
    span = timedelta(days=duration)
    if dep_type == DependencyType.FS:
        return succ_ls - offset
    if dep_type == DependencyType.SS:
        return succ_ls - offset + span
    if dep_type == DependencyType.FF:
        return succ_lf - offset
    # SF
    return succ_lf - offset + span


def _calculate_cpm(graph: nx.DiGraph, float_threshold: int) -> ProjectAnalysis:
    """
    Calculate CPM forward and backward passes.

    Forward Pass: Calculate Earliest Start (ES) and Earliest Finish (EF)
    Backward Pass: Calculate Latest Start (LS) and Latest Finish (LF)
    """
    topo_order = topological_sort(graph)

    # =========================================================================
    # Forward Pass: Calculate ES and EF
    # =========================================================================
    for node_id in topo_order:
        node = graph.nodes[node_id]
        duration = node["duration_days"]
        predecessors = list(graph.predecessors(node_id))

        if not predecessors:
            # No predecessors - use the stored start date
            es = node["start_date"]
        else:
            es = max(
                required_start(
                    graph.edges[p, node_id]["type"],
                    graph.edges[p, node_id]["lag"],
                    graph.nodes[p]["es"],
                    graph.nodes[p]["ef"],
                    duration,
                )
                for p in predecessors
            )

        node["es"] = es
        node["ef"] = es + timedelta(days=duration)

    project_end_date = max(graph.nodes[n]["ef"] for n in graph.nodes)

    # =========================================================================
    # Backward Pass: Calculate LF and LS
    # =========================================================================
    for node_id in reversed(topo_order):
        node = graph.nodes[node_id]
        duration = node["duration_days"]
        successors = list(graph.successors(node_id))

        # No task may finish after the project, whatever its links allow
        lf = min(
            [project_end_date]
            + [
                latest_finish_for(
                    graph.edges[node_id, s]["type"],
                    graph.edges[node_id, s]["lag"],
                    graph.nodes[s]["ls"],
                    graph.nodes[s]["lf"],
                    duration,
                )
                for s in successors
            ]
        )

        node["lf"] = lf
        node["ls"] = lf - timedelta(days=duration)

    # =========================================================================
    # Calculate Float and Identify Critical Path
    # =========================================================================
    task_analyses = []
    critical_path_ids = []

    for node_id in topo_order:
        node = graph.nodes[node_id]
        total_float = (node["ls"] - node["es"]).days
        is_critical = total_float <= float_threshold

        if is_critical:
            critical_path_ids.append(node_id)

        task_analyses.append(TaskAnalysis(
            task_id=node_id,
            name=node["name"],
            duration_days=node["duration_days"],
            earliest_start=node["es"],
            earliest_finish=node["ef"],
            latest_start=node["ls"],
            latest_finish=node["lf"],
            total_float=total_float,
            is_critical=is_critical,
        ))

    logger.debug(
        f"CPM: {len(task_analyses)} tasks, {len(critical_path_ids)} critical, "
        f"project end {project_end_date}"
    )
    return ProjectAnalysis(
        project_end_date=project_end_date,
        task_analyses=task_analyses,
        critical_path_task_ids=critical_path_ids,
    )


def apply_critical_flags(store: TaskStore, analysis: ProjectAnalysis) -> None:
    """Write is_critical/total_float back onto the analysed tasks."""
    by_id = {a.task_id: a for a in analysis.task_analyses}
    for task in store.tasks():
        result = by_id.get(task.id)
        task.is_critical = bool(result and result.is_critical)
        task.total_float = result.total_float if result else None
