"""
Graph operations using NetworkX.

This module handles:
- Cycle detection for dependency validation (before any mutation)
- Linking/unlinking typed, lagged dependencies on the Task Store
- Full-graph validation: cycles and dangling references
- Topological ordering for date propagation and CPM
"""

from dataclasses import dataclass, field
from typing import Iterable

import networkx as nx

from programme.domain.task import Dependency, DependencyType, Task
from programme.exceptions import (
    CycleDetectedError,
    DuplicateDependencyError,
    NotFoundError,
    SelfDependencyError,
    ValidationError,
)
from programme.logging_config import get_logger
from programme.services.task_store import TaskStore

logger = get_logger(__name__)


@dataclass
class GraphViolation:
    """A structural problem found by a full-graph scan."""
    kind: str  # "cycle", "self_link" or "dangling"
    task_ids: list[str] = field(default_factory=list)
    message: str = ""


def build_graph(tasks: Iterable[Task]) -> nx.DiGraph:
    """
    Build a NetworkX DiGraph from tasks and their predecessor edges.

    Returns a graph where:
    - Nodes are task IDs (with the task on the ``task`` attribute)
    - Edges go from predecessor -> successor, carrying ``type`` and ``lag``

    Edges pointing at tasks outside the given set are skipped.
    """
    tasks = list(tasks)
    graph = nx.DiGraph()
    for task in tasks:
        graph.add_node(task.id, task=task)
    for task in tasks:
        for dep in task.predecessors:
            if dep.task_id in graph:
                graph.add_edge(dep.task_id, task.id, type=dep.type, lag=dep.lag)
    return graph


def topological_sort(graph: nx.DiGraph) -> list[str]:
    """
    Perform topological sort on the graph.

    Returns tasks in order such that for every edge (u, v),
    u comes before v in the ordering.
    """
    try:
        return list(nx.topological_sort(graph))
    except nx.NetworkXUnfeasible:
        cycle = nx.find_cycle(graph)
        logger.error(f"Cycle detected in graph: {cycle}")
        raise CycleDetectedError(cycle[0][0], cycle[0][1])


class DependencyEngine:
    """Sole gate for dependency edges on a TaskStore."""

    def __init__(self, store: TaskStore):
        self.store = store

    def build_graph(self) -> nx.DiGraph:
        return build_graph(self.store.tasks())

    def would_create_cycle(self, from_id: str, to_id: str) -> bool:
        """
        Check if adding an edge (from_id -> to_id) would create a cycle.

        The edge closes a cycle exactly when from_id is already reachable
        from to_id along existing predecessor -> successor edges.
        """
        if from_id == to_id:
            return True
        graph = self.build_graph()
        return nx.has_path(graph, to_id, from_id)

    def link(
        self,
        from_id: str,
        to_id: str,
        dep_type: DependencyType = DependencyType.FS,
        lag: int = 0,
    ) -> Dependency:
        """
        Make ``from_id`` a predecessor of ``to_id``.

        Every check runs before the store is touched; on rejection the
        store is unchanged.
        """
        predecessor = self.store.get_task(from_id)
        successor = self.store.get_task(to_id)
        try:
            dep_type = DependencyType(dep_type)
        except ValueError:
            allowed = ", ".join(t.value for t in DependencyType)
            raise ValidationError(f"Invalid dependency type {dep_type!r} (expected one of: {allowed})")
        if not isinstance(lag, int) or isinstance(lag, bool):
            raise ValidationError(f"Dependency lag must be a whole number of days, got {lag!r}")

        if from_id == to_id:
            logger.warning(f"Self-dependency rejected: {from_id}")
            raise SelfDependencyError(from_id)

        if successor.predecessor(from_id) is not None:
            logger.warning(f"Duplicate dependency rejected: {from_id} -> {to_id}")
            raise DuplicateDependencyError(from_id, to_id)

        logger.debug(f"Running cycle detection for {from_id} -> {to_id}")
        if self.would_create_cycle(from_id, to_id):
            logger.warning(f"Cycle detected: {from_id} -> {to_id} would create a cycle")
            raise CycleDetectedError(from_id, to_id)

        successor.predecessors.append(Dependency(from_id, dep_type, lag))
        predecessor.successors.append(Dependency(to_id, dep_type, lag))

        logger.info(
            f"Linked {predecessor.name} -> {successor.name} ({dep_type.value}, lag={lag})"
        )
        return Dependency(from_id, dep_type, lag)

    def unlink(self, from_id: str, to_id: str) -> None:
        """Remove the edge from both tasks' edge lists."""
        predecessor = self.store.get_task(from_id)
        successor = self.store.get_task(to_id)
        if successor.predecessor(from_id) is None and predecessor.successor(to_id) is None:
            raise NotFoundError("Dependency", f"{from_id}/{to_id}")

        successor.predecessors = [d for d in successor.predecessors if d.task_id != from_id]
        predecessor.successors = [d for d in predecessor.successors if d.task_id != to_id]
        logger.info(f"Unlinked {from_id} -> {to_id}")

    def unlink_all(self, task_id: str) -> int:
        """Remove every edge touching a task. Returns the number removed."""
        task = self.store.get_task(task_id)
        removed = 0
        for dep in list(task.predecessors):
            self.unlink(dep.task_id, task_id)
            removed += 1
        for dep in list(task.successors):
            self.unlink(task_id, dep.task_id)
            removed += 1
        return removed

    def edges(self) -> list[tuple[str, str, Dependency]]:
        """All edges as (predecessor_id, successor_id, dependency)."""
        return [
            (dep.task_id, task.id, dep)
            for task in self.store.tasks()
            for dep in task.predecessors
        ]

    def descendants(self, task_id: str) -> list[str]:
        """All tasks downstream of a task."""
        graph = self.build_graph()
        if task_id not in graph:
            return []
        return list(nx.descendants(graph, task_id))

    def topological_order(self) -> list[str]:
        return topological_sort(self.build_graph())

    # =========================================================================
    # Full-graph validation
    # =========================================================================

    def validate_graph(self) -> list[GraphViolation]:
        """
        Scan the whole graph and report every task that sits on a cycle.

        Maintenance/test hook; link() already keeps the graph acyclic.
        """
        graph = self.build_graph()
        violations = []

        for node_id, _ in nx.selfloop_edges(graph):
            violations.append(GraphViolation(
                kind="self_link",
                task_ids=[node_id],
                message=f"Task {node_id} depends on itself",
            ))

        for component in nx.strongly_connected_components(graph):
            if len(component) < 2:
                continue
            cycle = nx.find_cycle(graph.subgraph(component))
            path = " -> ".join([edge[0] for edge in cycle] + [cycle[-1][1]])
            violations.append(GraphViolation(
                kind="cycle",
                task_ids=sorted(component),
                message=f"Circular dependency: {path}",
            ))

        if violations:
            logger.warning(f"Graph validation found {len(violations)} cycle violation(s)")
        return violations

    def find_dangling_references(self) -> list[GraphViolation]:
        """Edges whose other end is no longer in the store."""
        violations = []
        for task in self.store.tasks():
            for dep in task.predecessors:
                if dep.task_id not in self.store:
                    violations.append(GraphViolation(
                        kind="dangling",
                        task_ids=[task.id, dep.task_id],
                        message=f"Invalid predecessor reference {dep.task_id} in task: {task.name}",
                    ))
            for dep in task.successors:
                if dep.task_id not in self.store:
                    violations.append(GraphViolation(
                        kind="dangling",
                        task_ids=[task.id, dep.task_id],
                        message=f"Invalid successor reference {dep.task_id} in task: {task.name}",
                    ))
        return violations
