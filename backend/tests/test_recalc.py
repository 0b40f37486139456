"""
Test slack time behavior - users can set dates with buffer/slack
as long as they don't violate dependency constraints.
"""

from datetime import date

import networkx as nx

from programme.domain.task import ConstraintType, DependencyType, TaskType
from programme.services.recalc import (
    auto_schedule,
    build_graph,
    calculate_dates,
    required_start,
    roll_up_summaries,
)


def jan(day):
    return date(2026, 1, day)


class TestSlackTime:
    """Test that slack time is preserved when valid."""

    def test_slack_time_preserved_when_valid(self, store, deps):
        """
        Scenario: A (Jan 1-6) -> B (user sets to Jan 20)
        Expected: B stays at Jan 20 (valid slack)
        """
        a = store.create_task("Task A", jan(1), jan(6))
        b = store.create_task("Task B", jan(20), jan(23))
        deps.link(a, b)

        graph = build_graph(store.tasks())
        order = list(nx.topological_sort(graph))
        result = calculate_dates(graph, order)

        assert result.changes == [], f"Expected no updates, got {result.changes}"
        assert graph.nodes[b]["start"] == jan(20)

    def test_constraint_violation_pushes_forward(self, store, deps):
        """
        Scenario: A (Jan 21-26) -> B (user set to Jan 10)
        Expected: B gets pushed to Jan 26, keeping its 3 days
        """
        a = store.create_task("Task A", jan(21), jan(26))
        b = store.create_task("Task B", jan(10), jan(13))
        deps.link(a, b)

        result = auto_schedule(store)

        assert [c.task_id for c in result.changes] == [b]
        assert result.changes[0].delta_days == 16
        assert (store.get_task(b).start, store.get_task(b).end) == (jan(26), jan(29))

    def test_chain_propagates(self, store, deps):
        """
        Scenario: A -> B -> C, A moved later
        Expected: B and C both pushed, in order
        """
        a = store.create_task("Task A", jan(5), jan(10))
        b = store.create_task("Task B", jan(6), jan(8))
        c = store.create_task("Task C", jan(8), jan(9))
        deps.link(a, b)
        deps.link(b, c)

        result = auto_schedule(store)

        assert [change.task_id for change in result.changes] == [b, c]
        assert store.get_task(b).start == jan(10)
        assert store.get_task(c).start == jan(12)

    def test_lag_and_lead(self, store, deps):
        a = store.create_task("Task A", jan(1), jan(5))
        b = store.create_task("Task B", jan(1), jan(3))
        c = store.create_task("Task C", jan(1), jan(3))
        deps.link(a, b, DependencyType.FS, 2)
        deps.link(a, c, DependencyType.FS, -1)

        auto_schedule(store)

        assert store.get_task(b).start == jan(7)
        assert store.get_task(c).start == jan(4)

    def test_never_moves_earlier(self, store, deps):
        a = store.create_task("Task A", jan(1), jan(3))
        b = store.create_task("Task B", jan(15), jan(16))
        deps.link(a, b, DependencyType.SS)

        assert auto_schedule(store).changes == []
        assert store.get_task(b).start == jan(15)


class TestDependencyTypes:
    """Earliest start for each edge type (exclusive end dates)."""

    def test_required_start(self):
        pred_start, pred_end = jan(1), jan(5)
        assert required_start(DependencyType.FS, 0, pred_start, pred_end, 3) == jan(5)
        assert required_start(DependencyType.SS, 1, pred_start, pred_end, 3) == jan(2)
        assert required_start(DependencyType.FF, 0, pred_start, pred_end, 3) == jan(2)
        assert required_start(DependencyType.SF, 2, pred_start, pred_end, 3) == date(2025, 12, 31)

    def test_finish_to_finish(self, store, deps):
        a = store.create_task("Task A", jan(1), jan(10))
        b = store.create_task("Task B", jan(1), jan(4))
        deps.link(a, b, DependencyType.FF)

        auto_schedule(store)

        assert (store.get_task(b).start, store.get_task(b).end) == (jan(7), jan(10))

    def test_milestone_keeps_zero_duration(self, store, deps):
        a = store.create_task("Task A", jan(1), jan(10))
        m = store.create_task("Done", jan(2), jan(2), task_type=TaskType.MILESTONE)
        deps.link(a, m)

        auto_schedule(store)

        milestone = store.get_task(m)
        assert milestone.start == milestone.end == jan(10)


class TestConstraints:
    """Date constraints applied during the forward pass."""

    def test_start_no_earlier_than(self, store):
        a = store.create_task(
            "Task A", jan(1), jan(3),
            constraint_type=ConstraintType.START_NO_EARLIER_THAN, constraint_date=jan(5),
        )

        auto_schedule(store)

        assert store.get_task(a).start == jan(5)

    def test_must_start_on_overrides_links(self, store, deps):
        a = store.create_task("Task A", jan(1), jan(10))
        b = store.create_task(
            "Task B", jan(12), jan(14),
            constraint_type=ConstraintType.MUST_START_ON, constraint_date=jan(8),
        )
        deps.link(a, b)

        result = auto_schedule(store)

        assert store.get_task(b).start == jan(8)
        assert len(result.warnings) == 1
        assert "must start on" in result.warnings[0]

    def test_must_finish_on(self, store):
        a = store.create_task(
            "Task A", jan(1), jan(3),
            constraint_type=ConstraintType.MUST_FINISH_ON, constraint_date=jan(10),
        )

        result = auto_schedule(store)

        assert (store.get_task(a).start, store.get_task(a).end) == (jan(8), jan(10))
        assert result.warnings == []

    def test_finish_no_later_than_only_warns(self, store, deps):
        a = store.create_task("Task A", jan(1), jan(10))
        b = store.create_task(
            "Task B", jan(1), jan(4),
            constraint_type=ConstraintType.FINISH_NO_LATER_THAN, constraint_date=jan(11),
        )
        deps.link(a, b)

        result = auto_schedule(store)

        assert store.get_task(b).end == jan(13)
        assert "after its deadline" in result.warnings[0]


class TestRollup:
    """Summary rows follow their children."""

    def test_summary_spans_children(self, store, deps):
        phase = store.create_task("Phase", jan(1), jan(2), task_type=TaskType.SUMMARY)
        a = store.create_task("Task A", jan(3), jan(6), parent_id=phase)
        b = store.create_task("Task B", jan(4), jan(5), parent_id=phase)
        deps.link(a, b)

        result = auto_schedule(store)

        assert (store.get_task(phase).start, store.get_task(phase).end) == (jan(3), jan(7))
        assert {c.task_id for c in result.changes} == {b, phase}

    def test_milestone_only_summary_skipped(self, store):
        phase = store.create_task("Phase", jan(1), jan(5), task_type=TaskType.SUMMARY)
        store.create_task("Gate", jan(3), jan(3), parent_id=phase, task_type=TaskType.MILESTONE)

        assert roll_up_summaries(store) == []
        assert store.get_task(phase).start == jan(1)

    def test_sample_is_already_consistent(self, store, sample):
        assert auto_schedule(store).changes == []
