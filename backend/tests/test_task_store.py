"""
Task Store tests: CRUD, hierarchy maintenance and invariants.
"""

from datetime import date

import pytest

from programme.domain.task import Dependency, Task, TaskType
from programme.exceptions import (
    HierarchyError,
    InvalidDateOrderError,
    NotFoundError,
    ValidationError,
)
from programme.services.task_store import TaskStore


class TestCreateTask:
    """Creating tasks validates dates and places them in the tree."""

    def test_root_tasks_get_dense_positions(self, store, make_task):
        a = make_task("A")
        b = make_task("B")

        assert [t.id for t in store.roots()] == [a, b]
        assert store.get_task(a).position == 0
        assert store.get_task(b).position == 1
        assert store.get_task(b).level == 0

    def test_child_level_is_parent_plus_one(self, store, make_task):
        parent = make_task("Parent", task_type=TaskType.SUMMARY)
        child = make_task("Child", parent_id=parent)
        grandchild = make_task("Grandchild", parent_id=child)

        assert store.get_task(child).level == 1
        assert store.get_task(grandchild).level == 2
        assert store.get_task(parent).children == [child]

    def test_insert_after_places_task_between_siblings(self, store, make_task):
        a = make_task("A")
        c = make_task("C")
        b = make_task("B", insert_after=a)

        assert [t.id for t in store.roots()] == [a, b, c]
        assert [t.position for t in store.roots()] == [0, 1, 2]

    def test_start_equal_end_rejected_for_normal_task(self, store):
        with pytest.raises(InvalidDateOrderError):
            store.create_task("Bad", date(2025, 1, 5), date(2025, 1, 5))
        assert len(store) == 0

    def test_milestone_must_have_start_equal_end(self, store):
        with pytest.raises(InvalidDateOrderError):
            store.create_task("M", date(2025, 1, 5), date(2025, 1, 6), task_type=TaskType.MILESTONE)

        task_id = store.create_task("M", date(2025, 1, 5), date(2025, 1, 5), task_type="milestone")
        assert store.get_task(task_id).duration == 0

    def test_percent_complete_out_of_range(self, store):
        with pytest.raises(ValidationError):
            store.create_task("X", date(2025, 1, 1), date(2025, 1, 2), percent_complete=120)

    def test_constraint_needs_a_date(self, store):
        with pytest.raises(ValidationError):
            store.create_task("X", date(2025, 1, 1), date(2025, 1, 2), constraint_type="must-start-on")

    def test_unknown_parent(self, store):
        with pytest.raises(NotFoundError):
            store.create_task("X", date(2025, 1, 1), date(2025, 1, 2), parent_id="nope")

    def test_unknown_enum_value(self, store):
        with pytest.raises(ValidationError):
            store.create_task("X", date(2025, 1, 1), date(2025, 1, 2), status="finished")


class TestUpdateTask:
    """Partial updates are validated on the merged values."""

    def test_end_before_start_leaves_task_unchanged(self, store, make_task):
        task_id = make_task("A", 1, 10)

        with pytest.raises(InvalidDateOrderError):
            store.update_task(task_id, end=date(2024, 12, 1))

        task = store.get_task(task_id)
        assert task.end == date(2025, 1, 10)

    def test_moving_both_dates_at_once(self, store, make_task):
        task_id = make_task("A", 1, 3)
        store.update_task(task_id, start=date(2025, 2, 1), end=date(2025, 2, 4))

        assert store.get_task(task_id).duration == 3

    def test_parent_id_routes_through_reparent(self, store, make_task):
        a = make_task("A")
        b = make_task("B")
        store.update_task(b, parent_id=a)

        assert store.get_task(b).parent_id == a
        assert store.get_task(b).level == 1
        assert [t.id for t in store.roots()] == [a]

    def test_edge_lists_cannot_be_set_directly(self, store, make_task):
        a = make_task("A")
        with pytest.raises(ValidationError):
            store.update_task(a, predecessors=[])

    def test_null_for_required_fields_rejected(self, store, make_task):
        a = make_task("A", 1, 3)

        with pytest.raises(ValidationError) as exc_info:
            store.update_task(a, start=None, status=None, task_type=None, notes="kept out")

        assert [d["loc"] for d in exc_info.value.details] == [["start"], ["status"], ["task_type"]]
        task = store.get_task(a)
        assert task.start == date(2025, 1, 1)
        assert task.status is not None
        assert task.notes is None

    def test_nullable_fields_can_be_cleared(self, store, make_task):
        a = make_task("A", notes="Check levels", assigned_to="Site team")

        store.update_task(a, notes=None, assigned_to=None, priority=None)

        assert store.get_task(a).notes is None
        assert store.get_task(a).assigned_to is None

    def test_create_rejects_null_cost(self, store):
        with pytest.raises(ValidationError):
            store.create_task("A", date(2025, 1, 1), date(2025, 1, 2), cost=None)


class TestDeleteTask:
    """Deleting cascades to children and strips edges."""

    def test_cascade_and_edge_cleanup(self, store, sample):
        removed = store.delete_task(sample["phase-1"])

        assert set(removed) == {sample["phase-1"], sample["fencing"], sample["demolition"]}
        excavate = store.get_task(sample["excavate"])
        assert excavate.predecessors == []
        roads = store.get_task(sample["roads"])
        assert [d.task_id for d in roads.predecessors] == [sample["excavate"]]
        assert store.check_invariants() == []

    def test_siblings_renumbered(self, store, make_task):
        a, b, c = make_task("A"), make_task("B"), make_task("C")
        store.delete_task(a)

        assert [(t.id, t.position) for t in store.roots()] == [(b, 0), (c, 1)]

    def test_missing_task(self, store):
        with pytest.raises(NotFoundError):
            store.delete_task("ghost")


class TestReparent:
    """Reparenting keeps the hierarchy a consistent forest."""

    def test_cannot_move_under_own_descendant(self, store, sample):
        with pytest.raises(HierarchyError):
            store.reparent(sample["project"], sample["phase-1"])
        with pytest.raises(HierarchyError):
            store.reparent(sample["phase-1"], sample["phase-1"])
        assert store.check_invariants() == []

    def test_levels_recomputed_for_subtree(self, store, sample):
        store.reparent(sample["phase-1"], None)

        assert store.get_task(sample["phase-1"]).level == 0
        assert store.get_task(sample["fencing"]).level == 1
        assert store.check_invariants() == []

    def test_insert_after_must_be_a_sibling(self, store, sample):
        with pytest.raises(HierarchyError):
            store.reparent(sample["fencing"], sample["phase-2"], insert_after=sample["roads"])

    def test_insert_after_position(self, store, sample):
        store.reparent(sample["roads"], sample["phase-1"], insert_after=sample["fencing"])

        children = [t.id for t in store.children_of(sample["phase-1"])]
        assert children == [sample["fencing"], sample["roads"], sample["demolition"]]
        assert [t.position for t in store.children_of(sample["phase-1"])] == [0, 1, 2]
        assert store.children_of(sample["phase-3"]) == []


class TestViews:
    """Read views over the forest."""

    def test_pre_order_traversal(self, store, sample):
        names = [t.name for t in store.tasks()]
        assert names[:4] == ["Site Establishment Project", "Site Preparation", "Fencing", "Demolition"]
        assert names[-1] == "Site Ready for Construction"

    def test_collapsed_children_are_hidden(self, store, sample):
        store.toggle_expansion(sample["phase-1"])
        visible = {t.id for t in store.get_visible_tasks()}

        assert sample["phase-1"] in visible
        assert sample["fencing"] not in visible
        assert sample["excavate"] in visible

    def test_collapse_all(self, store, sample):
        changed = store.set_expanded_all(False)

        assert changed == 4  # project and three phases
        assert [t.id for t in store.get_visible_tasks()] == [sample["project"]]

    def test_ancestors(self, store, sample):
        assert store.ancestors_of(sample["fencing"]) == [sample["phase-1"], sample["project"]]

    def test_progress_and_span(self, store, sample):
        # (100 + 60 + 0 + 0) / 4 normal tasks
        assert store.project_progress() == 40
        assert store.project_span() == (date(2025, 1, 6), date(2025, 4, 4))


class TestWorkingCopies:
    """copy() is independent; commit() adopts it."""

    def test_copy_is_deep(self, store, make_task):
        a = make_task("A")
        clone = store.copy()
        clone.update_task(a, name="Changed")

        assert store.get_task(a).name == "A"
        store.commit(clone)
        assert store.get_task(a).name == "Changed"


class TestFromTasks:
    """Building a store from a flat list validates everything at once."""

    def test_all_problems_reported(self):
        tasks = [
            Task(id="a", name="A", start=date(2025, 1, 5), end=date(2025, 1, 1)),
            Task(id="b", name="B", start=date(2025, 1, 1), end=date(2025, 1, 2), parent_id="zzz"),
            Task(id="c", name="C", start=date(2025, 1, 1), end=date(2025, 1, 2),
                 predecessors=[Dependency("ghost")]),
        ]

        with pytest.raises(ValidationError) as exc_info:
            TaskStore.from_tasks(tasks)

        fields = {tuple(d["loc"]) for d in exc_info.value.details}
        assert ("tasks", "a", "start") in fields
        assert ("tasks", "b", "parent_id") in fields
        assert ("tasks", "c", "predecessors") in fields

    def test_rebuilds_children_levels_and_mirrors(self):
        tasks = [
            Task(id="child-2", name="C2", start=date(2025, 1, 1), end=date(2025, 1, 2), parent_id="p", position=1),
            Task(id="p", name="P", start=date(2025, 1, 1), end=date(2025, 1, 3), level=7),
            Task(id="child-1", name="C1", start=date(2025, 1, 1), end=date(2025, 1, 2), parent_id="p", position=0,
                 predecessors=[Dependency("child-2")]),
        ]

        store = TaskStore.from_tasks(tasks)

        assert store.get_task("p").children == ["child-1", "child-2"]
        assert store.get_task("p").level == 0
        assert store.get_task("child-2").level == 1
        assert store.get_task("child-2").successor("child-1") is not None
        assert store.check_invariants() == []

    def test_parent_cycle_rejected(self):
        tasks = [
            Task(id="a", name="A", start=date(2025, 1, 1), end=date(2025, 1, 2), parent_id="b"),
            Task(id="b", name="B", start=date(2025, 1, 1), end=date(2025, 1, 2), parent_id="a"),
        ]
        with pytest.raises(ValidationError):
            TaskStore.from_tasks(tasks)

    def test_load_replaces_content(self, store, make_task):
        make_task("Old")
        store.load([Task(id="new", name="New", start=date(2025, 3, 1), end=date(2025, 3, 2))])

        assert store.task_ids() == ["new"]
