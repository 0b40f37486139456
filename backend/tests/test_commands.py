"""
Schedule command processor tests.

Every batch either applies completely or raises BatchOperationError with the
live store left exactly as it was.
"""

from datetime import date

import pytest

from programme.domain.task import DependencyType, Priority, TaskStatus, TaskType
from programme.exceptions import BatchOperationError, ValidationError
from programme.services.commands import ScheduleCommandProcessor


def jan(day):
    return date(2025, 1, day)


class TestIndentOutdent:
    """Hierarchy commands."""

    def test_indent_under_preceding_sibling(self, store, processor, make_task):
        a, b, c = make_task("A"), make_task("B"), make_task("C")

        result = processor.indent([b, c])

        assert result.success
        assert store.get_task(a).children == [b, c]
        assert store.get_task(c).level == 1
        assert [t.id for t in store.roots()] == [a]

    def test_indent_first_sibling_rejected(self, store, processor, make_task):
        a, b = make_task("A"), make_task("B")

        with pytest.raises(BatchOperationError) as exc_info:
            processor.indent([b, a])

        assert exc_info.value.failures[0]["task_id"] == a
        # b's indent succeeded on the working copy but was not applied
        assert store.get_task(b).parent_id is None
        assert store.check_invariants() == []

    def test_indent_depth_limit(self, store, make_task):
        processor = ScheduleCommandProcessor(store, max_indent_depth=1)
        make_task("A")
        b = make_task("B")
        make_task("X", parent_id=b)

        with pytest.raises(BatchOperationError) as exc_info:
            processor.indent([b])
        assert "maximum depth" in exc_info.value.failures[0]["reason"]

    def test_indent_skips_selected_descendants(self, store, processor, make_task):
        a, b = make_task("A"), make_task("B")
        x = make_task("X", parent_id=b)

        processor.indent([b, x])

        assert store.get_task(b).parent_id == a
        assert store.get_task(x).parent_id == b
        assert store.get_task(x).level == 2

    def test_outdent_places_after_former_parent(self, store, processor, make_task):
        a, d = make_task("A"), make_task("D")
        b = make_task("B", parent_id=a)
        c = make_task("C", parent_id=a)

        processor.outdent([b, c])

        assert [t.id for t in store.roots()] == [a, b, c, d]
        assert store.get_task(a).children == []
        assert store.get_task(b).level == 0

    def test_outdent_root_rejected(self, processor, make_task):
        a = make_task("A")
        with pytest.raises(BatchOperationError):
            processor.outdent([a])

    def test_empty_selection(self, processor):
        with pytest.raises(ValidationError):
            processor.indent([])


class TestLinkUnlink:
    """Batch link/unlink."""

    def test_link_chains_selection(self, store, processor, make_task):
        a, b, c = make_task("A"), make_task("B"), make_task("C")

        result = processor.link([a, b, c], DependencyType.SS, 2)

        assert result.data["links"] == [{"from": a, "to": b}, {"from": b, "to": c}]
        assert store.get_task(c).predecessor(b).type == DependencyType.SS
        assert store.get_task(c).predecessor(b).lag == 2

    def test_link_skips_existing_pairs(self, processor, make_task):
        a, b, c = make_task("A"), make_task("B"), make_task("C")
        processor.link([a, b])

        result = processor.link([a, b, c])

        assert result.data["links"] == [{"from": b, "to": c}]

    def test_link_with_bad_type_is_a_batch_failure(self, store, processor, make_task):
        a, b = make_task("A"), make_task("B")

        with pytest.raises(BatchOperationError) as exc_info:
            processor.link([a, b], None)

        assert [d["loc"] for d in exc_info.value.details] == [["link", b]]
        assert store.get_task(b).predecessors == []

    def test_link_needs_two_tasks(self, processor, make_task):
        a = make_task("A")
        with pytest.raises(ValidationError):
            processor.link([a])

    def test_cycle_rejects_whole_batch(self, store, processor, deps, make_task):
        """
        Scenario: C -> A exists, then link([A, B, C])
        Expected: B -> C closes a cycle, so A -> B is not applied either
        """
        a, b, c = make_task("A"), make_task("B"), make_task("C")
        deps.link(c, a)

        with pytest.raises(BatchOperationError) as exc_info:
            processor.link([a, b, c])

        assert len(exc_info.value.failures) == 1
        assert store.get_task(b).predecessors == []
        assert store.get_task(a).successors == []

    def test_unknown_id_reported(self, processor, make_task):
        a = make_task("A")
        with pytest.raises(BatchOperationError) as exc_info:
            processor.link([a, "ghost"])
        assert exc_info.value.failures[0]["task_id"] == "ghost"

    def test_unlink_single_task_removes_all(self, store, processor, sample):
        result = processor.unlink([sample["excavate"]])

        assert result.data["removed"] == 3
        assert store.get_task(sample["excavate"]).predecessors == []
        assert store.get_task(sample["excavate"]).successors == []

    def test_unlink_between_selected(self, store, processor, sample):
        result = processor.unlink([sample["fencing"], sample["demolition"], sample["ready"]])

        assert result.data["removed"] == 1
        assert store.get_task(sample["demolition"]).predecessors == []
        # Links to unselected tasks survive
        assert store.get_task(sample["fencing"]).successor(sample["excavate"]) is not None


class TestClipboard:
    """Copy, cut and paste."""

    def test_copy_paste_clones_subtree(self, store, processor, sample):
        processor.copy([sample["phase-1"]])
        result = processor.paste()

        assert len(result.affected_ids) == 3
        root = store.get_task(result.affected_ids[0])
        assert root.name == "Site Preparation (Copy)"
        assert root.parent_id is None
        assert (root.start, root.end) == (date(2025, 1, 13), date(2025, 2, 18))

        children = store.children_of(root.id)
        assert [c.name for c in children] == ["Fencing (Copy)", "Demolition (Copy)"]
        dep = children[1].predecessor(children[0].id)
        assert (dep.type, dep.lag) == (DependencyType.FS, 1)
        # Only internal links are cloned
        assert children[0].successor(sample["excavate"]) is None
        assert store.check_invariants() == []

    def test_copy_keeps_clipboard(self, store, processor, make_task):
        a = make_task("A")
        processor.copy([a])
        first = processor.paste()
        second = processor.paste()

        assert first.affected_ids != second.affected_ids
        assert len(store) == 3

    def test_cut_removes_and_paste_empties_clipboard(self, store, processor, sample):
        processor.cut([sample["fencing"]])

        assert sample["fencing"] not in store
        assert store.get_task(sample["excavate"]).predecessor(sample["fencing"]) is None

        result = processor.paste(sample["phase-2"])
        pasted = store.get_task(result.affected_ids[0])
        assert pasted.name == "Fencing"
        assert pasted.parent_id == sample["phase-2"]
        assert pasted.id != sample["fencing"]

        with pytest.raises(ValidationError):
            processor.paste()

    def test_paste_shifts_constraint_date(self, store, processor, make_task):
        a = make_task("A", constraint_type="start-no-earlier-than", constraint_date=jan(1))
        processor.copy([a])
        result = processor.paste()

        assert store.get_task(result.affected_ids[0]).constraint_date == jan(8)

    def test_paste_into_unknown_parent(self, store, processor, make_task):
        a = make_task("A")
        processor.copy([a])
        with pytest.raises(BatchOperationError):
            processor.paste("ghost")
        assert len(store) == 1

    def test_paste_empty_clipboard(self, processor):
        with pytest.raises(ValidationError):
            processor.paste()


class TestTaskOperations:
    """Delete, complete and insert."""

    def test_delete_skips_selected_descendants(self, store, processor, sample):
        result = processor.delete([sample["fencing"], sample["phase-1"]])

        assert result.affected_ids == [sample["phase-1"], sample["fencing"], sample["demolition"]]
        assert len(store) == 6

    def test_mark_complete(self, store, processor, sample):
        processor.mark_complete([sample["excavate"], sample["roads"]])

        for key in ("excavate", "roads"):
            task = store.get_task(sample[key])
            assert task.status == TaskStatus.COMPLETED
            assert task.percent_complete == 100

    def test_insert_task_defaults(self, store, processor):
        result = processor.insert_task(start=jan(6))
        task = store.get_task(result.affected_ids[0])

        assert task.name == "New Task"
        assert (task.start, task.end) == (jan(6), jan(13))
        assert task.priority == Priority.MEDIUM
        assert task.task_type == TaskType.NORMAL

    def test_insert_summary_after_sibling(self, store, processor, make_task):
        a, b = make_task("A"), make_task("B")
        result = processor.insert_summary(name="Phase", start=jan(1), insert_after=a)
        summary = store.get_task(result.affected_ids[0])

        assert summary.task_type == TaskType.SUMMARY
        assert summary.duration == 14
        assert [t.id for t in store.roots()] == [a, summary.id, b]

    def test_collapse_and_expand_all(self, store, processor, sample):
        assert processor.collapse_all().data["changed"] == 4
        assert len(store.get_visible_tasks()) == 1
        processor.expand_all()
        assert len(store.get_visible_tasks()) == 9


class TestScheduling:
    """Alignment, gaps, slack and link checks."""

    def test_align_starts(self, store, processor, make_task):
        a, b, c = make_task("A", 1, 3), make_task("B", 5, 6), make_task("C", 2, 10)

        result = processor.align_starts([a, b, c])

        assert result.affected_ids == [b, c]
        assert (store.get_task(b).start, store.get_task(b).end) == (jan(1), jan(2))
        assert (store.get_task(c).start, store.get_task(c).end) == (jan(1), jan(9))

    def test_align_is_idempotent(self, store, processor, make_task):
        a, b = make_task("A", 1, 3), make_task("B", 5, 6)
        processor.align_starts([a, b])

        assert processor.align_starts([a, b]).affected_ids == []
        assert store.get_task(b).start == jan(1)

    def test_align_ends(self, store, processor, make_task):
        a, b = make_task("A", 1, 3), make_task("B", 5, 6)

        processor.align_ends([a, b])

        assert (store.get_task(b).start, store.get_task(b).end) == (jan(2), jan(3))

    def test_remove_gaps(self, store, processor, make_task):
        a, b, c = make_task("A", 1, 3), make_task("B", 5, 7), make_task("C", 10, 11)

        result = processor.remove_gaps([c, a, b])

        assert result.affected_ids == [b, c]
        assert (store.get_task(b).start, store.get_task(b).end) == (jan(3), jan(5))
        assert (store.get_task(c).start, store.get_task(c).end) == (jan(5), jan(6))

    def test_clear_slack_uses_finish_to_start_links(self, store, processor, deps, make_task):
        a, b, c = make_task("A", 1, 3), make_task("B", 10, 12), make_task("C", 10, 12)
        deps.link(a, b, DependencyType.FS, 1)
        deps.link(a, c, DependencyType.SS)

        result = processor.clear_slack([b, c])

        assert result.affected_ids == [b]
        assert (store.get_task(b).start, store.get_task(b).end) == (jan(4), jan(6))
        assert store.get_task(c).start == jan(10)

    def test_check_links_clean(self, processor, sample):
        result = processor.check_links()
        assert result.success
        assert result.data["issues"] == []

    def test_check_links_reports_broken_dates(self, store, processor, deps, make_task):
        a, b = make_task("A", 1, 5), make_task("B", 5, 7)
        deps.link(a, b)
        store.update_task(b, start=jan(2), end=jan(4))

        result = processor.check_links([b])

        assert not result.success
        assert len(result.data["issues"]) == 1
        assert "'B'" in result.data["issues"][0]

    def test_auto_schedule_command(self, store, processor, deps, make_task):
        a, b = make_task("A", 1, 3), make_task("B", 1, 2)
        deps.link(a, b)

        result = processor.auto_schedule()

        assert result.affected_ids == [b]
        assert result.data["changes"][0]["delta_days"] == 2
        assert store.get_task(b).start == jan(3)

    def test_show_critical_path(self, store, processor, sample):
        result = processor.show_critical_path()

        schedulable = {sample[k] for k in ("fencing", "demolition", "excavate", "roads", "ready")}
        assert set(result.data["critical_path"]) == schedulable
        assert result.data["project_end_date"] == date(2025, 4, 2)
        assert store.get_task(sample["roads"]).is_critical
        assert not store.get_task(sample["project"]).is_critical


class TestExecute:
    """Dispatch by ribbon action name."""

    def test_dispatch_with_options(self, store, processor, make_task):
        a, b = make_task("A"), make_task("B")

        processor.execute("link-tasks", [a, b], dep_type="SS", lag=2)

        dep = store.get_task(b).predecessor(a)
        assert (dep.type, dep.lag) == (DependencyType.SS, 2)

    def test_unselected_actions(self, processor, sample):
        result = processor.execute("collapse-all")
        assert result.data["changed"] == 4

    def test_unknown_action(self, processor):
        with pytest.raises(ValidationError):
            processor.execute("rotate-tasks", [])

    def test_unknown_option(self, processor):
        with pytest.raises(ValidationError):
            processor.execute("expand-all", colour="red")
