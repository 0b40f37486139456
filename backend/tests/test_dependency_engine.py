"""
Dependency Engine tests: the graph stays acyclic and edges stay mirrored.
"""

import networkx as nx
import pytest

from programme.domain.task import Dependency, DependencyType
from programme.exceptions import (
    CycleDetectedError,
    DuplicateDependencyError,
    NotFoundError,
    SelfDependencyError,
    ValidationError,
)


class TestLink:
    """Linking validates before mutating."""

    def test_link_mirrors_type_and_lag(self, store, deps, make_task):
        a, b = make_task("A"), make_task("B", 3, 5)
        deps.link(a, b, DependencyType.SS, -2)

        assert store.get_task(b).predecessor(a) == Dependency(a, DependencyType.SS, -2)
        assert store.get_task(a).successor(b) == Dependency(b, DependencyType.SS, -2)

    @pytest.mark.parametrize("dep_type, lag", [(None, 0), ("XX", 0), ("FS", None), ("FS", 1.5)])
    def test_bad_type_or_lag_rejected(self, store, deps, make_task, dep_type, lag):
        a, b = make_task("A"), make_task("B", 3, 5)

        with pytest.raises(ValidationError):
            deps.link(a, b, dep_type, lag)

        assert store.get_task(b).predecessors == []

    def test_reverse_link_is_a_cycle(self, store, deps, make_task):
        """
        Scenario: link(A, B) then link(B, A)
        Expected: CycleDetectedError and the store is unchanged
        """
        a, b = make_task("A"), make_task("B")
        deps.link(a, b)

        with pytest.raises(CycleDetectedError):
            deps.link(b, a)

        assert store.get_task(a).predecessors == []
        assert store.get_task(b).successors == []
        assert deps.validate_graph() == []

    def test_transitive_cycle(self, deps, make_task):
        a, b, c = make_task("A"), make_task("B"), make_task("C")
        deps.link(a, b)
        deps.link(b, c)

        assert deps.would_create_cycle(c, a)
        with pytest.raises(CycleDetectedError):
            deps.link(c, a)

    def test_self_dependency(self, deps, make_task):
        a = make_task("A")
        with pytest.raises(SelfDependencyError):
            deps.link(a, a)

    def test_duplicate(self, deps, make_task):
        a, b = make_task("A"), make_task("B")
        deps.link(a, b)
        with pytest.raises(DuplicateDependencyError):
            deps.link(a, b, DependencyType.FF)

    def test_unknown_task(self, deps, make_task):
        a = make_task("A")
        with pytest.raises(NotFoundError):
            deps.link(a, "ghost")

    def test_graph_always_a_dag(self, store, deps, sample):
        """Every rejected link leaves the sample programme acyclic."""
        ids = list(sample.values())
        for from_id in ids:
            for to_id in ids:
                try:
                    deps.link(from_id, to_id)
                except (CycleDetectedError, DuplicateDependencyError, SelfDependencyError):
                    pass
        assert nx.is_directed_acyclic_graph(deps.build_graph())
        assert store.check_invariants() == []


class TestUnlink:
    """Unlinking removes both ends."""

    def test_unlink_symmetric(self, store, deps, make_task):
        a, b = make_task("A"), make_task("B")
        deps.link(a, b)
        deps.unlink(a, b)

        assert store.get_task(a).successors == []
        assert store.get_task(b).predecessors == []

    def test_unlink_missing_edge(self, deps, make_task):
        a, b = make_task("A"), make_task("B")
        with pytest.raises(NotFoundError):
            deps.unlink(a, b)

    def test_unlink_all(self, store, deps, sample):
        removed = deps.unlink_all(sample["demolition"])

        assert removed == 3  # fencing ->, -> excavate, -> roads
        assert store.get_task(sample["demolition"]).predecessors == []
        assert store.get_task(sample["roads"]).predecessor(sample["demolition"]) is None


class TestValidateGraph:
    """Full-graph scans catch corruption that bypassed link()."""

    def test_reports_every_task_on_a_cycle(self, store, deps, make_task):
        a, b, c = make_task("A"), make_task("B"), make_task("C")
        deps.link(a, b)
        deps.link(b, c)
        # Corrupt the store directly
        store.get_task(a).predecessors.append(Dependency(c))
        store.get_task(c).successors.append(Dependency(a))

        violations = deps.validate_graph()

        assert len(violations) == 1
        assert violations[0].kind == "cycle"
        assert set(violations[0].task_ids) == {a, b, c}
        assert violations[0].message.startswith("Circular dependency:")

    def test_self_loop(self, store, deps, make_task):
        a = make_task("A")
        store.get_task(a).predecessors.append(Dependency(a))

        violations = deps.validate_graph()
        assert [v.kind for v in violations] == ["self_link"]

    def test_dangling_references(self, store, deps, make_task):
        a = make_task("A")
        store.get_task(a).successors.append(Dependency("ghost"))

        violations = deps.find_dangling_references()
        assert len(violations) == 1
        assert violations[0].task_ids == [a, "ghost"]

    def test_topological_order_respects_edges(self, deps, sample):
        order = deps.topological_order()
        assert order.index(sample["fencing"]) < order.index(sample["demolition"])
        assert order.index(sample["excavate"]) < order.index(sample["roads"])
        assert order.index(sample["roads"]) < order.index(sample["ready"])

    def test_descendants(self, deps, sample):
        downstream = set(deps.descendants(sample["excavate"]))
        assert downstream == {sample["roads"], sample["ready"]}
