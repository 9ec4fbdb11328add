"""Tests for the closure engine."""

from __future__ import annotations

import pytest

from arbor.src.closure import ClosureEngine
from arbor.src.errors import (
    ChildrenDesyncError,
    CycleDetectedError,
    DanglingParentError,
    IntegrityError,
    NotFoundError,
)
from arbor.src.models import Node

# ===================================================================
# Single-step lookups
# ===================================================================


class TestLookups:
    """children_of, parent_of, root_of."""

    def test_children_of(self, closure):
        assert [n.id for n in closure.children_of(1)] == [2, 4]

    def test_children_of_missing_raises(self, closure):
        with pytest.raises(NotFoundError):
            closure.children_of(99)

    def test_parent_of(self, closure):
        assert closure.parent_of(3).id == 2

    def test_parent_of_root_is_none(self, closure):
        assert closure.parent_of(1) is None

    def test_parent_of_missing_raises(self, closure):
        with pytest.raises(NotFoundError):
            closure.parent_of(99)

    def test_root_of(self, closure):
        assert closure.root_of(3).id == 1

    def test_root_of_root(self, closure):
        assert closure.root_of(10).id == 10

    def test_root_of_missing_raises(self, closure):
        with pytest.raises(NotFoundError) as excinfo:
            closure.root_of(99)
        assert excinfo.value.operation == "root_of"
        assert excinfo.value.node_id == 99

    def test_root_of_with_missing_root_raises(self, memory_repo):
        memory_repo.insert(Node(id=2, parent_id=1, root_id=1))
        with pytest.raises(NotFoundError):
            ClosureEngine(memory_repo).root_of(2)


# ===================================================================
# Ancestors
# ===================================================================


class TestAncestors:
    """ancestors_of walks nearest first and excludes the start node."""

    def test_chain(self, closure):
        assert [n.id for n in closure.ancestors_of(3)] == [2, 1]

    def test_root_has_no_ancestors(self, closure):
        assert closure.ancestors_of(1) == []

    def test_excludes_self(self, closure):
        for node_id in (1, 2, 3, 4, 10):
            assert node_id not in [n.id for n in closure.ancestors_of(node_id)]

    def test_missing_raises(self, closure):
        with pytest.raises(NotFoundError):
            closure.ancestors_of(99)

    def test_cycle_detected(self, cyclic_repo):
        engine = ClosureEngine(cyclic_repo)
        with pytest.raises(CycleDetectedError) as excinfo:
            engine.ancestors_of(6)
        assert excinfo.value.node_id == 6

    def test_self_parent_cycle_detected(self, memory_repo):
        memory_repo.insert(Node(id=1, parent_id=1, root_id=1))
        with pytest.raises(CycleDetectedError):
            ClosureEngine(memory_repo).ancestors_of(1)

    def test_dangling_parent(self, memory_repo):
        memory_repo.insert(Node.root(1))
        memory_repo.insert(Node(id=3, parent_id=2, root_id=1))
        with pytest.raises(DanglingParentError):
            ClosureEngine(memory_repo).ancestors_of(3)


# ===================================================================
# Descendants
# ===================================================================


class TestDescendants:
    """descendants_of expands breadth-first and excludes the start node."""

    def test_chain(self, closure):
        assert {n.id for n in closure.descendants_of(1)} == {2, 3, 4}

    def test_breadth_first_order(self, closure):
        assert [n.id for n in closure.descendants_of(1)] == [2, 4, 3]

    def test_leaf_has_no_descendants(self, closure):
        assert closure.descendants_of(3) == []

    def test_excludes_self(self, closure):
        for node_id in (1, 2, 3, 4, 10):
            assert node_id not in [n.id for n in closure.descendants_of(node_id)]

    def test_separate_trees_are_unrelated(self, closure):
        assert closure.descendants_of(10) == []
        assert 10 not in [n.id for n in closure.descendants_of(1)]

    def test_missing_raises(self, closure):
        with pytest.raises(NotFoundError):
            closure.descendants_of(99)

    def test_terminates_on_cycle(self, cyclic_repo):
        engine = ClosureEngine(cyclic_repo)
        assert {n.id for n in engine.descendants_of(5)} == {6, 7}

    def test_each_node_visited_once_on_cycle(self, cyclic_repo):
        ids = [n.id for n in ClosureEngine(cyclic_repo).descendants_of(7)]
        assert sorted(ids) == [5, 6]


# ===================================================================
# Native scans
# ===================================================================


class TestNativeScans:
    """Bulk repository scans give the same answers as walking."""

    def test_same_ancestors(self, chain_repo):
        walking = ClosureEngine(chain_repo)
        native = ClosureEngine(chain_repo, native_scans=True)
        for node_id in (1, 2, 3, 4, 10):
            assert native.ancestors_of(node_id) == walking.ancestors_of(node_id)

    def test_same_descendant_sets(self, chain_repo):
        walking = ClosureEngine(chain_repo)
        native = ClosureEngine(chain_repo, native_scans=True)
        for node_id in (1, 2, 3, 4, 10):
            assert {n.id for n in native.descendants_of(node_id)} == {
                n.id for n in walking.descendants_of(node_id)
            }

    def test_native_cycle_detected(self, cyclic_repo):
        with pytest.raises(CycleDetectedError):
            ClosureEngine(cyclic_repo, native_scans=True).ancestors_of(6)

    def test_native_descendants_exclude_self_on_cycle(self, cyclic_repo):
        ids = [n.id for n in ClosureEngine(cyclic_repo, native_scans=True).descendants_of(5)]
        assert sorted(ids) == [6, 7]

    def test_native_cycle_detected_in_sqlite(self, sqlite_repo):
        sqlite_repo.insert(Node.root(1))
        sqlite_repo.insert(Node(id=2, parent_id=1, root_id=1))
        sqlite_repo._conn.execute("UPDATE nodes SET parent_id = 2 WHERE id = 1")
        with pytest.raises(CycleDetectedError):
            ClosureEngine(sqlite_repo, native_scans=True).ancestors_of(2)

    def test_native_missing_raises(self, chain_repo):
        with pytest.raises(NotFoundError):
            ClosureEngine(chain_repo, native_scans=True).ancestors_of(99)


# ===================================================================
# Subtrees and integrity
# ===================================================================


class TestSubtree:
    """subtree_of assembles a node and its descendants."""

    def test_subtree_of_root(self, closure):
        tree = closure.subtree_of(1)
        assert tree.root.id == 1
        assert len(tree) == 4
        assert tree.descendant_count() == 3

    def test_subtree_of_inner_node(self, closure):
        tree = closure.subtree_of(2)
        assert tree.root.id == 2
        assert tree.root.parent_id == 1
        assert [n.id for n in tree.walk()] == [2, 3]

    def test_subtree_of_leaf(self, closure):
        tree = closure.subtree_of(3)
        assert len(tree) == 1
        assert tree.root.children == []


class TestCheckIntegrity:
    """check_integrity verifies a whole tree."""

    def test_valid_tree(self, closure):
        tree = closure.check_integrity(1)
        assert len(tree) == 4

    def test_non_root_rejected(self, closure):
        with pytest.raises(IntegrityError):
            closure.check_integrity(2)

    def test_wrong_root_id_rejected(self, memory_repo):
        memory_repo.insert(Node.root(1))
        memory_repo.insert(Node.root(5))
        memory_repo.insert(Node(id=2, parent_id=1, root_id=5))
        with pytest.raises(IntegrityError) as excinfo:
            ClosureEngine(memory_repo).check_integrity(1)
        assert excinfo.value.node_id == 2

    def test_stored_children_desync(self, chain_repo):
        chain_repo.update_children(1, [2])
        with pytest.raises(ChildrenDesyncError):
            ClosureEngine(chain_repo).check_integrity(1, compare_stored_children=True)

    def test_stored_children_in_sync(self, chain_repo):
        chain_repo.update_children(1, [4, 2])
        chain_repo.update_children(2, [3])
        tree = ClosureEngine(chain_repo).check_integrity(1, compare_stored_children=True)
        assert tree.nodes[1].children == [2, 4]
