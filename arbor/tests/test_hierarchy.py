"""Tests for the Hierarchy facade."""

from __future__ import annotations

from pathlib import Path

import pytest

from arbor.src.config import ArborConfig
from arbor.src.errors import (
    ClosedError,
    ConfigError,
    HasChildrenError,
    NotFoundError,
    StorageFailureError,
)
from arbor.src.hierarchy import Hierarchy, open_repository
from arbor.src.repository import InMemoryNodeRepository
from arbor.src.storage import SQLiteNodeRepository


def _populate(forest: Hierarchy) -> None:
    """1 -> 2 -> 3, 4 under 1, and a separate root "r"."""
    forest.add_root(1)
    forest.add_child(2, 1)
    forest.add_child(3, 2)
    forest.add_child(4, 1)
    forest.add_root("r")


# ===================================================================
# Construction
# ===================================================================


class TestConstruction:
    """Opening a hierarchy from a descriptor."""

    def test_empty_descriptor_raises(self) -> None:
        with pytest.raises(ConfigError):
            Hierarchy("")

    def test_unreachable_database_raises(self, tmp_path: Path) -> None:
        with pytest.raises(StorageFailureError):
            Hierarchy(str(tmp_path / "no" / "such" / "dir" / "arbor.db"))

    def test_memory_descriptor(self) -> None:
        with Hierarchy("memory://") as forest:
            assert isinstance(forest.repository, InMemoryNodeRepository)

    def test_sqlite_descriptor(self) -> None:
        with Hierarchy("sqlite://:memory:") as forest:
            assert isinstance(forest.repository, SQLiteNodeRepository)
            assert forest.count() == 0

    def test_file_database_persists(self, db_file: Path) -> None:
        with Hierarchy(f"sqlite:///{db_file}") as forest:
            _populate(forest)
        with Hierarchy(str(db_file)) as forest:
            assert forest.root_of(3).id == 1
            assert forest.count() == 5

    def test_from_config(self) -> None:
        config = ArborConfig(dsn="memory://", persist_children=True, native_scans=True)
        with Hierarchy.from_config(config) as forest:
            assert forest.config.persist_children is True
            assert forest.config.native_scans is True
            forest.add_root(1)
            forest.add_child(2, 1)
            assert forest.repository.stored_child_ids(1) == [2]

    def test_explicit_repository(self) -> None:
        repo = InMemoryNodeRepository()
        with Hierarchy(repository=repo) as forest:
            forest.add_root(1)
            assert repo.get_by_id(1) is not None
        with pytest.raises(ClosedError):
            repo.count()

    def test_open_repository_without_schema(self) -> None:
        repo = open_repository(ArborConfig(dsn=":memory:", create_schema=False))
        try:
            with pytest.raises(StorageFailureError):
                repo.count()
        finally:
            repo.close()


# ===================================================================
# Queries and mutations
# ===================================================================


class TestOperations:
    """The facade forwards to the closure engine and mutator."""

    def test_lineage(self, hierarchy: Hierarchy) -> None:
        _populate(hierarchy)
        assert [n.id for n in hierarchy.ancestors_of(3)] == [2, 1]
        assert {n.id for n in hierarchy.descendants_of(1)} == {2, 3, 4}
        assert hierarchy.root_of(3).id == 1
        assert hierarchy.parent_of(3).id == 2
        assert [n.id for n in hierarchy.children_of(1)] == [2, 4]

    def test_roots_and_mixed_ids(self, hierarchy: Hierarchy) -> None:
        _populate(hierarchy)
        assert [n.id for n in hierarchy.roots()] == [1, "r"]
        assert hierarchy.exists("r")
        assert not hierarchy.exists("1")

    def test_get_node(self, hierarchy: Hierarchy) -> None:
        _populate(hierarchy)
        assert hierarchy.get_node(3).parent_id == 2
        assert hierarchy.get_node(99) is None

    def test_tree_of_any_member(self, hierarchy: Hierarchy) -> None:
        _populate(hierarchy)
        tree = hierarchy.tree_of(3)
        assert tree.root.id == 1
        assert len(tree) == 4
        assert tree.to_dict()["children"][0]["id"] == 2

    def test_subtree_of(self, hierarchy: Hierarchy) -> None:
        _populate(hierarchy)
        assert [n.id for n in hierarchy.subtree_of(2).walk()] == [2, 3]

    def test_deep_subtree_serializes(self) -> None:
        with Hierarchy("memory://") as forest:
            forest.add_root(0)
            for i in range(1, 1600):
                forest.add_child(i, i - 1)
            tree = forest.subtree_of(0)
            assert tree.descendant_count() == 1599
            data = tree.to_dict()
        assert data["id"] == 0
        assert data["children"][0]["children"][0]["id"] == 2

    def test_check_integrity(self, hierarchy: Hierarchy) -> None:
        _populate(hierarchy)
        assert hierarchy.check_integrity(1).descendant_count() == 3

    def test_delete_leaf_and_subtree(self, hierarchy: Hierarchy) -> None:
        _populate(hierarchy)
        with pytest.raises(HasChildrenError):
            hierarchy.delete_leaf(2)
        assert hierarchy.delete_leaf(3).id == 3
        assert sorted(hierarchy.delete_subtree(1)) == [1, 2, 4]
        assert [n.id for n in hierarchy.roots()] == ["r"]

    def test_unit_of_work_groups_mutations(self, hierarchy: Hierarchy) -> None:
        with pytest.raises(NotFoundError):
            with hierarchy.unit_of_work():
                hierarchy.add_root(1)
                hierarchy.add_child(2, 1)
                hierarchy.add_child(3, 99)
        assert hierarchy.count() == 0

    def test_native_scans_agree(self) -> None:
        with Hierarchy("sqlite://:memory:", native_scans=True) as forest:
            _populate(forest)
            assert [n.id for n in forest.ancestors_of(3)] == [2, 1]
            assert {n.id for n in forest.descendants_of(1)} == {2, 3, 4}


# ===================================================================
# Shutdown
# ===================================================================


class TestClose:
    """Every operation fails once the hierarchy is closed."""

    @pytest.mark.parametrize(
        "call",
        [
            lambda f: f.get_node(1),
            lambda f: f.roots(),
            lambda f: f.count(),
            lambda f: f.children_of(1),
            lambda f: f.parent_of(1),
            lambda f: f.root_of(1),
            lambda f: f.ancestors_of(1),
            lambda f: f.descendants_of(1),
            lambda f: f.subtree_of(1),
            lambda f: f.tree_of(1),
            lambda f: f.check_integrity(1),
            lambda f: f.add_root(2),
            lambda f: f.add_child(2, 1),
            lambda f: f.delete_leaf(1),
            lambda f: f.delete_subtree(1),
            lambda f: f.repository,
        ],
    )
    def test_operations_fail_after_close(self, call) -> None:
        forest = Hierarchy("memory://")
        forest.add_root(1)
        forest.close()
        with pytest.raises(ClosedError):
            call(forest)

    def test_unit_of_work_fails_after_close(self) -> None:
        forest = Hierarchy("memory://")
        forest.close()
        with pytest.raises(ClosedError):
            with forest.unit_of_work():
                pass

    def test_close_is_idempotent(self) -> None:
        forest = Hierarchy("sqlite://:memory:")
        forest.close()
        forest.close()
        assert forest.closed

    def test_close_releases_repository(self) -> None:
        forest = Hierarchy("sqlite://:memory:")
        repo = forest.repository
        forest.close()
        with pytest.raises(ClosedError):
            repo.count()
