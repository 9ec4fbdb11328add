"""Shared fixtures for Arbor tests."""

from __future__ import annotations

from pathlib import Path

import pytest

from arbor.src.closure import ClosureEngine
from arbor.src.hierarchy import Hierarchy
from arbor.src.models import Node
from arbor.src.mutations import HierarchyMutator
from arbor.src.repository import InMemoryNodeRepository
from arbor.src.storage import SQLiteNodeRepository


@pytest.fixture
def memory_repo() -> InMemoryNodeRepository:
    """Empty dictionary-backed repository."""
    return InMemoryNodeRepository()


@pytest.fixture
def sqlite_repo() -> SQLiteNodeRepository:
    """In-memory SQLite repository with schema initialized."""
    repo = SQLiteNodeRepository(":memory:")
    repo.initialize_schema()
    yield repo
    repo.close()


@pytest.fixture(params=["memory", "sqlite"])
def repo(request: pytest.FixtureRequest):
    """Each repository implementation in turn."""
    if request.param == "memory":
        yield InMemoryNodeRepository()
        return
    store = SQLiteNodeRepository(":memory:")
    store.initialize_schema()
    yield store
    store.close()


@pytest.fixture
def chain_repo(repo):
    """Repository holding the chain 1 -> 2 -> 3 and a sibling 4 under 1.

    Layout::

        1
        ├── 2
        │   └── 3
        └── 4
        10 (separate root)
    """
    repo.insert(Node.root(1))
    repo.insert(Node(id=2, parent_id=1, root_id=1))
    repo.insert(Node(id=3, parent_id=2, root_id=1))
    repo.insert(Node(id=4, parent_id=1, root_id=1))
    repo.insert(Node.root(10))
    return repo


@pytest.fixture
def closure(chain_repo) -> ClosureEngine:
    """Walking closure engine over the chain repository."""
    return ClosureEngine(chain_repo)


@pytest.fixture
def mutator(repo) -> HierarchyMutator:
    """Mutator over an empty repository."""
    return HierarchyMutator(repo, ClosureEngine(repo))


@pytest.fixture
def cyclic_repo(memory_repo: InMemoryNodeRepository) -> InMemoryNodeRepository:
    """Corrupted store: 5 -> 6 -> 7 -> 5 hanging below root 1 via 4."""
    memory_repo.insert(Node.root(1))
    memory_repo.insert(Node(id=4, parent_id=1, root_id=1))
    memory_repo.insert(Node(id=5, parent_id=7, root_id=1))
    memory_repo.insert(Node(id=6, parent_id=5, root_id=1))
    memory_repo.insert(Node(id=7, parent_id=6, root_id=1))
    return memory_repo


@pytest.fixture
def hierarchy() -> Hierarchy:
    """Hierarchy over an in-memory SQLite database."""
    forest = Hierarchy("sqlite://:memory:")
    yield forest
    forest.close()


@pytest.fixture
def db_file(tmp_path: Path) -> Path:
    """Path for an on-disk test database."""
    return tmp_path / "arbor.db"
