"""Hierarchy facade: one object for construction, queries, mutations, shutdown.

``Hierarchy`` opens the repository named by a store descriptor, wires
the closure engine and mutator to it, and refuses further work once
closed.

Consistency: reads outside a unit of work are read-committed. A
closure computed while another thread mutates the same tree may see
part of that mutation; wrap the query in ``hierarchy.unit_of_work()``
for a consistent view.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from arbor.src.assembler import assemble_tree
from arbor.src.closure import ClosureEngine
from arbor.src.config import ArborConfig, StoreKind
from arbor.src.errors import ClosedError
from arbor.src.models import Node, NodeId, Tree
from arbor.src.mutations import HierarchyMutator
from arbor.src.repository import InMemoryNodeRepository, NodeRepository
from arbor.src.storage import SQLiteNodeRepository

logger = logging.getLogger(__name__)


def open_repository(config: ArborConfig) -> NodeRepository:
    """Build the repository a configuration describes.

    Raises:
        ConfigError: If the descriptor is invalid.
        StorageFailureError: If the store cannot be opened.
    """
    descriptor = config.validate()
    if descriptor.kind is StoreKind.MEMORY:
        return InMemoryNodeRepository()
    repo = SQLiteNodeRepository(descriptor.path)
    if config.create_schema:
        try:
            repo.initialize_schema()
        except Exception:
            repo.close()
            raise
    return repo


class Hierarchy:
    """A forest of single-parent trees backed by a repository.

    Args:
        dsn: Store descriptor, e.g. ``"sqlite:///arbor.db"`` or ``"memory://"``.
        persist_children: Maintain stored children lists (see ``ArborConfig``).
        native_scans: Use the repository's bulk closure scans.
        repository: Use this repository instead of opening one from ``dsn``.

    Example::

        with Hierarchy("memory://") as forest:
            forest.add_root(1)
            forest.add_child(2, 1)
            forest.ancestors_of(2)  # [Node(id=1, ...)]
    """

    def __init__(
        self,
        dsn: str = "",
        *,
        persist_children: bool = False,
        native_scans: bool = False,
        repository: NodeRepository | None = None,
    ) -> None:
        self.config = ArborConfig(
            dsn=dsn, persist_children=persist_children, native_scans=native_scans
        )
        self._repo = repository if repository is not None else open_repository(self.config)
        self._closure = ClosureEngine(self._repo, native_scans=native_scans)
        self._mutator = HierarchyMutator(
            self._repo, self._closure, persist_children=persist_children
        )
        self._closed = False
        logger.debug("Opened hierarchy on %s", dsn or type(self._repo).__name__)

    @classmethod
    def from_config(cls, config: ArborConfig) -> Hierarchy:
        """Open a hierarchy from an ``ArborConfig``."""
        repo = open_repository(config)
        return cls(
            config.dsn,
            persist_children=config.persist_children,
            native_scans=config.native_scans,
            repository=repo,
        )

    def __enter__(self) -> Hierarchy:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def repository(self) -> NodeRepository:
        self._check_open()
        return self._repo

    def close(self) -> None:
        """Release the repository. Later calls are no-ops."""
        if self._closed:
            return
        self._closed = True
        self._repo.close()
        logger.debug("Closed hierarchy")

    def _check_open(self) -> None:
        if self._closed:
            raise ClosedError("Hierarchy is closed")

    @contextmanager
    def unit_of_work(self) -> Iterator[None]:
        """Group several calls into one atomic, consistent unit."""
        self._check_open()
        with self._repo.unit_of_work():
            yield

    # ---------------------------------------------------------------
    # Queries
    # ---------------------------------------------------------------

    def get_node(self, node_id: NodeId) -> Node | None:
        """Point lookup; None if absent."""
        self._check_open()
        return self._repo.get_by_id(node_id)

    def exists(self, node_id: NodeId) -> bool:
        return self.get_node(node_id) is not None

    def roots(self) -> list[Node]:
        """Every root in the forest, ordered by ID."""
        self._check_open()
        return self._repo.list_roots()

    def count(self) -> int:
        self._check_open()
        return self._repo.count()

    def children_of(self, node_id: NodeId) -> list[Node]:
        self._check_open()
        return self._closure.children_of(node_id)

    def parent_of(self, node_id: NodeId) -> Node | None:
        self._check_open()
        return self._closure.parent_of(node_id)

    def root_of(self, node_id: NodeId) -> Node:
        self._check_open()
        return self._closure.root_of(node_id)

    def ancestors_of(self, node_id: NodeId) -> list[Node]:
        self._check_open()
        return self._closure.ancestors_of(node_id)

    def descendants_of(self, node_id: NodeId) -> list[Node]:
        self._check_open()
        return self._closure.descendants_of(node_id)

    def subtree_of(self, node_id: NodeId) -> Tree:
        """The node and its descendants as a ``Tree`` rooted at the node."""
        self._check_open()
        return self._closure.subtree_of(node_id)

    def tree_of(self, node_id: NodeId) -> Tree:
        """The whole tree containing ``node_id``, rooted at its root."""
        self._check_open()
        root = self._closure.root_of(node_id)
        return assemble_tree([root, *self._closure.descendants_of(root.id)])

    def check_integrity(self, root_id: NodeId) -> Tree:
        """Verify one tree's invariants; see ``ClosureEngine.check_integrity``."""
        self._check_open()
        return self._closure.check_integrity(
            root_id, compare_stored_children=self.config.persist_children
        )

    # ---------------------------------------------------------------
    # Mutations
    # ---------------------------------------------------------------

    def add_root(self, node_id: NodeId) -> Node:
        self._check_open()
        return self._mutator.add_root(node_id)

    def add_child(self, node_id: NodeId, parent_id: NodeId) -> Node:
        self._check_open()
        return self._mutator.add_child(node_id, parent_id)

    def delete_leaf(self, node_id: NodeId) -> Node:
        self._check_open()
        return self._mutator.delete_leaf(node_id)

    def delete_subtree(self, node_id: NodeId) -> list[NodeId]:
        self._check_open()
        return self._mutator.delete_subtree(node_id)
