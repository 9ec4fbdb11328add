"""Structural mutations: add roots and children, delete leaves and subtrees.

Each operation validates its preconditions through the closure engine
and writes through the repository inside a single unit of work, so a
failure at any step leaves the store exactly as it was.
"""

from __future__ import annotations

import logging

from arbor.src.closure import ClosureEngine
from arbor.src.errors import AlreadyExistsError, HasChildrenError, NotFoundError
from arbor.src.models import Node, NodeId
from arbor.src.repository import NodeRepository

logger = logging.getLogger(__name__)


class HierarchyMutator:
    """Write-side operations over a repository.

    Args:
        repository: Store to read from and write to.
        closure: Engine used for precondition checks.
        persist_children: Maintain the repository's stored children lists
            and re-verify the affected tree after every mutation.
    """

    def __init__(
        self,
        repository: NodeRepository,
        closure: ClosureEngine,
        *,
        persist_children: bool = False,
    ) -> None:
        self._repo = repository
        self._closure = closure
        self.persist_children = persist_children

    def add_root(self, node_id: NodeId) -> Node:
        """Create a new root node.

        Raises:
            AlreadyExistsError: If ``node_id`` is taken.
        """
        with self._repo.unit_of_work():
            self._ensure_absent(node_id, "add_root")
            node = self._repo.insert(Node.root(node_id))
            if self.persist_children:
                self._repo.update_children(node_id, [])
        logger.info("Added root %r", node_id)
        return node

    def add_child(self, node_id: NodeId, parent_id: NodeId) -> Node:
        """Create a node under an existing parent, inheriting its root.

        Raises:
            AlreadyExistsError: If ``node_id`` is taken.
            NotFoundError: If ``parent_id`` does not exist.
        """
        with self._repo.unit_of_work():
            self._ensure_absent(node_id, "add_child")
            parent = self._repo.get_by_id(parent_id)
            if parent is None:
                raise NotFoundError(
                    f"Parent {parent_id!r} not found", operation="add_child", node_id=node_id
                )
            node = self._repo.insert(Node.child_of(node_id, parent))
            if self.persist_children:
                self._repo.update_children(node_id, [])
                self._sync_children(parent_id, parent.root_id)
        logger.info("Added %r under %r (root %r)", node_id, parent_id, parent.root_id)
        return node

    def delete_leaf(self, node_id: NodeId) -> Node:
        """Delete a childless node.

        Returns:
            The deleted node.

        Raises:
            NotFoundError: If the node does not exist.
            HasChildrenError: If the node has children; nothing is deleted.
        """
        with self._repo.unit_of_work():
            node = self._repo.get_by_id(node_id)
            if node is None:
                raise NotFoundError("Node not found", operation="delete_leaf", node_id=node_id)
            children = self._repo.get_children(node_id)
            if children:
                raise HasChildrenError(
                    f"Node has {len(children)} children",
                    operation="delete_leaf",
                    node_id=node_id,
                )
            self._repo.delete(node_id)
            if self.persist_children and node.parent_id is not None:
                self._sync_children(node.parent_id, node.root_id)
        logger.info("Deleted leaf %r", node_id)
        return node

    def delete_subtree(self, node_id: NodeId) -> list[NodeId]:
        """Delete a node and all of its descendants atomically.

        Nodes are removed deepest first so the parent reference of every
        remaining row stays valid throughout the transaction.

        Returns:
            IDs of every removed node, the given node first.

        Raises:
            NotFoundError: If the node does not exist.
        """
        with self._repo.unit_of_work():
            node = self._repo.get_by_id(node_id)
            if node is None:
                raise NotFoundError("Node not found", operation="delete_subtree", node_id=node_id)
            removed = [node_id] + [d.id for d in self._closure.descendants_of(node_id)]
            for victim in reversed(removed):
                self._repo.delete(victim)
            if self.persist_children and node.parent_id is not None:
                self._sync_children(node.parent_id, node.root_id)
        logger.info("Deleted subtree %r (%d nodes)", node_id, len(removed))
        return removed

    # ---------------------------------------------------------------
    # Helpers
    # ---------------------------------------------------------------

    def _ensure_absent(self, node_id: NodeId, operation: str) -> None:
        if self._repo.get_by_id(node_id) is not None:
            raise AlreadyExistsError("Node already exists", operation=operation, node_id=node_id)

    def _sync_children(self, parent_id: NodeId, root_id: NodeId) -> None:
        """Rewrite a parent's stored children and re-check its tree."""
        child_ids = [c.id for c in self._repo.get_children(parent_id)]
        self._repo.update_children(parent_id, child_ids)
        self._closure.check_integrity(root_id, compare_stored_children=True)
