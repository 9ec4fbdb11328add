"""Ancestor and descendant closures over the parent relation.

The engine reads exclusively through a ``NodeRepository`` and never
writes. Walks are bounded: the ancestor walk fails once it has taken
more hops than there are nodes or revisits an ID, and the descendant
expansion tracks visited IDs, so a corrupted (cyclic) store cannot
hang a query.

Closures computed outside a unit of work are read-committed: if a
mutation runs concurrently the result may reflect part of it. Callers
that need a consistent view wrap the query in
``repository.unit_of_work()``.
"""

from __future__ import annotations

import logging
from collections import deque

from arbor.src.assembler import assemble_tree
from arbor.src.errors import (
    ChildrenDesyncError,
    CycleDetectedError,
    DanglingParentError,
    IntegrityError,
    NotFoundError,
)
from arbor.src.models import Node, NodeId, Tree, id_sort_key
from arbor.src.repository import NodeRepository

logger = logging.getLogger(__name__)


class ClosureEngine:
    """Read-only structural queries over a repository.

    Args:
        repository: Data source for every query.
        native_scans: Use the repository's bulk ``scan_*`` reads instead
            of walking one level at a time. Results are identical.

    Example::

        engine = ClosureEngine(repo)
        engine.ancestors_of(3)    # [Node(2), Node(1)]
        engine.descendants_of(1)  # [Node(2), Node(3)]
    """

    def __init__(self, repository: NodeRepository, *, native_scans: bool = False) -> None:
        self._repo = repository
        self.native_scans = native_scans

    def _require(self, node_id: NodeId, operation: str) -> Node:
        node = self._repo.get_by_id(node_id)
        if node is None:
            raise NotFoundError("Node not found", operation=operation, node_id=node_id)
        return node

    # ---------------------------------------------------------------
    # Single-step lookups
    # ---------------------------------------------------------------

    def children_of(self, node_id: NodeId) -> list[Node]:
        """Direct children ordered by ID.

        Raises:
            NotFoundError: If the node does not exist.
        """
        self._require(node_id, "children_of")
        return self._repo.get_children(node_id)

    def parent_of(self, node_id: NodeId) -> Node | None:
        """Direct parent, or None for a root.

        Raises:
            NotFoundError: If the node does not exist.
            DanglingParentError: If the stored parent reference is broken.
        """
        node = self._require(node_id, "parent_of")
        if node.parent_id is None:
            return None
        parent = self._repo.get_parent(node_id)
        if parent is None:
            raise DanglingParentError(
                f"Parent {node.parent_id!r} does not exist",
                operation="parent_of",
                node_id=node_id,
            )
        return parent

    def root_of(self, node_id: NodeId) -> Node:
        """The root of the node's tree (the node itself for a root).

        Raises:
            NotFoundError: If the node is unknown or its root is missing.
        """
        self._require(node_id, "root_of")
        try:
            return self._repo.get_root(node_id)
        except NotFoundError as exc:
            logger.warning("Node %r has no reachable root", node_id)
            raise NotFoundError(
                "No root reachable; the forest is corrupted",
                operation="root_of",
                node_id=node_id,
            ) from exc

    # ---------------------------------------------------------------
    # Closures
    # ---------------------------------------------------------------

    def ancestors_of(self, node_id: NodeId) -> list[Node]:
        """Every ancestor, nearest parent first and root last.

        The node itself is excluded; a root has no ancestors.

        Raises:
            NotFoundError: If the node does not exist.
            CycleDetectedError: If the walk revisits an ID or exceeds the
                total node count.
            DanglingParentError: If a parent reference points nowhere.
        """
        start = self._require(node_id, "ancestors_of")
        if self.native_scans:
            chain = self._repo.scan_ancestors(node_id)
            self._check_chain(start, chain)
            return chain

        bound = self._repo.count()
        visited = {start.id}
        chain: list[Node] = []
        current = start
        while current.parent_id is not None:
            if len(chain) >= bound:
                raise self._cycle(node_id, f"walk exceeded {bound} hops")
            parent = self._repo.get_parent(current.id)
            if parent is None:
                raise DanglingParentError(
                    f"Parent {current.parent_id!r} of {current.id!r} does not exist",
                    operation="ancestors_of",
                    node_id=node_id,
                )
            if parent.id in visited:
                raise self._cycle(node_id, f"{parent.id!r} revisited")
            visited.add(parent.id)
            chain.append(parent)
            current = parent
        logger.debug("ancestors_of(%r): %d hops", node_id, len(chain))
        return chain

    def descendants_of(self, node_id: NodeId) -> list[Node]:
        """Every node reachable below ``node_id``, excluding it.

        Breadth-first, children in ID order. Each node is visited once,
        so the expansion terminates even over a cyclic store.

        Raises:
            NotFoundError: If the node does not exist.
        """
        self._require(node_id, "descendants_of")
        if self.native_scans:
            return self._dedupe(node_id, self._repo.scan_descendants(node_id))

        visited = {node_id}
        found: list[Node] = []
        queue = deque([node_id])
        while queue:
            for child in self._repo.get_children(queue.popleft()):
                if child.id in visited:
                    logger.warning(
                        "descendants_of(%r): %r reached twice; parent relation is cyclic",
                        node_id,
                        child.id,
                    )
                    continue
                visited.add(child.id)
                found.append(child)
                queue.append(child.id)
        logger.debug("descendants_of(%r): %d nodes", node_id, len(found))
        return found

    def subtree_of(self, node_id: NodeId) -> Tree:
        """The node and all its descendants assembled into a ``Tree``.

        Raises:
            NotFoundError: If the node does not exist.
        """
        top = self._require(node_id, "subtree_of")
        return assemble_tree([top, *self.descendants_of(node_id)], root_id=top.id)

    def check_integrity(self, root_id: NodeId, *, compare_stored_children: bool = False) -> Tree:
        """Assemble a whole tree and verify its invariants.

        Checks that ``root_id`` names a root, that every member records
        that root, and optionally that persisted children lists match
        the parent relation.

        Returns:
            The assembled tree.

        Raises:
            NotFoundError: If the root does not exist.
            IntegrityError: On any violated invariant.
        """
        root = self._require(root_id, "check_integrity")
        if not root.is_root or root.root_id != root.id:
            raise IntegrityError(
                "Node is not a root", operation="check_integrity", node_id=root_id
            )
        tree = assemble_tree([root, *self.descendants_of(root_id)])
        for member in tree.nodes.values():
            if member.root_id != root.id:
                raise IntegrityError(
                    f"Member records root {member.root_id!r}, expected {root.id!r}",
                    operation="check_integrity",
                    node_id=member.id,
                )
            if compare_stored_children:
                stored = sorted(self._repo.stored_child_ids(member.id), key=id_sort_key)
                if stored != member.children:
                    raise ChildrenDesyncError(
                        f"Stored children {stored} differ from derived {member.children}",
                        operation="check_integrity",
                        node_id=member.id,
                    )
        return tree

    # ---------------------------------------------------------------
    # Helpers
    # ---------------------------------------------------------------

    @staticmethod
    def _cycle(node_id: NodeId, detail: str) -> CycleDetectedError:
        logger.warning("Cycle detected from %r: %s", node_id, detail)
        return CycleDetectedError(
            f"Parent relation is cyclic ({detail})", operation="ancestors_of", node_id=node_id
        )

    def _check_chain(self, start: Node, chain: list[Node]) -> None:
        seen = {start.id}
        for node in chain:
            if node.id in seen:
                raise self._cycle(start.id, f"{node.id!r} revisited")
            seen.add(node.id)
        tail = chain[-1] if chain else start
        if tail.parent_id is not None:
            raise DanglingParentError(
                f"Parent {tail.parent_id!r} of {tail.id!r} does not exist",
                operation="ancestors_of",
                node_id=start.id,
            )

    @staticmethod
    def _dedupe(node_id: NodeId, nodes: list[Node]) -> list[Node]:
        seen = {node_id}
        unique = []
        for node in nodes:
            if node.id not in seen:
                seen.add(node.id)
                unique.append(node)
        return unique
