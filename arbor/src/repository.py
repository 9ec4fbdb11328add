"""Repository contract consumed by the hierarchy engine.

``NodeRepository`` lists the read and write primitives the closure
engine and mutator need. Any object implementing these methods can
back a ``Hierarchy``; ``InMemoryNodeRepository`` is the dictionary-backed
implementation used for tests and ephemeral forests, and
``arbor.src.storage.SQLiteNodeRepository`` is the durable one.
"""

from __future__ import annotations

import copy
import logging
import threading
from collections import deque
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import replace
from typing import Protocol, runtime_checkable

from arbor.src.errors import AlreadyExistsError, ClosedError, NotFoundError
from arbor.src.models import Node, NodeId, id_sort_key

logger = logging.getLogger(__name__)


def _detach(node: Node) -> Node:
    """Copy a node with a fresh, empty children list."""
    return replace(node, children=[])


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class NodeRepository(Protocol):
    """Protocol for hierarchy persistence.

    Pure lookups return ``None`` for missing nodes. Only ``get_root``
    raises ``NotFoundError``, since a node without a root is an
    integrity violation rather than an absent value.
    """

    def get_by_id(self, node_id: NodeId) -> Node | None:
        """Fetch a node by ID, or None."""
        ...

    def get_children(self, node_id: NodeId) -> list[Node]:
        """All nodes whose parent is ``node_id``, ordered by ID."""
        ...

    def get_parent(self, node_id: NodeId) -> Node | None:
        """The parent of ``node_id``, or None for a root or unknown ID."""
        ...

    def get_root(self, node_id: NodeId) -> Node:
        """The node whose ID equals the target's ``root_id``."""
        ...

    def scan_descendants(self, node_id: NodeId) -> list[Node]:
        """Every node reachable below ``node_id`` in one bulk read."""
        ...

    def scan_ancestors(self, node_id: NodeId) -> list[Node]:
        """Every node above ``node_id``, nearest first, in one bulk read."""
        ...

    def list_roots(self) -> list[Node]:
        """All parentless nodes, ordered by ID."""
        ...

    def count(self) -> int:
        """Total number of stored nodes."""
        ...

    def stored_child_ids(self, node_id: NodeId) -> list[NodeId]:
        """The persisted children list last written by ``update_children``."""
        ...

    def insert(self, node: Node) -> Node:
        """Insert a node; raises AlreadyExistsError on ID collision."""
        ...

    def delete(self, node_id: NodeId) -> bool:
        """Delete a node; True if a row was removed."""
        ...

    def update_children(self, node_id: NodeId, child_ids: list[NodeId]) -> None:
        """Overwrite the persisted children list of a node."""
        ...

    def unit_of_work(self) -> Iterator[None]:
        """Context manager grouping reads and writes atomically."""
        ...

    def close(self) -> None:
        """Release the underlying store."""
        ...


# ---------------------------------------------------------------------------
# In-memory implementation
# ---------------------------------------------------------------------------


class InMemoryNodeRepository:
    """Dictionary-backed ``NodeRepository``.

    A unit of work snapshots the node table on entry and restores it if
    the block raises. Nested units of work join the outermost one.

    Example::

        repo = InMemoryNodeRepository()
        with repo.unit_of_work():
            repo.insert(Node.root(1))
    """

    def __init__(self) -> None:
        self._nodes: dict[NodeId, Node] = {}
        self._child_cache: dict[NodeId, list[NodeId]] = {}
        self._lock = threading.RLock()
        self._depth = 0
        self._closed = False

    def __enter__(self) -> InMemoryNodeRepository:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def close(self) -> None:
        """Drop all nodes. Safe to call more than once."""
        with self._lock:
            self._nodes.clear()
            self._child_cache.clear()
            self._closed = True

    def _check_open(self) -> None:
        if self._closed:
            raise ClosedError("Repository is closed")

    # ---------------------------------------------------------------
    # Reads
    # ---------------------------------------------------------------

    def get_by_id(self, node_id: NodeId) -> Node | None:
        with self._lock:
            self._check_open()
            node = self._nodes.get(node_id)
            return _detach(node) if node is not None else None

    def get_children(self, node_id: NodeId) -> list[Node]:
        with self._lock:
            self._check_open()
            kids = [_detach(n) for n in self._nodes.values() if n.parent_id == node_id]
        return sorted(kids, key=lambda n: id_sort_key(n.id))

    def get_parent(self, node_id: NodeId) -> Node | None:
        with self._lock:
            self._check_open()
            node = self._nodes.get(node_id)
            if node is None or node.parent_id is None:
                return None
            parent = self._nodes.get(node.parent_id)
            return _detach(parent) if parent is not None else None

    def get_root(self, node_id: NodeId) -> Node:
        with self._lock:
            self._check_open()
            node = self._nodes.get(node_id)
            if node is None:
                raise NotFoundError("Node not found", operation="get_root", node_id=node_id)
            root = self._nodes.get(node.root_id)
            if root is None:
                raise NotFoundError(
                    f"No root node found (root_id={node.root_id!r})",
                    operation="get_root",
                    node_id=node_id,
                )
            return _detach(root)

    def scan_descendants(self, node_id: NodeId) -> list[Node]:
        with self._lock:
            self._check_open()
            found: list[Node] = []
            seen = {node_id}
            queue = deque([node_id])
            while queue:
                current = queue.popleft()
                for child in self.get_children(current):
                    if child.id not in seen:
                        seen.add(child.id)
                        found.append(child)
                        queue.append(child.id)
            return found

    def scan_ancestors(self, node_id: NodeId) -> list[Node]:
        with self._lock:
            self._check_open()
            found: list[Node] = []
            bound = len(self._nodes)
            node = self._nodes.get(node_id)
            while node is not None and node.parent_id is not None and len(found) <= bound:
                node = self._nodes.get(node.parent_id)
                if node is not None:
                    found.append(_detach(node))
            return found

    def list_roots(self) -> list[Node]:
        with self._lock:
            self._check_open()
            roots = [_detach(n) for n in self._nodes.values() if n.parent_id is None]
        return sorted(roots, key=lambda n: id_sort_key(n.id))

    def count(self) -> int:
        with self._lock:
            self._check_open()
            return len(self._nodes)

    def stored_child_ids(self, node_id: NodeId) -> list[NodeId]:
        with self._lock:
            self._check_open()
            return list(self._child_cache.get(node_id, []))

    # ---------------------------------------------------------------
    # Writes
    # ---------------------------------------------------------------

    def insert(self, node: Node) -> Node:
        with self._lock:
            self._check_open()
            if node.id in self._nodes:
                raise AlreadyExistsError(
                    "Node already exists", operation="insert", node_id=node.id
                )
            self._nodes[node.id] = _detach(node)
            return node

    def delete(self, node_id: NodeId) -> bool:
        with self._lock:
            self._check_open()
            self._child_cache.pop(node_id, None)
            return self._nodes.pop(node_id, None) is not None

    def update_children(self, node_id: NodeId, child_ids: list[NodeId]) -> None:
        with self._lock:
            self._check_open()
            if node_id not in self._nodes:
                raise NotFoundError(
                    "Node not found", operation="update_children", node_id=node_id
                )
            self._child_cache[node_id] = list(child_ids)

    @contextmanager
    def unit_of_work(self) -> Iterator[None]:
        """Snapshot on entry, restore on any exception, always release the lock."""
        with self._lock:
            self._check_open()
            outermost = self._depth == 0
            if outermost:
                saved_nodes = dict(self._nodes)
                saved_cache = copy.deepcopy(self._child_cache)
            self._depth += 1
            try:
                yield
            except BaseException:
                if outermost:
                    self._nodes = saved_nodes
                    self._child_cache = saved_cache
                    logger.debug("Rolled back in-memory unit of work")
                raise
            finally:
                self._depth -= 1
