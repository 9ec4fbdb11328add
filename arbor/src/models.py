"""Arbor data models for single-parent hierarchies.

Defines the persisted ``Node`` record, the ``NodeLike`` capability
protocol the engine is written against, and the ``Tree`` produced by
the assembler. Children lists are always derived, never stored on the
node itself.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

NodeId = int | str


def id_sort_key(node_id: NodeId) -> tuple[bool, Any]:
    """Sort key ordering integer IDs before string IDs, each ascending.

    Matches SQLite's ORDER BY for an untyped column, so in-memory and
    on-disk repositories return children in the same order.
    """
    return (isinstance(node_id, str), node_id)


@runtime_checkable
class NodeLike(Protocol):
    """The fields the closure engine and assembler rely on."""

    id: NodeId
    parent_id: NodeId | None
    root_id: NodeId


@dataclass
class Node:
    """One member of a hierarchy.

    Attributes:
        id: Caller-assigned unique identifier (int or str).
        parent_id: ID of the direct parent, or None for a root.
        root_id: ID of the top-most ancestor; equals ``id`` for a root.
        children: Direct child IDs. Derived; only populated by the assembler.
        created_at: Creation timestamp.
    """

    id: NodeId
    parent_id: NodeId | None = None
    root_id: NodeId | None = None
    children: list[NodeId] = field(default_factory=list, compare=False)
    created_at: datetime = field(default_factory=datetime.now, compare=False)

    def __post_init__(self) -> None:
        if self.root_id is None and self.parent_id is None:
            self.root_id = self.id

    @property
    def is_root(self) -> bool:
        """True when the node has no parent."""
        return self.parent_id is None

    @classmethod
    def root(cls, node_id: NodeId) -> Node:
        """Build a root node (``root_id == id``)."""
        return cls(id=node_id, parent_id=None, root_id=node_id)

    @classmethod
    def child_of(cls, node_id: NodeId, parent: NodeLike) -> Node:
        """Build a child node that inherits the parent's root."""
        return cls(id=node_id, parent_id=parent.id, root_id=parent.root_id)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "id": self.id,
            "parent_id": self.parent_id,
            "root_id": self.root_id,
            "children": list(self.children),
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Node:
        """Deserialize from dictionary. ``children`` is ignored."""
        created = data.get("created_at")
        return cls(
            id=data["id"],
            parent_id=data.get("parent_id"),
            root_id=data.get("root_id"),
            created_at=datetime.fromisoformat(created) if created else datetime.now(),
        )


@dataclass
class Tree:
    """A rooted tree reconstructed from a flat node collection.

    Attributes:
        root: The tree's root node.
        nodes: Every member keyed by ID, with ``children`` populated.
    """

    root: Node
    nodes: dict[NodeId, Node] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.nodes)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self.nodes

    def children_of(self, node_id: NodeId) -> list[Node]:
        """Direct children of a member, ordered by ID."""
        return [self.nodes[c] for c in self.nodes[node_id].children]

    def walk(self, start: NodeId | None = None) -> Iterator[Node]:
        """Yield members depth-first, pre-order, starting at ``start`` or the root."""
        stack = [self.nodes[start if start is not None else self.root.id]]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(self.nodes[c] for c in reversed(node.children))

    def descendant_count(self, node_id: NodeId | None = None) -> int:
        """Count all transitive children of a member (the root by default)."""
        return sum(1 for _ in self.walk(node_id)) - 1

    def depth_of(self, node_id: NodeId) -> int:
        """Number of edges between a member and the root."""
        depth = 0
        current = self.nodes[node_id]
        while current.id != self.root.id:
            current = self.nodes[current.parent_id]
            depth += 1
        return depth

    def leaves(self) -> list[Node]:
        """Members without children, in walk order."""
        return [n for n in self.walk() if not n.children]

    def to_dict(self, node_id: NodeId | None = None) -> dict[str, Any]:
        """Nested dictionary rooted at ``node_id`` (the root by default).

        Built with an explicit stack, so tree depth is not limited by the
        interpreter's recursion limit.
        """

        def shell(node: Node) -> dict[str, Any]:
            return {
                "id": node.id,
                "parent_id": node.parent_id,
                "root_id": node.root_id,
                "children": [],
            }

        top = self.nodes[node_id if node_id is not None else self.root.id]
        result = shell(top)
        stack = [(top, result)]
        while stack:
            node, out = stack.pop()
            for child_id in node.children:
                child = self.nodes[child_id]
                child_out = shell(child)
                out["children"].append(child_out)
                stack.append((child, child_out))
        return result
