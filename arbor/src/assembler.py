"""Tree assembly from flat node collections.

``assemble_tree`` turns an unordered list of nodes (typically a closure
result plus its top node) into a linked ``Tree``. It is a pure function:
no store access, and the input nodes are copied rather than mutated.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import replace

from arbor.src.errors import (
    CycleDetectedError,
    DanglingParentError,
    DuplicateNodeError,
    MultipleRootsError,
    NoRootError,
)
from arbor.src.models import Node, NodeId, NodeLike, Tree, id_sort_key


def _copy(node: NodeLike) -> Node:
    if isinstance(node, Node):
        return replace(node, children=[])
    return Node(id=node.id, parent_id=node.parent_id, root_id=node.root_id)


def assemble_tree(nodes: Iterable[NodeLike], root_id: NodeId | None = None) -> Tree:
    """Reconstruct a single rooted tree from a flat node collection.

    Args:
        nodes: Members of the tree, in any order.
        root_id: Treat this member as the root even if it has a parent
            outside the collection (subtree assembly). When None, the root
            is the single parentless member.

    Returns:
        Tree whose members carry derived ``children`` lists ordered by ID.

    Raises:
        DuplicateNodeError: If an ID appears more than once.
        MultipleRootsError: If more than one member is parentless.
        NoRootError: If no member is parentless, or ``root_id`` is missing.
        DanglingParentError: If a member's parent is not in the collection.
        CycleDetectedError: If some members form a loop detached from the root.
    """
    index: dict[NodeId, Node] = {}
    for node in nodes:
        if node.id in index:
            raise DuplicateNodeError(
                "Node appears more than once", operation="assemble_tree", node_id=node.id
            )
        index[node.id] = _copy(node)

    if root_id is not None:
        if root_id not in index:
            raise NoRootError(
                "Requested root is not in the node set",
                operation="assemble_tree",
                node_id=root_id,
            )
        root = index[root_id]
    else:
        candidates = [n for n in index.values() if n.parent_id is None]
        if len(candidates) > 1:
            ids = sorted((n.id for n in candidates), key=id_sort_key)
            raise MultipleRootsError(
                f"Node set has {len(candidates)} roots: {ids}",
                operation="assemble_tree",
                node_id=ids[0],
            )
        if not candidates:
            raise NoRootError("Node set has no root", operation="assemble_tree")
        root = candidates[0]

    for node_id in sorted(index, key=id_sort_key):
        node = index[node_id]
        if node is root:
            continue
        if node.parent_id is None:
            raise MultipleRootsError(
                "Parentless node below the requested root",
                operation="assemble_tree",
                node_id=node.id,
            )
        parent = index.get(node.parent_id)
        if parent is None:
            raise DanglingParentError(
                f"Parent {node.parent_id!r} is not in the node set",
                operation="assemble_tree",
                node_id=node.id,
            )
        parent.children.append(node.id)

    tree = Tree(root=root, nodes=index)
    reached = {n.id for n in tree.walk()}
    if len(reached) != len(index):
        stranded = sorted((i for i in index if i not in reached), key=id_sort_key)
        raise CycleDetectedError(
            f"Members unreachable from the root: {stranded}",
            operation="assemble_tree",
            node_id=stranded[0],
        )
    return tree
