"""FastAPI router for Arbor hierarchies.

Exposes REST endpoints for node lookup, structural queries (children,
parent, root, ancestors, descendants, subtree) and mutations (add,
delete leaf, delete subtree). Designed to be mounted at /api/arbor/ by
the parent application.

All endpoint functions are synchronous (not async) because the
underlying repositories use synchronous calls. FastAPI runs sync
handlers in a thread pool automatically; the SQLite repository
serializes access with its own lock.

Node IDs in paths and bodies pass through ``InputValidator.validate_node_id``.
A segment in canonical integer form (``42``, ``-3``) names the integer node;
any other text, including ``007``, names a string node. A string ID that
looks like a canonical integer, such as ``"42"`` created through the
library, is therefore not addressable over HTTP. Integer IDs outside the
signed 64-bit range are rejected with 422.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from arbor.src.errors import (
    AlreadyExistsError,
    ArborError,
    HasChildrenError,
    IntegrityError,
    NotFoundError,
)
from arbor.src.hierarchy import Hierarchy
from arbor.src.models import Node, NodeId
from shared.hardening import ErrorFormatter, InputValidator, SystemHealthChecker, ValidationError

logger = logging.getLogger(__name__)

router = APIRouter()

_validator = InputValidator()
_formatter = ErrorFormatter()

# ---------------------------------------------------------------------------
# Module-level hierarchy instance (initialized by init_arbor)
# ---------------------------------------------------------------------------

_hierarchy: Hierarchy | None = None


def init_arbor(dsn: str = "sqlite://:memory:", **options: Any) -> Hierarchy:
    """Open the hierarchy backing the router.

    Call this once at application startup before any requests are served.
    A previously opened hierarchy is closed first.

    Args:
        dsn: Store descriptor.
        **options: Forwarded to ``Hierarchy`` (persist_children, native_scans).

    Returns:
        The opened Hierarchy.
    """
    global _hierarchy

    if _hierarchy is not None:
        _hierarchy.close()
    _hierarchy = Hierarchy(dsn, **options)
    return _hierarchy


def shutdown_arbor() -> None:
    """Close the hierarchy backing the router, if any."""
    global _hierarchy

    if _hierarchy is not None:
        _hierarchy.close()
        _hierarchy = None


def get_hierarchy() -> Hierarchy:
    """Return the initialized Hierarchy or raise.

    Raises:
        HTTPException: If the hierarchy has not been initialized.
    """
    if _hierarchy is None:
        raise HTTPException(status_code=500, detail="Arbor storage not initialized")
    return _hierarchy


def _parse_id(raw: Any) -> NodeId:
    try:
        return _validator.validate_node_id(raw)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


def _http_error(exc: ArborError) -> HTTPException:
    """Translate an ArborError into an HTTPException with a safe payload."""
    if isinstance(exc, NotFoundError):
        status = 404
    elif isinstance(exc, (AlreadyExistsError, HasChildrenError)):
        status = 409
    elif isinstance(exc, IntegrityError):
        status = 422
    else:
        status = 500
    if status >= 500:
        logger.error("Hierarchy operation failed: %s", exc)
        friendly = _formatter.format_storage_error(exc)
    else:
        friendly = _formatter.format_hierarchy_error(exc)
    return HTTPException(status_code=status, detail=friendly.to_dict())


def _node_list(nodes: list[Node]) -> list[dict[str, Any]]:
    return [n.to_dict() for n in nodes]


# ---------------------------------------------------------------------------
# Pydantic request models
# ---------------------------------------------------------------------------


class NodeCreate(BaseModel):
    """Request body for creating a node. A null parent creates a root."""

    id: int | str = Field(..., description="Node ID, an integer or a short string")
    parent_id: int | str | None = Field(default=None, description="Parent ID; null creates a root")


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


@router.get("/health")
def health_check() -> dict[str, Any]:
    """Return Arbor service health status.

    Returns:
        Dict with status, version, storage availability, and checks.
    """
    checks = SystemHealthChecker(_hierarchy).full_check()
    return {
        "status": "ok" if all(c.status == "healthy" for c in checks) else "degraded",
        "service": "arbor",
        "version": "0.1.0",
        "storage_initialized": _hierarchy is not None,
        "checks": [c.to_dict() for c in checks],
    }


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


@router.get("/roots")
def list_roots() -> dict[str, Any]:
    """List every root in the forest."""
    try:
        return {"roots": _node_list(get_hierarchy().roots())}
    except ArborError as exc:
        raise _http_error(exc) from exc


@router.get("/nodes/{node_id}")
def get_node(node_id: str) -> dict[str, Any]:
    """Get a node by ID."""
    nid = _parse_id(node_id)
    try:
        node = get_hierarchy().get_node(nid)
    except ArborError as exc:
        raise _http_error(exc) from exc
    if node is None:
        raise HTTPException(status_code=404, detail="Node not found")
    return node.to_dict()


@router.get("/nodes/{node_id}/children")
def get_children(node_id: str) -> dict[str, Any]:
    """Direct children of a node, ordered by ID."""
    nid = _parse_id(node_id)
    try:
        return {"node_id": nid, "children": _node_list(get_hierarchy().children_of(nid))}
    except ArborError as exc:
        raise _http_error(exc) from exc


@router.get("/nodes/{node_id}/parent")
def get_parent(node_id: str) -> dict[str, Any]:
    """Direct parent of a node; ``parent`` is null for a root."""
    nid = _parse_id(node_id)
    try:
        parent = get_hierarchy().parent_of(nid)
    except ArborError as exc:
        raise _http_error(exc) from exc
    return {"node_id": nid, "parent": parent.to_dict() if parent else None}


@router.get("/nodes/{node_id}/root")
def get_root(node_id: str) -> dict[str, Any]:
    """Root of the node's tree."""
    nid = _parse_id(node_id)
    try:
        return {"node_id": nid, "root": get_hierarchy().root_of(nid).to_dict()}
    except ArborError as exc:
        raise _http_error(exc) from exc


@router.get("/nodes/{node_id}/ancestors")
def get_ancestors(node_id: str) -> dict[str, Any]:
    """Ancestors of a node, nearest parent first."""
    nid = _parse_id(node_id)
    try:
        return {"node_id": nid, "ancestors": _node_list(get_hierarchy().ancestors_of(nid))}
    except ArborError as exc:
        raise _http_error(exc) from exc


@router.get("/nodes/{node_id}/descendants")
def get_descendants(node_id: str) -> dict[str, Any]:
    """Every descendant of a node (the node itself excluded)."""
    nid = _parse_id(node_id)
    try:
        nodes = get_hierarchy().descendants_of(nid)
    except ArborError as exc:
        raise _http_error(exc) from exc
    return {"node_id": nid, "count": len(nodes), "descendants": _node_list(nodes)}


@router.get("/nodes/{node_id}/tree")
def get_subtree(node_id: str) -> dict[str, Any]:
    """The node's subtree as nested dictionaries."""
    nid = _parse_id(node_id)
    try:
        tree = get_hierarchy().subtree_of(nid)
    except ArborError as exc:
        raise _http_error(exc) from exc
    return {"node_id": nid, "size": len(tree), "tree": tree.to_dict()}


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------


@router.post("/nodes", status_code=201)
def create_node(body: NodeCreate) -> dict[str, Any]:
    """Create a root (``parent_id`` null) or a child node."""
    nid = _parse_id(body.id)
    hierarchy = get_hierarchy()
    try:
        if body.parent_id is None:
            node = hierarchy.add_root(nid)
        else:
            node = hierarchy.add_child(nid, _parse_id(body.parent_id))
    except ArborError as exc:
        raise _http_error(exc) from exc
    return node.to_dict()


@router.delete("/nodes/{node_id}")
def delete_node(node_id: str, cascade: bool = False) -> dict[str, Any]:
    """Delete a leaf, or with ``cascade=true`` the whole subtree."""
    nid = _parse_id(node_id)
    hierarchy = get_hierarchy()
    try:
        if cascade:
            removed = hierarchy.delete_subtree(nid)
        else:
            removed = [hierarchy.delete_leaf(nid).id]
    except ArborError as exc:
        raise _http_error(exc) from exc
    return {"deleted": True, "removed": removed}
