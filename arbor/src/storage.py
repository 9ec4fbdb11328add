"""SQLite-backed storage for Arbor hierarchies.

Implements the ``NodeRepository`` protocol on a single ``nodes`` table
with a self-referencing foreign key, recursive CTEs for the closure
scans, and explicit BEGIN/COMMIT/ROLLBACK transactions for units of
work.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

from arbor.src.errors import (
    AlreadyExistsError,
    ClosedError,
    NotFoundError,
    StorageFailureError,
)
from arbor.src.models import Node, NodeId

logger = logging.getLogger(__name__)

# ``id`` and ``parent_id`` are declared without a type so that integer
# and text IDs keep their storage class and compare exactly.
_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS nodes (
    id NOT NULL PRIMARY KEY,
    parent_id REFERENCES nodes(id),
    root_id NOT NULL,
    child_ids_json TEXT DEFAULT '[]',
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_nodes_parent
    ON nodes(parent_id);
CREATE INDEX IF NOT EXISTS idx_nodes_root
    ON nodes(root_id);
"""

# Depth is capped at the table size (second parameter) so a corrupted
# (cyclic) parent relation cannot make the recursion run forever.
_DESCENDANTS_SQL = """
WITH RECURSIVE sub(id, depth) AS (
    SELECT id, 1 FROM nodes WHERE parent_id = ?
    UNION
    SELECT n.id, sub.depth + 1
    FROM nodes n
    JOIN sub ON n.parent_id = sub.id
    WHERE sub.depth < ?
)
SELECT nodes.*
FROM nodes
JOIN (SELECT id, MIN(depth) AS depth FROM sub GROUP BY id) s ON nodes.id = s.id
ORDER BY s.depth, nodes.id
"""

_ANCESTORS_SQL = """
WITH RECURSIVE up(id, parent_id, depth) AS (
    SELECT id, parent_id, 0 FROM nodes WHERE id = ?
    UNION ALL
    SELECT n.id, n.parent_id, up.depth + 1
    FROM nodes n
    JOIN up ON n.id = up.parent_id
    WHERE up.depth <= ?
)
SELECT nodes.*
FROM up
JOIN nodes ON nodes.id = up.id
WHERE up.depth > 0
ORDER BY up.depth
"""


class SQLiteNodeRepository:
    """SQLite-backed ``NodeRepository``.

    The connection runs in autocommit mode; ``unit_of_work`` opens an
    explicit transaction and nested units of work use savepoints. A
    re-entrant lock serializes access so one repository can be shared
    across the threads of a web server.

    Args:
        db_path: Path to SQLite database file, or ':memory:' for in-memory.
        check_same_thread: Forwarded to ``sqlite3.connect``.

    Example::

        with SQLiteNodeRepository("arbor.db") as repo:
            repo.initialize_schema()
            repo.insert(Node.root(1))
    """

    def __init__(self, db_path: str | Path = ":memory:", *, check_same_thread: bool = False) -> None:
        self._db_path = str(db_path)
        try:
            self._conn = sqlite3.connect(
                self._db_path,
                isolation_level=None,
                check_same_thread=check_same_thread,
            )
            self._conn.execute("PRAGMA foreign_keys = ON")
        except sqlite3.Error as exc:
            raise StorageFailureError(
                f"Cannot open database {self._db_path!r}: {exc}", operation="connect"
            ) from exc
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._depth = 0
        self._closed = False

    def __enter__(self) -> SQLiteNodeRepository:
        """Enter context manager."""
        return self

    def __exit__(self, *args: Any) -> None:
        """Close the database connection."""
        self.close()

    @property
    def db_path(self) -> str:
        return self._db_path

    def close(self) -> None:
        """Close the database connection. Safe to call more than once."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._conn.close()
            logger.debug("Closed database %s", self._db_path)

    def initialize_schema(self) -> None:
        """Create the nodes table and indexes if they don't exist."""
        with self._lock:
            self._check_open()
            try:
                self._conn.executescript(_SCHEMA_SQL)
            except sqlite3.Error as exc:
                raise StorageFailureError(
                    f"Schema initialization failed: {exc}", operation="initialize_schema"
                ) from exc

    # ---------------------------------------------------------------
    # Internals
    # ---------------------------------------------------------------

    def _check_open(self) -> None:
        if self._closed:
            raise ClosedError("Repository is closed")

    def _execute(
        self, operation: str, sql: str, params: tuple[Any, ...] = (), node_id: Any = None
    ) -> sqlite3.Cursor:
        """Run one statement under the lock, wrapping driver errors."""
        with self._lock:
            self._check_open()
            try:
                return self._conn.execute(sql, params)
            except (sqlite3.Error, OverflowError) as exc:
                raise StorageFailureError(
                    f"{operation} failed: {exc}", operation=operation, node_id=node_id
                ) from exc

    def _fetch_one(self, operation: str, sql: str, params: tuple[Any, ...], node_id: Any) -> Node | None:
        with self._lock:
            row = self._execute(operation, sql, params, node_id).fetchone()
        return self._row_to_node(row) if row is not None else None

    def _fetch_all(self, operation: str, sql: str, params: tuple[Any, ...], node_id: Any) -> list[Node]:
        with self._lock:
            rows = self._execute(operation, sql, params, node_id).fetchall()
        return [self._row_to_node(r) for r in rows]

    # ---------------------------------------------------------------
    # Reads
    # ---------------------------------------------------------------

    def get_by_id(self, node_id: NodeId) -> Node | None:
        """Fetch a node by ID.

        Args:
            node_id: The node's unique ID.

        Returns:
            Node or None if not found.
        """
        return self._fetch_one("get_by_id", "SELECT * FROM nodes WHERE id = ?", (node_id,), node_id)

    def get_children(self, node_id: NodeId) -> list[Node]:
        """Fetch the direct children of a node, ordered by ID."""
        return self._fetch_all(
            "get_children",
            "SELECT * FROM nodes WHERE parent_id = ? ORDER BY id ASC",
            (node_id,),
            node_id,
        )

    def get_parent(self, node_id: NodeId) -> Node | None:
        """Fetch the parent of a node; None for roots and unknown IDs."""
        return self._fetch_one(
            "get_parent",
            "SELECT p.* FROM nodes c JOIN nodes p ON p.id = c.parent_id WHERE c.id = ?",
            (node_id,),
            node_id,
        )

    def get_root(self, node_id: NodeId) -> Node:
        """Fetch the root of a node.

        Raises:
            NotFoundError: If the node or its root does not exist.
        """
        root = self._fetch_one(
            "get_root",
            "SELECT r.* FROM nodes c JOIN nodes r ON r.id = c.root_id WHERE c.id = ?",
            (node_id,),
            node_id,
        )
        if root is None:
            raise NotFoundError("No root node found", operation="get_root", node_id=node_id)
        return root

    def scan_descendants(self, node_id: NodeId) -> list[Node]:
        """All nodes below ``node_id`` via a recursive CTE, shallowest first."""
        with self._lock:
            bound = self.count()
            return self._fetch_all(
                "scan_descendants", _DESCENDANTS_SQL, (node_id, bound), node_id
            )

    def scan_ancestors(self, node_id: NodeId) -> list[Node]:
        """All nodes above ``node_id`` via a recursive CTE, nearest first."""
        with self._lock:
            bound = self.count()
            return self._fetch_all("scan_ancestors", _ANCESTORS_SQL, (node_id, bound), node_id)

    def list_roots(self) -> list[Node]:
        """All parentless nodes, ordered by ID."""
        return self._fetch_all(
            "list_roots", "SELECT * FROM nodes WHERE parent_id IS NULL ORDER BY id ASC", (), None
        )

    def count(self) -> int:
        """Total number of stored nodes."""
        with self._lock:
            return self._execute("count", "SELECT COUNT(*) FROM nodes").fetchone()[0]

    def stored_child_ids(self, node_id: NodeId) -> list[NodeId]:
        """Read the persisted children list (empty when never written)."""
        with self._lock:
            row = self._execute(
                "stored_child_ids",
                "SELECT child_ids_json FROM nodes WHERE id = ?",
                (node_id,),
                node_id,
            ).fetchone()
        if row is None:
            return []
        return json.loads(row["child_ids_json"] or "[]")

    # ---------------------------------------------------------------
    # Writes
    # ---------------------------------------------------------------

    def insert(self, node: Node) -> Node:
        """Insert a new node.

        Args:
            node: Node to insert.

        Returns:
            The inserted node.

        Raises:
            AlreadyExistsError: If a node with the same ID exists.
            StorageFailureError: On any other database error, including a
                parent_id that violates the foreign key.
        """
        with self._lock:
            self._check_open()
            try:
                self._conn.execute(
                    "INSERT INTO nodes (id, parent_id, root_id, created_at) VALUES (?, ?, ?, ?)",
                    (node.id, node.parent_id, node.root_id, node.created_at.isoformat()),
                )
            except sqlite3.IntegrityError as exc:
                if "UNIQUE" in str(exc) or "PRIMARY KEY" in str(exc):
                    raise AlreadyExistsError(
                        "Node already exists", operation="insert", node_id=node.id
                    ) from exc
                raise StorageFailureError(
                    f"insert failed: {exc}", operation="insert", node_id=node.id
                ) from exc
            except (sqlite3.Error, OverflowError) as exc:
                raise StorageFailureError(
                    f"insert failed: {exc}", operation="insert", node_id=node.id
                ) from exc
        return node

    def delete(self, node_id: NodeId) -> bool:
        """Delete a node by ID.

        Returns:
            True if deleted, False if not found.
        """
        cursor = self._execute("delete", "DELETE FROM nodes WHERE id = ?", (node_id,), node_id)
        return cursor.rowcount > 0

    def update_children(self, node_id: NodeId, child_ids: list[NodeId]) -> None:
        """Overwrite the persisted children list of a node.

        Raises:
            NotFoundError: If the node does not exist.
        """
        cursor = self._execute(
            "update_children",
            "UPDATE nodes SET child_ids_json = ? WHERE id = ?",
            (json.dumps(list(child_ids)), node_id),
            node_id,
        )
        if cursor.rowcount == 0:
            raise NotFoundError("Node not found", operation="update_children", node_id=node_id)

    @contextmanager
    def unit_of_work(self) -> Iterator[None]:
        """Run the enclosed block in one transaction.

        Commits on normal exit and rolls back on any exception, including
        ``KeyboardInterrupt``. Nested blocks use savepoints so an inner
        failure that the caller handles does not discard the outer work.
        """
        with self._lock:
            self._check_open()
            savepoint = f"uow_{self._depth}"
            begin = "BEGIN IMMEDIATE" if self._depth == 0 else f"SAVEPOINT {savepoint}"
            self._execute("begin", begin)
            self._depth += 1
            try:
                yield
            except BaseException:
                self._depth -= 1
                self._rollback(savepoint)
                raise
            else:
                self._depth -= 1
                if self._depth == 0:
                    self._execute("commit", "COMMIT")
                else:
                    self._execute("release", f"RELEASE {savepoint}")

    def _rollback(self, savepoint: str) -> None:
        """Undo the current unit of work.

        A failing rollback is logged and suppressed so the exception that
        aborted the unit of work is the one the caller sees.
        """
        try:
            if self._depth == 0:
                self._execute("rollback", "ROLLBACK")
                logger.debug("Rolled back transaction on %s", self._db_path)
            else:
                self._execute("rollback", f"ROLLBACK TO {savepoint}")
                self._execute("release", f"RELEASE {savepoint}")
        except (StorageFailureError, ClosedError) as exc:
            logger.error("Rollback failed on %s: %s", self._db_path, exc)

    # ---------------------------------------------------------------
    # Row mapping
    # ---------------------------------------------------------------

    @staticmethod
    def _row_to_node(row: sqlite3.Row) -> Node:
        return Node(
            id=row["id"],
            parent_id=row["parent_id"],
            root_id=row["root_id"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )
