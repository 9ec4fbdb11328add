"""Exception taxonomy for Arbor hierarchy operations.

Every error carries the name of the operation that raised it and the
offending node ID so that callers can diagnose failures without
re-running the operation. Integrity errors share a common base because
they all indicate a corrupted parent relation rather than bad input.
"""

from __future__ import annotations

from typing import Any


class ArborError(Exception):
    """Base class for all Arbor errors.

    Attributes:
        operation: Name of the operation that failed (e.g. "add_child").
        node_id: ID of the node the failure concerns, if any.
    """

    def __init__(
        self,
        message: str,
        *,
        operation: str | None = None,
        node_id: Any = None,
    ) -> None:
        self.message = message
        self.operation = operation
        self.node_id = node_id
        super().__init__(self._render())

    def _render(self) -> str:
        context = []
        if self.operation:
            context.append(f"operation={self.operation}")
        if self.node_id is not None:
            context.append(f"node_id={self.node_id!r}")
        if not context:
            return self.message
        return f"{self.message} ({', '.join(context)})"


class NotFoundError(ArborError):
    """Raised when an operation requires a node that does not exist."""


class AlreadyExistsError(ArborError):
    """Raised when creating a node whose ID is already taken."""


class HasChildrenError(ArborError):
    """Raised when deleting a node that still has children."""


class IntegrityError(ArborError):
    """Base for violations of the forest invariants (corrupted input)."""


class MultipleRootsError(IntegrityError):
    """Raised when a node set meant to form one tree has several roots."""


class NoRootError(IntegrityError):
    """Raised when a node set meant to form one tree has no root."""


class DanglingParentError(IntegrityError):
    """Raised when a node references a parent that is not present."""


class DuplicateNodeError(IntegrityError):
    """Raised when the same node ID appears twice in one node set."""


class CycleDetectedError(IntegrityError):
    """Raised when following parent references never reaches a root."""


class ChildrenDesyncError(IntegrityError):
    """Raised when a persisted children list disagrees with the parent relation."""


class StorageFailureError(ArborError):
    """Raised for opaque repository-level failures.

    The original exception is always chained as ``__cause__``.
    """


class ClosedError(ArborError):
    """Raised when using a hierarchy or repository after ``close()``."""


class ConfigError(ArborError, ValueError):
    """Raised for an empty or malformed store descriptor."""
