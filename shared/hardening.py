"""Boundary hardening utilities for the Arbor service.

Provides user-friendly error formatting, input validation with path
traversal prevention, and system health checking. Used by the HTTP
layer so that internal exception details never reach clients and
malformed IDs or database paths are rejected before touching storage.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from arbor.src.errors import (
    AlreadyExistsError,
    ArborError,
    ClosedError,
    ConfigError,
    CycleDetectedError,
    HasChildrenError,
    IntegrityError,
    NotFoundError,
    StorageFailureError,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# 1. Error Formatting
# ---------------------------------------------------------------------------


@dataclass
class UserFriendlyError:
    """A structured error designed for end-user consumption.

    Attributes:
        message: Clear description for the user.
        suggestion: Actionable guidance.
        component: Originating subsystem (hierarchy, storage).
        error_code: Machine-readable identifier (e.g. "TREE_001").
        technical_detail: Debugging info for logs only -- never shown to users.
    """

    message: str
    suggestion: str
    component: str
    error_code: str
    technical_detail: str = ""

    def to_dict(self) -> dict[str, str]:
        """Serialize for API responses (excludes technical_detail).

        Returns:
            Dictionary safe for sending to end users.
        """
        return {
            "message": self.message,
            "suggestion": self.suggestion,
            "component": self.component,
            "error_code": self.error_code,
        }


class ErrorFormatter:
    """Convert internal exceptions to user-friendly messages.

    All methods return a ``UserFriendlyError`` and never expose internal
    paths, stack traces, or SQL to the end user.
    """

    def format_hierarchy_error(self, error: Exception) -> UserFriendlyError:
        """Format an error raised by a hierarchy query or mutation.

        Args:
            error: The caught exception.

        Returns:
            User-friendly error with actionable suggestion.
        """
        return self._format(error, component="hierarchy", code_prefix="TREE")

    def format_storage_error(self, error: Exception) -> UserFriendlyError:
        """Format a data-storage error.

        Args:
            error: The caught exception.

        Returns:
            User-friendly error with actionable suggestion.
        """
        return self._format(error, component="storage", code_prefix="STOR")

    # ------------------------------------------------------------------

    def _format(
        self,
        error: Exception,
        *,
        component: str,
        code_prefix: str,
    ) -> UserFriendlyError:
        message, suggestion, code_suffix = _classify_error(error)
        return UserFriendlyError(
            message=message,
            suggestion=suggestion,
            component=component,
            error_code=f"{code_prefix}_{code_suffix}",
            technical_detail=repr(error),
        )


def _classify_error(error: Exception) -> tuple[str, str, str]:
    """Map an exception to (message, suggestion, code_suffix).

    Args:
        error: The caught exception.

    Returns:
        Tuple of user message, suggestion text, and error code suffix.
    """
    node = ""
    if isinstance(error, ArborError) and error.node_id is not None:
        node = f" (node {error.node_id!r})"
    if isinstance(error, NotFoundError):
        return (
            f"The requested node does not exist{node}.",
            "Check the node ID and try again.",
            "001",
        )
    if isinstance(error, AlreadyExistsError):
        return (
            f"A node with this ID already exists{node}.",
            "Choose a different ID.",
            "002",
        )
    if isinstance(error, HasChildrenError):
        return (
            f"The node still has children{node}.",
            "Delete its children first or delete the whole subtree.",
            "003",
        )
    if isinstance(error, CycleDetectedError):
        return (
            f"The stored hierarchy contains a loop{node}.",
            "Repair the parent references in the database.",
            "004",
        )
    if isinstance(error, IntegrityError):
        return (
            f"The stored hierarchy is inconsistent{node}.",
            "Run an integrity check on the affected tree.",
            "005",
        )
    if isinstance(error, ClosedError):
        return (
            "The hierarchy service has been shut down.",
            "Restart the service.",
            "006",
        )
    if isinstance(error, ConfigError):
        return (
            "The storage configuration is invalid.",
            "Check the database descriptor.",
            "007",
        )
    if isinstance(error, (StorageFailureError, OSError)):
        return (
            "The database could not complete the operation.",
            "Try again. If the problem persists, check the database file.",
            "008",
        )
    if isinstance(error, ValueError):
        return (
            "Invalid input was provided.",
            "Check the input values and try again.",
            "009",
        )
    return (
        "An unexpected error occurred.",
        "If this keeps happening, please report the issue.",
        "999",
    )


# ---------------------------------------------------------------------------
# 2. Input Validation
# ---------------------------------------------------------------------------

# Characters that could be used for path traversal
_TRAVERSAL_PATTERN = re.compile(r"(\.\.[\\/]|[\\/]\.\.)")
# Null bytes in paths
_NULL_BYTE = re.compile(r"\x00")
_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")

MAX_ID_LENGTH = 255
# SQLite stores integers as signed 64-bit values
MIN_INT_ID = -(2**63)
MAX_INT_ID = 2**63 - 1


class ValidationError(Exception):
    """Raised when input validation fails."""


class InputValidator:
    """Validate inputs at system boundaries.

    All methods raise ``ValidationError`` on failure.
    """

    def validate_node_id(self, raw: Any) -> int | str:
        """Validate and normalize a node ID from user input.

        Strings in canonical integer form become integers, so ``"42"`` in a
        URL and ``42`` in a JSON body name the same node. Strings with
        leading zeros such as ``"007"`` stay strings. Integers must fit in
        64 bits.

        Args:
            raw: ID as received (int or str).

        Returns:
            The normalized ID.
        """
        if isinstance(raw, bool) or not isinstance(raw, (int, str)):
            raise ValidationError("Node ID must be an integer or a string.")
        if isinstance(raw, int):
            return self._check_int_range(raw)
        text = raw.strip()
        if not text:
            raise ValidationError("Node ID cannot be empty.")
        if len(text) > MAX_ID_LENGTH:
            raise ValidationError(f"Node ID exceeds {MAX_ID_LENGTH} characters.")
        if _CONTROL_CHARS.search(text):
            raise ValidationError("Node ID contains control characters.")
        if _is_canonical_int(text):
            return self._check_int_range(int(text))
        return text

    @staticmethod
    def _check_int_range(value: int) -> int:
        if not MIN_INT_ID <= value <= MAX_INT_ID:
            raise ValidationError("Integer node ID is outside the 64-bit range.")
        return value

    def validate_database_path(
        self,
        path: str | Path,
        *,
        base_directory: Path | None = None,
    ) -> str:
        """Validate an SQLite database path, preventing traversal attacks.

        Args:
            path: Raw path from configuration or user input.
            base_directory: Confine the resolved path under this directory.

        Returns:
            The path, resolved unless it is ':memory:'.
        """
        raw = str(path)
        if raw == ":memory:":
            return raw
        if not raw.strip():
            raise ValidationError("Database path cannot be empty.")
        if _NULL_BYTE.search(raw):
            raise ValidationError("Path contains null bytes.")
        if _TRAVERSAL_PATTERN.search(raw):
            raise ValidationError("Path traversal is not allowed.")
        resolved = Path(raw).resolve()
        if base_directory is not None and not _is_subpath(resolved, base_directory.resolve()):
            raise ValidationError("Path is outside the allowed directory.")
        return str(resolved)


def _is_canonical_int(text: str) -> bool:
    """True if *text* is exactly how ``str(int)`` renders some integer."""
    digits = text[1:] if text.startswith("-") else text
    if not digits.isascii() or not digits.isdigit():
        return False
    return str(int(text)) == text


def _is_subpath(child: Path, parent: Path) -> bool:
    """Check whether *child* is inside *parent*.

    Args:
        child: Resolved path to check.
        parent: Resolved base directory.

    Returns:
        True if child is within parent.
    """
    try:
        child.relative_to(parent)
        return True
    except ValueError:
        return False


# ---------------------------------------------------------------------------
# 3. Health Checks
# ---------------------------------------------------------------------------


@dataclass
class HealthCheck:
    """Result of a single component health check.

    Attributes:
        component: Subsystem name (arbor, storage).
        status: One of "healthy", "degraded", "unavailable".
        message: Human-readable description.
        checked_at: UTC timestamp of the check.
    """

    component: str
    status: str
    message: str
    checked_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, str]:
        """Serialize for API responses.

        Returns:
            Dictionary with component, status, message, checked_at.
        """
        return {
            "component": self.component,
            "status": self.status,
            "message": self.message,
            "checked_at": self.checked_at.isoformat(),
        }


class SystemHealthChecker:
    """Check health of the Arbor service.

    Each check returns a ``HealthCheck`` with status:
      - ``healthy``: Fully operational.
      - ``degraded``: Reachable but misbehaving.
      - ``unavailable``: Cannot function.

    Args:
        hierarchy: The open hierarchy to probe, or None if not configured.
    """

    def __init__(self, hierarchy: Any = None) -> None:
        self.hierarchy = hierarchy

    def check_module(self) -> HealthCheck:
        """Check that the arbor package imports."""
        if _try_import("arbor.src.hierarchy"):
            return HealthCheck("arbor", "healthy", "arbor is operational.")
        return HealthCheck("arbor", "unavailable", "arbor module import failed.")

    def check_storage(self) -> HealthCheck:
        """Probe the hierarchy's repository with a count query."""
        if self.hierarchy is None:
            return HealthCheck("storage", "unavailable", "storage is not configured.")
        if self.hierarchy.closed:
            return HealthCheck("storage", "unavailable", "storage has been closed.")
        try:
            total = self.hierarchy.count()
        except ArborError as exc:
            logger.warning("Storage health probe failed: %s", exc)
            return HealthCheck("storage", "degraded", "storage did not answer a query.")
        return HealthCheck("storage", "healthy", f"storage holds {total} nodes.")

    def full_check(self) -> list[HealthCheck]:
        """Run every health check.

        Returns:
            List of HealthCheck results.
        """
        return [self.check_module(), self.check_storage()]


def _try_import(module_name: str) -> bool:
    """Attempt to import *module_name* without side effects.

    Args:
        module_name: Dotted module path.

    Returns:
        True on success, False on ImportError.
    """
    import importlib

    try:
        importlib.import_module(module_name)
        return True
    except ImportError:
        return False
