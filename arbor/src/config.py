"""Configuration and store descriptor parsing.

A store descriptor is a short string naming the backing repository:

- ``memory://`` -- ephemeral in-memory repository
- ``sqlite://:memory:`` or ``:memory:`` -- in-memory SQLite database
- ``sqlite:///path/to/arbor.db`` or a bare path -- SQLite file
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from arbor.src.errors import ConfigError

_SQLITE_PREFIX = "sqlite://"
_MEMORY_DESCRIPTOR = "memory://"


class StoreKind(str, Enum):
    """Repository implementation selected by a descriptor."""

    MEMORY = "memory"
    SQLITE = "sqlite"


@dataclass(frozen=True)
class StoreDescriptor:
    """Parsed store descriptor.

    Attributes:
        kind: Which repository to build.
        path: SQLite database path (':memory:' for a transient database);
            empty for the in-memory repository.
    """

    kind: StoreKind
    path: str = ""

    @classmethod
    def parse(cls, dsn: str) -> StoreDescriptor:
        """Parse a descriptor string.

        Raises:
            ConfigError: If the descriptor is empty or names no database.
        """
        text = (dsn or "").strip()
        if not text:
            raise ConfigError("Store descriptor cannot be empty", operation="connect")
        if text == _MEMORY_DESCRIPTOR:
            return cls(kind=StoreKind.MEMORY)
        if text.startswith(_SQLITE_PREFIX):
            path = text[len(_SQLITE_PREFIX):]
            # sqlite:///data/arbor.db -> data/arbor.db, sqlite:////abs -> /abs
            if path.startswith("/"):
                path = path[1:]
            if not path:
                raise ConfigError(f"No database path in {dsn!r}", operation="connect")
            return cls(kind=StoreKind.SQLITE, path=path)
        if "://" in text:
            raise ConfigError(f"Unsupported store scheme in {dsn!r}", operation="connect")
        return cls(kind=StoreKind.SQLITE, path=text)


@dataclass
class ArborConfig:
    """Settings for opening a ``Hierarchy``.

    Attributes:
        dsn: Store descriptor (see module docstring).
        persist_children: Maintain stored children lists and re-check
            tree integrity after each mutation.
        native_scans: Compute closures with the repository's bulk scans.
        create_schema: Create the SQLite schema on open.
    """

    dsn: str
    persist_children: bool = False
    native_scans: bool = False
    create_schema: bool = True

    def validate(self) -> StoreDescriptor:
        """Check the configuration and return the parsed descriptor.

        Raises:
            ConfigError: If the descriptor is invalid.
        """
        return StoreDescriptor.parse(self.dsn)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "dsn": self.dsn,
            "persist_children": self.persist_children,
            "native_scans": self.native_scans,
            "create_schema": self.create_schema,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ArborConfig:
        """Deserialize from dictionary."""
        return cls(
            dsn=data.get("dsn", ""),
            persist_children=bool(data.get("persist_children", False)),
            native_scans=bool(data.get("native_scans", False)),
            create_schema=bool(data.get("create_schema", True)),
        )
