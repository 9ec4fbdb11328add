"""Arbor backend server.

Mounts the Arbor hierarchy router under a FastAPI application backed
by an on-disk SQLite database. If the router fails to initialize the
server still starts; the unified health endpoint reports the error.

Usage::

    # Development (auto-reload)
    uvicorn arbor_server:app --reload --port 8430

    # Production
    uvicorn arbor_server:app --host 0.0.0.0 --port 8430

    # Or run directly
    python arbor_server.py

The database location comes from ``ARBOR_DB_PATH`` (default
``data/arbor/arbor.db``).
"""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

logger = logging.getLogger("arbor")

# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------

@asynccontextmanager
async def _lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Close the hierarchy's database connection on shutdown."""
    yield
    from arbor.src.server import shutdown_arbor

    shutdown_arbor()


app = FastAPI(
    title="Arbor API",
    description="Single-parent hierarchy store: lineage queries and tree reconstruction.",
    version="0.1.0",
    lifespan=_lifespan,
)

# ---------------------------------------------------------------------------
# CORS -- allow local dev server origins
# ---------------------------------------------------------------------------

_ALLOWED_ORIGINS = [
    "http://localhost:5173",   # Vite dev server
    "http://localhost:8430",   # Self (for Swagger UI)
    "http://127.0.0.1:5173",
    "http://127.0.0.1:8430",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=_ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_DEFAULT_DB_PATH = "data/arbor/arbor.db"

_status: dict[str, Any] = {"loaded": False, "error": None}


# ---------------------------------------------------------------------------
# Arbor router
# ---------------------------------------------------------------------------


def _mount_arbor() -> None:
    """Mount the Arbor router at ``/api/arbor/``.

    Opens the SQLite database named by ``ARBOR_DB_PATH`` after
    validating the path.
    """
    try:
        from arbor.src.server import init_arbor, router as arbor_router
        from shared.hardening import InputValidator

        raw_path = os.environ.get("ARBOR_DB_PATH", _DEFAULT_DB_PATH)
        db_path = InputValidator().validate_database_path(raw_path)
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        init_arbor(db_path)

        app.include_router(arbor_router, prefix="/api/arbor", tags=["arbor"])
        _status["loaded"] = True
        logger.info("Arbor router mounted at /api/arbor/ (database %s)", db_path)
    except Exception as exc:
        _status["error"] = str(exc)
        logger.warning("Arbor router failed to load: %s", exc)


@app.get("/api/health")
async def unified_health() -> dict[str, Any]:
    """Return overall server health.

    Returns:
        Dictionary with overall status and the router's load state.
    """
    return {
        "status": "ok" if _status["loaded"] else "error",
        "version": "0.1.0",
        "tools": {"arbor": _status},
    }


_mount_arbor()


# ---------------------------------------------------------------------------
# Main entry point
# ---------------------------------------------------------------------------


def run_server(host: str = "127.0.0.1", port: int = 8430) -> None:
    """Start the Arbor server via uvicorn.

    Args:
        host: Bind address. Defaults to localhost.
        port: Port number. Defaults to 8430.
    """
    import uvicorn

    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )
    run_server()
