"""Shared dependencies, helpers, and utilities for the server routes."""

from __future__ import annotations

import logging
from typing import Annotated, Any

from fastapi import Depends, HTTPException, Request

from quack.config import AppConfig
from quack.engine.database import Database

logger = logging.getLogger("quack.server")


# ---------------------------------------------------------------------------
# State accessors (set by the lifespan in app.py)
# ---------------------------------------------------------------------------


def get_db(request: Request) -> Database:
    """FastAPI dependency: the application's open database handle."""
    db: Database | None = getattr(request.app.state, "db", None)
    if db is None or not db.is_open:
        raise HTTPException(503, "Database is not open")
    return db


def get_config(request: Request) -> AppConfig:
    return request.app.state.config


Db = Annotated[Database, Depends(get_db)]
Config = Annotated[AppConfig, Depends(get_config)]


# ---------------------------------------------------------------------------
# Identifier validation
# ---------------------------------------------------------------------------


def _validate_identifier(value: str, label: str = "identifier") -> str:
    """Validate that a value is a safe SQL identifier (no injection)."""
    from quack.engine.utils import validate_identifier

    try:
        return validate_identifier(value, label)
    except ValueError:
        raise HTTPException(400, f"Invalid {label}: {value!r}")


def _require_found(value: Any, what: str) -> Any:
    """Map an engine ``None`` (not found) to a 404."""
    if value is None:
        raise HTTPException(404, f"{what} not found")
    return value
