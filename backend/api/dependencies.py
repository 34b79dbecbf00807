"""
Dependency injection for the API service.
Provides the query facade and infrastructure managers to route handlers.
"""
from __future__ import annotations

from typing import Optional

from shared.utils.database import DatabaseManager

from api.facade import QueryFacade

# Module-level singletons, initialized at startup
_facade: QueryFacade | None = None
_db: DatabaseManager | None = None


def init_dependencies(facade: QueryFacade, db: Optional[DatabaseManager] = None) -> None:
    """Initialize module-level singletons. Called once at startup."""
    global _facade, _db
    _facade = facade
    _db = db


def get_facade() -> QueryFacade:
    """FastAPI dependency: returns the shared QueryFacade."""
    if _facade is None:
        raise RuntimeError("QueryFacade not initialized; call init_dependencies first")
    return _facade


def get_db() -> Optional[DatabaseManager]:
    """FastAPI dependency: returns the DatabaseManager when the app owns one."""
    return _db
