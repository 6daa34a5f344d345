"""
Database Infrastructure Package for Subscribe & Save

Exports database utilities.
"""

from subscribe_save.infrastructure.db.database import (
    DatabaseManager,
    create_session_factory,
    get_db_manager,
    get_session_context,
    get_session_factory,
    init_db,
    close_db,
)


__all__ = [
    "DatabaseManager",
    "create_session_factory",
    "get_db_manager",
    "get_session_context",
    "get_session_factory",
    "init_db",
    "close_db",
]
