"""Database engine and session helpers."""

from crm_commissions.db.session import (
    AsyncSessionLocal,
    engine,
    get_db,
    get_db_context,
    ping,
)

__all__ = ["AsyncSessionLocal", "engine", "get_db", "get_db_context", "ping"]
