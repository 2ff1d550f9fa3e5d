"""Database layer - engine, base classes, types, and immutability guards."""

from contract_kernel.db.base import UUID, Base, UUIDString
from contract_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_url,
    session_scope,
)

__all__ = [
    "init_engine_from_url",
    "get_engine",
    "get_session",
    "get_session_factory",
    "session_scope",
    "create_tables",
    "Base",
    "UUIDString",
    "UUID",
]
