"""Database layer - engine, base classes and immutability listeners."""

from custody_kernel.db.base import UUID, Base, UTCDateTime, UUIDString
from custody_kernel.db.engine import (
    create_engine_from_url,
    create_tables,
    get_engine,
    get_session,
    init_engine_from_url,
)
from custody_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)

__all__ = [
    "get_engine",
    "get_session",
    "create_engine_from_url",
    "init_engine_from_url",
    "create_tables",
    "register_immutability_listeners",
    "unregister_immutability_listeners",
    "Base",
    "UUIDString",
    "UTCDateTime",
    "UUID",
]
