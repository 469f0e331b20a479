from .database import (
    SessionLocal,
    create_session,
    get_db,
    get_engine,
    init_db,
    is_table_present,
)

__all__ = [
    "SessionLocal",
    "create_session",
    "get_db",
    "get_engine",
    "init_db",
    "is_table_present",
]
