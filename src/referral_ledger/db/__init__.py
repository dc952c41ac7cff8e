"""Database configuration and utilities."""

from .session import Base, create_tables, drop_tables, make_engine, make_session_factory, unit_of_work

__all__ = [
    "Base",
    "create_tables",
    "drop_tables",
    "make_engine",
    "make_session_factory",
    "unit_of_work",
]
