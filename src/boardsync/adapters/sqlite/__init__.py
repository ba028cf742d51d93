"""
SQLite adapter - the local board database.
"""

from .store import SqliteSession, SqliteStore


__all__ = ["SqliteSession", "SqliteStore"]
