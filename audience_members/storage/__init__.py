"""
Member storage backends.

Available backends:
- InMemoryMemberStore: dict-backed, for tests and embedded use
- SQLiteMemberStore: single-file database with summary-column indexes
"""

from .base import MemberStore
from .memory import InMemoryMemberStore
from .sqlite import SUMMARY_COLUMNS, SQLiteConfig, SQLiteMemberStore

__all__ = [
    "SUMMARY_COLUMNS",
    "InMemoryMemberStore",
    "MemberStore",
    "SQLiteConfig",
    "SQLiteMemberStore",
]
