"""
SQLite member store.

Persists members in a single ``audience_members`` table: the details
document as JSON text next to the derived summary columns, with composite
indexes on (seller_id, <summary columns>) for prefiltering.
Ideal for lightweight deployments, embedded applications, and testing.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import aiosqlite

from ..email_utils import normalize_email
from ..exceptions import ConcurrentUpdateError, StorageConnectionError, StorageIOError
from ..members.filters import MemberFilter
from ..members.member import Member
from ..members.query_builder import MemberQueryBuilder, format_timestamp
from ..members.types import MemberDetails, parse_timestamp
from .base import MemberStore

logger = logging.getLogger(__name__)


# =============================================================================
# Column Definitions - Centralized for consistency and maintainability
# =============================================================================

SUMMARY_COLUMNS = (
    "customer",
    "follower",
    "affiliate",
    "min_paid_cents",
    "max_paid_cents",
    "min_created_at",
    "max_created_at",
    "min_purchase_created_at",
    "max_purchase_created_at",
    "follower_created_at",
    "min_affiliate_created_at",
    "max_affiliate_created_at",
)

_CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS audience_members (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    seller_id INTEGER NOT NULL,
    email TEXT NOT NULL,
    details TEXT NOT NULL,
    version INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    customer INTEGER NOT NULL DEFAULT 0,
    follower INTEGER NOT NULL DEFAULT 0,
    affiliate INTEGER NOT NULL DEFAULT 0,
    min_paid_cents INTEGER,
    max_paid_cents INTEGER,
    min_created_at TEXT,
    max_created_at TEXT,
    min_purchase_created_at TEXT,
    max_purchase_created_at TEXT,
    follower_created_at TEXT,
    min_affiliate_created_at TEXT,
    max_affiliate_created_at TEXT,
    UNIQUE (seller_id, email)
)
"""

_CREATE_INDEXES_SQL = (
    "CREATE INDEX IF NOT EXISTS idx_audience_on_seller_and_types "
    "ON audience_members (seller_id, customer, follower, affiliate)",
    "CREATE INDEX IF NOT EXISTS idx_audience_on_seller_and_follower_created_at "
    "ON audience_members (seller_id, follower_created_at)",
    "CREATE INDEX IF NOT EXISTS idx_audience_on_seller_and_minmax_affiliate_created_at "
    "ON audience_members (seller_id, min_affiliate_created_at, max_affiliate_created_at)",
    "CREATE INDEX IF NOT EXISTS idx_audience_on_seller_and_minmax_created_at "
    "ON audience_members (seller_id, min_created_at, max_created_at)",
    "CREATE INDEX IF NOT EXISTS idx_audience_on_seller_and_minmax_paid_cents "
    "ON audience_members (seller_id, min_paid_cents, max_paid_cents)",
    "CREATE INDEX IF NOT EXISTS idx_audience_on_seller_and_minmax_purchase_created_at "
    "ON audience_members (seller_id, min_purchase_created_at, max_purchase_created_at)",
)


@dataclass
class SQLiteConfig:
    """Configuration for SQLite storage."""

    db_path: str | Path = ":memory:"

    @classmethod
    def from_env(cls) -> SQLiteConfig:
        """Create config from environment variables."""
        import os

        return cls(db_path=os.environ.get("AUDIENCE_SQLITE_PATH", ":memory:"))


class SQLiteMemberStore(MemberStore):
    """
    SQLite-backed MemberStore.

    Features:
    - Single file database
    - Summary-column prefiltering via MemberQueryBuilder
    - Optimistic concurrency through a per-row version column
    """

    def __init__(self, config: SQLiteConfig):
        """
        Initialize SQLite store.

        Args:
            config: SQLite configuration
        """
        self.config = config
        self.conn: aiosqlite.Connection | None = None
        self.query_builder = MemberQueryBuilder()
        self._initialized = False

    @classmethod
    async def create(cls, config: SQLiteConfig | None = None) -> SQLiteMemberStore:
        """Create and initialize SQLite store."""
        if config is None:
            config = SQLiteConfig.from_env()

        store = cls(config)
        await store.initialize()
        return store

    async def initialize(self) -> None:
        """Initialize SQLite connection and schema."""
        if self._initialized:
            return

        try:
            self.conn = await aiosqlite.connect(str(self.config.db_path))
            await self.conn.execute(_CREATE_TABLE_SQL)
            for statement in _CREATE_INDEXES_SQL:
                await self.conn.execute(statement)
            await self.conn.commit()
            self._initialized = True
            logger.info(f"SQLite member store initialized: {self.config.db_path}")

        except Exception as e:
            raise StorageConnectionError(str(self.config.db_path), e) from e

    async def close(self) -> None:
        """Close SQLite connection."""
        if self.conn:
            await self.conn.close()
            self.conn = None

        self._initialized = False

    def _require_conn(self, operation: str) -> aiosqlite.Connection:
        if self.conn is None:
            raise StorageIOError(operation, cause=RuntimeError("Not initialized"))
        return self.conn

    # =========================================================================
    # Row Mapping
    # =========================================================================

    _SELECT = ", ".join(MemberQueryBuilder.BASE_PROJECTION)

    @staticmethod
    def _row_to_member(row: Any) -> Member:
        """Map a BASE_PROJECTION row to a Member."""
        return Member(
            id=row[0],
            seller_id=row[1],
            email=row[2],
            details=MemberDetails.from_dict(json.loads(row[3]) if row[3] else None),
            version=row[4],
            created_at=parse_timestamp(row[5]) if row[5] else None,
            updated_at=parse_timestamp(row[6]) if row[6] else None,
        )

    @staticmethod
    def _summary_values(member: Member) -> list[Any]:
        """Summary column values in SUMMARY_COLUMNS order."""
        values: list[Any] = []
        summary = member.summary
        for column in SUMMARY_COLUMNS:
            value = getattr(summary, column)
            if isinstance(value, bool):
                value = int(value)
            elif isinstance(value, datetime):
                value = format_timestamp(value)
            values.append(value)
        return values

    async def _fetch(self, operation: str, sql: str, parameters: list[Any]) -> list[Member]:
        conn = self._require_conn(operation)
        try:
            async with conn.execute(sql, parameters) as cursor:
                rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise StorageIOError(operation, str(self.config.db_path), e) from e
        return [self._row_to_member(row) for row in rows]

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_member(self, seller_id: int, email: str) -> Member | None:
        members = await self._fetch(
            "get_member",
            f"SELECT {self._SELECT} FROM audience_members WHERE seller_id = ? AND email = ?",
            [seller_id, normalize_email(email)],
        )
        return members[0] if members else None

    async def list_members(self, seller_id: int) -> list[Member]:
        return await self._fetch(
            "list_members",
            f"SELECT {self._SELECT} FROM audience_members WHERE seller_id = ? ORDER BY id ASC",
            [seller_id],
        )

    async def list_emails(self, seller_id: int) -> set[str]:
        conn = self._require_conn("list_emails")
        try:
            async with conn.execute(
                "SELECT email FROM audience_members WHERE seller_id = ?", (seller_id,)
            ) as cursor:
                rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise StorageIOError("list_emails", str(self.config.db_path), e) from e
        return {row[0] for row in rows}

    async def query_members(self, seller_id: int, member_filter: MemberFilter) -> list[Member]:
        query = self.query_builder.build(seller_id, member_filter)
        logger.debug("Member prefilter query: %s", query)
        return await self._fetch("query_members", query.sql, query.parameters)

    async def count_members(self, seller_id: int) -> int:
        conn = self._require_conn("count_members")
        try:
            async with conn.execute(
                "SELECT COUNT(*) FROM audience_members WHERE seller_id = ?", (seller_id,)
            ) as cursor:
                row = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise StorageIOError("count_members", str(self.config.db_path), e) from e
        return row[0] if row else 0

    # =========================================================================
    # Writes
    # =========================================================================

    async def save_member(self, member: Member) -> Member:
        conn = self._require_conn("save_member")
        now = format_timestamp(datetime.now(UTC))
        details_json = json.dumps(member.details.to_dict())
        summary_values = self._summary_values(member)

        try:
            if member.id is None:
                columns = ", ".join(SUMMARY_COLUMNS)
                placeholders = ", ".join("?" for _ in SUMMARY_COLUMNS)
                try:
                    cursor = await conn.execute(
                        f"""
                        INSERT INTO audience_members (
                            seller_id, email, details, version, created_at, updated_at,
                            {columns}
                        ) VALUES (?, ?, ?, 1, ?, ?, {placeholders})
                        """,
                        [member.seller_id, member.email, details_json, now, now, *summary_values],
                    )
                except aiosqlite.IntegrityError:
                    await conn.rollback()
                    raise ConcurrentUpdateError(
                        member.seller_id, member.email, member.version
                    ) from None
                member_id = cursor.lastrowid
            else:
                assignments = ", ".join(f"{column} = ?" for column in SUMMARY_COLUMNS)
                cursor = await conn.execute(
                    f"""
                    UPDATE audience_members
                    SET details = ?, version = version + 1, updated_at = ?, {assignments}
                    WHERE id = ? AND version = ?
                    """,
                    [details_json, now, *summary_values, member.id, member.version],
                )
                if cursor.rowcount == 0:
                    await conn.rollback()
                    raise ConcurrentUpdateError(member.seller_id, member.email, member.version)
                member_id = member.id

            await conn.commit()
        except aiosqlite.Error as e:
            raise StorageIOError("save_member", str(self.config.db_path), e) from e

        saved = await self._fetch(
            "save_member",
            f"SELECT {self._SELECT} FROM audience_members WHERE id = ?",
            [member_id],
        )
        return saved[0]

    async def delete_member(
        self,
        seller_id: int,
        email: str,
        expected_version: int | None = None,
    ) -> bool:
        conn = self._require_conn("delete_member")
        email = normalize_email(email)

        sql = "DELETE FROM audience_members WHERE seller_id = ? AND email = ?"
        parameters: list[Any] = [seller_id, email]
        if expected_version is not None:
            sql += " AND version = ?"
            parameters.append(expected_version)

        try:
            cursor = await conn.execute(sql, parameters)
            deleted = cursor.rowcount > 0
            await conn.commit()
        except aiosqlite.Error as e:
            raise StorageIOError("delete_member", str(self.config.db_path), e) from e

        if not deleted and expected_version is not None:
            if await self.get_member(seller_id, email) is not None:
                raise ConcurrentUpdateError(seller_id, email, expected_version)
        return deleted
