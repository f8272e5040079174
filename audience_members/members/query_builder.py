"""
SQL prefilter builder for MemberFilter.

Translates a MemberFilter into a parameterized SQL query over the summary
columns of the ``audience_members`` table. The generated WHERE clause is a
necessary condition only: it narrows the rows a backend has to load, and
the exact row-level evaluation (one common purchase, one common affiliate
entry) runs on the loaded documents.

The builder generates queries that leverage the composite indexes on
(seller_id, <summary columns>) for optimal performance.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from .filters import MemberFilter, MemberType, date_columns_for_scope
from .types import FactCategory


@dataclass
class SQLQuery:
    """A parameterized SQL query.

    Attributes:
        sql: The SQL query string with ``?`` placeholders
        parameters: Positional parameters for the query
        is_count_query: Whether this is a COUNT query
    """

    sql: str
    parameters: list[Any] = field(default_factory=list)
    is_count_query: bool = False

    def __str__(self) -> str:
        """Return formatted query for debugging."""
        param_str = ", ".join(repr(p) for p in self.parameters)
        return f"{self.sql}\nParameters: {param_str}"


def format_timestamp(dt: datetime) -> str:
    """Fixed-width UTC ISO format, so stored timestamps sort lexically."""
    return dt.astimezone(UTC).isoformat(timespec="microseconds")


class MemberQueryBuilder:
    """Builds SQL prefilter queries from MemberFilter objects.

    Usage:
        builder = MemberQueryBuilder()
        query = builder.build(seller_id, member_filter)
        # Execute: conn.execute(query.sql, query.parameters)
    """

    TABLE = "audience_members"

    # Base SELECT fields for member queries
    BASE_PROJECTION = [
        "id",
        "seller_id",
        "email",
        "details",
        "version",
        "created_at",
        "updated_at",
    ]

    def __init__(self, table: str | None = None) -> None:
        """Initialize the query builder.

        Args:
            table: Table name override (default: audience_members)
        """
        self.table = table or self.TABLE

    def build(self, seller_id: int, member_filter: MemberFilter) -> SQLQuery:
        """Build a prefilter SELECT for a seller's members, ordered by id.

        Args:
            seller_id: Seller whose members are queried
            member_filter: The validated filter

        Returns:
            SQLQuery with SQL and parameters
        """
        conditions, parameters = self._conditions(seller_id, member_filter)
        select_clause = ", ".join(self.BASE_PROJECTION)
        where_clause = " AND ".join(conditions)
        sql = f"SELECT {select_clause} FROM {self.table} WHERE {where_clause} ORDER BY id ASC"
        return SQLQuery(sql=sql, parameters=parameters)

    def build_count(self, seller_id: int, member_filter: MemberFilter) -> SQLQuery:
        """Build a COUNT over the prefiltered rows.

        Exact only when the filter has no row-level predicates.
        """
        conditions, parameters = self._conditions(seller_id, member_filter)
        where_clause = " AND ".join(conditions)
        sql = f"SELECT COUNT(*) FROM {self.table} WHERE {where_clause}"
        return SQLQuery(sql=sql, parameters=parameters, is_count_query=True)

    def _conditions(
        self,
        seller_id: int,
        member_filter: MemberFilter,
    ) -> tuple[list[str], list[Any]]:
        """Collect WHERE conditions over the summary columns."""
        f = member_filter
        conditions: list[str] = ["seller_id = ?"]
        parameters: list[Any] = [seller_id]

        # Type flag
        if f.type is not None:
            conditions.append(f"{f.type.value} = 1")

        constrained = f.constrained_categories()
        if FactCategory.PURCHASES in constrained and f.type is not MemberType.CUSTOMER:
            conditions.append("customer = 1")
        if FactCategory.AFFILIATES in constrained and f.type is not MemberType.AFFILIATE:
            conditions.append("affiliate = 1")

        # Price bounds
        if f.paid_more_than_cents is not None:
            conditions.append("max_paid_cents > ?")
            parameters.append(f.paid_more_than_cents)

        if f.paid_less_than_cents is not None:
            conditions.append("min_paid_cents < ?")
            parameters.append(f.paid_less_than_cents)

        # Date bounds
        if f.has_date_bounds:
            min_column, max_column = date_columns_for_scope(f.member_date_scope())
            if f.created_after is not None:
                conditions.append(f"{max_column} > ?")
                parameters.append(format_timestamp(f.created_after))
            if f.created_before is not None:
                conditions.append(f"{min_column} < ?")
                parameters.append(format_timestamp(f.created_before))

        return conditions, parameters


# =============================================================================
# Convenience Functions
# =============================================================================


def build_member_query(seller_id: int, member_filter: MemberFilter) -> SQLQuery:
    """Build a prefilter query for a seller and filter.

    Args:
        seller_id: Seller whose members are queried
        member_filter: The validated filter

    Returns:
        SQLQuery ready for execution
    """
    return MemberQueryBuilder().build(seller_id, member_filter)
