"""Tests for the SQL prefilter builder."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone

from audience_members.members import MemberFilter, MemberQueryBuilder, build_member_query
from audience_members.members.query_builder import format_timestamp

AFTER = datetime(2024, 6, 1, tzinfo=UTC)
BEFORE = datetime(2024, 6, 10, tzinfo=UTC)


def build(params: dict) -> tuple[str, list]:
    query = MemberQueryBuilder().build(7, MemberFilter.from_params(params))
    return query.sql, query.parameters


class TestMemberQueryBuilder:
    """Tests for MemberQueryBuilder.build."""

    def test_empty_filter_scopes_by_seller(self) -> None:
        sql, parameters = build({})

        assert "WHERE seller_id = ?" in sql
        assert sql.endswith("ORDER BY id ASC")
        assert parameters == [7]

    def test_type_flag(self) -> None:
        sql, _ = build({"type": "follower"})
        assert "follower = 1" in sql

    def test_purchase_predicates_require_customer(self) -> None:
        """Purchase predicates imply the customer flag."""
        sql, _ = build({"bought_from": "Canada"})
        assert "customer = 1" in sql

        sql, _ = build({"type": "customer", "bought_product_ids": [1]})
        assert sql.count("customer = 1") == 1

    def test_affiliate_predicates_require_affiliate(self) -> None:
        sql, _ = build({"affiliate_product_ids": [3]})
        assert "affiliate = 1" in sql

    def test_price_bounds_are_strict(self) -> None:
        sql, parameters = build({"paid_more_than_cents": 100, "paid_less_than_cents": 500})

        assert "max_paid_cents > ?" in sql
        assert "min_paid_cents < ?" in sql
        assert parameters == [7, 100, 500]

    def test_untyped_dates_use_overall_columns(self) -> None:
        sql, parameters = build({"created_after": AFTER, "created_before": BEFORE})

        assert "max_created_at > ?" in sql
        assert "min_created_at < ?" in sql
        assert parameters == [7, format_timestamp(AFTER), format_timestamp(BEFORE)]

    def test_typed_dates_use_category_columns(self) -> None:
        sql, _ = build({"type": "customer", "created_after": AFTER})
        assert "max_purchase_created_at > ?" in sql

        sql, _ = build({"type": "follower", "created_before": BEFORE})
        assert "follower_created_at < ?" in sql

        sql, _ = build({"type": "affiliate", "created_after": AFTER})
        assert "max_affiliate_created_at > ?" in sql

    def test_follower_with_bought_filter_bounds_follower_date(self) -> None:
        """A follower query with bought filters still bounds the follower date."""
        sql, parameters = build(
            {"type": "follower", "bought_product_ids": [1], "created_after": AFTER}
        )
        assert "follower_created_at > ?" in sql
        assert "max_created_at" not in sql
        assert parameters == [7, format_timestamp(AFTER)]

    def test_exclusions_are_not_prefiltered(self) -> None:
        """not_bought exclusions are evaluated on the loaded documents."""
        sql, parameters = build({"not_bought_product_ids": [1]})
        assert parameters == [7]
        assert "product" not in sql

    def test_build_count(self) -> None:
        query = MemberQueryBuilder().build_count(7, MemberFilter.from_params({"type": "affiliate"}))

        assert query.is_count_query is True
        assert query.sql.startswith("SELECT COUNT(*) FROM audience_members")
        assert "affiliate = 1" in query.sql

    def test_table_override(self) -> None:
        query = MemberQueryBuilder(table="members_v2").build(7, MemberFilter())
        assert "FROM members_v2" in query.sql

    def test_convenience_function(self) -> None:
        query = build_member_query(7, MemberFilter.from_params({"type": "customer"}))
        assert "customer = 1" in query.sql
        assert "Parameters: 7" in str(query)


class TestFormatTimestamp:
    """Tests for the stored timestamp format."""

    def test_fixed_width_utc(self) -> None:
        """Timestamps are converted to UTC with microseconds."""
        eastern = datetime(2024, 6, 1, 7, 0, tzinfo=timezone(timedelta(hours=-5)))
        assert format_timestamp(eastern) == "2024-06-01T12:00:00.000000+00:00"

    def test_lexical_order_matches_time_order(self) -> None:
        earlier = datetime(2024, 6, 1, 12, 0, 0, 999999, tzinfo=UTC)
        later = datetime(2024, 6, 1, 12, 0, 1, tzinfo=UTC)
        assert format_timestamp(earlier) < format_timestamp(later)
