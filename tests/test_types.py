"""Tests for member fact and details types.

These tests define the expected behavior of the details document:
1. Fact parsing and validation
2. Copy-on-write merges keyed by fact id
3. Wire format serialization
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone

import pytest

from audience_members.exceptions import FactValidationError
from audience_members.members import (
    AffiliateFact,
    FactCategory,
    FollowerFact,
    MemberDetails,
    PurchaseFact,
    parse_fact,
)
from audience_members.members.types import parse_timestamp

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=UTC)


# =============================================================================
# Timestamp Parsing Tests
# =============================================================================


class TestParseTimestamp:
    """Tests for parse_timestamp."""

    def test_naive_datetime_is_utc(self) -> None:
        """Naive datetimes are treated as UTC."""
        parsed = parse_timestamp(datetime(2024, 3, 1, 12, 0))
        assert parsed == NOW
        assert parsed.tzinfo is UTC

    def test_offset_is_converted_to_utc(self) -> None:
        """Aware datetimes are converted to UTC."""
        eastern = datetime(2024, 3, 1, 7, 0, tzinfo=timezone(timedelta(hours=-5)))
        assert parse_timestamp(eastern) == NOW

    def test_iso_string_with_z_suffix(self) -> None:
        """ISO strings ending in Z parse as UTC."""
        assert parse_timestamp("2024-03-01T12:00:00Z") == NOW

    def test_malformed_string_raises(self) -> None:
        """Malformed strings raise ValueError."""
        with pytest.raises(ValueError):
            parse_timestamp("yesterday")


# =============================================================================
# Fact Parsing Tests
# =============================================================================


class TestFactParsing:
    """Tests for fact from_dict validation."""

    def test_parse_purchase(self) -> None:
        """A complete purchase dict parses into a PurchaseFact."""
        fact = parse_fact(
            FactCategory.PURCHASES,
            {
                "id": 7,
                "product_id": 3,
                "variant_ids": [11, 12],
                "price_cents": 500,
                "created_at": NOW.isoformat(),
                "country": "Canada",
            },
        )

        assert isinstance(fact, PurchaseFact)
        assert fact.id == 7
        assert fact.variant_ids == (11, 12)
        assert fact.country == "Canada"
        assert fact.created_at == NOW

    def test_purchase_optional_keys_default(self) -> None:
        """variant_ids and country are optional."""
        fact = PurchaseFact.from_dict(
            {"id": 1, "product_id": 1, "price_cents": 0, "created_at": NOW}
        )
        assert fact.variant_ids == ()
        assert fact.country is None

    def test_missing_required_key_names_category_and_field(self) -> None:
        """A missing key raises FactValidationError naming category and field."""
        with pytest.raises(FactValidationError) as exc_info:
            parse_fact(FactCategory.PURCHASES, {"id": 1, "product_id": 1, "created_at": NOW})

        assert exc_info.value.category == "purchases"
        assert exc_info.value.field == "price_cents"

    def test_non_integer_id_rejected(self) -> None:
        """Ids must be integers (booleans are not)."""
        with pytest.raises(FactValidationError) as exc_info:
            parse_fact(FactCategory.FOLLOWER, {"id": True, "created_at": NOW})
        assert exc_info.value.field == "id"

    def test_bad_timestamp_rejected(self) -> None:
        """Unparsable created_at is rejected."""
        with pytest.raises(FactValidationError) as exc_info:
            parse_fact(FactCategory.AFFILIATES, {"id": 1, "product_id": 2, "created_at": "soon"})
        assert exc_info.value.field == "created_at"

    def test_bad_variant_ids_rejected(self) -> None:
        """variant_ids must be a list of integers."""
        with pytest.raises(FactValidationError) as exc_info:
            parse_fact(
                FactCategory.PURCHASES,
                {
                    "id": 1,
                    "product_id": 1,
                    "price_cents": 1,
                    "created_at": NOW,
                    "variant_ids": ["a"],
                },
            )
        assert exc_info.value.field == "variant_ids"

    def test_typed_fact_passes_through(self) -> None:
        """Already-typed facts are returned unchanged."""
        fact = FollowerFact(id=1, created_at=NOW)
        assert parse_fact(FactCategory.FOLLOWER, fact) is fact

    def test_non_mapping_rejected(self) -> None:
        """Facts must be mappings."""
        with pytest.raises(FactValidationError):
            parse_fact(FactCategory.FOLLOWER, ["id", 1])


# =============================================================================
# MemberDetails Tests
# =============================================================================


class TestMemberDetails:
    """Tests for the MemberDetails document."""

    def test_empty_details(self) -> None:
        """New details hold no facts."""
        details = MemberDetails()
        assert details.is_empty is True
        assert details.categories() == []
        assert details.to_dict() == {}

    def test_with_fact_is_copy_on_write(self) -> None:
        """with_fact returns a new document and leaves the original alone."""
        original = MemberDetails()
        updated = original.with_fact(FactCategory.FOLLOWER, FollowerFact(1, NOW))

        assert original.follower is None
        assert updated.follower == FollowerFact(1, NOW)

    def test_purchase_upsert_replaces_same_id(self) -> None:
        """Re-applying a purchase with the same id overwrites it."""
        details = MemberDetails().with_fact(
            FactCategory.PURCHASES, PurchaseFact(1, 10, 100, NOW)
        )
        details = details.with_fact(FactCategory.PURCHASES, PurchaseFact(1, 10, 250, NOW))

        assert len(details.purchases) == 1
        assert details.purchases[0].price_cents == 250

    def test_affiliates_keyed_by_id_and_product(self) -> None:
        """One affiliate id may hold one entry per product."""
        details = MemberDetails()
        details = details.with_fact(FactCategory.AFFILIATES, AffiliateFact(5, 1, NOW))
        details = details.with_fact(FactCategory.AFFILIATES, AffiliateFact(5, 2, NOW))
        details = details.with_fact(FactCategory.AFFILIATES, AffiliateFact(5, 1, NOW))

        assert [a.key for a in details.affiliates] == [(5, 1), (5, 2)]

    def test_without_affiliate_product(self) -> None:
        """product_id narrows affiliate removal to one entry."""
        details = MemberDetails(
            affiliates=(AffiliateFact(5, 1, NOW), AffiliateFact(5, 2, NOW))
        )

        narrowed = details.without_fact(FactCategory.AFFILIATES, 5, product_id=2)
        assert [a.key for a in narrowed.affiliates] == [(5, 1)]

        cleared = details.without_fact(FactCategory.AFFILIATES, 5)
        assert cleared.affiliates == ()

    def test_without_category(self) -> None:
        """without_category drops every fact of one category."""
        details = MemberDetails(
            follower=FollowerFact(1, NOW),
            purchases=(PurchaseFact(1, 1, 1, NOW),),
        )
        assert details.without_category(FactCategory.PURCHASES).categories() == [
            FactCategory.FOLLOWER
        ]

    def test_entry_order_is_canonical(self) -> None:
        """Documents built in any order compare equal."""
        a = PurchaseFact(1, 1, 100, NOW)
        b = PurchaseFact(2, 1, 200, NOW)
        assert MemberDetails(purchases=(a, b)) == MemberDetails(purchases=(b, a))

    def test_to_dict_uses_wire_keys_and_omits_blank(self) -> None:
        """Serialization uses the wire keys and drops blank categories and options."""
        details = MemberDetails(purchases=(PurchaseFact(1, 2, 300, NOW),))

        assert details.to_dict() == {
            "purchases": [
                {"id": 1, "product_id": 2, "price_cents": 300, "created_at": NOW.isoformat()}
            ]
        }

    def test_from_dict_round_trip(self) -> None:
        """from_dict restores an equal document."""
        details = MemberDetails(
            follower=FollowerFact(3, NOW),
            purchases=(PurchaseFact(1, 2, 300, NOW, variant_ids=(4,), country="Canada"),),
            affiliates=(AffiliateFact(9, 2, NOW),),
        )
        assert MemberDetails.from_dict(details.to_dict()) == details

    def test_from_dict_rejects_unknown_category(self) -> None:
        """Unknown top-level keys are rejected."""
        with pytest.raises(FactValidationError) as exc_info:
            MemberDetails.from_dict({"subscribers": []})
        assert exc_info.value.field == "subscribers"

    def test_from_dict_requires_lists(self) -> None:
        """purchases and affiliates must be lists."""
        with pytest.raises(FactValidationError):
            MemberDetails.from_dict({"purchases": {"id": 1}})


class TestFactCategory:
    """Tests for FactCategory enum."""

    def test_enum_values(self) -> None:
        """Enum values are the wire keys."""
        assert FactCategory.FOLLOWER.value == "follower"
        assert FactCategory.PURCHASES.value == "purchases"
        assert FactCategory.AFFILIATES.value == "affiliates"

    def test_enum_from_string(self) -> None:
        """Categories can be created from their wire names."""
        assert FactCategory("purchases") is FactCategory.PURCHASES
