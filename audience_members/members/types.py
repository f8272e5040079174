"""
Audience member fact and details types.

A member's ``details`` document folds three fact categories for one
(seller, email) pair:

- follower: ``{id, created_at}`` while the contact is an active follower
- purchases: one ``{id, product_id, variant_ids?, price_cents, created_at, country?}``
  per qualifying purchase
- affiliates: one ``{id, product_id, created_at}`` per live product affiliation

The key names are the wire contract shared with export and email-targeting
consumers and must not change.

Design Principles:
1. Details are copy-on-write: every ``with_*``/``without_*`` call returns a
   new document, so a stored document can never be mutated in place
2. Entries are kept sorted by key, which makes documents built in any
   order compare equal
3. Facts are validated when parsed, naming the offending category and field
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from ..exceptions import FactValidationError


class FactCategory(Enum):
    """The three fact kinds folded into a member."""

    FOLLOWER = "follower"
    PURCHASES = "purchases"
    AFFILIATES = "affiliates"


def parse_timestamp(value: datetime | str) -> datetime:
    """Parse an ISO-8601 string or datetime into an aware UTC datetime.

    Naive values are assumed to be UTC.

    Raises ValueError on malformed input.
    """
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    else:
        raise ValueError(f"Not a timestamp: {value!r}")

    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def _require(data: dict[str, Any], category: FactCategory, key: str) -> Any:
    value = data.get(key)
    if value is None:
        raise FactValidationError(category.value, key)
    return value


def _require_int(data: dict[str, Any], category: FactCategory, key: str) -> int:
    value = _require(data, category, key)
    if isinstance(value, bool) or not isinstance(value, int):
        raise FactValidationError(category.value, key, "must be an integer")
    return value


def _require_timestamp(data: dict[str, Any], category: FactCategory, key: str) -> datetime:
    value = _require(data, category, key)
    try:
        return parse_timestamp(value)
    except ValueError:
        raise FactValidationError(category.value, key, "must be an ISO-8601 timestamp") from None


@dataclass
class FollowerFact:
    """An active (confirmed, not deleted) follower record."""

    id: int
    created_at: datetime

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the wire format."""
        return {"id": self.id, "created_at": self.created_at.isoformat()}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FollowerFact:
        """Parse and validate a follower fact."""
        category = FactCategory.FOLLOWER
        return cls(
            id=_require_int(data, category, "id"),
            created_at=_require_timestamp(data, category, "created_at"),
        )


@dataclass
class PurchaseFact:
    """A qualifying (successful, non-refunded, non-chargedback) purchase."""

    id: int
    product_id: int
    price_cents: int
    created_at: datetime
    variant_ids: tuple[int, ...] = ()
    country: str | None = None

    def __post_init__(self) -> None:
        self.variant_ids = tuple(self.variant_ids)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the wire format, omitting blank optional keys."""
        data: dict[str, Any] = {
            "id": self.id,
            "product_id": self.product_id,
            "price_cents": self.price_cents,
            "created_at": self.created_at.isoformat(),
        }
        if self.variant_ids:
            data["variant_ids"] = list(self.variant_ids)
        if self.country:
            data["country"] = self.country
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PurchaseFact:
        """Parse and validate a purchase fact."""
        category = FactCategory.PURCHASES

        variant_ids = data.get("variant_ids") or []
        if not isinstance(variant_ids, (list, tuple)) or any(
            isinstance(v, bool) or not isinstance(v, int) for v in variant_ids
        ):
            raise FactValidationError(category.value, "variant_ids", "must be a list of integers")

        country = data.get("country") or None
        if country is not None and not isinstance(country, str):
            raise FactValidationError(category.value, "country", "must be a string")

        return cls(
            id=_require_int(data, category, "id"),
            product_id=_require_int(data, category, "product_id"),
            price_cents=_require_int(data, category, "price_cents"),
            created_at=_require_timestamp(data, category, "created_at"),
            variant_ids=tuple(variant_ids),
            country=country,
        )


@dataclass
class AffiliateFact:
    """One product affiliation held by the contact for the seller's product.

    A single affiliate id spans one entry per linked product, so entries
    are keyed by (id, product_id).
    """

    id: int
    product_id: int
    created_at: datetime

    @property
    def key(self) -> tuple[int, int]:
        return (self.id, self.product_id)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the wire format."""
        return {
            "id": self.id,
            "product_id": self.product_id,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AffiliateFact:
        """Parse and validate an affiliate fact."""
        category = FactCategory.AFFILIATES
        return cls(
            id=_require_int(data, category, "id"),
            product_id=_require_int(data, category, "product_id"),
            created_at=_require_timestamp(data, category, "created_at"),
        )


Fact = FollowerFact | PurchaseFact | AffiliateFact

FACT_TYPES: dict[FactCategory, type] = {
    FactCategory.FOLLOWER: FollowerFact,
    FactCategory.PURCHASES: PurchaseFact,
    FactCategory.AFFILIATES: AffiliateFact,
}


def parse_fact(category: FactCategory, data: dict[str, Any] | Fact) -> Fact:
    """Parse a raw fact dict for a category, passing typed facts through."""
    fact_type = FACT_TYPES[category]
    if isinstance(data, fact_type):
        return data
    if not isinstance(data, dict):
        raise FactValidationError(category.value, "fact", "must be an object")
    return fact_type.from_dict(data)


@dataclass
class MemberDetails:
    """The semi-structured details document of a member.

    Use the ``with_*``/``without_*`` methods to derive new documents;
    they return copies and never touch ``self``.
    """

    follower: FollowerFact | None = None
    purchases: tuple[PurchaseFact, ...] = field(default_factory=tuple)
    affiliates: tuple[AffiliateFact, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        """Canonicalize entry order so equal fact sets compare equal."""
        self.purchases = tuple(sorted(self.purchases, key=lambda p: p.id))
        self.affiliates = tuple(sorted(self.affiliates, key=lambda a: a.key))

    @property
    def is_empty(self) -> bool:
        """True when no category holds a fact (the member must not exist)."""
        return self.follower is None and not self.purchases and not self.affiliates

    def categories(self) -> list[FactCategory]:
        """Categories that currently hold at least one fact."""
        present = []
        if self.follower is not None:
            present.append(FactCategory.FOLLOWER)
        if self.purchases:
            present.append(FactCategory.PURCHASES)
        if self.affiliates:
            present.append(FactCategory.AFFILIATES)
        return present

    # =========================================================================
    # Copy-on-write mutators
    # =========================================================================

    def with_fact(self, category: FactCategory, fact: Fact) -> MemberDetails:
        """Return a copy with ``fact`` merged into ``category`` (upsert by key)."""
        match category:
            case FactCategory.FOLLOWER:
                return MemberDetails(fact, self.purchases, self.affiliates)
            case FactCategory.PURCHASES:
                purchases = [p for p in self.purchases if p.id != fact.id]
                purchases.append(fact)
                return MemberDetails(self.follower, tuple(purchases), self.affiliates)
            case FactCategory.AFFILIATES:
                affiliates = [a for a in self.affiliates if a.key != fact.key]
                affiliates.append(fact)
                return MemberDetails(self.follower, self.purchases, tuple(affiliates))
        raise ValueError(f"Unknown category: {category}")

    def without_fact(
        self,
        category: FactCategory,
        fact_id: int | None = None,
        product_id: int | None = None,
    ) -> MemberDetails:
        """Return a copy with a fact removed.

        For the follower category the follower object is cleared regardless
        of ``fact_id``. For affiliates, ``product_id`` narrows removal to a
        single affiliation; otherwise every entry of the affiliate is removed.
        """
        match category:
            case FactCategory.FOLLOWER:
                return MemberDetails(None, self.purchases, self.affiliates)
            case FactCategory.PURCHASES:
                purchases = tuple(p for p in self.purchases if p.id != fact_id)
                return MemberDetails(self.follower, purchases, self.affiliates)
            case FactCategory.AFFILIATES:
                affiliates = tuple(
                    a
                    for a in self.affiliates
                    if not (a.id == fact_id and (product_id is None or a.product_id == product_id))
                )
                return MemberDetails(self.follower, self.purchases, affiliates)
        raise ValueError(f"Unknown category: {category}")

    def without_category(self, category: FactCategory) -> MemberDetails:
        """Return a copy with every fact of ``category`` removed."""
        match category:
            case FactCategory.FOLLOWER:
                return MemberDetails(None, self.purchases, self.affiliates)
            case FactCategory.PURCHASES:
                return MemberDetails(self.follower, (), self.affiliates)
            case FactCategory.AFFILIATES:
                return MemberDetails(self.follower, self.purchases, ())
        raise ValueError(f"Unknown category: {category}")

    # =========================================================================
    # Serialization
    # =========================================================================

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the compacted wire format (blank categories omitted)."""
        data: dict[str, Any] = {}
        if self.follower is not None:
            data["follower"] = self.follower.to_dict()
        if self.purchases:
            data["purchases"] = [p.to_dict() for p in self.purchases]
        if self.affiliates:
            data["affiliates"] = [a.to_dict() for a in self.affiliates]
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> MemberDetails:
        """Parse and validate a details document.

        Raises FactValidationError for unknown top-level keys or invalid entries.
        """
        if not data:
            return cls()

        known = {c.value for c in FactCategory}
        for key in data:
            if key not in known:
                raise FactValidationError(key, key, "is not a known category")

        follower_data = data.get("follower")
        follower = FollowerFact.from_dict(follower_data) if follower_data else None

        purchases_data = data.get("purchases") or []
        affiliates_data = data.get("affiliates") or []
        for category, entries in (
            (FactCategory.PURCHASES, purchases_data),
            (FactCategory.AFFILIATES, affiliates_data),
        ):
            if not isinstance(entries, list):
                raise FactValidationError(category.value, category.value, "must be a list")

        return cls(
            follower=follower,
            purchases=tuple(PurchaseFact.from_dict(p) for p in purchases_data),
            affiliates=tuple(AffiliateFact.from_dict(a) for a in affiliates_data),
        )
