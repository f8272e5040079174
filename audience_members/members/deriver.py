"""
Summary column derivation.

Summary columns are scalar aggregates of a member's details document that
let storage backends prefilter members without opening the document:
type flags, paid-amount bounds and timestamp bounds per category.

``derive_summary`` is a pure function: the same fact set yields the same
columns regardless of entry order.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from .types import MemberDetails


@dataclass
class SummaryColumns:
    """Derived, queryable columns of a member."""

    customer: bool = False
    follower: bool = False
    affiliate: bool = False

    min_paid_cents: int | None = None
    max_paid_cents: int | None = None

    min_purchase_created_at: datetime | None = None
    max_purchase_created_at: datetime | None = None

    follower_created_at: datetime | None = None

    min_affiliate_created_at: datetime | None = None
    max_affiliate_created_at: datetime | None = None

    min_created_at: datetime | None = None
    max_created_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for storage.

        All datetime fields are converted to ISO format strings.
        """

        def iso(value: datetime | None) -> str | None:
            return value.isoformat() if value else None

        return {
            "customer": self.customer,
            "follower": self.follower,
            "affiliate": self.affiliate,
            "min_paid_cents": self.min_paid_cents,
            "max_paid_cents": self.max_paid_cents,
            "min_purchase_created_at": iso(self.min_purchase_created_at),
            "max_purchase_created_at": iso(self.max_purchase_created_at),
            "follower_created_at": iso(self.follower_created_at),
            "min_affiliate_created_at": iso(self.min_affiliate_created_at),
            "max_affiliate_created_at": iso(self.max_affiliate_created_at),
            "min_created_at": iso(self.min_created_at),
            "max_created_at": iso(self.max_created_at),
        }


def _minmax(values: list[Any]) -> tuple[Any, Any]:
    if not values:
        return None, None
    return min(values), max(values)


def derive_summary(details: MemberDetails) -> SummaryColumns:
    """Compute the summary columns of a details document.

    Args:
        details: The member's details

    Returns:
        SummaryColumns consistent with ``details``
    """
    min_paid, max_paid = _minmax([p.price_cents for p in details.purchases])
    min_purchase_at, max_purchase_at = _minmax([p.created_at for p in details.purchases])
    min_affiliate_at, max_affiliate_at = _minmax([a.created_at for a in details.affiliates])
    follower_at = details.follower.created_at if details.follower else None

    min_created_at, max_created_at = _minmax(
        [
            ts
            for ts in (
                min_purchase_at,
                max_purchase_at,
                follower_at,
                min_affiliate_at,
                max_affiliate_at,
            )
            if ts is not None
        ]
    )

    return SummaryColumns(
        customer=bool(details.purchases),
        follower=details.follower is not None,
        affiliate=bool(details.affiliates),
        min_paid_cents=min_paid,
        max_paid_cents=max_paid,
        min_purchase_created_at=min_purchase_at,
        max_purchase_created_at=max_purchase_at,
        follower_created_at=follower_at,
        min_affiliate_created_at=min_affiliate_at,
        max_affiliate_created_at=max_affiliate_at,
        min_created_at=min_created_at,
        max_created_at=max_created_at,
    )
