"""
Ground-truth fact records.

These mirror the source-of-truth rows owned by the commerce platform
(sales, followers, direct affiliates) and encode when each one contributes
to a member's details document. The audience library only ever reads them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from ..email_utils import normalize_email
from ..members.types import AffiliateFact, FollowerFact, PurchaseFact

PURCHASE_SUCCESSFUL = "successful"


@dataclass
class PurchaseRecord:
    """A sale of one of the seller's products."""

    id: int
    seller_id: int
    email: str
    product_id: int
    price_cents: int
    created_at: datetime
    variant_ids: tuple[int, ...] = ()
    country: str | None = None
    purchase_state: str = PURCHASE_SUCCESSFUL
    refunded: bool = False
    chargedback: bool = False

    def __post_init__(self) -> None:
        self.email = normalize_email(self.email)
        self.variant_ids = tuple(self.variant_ids)

    @property
    def qualifies(self) -> bool:
        """Successful, not refunded and not charged back."""
        return (
            self.purchase_state == PURCHASE_SUCCESSFUL
            and not self.refunded
            and not self.chargedback
        )

    def to_fact(self) -> PurchaseFact:
        return PurchaseFact(
            id=self.id,
            product_id=self.product_id,
            price_cents=self.price_cents,
            created_at=self.created_at,
            variant_ids=self.variant_ids,
            country=self.country,
        )


@dataclass
class FollowerRecord:
    """A follower of the seller."""

    id: int
    seller_id: int
    email: str
    created_at: datetime
    confirmed_at: datetime | None = None
    deleted_at: datetime | None = None

    def __post_init__(self) -> None:
        self.email = normalize_email(self.email)

    @property
    def alive(self) -> bool:
        return self.deleted_at is None

    @property
    def qualifies(self) -> bool:
        """Confirmed and not deleted."""
        return self.alive and self.confirmed_at is not None

    def to_fact(self) -> FollowerFact:
        return FollowerFact(id=self.id, created_at=self.created_at)


@dataclass
class AffiliateRecord:
    """A direct affiliate of the seller, linked to some of the seller's products.

    ``product_ids`` maps each linked product to when the link was created.
    """

    id: int
    seller_id: int
    email: str
    created_at: datetime
    product_ids: dict[int, datetime] = field(default_factory=dict)
    deleted_at: datetime | None = None

    def __post_init__(self) -> None:
        self.email = normalize_email(self.email)

    @property
    def alive(self) -> bool:
        return self.deleted_at is None

    @property
    def qualifies(self) -> bool:
        return self.alive

    def link_product(self, product_id: int, linked_at: datetime | None = None) -> None:
        self.product_ids[product_id] = linked_at or self.created_at

    def unlink_product(self, product_id: int) -> None:
        self.product_ids.pop(product_id, None)

    def to_facts(self) -> list[AffiliateFact]:
        """One fact per linked product."""
        return [
            AffiliateFact(id=self.id, product_id=product_id, created_at=linked_at)
            for product_id, linked_at in sorted(self.product_ids.items())
        ]
