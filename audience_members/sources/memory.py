"""
In-memory fact source.

Holds ground-truth records in lists and answers the FactSource protocol.
Used by tests and by callers that load a seller's records up front.
"""

from __future__ import annotations

from ..email_utils import normalize_email
from ..exceptions import FactSourceError
from .records import AffiliateRecord, FollowerRecord, PurchaseRecord


class InMemoryFactSource:
    """List-backed FactSource."""

    def __init__(self) -> None:
        self.purchases: list[PurchaseRecord] = []
        self.followers: list[FollowerRecord] = []
        self.affiliates: list[AffiliateRecord] = []
        self._failing: set[tuple[int, str]] = set()

    def add_purchase(self, record: PurchaseRecord) -> PurchaseRecord:
        self.purchases.append(record)
        return record

    def add_follower(self, record: FollowerRecord) -> FollowerRecord:
        self.followers.append(record)
        return record

    def add_affiliate(self, record: AffiliateRecord) -> AffiliateRecord:
        self.affiliates.append(record)
        return record

    def fail_for(self, seller_id: int, email: str) -> None:
        """Make every read for this contact raise FactSourceError."""
        self._failing.add((seller_id, normalize_email(email)))

    async def contact_emails(self, seller_id: int) -> set[str]:
        records = [*self.purchases, *self.followers, *self.affiliates]
        return {r.email for r in records if r.seller_id == seller_id}

    async def purchases_for(self, seller_id: int, email: str) -> list[PurchaseRecord]:
        self._check(seller_id, email)
        return [r for r in self.purchases if self._owns(r, seller_id, email)]

    async def followers_for(self, seller_id: int, email: str) -> list[FollowerRecord]:
        self._check(seller_id, email)
        return [r for r in self.followers if self._owns(r, seller_id, email)]

    async def affiliates_for(self, seller_id: int, email: str) -> list[AffiliateRecord]:
        self._check(seller_id, email)
        return [r for r in self.affiliates if self._owns(r, seller_id, email)]

    @staticmethod
    def _owns(record, seller_id: int, email: str) -> bool:
        return record.seller_id == seller_id and record.email == normalize_email(email)

    def _check(self, seller_id: int, email: str) -> None:
        if (seller_id, normalize_email(email)) in self._failing:
            raise FactSourceError(seller_id, email, RuntimeError("source unavailable"))
