"""
Audience service - the boundary of the audience library.

Wires the aggregator, refresher and filter engine around one member store:

- Inbound events (``on_*``) fold single facts into members
- ``filter``/``count`` answer segmentation queries, read-only
- ``refresh``/``refresh_all``/``verify_member`` reconcile with ground truth
"""

from __future__ import annotations

from typing import Any

from ..config import AudienceConfig
from ..email_utils import normalize_email, validate_email
from ..exceptions import AudienceError, FilterValidationError, MemberNotFoundError
from ..logging_utils import get_audience_logger
from ..storage.base import MemberStore
from .aggregator import MemberAggregator, MemberLocks, UpdateResult
from .filters import MemberFilter, MemberFilterEvaluator
from .member import Member, MemberMatch
from .refresher import BatchRefreshResult, FactSource, MemberRefresher, RefreshResult
from .types import AffiliateFact, FactCategory, FollowerFact, PurchaseFact

logger = get_audience_logger("service")


class AudienceService:
    """Entry point for audience member maintenance and segmentation.

    Usage:
        service = AudienceService(store, source)

        # Events from the purchase/follower/affiliate lifecycle
        await service.on_purchase_qualified(seller_id, email, purchase_fact)
        await service.on_follower_unsubscribed(seller_id, email)

        # Segmentation
        members = await service.filter(seller_id, {"type": "customer"})

        # Reconciliation
        result = await service.refresh_all(seller_id)
    """

    def __init__(
        self,
        store: MemberStore,
        source: FactSource | None = None,
        config: AudienceConfig | None = None,
    ) -> None:
        """Initialize the service.

        Args:
            store: Member store
            source: Optional ground-truth fact source (required for refresh)
            config: Optional AudienceConfig
        """
        self.store = store
        self.config = config or AudienceConfig()
        self.locks = MemberLocks()
        self.aggregator = MemberAggregator(store, self.config, self.locks)
        self.refresher = MemberRefresher(source, self.aggregator, self.config) if source else None

    # =========================================================================
    # Inbound Events
    # =========================================================================

    async def on_purchase_qualified(
        self, seller_id: int, email: str, purchase_fact: PurchaseFact | dict[str, Any]
    ) -> UpdateResult:
        return await self.aggregator.upsert_fact(
            seller_id, email, FactCategory.PURCHASES, purchase_fact
        )

    async def on_purchase_disqualified(
        self, seller_id: int, email: str, purchase_id: int
    ) -> UpdateResult:
        return await self.aggregator.remove_fact(
            seller_id, email, FactCategory.PURCHASES, purchase_id
        )

    async def on_follower_confirmed(
        self, seller_id: int, email: str, follower_fact: FollowerFact | dict[str, Any]
    ) -> UpdateResult:
        return await self.aggregator.upsert_fact(
            seller_id, email, FactCategory.FOLLOWER, follower_fact
        )

    async def on_follower_unsubscribed(self, seller_id: int, email: str) -> UpdateResult:
        return await self.aggregator.remove_fact(seller_id, email, FactCategory.FOLLOWER)

    async def on_affiliate_linked(
        self, seller_id: int, email: str, affiliate_fact: AffiliateFact | dict[str, Any]
    ) -> UpdateResult:
        return await self.aggregator.upsert_fact(
            seller_id, email, FactCategory.AFFILIATES, affiliate_fact
        )

    async def on_affiliate_unlinked(
        self,
        seller_id: int,
        email: str,
        affiliate_id: int,
        product_id: int | None = None,
    ) -> UpdateResult:
        """Remove an affiliation; without ``product_id`` every product entry goes."""
        return await self.aggregator.remove_fact(
            seller_id, email, FactCategory.AFFILIATES, affiliate_id, product_id
        )

    async def change_affiliate_email(
        self, seller_ids: list[int], old_email: str, new_email: str
    ) -> list[UpdateResult]:
        """Move affiliate entries to the member for the contact's new email."""
        return await self.aggregator.move_category(
            seller_ids, old_email, new_email, FactCategory.AFFILIATES
        )

    # =========================================================================
    # Segmentation Queries
    # =========================================================================

    async def get_member(self, seller_id: int, email: str) -> Member:
        """Fetch one member.

        Raises:
            MemberNotFoundError: If the contact has no member for the seller
        """
        member = await self.store.get_member(seller_id, validate_email(email))
        if member is None:
            raise MemberNotFoundError(seller_id, normalize_email(email))
        return member

    async def filter(
        self,
        seller_id: int,
        params: dict[str, Any] | MemberFilter | None = None,
        with_ids: bool = False,
    ) -> list[Member] | list[MemberMatch]:
        """Members of the seller matching every filter param, ordered by id.

        Args:
            seller_id: Seller whose audience is queried
            params: Filter params (see MemberFilter.from_params)
            with_ids: Return MemberMatch objects carrying the id of the last
                matching purchase, follower and affiliate fact

        Raises:
            FilterValidationError: If params are malformed (before any storage access)
        """
        member_filter = MemberFilter.from_params(params)
        matches = await self._matches(seller_id, member_filter)

        logger.debug(
            "Filtered audience of seller %s with %s: %d members",
            seller_id,
            member_filter.to_params(),
            len(matches),
        )

        if with_ids:
            return matches
        return [match.member for match in matches]

    async def count(
        self,
        seller_id: int,
        params: dict[str, Any] | MemberFilter | None = None,
        limit: int | None = None,
    ) -> int:
        """Count matching members, stopping once ``limit`` is reached."""
        if limit is not None and (
            isinstance(limit, bool) or not isinstance(limit, int) or limit < 0
        ):
            raise FilterValidationError("limit", "must be a non-negative integer", limit)

        member_filter = MemberFilter.from_params(params)
        evaluator = MemberFilterEvaluator(member_filter)

        total = 0
        for member in await self.store.query_members(seller_id, member_filter):
            if limit is not None and total >= limit:
                break
            if evaluator.matches(member):
                total += 1
        return total

    # =========================================================================
    # Maintenance
    # =========================================================================

    async def refresh(self, seller_id: int, email: str) -> RefreshResult:
        return await self._require_refresher().refresh(seller_id, email)

    async def refresh_all(
        self, seller_id: int, on_progress: Any | None = None
    ) -> BatchRefreshResult:
        return await self._require_refresher().refresh_all(seller_id, on_progress)

    async def verify_member(self, seller_id: int, email: str) -> dict[str, Any]:
        return await self._require_refresher().verify_member(seller_id, email)

    # =========================================================================
    # Private Helpers
    # =========================================================================

    async def _matches(self, seller_id: int, member_filter: MemberFilter) -> list[MemberMatch]:
        evaluator = MemberFilterEvaluator(member_filter)
        candidates = await self.store.query_members(seller_id, member_filter)

        matches = []
        for member in candidates:
            match = evaluator.evaluate(member)
            if match is not None:
                matches.append(match)
        return sorted(matches, key=lambda m: m.id)

    def _require_refresher(self) -> MemberRefresher:
        if self.refresher is None:
            raise AudienceError("No fact source configured; refresh is unavailable")
        return self.refresher


# =============================================================================
# Convenience Functions
# =============================================================================


async def filter_members(
    store: MemberStore,
    seller_id: int,
    params: dict[str, Any] | None = None,
    with_ids: bool = False,
) -> list[Member] | list[MemberMatch]:
    """Run one filter query against a store.

    Convenience function for exports and reports that only read the
    audience and don't need the full service.
    """
    return await AudienceService(store).filter(seller_id, params, with_ids)


def members_matching(members: list[Member], params: dict[str, Any] | None = None) -> list[Member]:
    """Filter already-loaded members in memory, preserving their order."""
    evaluator = MemberFilterEvaluator(MemberFilter.from_params(params))
    return [m for m in members if evaluator.matches(m)]

