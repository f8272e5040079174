"""
Full member reconstruction from ground truth.

This module rebuilds member documents from scratch by reading every
current fact for a contact from the fact sources. Use for:

1. Backfilling the audience of a seller
2. Healing drift left by lost or out-of-order events
3. Periodic reconciliation

A refresh result equals "delete every member and replay every current
fact", independent of what was stored before. Each contact is rebuilt
under the same per-member lock the aggregator uses, so a refresh and a
concurrent incremental event never interleave on one member.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Protocol

from ..config import AudienceConfig
from ..email_utils import normalize_email, validate_email
from ..exceptions import FactSourceError
from ..logging_utils import member_logger
from .aggregator import MemberAction, MemberAggregator
from .member import Member
from .types import MemberDetails

if TYPE_CHECKING:
    from ..sources.records import AffiliateRecord, FollowerRecord, PurchaseRecord

logger = logging.getLogger(__name__)


# =============================================================================
# Fact Source Protocol (to avoid circular imports)
# =============================================================================


class FactSource(Protocol):
    """Read-only access to the ground-truth records of a seller."""

    async def contact_emails(self, seller_id: int) -> set[str]:
        """Every email with a sale, follower or affiliate row for the seller, in any state."""
        ...

    async def purchases_for(self, seller_id: int, email: str) -> list[PurchaseRecord]:
        """Purchase records of the seller's products bought by ``email``."""
        ...

    async def followers_for(self, seller_id: int, email: str) -> list[FollowerRecord]:
        """Follower records of the seller for ``email``."""
        ...

    async def affiliates_for(self, seller_id: int, email: str) -> list[AffiliateRecord]:
        """Direct affiliate records of the seller for ``email``."""
        ...


def fold_details(
    purchases: Iterable[PurchaseRecord],
    followers: Iterable[FollowerRecord],
    affiliates: Iterable[AffiliateRecord],
) -> MemberDetails:
    """Fold qualifying ground-truth records into a details document.

    Non-qualifying records (refunded purchases, unconfirmed or deleted
    followers, deleted affiliates) are dropped. When several followers
    qualify, the one with the highest id wins.
    """
    follower = max(
        (f for f in followers if f.qualifies),
        key=lambda f: f.id,
        default=None,
    )
    return MemberDetails(
        follower=follower.to_fact() if follower else None,
        purchases=tuple(p.to_fact() for p in purchases if p.qualifies),
        affiliates=tuple(fact for a in affiliates if a.qualifies for fact in a.to_facts()),
    )


# =============================================================================
# Refresh Results
# =============================================================================


@dataclass
class RefreshResult:
    """Result of refreshing one contact."""

    seller_id: int
    email: str
    action: MemberAction
    member: Member | None
    duration_ms: int
    error: str | None = None

    @property
    def success(self) -> bool:
        """Whether the refresh completed without errors."""
        return self.error is None


@dataclass
class BatchRefreshResult:
    """Result of refreshing every contact of a seller."""

    seller_id: int
    total_contacts: int
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    deleted: int = 0
    failed: int = 0
    member_count: int = 0
    duration_ms: int = 0
    results: list[RefreshResult] = field(default_factory=list)

    @property
    def errors(self) -> dict[str, str]:
        """Error message per failed contact email."""
        return {r.email: r.error for r in self.results if r.error is not None}

    @property
    def success_rate(self) -> float:
        """Percentage of contacts refreshed without error."""
        if not self.results:
            return 100.0
        return ((len(self.results) - self.failed) / len(self.results)) * 100

    def record(self, result: RefreshResult) -> None:
        self.results.append(result)
        match result.action:
            case MemberAction.CREATED:
                self.created += 1
            case MemberAction.UPDATED:
                self.updated += 1
            case MemberAction.UNCHANGED | MemberAction.NOOP:
                self.unchanged += 1
            case MemberAction.DELETED:
                self.deleted += 1
            case MemberAction.FAILED:
                self.failed += 1


# =============================================================================
# Refresher Class
# =============================================================================


class MemberRefresher:
    """Rebuilds members from the fact sources.

    This class provides methods to:
    - Refresh one contact (full rebuild from ground truth)
    - Refresh every contact of a seller, deleting stale members
    - Verify a stored member against ground truth without writing
    """

    def __init__(
        self,
        source: FactSource,
        aggregator: MemberAggregator,
        config: AudienceConfig | None = None,
    ) -> None:
        """Initialize the refresher.

        Args:
            source: Ground-truth fact source
            aggregator: Aggregator used for locked, version-checked writes
            config: Optional AudienceConfig (batch size and concurrency)
        """
        self.source = source
        self.aggregator = aggregator
        self.config = config or aggregator.config

    @property
    def store(self):
        return self.aggregator.store

    async def rebuild_details(self, seller_id: int, email: str) -> MemberDetails:
        """Read the contact's ground truth and fold it. Pure read, no writes.

        Raises:
            FactSourceError: If any fact source read fails
        """
        try:
            purchases, followers, affiliates = await asyncio.gather(
                self.source.purchases_for(seller_id, email),
                self.source.followers_for(seller_id, email),
                self.source.affiliates_for(seller_id, email),
            )
        except Exception as e:
            raise FactSourceError(seller_id, email, e) from e
        return fold_details(purchases, followers, affiliates)

    async def refresh(self, seller_id: int, email: str) -> RefreshResult:
        """Rebuild one member from scratch.

        Creates, updates, leaves untouched or deletes the member so that it
        matches the contact's qualifying facts. Failures are logged and
        returned in the result, never raised.
        """
        start_time = datetime.now(UTC)

        try:
            email = validate_email(email)
            update = await self.aggregator.replace_details(
                seller_id, email, lambda: self.rebuild_details(seller_id, email)
            )
            result = RefreshResult(
                seller_id=seller_id,
                email=email,
                action=update.action,
                member=update.member,
                duration_ms=_elapsed_ms(start_time),
            )
        except Exception as e:
            member_logger(logger, seller_id, email).warning(
                "Failed to refresh member %s (seller=%s): %s",
                email,
                seller_id,
                e,
                extra={"action": MemberAction.FAILED.value, "error": str(e)},
            )
            result = RefreshResult(
                seller_id=seller_id,
                email=normalize_email(email),
                action=MemberAction.FAILED,
                member=None,
                duration_ms=_elapsed_ms(start_time),
                error=str(e),
            )

        return result

    async def refresh_all(
        self,
        seller_id: int,
        on_progress: Callable[[int, int], None] | None = None,
    ) -> BatchRefreshResult:
        """Reconcile the seller's whole member set against ground truth.

        Stored members whose email no longer has any ground-truth row are
        deleted; every contact email is then refreshed. Contacts are
        processed in chunks of ``refresh_batch_size`` with at most
        ``refresh_concurrency`` refreshes in flight.

        Args:
            seller_id: Seller to reconcile
            on_progress: Optional callback(processed, total) after each chunk

        Returns:
            BatchRefreshResult with per-action counts and per-contact errors

        Raises:
            FactSourceError: If the contact email set can not be read
        """
        start_time = datetime.now(UTC)

        try:
            raw_emails = await self.source.contact_emails(seller_id)
        except Exception as e:
            raise FactSourceError(seller_id, None, e) from e

        emails = {normalize_email(e) for e in raw_emails if e}
        stale = await self.store.list_emails(seller_id) - emails
        batch = BatchRefreshResult(seller_id=seller_id, total_contacts=len(emails))

        for email in sorted(stale):
            batch.record(await self._delete_stale(seller_id, email))

        semaphore = asyncio.Semaphore(self.config.refresh_concurrency)

        async def bounded(contact: str) -> RefreshResult:
            async with semaphore:
                return await self.refresh(seller_id, contact)

        ordered = sorted(emails)
        chunk_size = self.config.refresh_batch_size
        for offset in range(0, len(ordered), chunk_size):
            chunk = ordered[offset : offset + chunk_size]
            for result in await asyncio.gather(*(bounded(e) for e in chunk)):
                batch.record(result)
            if on_progress:
                on_progress(min(offset + chunk_size, len(ordered)), len(ordered))

        batch.member_count = await self.store.count_members(seller_id)
        batch.duration_ms = _elapsed_ms(start_time)

        member_logger(logger, seller_id).info(
            "Refreshed audience of seller %s: %d contacts, %d created, %d updated, "
            "%d unchanged, %d deleted, %d failed in %dms",
            seller_id,
            batch.total_contacts,
            batch.created,
            batch.updated,
            batch.unchanged,
            batch.deleted,
            batch.failed,
            batch.duration_ms,
            extra={
                "action": "refresh_all",
                "total_contacts": batch.total_contacts,
                "member_count": batch.member_count,
                "failed": batch.failed,
                "duration_ms": batch.duration_ms,
            },
        )
        return batch

    async def verify_member(self, seller_id: int, email: str) -> dict[str, Any]:
        """Compare the stored member with a fresh rebuild, without writing.

        Returns:
            Dict with ``is_accurate``, ``discrepancy_count`` and
            ``discrepancies`` (one entry per differing category or column)
        """
        email = validate_email(email)
        stored = await self.store.get_member(seller_id, email)
        rebuilt = await self.rebuild_details(seller_id, email)

        existing_details = stored.details if stored else MemberDetails()
        discrepancies: list[dict[str, Any]] = []

        if stored is None and not rebuilt.is_empty:
            discrepancies.append({"field": "member", "existing": None, "rebuilt": "present"})
        elif stored is not None and rebuilt.is_empty:
            discrepancies.append({"field": "member", "existing": "present", "rebuilt": None})

        existing_doc = existing_details.to_dict()
        rebuilt_doc = rebuilt.to_dict()
        for category in ("follower", "purchases", "affiliates"):
            if existing_doc.get(category) != rebuilt_doc.get(category):
                discrepancies.append(
                    {
                        "field": category,
                        "existing": existing_doc.get(category),
                        "rebuilt": rebuilt_doc.get(category),
                    }
                )

        return {
            "seller_id": seller_id,
            "email": email,
            "is_accurate": len(discrepancies) == 0,
            "discrepancy_count": len(discrepancies),
            "discrepancies": discrepancies,
        }

    # =========================================================================
    # Private Helpers
    # =========================================================================

    async def _delete_stale(self, seller_id: int, email: str) -> RefreshResult:
        start_time = datetime.now(UTC)
        try:
            update = await self.aggregator.replace_details(seller_id, email, MemberDetails())
        except Exception as e:
            member_logger(logger, seller_id, email).warning(
                "Failed to delete stale member %s (seller=%s): %s",
                email,
                seller_id,
                e,
                extra={"action": MemberAction.FAILED.value, "error": str(e)},
            )
            return RefreshResult(
                seller_id=seller_id,
                email=email,
                action=MemberAction.FAILED,
                member=None,
                duration_ms=_elapsed_ms(start_time),
                error=str(e),
            )
        return RefreshResult(
            seller_id=seller_id,
            email=email,
            action=update.action,
            member=None,
            duration_ms=_elapsed_ms(start_time),
        )


def _elapsed_ms(start_time: datetime) -> int:
    return int((datetime.now(UTC) - start_time).total_seconds() * 1000)
