"""
Incremental member aggregation.

The aggregator folds one fact at a time into the (seller, email) member:

1. Validate - the fact is parsed before anything is read, so a malformed
   fact never produces a partial merge
2. Merge - copy-on-write update of the details document, upsert by key
3. Persist - save (summary columns are derived at write time) or delete
   the member when no fact remains

Writes for the same (seller, email) are serialized by an in-process lock
and guarded by the store's optimistic version check; a lost race is
retried with a fresh read. Writes for different members never coordinate.

Usage:
    aggregator = MemberAggregator(store)
    await aggregator.upsert_fact(seller_id, email, FactCategory.PURCHASES, purchase)
    await aggregator.remove_fact(seller_id, email, FactCategory.FOLLOWER)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any

from ..config import AudienceConfig
from ..email_utils import member_key, validate_email
from ..exceptions import ConcurrentUpdateError, FactValidationError
from ..logging_utils import member_logger
from ..storage.base import MemberStore
from .member import Member
from .types import Fact, FactCategory, MemberDetails, parse_fact

logger = logging.getLogger(__name__)


class MemberAction(Enum):
    """What a write did to the stored member."""

    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    DELETED = "deleted"
    NOOP = "noop"  # No member before, none after
    FAILED = "failed"  # Refresh only


@dataclass
class UpdateResult:
    """Result of an incremental member update."""

    member: Member | None
    action: MemberAction


def coerce_category(category: FactCategory | str) -> FactCategory:
    """Accept a FactCategory or its wire name."""
    if isinstance(category, FactCategory):
        return category
    try:
        return FactCategory(category)
    except ValueError:
        raise FactValidationError(str(category), "category", "is not a known category") from None


def _category_facts(details: MemberDetails, category: FactCategory) -> list[Fact]:
    match category:
        case FactCategory.FOLLOWER:
            return [details.follower] if details.follower is not None else []
        case FactCategory.PURCHASES:
            return list(details.purchases)
        case FactCategory.AFFILIATES:
            return list(details.affiliates)
    return []


class MemberLocks:
    """Per-(seller, email) asyncio locks.

    Locks are created on demand and dropped once no coroutine holds or
    waits on them, so the registry stays bounded by in-flight writes.
    """

    def __init__(self) -> None:
        self._locks: dict[tuple[int, str], asyncio.Lock] = {}
        self._users: dict[tuple[int, str], int] = {}

    @asynccontextmanager
    async def hold(self, seller_id: int, email: str) -> AsyncIterator[None]:
        key = member_key(seller_id, email)
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


class MemberAggregator:
    """Merges single facts into member documents and persists them."""

    def __init__(
        self,
        store: MemberStore,
        config: AudienceConfig | None = None,
        locks: MemberLocks | None = None,
    ) -> None:
        """Initialize the aggregator.

        Args:
            store: Member store to read and write
            config: Optional AudienceConfig (retry budget)
            locks: Optional lock registry shared with the refresher
        """
        self.store = store
        self.config = config or AudienceConfig()
        self.locks = locks or MemberLocks()

    async def upsert_fact(
        self,
        seller_id: int,
        email: str,
        category: FactCategory | str,
        fact: Fact | dict[str, Any],
    ) -> UpdateResult:
        """Merge one fact into the member, creating the member if absent.

        Re-applying a fact with the same key overwrites the stored entry.

        Raises:
            FactValidationError: If the fact is malformed (nothing is written)
        """
        category = coerce_category(category)
        parsed = parse_fact(category, fact)
        return await self._apply(seller_id, email, lambda d: d.with_fact(category, parsed))

    async def remove_fact(
        self,
        seller_id: int,
        email: str,
        category: FactCategory | str,
        fact_id: int | None = None,
        product_id: int | None = None,
    ) -> UpdateResult:
        """Remove one fact; deletes the member if it was the last one.

        Args:
            seller_id: Owning seller
            email: Contact email
            category: Fact category
            fact_id: Purchase or affiliate id (ignored for the follower)
            product_id: For affiliates, remove only this product's entry
        """
        category = coerce_category(category)
        if category is not FactCategory.FOLLOWER and fact_id is None:
            raise FactValidationError(category.value, "id")
        return await self._apply(
            seller_id,
            email,
            lambda d: d.without_fact(category, fact_id, product_id),
        )

    async def replace_details(
        self,
        seller_id: int,
        email: str,
        details: MemberDetails | Callable[[], Awaitable[MemberDetails]],
    ) -> UpdateResult:
        """Overwrite the member's whole document; an empty document deletes it.

        ``details`` may be a coroutine function; it is awaited while the
        member lock is held, so events for the member wait for the rebuild.
        """
        email = validate_email(email)

        async with self.locks.hold(seller_id, email):
            if callable(details):
                details = await details()
            document = details
            return await self._write_with_retries(seller_id, email, lambda _: document)

    async def move_category(
        self,
        seller_ids: list[int],
        old_email: str,
        new_email: str,
        category: FactCategory | str,
    ) -> list[UpdateResult]:
        """Move a category's facts from one contact email to another.

        Used when a contact changes their account email: the old member
        loses the category (and is deleted if it becomes empty) and the
        member for the new email gains it.

        Returns:
            One UpdateResult per seller for the new-email member
        """
        category = coerce_category(category)
        results: list[UpdateResult] = []

        for seller_id in seller_ids:
            # Last document seen by the strip step (re-run on retry)
            seen: list[MemberDetails] = []

            def strip(details: MemberDetails) -> MemberDetails:
                seen[:] = [details]
                return details.without_category(category)

            await self._apply(seller_id, old_email, strip)
            moved = _category_facts(seen[0], category)
            if not moved:
                continue

            def merge(details: MemberDetails, facts: list[Fact] = moved) -> MemberDetails:
                for fact in facts:
                    details = details.with_fact(category, fact)
                return details

            results.append(await self._apply(seller_id, new_email, merge))
            logger.info(
                "Moved %d %s fact(s) from %s to %s (seller=%s)",
                len(moved),
                category.value,
                old_email,
                new_email,
                seller_id,
            )

        return results

    # =========================================================================
    # Private Helpers
    # =========================================================================

    async def _apply(
        self,
        seller_id: int,
        email: str,
        mutate: Callable[[MemberDetails], MemberDetails],
    ) -> UpdateResult:
        """Read-merge-write one member under its lock, retrying lost races."""
        email = validate_email(email)

        async with self.locks.hold(seller_id, email):
            return await self._write_with_retries(seller_id, email, mutate)

    async def _write_with_retries(
        self,
        seller_id: int,
        email: str,
        mutate: Callable[[MemberDetails], MemberDetails],
    ) -> UpdateResult:
        attempt = 1
        while True:
            try:
                return await self._write(seller_id, email, mutate)
            except ConcurrentUpdateError:
                if attempt >= self.config.max_write_retries:
                    raise
                logger.warning(
                    "Concurrent update on member %s (seller=%s), retrying (%d/%d)",
                    email,
                    seller_id,
                    attempt,
                    self.config.max_write_retries,
                )
                attempt += 1

    async def _write(
        self,
        seller_id: int,
        email: str,
        mutate: Callable[[MemberDetails], MemberDetails],
    ) -> UpdateResult:
        log = member_logger(logger, seller_id, email)
        stored = await self.store.get_member(seller_id, email)
        current = stored.details if stored else MemberDetails()
        details = mutate(current)

        if details.is_empty:
            if stored is None:
                return UpdateResult(member=None, action=MemberAction.NOOP)
            await self.store.delete_member(seller_id, email, expected_version=stored.version)
            log.info(
                "Deleted audience member %s (seller=%s)",
                email,
                seller_id,
                extra={"action": MemberAction.DELETED.value},
            )
            return UpdateResult(member=None, action=MemberAction.DELETED)

        if stored is None:
            saved = await self.store.save_member(Member(seller_id, email, details))
            log.info(
                "Created audience member %s (seller=%s)",
                email,
                seller_id,
                extra={"action": MemberAction.CREATED.value},
            )
            return UpdateResult(member=saved, action=MemberAction.CREATED)

        if details == stored.details:
            log.debug(
                "Member %s (seller=%s) unchanged, skipping write",
                email,
                seller_id,
                extra={"action": MemberAction.UNCHANGED.value},
            )
            return UpdateResult(member=stored, action=MemberAction.UNCHANGED)

        saved = await self.store.save_member(stored.with_details(details))
        log.debug(
            "Updated audience member %s to version %d",
            email,
            saved.version,
            extra={"action": MemberAction.UPDATED.value},
        )
        return UpdateResult(member=saved, action=MemberAction.UPDATED)
