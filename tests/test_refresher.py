"""Tests for member refresh from ground truth."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from audience_members.config import AudienceConfig
from audience_members.exceptions import AudienceError, FactSourceError
from audience_members.members import (
    AudienceService,
    FollowerFact,
    MemberAction,
    fold_details,
)
from audience_members.sources import (
    AffiliateRecord,
    FollowerRecord,
    InMemoryFactSource,
    PurchaseRecord,
)
from audience_members.storage import InMemoryMemberStore

SELLER = 1
NOW = datetime(2024, 6, 15, 12, 0, tzinfo=UTC)


def days_ago(n: int) -> datetime:
    return NOW - timedelta(days=n)


def purchase(id: int, email: str, seller_id: int = SELLER, **kwargs) -> PurchaseRecord:
    kwargs.setdefault("product_id", 1)
    kwargs.setdefault("price_cents", 100)
    kwargs.setdefault("created_at", days_ago(10))
    return PurchaseRecord(id=id, seller_id=seller_id, email=email, **kwargs)


def follower(id: int, email: str, confirmed: bool = True, **kwargs) -> FollowerRecord:
    created_at = kwargs.pop("created_at", days_ago(10))
    return FollowerRecord(
        id=id,
        seller_id=SELLER,
        email=email,
        created_at=created_at,
        confirmed_at=created_at if confirmed else None,
        **kwargs,
    )


def affiliate(id: int, email: str, product_ids: list[int], **kwargs) -> AffiliateRecord:
    created_at = kwargs.pop("created_at", days_ago(10))
    return AffiliateRecord(
        id=id,
        seller_id=SELLER,
        email=email,
        created_at=created_at,
        product_ids={p: created_at for p in product_ids},
        **kwargs,
    )


# =============================================================================
# fold_details Tests
# =============================================================================


class TestFoldDetails:
    """Tests for folding ground-truth records into a details document."""

    def test_non_qualifying_purchases_dropped(self) -> None:
        """Refunded, charged back and unsuccessful purchases do not count."""
        details = fold_details(
            [
                purchase(1, "a@example.com"),
                purchase(2, "a@example.com", refunded=True),
                purchase(3, "a@example.com", chargedback=True),
                purchase(4, "a@example.com", purchase_state="failed"),
            ],
            [],
            [],
        )
        assert [p.id for p in details.purchases] == [1]

    def test_follower_requires_confirmation(self) -> None:
        """Unconfirmed or deleted followers are dropped."""
        unconfirmed = follower(1, "a@example.com", confirmed=False)
        assert fold_details([], [unconfirmed], []).follower is None
        deleted = follower(2, "a@example.com", deleted_at=days_ago(1))
        assert fold_details([], [deleted], []).follower is None

    def test_highest_qualifying_follower_wins(self) -> None:
        """Several qualifying followers resolve to the one with the highest id."""
        details = fold_details(
            [],
            [
                follower(3, "a@example.com"),
                follower(9, "a@example.com", created_at=days_ago(2)),
                follower(12, "a@example.com", confirmed=False),
            ],
            [],
        )
        assert details.follower == FollowerFact(9, days_ago(2))

    def test_affiliate_expands_per_product(self) -> None:
        """A live affiliate contributes one entry per linked product."""
        details = fold_details(
            [],
            [],
            [
                affiliate(5, "a@example.com", [1, 2]),
                affiliate(6, "a@example.com", [3], deleted_at=days_ago(1)),
            ],
        )
        assert [a.key for a in details.affiliates] == [(5, 1), (5, 2)]

    def test_nothing_qualifying_is_empty(self) -> None:
        """No qualifying record yields an empty document."""
        details = fold_details([purchase(1, "a@example.com", refunded=True)], [], [])
        assert details.is_empty is True


# =============================================================================
# Single Refresh Tests
# =============================================================================


class TestRefresh:
    """Tests for refreshing one contact."""

    async def test_refresh_creates_member(self, service, fact_source) -> None:
        """A contact with qualifying facts gets a member."""
        fact_source.add_purchase(purchase(1, "buyer@example.com"))

        result = await service.refresh(SELLER, "Buyer@Example.com")

        assert result.success is True
        assert result.action == MemberAction.CREATED
        assert result.email == "buyer@example.com"
        assert [p.id for p in result.member.details.purchases] == [1]

    async def test_refresh_without_facts_is_noop(self, service) -> None:
        """A contact without facts and without a member stays absent."""
        result = await service.refresh(SELLER, "nobody@example.com")

        assert result.action == MemberAction.NOOP
        assert result.member is None
        assert await service.store.get_member(SELLER, "nobody@example.com") is None

    async def test_refresh_is_idempotent(self, service, fact_source) -> None:
        """A second refresh over unchanged ground truth changes nothing."""
        fact_source.add_follower(follower(1, "fan@example.com"))

        first = await service.refresh(SELLER, "fan@example.com")
        second = await service.refresh(SELLER, "fan@example.com")

        assert first.action == MemberAction.CREATED
        assert second.action == MemberAction.UNCHANGED
        assert second.member.version == first.member.version

    async def test_refresh_failure_is_reported(self, service, fact_source) -> None:
        """A source failure is returned in the result, not raised."""
        fact_source.add_purchase(purchase(1, "broken@example.com"))
        fact_source.fail_for(SELLER, "broken@example.com")

        result = await service.refresh(SELLER, "broken@example.com")

        assert result.success is False
        assert result.action == MemberAction.FAILED
        assert "source unavailable" in result.error

    async def test_ground_truth_read_under_member_lock(self, store) -> None:
        """Fact source reads happen while the member lock is held."""
        held_during_read: list[int] = []

        class ObservingSource(InMemoryFactSource):
            async def purchases_for(self, seller_id, email):
                held_during_read.append(len(service.locks))
                return await super().purchases_for(seller_id, email)

        source = ObservingSource()
        source.add_purchase(purchase(1, "a@example.com"))
        service = AudienceService(store, source)

        await service.refresh(SELLER, "a@example.com")

        assert held_during_read == [1]
        assert len(service.locks) == 0


# =============================================================================
# Bulk Refresh Tests
# =============================================================================


class TestRefreshAll:
    """Tests for reconciling a seller's whole member set."""

    async def test_converges_to_ground_truth(self, service, fact_source) -> None:
        """Drifted members are fixed, missing ones created, stale ones deleted."""
        fact_source.add_purchase(purchase(1, "a@example.com"))
        outdated = fact_source.add_follower(follower(1, "a@example.com"))
        fact_source.add_purchase(purchase(2, "c@example.com"))
        refunded = fact_source.add_purchase(purchase(3, "c@example.com", price_cents=500))
        linked = fact_source.add_affiliate(affiliate(7, "d@example.com", [1, 2, 3]))

        first = await service.refresh_all(SELLER)
        assert first.created == 3
        assert first.member_count == 3

        # Drift: ground truth changes without events reaching the audience
        outdated.confirmed_at = None
        refunded.refunded = True
        linked.unlink_product(2)
        fact_source.add_purchase(purchase(4, "b@example.com"))
        await service.on_follower_confirmed(
            SELLER, "e@example.com", FollowerFact(99, days_ago(3))
        )

        result = await service.refresh_all(SELLER)

        assert result.total_contacts == 4
        assert (result.created, result.updated, result.deleted, result.unchanged) == (1, 3, 1, 0)
        assert result.failed == 0
        assert result.member_count == 4

        a = await service.get_member(SELLER, "a@example.com")
        assert a.details.follower is None
        assert a.summary.follower is False
        c = await service.get_member(SELLER, "c@example.com")
        assert [p.id for p in c.details.purchases] == [2]
        assert c.summary.max_paid_cents == 100
        d = await service.get_member(SELLER, "d@example.com")
        assert [af.product_id for af in d.details.affiliates] == [1, 3]
        assert await service.store.get_member(SELLER, "e@example.com") is None
        assert (await service.get_member(SELLER, "b@example.com")).summary.customer is True

        # Same documents as a single refresh into an empty store
        fresh = AudienceService(InMemoryMemberStore(), fact_source)
        await fresh.refresh_all(SELLER)

        def documents(members: list) -> dict[str, dict]:
            return {m.email: m.details.to_dict() for m in members}

        assert documents(await service.store.list_members(SELLER)) == documents(
            await fresh.store.list_members(SELLER)
        )

    async def test_second_pass_is_unchanged(self, service, fact_source) -> None:
        """Refreshing twice without drift leaves every member untouched."""
        fact_source.add_purchase(purchase(1, "a@example.com"))
        fact_source.add_follower(follower(2, "b@example.com"))

        await service.refresh_all(SELLER)
        result = await service.refresh_all(SELLER)

        assert result.unchanged == 2
        assert result.created == result.updated == result.deleted == 0

    async def test_contacts_without_qualifying_facts_get_no_member(
        self, service, fact_source
    ) -> None:
        """A contact whose every record is disqualified has no member."""
        fact_source.add_purchase(purchase(1, "refunded@example.com", refunded=True))

        result = await service.refresh_all(SELLER)

        assert result.total_contacts == 1
        assert result.unchanged == 1
        assert result.member_count == 0

    async def test_failures_are_isolated(self, service, fact_source) -> None:
        """One failing contact does not stop the others."""
        for i, email in enumerate(["a@example.com", "b@example.com", "c@example.com"]):
            fact_source.add_purchase(purchase(i + 1, email))
        fact_source.fail_for(SELLER, "b@example.com")

        result = await service.refresh_all(SELLER)

        assert result.created == 2
        assert result.failed == 1
        assert list(result.errors) == ["b@example.com"]
        assert result.success_rate == pytest.approx(200 / 3)

    async def test_progress_reported_per_chunk(self, store, fact_source) -> None:
        """on_progress is called after each chunk of refresh_batch_size contacts."""
        for i in range(5):
            fact_source.add_purchase(purchase(i + 1, f"contact{i}@example.com"))
        config = AudienceConfig(refresh_batch_size=2, refresh_concurrency=2)
        service = AudienceService(store, fact_source, config)
        progress: list[tuple[int, int]] = []

        def on_progress(done: int, total: int) -> None:
            progress.append((done, total))

        result = await service.refresh_all(SELLER, on_progress)

        assert progress == [(2, 5), (4, 5), (5, 5)]
        assert result.created == 5

    async def test_other_sellers_untouched(self, service, fact_source) -> None:
        """Refreshing one seller never deletes another seller's members."""
        fact_source.add_purchase(purchase(1, "a@example.com", seller_id=2))
        await service.refresh_all(2)

        await service.refresh_all(SELLER)

        assert await service.store.count_members(2) == 1

    async def test_unreadable_contact_list_raises(self, store) -> None:
        """A failure listing contacts aborts the run."""

        class DownSource(InMemoryFactSource):
            async def contact_emails(self, seller_id):
                raise ConnectionError("database is down")

        service = AudienceService(store, DownSource())

        with pytest.raises(FactSourceError) as exc_info:
            await service.refresh_all(SELLER)
        assert exc_info.value.seller_id == SELLER


# =============================================================================
# Verification Tests
# =============================================================================


class TestVerifyMember:
    """Tests for comparing stored members with ground truth."""

    async def test_accurate_after_refresh(self, service, fact_source) -> None:
        fact_source.add_purchase(purchase(1, "a@example.com"))
        await service.refresh(SELLER, "a@example.com")

        report = await service.verify_member(SELLER, "a@example.com")

        assert report["is_accurate"] is True
        assert report["discrepancy_count"] == 0

    async def test_reports_drift_without_writing(self, service, fact_source) -> None:
        """Drift is reported per category and the stored member is left alone."""
        record = fact_source.add_purchase(purchase(1, "a@example.com"))
        fact_source.add_purchase(purchase(2, "a@example.com"))
        await service.refresh(SELLER, "a@example.com")
        record.refunded = True

        report = await service.verify_member(SELLER, "a@example.com")

        assert report["is_accurate"] is False
        assert [d["field"] for d in report["discrepancies"]] == ["purchases"]
        member = await service.get_member(SELLER, "a@example.com")
        assert len(member.details.purchases) == 2

    async def test_missing_member_reported(self, service, fact_source) -> None:
        fact_source.add_follower(follower(1, "a@example.com"))

        report = await service.verify_member(SELLER, "a@example.com")

        assert report["discrepancies"][0] == {
            "field": "member",
            "existing": None,
            "rebuilt": "present",
        }


class TestRefreshWithoutSource:
    """A service without a fact source can not refresh."""

    async def test_refresh_requires_source(self, store) -> None:
        service = AudienceService(store)

        with pytest.raises(AudienceError):
            await service.refresh(SELLER, "a@example.com")
        with pytest.raises(AudienceError):
            await service.refresh_all(SELLER)
