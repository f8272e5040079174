"""
In-memory member store.

Keeps members in a dict keyed by (seller_id, email). Used by the test suite
and by embedded callers that rebuild the audience on start-up.
"""

from __future__ import annotations

import itertools
from dataclasses import replace
from datetime import UTC, datetime

from ..email_utils import member_key
from ..exceptions import ConcurrentUpdateError
from ..members.filters import MemberFilter, MemberFilterEvaluator
from ..members.member import Member
from .base import MemberStore


class InMemoryMemberStore(MemberStore):
    """Dict-backed MemberStore.

    Every method runs without awaiting, so each call is atomic with respect
    to other coroutines on the same event loop.
    """

    def __init__(self) -> None:
        self._members: dict[tuple[int, str], Member] = {}
        self._ids = itertools.count(1)

    async def get_member(self, seller_id: int, email: str) -> Member | None:
        stored = self._members.get(member_key(seller_id, email))
        return replace(stored) if stored else None

    async def list_members(self, seller_id: int) -> list[Member]:
        members = [replace(m) for (sid, _), m in self._members.items() if sid == seller_id]
        return sorted(members, key=lambda m: m.id)

    async def list_emails(self, seller_id: int) -> set[str]:
        return {email for (sid, email) in self._members if sid == seller_id}

    async def query_members(self, seller_id: int, member_filter: MemberFilter) -> list[Member]:
        evaluator = MemberFilterEvaluator(member_filter)
        return [m for m in await self.list_members(seller_id) if evaluator.prefilter(m.summary)]

    async def save_member(self, member: Member) -> Member:
        key = member_key(member.seller_id, member.email)
        stored = self._members.get(key)
        now = datetime.now(UTC)

        if member.id is None:
            if stored is not None:
                raise ConcurrentUpdateError(member.seller_id, member.email, member.version)
            saved = replace(member, id=next(self._ids), version=1, created_at=now, updated_at=now)
        else:
            if stored is None or stored.version != member.version:
                raise ConcurrentUpdateError(member.seller_id, member.email, member.version)
            saved = replace(member, version=member.version + 1, updated_at=now)

        self._members[key] = saved
        return replace(saved)

    async def delete_member(
        self,
        seller_id: int,
        email: str,
        expected_version: int | None = None,
    ) -> bool:
        key = member_key(seller_id, email)
        stored = self._members.get(key)
        if stored is None:
            return False
        if expected_version is not None and stored.version != expected_version:
            raise ConcurrentUpdateError(seller_id, email, expected_version)
        del self._members[key]
        return True

    async def count_members(self, seller_id: int) -> int:
        return sum(1 for (sid, _) in self._members if sid == seller_id)
