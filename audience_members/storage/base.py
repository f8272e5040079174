"""
Abstract base class for member stores.

All storage implementations (in-memory, SQLite) must implement this interface.
The member table is the only shared mutable resource of the library; every
write is guarded by an optimistic version check so concurrent read-merge-write
cycles on the same member can never silently lose an update.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..members.filters import MemberFilter
    from ..members.member import Member


class MemberStore(ABC):
    """Persistence interface for audience members.

    Version contract:
    - A member with ``id is None`` is inserted; an existing row for the same
      (seller, email) raises ConcurrentUpdateError.
    - Otherwise the stored version must equal ``member.version``; the saved
      copy carries ``version + 1``.
    """

    @abstractmethod
    async def get_member(self, seller_id: int, email: str) -> Member | None:
        """Get a member by (seller, email), or None."""
        ...

    @abstractmethod
    async def list_members(self, seller_id: int) -> list[Member]:
        """List every member of a seller, ordered by id."""
        ...

    @abstractmethod
    async def list_emails(self, seller_id: int) -> set[str]:
        """Emails of every stored member of a seller."""
        ...

    @abstractmethod
    async def query_members(self, seller_id: int, member_filter: MemberFilter) -> list[Member]:
        """Members whose summary columns pass the filter's prefilter, ordered by id.

        Results are candidates: callers still evaluate row-level predicates.
        """
        ...

    @abstractmethod
    async def save_member(self, member: Member) -> Member:
        """Insert or update a member; returns the stored copy (id, version set).

        Raises:
            ConcurrentUpdateError: If the stored version moved since read
        """
        ...

    @abstractmethod
    async def delete_member(
        self,
        seller_id: int,
        email: str,
        expected_version: int | None = None,
    ) -> bool:
        """Delete a member. Returns False if no row existed.

        Raises:
            ConcurrentUpdateError: If ``expected_version`` is given and differs
        """
        ...

    @abstractmethod
    async def count_members(self, seller_id: int) -> int:
        """Count the stored members of a seller."""
        ...

    async def close(self) -> None:
        """Release resources held by the store."""
        return None

    async def __aenter__(self) -> MemberStore:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
