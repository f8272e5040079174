"""
The materialized audience member.

A member is the unique (seller, email) aggregate. Its summary columns are
never stored on the object: ``summary`` is derived from ``details`` on
read, so the two can not disagree. Backends persist ``member.summary``
alongside the document at write time.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any

from ..email_utils import validate_email
from .deriver import SummaryColumns, derive_summary
from .types import MemberDetails, parse_timestamp


@dataclass
class Member:
    """A materialized (seller, email) audience member.

    Attributes:
        seller_id: Owning seller
        email: Normalized contact email, unique per seller
        details: Folded follower/purchases/affiliates document
        id: Store-assigned id, monotonically increasing (None until saved)
        version: Optimistic-concurrency counter, bumped on every save
        created_at: When the row was first stored
        updated_at: When the row was last stored
    """

    seller_id: int
    email: str
    details: MemberDetails = field(default_factory=MemberDetails)
    id: int | None = None
    version: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None

    _summary_cache: tuple[MemberDetails, SummaryColumns] | None = field(
        default=None, init=False, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        """Normalize and validate the email."""
        self.email = validate_email(self.email)

    @property
    def summary(self) -> SummaryColumns:
        """Summary columns derived from the current details."""
        cached = self._summary_cache
        if cached is None or cached[0] is not self.details:
            cached = (self.details, derive_summary(self.details))
            self._summary_cache = cached
        return cached[1]

    @property
    def is_empty(self) -> bool:
        return self.details.is_empty

    def with_details(self, details: MemberDetails) -> Member:
        """Return a copy of this member holding ``details``."""
        return replace(self, details=details)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary (details plus derived columns)."""
        return {
            "id": self.id,
            "seller_id": self.seller_id,
            "email": self.email,
            "details": self.details.to_dict(),
            "version": self.version,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            **self.summary.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Member:
        """Deserialize from dictionary. Stored summary columns are ignored."""
        created_at = data.get("created_at")
        updated_at = data.get("updated_at")
        return cls(
            seller_id=data["seller_id"],
            email=data["email"],
            details=MemberDetails.from_dict(data.get("details")),
            id=data.get("id"),
            version=data.get("version", 0),
            created_at=parse_timestamp(created_at) if created_at else None,
            updated_at=parse_timestamp(updated_at) if updated_at else None,
        )


@dataclass
class MemberMatch:
    """A filter result carrying the id of the last matching fact per category."""

    member: Member
    purchase_id: int | None = None
    follower_id: int | None = None
    affiliate_id: int | None = None

    @property
    def id(self) -> int | None:
        return self.member.id
