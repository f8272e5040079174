"""
Audience Members

Materialized audience segmentation for sellers.

Provides:
- One member per (seller, contact email), folding the contact's purchases,
  follower record and product affiliations into a details document
- Incremental updates from purchase/follower/affiliate lifecycle events
- Derived summary columns for storage-side prefiltering
- Multi-predicate filter queries (type, product/variant bought or not,
  price range, creation dates, country, affiliate product)
- Full reconciliation of a seller's audience against ground truth

Usage:

    >>> from audience_members import AudienceService, SQLiteMemberStore
    >>> async with await SQLiteMemberStore.create() as store:
    ...     service = AudienceService(store, source)
    ...
    ...     # Events from the commerce platform
    ...     await service.on_follower_confirmed(seller_id, email, {"id": 1, "created_at": now})
    ...
    ...     # Segmentation
    ...     members = await service.filter(seller_id, {"type": "follower"}, with_ids=True)
    ...
    ...     # Nightly reconciliation
    ...     result = await service.refresh_all(seller_id)

Store Selection:

    # In-memory, for tests and embedded use
    from audience_members.storage import InMemoryMemberStore

    # SQLite for single-node deployments
    from audience_members.storage import SQLiteMemberStore, SQLiteConfig
"""

from .config import AudienceConfig

# Exceptions
from .exceptions import (
    AudienceError,
    ConcurrentUpdateError,
    FactSourceError,
    FactValidationError,
    FilterValidationError,
    MemberNotFoundError,
    MemberValidationError,
    StorageConnectionError,
    StorageIOError,
)

# Members
from .members import (
    AffiliateFact,
    AudienceService,
    BatchRefreshResult,
    FactCategory,
    FactSource,
    FollowerFact,
    Member,
    MemberDetails,
    MemberFilter,
    MemberMatch,
    MemberType,
    PurchaseFact,
    RefreshResult,
    SummaryColumns,
)

# Fact sources
from .sources import AffiliateRecord, FollowerRecord, InMemoryFactSource, PurchaseRecord

# Storage
from .storage import InMemoryMemberStore, MemberStore, SQLiteConfig, SQLiteMemberStore

__all__ = [
    # Service
    "AudienceService",
    "AudienceConfig",
    # Types
    "AffiliateFact",
    "FactCategory",
    "FollowerFact",
    "Member",
    "MemberDetails",
    "MemberFilter",
    "MemberMatch",
    "MemberType",
    "PurchaseFact",
    "SummaryColumns",
    # Refresh
    "BatchRefreshResult",
    "FactSource",
    "RefreshResult",
    "AffiliateRecord",
    "FollowerRecord",
    "InMemoryFactSource",
    "PurchaseRecord",
    # Storage
    "MemberStore",
    "InMemoryMemberStore",
    "SQLiteConfig",
    "SQLiteMemberStore",
    # Exceptions
    "AudienceError",
    "ConcurrentUpdateError",
    "FactSourceError",
    "FactValidationError",
    "FilterValidationError",
    "MemberNotFoundError",
    "MemberValidationError",
    "StorageConnectionError",
    "StorageIOError",
]

__version__ = "0.1.0"
