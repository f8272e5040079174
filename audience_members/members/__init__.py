"""
Audience member materialization and segmentation.

This module provides:
- MemberDetails: Folded follower/purchases/affiliates document of a contact
- SummaryColumns: Derived, queryable columns of a member
- MemberAggregator: Incremental fact updates from lifecycle events
- MemberRefresher: Full reconstruction from ground truth
- MemberFilter: Validated filter params, evaluated by MemberFilterEvaluator
- AudienceService: The library boundary wiring all of the above

Usage:
    from audience_members.members import AudienceService, PurchaseFact

    service = AudienceService(store, source)

    # Incremental updates from events
    await service.on_purchase_qualified(seller_id, email, purchase_fact)

    # Segmentation
    members = await service.filter(
        seller_id,
        {"type": "customer", "bought_product_ids": [1, 3], "bought_from": "Canada"},
    )

    # Reconciliation
    result = await service.refresh_all(seller_id)
"""

from .aggregator import MemberAction, MemberAggregator, MemberLocks, UpdateResult
from .deriver import SummaryColumns, derive_summary
from .filters import MemberFilter, MemberFilterEvaluator, MemberType
from .member import Member, MemberMatch
from .query_builder import MemberQueryBuilder, SQLQuery, build_member_query
from .refresher import (
    BatchRefreshResult,
    FactSource,
    MemberRefresher,
    RefreshResult,
    fold_details,
)
from .service import AudienceService, filter_members, members_matching
from .types import (
    AffiliateFact,
    FactCategory,
    FollowerFact,
    MemberDetails,
    PurchaseFact,
    parse_fact,
)

__all__ = [
    # Types
    "AffiliateFact",
    "FactCategory",
    "FollowerFact",
    "Member",
    "MemberDetails",
    "MemberMatch",
    "PurchaseFact",
    "SummaryColumns",
    "parse_fact",
    "derive_summary",
    # Aggregation
    "MemberAction",
    "MemberAggregator",
    "MemberLocks",
    "UpdateResult",
    # Refresh
    "BatchRefreshResult",
    "FactSource",
    "MemberRefresher",
    "RefreshResult",
    "fold_details",
    # Filtering
    "MemberFilter",
    "MemberFilterEvaluator",
    "MemberQueryBuilder",
    "MemberType",
    "SQLQuery",
    "build_member_query",
    # Service
    "AudienceService",
    "filter_members",
    "members_matching",
]
