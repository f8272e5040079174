"""
Ground-truth fact sources for member refresh.

Records encode when a sale, follower or affiliate row contributes to a
member; sources implement the ``FactSource`` protocol read by the refresher.
"""

from .memory import InMemoryFactSource
from .records import PURCHASE_SUCCESSFUL, AffiliateRecord, FollowerRecord, PurchaseRecord

__all__ = [
    "PURCHASE_SUCCESSFUL",
    "AffiliateRecord",
    "FollowerRecord",
    "InMemoryFactSource",
    "PurchaseRecord",
]
