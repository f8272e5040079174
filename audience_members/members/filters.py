"""
Audience filter parsing and evaluation.

Filter params arrive as a loose mapping from the outer surface (post
targeting, exports). ``MemberFilter.from_params`` validates them into a
typed MemberFilter before any storage access, and
``MemberFilterEvaluator`` evaluates that filter against member documents.

Matching has two levels:

- Member level: ``type`` and the ``not_bought_*`` exclusions look at the
  member as a whole, as do the date bounds on the summary timestamps of
  the typed category (a follower filter always bounds the follower's own
  ``created_at``).
- Row level: every other predicate is evaluated against individual facts.
  Predicates on purchase fields must all hold for ONE purchase, predicates
  on affiliate fields for ONE affiliate entry, and both date bounds for ONE
  fact. A member whose only free purchase is product 7 and whose only paid
  purchase is product 8 does not match ``bought_product_ids=[7],
  paid_more_than_cents=0``.

Usage:
    member_filter = MemberFilter.from_params({"type": "customer", "bought_from": "Canada"})
    evaluator = MemberFilterEvaluator(member_filter)
    matches = [m for m in members if evaluator.matches(m)]
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field, fields
from datetime import datetime
from enum import Enum
from typing import Any

from ..exceptions import FilterValidationError
from .deriver import SummaryColumns
from .member import Member, MemberMatch
from .types import AffiliateFact, FactCategory, PurchaseFact, parse_timestamp


class MemberType(Enum):
    """Member types that can be filtered on."""

    CUSTOMER = "customer"
    FOLLOWER = "follower"
    AFFILIATE = "affiliate"


VALID_FILTER_TYPES = tuple(t.value for t in MemberType)

ID_SET_PARAMS = (
    "bought_product_ids",
    "bought_variant_ids",
    "not_bought_product_ids",
    "not_bought_variant_ids",
    "affiliate_product_ids",
)
CENTS_PARAMS = ("paid_more_than_cents", "paid_less_than_cents")
DATE_PARAMS = ("created_after", "created_before")


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, set, frozenset)):
        return len(value) == 0
    return False


def _parse_int(param: str, value: Any) -> int:
    if isinstance(value, bool):
        raise FilterValidationError(param, "must be an integer", value)
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    raise FilterValidationError(param, "must be an integer", value)


def _parse_id_set(param: str, value: Any) -> frozenset[int]:
    if isinstance(value, (str, bytes)) or not isinstance(value, Iterable):
        raise FilterValidationError(param, "must be a list of ids", value)
    return frozenset(_parse_int(param, item) for item in value)


@dataclass
class MemberFilter:
    """A validated audience filter. All fields are optional and AND-combined."""

    type: MemberType | None = None
    bought_product_ids: frozenset[int] = field(default_factory=frozenset)
    bought_variant_ids: frozenset[int] = field(default_factory=frozenset)
    not_bought_product_ids: frozenset[int] = field(default_factory=frozenset)
    not_bought_variant_ids: frozenset[int] = field(default_factory=frozenset)
    paid_more_than_cents: int | None = None
    paid_less_than_cents: int | None = None
    created_after: datetime | None = None
    created_before: datetime | None = None
    bought_from: str | None = None
    affiliate_product_ids: frozenset[int] = field(default_factory=frozenset)

    @classmethod
    def from_params(cls, params: dict[str, Any] | MemberFilter | None) -> MemberFilter:
        """Validate raw filter params.

        Blank values (None, empty strings and empty lists) are ignored.

        Raises:
            FilterValidationError: Unknown param, unknown type, negative
                price bound, non-integer id or unparsable date.
        """
        if params is None:
            return cls()
        if isinstance(params, MemberFilter):
            return params
        if not isinstance(params, dict):
            raise FilterValidationError("params", "must be a mapping", params)

        known = {f.name for f in fields(cls)}
        parsed: dict[str, Any] = {}

        for param, value in params.items():
            if param not in known:
                raise FilterValidationError(param, "is not a supported filter")
            if _is_blank(value):
                continue

            if param == "type":
                if isinstance(value, MemberType):
                    parsed[param] = value
                elif value in VALID_FILTER_TYPES:
                    parsed[param] = MemberType(value)
                else:
                    raise FilterValidationError(
                        param, f"must be one of: {', '.join(VALID_FILTER_TYPES)}", value
                    )
            elif param in ID_SET_PARAMS:
                parsed[param] = _parse_id_set(param, value)
            elif param in CENTS_PARAMS:
                cents = _parse_int(param, value)
                if cents < 0:
                    raise FilterValidationError(param, "must not be negative", value)
                parsed[param] = cents
            elif param in DATE_PARAMS:
                try:
                    parsed[param] = parse_timestamp(value)
                except ValueError:
                    raise FilterValidationError(
                        param, "must be an ISO-8601 timestamp", value
                    ) from None
            elif param == "bought_from":
                if not isinstance(value, str):
                    raise FilterValidationError(param, "must be a country name", value)
                parsed[param] = value.strip()

        return cls(**parsed)

    def to_params(self) -> dict[str, Any]:
        """Serialize back to a compact params dict (for logging and caching)."""
        params: dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if _is_blank(value):
                continue
            if isinstance(value, MemberType):
                value = value.value
            elif isinstance(value, frozenset):
                value = sorted(value)
            elif isinstance(value, datetime):
                value = value.isoformat()
            params[f.name] = value
        return params

    # =========================================================================
    # Predicate Shape
    # =========================================================================

    @property
    def is_empty(self) -> bool:
        """True when no predicate is set (matches every member)."""
        return not self.to_params()

    @property
    def has_bought_filter(self) -> bool:
        return bool(self.bought_product_ids or self.bought_variant_ids)

    @property
    def has_price_bounds(self) -> bool:
        return self.paid_more_than_cents is not None or self.paid_less_than_cents is not None

    @property
    def has_date_bounds(self) -> bool:
        return self.created_after is not None or self.created_before is not None

    @property
    def has_purchase_predicates(self) -> bool:
        """Predicates that must hold for one common purchase."""
        return self.has_bought_filter or self.has_price_bounds or self.bought_from is not None

    @property
    def has_affiliate_predicates(self) -> bool:
        """Predicates that must hold for one common affiliate entry."""
        return bool(self.affiliate_product_ids)

    @property
    def has_row_predicates(self) -> bool:
        """Whether any predicate is evaluated against individual facts."""
        return (
            self.has_purchase_predicates or self.has_affiliate_predicates or self.has_date_bounds
        )

    def date_scope(self) -> frozenset[FactCategory]:
        """Categories whose creation timestamps the date bounds apply to."""
        match self.type:
            case MemberType.CUSTOMER:
                return frozenset({FactCategory.PURCHASES})
            case MemberType.FOLLOWER:
                if self.has_bought_filter:
                    return frozenset({FactCategory.FOLLOWER, FactCategory.PURCHASES})
                return frozenset({FactCategory.FOLLOWER})
            case MemberType.AFFILIATE:
                return frozenset({FactCategory.AFFILIATES})
        return frozenset(FactCategory)

    def member_date_scope(self) -> frozenset[FactCategory]:
        """Categories whose summary timestamps must satisfy the date bounds.

        Same as ``date_scope`` except for followers: a follower filter always
        bounds the follower's own ``created_at``, even when bought filters
        widen the row-level scope to purchases.
        """
        if self.type is MemberType.FOLLOWER:
            return frozenset({FactCategory.FOLLOWER})
        return self.date_scope()

    def constrained_categories(self) -> frozenset[FactCategory]:
        """Categories carrying their own row-level predicates."""
        constrained = set()
        if self.has_purchase_predicates:
            constrained.add(FactCategory.PURCHASES)
        if self.has_affiliate_predicates:
            constrained.add(FactCategory.AFFILIATES)
        return frozenset(constrained)

    def date_bound_categories(self) -> frozenset[FactCategory]:
        """Categories whose candidate fact must satisfy the date bounds.

        When a category in the date scope carries its own predicates, the
        bounds bind to that category's candidate; otherwise any fact in the
        scope may satisfy them.
        """
        if not self.has_date_bounds:
            return frozenset()
        scope = self.date_scope()
        return (self.constrained_categories() & scope) or scope


class MemberFilterEvaluator:
    """Evaluates a MemberFilter against materialized members.

    The evaluator is read-only and holds no per-member state, so one
    instance can be shared across a whole scan.
    """

    def __init__(self, member_filter: MemberFilter) -> None:
        self.filter = member_filter
        self._constrained = member_filter.constrained_categories()
        self._date_bound = member_filter.date_bound_categories()
        self._member_date_scope = member_filter.member_date_scope()
        self._participating = self._constrained | self._date_bound

    # =========================================================================
    # Summary Prefilter
    # =========================================================================

    def prefilter(self, summary: SummaryColumns) -> bool:
        """Cheap necessary condition on summary columns.

        A False result guarantees the member does not match. Storage
        backends use the same conditions in their native query language.
        """
        f = self.filter

        if f.type is not None and not getattr(summary, f.type.value):
            return False
        if FactCategory.PURCHASES in self._constrained and not summary.customer:
            return False
        if FactCategory.AFFILIATES in self._constrained and not summary.affiliate:
            return False

        if f.paid_more_than_cents is not None and not (
            summary.max_paid_cents is not None and summary.max_paid_cents > f.paid_more_than_cents
        ):
            return False
        if f.paid_less_than_cents is not None and not (
            summary.min_paid_cents is not None and summary.min_paid_cents < f.paid_less_than_cents
        ):
            return False

        return self._summary_dates_match(summary)

    def _summary_dates_match(self, summary: SummaryColumns) -> bool:
        f = self.filter
        if not f.has_date_bounds:
            return True

        min_column, max_column = date_columns_for_scope(self._member_date_scope)
        lowest = getattr(summary, min_column)
        highest = getattr(summary, max_column)
        if f.created_after is not None and not (highest and highest > f.created_after):
            return False
        if f.created_before is not None and not (lowest and lowest < f.created_before):
            return False
        return True

    # =========================================================================
    # Full Evaluation
    # =========================================================================

    def matches(self, member: Member) -> bool:
        """Whether the member satisfies every predicate."""
        return self.evaluate(member) is not None

    def evaluate(self, member: Member) -> MemberMatch | None:
        """Evaluate the filter, returning a match with fact ids or None.

        The match carries, per category, the highest id among the facts that
        satisfied the row-level predicates. With no row-level predicates each
        id is the highest of the category; a category not taking part in a
        row-level filter reports None.
        """
        f = self.filter
        details = member.details

        if f.type is not None and not getattr(member.summary, f.type.value):
            return None
        if not self._summary_dates_match(member.summary):
            return None
        if not self._passes_exclusions(details.purchases):
            return None

        if not f.has_row_predicates:
            return MemberMatch(
                member=member,
                purchase_id=max((p.id for p in details.purchases), default=None),
                follower_id=details.follower.id if details.follower else None,
                affiliate_id=max((a.id for a in details.affiliates), default=None),
            )

        candidates: dict[FactCategory, list[int]] = {}

        if FactCategory.PURCHASES in self._participating:
            candidates[FactCategory.PURCHASES] = [
                p.id for p in details.purchases if self._purchase_matches(p)
            ]
        if FactCategory.AFFILIATES in self._participating:
            candidates[FactCategory.AFFILIATES] = [
                a.id for a in details.affiliates if self._affiliate_matches(a)
            ]
        if FactCategory.FOLLOWER in self._participating:
            follower = details.follower
            candidates[FactCategory.FOLLOWER] = (
                [follower.id] if follower and self._date_matches(follower.created_at) else []
            )

        # Each constrained category needs its own matching fact
        for category in self._constrained:
            if not candidates[category]:
                return None

        # Unbound date bounds may be satisfied by any fact in scope
        if self._date_bound and not (self._date_bound & self._constrained):
            if not any(candidates[c] for c in self._date_bound):
                return None

        return MemberMatch(
            member=member,
            purchase_id=max(candidates.get(FactCategory.PURCHASES, []), default=None),
            follower_id=max(candidates.get(FactCategory.FOLLOWER, []), default=None),
            affiliate_id=max(candidates.get(FactCategory.AFFILIATES, []), default=None),
        )

    # =========================================================================
    # Private Predicates
    # =========================================================================

    def _passes_exclusions(self, purchases: tuple[PurchaseFact, ...]) -> bool:
        f = self.filter
        for purchase in purchases:
            if purchase.product_id in f.not_bought_product_ids:
                return False
            if f.not_bought_variant_ids.intersection(purchase.variant_ids):
                return False
        return True

    def _date_matches(self, created_at: datetime) -> bool:
        f = self.filter
        if f.created_after is not None and not created_at > f.created_after:
            return False
        if f.created_before is not None and not created_at < f.created_before:
            return False
        return True

    def _purchase_matches(self, purchase: PurchaseFact) -> bool:
        f = self.filter

        if f.has_bought_filter and not (
            purchase.product_id in f.bought_product_ids
            or f.bought_variant_ids.intersection(purchase.variant_ids)
        ):
            return False
        if f.paid_more_than_cents is not None and not purchase.price_cents > f.paid_more_than_cents:
            return False
        if f.paid_less_than_cents is not None and not purchase.price_cents < f.paid_less_than_cents:
            return False
        if f.bought_from is not None and purchase.country != f.bought_from:
            return False
        if FactCategory.PURCHASES in self._date_bound and not self._date_matches(
            purchase.created_at
        ):
            return False
        return True

    def _affiliate_matches(self, affiliate: AffiliateFact) -> bool:
        f = self.filter

        if f.affiliate_product_ids and affiliate.product_id not in f.affiliate_product_ids:
            return False
        if FactCategory.AFFILIATES in self._date_bound and not self._date_matches(
            affiliate.created_at
        ):
            return False
        return True


def date_columns_for_scope(scope: frozenset[FactCategory]) -> tuple[str, str]:
    """Summary (min, max) timestamp columns covering a date scope."""
    if scope == {FactCategory.PURCHASES}:
        return "min_purchase_created_at", "max_purchase_created_at"
    if scope == {FactCategory.FOLLOWER}:
        return "follower_created_at", "follower_created_at"
    if scope == {FactCategory.AFFILIATES}:
        return "min_affiliate_created_at", "max_affiliate_created_at"
    return "min_created_at", "max_created_at"
