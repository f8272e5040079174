"""Email normalization and member-key utilities.

Centralizes the contact identity rules so callers never need to
normalize or compare emails themselves.

Member key: (seller_id, normalized_email)
"""

from __future__ import annotations

import re

from .exceptions import MemberValidationError

EMAIL_REGEX = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def normalize_email(email: str) -> str:
    """Strip surrounding whitespace and lower-case an email."""
    return email.strip().lower()


def validate_email(email: str | None) -> str:
    """Normalize an email and check its shape.

    Raises MemberValidationError on blank or malformed input.
    """
    if email is None or not email.strip():
        raise MemberValidationError("email", "can't be blank")

    normalized = normalize_email(email)
    if not EMAIL_REGEX.match(normalized):
        raise MemberValidationError("email", "is invalid", normalized)
    return normalized


def member_key(seller_id: int, email: str) -> tuple[int, str]:
    """Build the (seller_id, email) identity key for a member."""
    return (seller_id, normalize_email(email))
