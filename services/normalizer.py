"""
Identity normalization utilities.

Pure functions that derive the canonical, URL-safe username (slug) for a
creator identity and the punctuation-insensitive forms used by search.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from constants import (
    PLATFORM_ID_FALLBACK_LENGTH,
    SEARCH_SEPARATOR_PATTERN,
    USERNAME_COLLISION_SUFFIX_LENGTHS,
    USERNAME_MAX_LENGTH,
    USERNAME_PATTERN,
)

_NON_SLUG_CHARS = re.compile(r"[^a-z0-9]")
_SEPARATORS = re.compile(SEARCH_SEPARATOR_PATTERN)
_USERNAME_RE = re.compile(USERNAME_PATTERN)


class IdentityErrorKind(Enum):
    INVALID_IDENTITY_INPUT = "InvalidIdentityInput"


@dataclass(frozen=True)
class DerivedUsername:
    """Result of deriving a username from identity fields."""

    slug: Optional[str] = None
    source: Optional[str] = None  # 'display_name', 'platform_id'
    error: Optional[IdentityErrorKind] = None

    @property
    def ok(self) -> bool:
        return self.slug is not None


def _slugify(value: Optional[str], max_length: int) -> str:
    if not value:
        return ""
    return _NON_SLUG_CHARS.sub("", value.lower())[:max_length]


def derive_username(display_name: Optional[str], platform_id: Optional[str]) -> DerivedUsername:
    """
    Derive the canonical username for an identity.

    The display name is lower-cased, reduced to [a-z0-9] and truncated to 50
    characters. When nothing survives, the first 24 slug characters of the
    platform id are used instead.

    Args:
        display_name: Upstream display name, may be empty or None.
        platform_id: Opaque upstream identifier.

    Returns:
        DerivedUsername with ``slug`` set, or with ``error`` set to
        INVALID_IDENTITY_INPUT when neither field yields a character.

    Examples:
        >>> derive_username("Mr. Beast!!", "anyid").slug
        'mrbeast'
        >>> derive_username("", "UCX6OQ3DkcsbYNE6H8uQQuVA").slug
        'ucx6oq3dkcsbyne6h8uqquva'
    """
    slug = _slugify(display_name, USERNAME_MAX_LENGTH)
    if slug:
        return DerivedUsername(slug=slug, source="display_name")

    slug = _slugify(platform_id, PLATFORM_ID_FALLBACK_LENGTH)
    if slug:
        return DerivedUsername(slug=slug, source="platform_id")

    return DerivedUsername(error=IdentityErrorKind.INVALID_IDENTITY_INPUT)


def username_candidates(slug: str, platform_id: Optional[str]) -> List[str]:
    """
    Usernames to try, in order, when restoring ``slug`` for an identity.

    The derived slug comes first, then the slug with 4, 8 and 24 slug
    characters of the platform id appended (the slug is shortened to stay
    within 50 characters). The order is deterministic, so a re-run picks the
    same name for the same identity.

    Examples:
        >>> username_candidates("alpha", "UC-9xYz12345")
        ['alpha', 'alphauc9x', 'alphauc9xyz12', 'alphauc9xyz12345']
    """
    candidates = [slug]
    platform_slug = _slugify(platform_id, PLATFORM_ID_FALLBACK_LENGTH)
    for length in USERNAME_COLLISION_SUFFIX_LENGTHS:
        suffix = platform_slug[:length]
        if not suffix:
            break
        candidate = slug[: USERNAME_MAX_LENGTH - len(suffix)] + suffix
        if candidate not in candidates:
            candidates.append(candidate)
    return candidates


def is_valid_username(value: Optional[str]) -> bool:
    """Return True when value is a well-formed canonical username."""
    return bool(value) and bool(_USERNAME_RE.fullmatch(value))


def strip_separators(text: Optional[str]) -> str:
    """Remove '.', '_', '-' and whitespace (used for fuzzy comparisons)."""
    return _SEPARATORS.sub("", text or "")


def describe_identity(platform: Optional[str], username: Optional[str], creator_id=None) -> str:
    """Short, log-friendly label for an identity."""
    label = f"{platform or '?'}/@{username}" if username else f"{platform or '?'}/<no username>"
    return f"{label} (id={creator_id})" if creator_id is not None else label
