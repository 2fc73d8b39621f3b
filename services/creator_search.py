"""
Fuzzy creator search.

Resolves a free-text query against creator identities and ranks matches in
four tiers: exact username, username prefix, username substring, and
display-name-only. Each comparison is made both on the raw lowercase text and
on a punctuation-insensitive form ('.', '_', '-' and whitespace removed), so
"Mr.Beast", "mr_beast" and "mrbeast" all find @mrbeast.
"""

import logging
import re
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Dict, Iterable, List, Optional, Union

import db
from constants import (
    CREATOR_COLUMNS,
    CREATOR_TABLE,
    SEARCH_DEFAULT_LIMIT,
    SEARCH_MIN_QUERY_LENGTH,
    SEARCH_PAGE_SIZE,
    SEARCH_SEPARATOR_PATTERN,
)
from services.models import CreatorIdentity, Platform, normalize_platform
from services.normalizer import strip_separators

logger = logging.getLogger(__name__)


class MatchTier(IntEnum):
    """Relevance buckets; lower value ranks higher."""

    EXACT = 1
    PREFIX = 2
    SUBSTRING = 3
    DISPLAY_NAME = 4


@dataclass(frozen=True)
class SearchQuery:
    sanitized: str
    stripped: str
    platform: Optional[str] = None
    limit: int = SEARCH_DEFAULT_LIMIT

    @classmethod
    def parse(
        cls,
        query: Any,
        platform: Union[str, Platform, None] = None,
        limit: Optional[int] = SEARCH_DEFAULT_LIMIT,
    ) -> Optional["SearchQuery"]:
        """Sanitize raw input. Returns None when there is nothing worth ranking."""
        if not isinstance(query, str):
            return None

        if limit is None:
            limit = SEARCH_DEFAULT_LIMIT
        try:
            limit = int(limit)
        except (TypeError, ValueError):
            return None
        if limit <= 0:
            return None

        sanitized = query.strip().lower()
        stripped = strip_separators(sanitized)
        if len(stripped) < SEARCH_MIN_QUERY_LENGTH:
            return None

        return cls(
            sanitized=sanitized,
            stripped=stripped,
            platform=normalize_platform(platform),
            limit=limit,
        )


def match_tier(identity: CreatorIdentity, query: SearchQuery) -> Optional[MatchTier]:
    """Return the best tier the identity qualifies for, or None if it is not a candidate."""
    username = (identity.username or "").lower()
    username_stripped = strip_separators(username)

    if username == query.sanitized or username_stripped == query.stripped:
        return MatchTier.EXACT
    if username.startswith(query.sanitized) or username_stripped.startswith(query.stripped):
        return MatchTier.PREFIX
    if query.sanitized in username or query.stripped in username_stripped:
        return MatchTier.SUBSTRING

    display_name = (identity.display_name or "").lower()
    if query.sanitized in display_name or query.stripped in strip_separators(display_name):
        return MatchTier.DISPLAY_NAME

    return None


def _as_identity(record: Union[CreatorIdentity, Dict[str, Any]]) -> CreatorIdentity:
    if isinstance(record, CreatorIdentity):
        return record
    return CreatorIdentity.from_row(record)


def rank_creators(
    records: Iterable[Union[CreatorIdentity, Dict[str, Any]]],
    query: Any,
    platform: Union[str, Platform, None] = None,
    limit: Optional[int] = SEARCH_DEFAULT_LIMIT,
) -> List[CreatorIdentity]:
    """
    Filter and rank creator records for a query.

    Records keep their input order within a tier (pass them in creation
    order). Truncation to ``limit`` happens after ranking, so a lower tier can
    never displace a higher one.

    Args:
        records: CreatorIdentity objects or raw creator rows.
        query: Free-text query; non-strings and queries shorter than two
            characters (after stripping separators) yield [].
        platform: Optional platform filter.
        limit: Maximum results (default 20).

    Returns:
        Ranked list of CreatorIdentity.
    """
    parsed = SearchQuery.parse(query, platform, limit)
    if parsed is None:
        return []
    return _rank(records, parsed)


def _rank(records, parsed: SearchQuery) -> List[CreatorIdentity]:
    scored = []
    for position, record in enumerate(records):
        identity = _as_identity(record)
        if parsed.platform and identity.platform != parsed.platform:
            continue
        tier = match_tier(identity, parsed)
        if tier is not None:
            scored.append((tier, position, identity))

    scored.sort(key=lambda item: (item[0], item[1]))
    return [identity for _, _, identity in scored[: parsed.limit]]


def _candidate_regex(stripped: str) -> str:
    """Case-insensitive regex matching text whose separator-free form contains ``stripped``.

    Separators may sit between any two query characters in the stored text, so
    the escaped characters are joined with an optional separator run. The
    store then returns exactly the rows ``match_tier`` can place in a tier.
    """
    return f"{SEARCH_SEPARATOR_PATTERN}*".join(re.escape(ch) for ch in stripped)


class CreatorSearch:
    """Read-only search over the creators table. Safe to share across requests."""

    def __init__(self, client: db.SupabaseLike, page_size: int = SEARCH_PAGE_SIZE):
        self.client = client
        self.page_size = max(1, page_size)

    def _fetch_candidates(self, parsed: SearchQuery) -> List[Dict[str, Any]]:
        pattern = db.quote_filter_value(_candidate_regex(parsed.stripped))
        filters = f"username.imatch.{pattern},display_name.imatch.{pattern}"

        rows: List[Dict[str, Any]] = []
        offset = 0
        while True:

            def _page(offset=offset):
                query = (
                    self.client.table(CREATOR_TABLE)
                    .select(CREATOR_COLUMNS)
                    .or_(filters)
                )
                if parsed.platform:
                    query = query.eq("platform", parsed.platform)
                return (
                    query.order("id")
                    .range(offset, offset + self.page_size - 1)
                    .execute()
                )

            page = db.execute(_page).data or []
            rows.extend(page)
            if len(page) < self.page_size:
                break
            offset += self.page_size

        return rows

    def search(
        self,
        query: Any,
        platform: Union[str, Platform, None] = None,
        limit: Optional[int] = SEARCH_DEFAULT_LIMIT,
    ) -> List[CreatorIdentity]:
        """
        Search creators by username or display name.

        Malformed or too-short queries return [] without touching the store.
        Store failures propagate as StoreError once retries are exhausted.
        """
        parsed = SearchQuery.parse(query, platform, limit)
        if parsed is None:
            logger.debug(f"Search query {query!r} too short or malformed; returning no results")
            return []

        candidates = self._fetch_candidates(parsed)
        results = _rank(candidates, parsed)
        logger.info(
            f"Search '{parsed.sanitized}' (platform={parsed.platform or 'all'}): "
            f"{len(candidates)} candidate(s), returning {len(results)}"
        )
        return results
