"""
Domain records for creator identities and daily statistics snapshots.

Rows come back from PostgREST as plain dicts; these dataclasses give the
integrity core typed access and convert back into insert payloads.
"""

from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any, Dict, Optional

from utils.dates import parse_recorded_at


class Platform(str, Enum):
    """Platforms tracked by the site. Stored lowercase in the creators table."""

    YOUTUBE = "youtube"
    TWITCH = "twitch"
    KICK = "kick"
    INSTAGRAM = "instagram"
    BLUESKY = "bluesky"
    TIKTOK = "tiktok"


def normalize_platform(platform: Any) -> Optional[str]:
    """Return the lowercase platform name, or None when unset."""
    if platform is None:
        return None
    if isinstance(platform, Platform):
        return platform.value
    value = str(platform).strip().lower()
    return value or None


@dataclass
class CreatorIdentity:
    id: Any
    platform: str
    platform_id: str
    username: Optional[str] = None
    display_name: Optional[str] = None
    created_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "CreatorIdentity":
        return cls(
            id=row.get("id"),
            platform=normalize_platform(row.get("platform")) or "",
            platform_id=row.get("platform_id") or "",
            username=row.get("username"),
            display_name=row.get("display_name"),
            created_at=row.get("created_at"),
        )

    def to_row(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "platform": self.platform,
            "platform_id": self.platform_id,
            "username": self.username,
            "display_name": self.display_name,
        }


@dataclass
class StatSnapshot:
    """One calendar-day measurement for a creator.

    ``subscribers`` is the subscribers-or-followers metric. Older rows only
    populated ``followers``, so from_row() falls back to it.
    """

    creator_id: Any
    recorded_at: Optional[date]
    subscribers: Optional[int] = None
    total_views: Optional[int] = None
    total_posts: Optional[int] = None
    id: Any = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "StatSnapshot":
        subscribers = row.get("subscribers")
        if subscribers is None:
            subscribers = row.get("followers")
        return cls(
            id=row.get("id"),
            creator_id=row.get("creator_id"),
            recorded_at=parse_recorded_at(row.get("recorded_at")),
            subscribers=subscribers,
            total_views=row.get("total_views"),
            total_posts=row.get("total_posts"),
        )

    @property
    def key(self) -> tuple:
        """Uniqueness key: one snapshot per creator per day."""
        return (self.creator_id, self.recorded_at)

    def to_row(self) -> Dict[str, Any]:
        """Insert payload; subscribers and followers carry the same metric."""
        return {
            "creator_id": self.creator_id,
            "recorded_at": self.recorded_at.isoformat() if self.recorded_at else None,
            "subscribers": self.subscribers,
            "followers": self.subscribers,
            "total_views": self.total_views,
            "total_posts": self.total_posts,
        }
