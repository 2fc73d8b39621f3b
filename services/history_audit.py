"""
Per-creator snapshot history audit.

Sanity checks over a creator's most recent 30 snapshots:
  Staleness   - latest row is at most 2 days old
  Zero check  - no 0/null subscriber rows (Kick exempt: paid subs can be 0)
  Swing check - no day-over-day change above 30%
  Gap check   - longest run of missing days in the 30-day window
"""

import logging
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional

import polars as pl

import db
from constants import (
    AUDIT_MAX_GAP_WARN,
    AUDIT_STALE_DAYS,
    AUDIT_SWING_WARN_PCT,
    AUDIT_WINDOW_DAYS,
    CREATOR_COLUMNS,
    CREATOR_STATS_TABLE,
    CREATOR_TABLE,
    STATS_COLUMNS,
    ZERO_METRIC_EXEMPT_PLATFORMS,
)
from services.config import IntegrityConfig
from services.models import CreatorIdentity, StatSnapshot, normalize_platform
from services.normalizer import describe_identity
from utils.dates import iter_days_back, parse_recorded_at, today_in_zone

logger = logging.getLogger(__name__)


class CheckStatus(str, Enum):
    PASS = "PASS"
    WARN = "WARN"
    FAIL = "FAIL"


@dataclass(frozen=True)
class CheckResult:
    name: str
    status: CheckStatus
    detail: str = ""


def _history_frame(rows: Iterable[Any]) -> pl.DataFrame:
    """Build a (recorded_at, subscribers) frame, newest first, limited to the window."""
    snapshots = [
        row if isinstance(row, StatSnapshot) else StatSnapshot.from_row(row) for row in rows
    ]
    snapshots = [s for s in snapshots if s.recorded_at is not None]

    df = pl.DataFrame(
        {
            "recorded_at": [s.recorded_at for s in snapshots],
            "subscribers": [s.subscribers for s in snapshots],
        },
        schema={"recorded_at": pl.Date, "subscribers": pl.Int64},
    )
    return df.sort("recorded_at", descending=True).head(AUDIT_WINDOW_DAYS)


def _check_staleness(window: pl.DataFrame, clock_today: date) -> CheckResult:
    latest = window["recorded_at"].max()
    days_old = (clock_today - latest).days
    if days_old <= AUDIT_STALE_DAYS:
        return CheckResult("Staleness", CheckStatus.PASS, f"Last recorded {days_old} day(s) ago")
    return CheckResult(
        "Staleness",
        CheckStatus.FAIL,
        f"Last recorded {days_old} day(s) ago (limit: {AUDIT_STALE_DAYS})",
    )


def _check_zero_rows(window: pl.DataFrame, platform: Optional[str]) -> CheckResult:
    if platform in ZERO_METRIC_EXEMPT_PLATFORMS:
        return CheckResult(
            "Zero check", CheckStatus.PASS, f"Skipped: {platform} metric can legitimately be 0"
        )

    zero_rows = window.filter(pl.col("subscribers").is_null() | (pl.col("subscribers") <= 0))
    if zero_rows.is_empty():
        return CheckResult(
            "Zero check", CheckStatus.PASS, f"No zero/null rows in last {window.height} days"
        )

    dates = ", ".join(d.isoformat() for d in zero_rows["recorded_at"].head(5).to_list())
    return CheckResult("Zero check", CheckStatus.FAIL, f"{zero_rows.height} row(s) with 0/null: {dates}")


def _check_swings(window: pl.DataFrame) -> CheckResult:
    swings = (
        window.sort("recorded_at")
        .with_columns(pl.col("subscribers").fill_null(0).alias("value"))
        .with_columns(pl.col("value").shift(1).alias("prev"))
        .filter(pl.col("prev") > 0)
        .with_columns(
            ((pl.col("value") - pl.col("prev")) / pl.col("prev") * 100).alias("change_pct")
        )
        .filter(pl.col("change_pct").abs() > AUDIT_SWING_WARN_PCT)
    )
    if swings.is_empty():
        return CheckResult(
            "Swing check", CheckStatus.PASS, f"No day-over-day swings > {AUDIT_SWING_WARN_PCT:.0f}%"
        )

    examples = ", ".join(
        f"{row['recorded_at'].isoformat()} {row['change_pct']:+.0f}%"
        for row in swings.head(3).iter_rows(named=True)
    )
    return CheckResult("Swing check", CheckStatus.WARN, f"{swings.height} large swing(s): {examples}")


def _check_gaps(
    window: pl.DataFrame, clock_today: date, tracking_start: Optional[date]
) -> CheckResult:
    recorded = set(window["recorded_at"].to_list())
    max_gap = current_gap = 0
    gap_start: Optional[date] = None
    worst_gap_start: Optional[date] = None

    for day in iter_days_back(clock_today, AUDIT_WINDOW_DAYS):
        # Days before tracking began cannot be missing
        if tracking_start and day < tracking_start:
            continue
        if day in recorded:
            current_gap = 0
            continue
        if current_gap == 0:
            gap_start = day
        current_gap += 1
        if current_gap > max_gap:
            max_gap = current_gap
            worst_gap_start = gap_start

    if max_gap == 0:
        return CheckResult("Gap check", CheckStatus.PASS, f"No missing days in last {AUDIT_WINDOW_DAYS} days")
    # Walking backwards, gap_start is the newest missing day of the run
    detail = f"{max_gap} consecutive missing day(s) ending {worst_gap_start.isoformat()}"
    if max_gap <= AUDIT_MAX_GAP_WARN:
        return CheckResult("Gap check", CheckStatus.WARN, detail)
    return CheckResult("Gap check", CheckStatus.FAIL, detail)


def audit_history(
    rows: Iterable[Any],
    clock_today: date,
    platform: Optional[str] = None,
    tracking_start: Optional[date] = None,
) -> List[CheckResult]:
    """
    Run the four history checks for one creator.

    Args:
        rows: StatSnapshot objects or creator_stats rows (any order).
        clock_today: Today's date in the operating zone.
        platform: Creator platform (Kick is exempt from the zero check).
        tracking_start: First day the creator was tracked; earlier days are
            not counted as gaps.

    Returns:
        List of CheckResult in the order Staleness, Zero, Swing, Gap.
    """
    window = _history_frame(rows)
    if window.is_empty():
        return [
            CheckResult("Staleness", CheckStatus.FAIL, "No stats rows found in database"),
            CheckResult("Zero check", CheckStatus.FAIL, "No data to check"),
            CheckResult("Swing check", CheckStatus.FAIL, "No data to check"),
            CheckResult("Gap check", CheckStatus.FAIL, "No data to check"),
        ]

    platform = normalize_platform(platform)
    return [
        _check_staleness(window, clock_today),
        _check_zero_rows(window, platform),
        _check_swings(window),
        _check_gaps(window, clock_today, tracking_start),
    ]


def overall_status(results: List[CheckResult]) -> CheckStatus:
    """Worst status across results."""
    statuses = {r.status for r in results}
    if CheckStatus.FAIL in statuses:
        return CheckStatus.FAIL
    if CheckStatus.WARN in statuses:
        return CheckStatus.WARN
    return CheckStatus.PASS


class HistoryAuditor:
    """Loads a creator and its recent snapshots from the store and audits them."""

    def __init__(
        self,
        client: db.SupabaseLike,
        config: Optional[IntegrityConfig] = None,
        clock: Optional[Callable[[], date]] = None,
    ):
        self.client = client
        self.config = config or IntegrityConfig()
        self.clock = clock or (lambda: today_in_zone(self.config.stats_timezone))

    def _load(self, creator_id: Any) -> Dict[str, Any]:
        creator_rows = db.execute(
            lambda: self.client.table(CREATOR_TABLE)
            .select(CREATOR_COLUMNS)
            .eq("id", creator_id)
            .limit(1)
            .execute()
        ).data
        stats_rows = db.execute(
            lambda: self.client.table(CREATOR_STATS_TABLE)
            .select(STATS_COLUMNS)
            .eq("creator_id", creator_id)
            .order("recorded_at", desc=True)
            .limit(AUDIT_WINDOW_DAYS)
            .execute()
        ).data
        return {"creator": creator_rows[0] if creator_rows else None, "stats": stats_rows or []}

    def audit_creator(
        self, creator_id: Any, clock_today: Optional[date] = None
    ) -> Optional[List[CheckResult]]:
        """Audit one creator; returns None when the creator does not exist."""
        loaded = self._load(creator_id)
        if loaded["creator"] is None:
            logger.warning(f"Creator {creator_id} not found")
            return None

        identity = CreatorIdentity.from_row(loaded["creator"])
        results = audit_history(
            loaded["stats"],
            clock_today or self.clock(),
            platform=identity.platform,
            tracking_start=parse_recorded_at(identity.created_at),
        )
        logger.info(
            f"Audit {describe_identity(identity.platform, identity.username, identity.id)}: "
            + ", ".join(f"{r.name}={r.status.value}" for r in results)
        )
        return results
