"""
Integrity sweeper for stored creator_stats rows.

This job:
1. Scans creator_stats ordered by (creator_id, recorded_at, id), at most 1000
   rows per fetch (keyset pagination, so deletions never shift the window)
2. Deletes rows whose subscriber/follower metric is NULL or 0 (unrecoverable)
3. Collapses duplicate (creator_id, recorded_at) rows left over from before
   the uniqueness constraint, keeping the lowest id. Duplicates arrive
   adjacent in scan order, so only the previous row's key is remembered.
4. Flags future-dated rows (clock skew) without deleting them
5. Mutates in sub-batches of at most 50 ids (PostgREST URL length limit)
6. Retries transient store failures, records the rest and keeps going

Only one sweep per table may run at a time, across processes: the sweep holds
a row in maintenance_locks for its duration. Stopping is honoured between
batches; each sub-batch delete is a single request.

Run as: python cli.py sweep
"""

import asyncio
import logging
import os
import socket
import time
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

import db
from constants import CREATOR_STATS_TABLE, MAINTENANCE_LOCK_TABLE, STATS_COLUMNS
from services.batch import BatchFailure
from services.config import IntegrityConfig
from services.errors import ConstraintViolation, StoreError, SweepAlreadyRunning
from services.models import StatSnapshot
from services.snapshot_validator import RejectReason, has_valid_metric, is_future_dated
from utils.dates import today_in_zone

logger = logging.getLogger("st_sweeper")

# (creator_id, recorded_at as stored, id) of the last row fetched
ScanCursor = Tuple[Any, Optional[str], Any]


def keyset_filter(cursor: ScanCursor) -> str:
    """PostgREST ``or`` filter selecting rows after ``cursor`` in scan order.

    NULL dates sort after every date of the same creator.
    """
    creator_id, recorded_at, row_id = cursor
    same_creator = f"creator_id.eq.{db.quote_filter_value(creator_id)}"
    clauses = [f"creator_id.gt.{db.quote_filter_value(creator_id)}"]
    if recorded_at is None:
        clauses.append(f"and({same_creator},recorded_at.is.null,id.gt.{row_id})")
    else:
        day = db.quote_filter_value(recorded_at)
        clauses += [
            f"and({same_creator},recorded_at.gt.{day})",
            f"and({same_creator},recorded_at.is.null)",
            f"and({same_creator},recorded_at.eq.{day},id.gt.{row_id})",
        ]
    return ",".join(clauses)


@dataclass
class SweepSummary:
    """Aggregate outcome of one sweep."""

    scanned: int = 0
    corrected: int = 0  # duplicate rows collapsed
    removed: int = 0  # zero/null metric rows deleted
    flagged: List[Dict[str, Any]] = field(default_factory=list)  # future-dated rows
    failures: List[BatchFailure] = field(default_factory=list)
    batches: int = 0
    completed: bool = False
    cancelled: bool = False
    dry_run: bool = False
    started_at: float = field(default_factory=time.time)

    def as_dict(self) -> Dict[str, int]:
        return {"scanned": self.scanned, "corrected": self.corrected, "removed": self.removed}

    def elapsed(self) -> float:
        return time.time() - self.started_at

    def summary(self) -> str:
        lines = [
            "─" * 60,
            "SWEEP COMPLETE" if self.completed else "SWEEP STOPPED EARLY",
            "─" * 60,
            f"  Rows scanned:            {self.scanned}",
            f"  Duplicates corrected:    {self.corrected}",
            f"  Zero/null rows removed:  {self.removed}",
            f"  Future-dated (flagged):  {len(self.flagged)}",
            f"  Failed batches:          {len(self.failures)}",
            f"  Elapsed:                 {self.elapsed():.1f}s",
        ]
        if self.dry_run:
            lines.append("  (dry run: counts are what WOULD change, nothing was deleted)")
        if self.cancelled:
            lines.append("  Stopped on request between batches.")
        if self.flagged:
            lines += ["", "  ⚠️  Future-dated rows (possible clock skew):"]
            for row in self.flagged[:20]:
                lines.append(
                    f"    - id={row['id']} creator={row['creator_id']} date={row['recorded_at']}"
                )
            if len(self.flagged) > 20:
                lines.append(f"    ... and {len(self.flagged) - 20} more")
        if self.failures:
            lines += ["", "  ❌ Failures:"]
            for failure in self.failures:
                lines.append(f"    - {failure.item}: {failure.reason}")
        lines.append("─" * 60)
        return "\n".join(lines)


class IntegritySweeper:
    """Batch corrective pass over persisted snapshots."""

    # Tables with a sweep in flight in this process
    _active_tables: Set[str] = set()

    def __init__(
        self,
        client: db.SupabaseLike,
        config: Optional[IntegrityConfig] = None,
        clock: Optional[Callable[[], date]] = None,
        stop_event: Optional[asyncio.Event] = None,
        dry_run: bool = False,
        table: str = CREATOR_STATS_TABLE,
    ):
        self.client = client
        self.config = config or IntegrityConfig()
        self.clock = clock or (lambda: today_in_zone(self.config.stats_timezone))
        self.stop_event = stop_event or asyncio.Event()
        self.dry_run = dry_run
        self.table = table
        self.lock_name = f"sweep:{table}"
        self.lock_holder = f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"

    @classmethod
    def is_running(cls, table: str = CREATOR_STATS_TABLE) -> bool:
        return table in cls._active_tables

    async def _call(self, query_fn):
        return await db.execute_async(
            query_fn,
            timeout=self.config.store_timeout,
            attempts=self.config.store_max_attempts,
        )

    # --- store lock ---
    async def _acquire_lock(self) -> None:
        """Claim the store-side lock row, reclaiming one left by a crashed run."""
        now = datetime.now(timezone.utc)
        stale_before = (now - timedelta(seconds=self.config.sweep_lock_ttl)).isoformat()

        reclaimed = await self._call(
            lambda: self.client.table(MAINTENANCE_LOCK_TABLE)
            .delete()
            .eq("name", self.lock_name)
            .lt("acquired_at", stale_before)
            .execute()
        )
        for row in reclaimed.data or []:
            logger.warning(
                f"⚠️  Reclaimed stale lock '{self.lock_name}' held by {row.get('holder')} "
                f"since {row.get('acquired_at')}"
            )

        try:
            await self._call(
                lambda: self.client.table(MAINTENANCE_LOCK_TABLE)
                .insert(
                    {
                        "name": self.lock_name,
                        "holder": self.lock_holder,
                        "acquired_at": now.isoformat(),
                    }
                )
                .execute()
            )
        except ConstraintViolation as e:
            raise SweepAlreadyRunning(
                f"A sweep of '{self.table}' is already running in another process"
            ) from e
        logger.debug(f"Acquired lock '{self.lock_name}' as {self.lock_holder}")

    async def _release_lock(self) -> None:
        try:
            await self._call(
                lambda: self.client.table(MAINTENANCE_LOCK_TABLE)
                .delete()
                .eq("name", self.lock_name)
                .eq("holder", self.lock_holder)
                .execute()
            )
        except StoreError as e:
            # The row expires after sweep_lock_ttl; the next sweep reclaims it
            logger.error(f"❌ Could not release lock '{self.lock_name}': {e}")

    async def _fetch_batch(self, cursor: Optional[ScanCursor]) -> List[Dict[str, Any]]:
        def _query():
            query = self.client.table(self.table).select(STATS_COLUMNS)
            if cursor is not None:
                query = query.or_(keyset_filter(cursor))
            return (
                query.order("creator_id")
                .order("recorded_at")
                .order("id")
                .limit(self.config.fetch_batch_size)
                .execute()
            )

        response = await self._call(_query)
        return response.data or []

    async def _delete_ids(self, ids: List[Any], label: str, summary: SweepSummary) -> int:
        """Delete ids in capped sub-batches. Returns the number of rows deleted."""
        if not ids:
            return 0
        if self.dry_run:
            logger.info(f"  [DryRun] Would delete {len(ids)} {label} row(s)")
            return len(ids)

        deleted = 0
        for chunk in db.chunked(ids, self.config.mutation_batch_size):
            try:
                response = await self._call(
                    lambda chunk=chunk: self.client.table(self.table)
                    .delete()
                    .in_("id", chunk)
                    .execute()
                )
            except StoreError as e:
                logger.error(f"  ❌ Failed to delete {len(chunk)} {label} row(s): {e}")
                summary.failures.append(
                    BatchFailure(item=f"delete {label} ids={chunk}", reason=str(e))
                )
                continue

            deleted += len(response.data or [])
            logger.debug(f"  Deleted {len(chunk)} {label} row(s)")
        return deleted

    def _classify(
        self,
        rows: List[Dict[str, Any]],
        clock_today: date,
        kept: Optional[Tuple[tuple, Any]],
        summary: SweepSummary,
    ):
        """Split a batch into zero/null ids and duplicate ids; flag future rows.

        ``kept`` is the (key, id) of the last row retained for its day, carried
        over from the previous batch. Returns (zero_ids, duplicate_ids, kept).
        """
        zero_ids: List[Any] = []
        duplicate_ids: List[Any] = []

        for row in rows:
            snapshot = StatSnapshot.from_row(row)

            if not has_valid_metric(snapshot):
                zero_ids.append(snapshot.id)
                continue

            if is_future_dated(snapshot, clock_today):
                summary.flagged.append(
                    {
                        "id": snapshot.id,
                        "creator_id": snapshot.creator_id,
                        "recorded_at": snapshot.recorded_at.isoformat(),
                        "reason": RejectReason.FUTURE_DATED.value,
                    }
                )

            if snapshot.recorded_at is None:
                continue

            if kept is not None and kept[0] == snapshot.key:
                duplicate_ids.append(snapshot.id)
                logger.debug(
                    f"  Duplicate id={snapshot.id} for creator={snapshot.creator_id} "
                    f"date={snapshot.recorded_at} (keeping id={kept[1]})"
                )
            else:
                kept = (snapshot.key, snapshot.id)

        return zero_ids, duplicate_ids, kept

    async def sweep(self, clock_today: Optional[date] = None) -> SweepSummary:
        """
        Run one full sweep.

        Args:
            clock_today: Today's date in the operating zone (defaults to the
                configured clock).

        Returns:
            SweepSummary with scanned/corrected/removed counts, flagged
            future-dated rows and every failure encountered.

        Raises:
            SweepAlreadyRunning: if another sweep of the same table is active,
                in this process or (via the store lock) in any other.
            StoreError: if the store lock cannot be taken.
        """
        if self.table in self._active_tables:
            raise SweepAlreadyRunning(f"A sweep of '{self.table}' is already running")
        self._active_tables.add(self.table)

        try:
            await self._acquire_lock()
            try:
                return await self._sweep(clock_today or self.clock())
            finally:
                await self._release_lock()
        finally:
            self._active_tables.discard(self.table)

    async def _sweep(self, clock_today: date) -> SweepSummary:
        summary = SweepSummary(dry_run=self.dry_run)
        kept: Optional[Tuple[tuple, Any]] = None
        cursor: Optional[ScanCursor] = None

        logger.info(
            f"Starting integrity sweep of '{self.table}' | today={clock_today} "
            f"({self.config.stats_timezone}) | fetch={self.config.fetch_batch_size}, "
            f"mutate={self.config.mutation_batch_size}, dry_run={self.dry_run}"
        )

        while True:
            if self.stop_event.is_set():
                summary.cancelled = True
                logger.info("Stop requested, ending sweep between batches")
                break

            try:
                rows = await self._fetch_batch(cursor)
            except StoreError as e:
                # Without the page there is no next cursor; end the scan, keep the report
                logger.error(f"❌ Fetch after {cursor} failed: {e}")
                summary.failures.append(
                    BatchFailure(item=f"fetch after {cursor}", reason=str(e))
                )
                break

            if not rows:
                summary.completed = True
                break

            summary.batches += 1
            summary.scanned += len(rows)
            last = rows[-1]
            cursor = (last["creator_id"], last.get("recorded_at"), last["id"])

            zero_ids, duplicate_ids, kept = self._classify(rows, clock_today, kept, summary)
            summary.removed += await self._delete_ids(zero_ids, "zero/null", summary)
            summary.corrected += await self._delete_ids(duplicate_ids, "duplicate", summary)

            logger.info(
                f"  Batch {summary.batches}: {len(rows)} scanned, "
                f"{len(zero_ids)} zero/null, {len(duplicate_ids)} duplicate | "
                f"totals: scanned={summary.scanned}, removed={summary.removed}, "
                f"corrected={summary.corrected}, flagged={len(summary.flagged)}"
            )

            if len(rows) < self.config.fetch_batch_size:
                summary.completed = True
                break

        logger.info(summary.summary())
        if summary.flagged:
            logger.warning(
                f"⚠️  {len(summary.flagged)} future-dated snapshot(s) found; "
                "check the ingestion clock/time zone"
            )
        return summary
