"""
Snapshot write gate.

Runs the snapshot validator in front of every creator_stats write. The
existence check is only a best-effort pre-check: the (creator_id, recorded_at)
uniqueness constraint in the store is authoritative, and a violation of it is
reported as a DuplicateForDate rejection rather than an error.
"""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Callable, Iterable, Optional

import db
from constants import CREATOR_STATS_TABLE, STATS_CONFLICT_FIELDS
from services.batch import BatchResult
from services.config import IntegrityConfig
from services.errors import ConstraintViolation, StoreError
from services.models import CreatorIdentity, StatSnapshot
from services.snapshot_validator import (
    DuplicateMode,
    RejectReason,
    SnapshotValidator,
    ValidationResult,
    Verdict,
    describe_rejection,
)
from utils.dates import today_in_zone

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecordOutcome:
    """Result of attempting to persist one snapshot."""

    validation: ValidationResult
    written: bool = False

    @property
    def reason(self) -> Optional[RejectReason]:
        return self.validation.reason


class SnapshotRecorder:
    def __init__(
        self,
        client: db.SupabaseLike,
        config: Optional[IntegrityConfig] = None,
        clock: Optional[Callable[[], date]] = None,
    ):
        self.client = client
        self.config = config or IntegrityConfig()
        self.validator = SnapshotValidator(DuplicateMode(self.config.duplicate_mode))
        self.clock = clock or (lambda: today_in_zone(self.config.stats_timezone))

    def _exists(self, snapshot: StatSnapshot) -> bool:
        response = db.execute(
            lambda: self.client.table(CREATOR_STATS_TABLE)
            .select("id")
            .eq("creator_id", snapshot.creator_id)
            .eq("recorded_at", snapshot.recorded_at.isoformat())
            .limit(1)
            .execute(),
            attempts=self.config.store_max_attempts,
        )
        return bool(response.data)

    def _write(self, snapshot: StatSnapshot, verdict: Verdict) -> None:
        payload = snapshot.to_row()

        if self.validator.duplicate_mode is DuplicateMode.OVERWRITE:
            # Last write for the date wins
            db.execute(
                lambda: self.client.table(CREATOR_STATS_TABLE)
                .upsert(payload, on_conflict=",".join(STATS_CONFLICT_FIELDS))
                .execute(),
                attempts=self.config.store_max_attempts,
            )
        else:
            db.execute(
                lambda: self.client.table(CREATOR_STATS_TABLE).insert(payload).execute(),
                attempts=self.config.store_max_attempts,
            )
        logger.debug(
            f"[Recorder] {verdict.value}: creator={snapshot.creator_id} "
            f"date={snapshot.recorded_at} subscribers={snapshot.subscribers}"
        )

    def record(
        self,
        snapshot: StatSnapshot,
        clock_today: Optional[date] = None,
        identity: Optional[CreatorIdentity] = None,
    ) -> RecordOutcome:
        """
        Validate and persist one snapshot.

        Returns:
            RecordOutcome; ``written`` is True only when the row was stored.

        Raises:
            StoreError: store failures other than uniqueness violations, after
                retries for transient ones.
        """
        today = clock_today or self.clock()

        # Cheap rejections first, before touching the store
        result = self.validator.validate(snapshot, today, exists=False)
        if not result.accepted:
            logger.info(f"[Recorder] Rejected {describe_rejection(snapshot, result, identity)}")
            return RecordOutcome(validation=result)

        result = self.validator.validate(snapshot, today, exists=self._exists(snapshot))
        if not result.accepted:
            logger.info(f"[Recorder] Rejected {describe_rejection(snapshot, result, identity)}")
            return RecordOutcome(validation=result)

        try:
            self._write(snapshot, result.verdict)
        except ConstraintViolation:
            # Lost the race against a concurrent writer for the same day
            logger.info(
                f"[Recorder] Uniqueness violation for creator={snapshot.creator_id} "
                f"date={snapshot.recorded_at}; treating as duplicate"
            )
            return RecordOutcome(
                validation=ValidationResult.reject(RejectReason.DUPLICATE_FOR_DATE)
            )

        return RecordOutcome(validation=result, written=True)

    def record_many(
        self, snapshots: Iterable[StatSnapshot], clock_today: Optional[date] = None
    ) -> BatchResult:
        """Record snapshots one by one, never aborting on an individual failure."""
        today = clock_today or self.clock()
        result = BatchResult()

        for snapshot in snapshots:
            key = f"{snapshot.creator_id}@{snapshot.recorded_at}"
            try:
                outcome = self.record(snapshot, clock_today=today)
            except StoreError as e:
                logger.error(f"[Recorder] Store error for {key}: {e}")
                result.record_failure(key, e)
                continue

            if outcome.written:
                result.record_success()
            else:
                result.record_failure(key, outcome.reason.value)

        logger.info(
            f"[Recorder] {result.succeeded} snapshot(s) written, "
            f"{result.failed_count} rejected or failed"
        )
        return result
