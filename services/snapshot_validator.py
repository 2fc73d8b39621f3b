"""
Snapshot acceptance rules.

A pure decision function over one candidate StatSnapshot. The caller supplies
``clock_today`` (in the operating zone) and whether a row for the same
(creator, day) already exists; no I/O happens here.
"""

import logging
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Optional

from services.models import CreatorIdentity, StatSnapshot
from services.normalizer import describe_identity

logger = logging.getLogger(__name__)


class Verdict(Enum):
    ACCEPT = "accept"
    REPLACE_EXISTING = "replace_existing"
    REJECT = "reject"


class RejectReason(Enum):
    ZERO_OR_NULL_METRIC = "ZeroOrNullMetric"
    FUTURE_DATED = "FutureDated"
    DUPLICATE_FOR_DATE = "DuplicateForDate"


class DuplicateMode(Enum):
    REJECT = "reject"
    OVERWRITE = "overwrite"


@dataclass(frozen=True)
class ValidationResult:
    verdict: Verdict
    reason: Optional[RejectReason] = None

    @property
    def accepted(self) -> bool:
        """True when the snapshot may be written (insert or upsert)."""
        return self.verdict in (Verdict.ACCEPT, Verdict.REPLACE_EXISTING)

    @classmethod
    def reject(cls, reason: RejectReason) -> "ValidationResult":
        return cls(verdict=Verdict.REJECT, reason=reason)


ACCEPT = ValidationResult(verdict=Verdict.ACCEPT)
REPLACE_EXISTING = ValidationResult(verdict=Verdict.REPLACE_EXISTING)


def has_valid_metric(snapshot: StatSnapshot) -> bool:
    """A snapshot is only meaningful with a positive subscriber/follower count."""
    value = snapshot.subscribers
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def is_future_dated(snapshot: StatSnapshot, clock_today: date) -> bool:
    return snapshot.recorded_at is not None and snapshot.recorded_at > clock_today


def describe_rejection(
    snapshot: StatSnapshot,
    result: ValidationResult,
    identity: Optional[CreatorIdentity] = None,
) -> str:
    """Log line for a rejected snapshot."""
    if identity is not None:
        who = describe_identity(identity.platform, identity.username, snapshot.creator_id)
    else:
        who = f"creator={snapshot.creator_id}"
    return f"{who} date={snapshot.recorded_at}: {result.reason.value}"


class SnapshotValidator:
    """Accept/reject decisions for incoming and stored snapshots."""

    def __init__(self, duplicate_mode: DuplicateMode = DuplicateMode.OVERWRITE):
        if isinstance(duplicate_mode, str):
            duplicate_mode = DuplicateMode(duplicate_mode)
        self.duplicate_mode = duplicate_mode

    def validate(
        self, snapshot: StatSnapshot, clock_today: date, exists: bool = False
    ) -> ValidationResult:
        """
        Decide whether a snapshot may be persisted.

        Args:
            snapshot: Candidate snapshot.
            clock_today: Today's date in the operating time zone.
            exists: Whether a row for (creator_id, recorded_at) is already stored.

        Returns:
            ACCEPT, REPLACE_EXISTING (overwrite mode, existing row), or a
            rejection carrying ZERO_OR_NULL_METRIC, FUTURE_DATED or
            DUPLICATE_FOR_DATE. Checks run in that order.
        """
        if not has_valid_metric(snapshot):
            return ValidationResult.reject(RejectReason.ZERO_OR_NULL_METRIC)

        if snapshot.recorded_at is None or is_future_dated(snapshot, clock_today):
            # A missing date cannot be placed on the calendar either
            return ValidationResult.reject(RejectReason.FUTURE_DATED)

        if exists:
            if self.duplicate_mode is DuplicateMode.REJECT:
                return ValidationResult.reject(RejectReason.DUPLICATE_FOR_DATE)
            return REPLACE_EXISTING

        return ACCEPT
