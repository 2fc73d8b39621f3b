# services/config.py
import logging
import os
from dataclasses import dataclass, field

from constants import (
    DEFAULT_STATS_TIMEZONE,
    DEFAULT_SWEEP_LOCK_TTL_SECONDS,
    MAX_FETCH_BATCH_SIZE,
    MAX_MUTATION_BATCH_SIZE,
)

logger = logging.getLogger(__name__)

DUPLICATE_MODES = ("overwrite", "reject")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"{name}={raw!r} is not an integer; using {default}")
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"{name}={raw!r} is not a number; using {default}")
        return default


def _env_duplicate_mode() -> str:
    mode = os.getenv("SNAPSHOT_DUPLICATE_MODE", "overwrite").strip().lower()
    if mode not in DUPLICATE_MODES:
        logger.warning(
            f"SNAPSHOT_DUPLICATE_MODE={mode!r} is not one of {DUPLICATE_MODES}; "
            "falling back to 'overwrite'"
        )
        return "overwrite"
    return mode


@dataclass(frozen=True)
class IntegrityConfig:
    """Configuration for the identity and snapshot integrity jobs."""

    # Calendar dates are compared in this zone, never in ambient system time
    stats_timezone: str = field(
        default_factory=lambda: os.getenv("STATS_TIMEZONE", DEFAULT_STATS_TIMEZONE)
    )
    duplicate_mode: str = field(default_factory=_env_duplicate_mode)
    # Batch sizing (clamped to the store limits in __post_init__)
    fetch_batch_size: int = field(
        default_factory=lambda: _env_int("SWEEP_FETCH_SIZE", MAX_FETCH_BATCH_SIZE)
    )
    mutation_batch_size: int = field(
        default_factory=lambda: _env_int("SWEEP_MUTATION_SIZE", MAX_MUTATION_BATCH_SIZE)
    )
    repair_concurrency: int = field(
        default_factory=lambda: _env_int("REPAIR_CONCURRENCY", 5)
    )
    # Resilience
    store_timeout: float = field(
        default_factory=lambda: _env_float("STORE_TIMEOUT_SECONDS", 30.0)
    )
    store_max_attempts: int = field(
        default_factory=lambda: _env_int("STORE_MAX_ATTEMPTS", 3)
    )
    # Store-side sweep lock
    sweep_lock_ttl: float = field(
        default_factory=lambda: _env_float(
            "SWEEP_LOCK_TTL_SECONDS", DEFAULT_SWEEP_LOCK_TTL_SECONDS
        )
    )

    def __post_init__(self):
        if self.duplicate_mode not in DUPLICATE_MODES:
            raise ValueError(f"duplicate_mode must be one of {DUPLICATE_MODES}")
        object.__setattr__(
            self,
            "fetch_batch_size",
            max(1, min(self.fetch_batch_size, MAX_FETCH_BATCH_SIZE)),
        )
        object.__setattr__(
            self,
            "mutation_batch_size",
            max(1, min(self.mutation_batch_size, MAX_MUTATION_BATCH_SIZE)),
        )
        object.__setattr__(self, "repair_concurrency", max(1, self.repair_concurrency))
        object.__setattr__(self, "store_max_attempts", max(1, self.store_max_attempts))
