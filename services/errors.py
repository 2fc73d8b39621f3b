"""
errors.py
---------
Exception hierarchy for store access and batch maintenance jobs.

Rejections that are expected on untrusted upstream data (invalid identity
input, zero/future/duplicate snapshots) are NOT exceptions; they are returned
as typed results by the normalizer and the snapshot validator.
"""


class StoreError(Exception):
    """Base exception for persistent store failures."""


class StoreUnavailable(StoreError):
    """Raised when the store cannot be reached or drops the connection."""


class StoreTimeout(StoreError):
    """Raised when a store call exceeds its timeout."""


class ConstraintViolation(StoreError):
    """Raised when a write violates a uniqueness constraint."""


class SweepAlreadyRunning(RuntimeError):
    """Raised when an integrity sweep is triggered while another is active."""


# Failures worth another attempt with backoff
TRANSIENT_STORE_ERRORS = (StoreUnavailable, StoreTimeout)
