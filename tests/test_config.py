import pytest

from services.batch import BatchResult
from services.config import IntegrityConfig


def test_defaults(monkeypatch):
    for name in (
        "SNAPSHOT_DUPLICATE_MODE",
        "SWEEP_FETCH_SIZE",
        "SWEEP_MUTATION_SIZE",
        "SWEEP_LOCK_TTL_SECONDS",
    ):
        monkeypatch.delenv(name, raising=False)
    config = IntegrityConfig()
    assert config.duplicate_mode == "overwrite"
    assert config.fetch_batch_size == 1000
    assert config.mutation_batch_size == 50
    assert config.stats_timezone == "America/New_York"
    assert config.sweep_lock_ttl == 6 * 60 * 60


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("SNAPSHOT_DUPLICATE_MODE", "Reject")
    monkeypatch.setenv("SWEEP_FETCH_SIZE", "250")
    monkeypatch.setenv("REPAIR_CONCURRENCY", "not-a-number")
    config = IntegrityConfig()
    assert config.duplicate_mode == "reject"
    assert config.fetch_batch_size == 250
    assert config.repair_concurrency == 5


def test_unknown_env_mode_falls_back_to_overwrite(monkeypatch):
    monkeypatch.setenv("SNAPSHOT_DUPLICATE_MODE", "merge")
    assert IntegrityConfig().duplicate_mode == "overwrite"


def test_explicit_invalid_mode_raises():
    with pytest.raises(ValueError):
        IntegrityConfig(duplicate_mode="merge")


def test_batch_result_accounting():
    result = BatchResult()
    result.record_success(2)
    result.record_failure("c1@2026-01-01", ValueError("bad"))
    other = BatchResult(succeeded=1)
    result.merge(other)

    assert result.succeeded == 3
    assert result.failed_count == 1
    assert result.total_attempted() == 4
    assert result.as_dict()["failed"] == [{"item": "c1@2026-01-01", "reason": "bad"}]
