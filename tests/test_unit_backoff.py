import pytest

from aftermeet.utils.backoff import compute_backoff_seconds


def test_exponential_backoff_doubles_from_base():
    delays = [compute_backoff_seconds(k, strategy="exponential", delay=5, max_seconds=3600, jitter_pct=0.0) for k in range(4)]
    assert delays == [5, 10, 20, 40]


def test_fixed_backoff_is_constant():
    first = compute_backoff_seconds(0, strategy="fixed", delay=30, jitter_pct=0.0)
    later = compute_backoff_seconds(5, strategy="fixed", delay=30, jitter_pct=0.0)
    assert first == later == 30


def test_backoff_is_capped():
    capped = compute_backoff_seconds(20, strategy="exponential", delay=2, max_seconds=60, jitter_pct=0.0)
    assert capped == 60


def test_backoff_jitter_stays_within_band():
    for _ in range(20):
        value = compute_backoff_seconds(2, strategy="exponential", delay=10, max_seconds=3600, jitter_pct=0.1)
        assert 36 <= value <= 44


def test_unknown_strategy_rejected():
    with pytest.raises(ValueError):
        compute_backoff_seconds(1, strategy="linear", delay=1)
