"""Tests for progress derivation from weight records."""

from datetime import timedelta
from decimal import Decimal

import pytest

from shapeup.models.weight import WeightRecord
from shapeup.services.progress_calculator import (
    compute_progress,
    order_records,
    percentage_lost,
    weekly_trend,
)
from tests.conftest import START


def make_record(weight, days: float, sequence: int = 0) -> WeightRecord:
    return WeightRecord(
        id=f"rec-{days}-{sequence}",
        user_id="user-1",
        challenge_id="challenge-1",
        weight=Decimal(str(weight)),
        recorded_at=START + timedelta(days=days),
        sequence=sequence,
    )


def test_percentage_lost_one_decimal():
    assert percentage_lost(100, 94) == Decimal("6.0")
    assert percentage_lost("82.5", "80") == Decimal("3.0")
    assert percentage_lost(90, "85.5") == Decimal("5.0")


def test_percentage_lost_rounds_half_up():
    # 80 -> 79.96 is exactly 0.05%
    assert percentage_lost(80, "79.96") == Decimal("0.1")
    # 3 -> 2.9985 is exactly 0.05%
    assert percentage_lost(3, "2.9985") == Decimal("0.1")


def test_percentage_lost_negative_for_gain():
    assert percentage_lost(100, 102) == Decimal("-2.0")


def test_tiny_gain_is_plain_zero():
    result = percentage_lost(100, "100.01")
    assert result == 0
    assert str(result) == "0.0"


def test_percentage_lost_requires_positive_start():
    with pytest.raises(ValueError):
        percentage_lost(0, 50)


def test_progress_without_records_uses_baseline():
    progress = compute_progress(Decimal("88.4"), [])
    assert progress.latest_weight == Decimal("88.4")
    assert progress.percentage_lost == Decimal("0.0")
    assert progress.weekly_trend == 0
    assert progress.last_weigh_in is None
    assert progress.total_weigh_ins == 0


def test_latest_is_by_recorded_at_not_arrival():
    """A back-dated record arriving last does not become 'latest'."""
    later = make_record(93, days=3, sequence=1)
    earlier = make_record(97, days=1, sequence=2)

    progress = compute_progress(100, [later, earlier])

    assert progress.latest_weight == Decimal("93")
    assert progress.percentage_lost == Decimal("7.0")
    assert progress.last_weigh_in == later.recorded_at
    assert progress.total_weigh_ins == 2


def test_same_timestamp_ordered_by_sequence():
    first = make_record(95, days=2, sequence=1)
    second = make_record(96, days=2, sequence=2)

    assert [r.sequence for r in order_records([second, first])] == [1, 2]
    assert compute_progress(100, [second, first]).latest_weight == Decimal("96")


def test_weekly_trend_compares_against_week_old_record():
    records = [
        make_record(100, days=0),
        make_record(98, days=3),
        make_record(97, days=7),
        make_record(95, days=10),
    ]
    # Boundary is day 3: latest record at or before it weighs 98
    assert weekly_trend(records, window_days=7) == Decimal("-3")


def test_weekly_trend_with_short_history_uses_earliest_record():
    records = [make_record(100, days=0), make_record(99, days=2)]
    assert weekly_trend(records, window_days=7) == Decimal("-1")


def test_weekly_trend_single_record_is_zero():
    assert weekly_trend([make_record(100, days=0)]) == 0


def test_weekly_trend_window_is_configurable():
    records = [
        make_record(100, days=0),
        make_record(99, days=12),
        make_record(96, days=14),
    ]
    assert weekly_trend(records, window_days=14) == Decimal("-4")
    assert weekly_trend(records, window_days=2) == Decimal("-3")
