"""
Progress Calculator

Pure derivation of a participant's progress from the baseline captured at
join time and their weight records. Nothing here is cached: callers pass the
current records on every read, so a back-dated record changes the result as
if it had arrived first.
"""

from datetime import timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List, Optional, Union

from shapeup.core.config import settings
from shapeup.models.weight import Progress, WeightRecord

ONE_DECIMAL = Decimal("0.1")
HUNDRED = Decimal("100")
ZERO = Decimal("0")

Number = Union[Decimal, int, float, str]


def to_decimal(value: Number) -> Decimal:
    """Convert through str so floats keep their printed value (72.3, not 72.299...)."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def order_records(records: Iterable[WeightRecord]) -> List[WeightRecord]:
    return sorted(records, key=lambda r: (r.recorded_at, r.sequence))


def percentage_lost(start_weight: Number, latest_weight: Number) -> Decimal:
    """
    Relative loss from baseline, in percent, one decimal, half away from zero.
    Positive means weight was lost, negative means it was gained.
    """
    start = to_decimal(start_weight)
    latest = to_decimal(latest_weight)
    if start <= 0:
        raise ValueError("start_weight must be positive")
    raw = (start - latest) / start * HUNDRED
    rounded = raw.quantize(ONE_DECIMAL, rounding=ROUND_HALF_UP)
    if rounded.is_zero():
        # normalise -0.0 from a tiny gain
        return ZERO.quantize(ONE_DECIMAL)
    return rounded


def weekly_trend(
    ordered_records: List[WeightRecord], window_days: Optional[int] = None
) -> Decimal:
    """
    Latest weight minus the weight `window_days` calendar days earlier.

    The comparison point is the latest record at or before the boundary; when
    nothing reaches back that far the earliest record is used.
    """
    if len(ordered_records) < 2:
        return ZERO

    days = settings.WEEKLY_TREND_DAYS if window_days is None else window_days
    latest = ordered_records[-1]
    boundary = latest.recorded_at - timedelta(days=days)

    baseline = ordered_records[0]
    for record in ordered_records[:-1]:
        if record.recorded_at <= boundary:
            baseline = record
        else:
            break

    return to_decimal(latest.weight) - to_decimal(baseline.weight)


def compute_progress(
    start_weight: Number,
    records: Iterable[WeightRecord],
    window_days: Optional[int] = None,
) -> Progress:
    ordered = order_records(records)
    start = to_decimal(start_weight)

    if not ordered:
        return Progress(
            latest_weight=start,
            percentage_lost=percentage_lost(start, start),
            weekly_trend=ZERO,
            last_weigh_in=None,
            total_weigh_ins=0,
        )

    latest = ordered[-1]
    return Progress(
        latest_weight=to_decimal(latest.weight),
        percentage_lost=percentage_lost(start, latest.weight),
        weekly_trend=weekly_trend(ordered, window_days),
        last_weigh_in=latest.recorded_at,
        total_weigh_ins=len(ordered),
    )
