"""Growth trends across one student's measurement history."""

from collections.abc import Sequence

from school_health.domain.models import BmiTrend, HealthRecord, Trend
from school_health.services.metrics_calculator import round_half_up


def sort_records(
    records: Sequence[HealthRecord], *, newest_first: bool = False
) -> list[HealthRecord]:
    """Return records ordered by measurement date."""
    return sorted(records, key=lambda r: r.date, reverse=newest_first)


def _delta(latest: float | None, earliest: float | None) -> float:
    return round_half_up((latest or 0.0) - (earliest or 0.0), 2)


def compute_trend(records: Sequence[HealthRecord]) -> Trend:
    """
    Most recent minus earliest value for height, weight and BMI.

    Args:
        records: One student's records sorted ascending by date.

    Returns:
        Trend with each change rounded to two decimals. Fewer than two
        records is not an error; every change is simply zero.
    """
    if len(records) < 2:
        return Trend()

    first, last = records[0], records[-1]
    return Trend(
        height_change=_delta(last.height, first.height),
        weight_change=_delta(last.weight, first.weight),
        bmi_change=_delta(last.bmi, first.bmi),
    )


def bmi_direction(records: Sequence[HealthRecord]) -> BmiTrend | None:
    """Direction of BMI movement between the earliest and latest record."""
    if len(records) < 2:
        return None

    ordered = sort_records(records)
    change = _delta(ordered[-1].bmi, ordered[0].bmi)
    if change > 0:
        direction = "up"
    elif change < 0:
        direction = "down"
    else:
        direction = "stable"
    return BmiTrend(change=change, direction=direction)
