"""
Percentile of one BMI value within a cohort of records.

The tracking screen passes the selected student's own history as the cohort,
so the value says how the latest reading ranks against that student's past
readings rather than against classmates.
"""

from collections.abc import Iterable

from school_health.domain.models import HealthRecord
from school_health.services.metrics_calculator import calculate_bmi, round_half_up


def bmi_percentile(target_bmi: float | None, cohort: Iterable[HealthRecord]) -> str:
    """
    Share of cohort BMIs at or below target_bmi, as a percentage string.

    Cohort members with unusable height or weight are skipped. An empty
    cohort yields "0" and a missing target yields "0.00".
    """
    if target_bmi is None:
        return "0.00"

    cohort_bmis = [
        bmi for bmi in (calculate_bmi(r.weight, r.height) for r in cohort) if bmi is not None
    ]
    if not cohort_bmis:
        return "0"

    below = sum(1 for bmi in cohort_bmis if bmi <= target_bmi)
    return f"{round_half_up(below / len(cohort_bmis) * 100, 2):.2f}"
