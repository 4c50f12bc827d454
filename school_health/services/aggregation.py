"""
Class and grade aggregation.

Two aggregation modes live here and they deliberately average differently:

- Dashboard series bucket *every* record of a grade into the six most recent
  calendar months and average per bucket. The overall figure is the mean of
  the non-empty monthly buckets, not a record-weighted mean.
- Report aggregation uses only each student's single most recent valid
  record, so a student with twenty old measurements weighs the same as a
  student with one.
"""

import calendar
from collections.abc import Iterable, Sequence
from datetime import UTC, datetime
from typing import Literal

from school_health.domain.models import (
    ClassAverages,
    ClassDashboard,
    ClassReport,
    HealthRecord,
    MonthlySeries,
    NutritionCategoryCounts,
    OverallAverages,
    SectionSummary,
    Student,
    StudentReport,
)
from school_health.errors import NoDataError
from school_health.services.metrics_calculator import raw_bmi, round_half_up
from school_health.services.trend_analyzer import compute_trend, sort_records

SERIES_MONTHS = 6
UNDERWEIGHT_BELOW = 18.5
NORMAL_UP_TO = 24.9

NutritionCategory = Literal["normal", "underweight", "overweight"]


def nutrition_category(bmi: float) -> NutritionCategory:
    """Dashboard categories; anything above 24.9 counts as overweight."""
    if bmi < UNDERWEIGHT_BELOW:
        return "underweight"
    if bmi <= NORMAL_UP_TO:
        return "normal"
    return "overweight"


def _recent_months(now: datetime, count: int = SERIES_MONTHS) -> list[tuple[int, int]]:
    """(year, month) keys for the last `count` calendar months, oldest first."""
    months = []
    for offset in range(count - 1, -1, -1):
        total = now.year * 12 + (now.month - 1) - offset
        months.append((total // 12, total % 12 + 1))
    return months


def _mean(values: Sequence[float]) -> float:
    return round_half_up(sum(values) / len(values), 1) if values else 0.0


def _non_zero_mean(values: Sequence[float]) -> float:
    return _mean([v for v in values if v > 0])


def empty_dashboard(grade: str | None = None) -> ClassDashboard:
    zeros = [0.0] * SERIES_MONTHS
    return ClassDashboard(
        grade=grade,
        monthly_series=MonthlySeries(
            months=[f"Month {i}" for i in range(1, SERIES_MONTHS + 1)],
            height=list(zeros),
            weight=list(zeros),
            bmi=list(zeros),
        ),
        overall_averages=OverallAverages(),
        nutrition_categories=NutritionCategoryCounts(),
        sections=[],
        record_count=0,
    )


def build_monthly_series(records: Iterable[HealthRecord], now: datetime) -> MonthlySeries:
    """Per-month mean height, weight and BMI over the six most recent months."""
    months = _recent_months(now)
    buckets: dict[tuple[int, int], list[HealthRecord]] = {key: [] for key in months}

    for record in records:
        recorded = record.date.astimezone(now.tzinfo) if now.tzinfo else record.date
        key = (recorded.year, recorded.month)
        if key in buckets:
            buckets[key].append(record)

    heights, weights, bmis = [], [], []
    for key in months:
        bucket = buckets[key]
        if not bucket:
            heights.append(0.0)
            weights.append(0.0)
            bmis.append(0.0)
            continue
        # Invalid measurements add zero but still count in the denominator
        heights.append(_mean([r.height or 0.0 for r in bucket]))
        weights.append(_mean([r.weight or 0.0 for r in bucket]))
        bmis.append(_mean([raw_bmi(r.weight, r.height) or 0.0 for r in bucket]))

    return MonthlySeries(
        months=[calendar.month_abbr[month] for _, month in months],
        height=heights,
        weight=weights,
        bmi=bmis,
    )


def count_nutrition_categories(records: Iterable[HealthRecord]) -> NutritionCategoryCounts:
    """Category counts and whole percentages over every record with usable measurements."""
    counts: dict[NutritionCategory, int] = {"normal": 0, "underweight": 0, "overweight": 0}
    for record in records:
        bmi = raw_bmi(record.weight, record.height)
        if bmi is not None:
            counts[nutrition_category(bmi)] += 1

    total = sum(counts.values()) or 1
    return NutritionCategoryCounts(
        **counts,
        normal_percent=int(round_half_up(counts["normal"] / total * 100)),
        underweight_percent=int(round_half_up(counts["underweight"] / total * 100)),
        overweight_percent=int(round_half_up(counts["overweight"] / total * 100)),
    )


def group_by_section(records: Iterable[HealthRecord]) -> list[SectionSummary]:
    """Per-section record totals and category counts, in first-seen order."""
    sections: dict[str, dict[str, int]] = {}
    for record in records:
        if not record.section:
            continue
        summary = sections.setdefault(
            record.section, {"count": 0, "normal": 0, "underweight": 0, "overweight": 0}
        )
        summary["count"] += 1
        bmi = raw_bmi(record.weight, record.height)
        if bmi is not None:
            summary[nutrition_category(bmi)] += 1

    return [SectionSummary(name=name, **summary) for name, summary in sections.items()]


def build_dashboard(
    records: Sequence[HealthRecord],
    *,
    grade: str | None = None,
    now: datetime | None = None,
) -> ClassDashboard:
    """
    Dashboard payload for a grade.

    An empty record set is a normal situation for a new grade and yields six
    zero-filled months rather than an error.
    """
    if not records:
        return empty_dashboard(grade)

    now = now or datetime.now(UTC)
    series = build_monthly_series(records, now)
    return ClassDashboard(
        grade=grade,
        monthly_series=series,
        overall_averages=OverallAverages(
            average_height=_non_zero_mean(series.height),
            average_weight=_non_zero_mean(series.weight),
            average_bmi=_non_zero_mean(series.bmi),
        ),
        nutrition_categories=count_nutrition_categories(records),
        sections=group_by_section(records),
        record_count=len(records),
    )


def latest_record(records: Iterable[HealthRecord]) -> HealthRecord | None:
    """Most recent record whose measurements produce a BMI."""
    valid = [r for r in records if r.bmi is not None]
    return max(valid, key=lambda r: r.date) if valid else None


def build_student_report(student: Student | None, records: Sequence[HealthRecord]) -> StudentReport:
    ordered = sort_records(records)
    return StudentReport(student=student, records=ordered, trends=compute_trend(ordered))


def build_class_averages(
    grade: str, latest_records: Iterable[HealthRecord | None]
) -> ClassAverages:
    """
    Average each student's latest record across the class.

    Raises:
        NoDataError: when no student contributed a record with a valid BMI.
    """
    contributors = [r for r in latest_records if r is not None and r.bmi is not None]
    if not contributors:
        raise NoDataError(
            f"No valid health records found for students in grade {grade}.", grade=grade
        )

    count = len(contributors)
    return ClassAverages(
        grade=grade,
        student_count=count,
        average_height=round_half_up(sum(r.height or 0.0 for r in contributors) / count, 2),
        average_weight=round_half_up(sum(r.weight or 0.0 for r in contributors) / count, 2),
        average_bmi=round_half_up(sum(r.bmi or 0.0 for r in contributors) / count, 2),
    )


def build_class_report(grade: str, student_reports: Sequence[StudentReport]) -> ClassReport:
    """Class report from per-student reports, using latest-record-only averaging."""
    if not student_reports:
        raise NoDataError(
            f"No students found in grade {grade}. Please add students before generating a report.",
            grade=grade,
        )

    class_averages = build_class_averages(
        grade, (latest_record(report.records) for report in student_reports)
    )
    return ClassReport(
        grade=grade,
        student_count=class_averages.student_count,
        class_averages=class_averages,
        students=[report for report in student_reports if latest_record(report.records)],
    )
