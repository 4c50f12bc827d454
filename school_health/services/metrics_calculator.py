"""
Pure health-metric calculations: BMI, age and status classification.

Nothing in this module raises on bad measurements. Missing, non-numeric or
non-positive inputs resolve to None (or "N/A" for display) so that screens
stay renderable with partial data.
"""

import math
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from school_health.domain.models import BmiStatus

# (upper bound, status) pairs, checked in order with a strict "<"
BMI_THRESHOLDS: tuple[tuple[float, BmiStatus], ...] = (
    (16.0, BmiStatus.SEVERELY_UNDERWEIGHT),
    (18.5, BmiStatus.UNDERWEIGHT),
    (25.0, BmiStatus.NORMAL),
    (30.0, BmiStatus.OVERWEIGHT),
    (35.0, BmiStatus.OBESE_CLASS_I),
    (40.0, BmiStatus.OBESE_CLASS_II),
)

# (min age, max age, height range cm, weight range kg); adults are the fallback
MEASUREMENT_RANGES: tuple[tuple[int, int, tuple[float, float], tuple[float, float]], ...] = (
    (2, 9, (80, 150), (10, 50)),
    (10, 12, (120, 170), (25, 80)),
    (13, 19, (140, 200), (35, 120)),
)
ADULT_HEIGHT_RANGE = (140, 250)
ADULT_WEIGHT_RANGE = (35, 150)


def round_half_up(value: float, places: int = 0) -> float:
    """Round like a display layer does (2.25 -> 2.3), not banker's rounding."""
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def _positive_number(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError, InvalidOperation):
        return None
    if math.isnan(number) or math.isinf(number) or number <= 0:
        return None
    return number


def raw_bmi(weight_kg: Any, height_cm: Any) -> float | None:
    """Unrounded BMI, used where category boundaries must see the exact value."""
    weight = _positive_number(weight_kg)
    height = _positive_number(height_cm)
    if weight is None or height is None:
        return None
    height_m = height / 100
    return weight / (height_m * height_m)


def calculate_bmi(weight_kg: Any, height_cm: Any) -> float | None:
    """
    Calculate BMI from weight (kg) and height (cm).

    Returns:
        BMI rounded to one decimal place, or None when either input is
        missing, non-numeric, zero or negative.
    """
    bmi = raw_bmi(weight_kg, height_cm)
    if bmi is None:
        return None
    return round_half_up(bmi, 1)


def calculate_age(birth_date: Any, today: date | None = None) -> int | None:
    """
    Whole years elapsed since birth_date.

    A person only turns N on or after the anniversary of their birth date, so
    the year difference drops by one while today's month/day is still before
    the birth month/day.
    """
    if isinstance(birth_date, datetime):
        birth_date = birth_date.date()
    if not isinstance(birth_date, date):
        return None

    today = today or date.today()
    age = today.year - birth_date.year
    if (today.month, today.day) < (birth_date.month, birth_date.day):
        age -= 1
    return age


def classify_bmi_status(bmi: Any) -> BmiStatus:
    """Map a BMI value onto the fixed WHO classes."""
    if bmi is None or isinstance(bmi, bool):
        return BmiStatus.INVALID
    try:
        value = float(bmi)
    except (TypeError, ValueError):
        return BmiStatus.INVALID
    if math.isnan(value):
        return BmiStatus.INVALID

    for upper_bound, status in BMI_THRESHOLDS:
        if value < upper_bound:
            return status
    return BmiStatus.OBESE_CLASS_III


def _ranges_for_age(age: int) -> tuple[tuple[float, float], tuple[float, float], bool]:
    for min_age, max_age, height_range, weight_range in MEASUREMENT_RANGES:
        if min_age <= age <= max_age:
            return height_range, weight_range, True
    return ADULT_HEIGHT_RANGE, ADULT_WEIGHT_RANGE, False


def measurement_warning(weight_kg: Any, height_cm: Any, age: int | None) -> str | None:
    """
    Advisory plausibility check for a new measurement.

    Returns a message describing the first implausible value (height is
    checked before weight) or None when both fall inside the age band.
    """
    height_range, weight_range, banded = _ranges_for_age(age or 0)
    suffix = " for this age" if banded else ""

    height = _positive_number(height_cm)
    if not age or height is None or not height_range[0] <= height <= height_range[1]:
        return f"Height should be between {height_range[0]}-{height_range[1]} cm{suffix}"

    weight = _positive_number(weight_kg)
    if weight is None or not weight_range[0] <= weight <= weight_range[1]:
        return f"Weight should be between {weight_range[0]}-{weight_range[1]} kg{suffix}"

    return None


def display_value(value: Any, decimals: int = 1) -> str:
    """Format a measurement for display, "N/A" when it is not a usable number."""
    number = _positive_number(value)
    if number is None:
        return "N/A"
    return f"{round_half_up(number, decimals):.{decimals}f}"
