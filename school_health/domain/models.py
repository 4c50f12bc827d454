"""
Domain models for school health tracking.

These models represent the core business concepts and are framework-agnostic.
Stored documents (students, health records, activity logs) are immutable once
loaded; everything else in this module is a derived payload that the services
recompute on demand and never persist.
"""

import math
from datetime import UTC, date, datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator


class Grade(str, Enum):
    """Elementary grade levels tracked by the school."""

    GRADE_1 = "1"
    GRADE_2 = "2"
    GRADE_3 = "3"
    GRADE_4 = "4"
    GRADE_5 = "5"
    GRADE_6 = "6"


class Gender(str, Enum):
    MALE = "male"
    FEMALE = "female"
    UNKNOWN = "unknown"


class BmiStatus(str, Enum):
    """WHO adult BMI classes, applied uniformly to every student."""

    SEVERELY_UNDERWEIGHT = "Severely Underweight"
    UNDERWEIGHT = "Underweight"
    NORMAL = "Normal"
    OVERWEIGHT = "Overweight"
    OBESE_CLASS_I = "Obese Class I"
    OBESE_CLASS_II = "Obese Class II"
    OBESE_CLASS_III = "Obese Class III"
    INVALID = "Invalid"


def _ensure_aware(value: datetime) -> datetime:
    # Store timestamps without zone info are treated as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _measurement_or_none(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(number) or math.isinf(number) else number


class Student(BaseModel):
    """A registered student. The metrics core reads students, it never edits them."""

    model_config = ConfigDict(frozen=True)

    id: str
    first_name: str
    last_name: str
    grade: Grade
    section: str = ""
    gender: Gender = Gender.UNKNOWN
    birth_date: date | None = None

    @field_validator("gender", mode="before")
    @classmethod
    def coerce_gender(cls, v: Any) -> Gender:
        if isinstance(v, Gender):
            return v
        if isinstance(v, str) and v.strip().lower() in {"male", "female"}:
            return Gender(v.strip().lower())
        return Gender.UNKNOWN

    @field_validator("birth_date", mode="before")
    @classmethod
    def coerce_birth_date(cls, v: Any) -> Any:
        if isinstance(v, datetime):
            return v.date()
        return v

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def age(self) -> int | None:
        from school_health.services.metrics_calculator import calculate_age

        return calculate_age(self.birth_date)


class HealthRecord(BaseModel):
    """
    One height/weight measurement for a student.

    `bmi` and `bmi_status` are always derived from height and weight; they are
    computed fields and cannot be assigned. Height or weight that is missing or
    unparseable arrives as None and makes the record count as invalid for BMI
    purposes instead of failing to load.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    student_id: str
    height: float | None = Field(default=None, description="Height in centimetres")
    weight: float | None = Field(default=None, description="Weight in kilograms")
    date: datetime = Field(default_factory=lambda: datetime.now(UTC))
    notes: str | None = None
    section: str | None = Field(
        default=None, description="Owning student's section, denormalised by the fetch layer"
    )

    @field_validator("height", "weight", mode="before")
    @classmethod
    def coerce_measurement(cls, v: Any) -> float | None:
        return _measurement_or_none(v)

    @field_validator("date")
    @classmethod
    def normalise_date(cls, v: datetime) -> datetime:
        return _ensure_aware(v)

    @computed_field(return_type=float | None)
    def bmi(self) -> float | None:
        from school_health.services.metrics_calculator import calculate_bmi

        return calculate_bmi(self.weight, self.height)

    @computed_field(return_type=BmiStatus)
    def bmi_status(self) -> BmiStatus:
        from school_health.services.metrics_calculator import classify_bmi_status

        return classify_bmi_status(self.bmi)


class NutritionLog(BaseModel):
    """Daily food intake logged by a student."""

    model_config = ConfigDict(frozen=True)

    id: str
    student_id: str
    date: datetime = Field(default_factory=lambda: datetime.now(UTC))
    calories: float = 0.0
    protein: float = 0.0
    carbs: float = 0.0
    fat: float = 0.0

    @field_validator("calories", "protein", "carbs", "fat", mode="before")
    @classmethod
    def default_missing(cls, v: Any) -> float:
        return _measurement_or_none(v) or 0.0

    @field_validator("date")
    @classmethod
    def normalise_date(cls, v: datetime) -> datetime:
        return _ensure_aware(v)


class ExerciseLog(BaseModel):
    """A single exercise session logged by a student."""

    model_config = ConfigDict(frozen=True)

    id: str
    student_id: str
    date: datetime = Field(default_factory=lambda: datetime.now(UTC))
    minutes: float = 0.0
    calories_burned: float = 0.0
    activity_type: str = "Not specified"

    @field_validator("minutes", "calories_burned", mode="before")
    @classmethod
    def default_missing(cls, v: Any) -> float:
        return _measurement_or_none(v) or 0.0

    @field_validator("activity_type", mode="before")
    @classmethod
    def default_activity(cls, v: Any) -> str:
        return v or "Not specified"

    @field_validator("date")
    @classmethod
    def normalise_date(cls, v: datetime) -> datetime:
        return _ensure_aware(v)


# Derived payloads


class Trend(BaseModel):
    """First-versus-last change across one student's history."""

    height_change: float = 0.0
    weight_change: float = 0.0
    bmi_change: float = 0.0


class BmiTrend(BaseModel):
    change: float
    direction: Literal["up", "down", "stable"]


class MonthlySeries(BaseModel):
    """Six calendar months of per-month means, oldest first."""

    months: list[str]
    height: list[float]
    weight: list[float]
    bmi: list[float]


class OverallAverages(BaseModel):
    average_height: float = 0.0
    average_weight: float = 0.0
    average_bmi: float = 0.0


class NutritionCategoryCounts(BaseModel):
    """Counts and whole-number percentages of the three nutrition categories."""

    normal: int = 0
    underweight: int = 0
    overweight: int = 0
    normal_percent: int = 0
    underweight_percent: int = 0
    overweight_percent: int = 0

    @property
    def total(self) -> int:
        return self.normal + self.underweight + self.overweight


class SectionSummary(BaseModel):
    name: str
    count: int = 0
    normal: int = 0
    underweight: int = 0
    overweight: int = 0


class ClassDashboard(BaseModel):
    """Month-over-month chart data for one grade."""

    grade: str | None = None
    monthly_series: MonthlySeries
    overall_averages: OverallAverages
    nutrition_categories: NutritionCategoryCounts
    sections: list[SectionSummary] = Field(default_factory=list)
    record_count: int = Field(default=0, ge=0)
    generated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class ClassAverages(BaseModel):
    grade: str
    student_count: int = Field(gt=0)
    average_height: float
    average_weight: float
    average_bmi: float


class StudentReport(BaseModel):
    """Printable report for one student: full ascending history plus trend."""

    student: Student | None = None
    records: list[HealthRecord]
    trends: Trend
    generated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class ClassReport(BaseModel):
    """Printable report for a grade, averaged over each student's latest record."""

    grade: str
    student_count: int
    class_averages: ClassAverages
    students: list[StudentReport] = Field(default_factory=list)
    generated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class StudentMetrics(BaseModel):
    """What the tracking screen shows for one selected student."""

    student_id: str
    latest_record: HealthRecord | None = None
    bmi: float | None = None
    status: BmiStatus = BmiStatus.INVALID
    percentile: str = "0.00"
    bmi_trend: BmiTrend | None = None


class ActivitySummary(BaseModel):
    student_id: str
    nutrition_logs: list[NutritionLog] = Field(default_factory=list)
    exercise_logs: list[ExerciseLog] = Field(default_factory=list)
    average_calories: int = 0
    average_exercise_minutes: int = 0
    goal_progress: int = Field(default=0, ge=0, le=100)
