"""
Screen-facing health metrics service.

This ties the pieces together:
1. Serve computed payloads from the TTL cache when fresh
2. Otherwise fetch raw records from the store and recompute
3. Publish SYNC_DATA after every successful mutation
4. Drop every cached payload when SYNC_DATA arrives, recomputing on next read
"""

import uuid
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import structlog
from pydantic import BaseModel, Field

from school_health.config import AppConfig, get_config
from school_health.domain.models import (
    ActivitySummary,
    ClassDashboard,
    ClassReport,
    ExerciseLog,
    HealthRecord,
    NutritionLog,
    Student,
    StudentMetrics,
    StudentReport,
)
from school_health.errors import NoDataError
from school_health.services.activity import summarize_activity
from school_health.services.aggregation import (
    build_class_report,
    build_dashboard,
    build_student_report,
    empty_dashboard,
)
from school_health.services.cache import CacheKind, CacheLayer
from school_health.services.metrics_calculator import (
    calculate_bmi,
    classify_bmi_status,
    measurement_warning,
)
from school_health.services.percentile_engine import bmi_percentile
from school_health.services.record_fetcher import (
    GradeRecordFetcher,
    HealthStore,
    RecordFetcherConfig,
    fetch_exercise_logs,
    fetch_nutrition_logs,
    fetch_student_records,
    fetch_students_by_grade,
)
from school_health.services.sync_bus import (
    SYNC_DATA,
    Handler,
    Subscription,
    SyncEvent,
    SyncEventBus,
)
from school_health.services.trend_analyzer import bmi_direction

logger = structlog.get_logger(__name__)


class Measurement(BaseModel):
    """A height/weight pair entered for a new health record."""

    height: float = Field(gt=0.0, description="Height in centimetres")
    weight: float = Field(gt=0.0, description="Weight in kilograms")


def _new_id() -> str:
    return uuid.uuid4().hex


class HealthService:
    """
    Computes and caches everything the dashboard, tracking and report screens show.

    The service subscribes itself to the sync bus on construction; call
    close() when the owning screen stack is torn down.
    """

    def __init__(
        self,
        store: HealthStore,
        bus: SyncEventBus,
        config: AppConfig | None = None,
        cache: CacheLayer | None = None,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self.config = config or get_config()
        self.store = store
        self.bus = bus
        self.cache = cache or CacheLayer(
            ttls={
                CacheKind.GRADE: self.config.cache.grade_ttl_seconds,
                CacheKind.STUDENT: self.config.cache.student_ttl_seconds,
            }
        )
        self.fetcher = GradeRecordFetcher(
            store, RecordFetcherConfig(batch_size=self.config.fetch.batch_size)
        )
        self._now = now or (lambda: datetime.now(UTC))
        self.logger = logger.bind(component="health_service")
        self._subscription = bus.subscribe(SYNC_DATA, self._on_sync)

    def _on_sync(self, event: SyncEvent) -> None:
        # Total invalidation; recomputation waits for the next read
        self.cache.invalidate()
        self.logger.info("cache_invalidated_on_sync", payload=event.payload)

    # Reads

    async def get_student_metrics(self, student_id: str) -> StudentMetrics:
        """Latest measurement, status, self-relative percentile and BMI direction."""

        async def compute() -> StudentMetrics:
            records = await fetch_student_records(self.store, student_id)
            if not records:
                return StudentMetrics(student_id=student_id)

            latest = records[-1]
            bmi = calculate_bmi(latest.weight, latest.height)
            return StudentMetrics(
                student_id=student_id,
                latest_record=latest,
                bmi=bmi,
                status=classify_bmi_status(bmi),
                percentile=bmi_percentile(bmi, records),
                bmi_trend=bmi_direction(records),
            )

        return await self.cache.get_or_compute_async(
            ("metrics", student_id), CacheKind.STUDENT, compute
        )

    async def get_class_dashboard(self, grade: str) -> ClassDashboard:
        """Six-month series, overall averages, nutrition categories and sections."""

        async def compute() -> ClassDashboard:
            students = await fetch_students_by_grade(self.store, grade)
            if not students:
                self.logger.info("no_students_in_grade", grade=grade)
                return empty_dashboard(grade)
            records = await self.fetcher.fetch_all(students)
            return build_dashboard(records, grade=grade, now=self._now())

        return await self.cache.get_or_compute_async(
            ("dashboard", grade), CacheKind.GRADE, compute
        )

    async def get_class_report(self, grade: str) -> ClassReport:
        """
        Printable class report averaged over each student's latest record.

        Raises:
            NoDataError: the grade has no students, or none with a valid record.
        """

        async def compute() -> ClassReport:
            students = await fetch_students_by_grade(self.store, grade)
            if not students:
                raise NoDataError(
                    f"No students found in grade {grade}. "
                    "Please add students before generating a report.",
                    grade=grade,
                )
            records_by_student = await self.fetcher.fetch_by_student(students)
            reports = [
                build_student_report(student, records_by_student.get(student.id, []))
                for student in students
            ]
            return build_class_report(grade, reports)

        return await self.cache.get_or_compute_async(("report", grade), CacheKind.GRADE, compute)

    async def get_student_report(self, student_id: str) -> StudentReport:
        """Full ascending history with first-versus-last trend."""

        async def compute() -> StudentReport:
            student = await self.store.get_student(student_id)
            records = await fetch_student_records(self.store, student_id)
            return build_student_report(student, records)

        return await self.cache.get_or_compute_async(
            ("report", student_id), CacheKind.STUDENT, compute
        )

    async def get_activity_summary(self, student_id: str) -> ActivitySummary:
        """Recent nutrition and exercise logs with averages and goal progress."""

        async def compute() -> ActivitySummary:
            fetch = self.config.fetch
            nutrition = await fetch_nutrition_logs(
                self.store, student_id, fetch.nutrition_log_limit
            )
            exercise = await fetch_exercise_logs(self.store, student_id, fetch.exercise_log_limit)
            return summarize_activity(
                student_id,
                nutrition,
                exercise,
                calorie_goal=self.config.goals.daily_calorie_goal,
                minutes_goal=self.config.goals.daily_exercise_minutes_goal,
            )

        return await self.cache.get_or_compute_async(
            ("activity", student_id), CacheKind.STUDENT, compute
        )

    def on_data_changed(self, handler: Handler) -> Subscription:
        """Let a screen react to SYNC_DATA; the returned handle unsubscribes."""
        return self.bus.subscribe(SYNC_DATA, handler)

    # Mutations

    def _publish_change(self, action: str, **details: Any) -> None:
        self.logger.info("data_changed", action=action, **details)
        self.bus.publish(SYNC_DATA, {"action": action, **details})

    async def add_student(
        self, student: Student, *, height: float | None = None, weight: float | None = None
    ) -> Student:
        """Register a student, with an initial health record when both measurements are given."""
        measurement = None
        if height is not None and weight is not None:
            measurement = Measurement(height=height, weight=weight)
        elif height is not None or weight is not None:
            self.logger.warning(
                "initial_measurement_incomplete",
                student_id=student.id,
                height=height,
                weight=weight,
            )

        saved = await self.store.add_student(student)
        if measurement is not None:
            await self.store.add_health_record(
                HealthRecord(
                    id=_new_id(),
                    student_id=saved.id,
                    height=measurement.height,
                    weight=measurement.weight,
                    date=self._now(),
                )
            )
        self._publish_change("student_added", student_id=saved.id)
        return saved

    async def update_student(self, student: Student) -> Student:
        saved = await self.store.update_student(student)
        self._publish_change("student_updated", student_id=saved.id)
        return saved

    async def delete_student(self, student_id: str) -> None:
        await self.store.delete_student(student_id)
        self._publish_change("student_deleted", student_id=student_id)

    async def add_health_record(
        self,
        student_id: str,
        height: float,
        weight: float,
        *,
        notes: str | None = None,
        date: datetime | None = None,
    ) -> HealthRecord:
        """
        Log a measurement for an existing student.

        Implausible values for the student's age are logged as a warning but
        still recorded.

        Raises:
            pydantic.ValidationError: height or weight is not a positive number.
            NotFoundError: the student does not exist.
        """
        measurement = Measurement(height=height, weight=weight)
        student = await self.store.get_student(student_id)

        warning = measurement_warning(measurement.weight, measurement.height, student.age)
        if warning:
            self.logger.warning(
                "implausible_measurement", student_id=student_id, warning=warning
            )

        record = await self.store.add_health_record(
            HealthRecord(
                id=_new_id(),
                student_id=student_id,
                height=measurement.height,
                weight=measurement.weight,
                date=date or self._now(),
                notes=notes,
            )
        )
        self._publish_change("health_record_added", student_id=student_id, record_id=record.id)
        return record

    async def delete_health_record(self, record_id: str) -> None:
        await self.store.delete_health_record(record_id)
        self._publish_change("health_record_deleted", record_id=record_id)

    async def log_nutrition(
        self,
        student_id: str,
        *,
        calories: float,
        protein: float = 0.0,
        carbs: float = 0.0,
        fat: float = 0.0,
        date: datetime | None = None,
    ) -> NutritionLog:
        log = await self.store.add_nutrition_log(
            NutritionLog(
                id=_new_id(),
                student_id=student_id,
                date=date or self._now(),
                calories=calories,
                protein=protein,
                carbs=carbs,
                fat=fat,
            )
        )
        self._publish_change("nutrition_logged", student_id=student_id)
        return log

    async def log_exercise(
        self,
        student_id: str,
        *,
        minutes: float,
        calories_burned: float = 0.0,
        activity_type: str | None = None,
        date: datetime | None = None,
    ) -> ExerciseLog:
        log = await self.store.add_exercise_log(
            ExerciseLog(
                id=_new_id(),
                student_id=student_id,
                date=date or self._now(),
                minutes=minutes,
                calories_burned=calories_burned,
                activity_type=activity_type,
            )
        )
        self._publish_change("exercise_logged", student_id=student_id)
        return log

    # Lifecycle

    def invalidate(self) -> None:
        self.cache.invalidate()

    def close(self) -> None:
        """Stop listening for sync events."""
        self._subscription.unsubscribe()
