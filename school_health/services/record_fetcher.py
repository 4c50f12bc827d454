"""
Reading raw records out of the document store.

Key patterns:
- Protocol-based store interface, so the hosted client and the in-memory
  store are interchangeable
- Result type for per-student fetch failures that must not abort a batch
- Bounded parallel batches with asyncio.TaskGroup
- Transparent fallback to an unordered query when an index is missing
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from typing import Generic, Protocol, TypeVar

import structlog
from pydantic import BaseModel, Field

from school_health.domain.models import ExerciseLog, HealthRecord, NutritionLog, Student
from school_health.errors import MissingIndexError, StoreError, StoreUnavailableError


def configure_logging(level: str = "INFO", fmt: str = "json") -> None:
    """Configure structured logging; JSON for production, console for development."""
    logging.basicConfig(format="%(message)s", level=getattr(logging, level.upper(), logging.INFO))
    renderer = (
        structlog.dev.ConsoleRenderer() if fmt == "console" else structlog.processors.JSONRenderer()
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging()

logger = structlog.get_logger(__name__)

T = TypeVar("T")
ValueT = TypeVar("ValueT")
ErrorT = TypeVar("ErrorT", bound=BaseException)


class Result(Generic[ValueT, ErrorT]):
    """Outcome of one student's fetch inside a grade batch; errors degrade to no records."""

    def __init__(self, value: ValueT | None = None, error: ErrorT | None = None) -> None:
        if value is not None and error is not None:
            raise ValueError("Result cannot have both value and error")
        if value is None and error is None:
            raise ValueError("Result must have either value or error")
        self._value: ValueT | None = value
        self._error: ErrorT | None = error

    @classmethod
    def ok(cls, value: ValueT) -> "Result[ValueT, ErrorT]":
        return cls(value=value)

    @classmethod
    def err(cls, error: ErrorT) -> "Result[ValueT, ErrorT]":
        return cls(error=error)

    def is_ok(self) -> bool:
        return self._error is None

    def is_err(self) -> bool:
        return self._error is not None

    def unwrap(self) -> ValueT:
        if self._error is not None:
            raise self._error
        return self._value  # type: ignore[return-value]

    def unwrap_or(self, default: ValueT) -> ValueT:
        return self._value if self._error is None else default  # type: ignore[return-value]

    def unwrap_err(self) -> ErrorT:
        if self._error is None:
            raise ValueError("Called unwrap_err() on an Ok value")
        return self._error


class HealthStore(Protocol):
    """
    Async interface of the hosted document store.

    Ordered queries return records ascending by date and logs descending by
    date. Any call may raise PermissionDeniedError; ordered queries may also
    raise MissingIndexError while the store's composite index is building.
    """

    async def query_records_by_student(
        self, student_id: str, *, ordered: bool = True
    ) -> list[HealthRecord]: ...

    async def query_students_by_grade(self, grade: str) -> list[Student]: ...

    async def query_all_students(self) -> list[Student]: ...

    async def get_student(self, student_id: str) -> Student: ...

    async def add_student(self, student: Student) -> Student: ...

    async def update_student(self, student: Student) -> Student: ...

    async def delete_student(self, student_id: str) -> None: ...

    async def add_health_record(self, record: HealthRecord) -> HealthRecord: ...

    async def delete_health_record(self, record_id: str) -> None: ...

    async def query_nutrition_logs(
        self, student_id: str, *, limit: int, ordered: bool = True
    ) -> list[NutritionLog]: ...

    async def query_exercise_logs(
        self, student_id: str, *, limit: int, ordered: bool = True
    ) -> list[ExerciseLog]: ...

    async def add_nutrition_log(self, log: NutritionLog) -> NutritionLog: ...

    async def add_exercise_log(self, log: ExerciseLog) -> ExerciseLog: ...


async def with_index_fallback(
    operation: str,
    primary: Callable[[], Awaitable[T]],
    fallback: Callable[[], Awaitable[T]],
) -> T:
    """
    Run the ordered query, degrading to the unordered one on a missing index.

    Raises:
        StoreUnavailableError: when the fallback query fails too.
    """
    try:
        return await primary()
    except MissingIndexError as e:
        logger.warning("missing_index_fallback", operation=operation, error=str(e))

    try:
        return await fallback()
    except StoreUnavailableError:
        raise
    except StoreError as e:
        logger.error("fallback_query_failed", operation=operation, error=str(e))
        raise StoreUnavailableError(f"{operation} failed after fallback: {e}") from e


async def fetch_student_records(store: HealthStore, student_id: str) -> list[HealthRecord]:
    """All records for one student, ascending by date."""

    async def unordered() -> list[HealthRecord]:
        records = await store.query_records_by_student(student_id, ordered=False)
        return sorted(records, key=lambda r: r.date)

    return await with_index_fallback(
        "query_records_by_student",
        lambda: store.query_records_by_student(student_id, ordered=True),
        unordered,
    )


async def fetch_students_by_grade(store: HealthStore, grade: str) -> list[Student]:
    """Students of one grade sorted by last name, filtering client-side if needed."""

    async def from_all_students() -> list[Student]:
        return [s for s in await store.query_all_students() if s.grade.value == grade]

    students = await with_index_fallback(
        "query_students_by_grade",
        lambda: store.query_students_by_grade(grade),
        from_all_students,
    )
    return sorted(students, key=lambda s: s.last_name.lower())


async def fetch_nutrition_logs(
    store: HealthStore, student_id: str, limit: int
) -> list[NutritionLog]:
    """The `limit` most recent nutrition logs, newest first."""

    async def unordered() -> list[NutritionLog]:
        logs = await store.query_nutrition_logs(student_id, limit=limit, ordered=False)
        return sorted(logs, key=lambda log: log.date, reverse=True)[:limit]

    return await with_index_fallback(
        "query_nutrition_logs",
        lambda: store.query_nutrition_logs(student_id, limit=limit, ordered=True),
        unordered,
    )


async def fetch_exercise_logs(
    store: HealthStore, student_id: str, limit: int
) -> list[ExerciseLog]:
    """The `limit` most recent exercise logs, newest first."""

    async def unordered() -> list[ExerciseLog]:
        logs = await store.query_exercise_logs(student_id, limit=limit, ordered=False)
        return sorted(logs, key=lambda log: log.date, reverse=True)[:limit]

    return await with_index_fallback(
        "query_exercise_logs",
        lambda: store.query_exercise_logs(student_id, limit=limit, ordered=True),
        unordered,
    )


class RecordFetcherConfig(BaseModel):
    batch_size: int = Field(
        default=10, gt=0, description="Students fetched in parallel per batch."
    )


class GradeRecordFetcher:
    """
    Fetches health records for many students in bounded parallel batches.

    Design principles:
    - Graceful degradation (one failing student means no records for that
      student, the batch carries on)
    - Backpressure (at most `batch_size` store calls in flight)
    - Observable (structured logging per batch)
    """

    def __init__(self, store: HealthStore, config: RecordFetcherConfig | None = None) -> None:
        self.store = store
        self.config = config or RecordFetcherConfig()
        self.logger = logger.bind(component="grade_record_fetcher")

    async def _fetch_one(self, student: Student) -> Result[list[HealthRecord], Exception]:
        try:
            records = await fetch_student_records(self.store, student.id)
        except Exception as e:
            self.logger.warning(
                "student_records_fetch_failed", student_id=student.id, error=str(e)
            )
            return Result.err(e)
        # Dashboards group by section, which lives on the student document
        return Result.ok([r.model_copy(update={"section": student.section}) for r in records])

    async def fetch_by_student(self, students: Sequence[Student]) -> dict[str, list[HealthRecord]]:
        """Map of student id to that student's ascending records."""
        start_time = time.perf_counter()
        records_by_student: dict[str, list[HealthRecord]] = {}
        failed = 0

        batch_size = self.config.batch_size
        for offset in range(0, len(students), batch_size):
            batch = students[offset : offset + batch_size]
            async with asyncio.TaskGroup() as task_group:
                tasks = [task_group.create_task(self._fetch_one(student)) for student in batch]

            for student, task in zip(batch, tasks, strict=True):
                result = task.result()
                if result.is_err():
                    failed += 1
                records_by_student[student.id] = result.unwrap_or([])

        self.logger.info(
            "grade_records_fetched",
            students=len(students),
            failed_students=failed,
            records=sum(len(r) for r in records_by_student.values()),
            duration_seconds=round(time.perf_counter() - start_time, 3),
        )
        return records_by_student

    async def fetch_all(self, students: Sequence[Student]) -> list[HealthRecord]:
        """Flat list of every record of the given students."""
        by_student = await self.fetch_by_student(students)
        return [record for records in by_student.values() for record in records]
