"""
In-memory HealthStore implementation.

Stands in for the hosted document store in tests and the console demo. It can
be told to simulate the store's failure modes: missing composite indexes,
permission errors and per-student outages.
"""

import asyncio
from collections import Counter

import structlog

from school_health.domain.models import ExerciseLog, HealthRecord, NutritionLog, Student
from school_health.errors import (
    MissingIndexError,
    NotFoundError,
    PermissionDeniedError,
    StoreUnavailableError,
)

logger = structlog.get_logger(__name__)


class InMemoryHealthStore:
    """
    Dict-backed store that mimics the hosted store's query semantics.

    Ordered record queries return ascending dates, ordered log queries newest
    first; unordered queries return insertion order.
    """

    def __init__(
        self,
        *,
        missing_indexes: set[str] | None = None,
        failing_students: set[str] | None = None,
        permission_denied: bool = False,
        latency_seconds: float = 0.0,
    ) -> None:
        self.students: dict[str, Student] = {}
        self.records: dict[str, HealthRecord] = {}
        self.nutrition_logs: dict[str, NutritionLog] = {}
        self.exercise_logs: dict[str, ExerciseLog] = {}

        self.missing_indexes = missing_indexes or set()
        self.failing_students = failing_students or set()
        self.permission_denied = permission_denied
        self.latency_seconds = latency_seconds
        self.calls: Counter[str] = Counter()
        self.logger = logger.bind(component="in_memory_store")

    async def _enter(self, operation: str, *, ordered: bool = False) -> None:
        self.calls[operation] += 1
        if self.latency_seconds > 0:
            await asyncio.sleep(self.latency_seconds)
        if self.permission_denied:
            raise PermissionDeniedError(f"Missing or insufficient permissions for {operation}")
        if ordered and operation in self.missing_indexes:
            raise MissingIndexError(f"The query {operation} requires an index")

    async def query_records_by_student(
        self, student_id: str, *, ordered: bool = True
    ) -> list[HealthRecord]:
        await self._enter("query_records_by_student", ordered=ordered)
        if student_id in self.failing_students:
            raise StoreUnavailableError(f"Could not reach the store for student {student_id}")
        records = [r for r in self.records.values() if r.student_id == student_id]
        return sorted(records, key=lambda r: r.date) if ordered else records

    async def query_students_by_grade(self, grade: str) -> list[Student]:
        # Grade filter plus the last-name ordering needs a composite index
        await self._enter("query_students_by_grade", ordered=True)
        students = [s for s in self.students.values() if s.grade.value == grade]
        return sorted(students, key=lambda s: s.last_name.lower())

    async def query_all_students(self) -> list[Student]:
        await self._enter("query_all_students")
        return sorted(self.students.values(), key=lambda s: s.last_name.lower())

    async def get_student(self, student_id: str) -> Student:
        await self._enter("get_student")
        try:
            return self.students[student_id]
        except KeyError:
            raise NotFoundError(f"No student found with id {student_id}") from None

    async def add_student(self, student: Student) -> Student:
        await self._enter("add_student")
        self.students[student.id] = student
        return student

    async def update_student(self, student: Student) -> Student:
        await self._enter("update_student")
        if student.id not in self.students:
            raise NotFoundError(f"No student found with id {student.id}")
        self.students[student.id] = student
        return student

    async def delete_student(self, student_id: str) -> None:
        await self._enter("delete_student")
        if self.students.pop(student_id, None) is None:
            raise NotFoundError(f"No student found with id {student_id}")
        # Deleting a student removes their health records too
        for record_id in [rid for rid, r in self.records.items() if r.student_id == student_id]:
            del self.records[record_id]
        self.logger.info("student_deleted", student_id=student_id)

    async def add_health_record(self, record: HealthRecord) -> HealthRecord:
        await self._enter("add_health_record")
        self.records[record.id] = record
        return record

    async def delete_health_record(self, record_id: str) -> None:
        await self._enter("delete_health_record")
        if self.records.pop(record_id, None) is None:
            raise NotFoundError(f"No health record found with id {record_id}")

    async def query_nutrition_logs(
        self, student_id: str, *, limit: int, ordered: bool = True
    ) -> list[NutritionLog]:
        await self._enter("query_nutrition_logs", ordered=ordered)
        logs = [log for log in self.nutrition_logs.values() if log.student_id == student_id]
        if ordered:
            logs.sort(key=lambda log: log.date, reverse=True)
        return logs[:limit]

    async def query_exercise_logs(
        self, student_id: str, *, limit: int, ordered: bool = True
    ) -> list[ExerciseLog]:
        await self._enter("query_exercise_logs", ordered=ordered)
        logs = [log for log in self.exercise_logs.values() if log.student_id == student_id]
        if ordered:
            logs.sort(key=lambda log: log.date, reverse=True)
        return logs[:limit]

    async def add_nutrition_log(self, log: NutritionLog) -> NutritionLog:
        await self._enter("add_nutrition_log")
        self.nutrition_logs[log.id] = log
        return log

    async def add_exercise_log(self, log: ExerciseLog) -> ExerciseLog:
        await self._enter("add_exercise_log")
        self.exercise_logs[log.id] = log
        return log
