"""
Tests for the screen-facing HealthService.

Covers:
- Cached reads per screen and key kind
- Exactly one SYNC_DATA per successful mutation, none on failure
- Total cache invalidation on SYNC_DATA with lazy recomputation
- NoDataError and store error propagation
"""

import asyncio
from datetime import UTC, date, datetime, timedelta
from unittest.mock import MagicMock

import pytest
from pydantic import ValidationError

from school_health.config import AppConfig
from school_health.domain.models import BmiStatus, Grade, HealthRecord, Student
from school_health.errors import NoDataError, NotFoundError, PermissionDeniedError
from school_health.services.cache import CacheKind, CacheLayer
from school_health.services.health_service import HealthService
from school_health.services.memory_store import InMemoryHealthStore
from school_health.services.sync_bus import SYNC_DATA, SyncEvent, SyncEventBus

NOW = datetime(2025, 6, 15, 12, 0, tzinfo=UTC)


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def store() -> InMemoryHealthStore:
    store = InMemoryHealthStore()
    for student_id, last_name, section, weights in [
        ("s1", "Santos", "Rizal", [20, 22, 24]),
        ("s2", "Reyes", "Rizal", [22]),
        ("s3", "Cruz", "Mabini", [30, 28]),
    ]:
        store.students[student_id] = Student(
            id=student_id,
            first_name="Test",
            last_name=last_name,
            grade=Grade.GRADE_3,
            section=section,
            birth_date=date(2016, 1, 1),
        )
        for i, weight in enumerate(weights):
            record_id = f"{student_id}-{i}"
            # A 100 cm height makes BMI equal to the weight
            store.records[record_id] = HealthRecord(
                id=record_id,
                student_id=student_id,
                height=100,
                weight=weight,
                date=NOW - timedelta(days=30 * (len(weights) - 1 - i)),
            )
    return store


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def bus() -> SyncEventBus:
    return SyncEventBus()


@pytest.fixture
def service(store: InMemoryHealthStore, bus: SyncEventBus, clock: FakeClock) -> HealthService:
    return HealthService(
        store, bus, config=AppConfig(), cache=CacheLayer(clock=clock), now=lambda: NOW
    )


@pytest.fixture
def sync_events(service: HealthService) -> list[SyncEvent]:
    events: list[SyncEvent] = []
    service.on_data_changed(events.append)
    return events


class TestStudentMetrics:
    async def test_latest_measurement_and_trend(self, service: HealthService) -> None:
        metrics = await service.get_student_metrics("s1")

        assert metrics.latest_record is not None
        assert metrics.latest_record.id == "s1-2"
        assert metrics.bmi == 24.0
        assert metrics.status is BmiStatus.NORMAL
        assert metrics.percentile == "100.00"
        assert metrics.bmi_trend is not None
        assert metrics.bmi_trend.direction == "up"
        assert metrics.bmi_trend.change == 4.0

    async def test_percentile_is_relative_to_own_history(self, service: HealthService) -> None:
        metrics = await service.get_student_metrics("s3")

        # Latest 28 against own history [30, 28]
        assert metrics.percentile == "50.00"
        assert metrics.status is BmiStatus.OVERWEIGHT

    async def test_student_without_records(self, service: HealthService) -> None:
        metrics = await service.get_student_metrics("nobody")

        assert metrics.latest_record is None
        assert metrics.status is BmiStatus.INVALID
        assert metrics.percentile == "0.00"


class TestCaching:
    async def test_dashboard_served_from_cache_within_ttl(
        self, service: HealthService, store: InMemoryHealthStore, clock: FakeClock
    ) -> None:
        first = await service.get_class_dashboard("3")
        clock.now = 59
        second = await service.get_class_dashboard("3")

        assert first is second
        assert store.calls["query_students_by_grade"] == 1

        clock.now = 60
        await service.get_class_dashboard("3")
        assert store.calls["query_students_by_grade"] == 2

    async def test_dashboard_and_report_cached_separately(self, service: HealthService) -> None:
        dashboard = await service.get_class_dashboard("3")
        report = await service.get_class_report("3")

        assert dashboard.grade == "3"
        assert report.grade == "3"
        assert (CacheKind.GRADE, ("dashboard", "3")) in service.cache
        assert (CacheKind.GRADE, ("report", "3")) in service.cache

    async def test_sync_event_forces_recompute_within_ttl(
        self, service: HealthService, store: InMemoryHealthStore, bus: SyncEventBus
    ) -> None:
        await service.get_student_metrics("s1")
        await service.get_class_dashboard("3")

        bus.publish(SYNC_DATA, {"fromSyncContext": True})

        assert len(service.cache) == 0
        await service.get_student_metrics("s1")
        assert store.calls["query_records_by_student"] == 2 + len(store.students)

    async def test_sync_during_recompute_is_not_cached(
        self, store: InMemoryHealthStore, bus: SyncEventBus, clock: FakeClock
    ) -> None:
        started = asyncio.Event()
        release = asyncio.Event()
        query_records = store.query_records_by_student

        async def gated_query(student_id: str, *, ordered: bool = True) -> list[HealthRecord]:
            started.set()
            await release.wait()
            return await query_records(student_id, ordered=ordered)

        store.query_records_by_student = gated_query  # type: ignore[method-assign]
        service = HealthService(
            store, bus, config=AppConfig(), cache=CacheLayer(clock=clock), now=lambda: NOW
        )

        pending = asyncio.create_task(service.get_student_report("s1"))
        await started.wait()
        store.students["s1"] = store.students["s1"].model_copy(update={"first_name": "Renamed"})
        bus.publish(SYNC_DATA)
        release.set()
        in_flight = await pending

        assert in_flight.student is not None
        assert in_flight.student.first_name == "Test"
        assert (CacheKind.STUDENT, ("report", "s1")) not in service.cache

        fresh = await service.get_student_report("s1")
        assert fresh.student is not None
        assert fresh.student.first_name == "Renamed"

    async def test_close_stops_invalidation(
        self, service: HealthService, bus: SyncEventBus
    ) -> None:
        await service.get_student_metrics("s1")

        service.close()
        bus.publish(SYNC_DATA)

        assert len(service.cache) == 1
        assert bus.subscriber_count(SYNC_DATA) == 0


class TestDashboard:
    async def test_grade_dashboard(self, service: HealthService) -> None:
        dashboard = await service.get_class_dashboard("3")

        assert dashboard.monthly_series.months[-1] == "Jun"
        # June holds the latest record of each student: 24, 22 and 28
        assert dashboard.monthly_series.bmi[-1] == 24.7
        assert dashboard.record_count == 6
        assert [s.name for s in dashboard.sections] == ["Mabini", "Rizal"]

    async def test_empty_grade_dashboard(self, service: HealthService) -> None:
        dashboard = await service.get_class_dashboard("6")

        assert dashboard.monthly_series.months[0] == "Month 1"
        assert dashboard.record_count == 0

    async def test_permission_denied_propagates(
        self, service: HealthService, store: InMemoryHealthStore
    ) -> None:
        store.permission_denied = True

        with pytest.raises(PermissionDeniedError):
            await service.get_class_dashboard("3")


class TestReports:
    async def test_class_report_uses_latest_records(self, service: HealthService) -> None:
        report = await service.get_class_report("3")

        assert report.student_count == 3
        assert report.class_averages.average_bmi == 24.67
        assert [r.student.last_name for r in report.students if r.student] == [
            "Cruz",
            "Reyes",
            "Santos",
        ]

    async def test_class_report_for_empty_grade(self, service: HealthService) -> None:
        with pytest.raises(NoDataError, match="No students found in grade 5"):
            await service.get_class_report("5")

    async def test_class_report_without_valid_records(
        self, service: HealthService, store: InMemoryHealthStore
    ) -> None:
        store.students["s9"] = Student(
            id="s9", first_name="New", last_name="Student", grade=Grade.GRADE_4
        )

        with pytest.raises(NoDataError, match="No valid health records"):
            await service.get_class_report("4")

    async def test_student_report(self, service: HealthService) -> None:
        report = await service.get_student_report("s3")

        assert report.student is not None
        assert report.student.id == "s3"
        assert [r.id for r in report.records] == ["s3-0", "s3-1"]
        assert report.trends.bmi_change == -2.0

    async def test_student_report_for_unknown_student(self, service: HealthService) -> None:
        with pytest.raises(NotFoundError):
            await service.get_student_report("nobody")


class TestMutations:
    """Every successful mutation publishes exactly one SYNC_DATA."""

    async def test_add_health_record(
        self,
        service: HealthService,
        store: InMemoryHealthStore,
        sync_events: list[SyncEvent],
    ) -> None:
        before = await service.get_student_metrics("s2")

        record = await service.add_health_record(
            "s2", 130, 30, notes="Term check-up", date=NOW + timedelta(days=1)
        )

        assert len(sync_events) == 1
        assert sync_events[0].payload["action"] == "health_record_added"
        assert store.records[record.id].notes == "Term check-up"
        after = await service.get_student_metrics("s2")
        assert after.latest_record is not None
        assert after.latest_record.id == record.id
        assert after is not before

    async def test_invalid_measurement_is_rejected(
        self,
        service: HealthService,
        store: InMemoryHealthStore,
        sync_events: list[SyncEvent],
    ) -> None:
        record_count = len(store.records)

        with pytest.raises(ValidationError):
            await service.add_health_record("s2", 0, 30)

        assert sync_events == []
        assert len(store.records) == record_count

    async def test_unknown_student_is_not_published(
        self, service: HealthService, sync_events: list[SyncEvent]
    ) -> None:
        with pytest.raises(NotFoundError):
            await service.add_health_record("nobody", 130, 30)

        assert sync_events == []

    async def test_implausible_measurement_is_logged_and_kept(
        self, service: HealthService, store: InMemoryHealthStore
    ) -> None:
        service.logger = MagicMock()

        record = await service.add_health_record("s1", 300, 30)

        assert record.id in store.records
        warning_events = [c.args[0] for c in service.logger.warning.call_args_list]
        assert warning_events == ["implausible_measurement"]
        assert service.logger.warning.call_args.kwargs["warning"].startswith("Height")

    async def test_add_student_with_initial_record(
        self,
        service: HealthService,
        store: InMemoryHealthStore,
        sync_events: list[SyncEvent],
    ) -> None:
        student = Student(id="s4", first_name="Ana", last_name="Lopez", grade=Grade.GRADE_3)

        await service.add_student(student, height=125, weight=25)

        assert len(sync_events) == 1
        records = [r for r in store.records.values() if r.student_id == "s4"]
        assert len(records) == 1
        assert records[0].bmi == 16.0

    async def test_add_student_without_measurements(
        self,
        service: HealthService,
        store: InMemoryHealthStore,
        sync_events: list[SyncEvent],
    ) -> None:
        student = Student(id="s5", first_name="Ben", last_name="Tan", grade=Grade.GRADE_3)

        await service.add_student(student, height=125)

        assert len(sync_events) == 1
        assert all(r.student_id != "s5" for r in store.records.values())

    @pytest.mark.parametrize("height,weight", [(-150, 40), (0, 40), (130, 0)])
    async def test_add_student_with_invalid_measurement_writes_nothing(
        self,
        service: HealthService,
        store: InMemoryHealthStore,
        sync_events: list[SyncEvent],
        height: float,
        weight: float,
    ) -> None:
        student = Student(id="s6", first_name="Lia", last_name="Diaz", grade=Grade.GRADE_3)
        record_count = len(store.records)

        with pytest.raises(ValidationError):
            await service.add_student(student, height=height, weight=weight)

        assert "s6" not in store.students
        assert len(store.records) == record_count
        assert sync_events == []

    async def test_update_and_delete_student(
        self,
        service: HealthService,
        store: InMemoryHealthStore,
        sync_events: list[SyncEvent],
    ) -> None:
        updated = store.students["s2"].model_copy(update={"section": "Mabini"})

        await service.update_student(updated)
        await service.delete_student("s3")

        assert [e.payload["action"] for e in sync_events] == ["student_updated", "student_deleted"]
        assert store.students["s2"].section == "Mabini"
        assert all(r.student_id != "s3" for r in store.records.values())

    async def test_delete_health_record(
        self,
        service: HealthService,
        store: InMemoryHealthStore,
        sync_events: list[SyncEvent],
    ) -> None:
        await service.delete_health_record("s1-0")

        assert "s1-0" not in store.records
        assert len(sync_events) == 1

    async def test_failed_delete_is_not_published(
        self, service: HealthService, sync_events: list[SyncEvent]
    ) -> None:
        with pytest.raises(NotFoundError):
            await service.delete_health_record("missing")

        assert sync_events == []


class TestActivity:
    async def test_activity_summary(
        self, service: HealthService, sync_events: list[SyncEvent]
    ) -> None:
        await service.log_nutrition("s1", calories=2000, protein=50)
        await service.log_exercise("s1", minutes=30, calories_burned=150)

        summary = await service.get_activity_summary("s1")

        assert len(sync_events) == 2
        assert summary.average_calories == 2000
        assert summary.average_exercise_minutes == 30
        assert summary.goal_progress == 100
        assert summary.exercise_logs[0].activity_type == "Not specified"

    async def test_empty_activity(self, service: HealthService) -> None:
        summary = await service.get_activity_summary("s2")

        assert summary.average_calories == 0
        assert summary.goal_progress == 0
