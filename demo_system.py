"""
End-to-end demo of the health metrics core against an in-memory store.

This script walks through:
1. Configuration loading and validation
2. Grade dashboard with monthly series and nutrition categories
3. Class report from each student's latest record
4. Student tracking metrics and activity summary
5. Cache invalidation after a new measurement
6. Degradation when a store index is missing or a student fetch fails

Run with: uv run python demo_system.py
"""

import asyncio
from datetime import UTC, date, datetime, timedelta

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from school_health.config import get_config, print_config_summary, validate_config
from school_health.domain.models import Grade, HealthRecord, Student
from school_health.errors import NoDataError
from school_health.services import (
    HealthService,
    InMemoryHealthStore,
    SyncEventBus,
    configure_logging,
)
from school_health.services.metrics_calculator import display_value

console = Console()

DEMO_STUDENTS = [
    (
        "s1",
        "Maria",
        "Santos",
        "Sampaguita",
        "female",
        date(2015, 3, 14),
        [(128.0, 26.0), (131.5, 27.2), (134.0, 28.9)],
    ),
    ("s2", "Jose", "Reyes", "Sampaguita", "male", date(2015, 8, 2), [(130.0, 38.0), (132.0, 40.5)]),
    ("s3", "Ana", "Cruz", "Narra", "female", date(2014, 11, 20), [(135.0, 24.0)]),
    ("s4", "Paolo", "Garcia", "Narra", "male", date(2015, 1, 9), [(127.0, 29.5), (128.5, 30.1)]),
]


def seed_store(store: InMemoryHealthStore, now: datetime) -> None:
    """Fill the store with one grade 4 class measured over the last few months."""
    for student_id, first, last, section, gender, birth_date, measurements in DEMO_STUDENTS:
        store.students[student_id] = Student(
            id=student_id,
            first_name=first,
            last_name=last,
            grade=Grade.GRADE_4,
            section=section,
            gender=gender,
            birth_date=birth_date,
        )
        for i, (height, weight) in enumerate(measurements):
            months_ago = len(measurements) - 1 - i
            record_id = f"{student_id}-r{i}"
            store.records[record_id] = HealthRecord(
                id=record_id,
                student_id=student_id,
                height=height,
                weight=weight,
                date=now - timedelta(days=30 * months_ago + 2),
            )


async def demo_configuration() -> bool:
    console.print(Panel("🔧 Configuration", style="blue"))
    try:
        validate_config()
        print_config_summary()
        return True
    except Exception as e:
        console.print(f"❌ Configuration failed: {e}", style="red")
        return False


async def demo_dashboard(service: HealthService) -> bool:
    console.print(Panel("📊 Grade 4 Dashboard", style="blue"))

    dashboard = await service.get_class_dashboard(Grade.GRADE_4.value)

    table = Table(title="Monthly Averages")
    table.add_column("Month", style="cyan")
    table.add_column("Height (cm)", style="white")
    table.add_column("Weight (kg)", style="white")
    table.add_column("BMI", style="magenta")
    series = dashboard.monthly_series
    for month, height, weight, bmi in zip(
        series.months, series.height, series.weight, series.bmi, strict=True
    ):
        table.add_row(month, f"{height:.1f}", f"{weight:.1f}", f"{bmi:.1f}")
    console.print(table)

    averages = dashboard.overall_averages
    categories = dashboard.nutrition_categories
    console.print(
        f"Overall: height {averages.average_height} cm, weight {averages.average_weight} kg, "
        f"BMI {averages.average_bmi}"
    )
    console.print(
        f"Nutrition: {categories.normal_percent}% normal, "
        f"{categories.underweight_percent}% underweight, "
        f"{categories.overweight_percent}% overweight"
    )
    for section in dashboard.sections:
        console.print(f"  Section {section.name}: {section.count} records", style="dim")
    return True


async def demo_class_report(service: HealthService) -> bool:
    console.print(Panel("📋 Class Report", style="blue"))

    report = await service.get_class_report(Grade.GRADE_4.value)
    averages = report.class_averages

    table = Table(title=f"Grade {report.grade} ({report.student_count} students)")
    table.add_column("Student", style="cyan")
    table.add_column("Records", style="white")
    table.add_column("Height Δ", style="white")
    table.add_column("Weight Δ", style="white")
    table.add_column("BMI Δ", style="magenta")
    for student_report in report.students:
        trends = student_report.trends
        name = student_report.student.full_name if student_report.student else "Unknown"
        table.add_row(
            name,
            str(len(student_report.records)),
            f"{trends.height_change:+.2f}",
            f"{trends.weight_change:+.2f}",
            f"{trends.bmi_change:+.2f}",
        )
    console.print(table)
    console.print(
        f"Class averages: height {averages.average_height}, weight {averages.average_weight}, "
        f"BMI {averages.average_bmi}"
    )

    try:
        await service.get_class_report(Grade.GRADE_6.value)
    except NoDataError as e:
        console.print(f"Grade 6: {e}", style="yellow")
    return True


async def demo_student_tracking(service: HealthService) -> bool:
    console.print(Panel("🧒 Student Tracking", style="blue"))

    await service.log_nutrition("s1", calories=1850, protein=60, carbs=230, fat=55)
    await service.log_exercise("s1", minutes=40, calories_burned=180, activity_type="Football")

    metrics = await service.get_student_metrics("s1")
    activity = await service.get_activity_summary("s1")

    table = Table(title="Maria Santos")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="white")
    table.add_row("BMI", display_value(metrics.bmi))
    table.add_row("Status", metrics.status.value)
    table.add_row("Percentile", metrics.percentile)
    if metrics.bmi_trend:
        trend = metrics.bmi_trend
        table.add_row("BMI trend", f"{trend.direction} ({trend.change:+.2f})")
    table.add_row("Avg calories", str(activity.average_calories))
    table.add_row("Avg exercise (min)", str(activity.average_exercise_minutes))
    table.add_row("Goal progress", f"{activity.goal_progress}%")
    console.print(table)
    return True


async def demo_sync_invalidation(service: HealthService) -> bool:
    console.print(Panel("🔄 Sync Invalidation", style="blue"))

    before = await service.get_student_metrics("s3")
    console.print(
        f"Ana before: BMI {display_value(before.bmi)}, {len(service.cache)} cached payloads"
    )

    await service.add_health_record("s3", height=137.0, weight=26.5, notes="Term check-up")
    console.print(f"After SYNC_DATA: {len(service.cache)} cached payloads", style="yellow")

    after = await service.get_student_metrics("s3")
    console.print(f"Ana after: BMI {display_value(after.bmi)}, percentile {after.percentile}")
    return after.latest_record is not None and after.latest_record.height == 137.0


async def demo_degradation(now: datetime) -> bool:
    console.print(Panel("🛡️ Degradation", style="blue"))

    store = InMemoryHealthStore(
        missing_indexes={"query_students_by_grade", "query_records_by_student"},
        failing_students={"s2"},
    )
    seed_store(store, now)
    service = HealthService(store, SyncEventBus())
    try:
        dashboard = await service.get_class_dashboard(Grade.GRADE_4.value)
    finally:
        service.close()

    console.print(
        f"Dashboard built from {dashboard.record_count} records "
        f"using {store.calls['query_all_students']} fallback student queries",
        style="green",
    )
    return dashboard.record_count > 0


async def run_demo() -> None:
    console.print(Panel("🏫 School Health Metrics - Demo", style="bold blue"))

    config = get_config()
    configure_logging(level=config.logging.level, fmt="console")

    now = datetime.now(UTC)
    store = InMemoryHealthStore()
    seed_store(store, now)
    bus = SyncEventBus(max_subscribers=config.sync.max_subscribers)
    service = HealthService(store, bus, config=config)

    steps = [
        ("Configuration", demo_configuration),
        ("Dashboard", lambda: demo_dashboard(service)),
        ("Class Report", lambda: demo_class_report(service)),
        ("Student Tracking", lambda: demo_student_tracking(service)),
        ("Sync Invalidation", lambda: demo_sync_invalidation(service)),
        ("Degradation", lambda: demo_degradation(now)),
    ]

    results = []
    for step_name, step in steps:
        console.print(f"\n{'=' * 60}")
        try:
            results.append((step_name, await step()))
        except KeyboardInterrupt:
            console.print("\n⏹️  Demo interrupted by user", style="yellow")
            break
        except Exception as e:
            console.print(f"❌ {step_name} failed with exception: {e}", style="red")
            results.append((step_name, False))

    service.close()

    console.print(f"\n{'=' * 60}")
    summary_table = Table(title="Demo Summary")
    summary_table.add_column("Step", style="cyan")
    summary_table.add_column("Result", style="white")
    for step_name, ok in results:
        summary_table.add_row(step_name, "✅ OK" if ok else "❌ FAILED")
    console.print(summary_table)


if __name__ == "__main__":
    try:
        asyncio.run(run_demo())
    except KeyboardInterrupt:
        console.print("\n👋 Demo stopped by user", style="yellow")
