"""Nutrition and exercise summaries for the student dashboard."""

from collections.abc import Sequence

from school_health.domain.models import ActivitySummary, ExerciseLog, NutritionLog
from school_health.services.metrics_calculator import round_half_up


def average_calories(logs: Sequence[NutritionLog]) -> int:
    if not logs:
        return 0
    return int(round_half_up(sum(log.calories for log in logs) / len(logs)))


def average_exercise_minutes(logs: Sequence[ExerciseLog]) -> int:
    if not logs:
        return 0
    return int(round_half_up(sum(log.minutes for log in logs) / len(logs)))


def goal_progress(
    avg_calories: float, avg_minutes: float, calorie_goal: float, minutes_goal: float
) -> int:
    """
    Combined progress toward the daily calorie and exercise goals, 0-100.

    Calorie progress drops with distance from the goal in either direction;
    exercise progress grows with minutes and caps at 100.
    """
    calorie_gap = abs((avg_calories - calorie_goal) / calorie_goal * 100)
    calorie_progress = min(100.0, max(0.0, 100 - calorie_gap))
    exercise_progress = min(100.0, avg_minutes / minutes_goal * 100)
    return int(round_half_up((calorie_progress + exercise_progress) / 2))


def summarize_activity(
    student_id: str,
    nutrition_logs: Sequence[NutritionLog],
    exercise_logs: Sequence[ExerciseLog],
    *,
    calorie_goal: float = 2000,
    minutes_goal: float = 30,
) -> ActivitySummary:
    # Charts read oldest to newest
    nutrition = sorted(nutrition_logs, key=lambda log: log.date)
    exercise = sorted(exercise_logs, key=lambda log: log.date)

    avg_calories = average_calories(nutrition)
    avg_minutes = average_exercise_minutes(exercise)
    return ActivitySummary(
        student_id=student_id,
        nutrition_logs=nutrition,
        exercise_logs=exercise,
        average_calories=avg_calories,
        average_exercise_minutes=avg_minutes,
        goal_progress=goal_progress(avg_calories, avg_minutes, calorie_goal, minutes_goal),
    )
