"""
Configuration management with environment variable support and validation.

Design principles:
- Freshness policy, batching and goals declared once, not per screen
- Validation at startup (fail fast)
- Type safety with Pydantic
"""

import os
from functools import lru_cache
from typing import Literal, cast

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

# Load environment variables from .env file
load_dotenv()


class CacheConfig(BaseModel):
    """Cache freshness per key kind."""

    grade_ttl_seconds: float = Field(
        default=60.0, gt=0.0, description="TTL for grade dashboards and class reports"
    )
    student_ttl_seconds: float = Field(
        default=300.0, gt=0.0, description="TTL for a single student's history views"
    )


class SyncConfig(BaseModel):
    max_subscribers: int = Field(
        default=20, gt=0, description="Soft cap per event name; exceeding it only warns"
    )


class FetchConfig(BaseModel):
    """Store access tuning."""

    batch_size: int = Field(default=10, gt=0, description="Students fetched in parallel")
    nutrition_log_limit: int = Field(default=7, gt=0, description="Nutrition logs per summary")
    exercise_log_limit: int = Field(default=7, gt=0, description="Exercise logs per summary")


class ActivityGoalsConfig(BaseModel):
    daily_calorie_goal: float = Field(default=2000.0, gt=0.0)
    daily_exercise_minutes_goal: float = Field(default=30.0, gt=0.0)


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    format: Literal["json", "console"] = Field(default="json", description="Logging format")


class AppConfig(BaseModel):
    """Main application configuration combining all subsystems."""

    environment: Literal["development", "staging", "production"] = Field(
        default="development", description="Environment"
    )
    debug: bool = Field(default=False, description="Enable debug mode")

    cache: CacheConfig = Field(default_factory=CacheConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    fetch: FetchConfig = Field(default_factory=FetchConfig)
    goals: ActivityGoalsConfig = Field(default_factory=ActivityGoalsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="after")
    def debug_only_in_dev(self) -> "AppConfig":
        """Ensure debug mode is only allowed in development environment."""
        if self.debug and self.environment != "development":
            raise ValueError("debug mode is only allowed in development environment")
        return self


def _env_to_literal(val: str) -> Literal["development", "staging", "production"]:
    v = val.strip().lower()
    if v in {"dev", "development"}:
        return "development"
    if v in {"stage", "staging"}:
        return "staging"
    return "production"


def _level_to_literal(val: str) -> Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
    v = val.strip().upper()
    return cast(
        Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        v if v in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"} else "INFO",
    )


def load_config_from_env() -> AppConfig:
    """Load configuration from environment variables with validation."""
    environment = _env_to_literal(os.getenv("ENVIRONMENT", "development"))
    debug = environment == "development"

    cache_config = CacheConfig(
        grade_ttl_seconds=float(os.getenv("GRADE_CACHE_TTL_SECONDS", "60")),
        student_ttl_seconds=float(os.getenv("STUDENT_CACHE_TTL_SECONDS", "300")),
    )

    sync_config = SyncConfig(max_subscribers=int(os.getenv("SYNC_MAX_SUBSCRIBERS", "20")))

    fetch_config = FetchConfig(
        batch_size=int(os.getenv("FETCH_BATCH_SIZE", "10")),
        nutrition_log_limit=int(os.getenv("NUTRITION_LOG_LIMIT", "7")),
        exercise_log_limit=int(os.getenv("EXERCISE_LOG_LIMIT", "7")),
    )

    goals_config = ActivityGoalsConfig(
        daily_calorie_goal=float(os.getenv("DAILY_CALORIE_GOAL", "2000")),
        daily_exercise_minutes_goal=float(os.getenv("DAILY_EXERCISE_MINUTES_GOAL", "30")),
    )

    logging_config = LoggingConfig(
        level=_level_to_literal(os.getenv("LOG_LEVEL", "INFO")),
        format="console" if debug else "json",
    )

    return AppConfig(
        environment=environment,
        debug=debug,
        cache=cache_config,
        sync=sync_config,
        fetch=fetch_config,
        goals=goals_config,
        logging=logging_config,
    )


@lru_cache
def get_config() -> AppConfig:
    """Get cached application configuration."""
    return load_config_from_env()


def validate_config() -> None:
    """Validate configuration at startup."""
    try:
        config = get_config()
        print(f"✅ Configuration loaded for {config.environment} environment")
    except Exception as e:
        print(f"❌ Configuration validation failed: {e}")
        raise


def print_config_summary() -> None:
    """Print configuration summary for debugging."""
    config = get_config()

    print("\n🔧 CONFIGURATION SUMMARY")
    print(f"Environment: {config.environment}")
    print(f"Debug Mode: {config.debug}")
    print(f"Log Level: {config.logging.level}")

    print("\n🗄️ CACHE")
    print(f"Grade TTL: {config.cache.grade_ttl_seconds}s")
    print(f"Student TTL: {config.cache.student_ttl_seconds}s")

    print("\n📡 STORE ACCESS")
    print(f"Batch Size: {config.fetch.batch_size}")
    print(f"Sync Subscriber Cap: {config.sync.max_subscribers}")

    print("\n🎯 DAILY GOALS")
    print(f"Calories: {config.goals.daily_calorie_goal:.0f}")
    print(f"Exercise: {config.goals.daily_exercise_minutes_goal:.0f} min")


if __name__ == "__main__":
    validate_config()
    print_config_summary()
