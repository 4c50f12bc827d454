"""
Services for the health metrics core.

Pure calculators (BMI, trends, percentiles, aggregation) sit next to the
stateful pieces that serve them to screens: the TTL cache, the sync event bus,
the batched record fetcher and the HealthService that ties them together.
"""

from .cache import STALE, CacheKind, CacheLayer
from .health_service import HealthService
from .memory_store import InMemoryHealthStore
from .record_fetcher import (
    GradeRecordFetcher,
    HealthStore,
    RecordFetcherConfig,
    Result,
    configure_logging,
)
from .sync_bus import SYNC_DATA, Subscription, SyncEvent, SyncEventBus

__all__ = [
    "CacheKind",
    "CacheLayer",
    "STALE",
    "HealthService",
    "HealthStore",
    "InMemoryHealthStore",
    "GradeRecordFetcher",
    "RecordFetcherConfig",
    "Result",
    "configure_logging",
    "SYNC_DATA",
    "Subscription",
    "SyncEvent",
    "SyncEventBus",
]
