from .engine import EngineObservabilityStore, get_engine_store
from .scheduler import SchedulerObservabilityStore, get_scheduler_store

__all__ = [
    "EngineObservabilityStore",
    "SchedulerObservabilityStore",
    "get_engine_store",
    "get_scheduler_store",
]
