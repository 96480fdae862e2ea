"""Scheduling utilities for recurring sweeps."""

from .config import JobDefinition, load_job_definitions
from .runner import SweepScheduler

__all__ = ["JobDefinition", "SweepScheduler", "load_job_definitions"]
