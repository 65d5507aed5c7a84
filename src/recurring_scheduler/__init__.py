"""
Recurring Job Scheduling

This module schedules recurring business jobs (for example "create a project for
this client every month") and recovers them after a restart.

Core Concepts:

RecurrenceDefinition:
    A persisted description of a recurring job: an anchor time, a frequency
    (weekly, monthly or yearly) and an opaque owner context. Its occurrences lie
    on a fixed grid derived from the anchor.

Occurrence:
    A single due firing of a definition. Running an occurrence asks a
    materializer to produce the business record, then advances the definition
    to its next slot.

Catch-up:
    At start-up every occurrence that became due while the process was down is
    executed, one slot at a time, before live timers are installed.

Relationships:
    - A RecurrenceDefinition has one live timer while it is active and not deleted.
    - A RecurrenceDefinition produces many Occurrences over its lifetime.
"""

from .domain import RecurrenceDefinition, Frequency, Occurrence, OccurrenceStatus, OccurrenceEvent
from .errors import (
    RecurringSchedulerError,
    InvalidFrequencyError,
    MaterializationError,
    PersistenceError,
    CatchUpStalledError,
    DefinitionNotFoundError,
)
from .recurrence import next_after, occurrences_between, add_periods
from .timers import TimerRegistry
from .executor import OccurrenceExecutor
from .catch_up import CatchUpRunner, CatchUpReport
from .scheduler import RecurringScheduler
from .config import SchedulerSettings

__all__ = [
    "RecurrenceDefinition",
    "Frequency",
    "Occurrence",
    "OccurrenceStatus",
    "OccurrenceEvent",
    "RecurringSchedulerError",
    "InvalidFrequencyError",
    "MaterializationError",
    "PersistenceError",
    "CatchUpStalledError",
    "DefinitionNotFoundError",
    "next_after",
    "occurrences_between",
    "add_periods",
    "TimerRegistry",
    "OccurrenceExecutor",
    "CatchUpRunner",
    "CatchUpReport",
    "RecurringScheduler",
    "SchedulerSettings",
]
