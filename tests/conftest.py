import asyncio
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest

from recurring_scheduler.domain.definition import RecurrenceDefinition
from recurring_scheduler.domain.occurrence import OccurrenceEvent


# Sunday 2026-10-18 12:00 UTC
NOW = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)


class FixedClock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class MemoryScheduleStore:
    """
    Dict backed ScheduleStore used by unit tests.
    """

    def __init__(self, definitions: Optional[List[RecurrenceDefinition]] = None):
        self.definitions: Dict[str, RecurrenceDefinition] = {d.id: d for d in definitions or []}
        self.persist_calls = 0

    async def load_active_definitions(self) -> List[RecurrenceDefinition]:
        return [d.model_copy() for d in self.definitions.values() if d.is_active and not d.is_deleted]

    async def get_definition(self, definition_id: str) -> Optional[RecurrenceDefinition]:
        definition = self.definitions.get(definition_id)
        return definition.model_copy() if definition else None

    async def persist_occurrence_state(self, definition: RecurrenceDefinition) -> bool:
        self.persist_calls += 1
        stored = self.definitions.get(definition.id)
        if stored is None:
            return False
        self.definitions[definition.id] = stored.model_copy(update={
            "last_occurrence": definition.last_occurrence,
            "next_occurrence": definition.next_occurrence,
        })
        return True


class BrokenScheduleStore(MemoryScheduleStore):
    async def persist_occurrence_state(self, definition: RecurrenceDefinition) -> bool:
        raise ConnectionError("database is gone")


class RecordingMaterializer:
    def __init__(self, fail_for: Optional[set] = None, failures: int = 0, fail_at: Optional[int] = None):
        self.calls: List[Tuple[Dict[str, Any], datetime]] = []
        self.fail_for = fail_for or set()
        self.failures = failures
        # 1-based attempt number that raises once
        self.fail_at = fail_at
        self.attempts = 0

    async def materialize(self, owner_context: Dict[str, Any], occurrence_time: datetime) -> Dict[str, Any]:
        self.attempts += 1
        if self.attempts == self.fail_at:
            raise RuntimeError("record service unavailable")
        if owner_context.get("client") in self.fail_for:
            raise RuntimeError(f"client {owner_context['client']} rejected the record")
        if self.failures > 0:
            self.failures -= 1
            raise RuntimeError("temporary outage")
        self.calls.append((owner_context, occurrence_time))
        return {"id": f"prj_{len(self.calls)}", "startDate": occurrence_time.isoformat()}


class RecordingAuditSink:
    def __init__(self, broken: bool = False):
        self.events: List[OccurrenceEvent] = []
        self.broken = broken

    async def record(self, event: OccurrenceEvent) -> None:
        if self.broken:
            raise RuntimeError("activity log unavailable")
        self.events.append(event)


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition was not met in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def materializer() -> RecordingMaterializer:
    return RecordingMaterializer()


@pytest.fixture
def audit_sink() -> RecordingAuditSink:
    return RecordingAuditSink()
