from datetime import datetime, timedelta, timezone

import pytest

from recurring_scheduler.domain.definition import RecurrenceDefinition, Frequency
from recurring_scheduler.domain.occurrence import OccurrenceEventType, OccurrenceStatus
from recurring_scheduler.errors import MaterializationError, PersistenceError
from recurring_scheduler.executor import OccurrenceExecutor
from conftest import (
    NOW,
    BrokenScheduleStore,
    FixedClock,
    MemoryScheduleStore,
    RecordingAuditSink,
    RecordingMaterializer,
)

MONDAY_9AM = datetime(2026, 9, 7, 9, 0, tzinfo=timezone.utc)


@pytest.fixture(scope="function")
def definition() -> RecurrenceDefinition:
    return RecurrenceDefinition(
        id="rec_weekly",
        name="Weekly client report",
        anchor_time=MONDAY_9AM,
        frequency=Frequency.WEEKLY,
        last_occurrence=datetime(2026, 10, 5, 9, 0, tzinfo=timezone.utc),
        next_occurrence=datetime(2026, 10, 12, 9, 0, tzinfo=timezone.utc),
        owner_context={"client": "cli_1", "section": "sec_1"},
    )


@pytest.fixture(scope="function")
def store(definition: RecurrenceDefinition) -> MemoryScheduleStore:
    return MemoryScheduleStore([definition])


@pytest.fixture(scope="function")
def executor(store, materializer, audit_sink, clock) -> OccurrenceExecutor:
    return OccurrenceExecutor(store, materializer, audit_sink, clock)


@pytest.mark.asyncio
async def test_due_definition_is_materialized_and_advanced(executor, definition, store, materializer, audit_sink) -> None:
    updated = await executor.run(definition)

    assert materializer.calls == [({"client": "cli_1", "section": "sec_1"}, datetime(2026, 10, 12, 9, 0, tzinfo=timezone.utc))]
    assert updated.last_occurrence == datetime(2026, 10, 12, 9, 0, tzinfo=timezone.utc)
    assert updated.next_occurrence == datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)

    stored = store.definitions["rec_weekly"]
    assert stored.last_occurrence == updated.last_occurrence
    assert stored.next_occurrence == updated.next_occurrence

    assert len(audit_sink.events) == 1
    event = audit_sink.events[0]
    assert event.type == OccurrenceEventType.EXECUTED
    assert event.occurrence.status == OccurrenceStatus.COMPLETED
    assert event.occurrence.record_id == "prj_1"
    assert event.record["id"] == "prj_1"


@pytest.mark.asyncio
async def test_input_definition_is_not_mutated(executor, definition) -> None:
    await executor.run(definition)
    assert definition.next_occurrence == datetime(2026, 10, 12, 9, 0, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_not_due_definition_is_left_alone(executor, definition, materializer, store) -> None:
    definition.next_occurrence = NOW + timedelta(hours=1)

    result = await executor.run(definition)

    assert result is definition
    assert materializer.calls == []
    assert store.persist_calls == 0


@pytest.mark.asyncio
async def test_exact_slot_is_due(executor, definition, materializer) -> None:
    definition.next_occurrence = NOW
    await executor.run(definition)
    assert len(materializer.calls) == 1


@pytest.mark.asyncio
async def test_explicit_now_overrides_clock(executor, definition, materializer) -> None:
    result = await executor.run(definition, now=datetime(2026, 10, 1, tzinfo=timezone.utc))
    assert result is definition
    assert materializer.calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize("flag", ["inactive", "deleted"])
async def test_unschedulable_definition_is_skipped(executor, definition, materializer, store, flag: str) -> None:
    if flag == "inactive":
        definition.deactivate()
    else:
        definition.mark_deleted()

    result = await executor.run(definition)

    assert result is definition
    assert materializer.calls == []
    assert store.persist_calls == 0


@pytest.mark.asyncio
async def test_materializer_failure_does_not_advance_state(definition, store, audit_sink, clock) -> None:
    executor = OccurrenceExecutor(store, RecordingMaterializer(fail_for={"cli_1"}), audit_sink, clock)

    with pytest.raises(MaterializationError, match="rejected the record"):
        await executor.run(definition)

    stored = store.definitions["rec_weekly"]
    assert stored.last_occurrence == datetime(2026, 10, 5, 9, 0, tzinfo=timezone.utc)
    assert stored.next_occurrence == datetime(2026, 10, 12, 9, 0, tzinfo=timezone.utc)
    assert store.persist_calls == 0

    assert [e.type for e in audit_sink.events] == [OccurrenceEventType.FAILED]
    assert audit_sink.events[0].occurrence.status == OccurrenceStatus.FAILED


@pytest.mark.asyncio
async def test_persistence_failure_is_reported(definition, materializer, audit_sink, clock) -> None:
    executor = OccurrenceExecutor(BrokenScheduleStore([definition]), materializer, audit_sink, clock)

    with pytest.raises(PersistenceError, match="could not be saved"):
        await executor.run(definition)

    # The record exists but nothing claims the occurrence completed.
    assert len(materializer.calls) == 1
    assert audit_sink.events == []


@pytest.mark.asyncio
async def test_missing_row_is_a_persistence_error(definition, materializer, audit_sink, clock) -> None:
    executor = OccurrenceExecutor(MemoryScheduleStore(), materializer, audit_sink, clock)

    with pytest.raises(PersistenceError, match="no longer exists"):
        await executor.run(definition)


@pytest.mark.asyncio
async def test_audit_failure_does_not_roll_back(definition, store, materializer, clock, caplog) -> None:
    executor = OccurrenceExecutor(store, materializer, RecordingAuditSink(broken=True), clock)

    updated = await executor.run(definition)

    assert updated.next_occurrence == datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)
    assert store.definitions["rec_weekly"].next_occurrence == updated.next_occurrence
    assert "Failed to track activity" in caplog.text


@pytest.mark.asyncio
async def test_late_run_keeps_fixed_grid(definition, store, materializer, audit_sink) -> None:
    # The slot was three days ago; the next one is still a Monday 09:00.
    executor = OccurrenceExecutor(store, materializer, audit_sink, FixedClock(datetime(2026, 10, 15, 17, 0, tzinfo=timezone.utc)))

    updated = await executor.run(definition)

    assert updated.last_occurrence == datetime(2026, 10, 12, 9, 0, tzinfo=timezone.utc)
    assert updated.next_occurrence == datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)
