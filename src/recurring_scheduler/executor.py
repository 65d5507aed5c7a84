import logging
from datetime import datetime
from typing import Any, Dict, Optional

from recurring_scheduler.audit import AuditSink
from recurring_scheduler.domain.definition import RecurrenceDefinition
from recurring_scheduler.domain.occurrence import Occurrence, OccurrenceEvent, OccurrenceEventType, OccurrenceStatus
from recurring_scheduler.errors import MaterializationError, PersistenceError
from recurring_scheduler.materializers.protocol import Materializer
from recurring_scheduler.recurrence import next_after
from recurring_scheduler.storages.protocol import ScheduleStore
from recurring_scheduler.timers import Clock, utc_now

logger = logging.getLogger(__name__)


class OccurrenceExecutor:
    """
    Runs one due occurrence of a definition and advances its recurrence state.

    The next slot is computed from the slot just executed, not from the time
    the run happened, so a late run does not shift the grid ("fixed-grid").

    Delivery is at-least-once. A materializer failure leaves the state as it
    was and the slot is retried later. If persisting fails after the record was
    materialized, the retry materializes it a second time; materializers are
    expected to be idempotent on ``(owner_context, occurrence_time)``.
    """

    def __init__(self, store: ScheduleStore, materializer: Materializer, audit_sink: AuditSink,
                 clock: Clock = utc_now):
        self.store = store
        self.materializer = materializer
        self.audit_sink = audit_sink
        self._clock = clock

    async def run(self, definition: RecurrenceDefinition, now: Optional[datetime] = None) -> RecurrenceDefinition:
        """
        Execute ``definition`` if it is schedulable and due.

        Args:
            definition (RecurrenceDefinition): The definition to run.
            now (Optional[datetime]): Reference time, defaults to the executor clock.

        Returns:
            RecurrenceDefinition: The advanced definition, or the same one when nothing ran.

        Raises:
            MaterializationError: The materializer failed; state was not advanced.
            PersistenceError: The record was produced but state could not be stored.
        """
        if not definition.is_schedulable:
            logger.info(f"Skipping inactive or deleted recurring job: {definition.name} ({definition.id})")
            return definition

        now = now or self._clock()
        if now < definition.next_occurrence:
            logger.info(f"Recurring job {definition.id} not due yet. Next run: {definition.next_occurrence.isoformat()}")
            return definition

        slot = definition.next_occurrence
        occurrence = Occurrence(definition_id=definition.id, scheduled_for=slot)
        occurrence.set_status(OccurrenceStatus.RUNNING)
        logger.info(f"Executing recurring job: {definition.name} ({definition.id}) for {slot.isoformat()}")

        try:
            record = await self.materializer.materialize(definition.owner_context, slot)
        except Exception as e:
            occurrence.set_result(OccurrenceStatus.FAILED, error=str(e))
            await self._emit(definition, occurrence, OccurrenceEventType.FAILED)
            if isinstance(e, MaterializationError):
                raise
            raise MaterializationError(f"Materializer failed for {definition.id} at {slot.isoformat()}: {e}") from e

        updated = definition.model_copy(update={
            "last_occurrence": slot,
            "next_occurrence": next_after(definition.anchor_time, definition.frequency, slot),
        })
        try:
            persisted = await self.store.persist_occurrence_state(updated)
        except Exception as e:
            raise PersistenceError(
                f"Recurring job {definition.id} produced a record for {slot.isoformat()} "
                f"but its state could not be saved: {e}"
            ) from e
        if not persisted:
            raise PersistenceError(f"Recurring job {definition.id} no longer exists in the store")

        occurrence.set_result(OccurrenceStatus.COMPLETED, record_id=self._record_id(record))
        await self._emit(updated, occurrence, OccurrenceEventType.EXECUTED, record)

        logger.info(f"Record {occurrence.record_id} created by recurring job {definition.name} ({definition.id}); "
                    f"next run at {updated.next_occurrence.isoformat()}")
        return updated

    @staticmethod
    def _record_id(record: Any) -> Optional[str]:
        if isinstance(record, dict) and record.get("id") is not None:
            return str(record["id"])
        return None

    async def _emit(self, definition: RecurrenceDefinition, occurrence: Occurrence,
                    event_type: OccurrenceEventType, record: Optional[Dict[str, Any]] = None) -> None:
        event = OccurrenceEvent(
            type=event_type,
            definition_id=definition.id,
            definition_name=definition.name,
            occurrence=occurrence,
            record=record if isinstance(record, dict) else None,
        )
        try:
            await self.audit_sink.record(event)
        except Exception as e:
            logger.error(f"Failed to track activity for recurring job execution {definition.id}: {e}")
