import logging
from typing import List, Protocol

from recurring_scheduler.domain.occurrence import OccurrenceEvent, OccurrenceEventType

audit_logger = logging.getLogger("recurring_scheduler.audit")


class AuditSink(Protocol):
    async def record(self, event: OccurrenceEvent) -> None:
        """Record an occurrence event. Best-effort: callers log and drop failures."""
        ...


class LoggingAuditSink(AuditSink):
    """
    Writes occurrence events to the ``recurring_scheduler.audit`` logger.
    """

    async def record(self, event: OccurrenceEvent) -> None:
        level = logging.INFO if event.type == OccurrenceEventType.EXECUTED else logging.WARNING
        audit_logger.log(
            level,
            "%s: %s",
            event.type.value,
            event.description,
            extra={"definition_id": event.definition_id, "occurrence_id": event.occurrence.id},
        )


class CompositeAuditSink(AuditSink):
    """
    Fans an event out to several sinks. A failing sink does not stop the others.
    """

    def __init__(self, sinks: List[AuditSink]):
        self.sinks = sinks

    async def record(self, event: OccurrenceEvent) -> None:
        for sink in self.sinks:
            try:
                await sink.record(event)
            except Exception:
                audit_logger.exception("Audit sink %r failed for event %s", sink, event.type.value)
