from typing import List, Optional, Protocol

from recurring_scheduler.domain.definition import RecurrenceDefinition


class ScheduleStore(Protocol):
    async def load_active_definitions(self) -> List[RecurrenceDefinition]:
        """Return every definition that is active and not soft-deleted."""
        ...

    async def get_definition(self, definition_id: str) -> Optional[RecurrenceDefinition]:
        """Retrieve a definition by its ID, deleted ones included."""
        ...

    async def persist_occurrence_state(self, definition: RecurrenceDefinition) -> bool:
        """
        Atomically write ``last_occurrence`` and ``next_occurrence`` of the definition.
        Return True if a row was updated, False otherwise.
        """
        ...
