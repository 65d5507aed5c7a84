class RecurringSchedulerError(Exception):
    """Base class for all scheduler errors."""


class InvalidFrequencyError(RecurringSchedulerError, ValueError):
    """Raised when a frequency outside the supported set is requested."""


class DefinitionNotFoundError(RecurringSchedulerError, KeyError):
    pass


class MaterializationError(RecurringSchedulerError):
    """
    The materializer could not produce a business record.

    Recurrence state is left un-advanced, so the same slot is retried later.
    """


class PersistenceError(RecurringSchedulerError):
    """
    Recurrence state could not be written after a successful materialization.

    The business record already exists; a retry will materialize it again.
    """


class CatchUpStalledError(RecurringSchedulerError):
    """Catch-up failed to move ``next_occurrence`` forward."""

    def __init__(self, definition_id: str, message: str):
        super().__init__(f"Catch-up stalled for definition {definition_id}: {message}")
        self.definition_id = definition_id
