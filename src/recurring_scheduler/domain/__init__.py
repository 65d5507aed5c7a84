from .definition import RecurrenceDefinition, Frequency
from .occurrence import Occurrence, OccurrenceStatus, OccurrenceEvent, OccurrenceEventType

__all__ = ["RecurrenceDefinition", "Frequency", "Occurrence", "OccurrenceStatus", "OccurrenceEvent", "OccurrenceEventType"]
