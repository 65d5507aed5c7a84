import uuid
from enum import Enum
from typing import Any, Dict, Optional
from datetime import datetime
from zoneinfo import ZoneInfo

from pydantic import BaseModel, Field


class OccurrenceStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class Occurrence(BaseModel):
    """
    Represents a single execution attempt of a recurrence definition.
    """
    id: str = Field(default_factory=lambda: f"occ_{uuid.uuid4().hex[:8]}", description="Unique occurrence identifier")
    definition_id: str = Field(..., description="The definition this occurrence belongs to")
    scheduled_for: datetime = Field(..., description="The grid slot being executed")
    status: OccurrenceStatus = OccurrenceStatus.PENDING
    record_id: Optional[str] = Field(None, description="Identifier of the materialized business record")
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    def set_status(self, status: OccurrenceStatus):
        """
        Update the status of the occurrence.
        """
        self.status = status
        if status == OccurrenceStatus.RUNNING:
            self.started_at = datetime.now(ZoneInfo("UTC"))
        elif status in [OccurrenceStatus.COMPLETED, OccurrenceStatus.FAILED]:
            self.finished_at = datetime.now(ZoneInfo("UTC"))

    def set_result(self, status: OccurrenceStatus, record_id: Optional[str] = None, error: Optional[str] = None):
        """
        Set the outcome of the occurrence.
        """
        if status not in [OccurrenceStatus.COMPLETED, OccurrenceStatus.FAILED]:
            raise ValueError("Status must be either COMPLETED or FAILED")
        self.record_id = record_id
        self.error = error
        self.set_status(status)


class OccurrenceEventType(str, Enum):
    EXECUTED = "occurrence_executed"
    FAILED = "occurrence_failed"


class OccurrenceEvent(BaseModel):
    """
    Audit event emitted after a definition fired.
    """
    type: OccurrenceEventType
    definition_id: str
    definition_name: str
    occurrence: Occurrence
    record: Optional[Dict[str, Any]] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(ZoneInfo("UTC")))

    @property
    def description(self) -> str:
        if self.type == OccurrenceEventType.EXECUTED:
            return f"Record {self.occurrence.record_id} was created from recurring job '{self.definition_name}'"
        return f"Recurring job '{self.definition_name}' failed: {self.occurrence.error}"
