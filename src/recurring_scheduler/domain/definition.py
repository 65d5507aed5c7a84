import uuid
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo

from pydantic import BaseModel, Field, field_validator, model_validator


class Frequency(str, Enum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


def ensure_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        logging.warning("Datetime does not include a timezone. Defaulting to UTC+0 for consistent representation. "
                        "Note: When using SQLite for storage, timezone information is discarded on write.")
        return value.replace(tzinfo=ZoneInfo("UTC"))
    return value


class RecurrenceDefinition(BaseModel):
    """
    A persisted description of how often, and from which anchor, an occurrence repeats.
    """
    id: str = Field(default_factory=lambda: f"rec_{uuid.uuid4().hex[:8]}", description="Unique definition identifier")
    name: str = Field(..., description="Human readable name, reused for the materialized record")
    description: Optional[str] = Field(None, description="Optional free-form description")
    anchor_time: datetime = Field(..., description="Reference timestamp fixing time-of-day, weekday and day-of-month")
    frequency: Frequency = Field(..., description="Recurrence frequency class")
    is_active: bool = Field(default=True, description="Inactive definitions are never scheduled or caught up")
    last_occurrence: Optional[datetime] = Field(None, description="Slot of the most recently completed occurrence")
    next_occurrence: Optional[datetime] = Field(None, description="Slot of the next due occurrence")
    is_deleted: bool = Field(default=False, description="Soft-delete flag")
    owner_context: Dict[str, Any] = Field(default_factory=dict, description="Opaque reference to the business entity to materialize")
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(ZoneInfo("UTC")),
        description="Definition creation timestamp with UTC timezone"
    )

    @field_validator("anchor_time", "last_occurrence", "next_occurrence", "created_at")
    def check_timezone(cls, v: Optional[datetime]) -> Optional[datetime]:
        if v is None:
            return v
        return ensure_aware(v)

    @model_validator(mode="after")
    def default_next_occurrence(self) -> "RecurrenceDefinition":
        if self.next_occurrence is None:
            self.next_occurrence = self.anchor_time
        return self

    @property
    def is_schedulable(self) -> bool:
        return self.is_active and not self.is_deleted

    def is_due(self, now: datetime) -> bool:
        return self.next_occurrence <= now

    def activate(self) -> None:
        self.is_active = True

    def deactivate(self) -> None:
        self.is_active = False

    def mark_deleted(self) -> None:
        self.is_deleted = True

    @property
    def readable_string(self) -> str:
        summary = f"Recurring Job: '{self.name}' ({self.id})"
        if self.description:
            summary += f"\nDescription: {self.description}"
        schedule = f"Repeats {self.frequency.value} from {self.anchor_time.strftime('%Y-%m-%d %H:%M:%S %Z')}"
        schedule += f", next run at {self.next_occurrence.strftime('%Y-%m-%d %H:%M:%S %Z')}"
        if self.last_occurrence:
            schedule += f", last run at {self.last_occurrence.strftime('%Y-%m-%d %H:%M:%S %Z')}"
        return f"{summary}\n{schedule}"
