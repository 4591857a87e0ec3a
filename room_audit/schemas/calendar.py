# room_audit/schemas/calendar.py
from datetime import datetime
from typing import List

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class ResourceRef(BaseModel):
    """
    A bookable resource (meeting room) whose calendar is audited.
    """

    model_config = ConfigDict(frozen=True)

    address: str = Field(
        ...,
        min_length=1,
        description="SMTP address of the room mailbox.",
        examples=["room.orion@corp.com"],
    )
    display_name: str = Field(
        "",
        description="Human-friendly name of the room.",
        examples=["Orion (4th floor)"],
    )
    capacity: int | None = Field(
        None,
        ge=0,
        description="Seating capacity, if known.",
        examples=[8],
    )


class TimeWindow(BaseModel):
    """
    Half-open audit horizon `[start, end)`.

    Both instants must be timezone-aware and `start` must be strictly before
    `end`; an empty window is rejected at construction time.
    """

    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime

    @field_validator("start", "end")
    @classmethod
    def _require_aware(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            raise ValueError("time window bounds must be timezone-aware")
        return value

    @model_validator(mode="after")
    def _require_ordered(self) -> "TimeWindow":
        if self.start >= self.end:
            raise ValueError("time window start must be before end")
        return self


class MeetingRecord(BaseModel):
    """
    One calendar item retrieved from a room calendar, normalized from the raw
    Graph event payload.
    """

    model_config = ConfigDict(frozen=True)

    resource: str = Field(..., description="Address of the room the item was read from.")
    subject: str = Field("", description="Meeting subject (may be empty).")
    start: datetime = Field(..., description="UTC start of the meeting.")
    end: datetime = Field(..., description="UTC end of the meeting.")
    is_recurring_instance: bool = Field(
        False,
        description="True for occurrences, exceptions and series masters.",
    )
    organizer: str | None = Field(None, description="Organizer address, if present.")
    required_attendees: List[str] = Field(default_factory=list)
    optional_attendees: List[str] = Field(default_factory=list)
    unique_id: str = Field(..., description="Stable identifier of the calendar item.")

    @model_validator(mode="after")
    def _require_ordered(self) -> "MeetingRecord":
        if self.start >= self.end:
            raise ValueError("meeting start must be before end")
        return self
