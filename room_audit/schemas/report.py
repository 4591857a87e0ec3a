# room_audit/schemas/report.py
from datetime import datetime
from enum import Enum
from typing import List, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from room_audit.schemas.identity import IdentityStatus


class AuditKind(str, Enum):
    """
    The analysis an audit run performs.
    """

    GHOST_MEETINGS = "ghost_meetings"
    UNDERUTILIZED_ROOMS = "underutilized_rooms"


class ParticipantSet(BaseModel):
    """
    Distinct, case-normalized participants of one meeting, excluding the room.
    """

    model_config = ConfigDict(frozen=True)

    count: int = Field(..., ge=0)
    addresses: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_count(self) -> "ParticipantSet":
        if self.count != len(self.addresses):
            raise ValueError("participant count must equal the number of addresses")
        return self


class MeetingReportRow(BaseModel):
    """
    Fields shared by every audit report row: room, meeting, organizer identity
    and participants.
    """

    resource_address: str
    resource_name: str = ""
    resource_capacity: int | None = None

    meeting_subject: str = ""
    meeting_start: datetime
    meeting_end: datetime
    is_recurring_instance: bool = False
    unique_id: str

    organizer: str
    organizer_status: IdentityStatus
    organizer_enabled: bool | None = None
    organizer_directory_type: str = "unknown"
    organizer_resolved_address: str | None = None
    organizer_matched_internal: bool = False

    participant_count: int = Field(..., ge=0)
    participants: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_participants(self) -> "MeetingReportRow":
        if self.participant_count != len(self.participants):
            raise ValueError("participant_count must equal len(participants)")
        return self


class GhostMeetingRow(MeetingReportRow):
    """
    Census row of the ghost meeting audit. Every meeting with an organizer
    gets a row; `is_ghost` marks Disabled / NotFound organizers.
    """

    is_ghost: bool = Field(
        False,
        description="True when the organizer is Disabled or NotFound.",
    )


class UnderutilizedMeetingRow(MeetingReportRow):
    """
    Row of the underutilization audit: a large room booked for few people.
    """

    capacity: int = Field(..., ge=0, description="Room capacity used for the check.")
    fill_percentage: float = Field(
        ...,
        ge=0.0,
        description="participant_count / capacity * 100, rounded to one decimal.",
        examples=[25.0],
    )


ReportRow = Union[GhostMeetingRow, UnderutilizedMeetingRow]


class NotificationRequest(BaseModel):
    """
    A message the caller may deliver to the attendees of a ghost meeting.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    from_address: str = Field(..., alias="from")
    to: List[str] = Field(..., min_length=1)
    subject: str
    body: str


class AuditSummary(BaseModel):
    """
    Counters describing one audit run.
    """

    resources_scanned: int = 0
    resources_with_warnings: int = 0
    meetings_scanned: int = 0
    meetings_without_organizer: int = 0
    rows_emitted: int = 0
    ghost_meetings: int = 0
    notifications: int = 0
    notifications_sent: int = 0
    distinct_organizers: int = 0


class AuditReport(BaseModel):
    """
    Result of an audit run: ordered report rows, notification requests and a
    warning summary for partial-data runs.
    """

    kind: AuditKind
    window_start: datetime
    window_end: datetime
    rows: List[ReportRow] = Field(default_factory=list)
    notifications: List[NotificationRequest] = Field(default_factory=list)
    summary: AuditSummary = Field(default_factory=AuditSummary)
    warnings: List[str] = Field(default_factory=list)
