# room_audit/services/meeting_auditor.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from string import Template
from typing import Any, Dict, List, Optional, Protocol, Sequence

from room_audit.schemas.calendar import MeetingRecord, ResourceRef, TimeWindow
from room_audit.schemas.identity import UNKNOWN_DIRECTORY_TYPE, IdentityState, IdentityStatus
from room_audit.schemas.report import (
    AuditKind,
    AuditReport,
    GhostMeetingRow,
    NotificationRequest,
    ParticipantSet,
    ReportRow,
    UnderutilizedMeetingRow,
)
from room_audit.services.calendar_fetcher import (
    DEFAULT_MAX_ITEMS_PER_QUERY,
    CalendarWindowFetcher,
)
from room_audit.services.directory import Directory, GraphDirectory
from room_audit.services.graph_client import GraphClient
from room_audit.services.identity_classifier import (
    ClassifierConfig,
    IdentityCache,
    IdentityClassifier,
)
from room_audit.services.participants import resolve_participants

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PredicateOutcome:
    row: Optional[ReportRow] = None
    notification: Optional[NotificationRequest] = None


class AuditPredicate(Protocol):
    """
    Decides, per meeting, which report row and notification to emit.
    """

    kind: AuditKind

    def evaluate(
        self,
        resource: ResourceRef,
        meeting: MeetingRecord,
        organizer: IdentityState,
        participants: ParticipantSet,
    ) -> PredicateOutcome:
        ...


def _row_fields(
    resource: ResourceRef,
    meeting: MeetingRecord,
    organizer: IdentityState,
    participants: ParticipantSet,
) -> Dict[str, Any]:
    return {
        "resource_address": resource.address,
        "resource_name": resource.display_name,
        "resource_capacity": resource.capacity,
        "meeting_subject": meeting.subject,
        "meeting_start": meeting.start,
        "meeting_end": meeting.end,
        "is_recurring_instance": meeting.is_recurring_instance,
        "unique_id": meeting.unique_id,
        "organizer": organizer.address,
        "organizer_status": organizer.status,
        "organizer_enabled": organizer.enabled,
        "organizer_directory_type": organizer.directory_type,
        "organizer_resolved_address": organizer.resolved_internal_address,
        "organizer_matched_internal": organizer.matched_internal,
        "participant_count": participants.count,
        "participants": list(participants.addresses),
    }


@dataclass(frozen=True)
class NotificationTemplate:
    """
    Sender and `$placeholder` templates for ghost meeting notifications.

    Available placeholders: $subject, $room, $room_address, $start, $end,
    $organizer, $status. Unknown placeholders are left as they are.
    """

    from_address: str
    subject_template: str
    body_template: str

    def render(
        self,
        resource: ResourceRef,
        meeting: MeetingRecord,
        organizer: IdentityState,
        recipients: Sequence[str],
    ) -> NotificationRequest:
        values = {
            "subject": meeting.subject or "(no subject)",
            "room": resource.display_name or resource.address,
            "room_address": resource.address,
            "start": meeting.start.strftime("%Y-%m-%d %H:%M UTC"),
            "end": meeting.end.strftime("%Y-%m-%d %H:%M UTC"),
            "organizer": organizer.address,
            "status": organizer.status.value,
        }
        return NotificationRequest(
            from_address=self.from_address,
            to=list(recipients),
            subject=Template(self.subject_template).safe_substitute(values),
            body=Template(self.body_template).safe_substitute(values),
        )


class GhostMeetingPredicate:
    """
    Full census of meetings, flagging those whose organizer is Disabled or
    NotFound.

    A notification is produced for a ghost meeting when notifications are
    enabled and it has participants other than the organizer.
    """

    kind = AuditKind.GHOST_MEETINGS

    def __init__(
        self,
        notifications_enabled: bool = False,
        template: NotificationTemplate | None = None,
    ) -> None:
        if notifications_enabled and (template is None or not template.from_address):
            raise ValueError("notifications require a template with a sender address")
        self.notifications_enabled = notifications_enabled
        self.template = template

    def evaluate(
        self,
        resource: ResourceRef,
        meeting: MeetingRecord,
        organizer: IdentityState,
        participants: ParticipantSet,
    ) -> PredicateOutcome:
        is_ghost = organizer.status.is_ghost
        row = GhostMeetingRow(**_row_fields(resource, meeting, organizer, participants), is_ghost=is_ghost)

        if not (is_ghost and self.notifications_enabled and participants.count):
            return PredicateOutcome(row=row)

        recipients = [address for address in participants.addresses if address != organizer.address]
        if not recipients:
            return PredicateOutcome(row=row)

        return PredicateOutcome(
            row=row,
            notification=self.template.render(resource, meeting, organizer, recipients),
        )


class UnderutilizationPredicate:
    """
    Large rooms booked for few people.

    A row is emitted when the room capacity is at least `minimum_capacity`
    and the meeting has at most `max_participants` participants. Rooms with
    an unknown capacity never qualify.
    """

    kind = AuditKind.UNDERUTILIZED_ROOMS

    def __init__(self, minimum_capacity: int, max_participants: int) -> None:
        if minimum_capacity < 0 or max_participants < 0:
            raise ValueError("minimum_capacity and max_participants must be non-negative")
        self.minimum_capacity = minimum_capacity
        self.max_participants = max_participants

    def evaluate(
        self,
        resource: ResourceRef,
        meeting: MeetingRecord,
        organizer: IdentityState,
        participants: ParticipantSet,
    ) -> PredicateOutcome:
        capacity = resource.capacity
        if capacity is None or capacity < self.minimum_capacity:
            return PredicateOutcome()
        if participants.count > self.max_participants:
            return PredicateOutcome()

        fill = round(participants.count / capacity * 100, 1) if capacity else 0.0
        row = UnderutilizedMeetingRow(
            **_row_fields(resource, meeting, organizer, participants),
            capacity=capacity,
            fill_percentage=fill,
        )
        return PredicateOutcome(row=row)


class MeetingAuditor:
    """
    Runs one audit over a list of rooms.

    For each room (sequentially, in the given order) and each meeting in the
    window:
    1) Skip meetings without an organizer.
    2) Classify the organizer once per run through an IdentityCache.
    3) Resolve the distinct participants.
    4) Let the predicate decide on the report row and notification.

    Failures reading a room or classifying an organizer are logged and
    recorded as warnings; they never abort the run.
    """

    def __init__(
        self,
        graph_client: GraphClient,
        classifier_config: ClassifierConfig,
        directory: Directory | None = None,
        max_items_per_query: int = DEFAULT_MAX_ITEMS_PER_QUERY,
    ) -> None:
        self.fetcher = CalendarWindowFetcher(graph_client, max_items_per_query=max_items_per_query)
        self.classifier = IdentityClassifier(
            directory if directory is not None else GraphDirectory(graph_client),
            classifier_config,
        )

    async def audit(
        self,
        resources: Sequence[ResourceRef],
        window: TimeWindow,
        predicate: AuditPredicate,
    ) -> AuditReport:
        if resources is None:
            raise ValueError("resources are required")
        if not isinstance(window, TimeWindow):
            raise ValueError("window must be a TimeWindow")
        if predicate is None:
            raise ValueError("predicate is required")

        cache = IdentityCache()
        report = AuditReport(kind=predicate.kind, window_start=window.start, window_end=window.end)
        summary = report.summary

        for resource in resources:
            summary.resources_scanned += 1
            try:
                fetched = await self.fetcher.fetch(resource.address, window)
            except Exception as exc:  # noqa: BLE001
                message = f"cannot read calendar of {resource.address}: {exc!r}"
                logger.exception("Skipping room %s", resource.address)
                summary.resources_with_warnings += 1
                report.warnings.append(message)
                continue

            if fetched.warnings:
                summary.resources_with_warnings += 1
                report.warnings.extend(fetched.warnings)

            for meeting in fetched.records:
                summary.meetings_scanned += 1
                if not meeting.organizer:
                    summary.meetings_without_organizer += 1
                    continue

                organizer = await cache.get_or_compute(
                    meeting.organizer,
                    lambda address: self._classify(address, report.warnings),
                )
                participants = resolve_participants(
                    meeting.organizer,
                    meeting.required_attendees,
                    meeting.optional_attendees,
                    resource.address,
                )

                outcome = predicate.evaluate(resource, meeting, organizer, participants)
                if outcome.row is not None:
                    report.rows.append(outcome.row)
                    if isinstance(outcome.row, GhostMeetingRow) and outcome.row.is_ghost:
                        summary.ghost_meetings += 1
                if outcome.notification is not None:
                    report.notifications.append(outcome.notification)

        summary.rows_emitted = len(report.rows)
        summary.notifications = len(report.notifications)
        summary.distinct_organizers = len(cache)

        logger.info(
            "%s audit: %d rooms, %d meetings, %d rows, %d notifications, %d warnings",
            predicate.kind.value,
            summary.resources_scanned,
            summary.meetings_scanned,
            summary.rows_emitted,
            summary.notifications,
            len(report.warnings),
        )
        return report

    async def _classify(self, address: str, warnings: List[str]) -> IdentityState:
        try:
            return await self.classifier.classify(address)
        except Exception as exc:  # noqa: BLE001
            message = f"cannot classify organizer {address}: {exc}"
            logger.warning(message)
            warnings.append(message)
            return IdentityState(
                address=address,
                status=IdentityStatus.NOT_FOUND,
                enabled=None,
                directory_type=UNKNOWN_DIRECTORY_TYPE,
            )
