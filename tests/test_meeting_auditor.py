# tests/test_meeting_auditor.py
import json
from datetime import datetime, timezone
from typing import Dict, List, Optional

import pytest

from room_audit.schemas.calendar import MeetingRecord, ResourceRef, TimeWindow
from room_audit.schemas.identity import DirectoryEntry, IdentityState, IdentityStatus
from room_audit.schemas.report import AuditKind, GhostMeetingRow, ParticipantSet
from room_audit.services.identity_classifier import ClassifierConfig
from room_audit.services.meeting_auditor import (
    GhostMeetingPredicate,
    MeetingAuditor,
    NotificationTemplate,
    UnderutilizationPredicate,
)

UTC = timezone.utc
WINDOW = TimeWindow(start=datetime(2025, 3, 1, tzinfo=UTC), end=datetime(2025, 4, 1, tzinfo=UTC))
CONFIG = ClassifierConfig(organization_suffix="corp.com")
TEMPLATE = NotificationTemplate(
    from_address="facilities@corp.com",
    subject_template="Booking of $room on $start",
    body_template="$subject organized by $organizer ($status) $unknown",
)


class CountingDirectory:
    def __init__(self, accounts: Dict[str, Optional[bool]], broken: tuple = ()) -> None:
        # address -> enabled state (None = unavailable)
        self.accounts = accounts
        self.broken = set(broken)
        self.find_calls: List[str] = []

    async def find(self, address: str) -> Optional[DirectoryEntry]:
        self.find_calls.append(address)
        if address in self.broken:
            raise RuntimeError("directory timeout")
        if address not in self.accounts:
            return None
        return DirectoryEntry(id=address, address=address, directory_type="user")

    async def account_enabled(self, entry: DirectoryEntry) -> Optional[bool]:
        return self.accounts[entry.address]


def _room(address: str = "room.a@corp.com", capacity: Optional[int] = 8) -> ResourceRef:
    return ResourceRef(address=address, display_name=address.split("@")[0], capacity=capacity)


def _meeting(**overrides) -> MeetingRecord:
    fields = dict(
        resource="room.a@corp.com",
        subject="Planning",
        start=datetime(2025, 3, 10, 9, tzinfo=UTC),
        end=datetime(2025, 3, 10, 10, tzinfo=UTC),
        organizer="alice@corp.com",
        required_attendees=["bob@corp.com"],
        unique_id="m-1",
    )
    fields.update(overrides)
    return MeetingRecord(**fields)


def _state(status: IdentityStatus, enabled: Optional[bool] = None) -> IdentityState:
    return IdentityState(address="alice@corp.com", status=status, enabled=enabled)


def _participants(*addresses: str) -> ParticipantSet:
    return ParticipantSet(count=len(addresses), addresses=sorted(addresses))


# --- Predicates --------------------------------------------------------------


def test_ghost_predicate_disabled_organizer_with_attendee_notifies():
    predicate = GhostMeetingPredicate(notifications_enabled=True, template=TEMPLATE)

    outcome = predicate.evaluate(
        _room(),
        _meeting(),
        _state(IdentityStatus.DISABLED, enabled=False),
        _participants("alice@corp.com", "bob@corp.com"),
    )

    assert isinstance(outcome.row, GhostMeetingRow)
    assert outcome.row.is_ghost is True
    assert outcome.notification is not None
    assert outcome.notification.to == ["bob@corp.com"]
    assert outcome.notification.from_address == "facilities@corp.com"
    assert outcome.notification.subject == "Booking of room.a on 2025-03-10 09:00 UTC"
    assert outcome.notification.body == "Planning organized by alice@corp.com (Disabled) $unknown"


def test_ghost_predicate_external_organizer_is_not_ghost():
    predicate = GhostMeetingPredicate(notifications_enabled=True, template=TEMPLATE)

    outcome = predicate.evaluate(
        _room(),
        _meeting(),
        _state(IdentityStatus.EXTERNAL),
        _participants("alice@corp.com", "bob@corp.com"),
    )

    assert outcome.row.is_ghost is False
    assert outcome.notification is None


def test_ghost_predicate_without_notifications_only_flags():
    predicate = GhostMeetingPredicate()

    outcome = predicate.evaluate(
        _room(),
        _meeting(),
        _state(IdentityStatus.NOT_FOUND),
        _participants("alice@corp.com", "bob@corp.com"),
    )

    assert outcome.row.is_ghost is True
    assert outcome.notification is None


def test_ghost_predicate_skips_notification_when_only_organizer_participates():
    predicate = GhostMeetingPredicate(notifications_enabled=True, template=TEMPLATE)

    outcome = predicate.evaluate(
        _room(),
        _meeting(required_attendees=[]),
        _state(IdentityStatus.NOT_FOUND),
        _participants("alice@corp.com"),
    )

    assert outcome.row.is_ghost is True
    assert outcome.notification is None


def test_ghost_predicate_requires_template_for_notifications():
    with pytest.raises(ValueError):
        GhostMeetingPredicate(notifications_enabled=True)


def test_underutilization_predicate_thresholds():
    predicate = UnderutilizationPredicate(minimum_capacity=6, max_participants=2)
    state = _state(IdentityStatus.ACTIVE, enabled=True)

    emitted = predicate.evaluate(
        _room(capacity=8), _meeting(), state, _participants("alice@corp.com", "bob@corp.com")
    )
    skipped = predicate.evaluate(
        _room(capacity=8),
        _meeting(),
        state,
        _participants("alice@corp.com", "bob@corp.com", "carol@corp.com"),
    )

    assert emitted.row is not None
    assert emitted.row.capacity == 8
    assert emitted.row.participant_count == 2
    assert emitted.row.fill_percentage == 25.0
    assert emitted.notification is None
    assert skipped.row is None


def test_underutilization_predicate_ignores_small_or_unknown_rooms():
    predicate = UnderutilizationPredicate(minimum_capacity=6, max_participants=2)
    state = _state(IdentityStatus.ACTIVE, enabled=True)
    participants = _participants("alice@corp.com")

    assert predicate.evaluate(_room(capacity=4), _meeting(), state, participants).row is None
    assert predicate.evaluate(_room(capacity=None), _meeting(), state, participants).row is None


def test_underutilization_predicate_rejects_negative_thresholds():
    with pytest.raises(ValueError):
        UnderutilizationPredicate(minimum_capacity=-1, max_participants=2)


# --- Auditor -----------------------------------------------------------------


@pytest.mark.asyncio
async def test_end_to_end_external_organizer(calendar_graph, event):
    graph = calendar_graph(
        {
            "roomA": [
                event(
                    "e1",
                    "2025-03-10T09:00:00",
                    "2025-03-10T10:00:00",
                    organizer="ghost@ext.example",
                    required=["u1@corp.com"],
                )
            ]
        }
    )
    directory = CountingDirectory({"u1@corp.com": True})
    auditor = MeetingAuditor(graph, CONFIG, directory=directory)
    predicate = GhostMeetingPredicate(notifications_enabled=True, template=TEMPLATE)

    report = await auditor.audit([ResourceRef(address="roomA", capacity=8)], WINDOW, predicate)

    assert report.kind is AuditKind.GHOST_MEETINGS
    assert len(report.rows) == 1
    row = report.rows[0]
    assert row.organizer_status is IdentityStatus.EXTERNAL
    assert row.is_ghost is False
    assert row.participant_count == len(row.participants) == 2
    assert report.notifications == []


@pytest.mark.asyncio
async def test_disabled_organizer_produces_row_and_notification(calendar_graph, event):
    graph = calendar_graph(
        {
            "room.a@corp.com": [
                event(
                    "e1",
                    "2025-03-10T09:00:00",
                    "2025-03-10T10:00:00",
                    organizer="alice@corp.com",
                    required=["bob@corp.com"],
                    resources=["room.a@corp.com"],
                )
            ]
        }
    )
    directory = CountingDirectory({"alice@corp.com": False})
    predicate = GhostMeetingPredicate(notifications_enabled=True, template=TEMPLATE)

    report = await MeetingAuditor(graph, CONFIG, directory=directory).audit([_room()], WINDOW, predicate)

    assert len(report.rows) == 1
    assert report.rows[0].is_ghost is True
    assert report.rows[0].participants == ["alice@corp.com", "bob@corp.com"]
    assert len(report.notifications) == 1
    assert report.notifications[0].to == ["bob@corp.com"]
    assert report.summary.ghost_meetings == 1


@pytest.mark.asyncio
async def test_organizer_is_classified_once_per_run(calendar_graph, event):
    events = [
        event(f"e{i}", f"2025-03-{10 + i}T09:00:00", f"2025-03-{10 + i}T10:00:00", organizer="Alice@corp.com")
        for i in range(4)
    ]
    graph = calendar_graph({"room.a@corp.com": events[:2], "room.b@corp.com": events[2:]})
    directory = CountingDirectory({"alice@corp.com": True})

    report = await MeetingAuditor(graph, CONFIG, directory=directory).audit(
        [_room("room.a@corp.com"), _room("room.b@corp.com")], WINDOW, GhostMeetingPredicate()
    )

    assert len(report.rows) == 4
    assert directory.find_calls == ["alice@corp.com"]
    assert report.summary.distinct_organizers == 1


@pytest.mark.asyncio
async def test_meetings_without_organizer_are_skipped(calendar_graph, event):
    graph = calendar_graph(
        {"room.a@corp.com": [event("e1", "2025-03-10T09:00:00", "2025-03-10T10:00:00", organizer=None)]}
    )

    report = await MeetingAuditor(graph, CONFIG, directory=CountingDirectory({})).audit(
        [_room()], WINDOW, GhostMeetingPredicate()
    )

    assert report.rows == []
    assert report.summary.meetings_scanned == 1
    assert report.summary.meetings_without_organizer == 1


@pytest.mark.asyncio
async def test_resource_failure_does_not_stop_other_resources(calendar_graph, event):
    def one_meeting(event_id: str):
        return [event(event_id, "2025-03-10T09:00:00", "2025-03-10T10:00:00")]

    graph = calendar_graph(
        {
            "room.a@corp.com": one_meeting("a1"),
            "room.b@corp.com": one_meeting("b1"),
            "room.c@corp.com": one_meeting("c1"),
        },
        bind_failures=["room.b@corp.com"],
    )
    directory = CountingDirectory({"alice@corp.com": True})
    rooms = [_room("room.a@corp.com"), _room("room.b@corp.com"), _room("room.c@corp.com")]

    report = await MeetingAuditor(graph, CONFIG, directory=directory).audit(
        rooms, WINDOW, GhostMeetingPredicate()
    )

    assert [row.resource_address for row in report.rows] == ["room.a@corp.com", "room.c@corp.com"]
    assert report.summary.resources_scanned == 3
    assert report.summary.resources_with_warnings == 1
    assert len(report.warnings) == 1


@pytest.mark.asyncio
async def test_unexpected_room_error_does_not_stop_other_resources(calendar_graph, event):
    class HtmlOnBindGraph(calendar_graph):
        async def get_json(self, path, params=None, headers=None):
            if path.endswith("/room.b@corp.com/calendar"):
                return json.loads("<html>")
            return await super().get_json(path, params=params, headers=headers)

    def one_meeting(event_id: str):
        return [event(event_id, "2025-03-10T09:00:00", "2025-03-10T10:00:00")]

    graph = HtmlOnBindGraph(
        {
            "room.a@corp.com": one_meeting("a1"),
            "room.b@corp.com": one_meeting("b1"),
            "room.c@corp.com": one_meeting("c1"),
        }
    )
    directory = CountingDirectory({"alice@corp.com": True})
    rooms = [_room("room.a@corp.com"), _room("room.b@corp.com"), _room("room.c@corp.com")]

    report = await MeetingAuditor(graph, CONFIG, directory=directory).audit(
        rooms, WINDOW, GhostMeetingPredicate()
    )

    assert [row.resource_address for row in report.rows] == ["room.a@corp.com", "room.c@corp.com"]
    assert report.summary.resources_scanned == 3
    assert report.summary.resources_with_warnings == 1
    assert "room.b@corp.com" in report.warnings[0]


@pytest.mark.asyncio
async def test_classifier_failure_degrades_to_not_found(calendar_graph, event):
    graph = calendar_graph(
        {
            "room.a@corp.com": [
                event("e1", "2025-03-10T09:00:00", "2025-03-10T10:00:00", organizer="alice@corp.com"),
                event("e2", "2025-03-11T09:00:00", "2025-03-11T10:00:00", organizer="bob@corp.com"),
            ]
        }
    )
    directory = CountingDirectory({"bob@corp.com": True}, broken=("alice@corp.com",))

    report = await MeetingAuditor(graph, CONFIG, directory=directory).audit(
        [_room()], WINDOW, GhostMeetingPredicate()
    )

    statuses = {row.organizer: row.organizer_status for row in report.rows}
    assert statuses == {
        "alice@corp.com": IdentityStatus.NOT_FOUND,
        "bob@corp.com": IdentityStatus.ACTIVE,
    }
    assert any("alice@corp.com" in warning for warning in report.warnings)


@pytest.mark.asyncio
async def test_underutilization_audit_end_to_end(calendar_graph, event):
    graph = calendar_graph(
        {
            "room.a@corp.com": [
                event("small", "2025-03-10T09:00:00", "2025-03-10T10:00:00", required=["bob@corp.com"]),
                event(
                    "busy",
                    "2025-03-11T09:00:00",
                    "2025-03-11T10:00:00",
                    required=["bob@corp.com", "carol@corp.com"],
                ),
            ]
        }
    )
    directory = CountingDirectory({"alice@corp.com": True})
    predicate = UnderutilizationPredicate(minimum_capacity=6, max_participants=2)

    report = await MeetingAuditor(graph, CONFIG, directory=directory).audit([_room()], WINDOW, predicate)

    assert report.kind is AuditKind.UNDERUTILIZED_ROOMS
    assert [row.unique_id for row in report.rows] == ["ical-small"]
    assert report.notifications == []


@pytest.mark.asyncio
async def test_audit_rejects_missing_arguments(calendar_graph):
    auditor = MeetingAuditor(calendar_graph({}), CONFIG, directory=CountingDirectory({}))

    with pytest.raises(ValueError):
        await auditor.audit(None, WINDOW, GhostMeetingPredicate())
    with pytest.raises(ValueError):
        await auditor.audit([], None, GhostMeetingPredicate())
    with pytest.raises(ValueError):
        await auditor.audit([], WINDOW, None)
