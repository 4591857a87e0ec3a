# tests/conftest.py
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

import pytest
from fastapi.testclient import TestClient

from room_audit.main import create_app
from room_audit.services.graph_client import GraphClientError, ResultSizeExceededError


@pytest.fixture(scope="session")
def client() -> TestClient:
    """
    Shared TestClient fixture for HTTP-level tests.
    """
    app = create_app()
    with TestClient(app) as test_client:
        yield test_client


def _parse(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def make_event(
    event_id: str,
    start: str,
    end: str,
    organizer: Optional[str] = "alice@corp.com",
    required: Iterable[str] = (),
    optional: Iterable[str] = (),
    resources: Iterable[str] = (),
    subject: str = "Sync",
    event_type: str = "singleInstance",
) -> Dict[str, Any]:
    """
    Build a Graph event payload as returned by GET /users/{id}/events/{id}.
    """
    attendees = [
        {"type": kind, "emailAddress": {"address": address, "name": address}}
        for kind, addresses in (("required", required), ("optional", optional), ("resource", resources))
        for address in addresses
    ]
    return {
        "id": event_id,
        "iCalUId": f"ical-{event_id}",
        "subject": subject,
        "type": event_type,
        "start": {"dateTime": start, "timeZone": "UTC"},
        "end": {"dateTime": end, "timeZone": "UTC"},
        "organizer": {"emailAddress": {"address": organizer}} if organizer is not None else None,
        "attendees": attendees,
    }


class FakeCalendarGraph:
    """
    In-memory stand-in for GraphClient serving room calendars.

    - `calendars` maps a room address to its Graph event payloads.
    - `bind_failures` lists rooms whose calendar cannot be bound.
    - `max_items` mimics the provider result ceiling for calendarView.
    - `failing_events` lists event ids whose full load fails.
    - `failing_windows` lists (start, end) calendarView windows that fail.
    """

    def __init__(
        self,
        calendars: Dict[str, List[Dict[str, Any]]],
        bind_failures: Iterable[str] = (),
        max_items: Optional[int] = None,
        failing_events: Iterable[str] = (),
        failing_windows: Iterable[tuple] = (),
    ) -> None:
        self.calendars = calendars
        self.bind_failures = set(bind_failures)
        self.max_items = max_items
        self.failing_events = set(failing_events)
        self.failing_windows = set(failing_windows)
        self.view_queries: List[tuple] = []
        self.loaded_events: List[str] = []

    @staticmethod
    def _mailbox(path: str) -> str:
        return path.split("/users/", 1)[1].split("/", 1)[0]

    async def get_json(self, path: str, params=None, headers=None) -> Dict[str, Any]:
        mailbox = self._mailbox(path)
        if path.endswith("/calendar"):
            if mailbox in self.bind_failures:
                raise GraphClientError("Access is denied", status_code=403)
            return {"id": f"cal-{mailbox}", "name": "Calendar"}

        event_id = path.rsplit("/events/", 1)[1]
        if event_id in self.failing_events:
            raise GraphClientError("item load failed", status_code=503)
        self.loaded_events.append(event_id)
        for event in self.calendars.get(mailbox, []):
            if event["id"] == event_id:
                return event
        raise GraphClientError("not found", status_code=404)

    async def get_paged(self, path: str, params=None, headers=None, max_items=None) -> List[Dict[str, Any]]:
        mailbox = self._mailbox(path)
        start = _parse(params["startDateTime"])
        end = _parse(params["endDateTime"])
        self.view_queries.append((start, end))

        if (start, end) in self.failing_windows:
            raise GraphClientError("chunk failed", status_code=500)

        matches = [
            {"id": event["id"]}
            for event in self.calendars.get(mailbox, [])
            if _parse(event["start"]["dateTime"] + "+00:00") < end
            and _parse(event["end"]["dateTime"] + "+00:00") > start
        ]
        if self.max_items is not None and len(matches) > self.max_items:
            raise ResultSizeExceededError("ErrorExceededFindCountLimit", code="ErrorExceededFindCountLimit")
        return matches


@pytest.fixture
def utc():
    def _utc(*args) -> datetime:
        return datetime(*args, tzinfo=timezone.utc)

    return _utc


@pytest.fixture
def calendar_graph():
    """
    Factory for FakeCalendarGraph instances.
    """
    return FakeCalendarGraph


@pytest.fixture
def event():
    """
    Factory for Graph event payloads.
    """
    return make_event
