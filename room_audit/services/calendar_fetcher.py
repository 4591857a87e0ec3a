# room_audit/services/calendar_fetcher.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from room_audit.schemas.calendar import MeetingRecord, TimeWindow
from room_audit.services.graph_client import (
    GraphClient,
    GraphClientError,
    ResultSizeExceededError,
)
from room_audit.services.mailbox import MailboxView
from room_audit.services.time_window import month_chunks, split_in_half

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITEMS_PER_QUERY = 1000
# Chunks shorter than this are not split any further.
MIN_CHUNK_SPAN = timedelta(days=1)


@dataclass
class CalendarFetchResult:
    """
    Everything retrieved for one room, plus what went wrong along the way.
    """

    resource: str
    records: List[MeetingRecord] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    chunked: bool = False


def parse_graph_datetime(dt_obj: Dict[str, Any] | None) -> Optional[datetime]:
    """
    Convert a Graph dateTimeTimeZone object into an aware UTC datetime.

    Graph returns naive timestamps with a separate `timeZone`; calendar calls
    ask for UTC, so naive values are taken as UTC.
    """
    if not dt_obj or not dt_obj.get("dateTime"):
        return None
    raw = dt_obj["dateTime"].replace("Z", "+00:00")
    # Graph emits seven fractional digits, more than fromisoformat accepts.
    if "." in raw:
        head, _, tail = raw.partition(".")
        digits = tail
        for index, ch in enumerate(tail):
            if not ch.isdigit():
                digits = tail[:index]
                break
        offset = tail[len(digits):]
        raw = f"{head}.{digits[:6]}{offset}"
    dt = datetime.fromisoformat(raw)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _email_address(entry: Dict[str, Any] | None) -> Optional[str]:
    if not entry:
        return None
    address = ((entry.get("emailAddress") or {}).get("address") or "").strip()
    return address or None


def normalize_event(resource: str, event: Dict[str, Any]) -> MeetingRecord:
    """
    Build a MeetingRecord from a raw Graph event.

    Rules
    -----
    - Any event type other than `singleInstance` is a recurring instance.
    - Attendees of type `required` / `optional` populate the two lists;
      `resource` attendees (rooms, equipment) are dropped.
    - Attendees without an address are dropped.
    - The iCalUId is the stable id, falling back to the Graph event id.
    """
    start = parse_graph_datetime(event.get("start"))
    end = parse_graph_datetime(event.get("end"))
    if start is None or end is None:
        raise ValueError(f"event {event.get('id')} has no start/end")

    required: List[str] = []
    optional: List[str] = []
    for attendee in event.get("attendees") or []:
        address = _email_address(attendee)
        if address is None:
            continue
        kind = (attendee.get("type") or "required").lower()
        if kind == "optional":
            optional.append(address)
        elif kind == "required":
            required.append(address)

    event_type = event.get("type") or "singleInstance"

    return MeetingRecord(
        resource=resource,
        subject=event.get("subject") or "",
        start=start,
        end=end,
        is_recurring_instance=event_type != "singleInstance",
        organizer=_email_address(event.get("organizer")),
        required_attendees=required,
        optional_attendees=optional,
        unique_id=event.get("iCalUId") or event["id"],
    )


class CalendarWindowFetcher:
    """
    Retrieves every meeting in a room calendar for a time window.

    Behavior
    --------
    1) Query the full window for event ids only.
    2) If the provider reports too many results, query consecutive
       month-long chunks instead (splitting a chunk in halves while it is still
       too large and longer than a day).
    3) Load each event's full property set individually and normalize it.

    Failures are contained: a chunk or an item that cannot be read is logged
    and skipped, and a calendar that cannot be bound yields no records. The
    result is fully materialized before it is returned.
    """

    def __init__(
        self,
        graph_client: GraphClient,
        max_items_per_query: int = DEFAULT_MAX_ITEMS_PER_QUERY,
    ) -> None:
        if max_items_per_query < 1:
            raise ValueError("max_items_per_query must be positive")
        self.graph = graph_client
        self.max_items_per_query = max_items_per_query

    async def fetch_window(self, resource_address: str, window: TimeWindow) -> List[MeetingRecord]:
        """
        Return all MeetingRecords for `resource_address` within `window`.
        """
        result = await self.fetch(resource_address, window)
        return result.records

    async def fetch(self, resource_address: str, window: TimeWindow) -> CalendarFetchResult:
        if not resource_address:
            raise ValueError("resource_address is required")
        if not isinstance(window, TimeWindow):
            raise ValueError("window must be a TimeWindow")

        result = CalendarFetchResult(resource=resource_address)
        mailbox = MailboxView(self.graph, resource_address)

        try:
            await mailbox.bind_calendar()
        except GraphClientError as exc:
            self._warn(result, f"cannot bind calendar of {resource_address}: {exc}")
            return result

        try:
            event_ids = await mailbox.list_event_ids(
                window.start, window.end, max_items=self.max_items_per_query
            )
        except ResultSizeExceededError:
            logger.info(
                "Too many items in %s for %s..%s, retrieving month by month",
                resource_address,
                window.start.isoformat(),
                window.end.isoformat(),
            )
            result.chunked = True
            event_ids = []
            for chunk in month_chunks(window):
                event_ids.extend(await self._ids_for_chunk(mailbox, chunk, result))
        except GraphClientError as exc:
            self._warn(result, f"cannot query calendar of {resource_address}: {exc}")
            return result

        seen: set[str] = set()
        for event_id in event_ids:
            # Items spanning a chunk boundary are returned by both chunks.
            if event_id in seen:
                continue
            seen.add(event_id)
            record = await self._load_record(mailbox, event_id, result)
            if record is not None:
                result.records.append(record)

        logger.info(
            "Fetched %d meetings from %s (%s)",
            len(result.records),
            resource_address,
            "chunked" if result.chunked else "single query",
        )
        return result

    async def _ids_for_chunk(
        self,
        mailbox: MailboxView,
        chunk: TimeWindow,
        result: CalendarFetchResult,
    ) -> List[str]:
        try:
            return await mailbox.list_event_ids(
                chunk.start, chunk.end, max_items=self.max_items_per_query
            )
        except ResultSizeExceededError as exc:
            if chunk.end - chunk.start <= MIN_CHUNK_SPAN:
                self._warn(result, f"chunk {self._describe(chunk)} of {mailbox.mailbox} still too large: {exc}")
                return []
            ids: List[str] = []
            for half in split_in_half(chunk):
                ids.extend(await self._ids_for_chunk(mailbox, half, result))
            return ids
        except GraphClientError as exc:
            self._warn(result, f"chunk {self._describe(chunk)} of {mailbox.mailbox} failed: {exc}")
            return []

    async def _load_record(
        self,
        mailbox: MailboxView,
        event_id: str,
        result: CalendarFetchResult,
    ) -> Optional[MeetingRecord]:
        try:
            event = await mailbox.load_event(event_id)
        except GraphClientError as exc:
            self._warn(result, f"cannot load item {event_id} from {mailbox.mailbox}: {exc}")
            return None

        try:
            return normalize_event(mailbox.mailbox, event)
        except (KeyError, ValueError, ValidationError) as exc:
            self._warn(result, f"skipping malformed item {event_id} from {mailbox.mailbox}: {exc}")
            return None

    @staticmethod
    def _describe(chunk: TimeWindow) -> str:
        return f"{chunk.start.isoformat()}..{chunk.end.isoformat()}"

    @staticmethod
    def _warn(result: CalendarFetchResult, message: str) -> None:
        logger.warning(message)
        result.warnings.append(message)
