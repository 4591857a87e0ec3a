# room_audit/services/mailbox.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List
from urllib.parse import quote

from room_audit.services.graph_client import GraphClient

# Ask Graph to express every dateTime in UTC.
UTC_PREFERENCE = {"Prefer": 'outlook.timezone="UTC"'}

EVENT_PROPERTIES = ",".join(
    [
        "id",
        "iCalUId",
        "subject",
        "start",
        "end",
        "type",
        "organizer",
        "attendees",
    ]
)


def _graph_datetime(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class MailboxView:
    """
    A Graph session scoped to one mailbox.

    The application session itself is shared, but every calendar call for a
    room goes through a view bound to that room's address. Views are
    immutable, so the mailbox a call acts on is fixed when the view is created.
    """

    graph: GraphClient
    mailbox: str

    @property
    def base_path(self) -> str:
        return f"/v1.0/users/{quote(self.mailbox, safe='@')}"

    async def bind_calendar(self) -> Dict[str, Any]:
        """
        Resolve the mailbox's default calendar. Fails when the mailbox does not
        exist or the application is not allowed to read it.
        """
        return await self.graph.get_json(
            f"{self.base_path}/calendar",
            params={"$select": "id,name"},
        )

    async def list_event_ids(
        self,
        start: datetime,
        end: datetime,
        max_items: int | None = None,
    ) -> List[str]:
        """
        List the ids of all calendar items between `start` and `end`, expanding
        recurring series into their occurrences. Only the id is selected to
        keep the payload small.
        """
        items = await self.graph.get_paged(
            f"{self.base_path}/calendarView",
            params={
                "startDateTime": _graph_datetime(start),
                "endDateTime": _graph_datetime(end),
                "$select": "id",
                "$top": 100,
            },
            headers=UTC_PREFERENCE,
            max_items=max_items,
        )
        return [item["id"] for item in items if item.get("id")]

    async def load_event(self, event_id: str) -> Dict[str, Any]:
        """
        Load the full property set of a single calendar item.
        """
        return await self.graph.get_json(
            f"{self.base_path}/events/{quote(event_id, safe='')}",
            params={"$select": EVENT_PROPERTIES},
            headers=UTC_PREFERENCE,
        )
