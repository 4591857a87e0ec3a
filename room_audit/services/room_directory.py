# room_audit/services/room_directory.py
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

from room_audit.schemas.calendar import ResourceRef
from room_audit.services.graph_client import GraphClient

logger = logging.getLogger(__name__)


class RoomDirectory:
    """
    Lists bookable meeting rooms from Graph Places.

        GET /v1.0/places/microsoft.graph.room

    Rooms come back in the order Graph returns them, which is also the order
    the audit visits them.
    """

    def __init__(self, graph_client: GraphClient) -> None:
        self.graph = graph_client

    async def list_rooms(
        self,
        addresses: Optional[Iterable[str]] = None,
        min_capacity: Optional[int] = None,
    ) -> List[ResourceRef]:
        """
        Return the rooms to audit.

        Parameters
        ----------
        addresses:
            Optional allow-list of room addresses (case-insensitive).
        min_capacity:
            When given, rooms with a smaller or unknown capacity are left out.
        """
        payload = await self.graph.get_paged("/v1.0/places/microsoft.graph.room")
        allowed = {address.strip().lower() for address in addresses or [] if address.strip()}

        rooms: List[ResourceRef] = []
        for place in payload:
            room = self._to_resource(place)
            if room is None:
                continue
            if allowed and room.address.lower() not in allowed:
                continue
            if min_capacity is not None and (room.capacity is None or room.capacity < min_capacity):
                continue
            rooms.append(room)

        if allowed:
            missing = allowed - {room.address.lower() for room in rooms}
            for address in sorted(missing):
                logger.warning("Configured room %s not found or filtered out", address)

        logger.info("Selected %d rooms for audit", len(rooms))
        return rooms

    @staticmethod
    def _to_resource(place: Dict[str, Any]) -> Optional[ResourceRef]:
        address = (place.get("emailAddress") or "").strip()
        if not address:
            return None
        capacity = place.get("capacity")
        return ResourceRef(
            address=address,
            display_name=place.get("displayName") or address,
            capacity=capacity if isinstance(capacity, int) and capacity >= 0 else None,
        )
