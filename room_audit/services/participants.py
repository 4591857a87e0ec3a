# room_audit/services/participants.py
from __future__ import annotations

from typing import Iterable, Optional

from room_audit.schemas.report import ParticipantSet
from room_audit.services.identity_classifier import normalize_address


def resolve_participants(
    organizer: Optional[str],
    required: Iterable[Optional[str]],
    optional: Iterable[Optional[str]],
    resource_address: str,
) -> ParticipantSet:
    """
    Distinct participants of a meeting: organizer plus required and optional
    attendees, case-normalized, without blanks and without the room itself,
    sorted for deterministic output.
    """
    room = normalize_address(resource_address)
    distinct = set()

    for address in (organizer, *required, *optional):
        normalized = normalize_address(address)
        if normalized and normalized != room:
            distinct.add(normalized)

    addresses = sorted(distinct)
    return ParticipantSet(count=len(addresses), addresses=addresses)
