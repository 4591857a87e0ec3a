# room_audit/services/identity_classifier.py
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional

from room_audit.schemas.identity import DirectoryEntry, IdentityState, IdentityStatus
from room_audit.services.directory import Directory

logger = logging.getLogger(__name__)


def normalize_address(address: str | None) -> str:
    return (address or "").strip().lower()


def normalize_suffix(suffix: str | None) -> str | None:
    value = normalize_address(suffix).lstrip("@")
    return value or None


@dataclass(frozen=True)
class ClassifierConfig:
    """
    Plain configuration values for identity classification.

    organization_suffix:
        Internal mail domain without the `@`, e.g. "corp.com". None means
        every address is treated as external.
    """

    organization_suffix: str | None = None

    @property
    def suffix(self) -> str | None:
        return normalize_suffix(self.organization_suffix)


class IdentityClassifier:
    """
    Classifies an address as Active, Disabled, NotFound or External.

    Decision procedure
    ------------------
    1) Compare addresses case-insensitively.
    2) Outside the organization suffix (or no suffix configured): look up
       `localPart@suffix`. When it exists, continue with that account and
       mark the identity as matched; otherwise the address is External.
    3) Inside the suffix: look the address up; no account means NotFound.
    4) Shared, room and equipment mailboxes are always enabled; other
       accounts take their enabled state from the directory, None when that
       is unavailable.
    5) Disabled iff enabled is False, Active otherwise.

    The classifier never mutates the directory and keeps no state between
    calls; caching belongs to IdentityCache.
    """

    def __init__(self, directory: Directory, config: ClassifierConfig) -> None:
        self.directory = directory
        self.config = config

    async def classify(self, address: str) -> IdentityState:
        normalized = normalize_address(address)
        if not normalized:
            raise ValueError("address is required")

        suffix = self.config.suffix
        resolved_internal: str | None = None
        entry: Optional[DirectoryEntry]

        if suffix is None or not normalized.endswith(f"@{suffix}"):
            if suffix is None:
                return self._external(normalized)

            local_part = normalized.split("@", 1)[0]
            candidate = f"{local_part}@{suffix}"
            entry = await self.directory.find(candidate)
            if entry is None:
                return self._external(normalized)
            resolved_internal = candidate
        else:
            entry = await self.directory.find(normalized)
            if entry is None:
                return IdentityState(address=normalized, status=IdentityStatus.NOT_FOUND)

        if entry.is_resource:
            enabled: bool | None = True
        else:
            enabled = await self.directory.account_enabled(entry)

        # Unknown enabled state counts as Active.
        status = IdentityStatus.DISABLED if enabled is False else IdentityStatus.ACTIVE

        return IdentityState(
            address=normalized,
            status=status,
            enabled=enabled,
            directory_type=entry.directory_type,
            resolved_internal_address=resolved_internal,
            matched_internal=resolved_internal is not None,
        )

    @staticmethod
    def _external(address: str) -> IdentityState:
        return IdentityState(
            address=address,
            status=IdentityStatus.EXTERNAL,
            enabled=None,
            resolved_internal_address=None,
            matched_internal=False,
        )


class IdentityCache:
    """
    Insert-once map from normalized address to IdentityState for one audit run.

    The first caller for a key stores a task computing the state; every other
    caller, concurrent or later, awaits that same task, so the directory is
    queried at most once per address.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, asyncio.Future[IdentityState]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, address: object) -> bool:
        return isinstance(address, str) and normalize_address(address) in self._entries

    async def get_or_compute(
        self,
        address: str,
        compute: Callable[[str], Awaitable[IdentityState]],
    ) -> IdentityState:
        key = normalize_address(address)
        future = self._entries.get(key)
        if future is None:
            # No await between the lookup and the insert: the check-and-set is
            # atomic with respect to other coroutines on this loop.
            future = asyncio.ensure_future(compute(key))
            self._entries[key] = future
        return await asyncio.shield(future)
