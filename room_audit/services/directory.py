# room_audit/services/directory.py
from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Protocol
from urllib.parse import quote

from room_audit.schemas.identity import UNKNOWN_DIRECTORY_TYPE, DirectoryEntry
from room_audit.services.graph_client import GraphClient, GraphClientError, GraphNotFoundError

logger = logging.getLogger(__name__)

USER_PROPERTIES = "id,mail,userPrincipalName"


class Directory(Protocol):
    """
    Lookup surface the identity classifier needs from a directory.
    """

    async def find(self, address: str) -> Optional[DirectoryEntry]:
        """
        Return the account for `address`, None when it does not exist.

        Raises GraphClientError (or another exception) when the directory
        cannot be reached.
        """
        ...

    async def account_enabled(self, entry: DirectoryEntry) -> Optional[bool]:
        """
        Return the enabled state of a user account, None when unavailable.
        """
        ...


class GraphDirectory:
    """
    Azure AD / Exchange Online directory backed by Microsoft Graph.

    - Accounts are looked up by address with `GET /users/{address}`, which
      resolves userPrincipalNames. Addresses that are only a primary SMTP
      address fall back to `GET /users?$filter=mail eq '{address}'`.
    - The mailbox purpose (user, shared, room, equipment, ...) comes from
      `mailboxSettings.userPurpose`.
    - The enabled state comes from `accountEnabled`, which needs its own
      permission and may therefore be unavailable.
    """

    def __init__(self, graph_client: GraphClient) -> None:
        self.graph = graph_client

    async def find(self, address: str) -> Optional[DirectoryEntry]:
        try:
            payload = await self.graph.get_json(
                f"/v1.0/users/{quote(address, safe='@')}",
                params={"$select": USER_PROPERTIES},
            )
        except GraphNotFoundError:
            payload = await self._find_by_mail(address)
            if payload is None:
                return None

        user_id = payload["id"]
        return DirectoryEntry(
            id=user_id,
            address=(payload.get("mail") or payload.get("userPrincipalName") or address).lower(),
            directory_type=await self._mailbox_purpose(user_id),
        )

    async def _find_by_mail(self, address: str) -> Optional[Dict[str, Any]]:
        # OData string literals escape a quote by doubling it.
        escaped = address.replace("'", "''")
        payload = await self.graph.get_json(
            "/v1.0/users",
            params={
                "$filter": f"mail eq '{escaped}'",
                "$select": USER_PROPERTIES,
                "$top": 1,
            },
        )
        matches = payload.get("value") or []
        return matches[0] if matches else None

    async def account_enabled(self, entry: DirectoryEntry) -> Optional[bool]:
        try:
            payload = await self.graph.get_json(
                f"/v1.0/users/{entry.id}",
                params={"$select": "accountEnabled"},
            )
        except GraphClientError as exc:
            logger.warning("Enabled state unavailable for %s: %s", entry.address, exc)
            return None

        value = payload.get("accountEnabled")
        return value if isinstance(value, bool) else None

    async def _mailbox_purpose(self, user_id: str) -> str:
        try:
            payload = await self.graph.get_json(
                f"/v1.0/users/{user_id}/mailboxSettings",
                params={"$select": "userPurpose"},
            )
        except GraphClientError as exc:
            # Accounts without a mailbox answer 404 here as well.
            logger.debug("No mailbox settings for %s: %s", user_id, exc)
            return UNKNOWN_DIRECTORY_TYPE

        purpose = payload.get("userPurpose")
        return purpose.lower() if isinstance(purpose, str) and purpose else UNKNOWN_DIRECTORY_TYPE
