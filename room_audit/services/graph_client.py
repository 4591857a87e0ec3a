# room_audit/services/graph_client.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import httpx

from room_audit.core.config import get_settings

logger = logging.getLogger(__name__)

# Graph / Exchange error codes meaning "the query matched more items than the
# provider is willing to return".
RESULT_SIZE_ERROR_CODES = frozenset({"ErrorExceededFindCountLimit"})


class GraphClientError(RuntimeError):
    """
    Raised when the GraphClient cannot obtain an access token or when a
    Graph API call fails in a non-recoverable way.
    """

    def __init__(self, message: str, status_code: int | None = None, code: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.code = code


class GraphNotFoundError(GraphClientError):
    """
    Raised when Graph answers 404 for the requested object.
    """


class ResultSizeExceededError(GraphClientError):
    """
    Raised when a query returns more items than the provider (or the
    configured client-side ceiling) allows.

    This is a recognized condition rather than a failure: callers split the
    query into smaller windows.
    """


@dataclass
class _TokenState:
    access_token: str
    expires_at: datetime


def _error_code(resp: httpx.Response) -> str | None:
    try:
        payload = resp.json()
    except ValueError:
        return None
    if not isinstance(payload, dict):
        return None
    error = payload.get("error")
    if isinstance(error, dict):
        return error.get("code")
    return None


class GraphClient:
    """
    Minimal Microsoft Graph API client using client-credentials flow.

    Responsibilities
    ----------------
    - Fetch and cache an access token using the OAuth2 client-credentials flow.
    - Provide GET helpers for single resources and paged collections.
    - Translate Graph error payloads into the GraphClientError family.

    Notes
    -----
    - Token caching is in-memory for this process only.
    - A small safety margin is applied when calculating token expiry to avoid
      edge cases near expiration.
    """

    def __init__(
        self,
        tenant_id: str,
        client_id: str,
        client_secret: str,
        base_url: str = "https://graph.microsoft.com",
        scope: str = "https://graph.microsoft.com/.default",
        timeout_seconds: float = 30.0,
    ) -> None:
        if not tenant_id or not client_id or not client_secret:
            raise ValueError("tenant_id, client_id and client_secret are required")

        self._tenant_id = tenant_id
        self._client_id = client_id
        self._client_secret = client_secret
        self._base_url = base_url.rstrip("/")
        self._scope = scope
        self._timeout_seconds = timeout_seconds

        self._token_state: Optional[_TokenState] = None

    @property
    def token_url(self) -> str:
        return f"https://login.microsoftonline.com/{self._tenant_id}/oauth2/v2.0/token"

    async def _fetch_token(self) -> _TokenState:
        data = {
            "client_id": self._client_id,
            "client_secret": self._client_secret,
            "grant_type": "client_credentials",
            "scope": self._scope,
        }

        try:
            async with httpx.AsyncClient(timeout=self._timeout_seconds) as client:
                resp = await client.post(self.token_url, data=data)
        except httpx.HTTPError as exc:
            raise GraphClientError(f"Token request failed: {exc}") from exc

        if resp.status_code != 200:
            raise GraphClientError(
                f"Failed to obtain Graph token (status={resp.status_code}): {resp.text}",
                status_code=resp.status_code,
            )

        try:
            payload = resp.json()
        except ValueError as exc:
            raise GraphClientError("Token response from Azure AD is not JSON") from exc

        access_token = payload.get("access_token") if isinstance(payload, dict) else None
        expires_in = payload.get("expires_in") if isinstance(payload, dict) else None

        if not access_token or not isinstance(expires_in, (int, float)):
            raise GraphClientError(
                "Invalid token response from Azure AD (missing access_token/expires_in)"
            )

        # Refresh slightly before real expiry.
        now = datetime.now(tz=timezone.utc)
        safety_margin = 60  # seconds
        expires_at = now + timedelta(seconds=float(expires_in) - safety_margin)

        logger.debug("Obtained Graph token valid until %s", expires_at.isoformat())
        return _TokenState(access_token=access_token, expires_at=expires_at)

    async def get_access_token(self) -> str:
        """
        Return a valid access token, using a cached value if still valid.
        """
        now = datetime.now(tz=timezone.utc)
        if self._token_state and self._token_state.expires_at > now:
            return self._token_state.access_token

        self._token_state = await self._fetch_token()
        return self._token_state.access_token

    def _build_url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self._base_url}/{path.lstrip('/')}"

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        json: Any = None,
    ) -> httpx.Response:
        """
        Issue an authenticated HTTP request to Graph and return the raw response.

        `path` may be an absolute URL (e.g. an `@odata.nextLink`) or a path
        relative to the configured base_url.
        """
        token = await self.get_access_token()
        url = self._build_url(path)

        request_headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
        }
        if headers:
            request_headers.update(headers)

        logger.debug("Graph %s %s params=%s", method.upper(), url, params)
        try:
            async with httpx.AsyncClient(timeout=self._timeout_seconds) as client:
                resp = await client.request(
                    method=method.upper(),
                    url=url,
                    headers=request_headers,
                    params=params,
                    json=json,
                )
        except httpx.HTTPError as exc:
            raise GraphClientError(f"Graph {method.upper()} {url} failed: {exc}") from exc
        return resp

    def _raise_for_status(self, method: str, resp: httpx.Response) -> None:
        if resp.status_code // 100 == 2:
            return

        code = _error_code(resp)
        message = f"Graph {method} failed (status={resp.status_code}, code={code}): {resp.text}"
        if code in RESULT_SIZE_ERROR_CODES:
            raise ResultSizeExceededError(message, status_code=resp.status_code, code=code)
        if resp.status_code == 404:
            raise GraphNotFoundError(message, status_code=resp.status_code, code=code)
        raise GraphClientError(message, status_code=resp.status_code, code=code)

    async def get_json(
        self,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """
        Issue a GET request to a Graph endpoint and return the JSON payload.

        Raises
        ------
        GraphNotFoundError
            On HTTP 404.
        ResultSizeExceededError
            When Graph reports that the query matched too many items.
        GraphClientError
            On any other non-2xx response, or when the body is not a JSON object.
        """
        resp = await self._request("GET", path, params=params, headers=headers)
        self._raise_for_status("GET", resp)
        try:
            payload = resp.json()
        except ValueError as exc:
            raise GraphClientError(
                f"Graph GET {path} returned a non-JSON body", status_code=resp.status_code
            ) from exc
        if not isinstance(payload, dict):
            raise GraphClientError(
                f"Graph GET {path} returned {type(payload).__name__} instead of an object",
                status_code=resp.status_code,
            )
        return payload

    async def get_paged(
        self,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        max_items: int | None = None,
    ) -> List[Dict[str, Any]]:
        """
        GET a Graph collection and follow `@odata.nextLink` until exhausted.

        The next link already carries the original query, so `params` are
        only sent with the first request. When `max_items` is given and the
        collection grows beyond it, ResultSizeExceededError is raised instead
        of returning a truncated list.
        """
        items: List[Dict[str, Any]] = []
        next_path: str | None = path
        next_params = params

        while next_path:
            payload = await self.get_json(next_path, params=next_params, headers=headers)
            page = payload.get("value", [])
            if not isinstance(page, list) or not all(isinstance(item, dict) for item in page):
                raise GraphClientError(f"Graph GET {path} returned a malformed collection page")
            items.extend(page)

            if max_items is not None and len(items) > max_items:
                raise ResultSizeExceededError(
                    f"Query {path} returned more than {max_items} items",
                    code="ClientResultCeiling",
                )

            next_path = payload.get("@odata.nextLink")
            next_params = None

        return items


_graph_client_instance: Optional[GraphClient] = None


def get_graph_client() -> GraphClient:
    """
    Lazily construct the shared GraphClient instance from application settings.
    """
    global _graph_client_instance
    if _graph_client_instance is None:
        settings = get_settings()
        if not settings.graph_configured:
            raise GraphClientError(
                "GRAPH_TENANT_ID, GRAPH_CLIENT_ID and GRAPH_CLIENT_SECRET must be "
                "configured in settings to use the shared Graph client."
            )
        _graph_client_instance = GraphClient(
            tenant_id=settings.GRAPH_TENANT_ID,
            client_id=settings.GRAPH_CLIENT_ID,
            client_secret=settings.GRAPH_CLIENT_SECRET,
            base_url=str(settings.GRAPH_BASE_URL or "https://graph.microsoft.com"),
        )
    return _graph_client_instance
