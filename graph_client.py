"""Thin async client for the Meta Graph API.

Only the calls the OAuth bridge needs live here: raw GET/POST with Meta's
error envelope turned into GraphAPIError.
"""

import logging
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)

GRAPH_API_VERSION = "v21.0"
GRAPH_API_BASE = f"https://graph.facebook.com/{GRAPH_API_VERSION}"
FACEBOOK_AUTH_ENDPOINT = f"https://www.facebook.com/{GRAPH_API_VERSION}/dialog/oauth"
FACEBOOK_TOKEN_PATH = "/oauth/access_token"

DEFAULT_USER_AGENT = "MetaGraphMCPServer/1.0.0"
DEFAULT_TIMEOUT = 30.0


class GraphAPIError(Exception):
    """A Graph API call failed, either in transport or with an error body."""

    def __init__(
        self,
        message: str,
        code: Optional[int] = None,
        error_type: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(f"Meta API Error [{code}]: {message}")
        self.message = message
        self.code = code
        self.error_type = error_type
        self.status_code = status_code


class GraphClient:
    """Async Graph API client.

    Args:
        access_token: Default token for calls that don't pass their own
        user_agent: Sent with every request
        http_client: Shared ``httpx.AsyncClient``; one is created per call if omitted
    """

    def __init__(
        self,
        access_token: Optional[str] = None,
        user_agent: str = DEFAULT_USER_AGENT,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.access_token = access_token
        self.user_agent = user_agent
        self._http_client = http_client

    async def get(
        self,
        path: str,
        params: Optional[dict[str, Any]] = None,
        access_token: Optional[str] = None,
    ) -> dict:
        params = dict(params or {})
        token = access_token or self.access_token
        if token:
            params["access_token"] = token
        return await self._request("GET", path, params=params)

    async def post(
        self,
        path: str,
        data: Optional[dict[str, Any]] = None,
        access_token: Optional[str] = None,
    ) -> dict:
        data = dict(data or {})
        token = access_token or self.access_token
        if token:
            data["access_token"] = token
        return await self._request("POST", path, data=data)

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        url = path if path.startswith("http") else f"{GRAPH_API_BASE}{path}"
        headers = {"User-Agent": self.user_agent}

        try:
            if self._http_client is not None:
                response = await self._http_client.request(method, url, headers=headers, **kwargs)
            else:
                async with httpx.AsyncClient(timeout=DEFAULT_TIMEOUT) as client:
                    response = await client.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            raise GraphAPIError(f"Network error: {e}") from e

        return self._handle_response(response)

    @staticmethod
    def _handle_response(response: httpx.Response) -> dict:
        try:
            data = response.json()
        except ValueError:
            data = {}

        error = data.get("error") if isinstance(data, dict) else None
        if response.is_success and not error:
            return data

        error = error if isinstance(error, dict) else {}
        raise GraphAPIError(
            error.get("message") or f"HTTP {response.status_code}",
            code=error.get("code"),
            error_type=error.get("type"),
            status_code=response.status_code,
        )


def create_graph_client(session, user_agent: str = DEFAULT_USER_AGENT) -> GraphClient:
    """Build a client acting with the user token from a resolved MetaSession."""
    return GraphClient(access_token=session.user_access_token, user_agent=user_agent)
