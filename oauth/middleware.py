"""HTTP middleware for the MCP endpoint and the OAuth surface.

- MCPOAuthMiddleware validates Bearer tokens on the Streamable HTTP MCP app
- PermissiveCORSMiddleware opens every endpoint to browser-based MCP clients
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.middleware.cors import CORSMiddleware
from starlette.responses import Response

from oauth.session import session_from_authorization

logger = logging.getLogger(__name__)


class MCPOAuthMiddleware(BaseHTTPMiddleware):
    """Reject MCP requests whose bearer token doesn't resolve to a Meta session."""

    def __init__(self, app, server_url: str = ""):
        super().__init__(app)
        self.server_url = server_url.rstrip("/")

    def _unauthorized(self, description: str) -> JSONResponse:
        return JSONResponse(
            {"error": "unauthorized", "error_description": description},
            status_code=401,
            headers={
                "WWW-Authenticate": f'Bearer resource_metadata="{self.server_url}/.well-known/oauth-protected-resource"',
                "Access-Control-Allow-Origin": "*",
            },
        )

    async def dispatch(self, request: Request, call_next):
        if request.method == "OPTIONS":
            return await call_next(request)

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            logger.info("[AUTH] Request rejected: no Bearer token")
            return self._unauthorized("Missing or invalid Authorization header")

        session = session_from_authorization(auth_header)
        if session is None:
            logger.info("[AUTH] Request rejected: invalid or expired token")
            return self._unauthorized("Invalid or expired token")

        logger.debug(f"[AUTH] Request authorized for user {session.user_id}")
        return await call_next(request)


class PermissiveCORSMiddleware(CORSMiddleware):
    """CORS for any origin, answering preflight requests with 204 No Content."""

    def __init__(self, app):
        super().__init__(
            app,
            allow_origins=["*"],
            allow_methods=["*"],
            allow_headers=["*"],
            expose_headers=["WWW-Authenticate", "Mcp-Session-Id"],
        )

    def preflight_response(self, request_headers) -> Response:
        response = super().preflight_response(request_headers)
        if response.status_code != 200:
            return response
        headers = {
            k: v for k, v in response.headers.items()
            if k.lower() not in ("content-length", "content-type")
        }
        return Response(status_code=204, headers=headers)
