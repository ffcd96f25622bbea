"""MCP tools for the Meta Graph MCP server.

Tools read the Meta session of the caller from the bearer token on the
current HTTP request. The Graph API tool catalog builds on
``require_session`` and ``MetaSession.page_token``.
"""

import logging
from typing import Optional

from fastmcp import FastMCP
from fastmcp.exceptions import ToolError
from fastmcp.server.dependencies import get_http_request

from graph_client import DEFAULT_USER_AGENT, GraphAPIError, create_graph_client
from oauth.models import MetaSession
from oauth.session import session_from_authorization
from oauth.upstream import FACEBOOK_SCOPES

logger = logging.getLogger(__name__)

# Create the FastMCP server instance
mcp = FastMCP(
    "meta-graph-api-mcp-server",
    instructions=(
        "Meta Graph API MCP Server for Facebook Pages and Instagram Business. "
        "Connect over HTTP and the server will guide you through Facebook OAuth automatically."
    ),
)

# Set by init_tools()
_user_agent: str = DEFAULT_USER_AGENT


def init_tools(user_agent: str):
    """Configure the User-Agent tools send to the Graph API."""
    global _user_agent
    _user_agent = user_agent


def current_session() -> Optional[MetaSession]:
    """Session for the in-flight HTTP request, or None outside HTTP or when anonymous."""
    try:
        request = get_http_request()
    except RuntimeError:
        return None
    return session_from_authorization(request.headers.get("authorization"))


def require_session() -> MetaSession:
    session = current_session()
    if session is None:
        raise ToolError("Not authenticated")
    return session


def describe_connection(session: Optional[MetaSession]) -> str:
    status = "Authenticated" if session else "Not authenticated"
    lines = [
        "Meta Graph API MCP Server",
        f"- Status: {status}",
        f"- User: {(session.user_name or session.user_id) if session else 'N/A'}",
        f"- Pages: {len(session.page_tokens) if session else 0}",
    ]
    if session:
        for page_id, page in session.page_tokens.items():
            instagram = f", Instagram {page.instagram_business_account_id}" if page.instagram_business_account_id else ""
            lines.append(f"  - {page.name} ({page_id}){instagram}")
    lines.append(f"- Scopes: {', '.join(FACEBOOK_SCOPES)}")
    return "\n".join(lines)


@mcp.tool()
async def test_connection(check_token: bool = False) -> str:
    """Test the Meta Graph API MCP Server connection.

    Args:
        check_token: Also call the Graph API to confirm the Facebook token still works

    Returns:
        Authentication status, user, managed pages and granted scopes
    """
    session = current_session()
    logger.info(f"[TOOL] test_connection invoked, authenticated: {session is not None}")
    report = describe_connection(session)

    if check_token:
        session = require_session()
        try:
            me = await create_graph_client(session, _user_agent).get("/me", params={"fields": "id,name"})
        except GraphAPIError as e:
            raise ToolError(f"Facebook token check failed: {e}") from e
        report += f"\n- Token check: OK ({me.get('name') or me.get('id')})"

    return report
