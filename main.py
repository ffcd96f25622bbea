"""Meta Graph MCP Server.

Serves, from one FastAPI app:
- the OAuth 2.0 authorization server that bridges MCP clients to Facebook Login (oauth/)
- the MCP tools over Streamable HTTP at /mcp, guarded by the issued bearer tokens

MCP clients discover /.well-known/oauth-authorization-server, register,
authorize through Facebook, and then call /mcp with the bearer token.
"""
import asyncio
import contextlib
import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from starlette.middleware import Middleware

from config import Settings, load_config
from graph_client import GraphClient
from logging_config import setup_logging
from oauth import jwt_utils
from oauth.endpoints import init_oauth_routes, router as oauth_router
from oauth.middleware import MCPOAuthMiddleware, PermissiveCORSMiddleware
from oauth.stores import run_sweeper
from oauth.upstream import FacebookTokenExchanger
from tools import init_tools, mcp

logger = logging.getLogger(__name__)

VERSION = "1.0.0"


def create_app(settings: Settings, exchanger: Optional[FacebookTokenExchanger] = None) -> FastAPI:
    """Build the application.

    Args:
        settings: Loaded configuration
        exchanger: Facebook code exchanger; built from ``settings`` if omitted
    """
    jwt_utils.configure_secret(settings.jwt_secret)
    init_tools(settings.user_agent)

    if exchanger is None:
        exchanger = FacebookTokenExchanger(
            settings.app_id,
            settings.app_secret,
            GraphClient(user_agent=settings.user_agent),
        )

    # Create FastMCP app with OAuth middleware BEFORE FastAPI app
    # (We need the lifespan from mcp_http_app for FastAPI)
    mcp_http_app = mcp.http_app(
        path="/",  # Route at root of mounted app
        transport="streamable-http",
        middleware=[Middleware(MCPOAuthMiddleware, server_url=settings.base_url)],
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # FastMCP task group plus the store sweeper for the process lifetime
        async with mcp_http_app.lifespan(app):
            sweeper = asyncio.create_task(run_sweeper())
            try:
                yield
            finally:
                sweeper.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await sweeper

    app = FastAPI(
        title="Meta Graph MCP Server",
        description="MCP tools for Facebook Pages and Instagram Business with an OAuth 2.0 bridge to Facebook Login",
        version=VERSION,
        lifespan=lifespan,
    )

    # CORS for browser-based MCP clients
    app.add_middleware(PermissiveCORSMiddleware)

    init_oauth_routes(settings.base_url, settings.app_id, exchanger)
    app.include_router(oauth_router)

    app.mount("/mcp", mcp_http_app)

    return app


def main() -> None:
    import uvicorn

    settings = load_config()
    setup_logging(settings.log_level, settings.log_json)

    # Validate required credentials
    if not settings.is_valid():
        logger.error("[STARTUP] Missing required Meta API credentials.")
        logger.error("[STARTUP] Set FACEBOOK_APP_ID and FACEBOOK_APP_SECRET environment variables.")
        sys.exit(1)

    app = create_app(settings)

    logger.info(f"[STARTUP] OAuth server ready at {settings.base_url}")
    logger.info(f"[STARTUP] Discovery endpoint: {settings.base_url}/.well-known/oauth-authorization-server")
    logger.info(f"[STARTUP] MCP endpoint: {settings.base_url}/mcp")
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
