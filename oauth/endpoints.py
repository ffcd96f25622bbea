"""OAuth 2.0 endpoints for MCP clients, bridged to Facebook Login.

This module contains all OAuth-related endpoints:
- Discovery metadata (/.well-known/*)
- Client registration (/oauth/register)
- Authorization flow (/oauth/authorize -> Facebook -> /oauth/callback)
- Token endpoint (/oauth/token)
- Health check (/health) and CORS preflight

An authorization moves through these stages:
STARTED (transaction stored, user sent to Facebook) -> CALLBACK_RECEIVED
-> CODE_ISSUED (local code minted, user sent back to the client)
-> REDEEMED (bearer token issued). Any stage can end in FAILED.
The transaction id travels through Facebook as its ``state`` parameter,
which is how the callback finds the client request again.
"""

import base64
import hashlib
import hmac
import logging
import secrets
from typing import Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from fastapi import APIRouter, Form, Request
from fastapi.responses import JSONResponse, RedirectResponse, Response

from oauth import jwt_utils
from oauth.models import (
    AuthorizationCode,
    IssuedToken,
    PendingAuthorization,
    RegisteredClient,
)
from oauth.stores import (
    CodeAlreadyUsedError,
    InvalidCodeError,
    authorization_codes,
    issued_tokens,
    pending_authorizations,
    registered_clients,
)
from oauth.upstream import (
    FACEBOOK_SCOPES,
    FacebookTokenExchanger,
    TokenExchangeError,
    build_authorization_url,
)

logger = logging.getLogger(__name__)

# Router for OAuth endpoints
router = APIRouter(tags=["oauth"])

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
}

# These will be set by init_oauth_routes()
_server_url: str = ""
_app_id: str = ""
_exchanger: Optional[FacebookTokenExchanger] = None


def init_oauth_routes(server_url: str, app_id: str, exchanger: FacebookTokenExchanger):
    """Initialize OAuth routes with the public base URL and the Facebook exchanger.

    Must be called before including the router in the app.
    """
    global _server_url, _app_id, _exchanger
    _server_url = server_url.rstrip("/")
    _app_id = app_id
    _exchanger = exchanger


def callback_uri() -> str:
    return f"{_server_url}/oauth/callback"


def _json(data: dict, status_code: int = 200) -> JSONResponse:
    return JSONResponse(data, status_code=status_code, headers={"Access-Control-Allow-Origin": "*"})


def _error(error: str, description: str, status_code: int = 400) -> JSONResponse:
    return _json({"error": error, "error_description": description}, status_code=status_code)


def _redirect_with(uri: str, params: dict) -> RedirectResponse:
    """Redirect to ``uri`` with ``params`` merged into its query string."""
    parts = urlsplit(uri)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k not in params]
    query.extend((k, v) for k, v in params.items() if v is not None)
    return RedirectResponse(url=urlunsplit(parts._replace(query=urlencode(query))), status_code=302)


def _pkce_matches(verifier: str, challenge: str, method: Optional[str]) -> bool:
    if (method or "plain") == "S256":
        digest = hashlib.sha256(verifier.encode()).digest()
        expected = base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
    else:
        expected = verifier
    return hmac.compare_digest(expected.encode(), challenge.encode())


# ============== OAuth 2.0 Discovery Endpoints ==============

@router.get("/.well-known/oauth-authorization-server")
async def oauth_authorization_server():
    """OAuth 2.0 Authorization Server Metadata (RFC 8414)."""
    return _json({
        "issuer": _server_url,
        "authorization_endpoint": f"{_server_url}/oauth/authorize",
        "token_endpoint": f"{_server_url}/oauth/token",
        "registration_endpoint": f"{_server_url}/oauth/register",
        "response_types_supported": ["code"],
        "response_modes_supported": ["query"],
        "grant_types_supported": ["authorization_code"],
        "code_challenge_methods_supported": ["S256", "plain"],
        "scopes_supported": FACEBOOK_SCOPES,
        "token_endpoint_auth_methods_supported": ["none", "client_secret_post", "client_secret_basic"],
    })


@router.get("/.well-known/oauth-protected-resource")
async def oauth_protected_resource():
    """OAuth 2.0 Protected Resource Metadata (RFC 9728) for the MCP endpoint."""
    return _json({
        "resource": f"{_server_url}/mcp",
        "authorization_servers": [_server_url],
        "scopes_supported": FACEBOOK_SCOPES,
        "bearer_methods_supported": ["header"],
    })


# ============== Client Registration ==============

@router.post("/oauth/register")
async def register_client(request: Request):
    """OAuth 2.0 Dynamic Client Registration (RFC 7591)."""
    try:
        data = await request.json()
    except ValueError:
        data = {}
    if not isinstance(data, dict):
        data = {}

    redirect_uris = data.get("redirect_uris") or []
    if not isinstance(redirect_uris, list) or not all(isinstance(u, str) for u in redirect_uris):
        return _error("invalid_client_metadata", "redirect_uris must be a list of strings")

    client = RegisteredClient(
        client_id=secrets.token_hex(16),
        client_secret=secrets.token_urlsafe(32),
        redirect_uris=redirect_uris,
        client_name=data.get("client_name") or "MCP Client",
    )
    registered_clients.put(client.client_id, client)

    logger.info(f"[OAUTH] Registered client: {client.client_id}")

    return _json({
        "client_id": client.client_id,
        "client_secret": client.client_secret,
        "client_id_issued_at": int(client.created_at),
        "client_secret_expires_at": 0,
        "client_name": client.client_name,
        "redirect_uris": client.redirect_uris,
        "grant_types": ["authorization_code"],
        "response_types": ["code"],
        "token_endpoint_auth_method": "client_secret_post",
    }, status_code=201)


# ============== Authorization Flow ==============

@router.get("/oauth/authorize")
async def authorize(
    response_type: str = "",
    client_id: str = "",
    redirect_uri: str = "",
    state: str = "",
    scope: str = "",
    code_challenge: str = "",
    code_challenge_method: str = "",
):
    """OAuth 2.0 Authorization Endpoint - redirects to Facebook Login."""
    if not client_id or not redirect_uri or response_type != "code":
        return _error("invalid_request", "Missing required parameters")

    if code_challenge_method and code_challenge_method not in ("S256", "plain"):
        return _error("invalid_request", "Unsupported code_challenge_method")

    txn_id = secrets.token_urlsafe(32)
    pending_authorizations.put(txn_id, PendingAuthorization(
        client_id=client_id,
        redirect_uri=redirect_uri,
        state=state or secrets.token_hex(16),
        scope=scope.split() if scope else list(FACEBOOK_SCOPES),
        code_challenge=code_challenge or None,
        code_challenge_method=(code_challenge_method or "plain") if code_challenge else None,
    ))

    logger.info(f"[OAUTH] Redirecting to Facebook (transaction: {txn_id[:8]}...)")
    return RedirectResponse(url=build_authorization_url(_app_id, callback_uri(), txn_id), status_code=302)


@router.get("/oauth/callback")
async def oauth_callback(
    code: str = "",
    state: str = "",
    error: str = "",
    error_description: str = "",
):
    """Facebook redirect target: finish the upstream exchange and hand a code to the client."""
    txn = pending_authorizations.pop(state) if state else None

    if txn is None:
        # No trusted redirect target without the transaction, so answer directly
        if error:
            logger.warning(f"[OAUTH] Facebook error for unknown transaction: {error} - {error_description}")
        return _error("invalid_request", "Invalid or expired state")

    if error:
        logger.warning(f"[OAUTH] Facebook error: {error} - {error_description}")
        return _redirect_with(txn.redirect_uri, {
            "error": error,
            "error_description": error_description or "Authorization was not granted",
            "state": txn.state,
        })

    if not code:
        return _error("invalid_request", "Missing code or state")

    try:
        session = await _exchanger.exchange(code, callback_uri())
    except TokenExchangeError as e:
        logger.error(f"[OAUTH] Token exchange failed: {e}")
        return _redirect_with(txn.redirect_uri, {
            "error": "server_error",
            "error_description": f"Facebook token exchange failed: {e}",
            "state": txn.state,
        })
    except Exception:
        logger.exception("[OAUTH] Unexpected error during token exchange")
        return _redirect_with(txn.redirect_uri, {
            "error": "server_error",
            "error_description": "Facebook token exchange failed",
            "state": txn.state,
        })

    local_code = secrets.token_urlsafe(32)
    authorization_codes.put(local_code, AuthorizationCode(
        client_id=txn.client_id,
        redirect_uri=txn.redirect_uri,
        session=session,
        code_challenge=txn.code_challenge,
        code_challenge_method=txn.code_challenge_method,
    ))

    logger.info(f"[OAUTH] Success! Redirecting to MCP client {txn.client_id[:8]}...")
    return _redirect_with(txn.redirect_uri, {"code": local_code, "state": txn.state})


# ============== Token Endpoint ==============

@router.post("/oauth/token")
async def token(
    request: Request,
    grant_type: str = Form(None),
    code: str = Form(None),
    redirect_uri: str = Form(None),
    client_id: str = Form(None),
    code_verifier: str = Form(None),
):
    """OAuth 2.0 Token Endpoint."""
    # Handle form data or JSON
    content_type = request.headers.get("content-type", "")
    if grant_type is None and content_type.startswith("application/json"):
        try:
            data = await request.json()
        except ValueError:
            return _error("invalid_request", "Request body must be form-encoded or JSON")
        if not isinstance(data, dict):
            return _error("invalid_request", "Request body must be form-encoded or JSON")
        grant_type = data.get("grant_type")
        code = data.get("code")
        redirect_uri = data.get("redirect_uri")
        client_id = data.get("client_id")
        code_verifier = data.get("code_verifier")

    for value in (code, redirect_uri, code_verifier):
        if value is not None and not isinstance(value, str):
            return _error("invalid_request", "code, redirect_uri and code_verifier must be strings")

    logger.debug(f"[TOKEN] grant_type: {grant_type}, client_id: {client_id}")

    if grant_type != "authorization_code":
        return _error("unsupported_grant_type", f"Grant type not supported: {grant_type}")

    if not code:
        return _error("invalid_request", "Missing code")

    try:
        auth_code = authorization_codes.redeem(code)
    except InvalidCodeError:
        return _error("invalid_grant", "Invalid or expired code")
    except CodeAlreadyUsedError:
        logger.warning("[TOKEN] Replay of an already redeemed authorization code")
        return _error("invalid_grant", "Code already used")

    if redirect_uri and redirect_uri != auth_code.redirect_uri:
        return _error("invalid_grant", "redirect_uri does not match the authorization request")

    if auth_code.code_challenge:
        if not code_verifier:
            return _error("invalid_grant", "Missing code_verifier")
        if not _pkce_matches(code_verifier, auth_code.code_challenge, auth_code.code_challenge_method):
            return _error("invalid_grant", "PKCE verification failed")

    scope = " ".join(FACEBOOK_SCOPES)
    expires_in = jwt_utils.ACCESS_TOKEN_EXPIRE_SECONDS
    sub = secrets.token_hex(16)
    access_token = jwt_utils.issue({"sub": sub, "scope": scope}, expires_in)
    issued_tokens.put(sub, IssuedToken(session=auth_code.session, client_id=auth_code.client_id))

    logger.info(f"[TOKEN] Issued access token for client {auth_code.client_id[:8]}...")

    return _json({
        "access_token": access_token,
        "token_type": "Bearer",
        "expires_in": expires_in,
        "scope": scope,
    })


# ============== Misc ==============

@router.get("/health")
async def health_check():
    """Liveness check."""
    return _json({"status": "ok", "oauth": "ready"})


@router.options("/{path:path}")
async def preflight(path: str):
    """CORS preflight for clients that skip the Origin header."""
    return Response(status_code=204, headers=CORS_HEADERS)
