"""JWT utilities for the bearer tokens issued to MCP clients.

Tokens are HS256-signed with a process-wide secret. The secret is taken from
configuration when one is supplied and is otherwise generated at startup; it is
never written to disk, so restarting the server invalidates every issued token.
A token only bridges to Meta credentials that a fresh OAuth round-trip can
recover, so losing it on restart costs the client one re-authorization.
"""

import logging
import secrets
import time
from dataclasses import dataclass, field
from typing import Any, Optional

import jwt

logger = logging.getLogger(__name__)

# JWT configuration
JWT_ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_SECONDS = 60 * 60  # 1 hour

_jwt_secret: str = secrets.token_hex(32)


@dataclass
class TokenVerification:
    """Outcome of verifying a bearer token."""

    valid: bool
    claims: dict[str, Any] = field(default_factory=dict)


def configure_secret(secret: Optional[str]) -> None:
    """Install the signing secret, or generate a fresh one when ``secret`` is empty."""
    global _jwt_secret
    if secret:
        _jwt_secret = secret
        logger.info("[JWT] Using JWT_SECRET from configuration")
    else:
        _jwt_secret = secrets.token_hex(32)
        logger.info("[JWT] Generated ephemeral JWT secret")


def issue(claims: dict[str, Any], ttl_seconds: int = ACCESS_TOKEN_EXPIRE_SECONDS) -> str:
    """Create a signed token carrying ``claims``.

    Adds ``iat``, ``exp`` (``iat + ttl_seconds``) and a random ``jti``.

    Returns:
        The compact ``header.payload.signature`` token string
    """
    now = int(time.time())
    payload = {
        **claims,
        "iat": now,
        "exp": now + ttl_seconds,
        "jti": secrets.token_hex(16),
    }
    return jwt.encode(payload, _jwt_secret, algorithm=JWT_ALGORITHM)


def verify(token: str) -> TokenVerification:
    """Verify a token's signature and expiry.

    Never raises: malformed, tampered and expired tokens all come back with
    ``valid=False``.
    """
    if not token or not isinstance(token, str):
        return TokenVerification(valid=False)

    try:
        claims = jwt.decode(
            token,
            _jwt_secret,
            algorithms=[JWT_ALGORITHM],
            options={"require": ["exp", "jti"], "verify_aud": False},
        )
    except jwt.ExpiredSignatureError:
        logger.debug("[JWT] Token expired")
        return TokenVerification(valid=False)
    except jwt.InvalidTokenError as e:
        logger.debug(f"[JWT] Invalid token: {e}")
        return TokenVerification(valid=False)

    return TokenVerification(valid=True, claims=claims)
