"""Resolve inbound bearer tokens to the Meta session behind them."""

import logging
from typing import Optional

from oauth import jwt_utils
from oauth.models import MetaSession
from oauth.stores import issued_tokens

logger = logging.getLogger(__name__)


def resolve_session(token: Optional[str]) -> Optional[MetaSession]:
    """Return the MetaSession for ``token``, or None if the caller is unauthenticated.

    Never raises; tool handlers decide what to do with an anonymous caller.
    """
    result = jwt_utils.verify(token)
    if not result.valid:
        return None

    sub = result.claims.get("sub")
    if not sub:
        return None

    record = issued_tokens.get(sub)
    if record is None:
        # Signature is fine but the store no longer knows the token (restart or early sweep)
        logger.info("[AUTH] Valid token with no stored session")
        return None

    return record.session


def session_from_authorization(header: Optional[str]) -> Optional[MetaSession]:
    """Resolve a raw ``Authorization`` header value."""
    if not header or not header.startswith("Bearer "):
        return None
    return resolve_session(header[7:].strip())
