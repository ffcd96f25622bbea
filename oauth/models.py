"""Records held by the OAuth stores and the Meta session handed to tools.

The session types are frozen: a MetaSession is built once by the upstream
exchanger and afterwards only copied between stores, never mutated.
"""

import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional


class PageNotAuthorizedError(Exception):
    """Raised when a tool asks for a page the session holds no token for."""

    def __init__(self, page_id: str):
        super().__init__(f"No access token for page {page_id}")
        self.page_id = page_id


@dataclass(frozen=True)
class PageToken:
    """Delegated access for one managed Facebook Page."""

    access_token: str
    name: str
    category: Optional[str] = None
    instagram_business_account_id: Optional[str] = None


@dataclass(frozen=True)
class MetaSession:
    """Upstream credential set resolved from one OAuth round-trip."""

    user_access_token: str
    user_id: str
    user_name: Optional[str] = None
    expires_at: Optional[float] = None
    page_tokens: Mapping[str, PageToken] = field(default_factory=dict)

    def __post_init__(self):
        # Read-only view so no caller can add or swap page tokens later
        object.__setattr__(self, "page_tokens", MappingProxyType(dict(self.page_tokens)))

    def page_token(self, page_id: str) -> str:
        """Return the delegated token scoped to ``page_id``."""
        page = self.page_tokens.get(page_id)
        if page is None:
            raise PageNotAuthorizedError(page_id)
        return page.access_token

    def instagram_account_id(self, page_id: str) -> Optional[str]:
        page = self.page_tokens.get(page_id)
        return page.instagram_business_account_id if page else None

    def is_expired(self, now: Optional[float] = None) -> bool:
        if self.expires_at is None:
            return False
        return (now if now is not None else time.time()) >= self.expires_at


@dataclass
class PendingAuthorization:
    """An authorize request waiting for the user to finish Facebook login."""

    client_id: str
    redirect_uri: str
    state: str
    scope: list[str]
    code_challenge: Optional[str] = None
    code_challenge_method: Optional[str] = None
    created_at: float = field(default_factory=time.time)


@dataclass
class AuthorizationCode:
    """Single-use code bound to a completed upstream authorization."""

    client_id: str
    redirect_uri: str
    session: MetaSession
    code_challenge: Optional[str] = None
    code_challenge_method: Optional[str] = None
    created_at: float = field(default_factory=time.time)
    used: bool = False


@dataclass
class IssuedToken:
    """Maps the ``sub`` of an issued bearer token to its Meta session."""

    session: MetaSession
    client_id: Optional[str] = None
    created_at: float = field(default_factory=time.time)


@dataclass
class RegisteredClient:
    client_id: str
    client_secret: str
    redirect_uris: list[str]
    client_name: str = "MCP Client"
    created_at: float = field(default_factory=time.time)
