"""Facebook side of the OAuth bridge.

Turns a Facebook authorization code into a MetaSession:

1. exchange the code for a short-lived user token
2. upgrade it to a long-lived token (falls back to the short-lived one)
3. fetch the user and every managed page with its page token
"""

import logging
import time
from typing import Optional
from urllib.parse import urlencode

from graph_client import (
    FACEBOOK_AUTH_ENDPOINT,
    FACEBOOK_TOKEN_PATH,
    GraphAPIError,
    GraphClient,
)
from oauth.models import MetaSession, PageToken

logger = logging.getLogger(__name__)

FACEBOOK_SCOPES = [
    "pages_show_list",
    "pages_read_engagement",
    "pages_manage_posts",
    "pages_read_user_content",
    "pages_manage_engagement",
    "read_insights",
    "instagram_basic",
    "instagram_content_publish",
    "instagram_manage_comments",
    "instagram_manage_insights",
]

PAGE_FIELDS = "id,name,category,access_token,instagram_business_account"


class TokenExchangeError(Exception):
    """The Facebook code exchange could not produce a session."""


def build_authorization_url(app_id: str, callback_uri: str, state: str) -> str:
    """Facebook login dialog URL for one pending transaction."""
    params = {
        "client_id": app_id,
        "redirect_uri": callback_uri,
        "state": state,
        "scope": ",".join(FACEBOOK_SCOPES),
        "response_type": "code",
    }
    return f"{FACEBOOK_AUTH_ENDPOINT}?{urlencode(params)}"


class FacebookTokenExchanger:
    """Stateless driver for Facebook's code exchange.

    Safe to share between concurrent requests; every call builds its own
    MetaSession.
    """

    def __init__(self, app_id: str, app_secret: str, graph_client: Optional[GraphClient] = None):
        self.app_id = app_id
        self.app_secret = app_secret
        self.graph = graph_client or GraphClient()

    async def exchange(self, code: str, redirect_uri: str) -> MetaSession:
        logger.info("[UPSTREAM] Exchanging Facebook authorization code...")
        try:
            short_lived = await self.graph.post(FACEBOOK_TOKEN_PATH, data={
                "client_id": self.app_id,
                "client_secret": self.app_secret,
                "redirect_uri": redirect_uri,
                "code": code,
            })
        except GraphAPIError as e:
            logger.error(f"[UPSTREAM] Code exchange failed: {e}")
            raise TokenExchangeError(str(e)) from e

        if not short_lived.get("access_token"):
            raise TokenExchangeError("Token exchange returned no access token")

        access_token, expires_in = await self._upgrade_token(short_lived)

        logger.info("[UPSTREAM] Fetching user info and page tokens...")
        try:
            user = await self.graph.get("/me", params={"fields": "id,name"}, access_token=access_token)
            pages = await self.graph.get(
                "/me/accounts",
                params={"fields": PAGE_FIELDS},
                access_token=access_token,
            )
        except GraphAPIError as e:
            logger.error(f"[UPSTREAM] Fetching account data failed: {e}")
            raise TokenExchangeError(str(e)) from e

        if not user.get("id"):
            raise TokenExchangeError("Facebook returned no user id")

        page_tokens = {}
        for page in pages.get("data") or []:
            if not page.get("id") or not page.get("access_token"):
                logger.warning(f"[UPSTREAM] Skipping page without id or token: {page.get('name')}")
                continue
            linked = page.get("instagram_business_account") or {}
            page_tokens[page["id"]] = PageToken(
                access_token=page["access_token"],
                name=page.get("name", ""),
                category=page.get("category"),
                instagram_business_account_id=linked.get("id"),
            )

        logger.info(f"[UPSTREAM] Success! Found {len(page_tokens)} pages.")
        return MetaSession(
            user_access_token=access_token,
            user_id=user["id"],
            user_name=user.get("name"),
            expires_at=time.time() + expires_in if expires_in else None,
            page_tokens=page_tokens,
        )

    async def _upgrade_token(self, short_lived: dict) -> tuple[str, Optional[int]]:
        """Swap a short-lived user token for a long-lived one.

        A failed upgrade is not fatal: the short-lived token still works, it
        just expires sooner.
        """
        try:
            long_lived = await self.graph.post(FACEBOOK_TOKEN_PATH, data={
                "grant_type": "fb_exchange_token",
                "client_id": self.app_id,
                "client_secret": self.app_secret,
                "fb_exchange_token": short_lived["access_token"],
            })
        except GraphAPIError as e:
            logger.warning(f"[UPSTREAM] Long-lived token exchange failed, using short-lived token: {e}")
            return short_lived["access_token"], short_lived.get("expires_in")

        if not long_lived.get("access_token"):
            logger.warning("[UPSTREAM] Long-lived token missing from response, using short-lived token")
            return short_lived["access_token"], short_lived.get("expires_in")

        return long_lived["access_token"], long_lived.get("expires_in")
