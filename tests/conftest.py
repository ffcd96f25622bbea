"""
Shared pytest fixtures: a fresh OAuth store per test and an app wired to a fake Facebook exchanger.
"""
from unittest.mock import AsyncMock, MagicMock
from urllib.parse import parse_qsl

import httpx
import pytest
from fastapi.testclient import TestClient

from config import Settings
from graph_client import GraphClient
from main import create_app
from oauth import stores
from oauth.models import MetaSession, PageToken
from oauth.upstream import FacebookTokenExchanger

BASE_URL = "https://mcp.example.com"

TEST_SETTINGS = {
    "FACEBOOK_APP_ID": "test-app-id",
    "FACEBOOK_APP_SECRET": "test-app-secret",
    "BASE_URL": BASE_URL,
    "JWT_SECRET": "test-jwt-secret-with-enough-length-for-hs256",
}


@pytest.fixture(autouse=True)
def clean_stores():
    stores.clear_all()
    yield
    stores.clear_all()


@pytest.fixture
def settings() -> Settings:
    return Settings(dict(TEST_SETTINGS))


@pytest.fixture
def meta_session() -> MetaSession:
    return MetaSession(
        user_access_token="long-lived-user-token",
        user_id="1001",
        user_name="Test User",
        expires_at=None,
        page_tokens={
            "p1": PageToken(
                access_token="page-token-1",
                name="Test Page",
                category="Software",
                instagram_business_account_id="ig-1",
            ),
        },
    )


@pytest.fixture
def fake_exchanger(meta_session):
    exchanger = MagicMock(spec=FacebookTokenExchanger)
    exchanger.exchange = AsyncMock(return_value=meta_session)
    return exchanger


@pytest.fixture
def client(settings, fake_exchanger):
    app = create_app(settings, exchanger=fake_exchanger)
    return TestClient(app, follow_redirects=False)


def graph_error(message: str, code: int = 190, status_code: int = 400) -> httpx.Response:
    return httpx.Response(
        status_code,
        json={"error": {"message": message, "type": "OAuthException", "code": code, "fbtrace_id": "trace"}},
    )


def make_graph_client(handler) -> GraphClient:
    """GraphClient whose HTTP calls are answered by ``handler``."""
    return GraphClient(http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


PAGES = {
    "data": [
        {
            "id": "p1",
            "name": "Bakery",
            "category": "Food",
            "access_token": "page-token-1",
            "instagram_business_account": {"id": "ig-1"},
        },
        {"id": "p2", "name": "Blog", "access_token": "page-token-2"},
    ]
}


class FakeGraph:
    """Routes Graph API calls by path; individual steps can be made to fail."""

    def __init__(self, fail_code=False, fail_upgrade=False, fail_me=False, fail_pages=False):
        self.fail_code = fail_code
        self.fail_upgrade = fail_upgrade
        self.fail_me = fail_me
        self.fail_pages = fail_pages
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path.endswith("/oauth/access_token"):
            form = dict(parse_qsl(request.content.decode()))
            if form.get("grant_type") == "fb_exchange_token":
                if self.fail_upgrade:
                    return graph_error("Invalid OAuth access token")
                return httpx.Response(200, json={"access_token": "long-token", "token_type": "bearer", "expires_in": 5184000})
            if self.fail_code:
                return graph_error("This authorization code has been used", code=100)
            return httpx.Response(200, json={"access_token": "short-token", "token_type": "bearer", "expires_in": 3600})

        if path.endswith("/me/accounts"):
            if self.fail_pages:
                return graph_error("Permissions error", code=200, status_code=403)
            return httpx.Response(200, json=PAGES)

        if path.endswith("/me"):
            if self.fail_me:
                return graph_error("Session has expired")
            return httpx.Response(200, json={"id": "1001", "name": "Test User"})

        return httpx.Response(404, json={"error": {"message": "Unknown path", "code": 803}})
