"""
Tests for the Facebook code exchange and the Graph API client it drives.
"""
from urllib.parse import parse_qs, parse_qsl, urlsplit

import httpx
import pytest

from graph_client import GraphAPIError, GraphClient
from oauth.upstream import (
    FACEBOOK_SCOPES,
    FacebookTokenExchanger,
    TokenExchangeError,
    build_authorization_url,
)
from tests.conftest import FakeGraph, make_graph_client

CALLBACK = "https://mcp.example.com/oauth/callback"


def _exchanger(fake: FakeGraph) -> FacebookTokenExchanger:
    return FacebookTokenExchanger("app-id", "app-secret", make_graph_client(fake))


def test_build_authorization_url_carries_transaction_as_state():
    url = build_authorization_url("app-id", CALLBACK, "txn-123")
    parts = urlsplit(url)
    params = parse_qs(parts.query)

    assert parts.netloc == "www.facebook.com"
    assert parts.path.endswith("/dialog/oauth")
    assert params["client_id"] == ["app-id"]
    assert params["redirect_uri"] == [CALLBACK]
    assert params["state"] == ["txn-123"]
    assert params["response_type"] == ["code"]
    assert params["scope"] == [",".join(FACEBOOK_SCOPES)]


@pytest.mark.asyncio
async def test_exchange_builds_session_from_long_lived_token():
    fake = FakeGraph()
    session = await _exchanger(fake).exchange("upstream_code_1", CALLBACK)

    assert session.user_access_token == "long-token"
    assert session.user_id == "1001"
    assert session.user_name == "Test User"
    assert session.expires_at is not None
    assert set(session.page_tokens) == {"p1", "p2"}
    assert session.page_token("p1") == "page-token-1"
    assert session.instagram_account_id("p1") == "ig-1"
    assert session.instagram_account_id("p2") is None
    assert session.page_tokens["p1"].category == "Food"


@pytest.mark.asyncio
async def test_exchange_posts_code_with_app_credentials():
    fake = FakeGraph()
    await _exchanger(fake).exchange("upstream_code_1", CALLBACK)

    first = fake.requests[0]
    assert first.method == "POST"
    form = dict(parse_qsl(first.content.decode()))
    assert form == {
        "client_id": "app-id",
        "client_secret": "app-secret",
        "redirect_uri": CALLBACK,
        "code": "upstream_code_1",
    }

    upgrade = dict(parse_qsl(fake.requests[1].content.decode()))
    assert upgrade["grant_type"] == "fb_exchange_token"
    assert upgrade["fb_exchange_token"] == "short-token"

    # Account lookups use the upgraded token
    for request in fake.requests[2:]:
        assert request.url.params["access_token"] == "long-token"


@pytest.mark.asyncio
async def test_upgrade_failure_falls_back_to_short_lived_token():
    fake = FakeGraph(fail_upgrade=True)
    session = await _exchanger(fake).exchange("upstream_code_1", CALLBACK)

    assert session.user_access_token == "short-token"
    assert len(session.page_tokens) == 2
    for request in fake.requests[2:]:
        assert request.url.params["access_token"] == "short-token"


@pytest.mark.asyncio
@pytest.mark.parametrize("failure", ["fail_code", "fail_me", "fail_pages"])
async def test_code_and_account_failures_abort_exchange(failure):
    fake = FakeGraph(**{failure: True})
    with pytest.raises(TokenExchangeError) as exc_info:
        await _exchanger(fake).exchange("upstream_code_1", CALLBACK)
    assert "Meta API Error" in str(exc_info.value)


@pytest.mark.asyncio
async def test_network_error_aborts_exchange():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    exchanger = FacebookTokenExchanger("app-id", "app-secret", make_graph_client(handler))
    with pytest.raises(TokenExchangeError, match="Network error"):
        await exchanger.exchange("upstream_code_1", CALLBACK)


@pytest.mark.asyncio
async def test_graph_client_raises_on_error_body_with_200_status():
    client = make_graph_client(lambda request: httpx.Response(200, json={"error": {"message": "Bad", "code": 1}}))
    with pytest.raises(GraphAPIError) as exc_info:
        await client.get("/me", access_token="t")
    assert exc_info.value.code == 1
    assert str(exc_info.value) == "Meta API Error [1]: Bad"


@pytest.mark.asyncio
async def test_graph_client_sends_user_agent_and_token():
    seen = {}

    def handler(request):
        seen["ua"] = request.headers["user-agent"]
        seen["token"] = request.url.params.get("access_token")
        return httpx.Response(200, json={"id": "1"})

    client = GraphClient(
        access_token="default-token",
        user_agent="TestAgent/1.0",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    assert await client.get("/me") == {"id": "1"}
    assert seen == {"ua": "TestAgent/1.0", "token": "default-token"}


@pytest.mark.asyncio
async def test_graph_client_non_json_error():
    client = make_graph_client(lambda request: httpx.Response(502, text="Bad Gateway"))
    with pytest.raises(GraphAPIError) as exc_info:
        await client.get("/me", access_token="t")
    assert exc_info.value.status_code == 502
    assert exc_info.value.code is None
