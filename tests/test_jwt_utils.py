"""
Tests for the bearer token codec.
"""
import base64
import json

import pytest

from oauth import jwt_utils


@pytest.fixture(autouse=True)
def fixed_secret():
    jwt_utils.configure_secret("unit-test-secret-that-is-long-enough-for-hs256")
    yield


def _b64(data: dict) -> str:
    return base64.urlsafe_b64encode(json.dumps(data).encode()).rstrip(b"=").decode()


def test_issue_then_verify_reproduces_claims():
    token = jwt_utils.issue({"sub": "abc123", "scope": "pages_show_list read_insights"}, 3600)

    result = jwt_utils.verify(token)

    assert result.valid is True
    assert result.claims["sub"] == "abc123"
    assert result.claims["scope"] == "pages_show_list read_insights"


def test_audience_claim_round_trips():
    result = jwt_utils.verify(jwt_utils.issue({"sub": "u", "aud": "mcp"}, 3600))
    assert result.valid is True
    assert result.claims["aud"] == "mcp"


def test_issue_adds_timestamps_and_unique_id():
    first = jwt_utils.verify(jwt_utils.issue({"sub": "x"}, 60)).claims
    second = jwt_utils.verify(jwt_utils.issue({"sub": "x"}, 60)).claims

    assert first["exp"] == first["iat"] + 60
    assert first["jti"] and second["jti"]
    assert first["jti"] != second["jti"]


def test_token_has_three_segments_and_hs256_header():
    token = jwt_utils.issue({"sub": "x"}, 60)
    header_b64, _, _ = token.split(".")
    header = json.loads(base64.urlsafe_b64decode(header_b64 + "=" * (-len(header_b64) % 4)))
    assert header == {"alg": "HS256", "typ": "JWT"}


def test_expired_token_is_invalid():
    token = jwt_utils.issue({"sub": "x"}, -1)
    assert jwt_utils.verify(token).valid is False


def test_token_expiring_now_is_invalid():
    token = jwt_utils.issue({"sub": "x"}, 0)
    assert jwt_utils.verify(token).valid is False


def test_tampered_payload_is_invalid():
    token = jwt_utils.issue({"sub": "victim"}, 3600)
    header, payload, signature = token.split(".")
    flipped = payload[:-1] + ("A" if payload[-1] != "A" else "B")

    assert jwt_utils.verify(f"{header}.{flipped}.{signature}").valid is False


def test_forged_payload_with_original_signature_is_invalid():
    token = jwt_utils.issue({"sub": "victim"}, 3600)
    header, _, signature = token.split(".")
    forged = _b64({"sub": "attacker", "exp": 9999999999, "jti": "x"})

    assert jwt_utils.verify(f"{header}.{forged}.{signature}").valid is False


def test_token_signed_with_other_secret_is_invalid():
    token = jwt_utils.issue({"sub": "x"}, 3600)
    jwt_utils.configure_secret("a-completely-different-secret-value-for-hs256")
    assert jwt_utils.verify(token).valid is False


@pytest.mark.parametrize("garbage", ["", "not-a-token", "a.b", "a.b.c", "...", None])
def test_malformed_tokens_do_not_raise(garbage):
    result = jwt_utils.verify(garbage)
    assert result.valid is False
    assert result.claims == {}


def test_generated_secret_changes_on_reconfigure():
    jwt_utils.configure_secret(None)
    token = jwt_utils.issue({"sub": "x"}, 3600)
    assert jwt_utils.verify(token).valid is True

    # A new process-wide secret (as on restart) invalidates earlier tokens
    jwt_utils.configure_secret(None)
    assert jwt_utils.verify(token).valid is False
