"""
Bearer token verification: shared secret, JWKS lookup by kid, audience,
expiry and the JWKS cache.
"""
from __future__ import annotations

import base64
import time

from jose import jwt
import pytest
import requests

from lessonforge.curriculum.errors import AuthError
from lessonforge.identity_access.tokens import JWKSCache, TokenConfig, load_token_config, verify_bearer_token

SECRET = "unit-test-secret"
HS_CFG = TokenConfig(secret=SECRET, audience="authenticated", jwks_url=None)


def _token(key: str = SECRET, headers: dict | None = None, **claims) -> str:
    payload = {"sub": "user-1", "aud": "authenticated", "exp": int(time.time()) + 60, "email": "a@example.com"}
    payload.update(claims)
    payload = {k: v for k, v in payload.items() if v is not None}
    return jwt.encode(payload, key, algorithm="HS256", headers=headers)


def test_valid_hs256_token_returns_claims() -> None:
    claims = verify_bearer_token(_token(), cfg=HS_CFG)
    assert claims["sub"] == "user-1"
    assert claims["email"] == "a@example.com"


@pytest.mark.parametrize(
    "token_kwargs,reason",
    [
        ({"key": "other-secret"}, "invalid_token"),
        ({"aud": "somebody-else"}, "invalid_token"),
        ({"exp": int(time.time()) - 600}, "token_expired"),
        ({"exp": None}, "token_expired"),
        ({"nbf": int(time.time()) + 600}, "invalid_token"),
        ({"sub": ""}, "missing_sub"),
    ],
)
def test_rejected_tokens(token_kwargs: dict, reason: str) -> None:
    with pytest.raises(AuthError) as info:
        verify_bearer_token(_token(**token_kwargs), cfg=HS_CFG)
    assert info.value.message == reason


def test_unconfigured_and_missing_token() -> None:
    with pytest.raises(AuthError) as info:
        verify_bearer_token(_token(), cfg=TokenConfig(secret=None, audience="authenticated", jwks_url=None))
    assert info.value.message == "auth_not_configured"
    with pytest.raises(AuthError) as info:
        verify_bearer_token("", cfg=HS_CFG)
    assert info.value.message == "missing_token"


def test_load_token_config_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AUTH_JWT_SECRET", " s ")
    monkeypatch.delenv("AUTH_JWT_AUDIENCE", raising=False)
    cfg = load_token_config()
    assert (cfg.secret, cfg.audience, cfg.jwks_url, cfg.configured) == ("s", "authenticated", None, True)


class _Resp:
    def __init__(self, status_code: int, body: object) -> None:
        self.status_code = status_code
        self._body = body

    def json(self):
        if isinstance(self._body, Exception):
            raise self._body
        return self._body


def _oct_jwks(kid: str) -> dict:
    k = base64.urlsafe_b64encode(SECRET.encode()).rstrip(b"=").decode()
    return {"keys": [{"kty": "oct", "kid": kid, "alg": "HS256", "k": k}]}


def test_jwks_key_is_matched_by_kid_and_cached(monkeypatch: pytest.MonkeyPatch) -> None:
    fetched: list[str] = []

    def _get(url, timeout):
        fetched.append(url)
        return _Resp(200, _oct_jwks("k1"))

    monkeypatch.setattr(requests, "get", _get)
    cfg = TokenConfig(secret=None, audience="authenticated", jwks_url="https://idp.example/jwks")
    cache = JWKSCache(ttl_seconds=60)

    assert verify_bearer_token(_token(headers={"kid": "k1"}), cfg=cfg, cache=cache)["sub"] == "user-1"
    verify_bearer_token(_token(headers={"kid": "k1"}), cfg=cfg, cache=cache)
    assert fetched == ["https://idp.example/jwks"]

    with pytest.raises(AuthError) as info:
        verify_bearer_token(_token(headers={"kid": "k2"}), cfg=cfg, cache=cache)
    assert info.value.message == "unknown_kid"
    with pytest.raises(AuthError) as info:
        verify_bearer_token(_token(), cfg=cfg, cache=cache)
    assert info.value.message == "missing_kid"


@pytest.mark.parametrize(
    "response,reason",
    [
        (_Resp(503, {}), "jwks_fetch_failed"),
        (_Resp(200, ValueError("no json")), "jwks_invalid"),
        (_Resp(200, {"no": "keys"}), "jwks_invalid"),
        (requests.ConnectionError("down"), "jwks_fetch_failed"),
    ],
)
def test_jwks_fetch_failures(monkeypatch: pytest.MonkeyPatch, response, reason: str) -> None:
    def _get(url, timeout):
        if isinstance(response, Exception):
            raise response
        return response

    monkeypatch.setattr(requests, "get", _get)
    with pytest.raises(AuthError) as info:
        JWKSCache().get("https://idp.example/jwks")
    assert info.value.message == reason
