"""
Bearer token verification for the HTTP surface.

Why: Keep cryptographic validation of access tokens outside the web adapter so
it can be unit tested on its own.

Security:
    - `AUTH_JWT_SECRET` set -> HS256 tokens signed with that secret (Supabase
      style). Otherwise `AUTH_JWKS_URL` -> asymmetric tokens checked against
      the fetched key set, matched by `kid`.
    - Audience (`AUTH_JWT_AUDIENCE`, default `authenticated`) and expiry are
      always enforced with a small clock skew. The caller identity is `sub`.
    - With neither key configured every token is rejected; the startup guard
      refuses prod-like environments in that state.
"""
from __future__ import annotations

from dataclasses import dataclass
import os
import time
from typing import Dict, Optional, Tuple

import requests
from jose import jwt
from jose.exceptions import JOSEError

from lessonforge.curriculum.errors import AuthError

MAX_CLOCK_SKEW_SECONDS = 5


@dataclass(frozen=True)
class TokenConfig:
    secret: Optional[str]
    audience: str
    jwks_url: Optional[str]

    @property
    def configured(self) -> bool:
        return bool(self.secret or self.jwks_url)


def load_token_config() -> TokenConfig:
    return TokenConfig(
        secret=(os.getenv("AUTH_JWT_SECRET") or "").strip() or None,
        audience=(os.getenv("AUTH_JWT_AUDIENCE") or "authenticated").strip(),
        jwks_url=(os.getenv("AUTH_JWKS_URL") or "").strip() or None,
    )


@dataclass
class _CacheEntry:
    jwks: Dict[str, object]
    expires_at: float


class JWKSCache:
    """Small in-memory cache for JWKS responses, keyed by URL."""

    def __init__(self, ttl_seconds: int = 300):
        self.ttl_seconds = ttl_seconds
        self._entries: Dict[str, _CacheEntry] = {}

    def get(self, url: str) -> Dict[str, object]:
        now = time.time()
        entry = self._entries.get(url)
        if entry and entry.expires_at > now:
            return entry.jwks
        jwks = self._fetch(url)
        self._entries[url] = _CacheEntry(jwks=jwks, expires_at=now + self.ttl_seconds)
        return jwks

    def _fetch(self, url: str) -> Dict[str, object]:
        try:
            resp = requests.get(url, timeout=5)
        except requests.RequestException as exc:
            raise AuthError("jwks_fetch_failed") from exc
        if resp.status_code != 200:
            raise AuthError("jwks_fetch_failed")
        try:
            jwks = resp.json()
        except ValueError as exc:
            raise AuthError("jwks_invalid") from exc
        if not isinstance(jwks, dict) or "keys" not in jwks:
            raise AuthError("jwks_invalid")
        return jwks


JWKS_CACHE = JWKSCache()


def _find_key(jwks: Dict[str, object], kid: str) -> Dict[str, object] | None:
    keys = jwks.get("keys")
    if not isinstance(keys, list):
        return None
    for key in keys:
        if isinstance(key, dict) and key.get("kid") == kid:
            return key
    return None


def _resolve_key(token: str, cfg: TokenConfig, cache: JWKSCache) -> Tuple[object, str]:
    if cfg.secret:
        return cfg.secret, "HS256"
    try:
        header = jwt.get_unverified_header(token)
    except JOSEError as exc:
        raise AuthError("invalid_token") from exc
    kid = header.get("kid")
    if not kid:
        raise AuthError("missing_kid")
    key_dict = _find_key(cache.get(cfg.jwks_url or ""), kid)
    if not key_dict:
        raise AuthError("unknown_kid")
    return key_dict, str(key_dict.get("alg", "RS256"))


def _validate_temporal_claims(claims: Dict[str, object]) -> None:
    now = time.time()
    exp = claims.get("exp")
    if not isinstance(exp, (int, float)) or exp + MAX_CLOCK_SKEW_SECONDS < now:
        raise AuthError("token_expired")
    nbf = claims.get("nbf")
    if isinstance(nbf, (int, float)) and nbf - MAX_CLOCK_SKEW_SECONDS > now:
        raise AuthError("invalid_token")


def verify_bearer_token(
    token: str,
    *,
    cfg: Optional[TokenConfig] = None,
    cache: Optional[JWKSCache] = None,
) -> Dict[str, object]:
    """Validate a bearer token and return its claims.

    Raises
    ------
    AuthError:
        When verification is not configured or the token is invalid
        (signature, audience, expiry, kid, missing `sub`).
    """
    cfg = cfg or load_token_config()
    if not cfg.configured:
        raise AuthError("auth_not_configured")
    if not token:
        raise AuthError("missing_token")
    key, algorithm = _resolve_key(token, cfg, cache or JWKS_CACHE)
    try:
        claims = jwt.decode(
            token,
            key,
            algorithms=[algorithm],
            audience=cfg.audience,
            options={"verify_aud": True, "verify_exp": False, "verify_nbf": False, "verify_iat": False},
        )
    except JOSEError as exc:
        raise AuthError("invalid_token") from exc
    _validate_temporal_claims(claims)
    sub = claims.get("sub")
    if not isinstance(sub, str) or not sub.strip():
        raise AuthError("missing_sub")
    return claims


__all__ = ["TokenConfig", "load_token_config", "JWKSCache", "JWKS_CACHE", "verify_bearer_token"]
