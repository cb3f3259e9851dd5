"""
Shared route helpers: caller identity and no-store JSON responses.

Responses carrying lesson or quiz data are private to the caller and must
never be stored by intermediaries, so every success and error response uses
the same cache headers.
"""
from __future__ import annotations

from typing import Any, Dict

from fastapi import Request
from fastapi.responses import JSONResponse

from lessonforge.curriculum.errors import AuthError


def cache_headers() -> dict[str, str]:
    return {"Cache-Control": "private, no-store", "Vary": "Origin"}


def current_sub(request: Request) -> str:
    """Return the authenticated caller's `sub` set by the bearer middleware."""
    user = getattr(request.state, "user", None)
    sub = user.get("sub") if isinstance(user, dict) else None
    if not sub:
        raise AuthError()
    return str(sub)


def ok(payload: Any, status_code: int = 200) -> JSONResponse:
    return JSONResponse(payload, status_code=status_code, headers=cache_headers())


def error_response(code: str, status_code: int, detail: str | None = None, **extra: Any) -> JSONResponse:
    body: Dict[str, Any] = {"error": code}
    if detail:
        body["detail"] = detail
    body.update(extra)
    return JSONResponse(body, status_code=status_code, headers=cache_headers())
