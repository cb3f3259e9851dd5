"""
FastAPI application for lessonforge.

Design:
    - `create_app()` builds the app: startup guard, the service bundle on
      `app.state.services`, bearer authentication middleware, error mapping
      and routers. `app` is the module-level instance
      for `uvicorn lessonforge.web.main:app`.
    - Every `CurriculumError` maps to `{ "error": code, "detail"? }` with its
      HTTP status; unexpected exceptions become `internal_error` (500) and are
      logged without leaking upstream messages.

Security:
    All routes except `/health` require `Authorization: Bearer <jwt>`; the
    verified `sub` is exposed as `request.state.user["sub"]`.
"""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError

from lessonforge.curriculum.errors import AuthError, CurriculumError, IncompleteSubmissionError
from lessonforge.identity_access.tokens import verify_bearer_token
from lessonforge.web.config import ensure_secure_config_on_startup
from lessonforge.web.routes.lessons import lessons_router
from lessonforge.web.routes.operations import operations_router
from lessonforge.web.routes.security import error_response
from lessonforge.web.routes.sets import sets_router
from lessonforge.web.wiring import Services, build_services, load_local_env

logger = logging.getLogger("lessonforge.web")

PUBLIC_PATHS = {"/health", "/docs", "/openapi.json"}


def _bearer_token(request: Request) -> str:
    header = request.headers.get("authorization") or ""
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return ""
    return token.strip()


def _error_detail(exc: CurriculumError) -> str | None:
    if exc.message != exc.code:
        return exc.message
    return None


def create_app(services: Optional[Services] = None) -> FastAPI:
    load_local_env()
    ensure_secure_config_on_startup()
    app = FastAPI(title="lessonforge", description="Lesson processing and mastery quizzes", version="0.1.0")
    app.state.services = services or build_services()

    @app.middleware("http")
    async def bearer_auth(request: Request, call_next):
        if request.url.path in PUBLIC_PATHS:
            return await call_next(request)
        try:
            claims = verify_bearer_token(_bearer_token(request))
        except AuthError as exc:
            logger.info("lessonforge.auth action=rejected reason=%s", exc.message)
            return error_response(AuthError.code, 401)
        request.state.user = {"sub": str(claims["sub"]), "email": claims.get("email")}
        return await call_next(request)

    @app.exception_handler(CurriculumError)
    async def curriculum_error(request: Request, exc: CurriculumError):
        if exc.http_status >= 500:
            logger.warning(
                "lessonforge.api action=upstream_error path=%s error_type=%s",
                request.url.path,
                exc.__class__.__name__,
            )
            return error_response(exc.code, exc.http_status)
        if isinstance(exc, IncompleteSubmissionError):
            return error_response(exc.code, exc.http_status, exc.message, missingQuestionIds=exc.missing_question_ids)
        return error_response(exc.code, exc.http_status, _error_detail(exc))

    @app.exception_handler(RequestValidationError)
    async def invalid_body(request: Request, exc: RequestValidationError):
        return error_response("bad_request", 400, "invalid_body")

    @app.exception_handler(Exception)
    async def unexpected_error(request: Request, exc: Exception):
        logger.error("lessonforge.api action=internal_error path=%s", request.url.path, exc_info=exc)
        return error_response("internal_error", 500)

    app.include_router(operations_router)
    app.include_router(lessons_router)
    app.include_router(sets_router)
    return app


app = create_app()
