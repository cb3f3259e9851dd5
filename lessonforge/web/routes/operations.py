"""Operations endpoints: liveness and in-process pipeline counters."""

from __future__ import annotations

from fastapi import APIRouter, Request

from lessonforge.curriculum.workers import telemetry
from lessonforge.web.routes.security import current_sub, ok

operations_router = APIRouter(tags=["Operations"])


@operations_router.get("/health")
async def health():
    return ok({"status": "ok"})


@operations_router.get("/internal/telemetry")
async def pipeline_telemetry(request: Request):
    """Counters and gauges of this process (authenticated callers only)."""
    current_sub(request)
    return ok({"metrics": telemetry.snapshot()})
