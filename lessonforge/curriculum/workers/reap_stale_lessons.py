"""
Stale run reaper for lesson processing.

Why:
    A process crash between `processing` and `ready`/`error` would leave a
    lesson stuck forever. Every progress write refreshes the lesson heartbeat;
    this worker flips lessons whose heartbeat is older than the lease to
    `error` so they can be restarted.

Behavior:
    - `expire_processing` re-checks the heartbeat inside the update, so a run
      that wrote progress after the scan is left alone.
    - Runs one pass, or loops when REAPER_INTERVAL_SECONDS is set.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
import logging
import os
import time
from typing import List, Optional, Protocol

from lessonforge.curriculum.domain import Lesson
from lessonforge.curriculum.workers import telemetry

LOG = logging.getLogger(__name__)

LEASE_EXPIRED_MESSAGE = "processing lease expired"


class ReaperRepoProtocol(Protocol):
    def list_stale_processing(self, *, older_than: datetime) -> List[Lesson]: ...

    def expire_processing(self, lesson_id: str, *, older_than: datetime, error_message: str, now: datetime) -> bool: ...


def run_once(repo: ReaperRepoProtocol, *, lease_seconds: int, now: Optional[datetime] = None) -> List[str]:
    """Expire stale runs once and return the ids of the reaped lessons."""
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(seconds=lease_seconds)
    reaped: List[str] = []
    for lesson in repo.list_stale_processing(older_than=cutoff):
        if repo.expire_processing(lesson.id, older_than=cutoff, error_message=LEASE_EXPIRED_MESSAGE, now=now):
            reaped.append(lesson.id)
            telemetry.increment_counter(telemetry.REAPED)
            LOG.warning(
                "curriculum.reaper action=expired lesson_id=%s heartbeat_at=%s",
                lesson.id,
                lesson.heartbeat_at.isoformat() if lesson.heartbeat_at else None,
            )
    return reaped


def main() -> None:
    """CLI entrypoint: one pass, or a loop when REAPER_INTERVAL_SECONDS > 0."""
    level_name = os.getenv("LOG_LEVEL", "INFO")
    logging.basicConfig(level=level_name.strip().upper() or "INFO")

    from lessonforge.curriculum.config import load_pipeline_config
    from lessonforge.curriculum.repo_db import DBCurriculumRepo

    cfg = load_pipeline_config()
    repo = DBCurriculumRepo()
    interval = float(os.getenv("REAPER_INTERVAL_SECONDS", "0") or 0)
    while True:
        reaped = run_once(repo, lease_seconds=cfg.lease_seconds)
        LOG.info("curriculum.reaper action=pass reaped=%s", len(reaped))
        if interval <= 0:
            return
        time.sleep(interval)


if __name__ == "__main__":
    main()
