from datetime import timedelta
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from sqlalchemy import and_, or_
from sqlmodel import col, select

from ember.config import settings
from ember.jobs.runner import CaptureJob, JobRunner
from ember.logging import logger
from ember.models.base import utcnow
from ember.models.capture import Capture, CaptureStatus
from ember.tenant import system_session

STALE_STATUSES = (CaptureStatus.QUEUED, CaptureStatus.PROCESSING)


def sweep_retry_pending(
    runner: JobRunner,
    limit: int = 100,
    stale_after: Optional[int] = None,
) -> list[CaptureJob]:
    """
    Re-enqueue captures parked in queued_for_retry, oldest first.

    Captures left in queued or processing for longer than `stale_after`
    seconds lost their job (process restart, failed failure callback) and
    are resumed as well.

    The listing crosses tenants, so it runs in a system session; each job
    is then processed under its own profile's scope.
    """
    stale_after = settings.STALE_JOB_SECONDS if stale_after is None else stale_after
    stale_before = utcnow() - timedelta(seconds=stale_after)

    with system_session("retry sweep") as session:
        rows = session.exec(
            select(Capture.id, Capture.profile_id)
            .where(
                col(Capture.deleted_at).is_(None),
                or_(
                    Capture.status == CaptureStatus.QUEUED_FOR_RETRY,
                    and_(
                        col(Capture.status).in_(STALE_STATUSES),
                        col(Capture.updated_at) < stale_before,
                    ),
                ),
            )
            .order_by(col(Capture.updated_at))
            .limit(limit)
        ).all()

    jobs = [CaptureJob(capture_id=capture_id, profile_id=profile_id) for capture_id, profile_id in rows]
    for job in jobs:
        runner.enqueue(job)
    logger.info(f"Retry sweep re-enqueued {len(jobs)} capture(s)")
    return jobs


class RetrySweepScheduler:
    """Runs the retry sweep on an interval in a background thread."""

    def __init__(self, runner: JobRunner, interval_seconds: Optional[int] = None, limit: int = 100):
        self.runner = runner
        self.interval_seconds = interval_seconds or settings.SWEEP_INTERVAL_SECONDS
        self.limit = limit
        self.scheduler = BackgroundScheduler()
        self.scheduler.add_job(
            self.sweep,
            "interval",
            seconds=self.interval_seconds,
            id="retry_sweep",
            max_instances=1,
            coalesce=True,
        )

    def sweep(self) -> int:
        try:
            return len(sweep_retry_pending(self.runner, limit=self.limit))
        except Exception:
            # Keep the schedule alive; the next tick tries again
            logger.exception("Scheduled retry sweep failed")
            return 0

    def start(self):
        self.scheduler.start()
        logger.info(f"Retry sweep scheduled every {self.interval_seconds}s")

    def shutdown(self):
        self.scheduler.shutdown(wait=True)
        logger.info("Retry sweep scheduler stopped")
