"""Crawler job lifecycle and the per-source feedback applied when a job ends.

Job states::

    pending ──> running ──> completed
       │           ├──────> failed
       │           └──────> cancelled
       ├──> failed
       └──> cancelled

Every transition is a compare-and-set UPDATE guarded by the expected current
status, so an external cancel and the pipeline's own completion can race
without either overwriting the other. Terminal rows are never touched again.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import case, select, update
from sqlalchemy.orm import Session

from ..exceptions import JobStateError, RecordNotFoundError
from ..storage.database.models import (
    CrawlerJob,
    JobStatus,
    JobType,
    RegulatorySource,
    UpdateFrequency,
)
from ..storage.session import SessionFactory, db_session
from ..utils.datetime import as_utc, utc_now
from ..utils.logging import get_logger, log_job_finalized
from .config import CrawlerConfig

logger = get_logger(__name__)

ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.RUNNING, JobStatus.FAILED, JobStatus.CANCELLED}),
    JobStatus.RUNNING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.CANCELLED: frozenset(),
}

FREQUENCY_INTERVALS = {
    UpdateFrequency.HOURLY: timedelta(hours=1),
    UpdateFrequency.DAILY: timedelta(hours=24),
    UpdateFrequency.WEEKLY: timedelta(days=7),
}


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def adjust_reliability(
    current: float,
    success: bool,
    success_delta: float = 0.1,
    failure_delta: float = 0.2,
    floor: float = 0.1,
) -> float:
    """Reliability after one finished crawl, kept within ``[floor, 1.0]``."""
    if success:
        return min(current + success_delta, 1.0)
    return max(current - failure_delta, floor)


class SourceFeedbackPolicy:
    """Post-job hook: reschedules the source and adjusts its reliability."""

    def __init__(self, config: CrawlerConfig):
        self.config = config

    def crawl_interval(self, frequency: UpdateFrequency | None) -> timedelta:
        if self.config.honor_update_frequency and frequency is not None:
            return FREQUENCY_INTERVALS[frequency]
        return timedelta(hours=self.config.default_crawl_interval_hours)

    def _reliability_expression(self, status: JobStatus) -> Any:
        current = RegulatorySource.reliability
        if status == JobStatus.COMPLETED:
            raised = current + self.config.reliability_success_delta
            return case((raised > 1.0, 1.0), else_=raised)
        lowered = current - self.config.reliability_failure_delta
        floor = self.config.reliability_floor
        return case((lowered < floor, floor), else_=lowered)

    def apply(self, db: Session, source_id: int, status: JobStatus, now: datetime) -> None:
        """Apply feedback inside the caller's transaction.

        Cancelled jobs advance the schedule but leave reliability unchanged.
        """
        frequency = db.execute(
            select(RegulatorySource.update_frequency).where(RegulatorySource.id == source_id)
        ).scalar_one_or_none()

        values: dict[str, Any] = {
            "last_crawled": now,
            "next_crawl": now + self.crawl_interval(frequency),
            "updated_at": now,
        }
        if status in (JobStatus.COMPLETED, JobStatus.FAILED):
            values["reliability"] = self._reliability_expression(status)

        db.execute(
            update(RegulatorySource).where(RegulatorySource.id == source_id).values(**values)
        )


class JobLifecycleManager:
    """Creates crawler jobs and drives them through their states."""

    def __init__(
        self,
        feedback: SourceFeedbackPolicy | None = None,
        session_factory: SessionFactory = db_session,
    ):
        self.feedback = feedback
        self.session_factory = session_factory

    def create(self, source_id: int, job_type: JobType) -> int:
        with self.session_factory() as db:
            job = CrawlerJob(source_id=source_id, job_type=job_type, status=JobStatus.PENDING)
            db.add(job)
            db.commit()
            db.refresh(job)
            logger.info("job_created", job_id=job.id, source_id=source_id, job_type=job_type.value)
            return job.id

    def get_status(self, job_id: int) -> JobStatus:
        with self.session_factory() as db:
            status = db.execute(
                select(CrawlerJob.status).where(CrawlerJob.id == job_id)
            ).scalar_one_or_none()
        if status is None:
            raise RecordNotFoundError(
                f"Crawler job {job_id} not found", model="CrawlerJob", record_id=job_id
            )
        return status

    def is_cancelled(self, job_id: int) -> bool:
        return self.get_status(job_id) == JobStatus.CANCELLED

    def _transition(self, job_id: int, target: JobStatus, **values: Any) -> CrawlerJob:
        with self.session_factory() as db:
            job = db.get(CrawlerJob, job_id)
            if job is None:
                raise RecordNotFoundError(
                    f"Crawler job {job_id} not found", model="CrawlerJob", record_id=job_id
                )

            current = job.status
            if not can_transition(current, target):
                raise JobStateError(
                    f"Cannot move job from {current.value} to {target.value}",
                    job_id=job_id,
                    current_status=current.value,
                    target_status=target.value,
                )

            now = utc_now()
            values["status"] = target
            values["updated_at"] = now
            if target == JobStatus.RUNNING:
                values["started_at"] = now
            if target.is_terminal:
                started_at = as_utc(job.started_at)
                values["completed_at"] = now
                values["execution_time"] = (
                    int((now - started_at).total_seconds() * 1000) if started_at else 0
                )

            result = db.execute(
                update(CrawlerJob)
                .where(CrawlerJob.id == job_id, CrawlerJob.status == current)
                .values(**values)
            )
            if result.rowcount != 1:
                db.rollback()
                raise JobStateError(
                    f"Job {job_id} changed state concurrently",
                    job_id=job_id,
                    current_status=current.value,
                    target_status=target.value,
                )

            if target.is_terminal and self.feedback is not None:
                self.feedback.apply(db, job.source_id, target, now)

            db.commit()
            db.refresh(job)
            db.expunge(job)

        if target.is_terminal:
            log_job_finalized(
                logger,
                job_id=job_id,
                source_id=job.source_id,
                status=target.value,
                execution_time_ms=job.execution_time,
            )
        return job

    def start(self, job_id: int) -> CrawlerJob:
        return self._transition(job_id, JobStatus.RUNNING)

    def complete(
        self,
        job_id: int,
        *,
        updates_found: int,
        new_updates: int,
        pages_scraped: int,
        sample: list[dict[str, Any]] | None = None,
    ) -> CrawlerJob:
        return self._transition(
            job_id,
            JobStatus.COMPLETED,
            updates_found=updates_found,
            new_updates=new_updates,
            pages_scraped=pages_scraped,
            data_extracted={"updates": sample or []},
        )

    def fail(
        self,
        job_id: int,
        error_message: str,
        *,
        updates_found: int = 0,
        pages_scraped: int = 0,
    ) -> CrawlerJob:
        return self._transition(
            job_id,
            JobStatus.FAILED,
            error_message=error_message,
            updates_found=updates_found,
            pages_scraped=pages_scraped,
        )

    def cancel(self, job_id: int, reason: str = "Cancelled") -> CrawlerJob:
        """Cancel a pending or running job (manual re-trigger, operator)."""
        return self._transition(job_id, JobStatus.CANCELLED, error_message=reason)
