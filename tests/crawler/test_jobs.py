"""Tests for crawler job transitions and source feedback."""

from datetime import timedelta

import pytest

from regwatch.crawler.config import CrawlerConfig
from regwatch.crawler.jobs import (
    JobLifecycleManager,
    SourceFeedbackPolicy,
    adjust_reliability,
    can_transition,
)
from regwatch.exceptions import JobStateError, RecordNotFoundError
from regwatch.storage.database.models import (
    CrawlerJob,
    JobStatus,
    JobType,
    RegulatorySource,
    UpdateFrequency,
)
from regwatch.storage.session import db_session
from regwatch.utils.datetime import as_utc


def load_source(source_id: int) -> RegulatorySource:
    with db_session() as db:
        source = db.get(RegulatorySource, source_id)
        db.expunge(source)
        return source


def load_job(job_id: int) -> CrawlerJob:
    with db_session() as db:
        job = db.get(CrawlerJob, job_id)
        db.expunge(job)
        return job


@pytest.fixture
def jobs(crawler_config) -> JobLifecycleManager:
    return JobLifecycleManager(SourceFeedbackPolicy(crawler_config))


class TestTransitions:
    @pytest.mark.parametrize(
        "current,target",
        [
            (JobStatus.PENDING, JobStatus.RUNNING),
            (JobStatus.PENDING, JobStatus.CANCELLED),
            (JobStatus.PENDING, JobStatus.FAILED),
            (JobStatus.RUNNING, JobStatus.COMPLETED),
            (JobStatus.RUNNING, JobStatus.FAILED),
            (JobStatus.RUNNING, JobStatus.CANCELLED),
        ],
    )
    def test_allowed(self, current, target):
        assert can_transition(current, target)

    @pytest.mark.parametrize(
        "current,target",
        [
            (JobStatus.PENDING, JobStatus.COMPLETED),
            (JobStatus.RUNNING, JobStatus.PENDING),
            (JobStatus.COMPLETED, JobStatus.FAILED),
            (JobStatus.FAILED, JobStatus.RUNNING),
            (JobStatus.CANCELLED, JobStatus.COMPLETED),
        ],
    )
    def test_forbidden(self, current, target):
        assert not can_transition(current, target)


class TestAdjustReliability:
    def test_success_raises_up_to_one(self):
        assert adjust_reliability(0.5, True) == pytest.approx(0.6)
        assert adjust_reliability(0.95, True) == 1.0

    def test_failure_lowers_down_to_floor(self):
        assert adjust_reliability(0.5, False) == pytest.approx(0.3)
        assert adjust_reliability(0.2, False) == 0.1


class TestJobLifecycle:
    def test_happy_path(self, jobs, make_source):
        job_id = jobs.create(make_source(), JobType.SCHEDULED)
        assert jobs.get_status(job_id) == JobStatus.PENDING

        started = jobs.start(job_id)
        assert started.status == JobStatus.RUNNING
        assert started.started_at is not None

        done = jobs.complete(
            job_id,
            updates_found=4,
            new_updates=2,
            pages_scraped=3,
            sample=[{"title": "A"}],
        )
        assert done.status == JobStatus.COMPLETED
        assert done.completed_at is not None
        assert done.execution_time is not None and done.execution_time >= 0

        job = load_job(job_id)
        assert (job.updates_found, job.new_updates, job.pages_scraped) == (4, 2, 3)
        assert job.data_extracted == {"updates": [{"title": "A"}]}

    def test_fail_records_message(self, jobs, make_source):
        job_id = jobs.create(make_source(), JobType.MANUAL)
        jobs.start(job_id)

        jobs.fail(job_id, "Timed out after 30000ms", pages_scraped=1)

        job = load_job(job_id)
        assert job.status == JobStatus.FAILED
        assert job.error_message == "Timed out after 30000ms"
        assert job.pages_scraped == 1

    def test_cancel_pending_job(self, jobs, make_source):
        job_id = jobs.create(make_source(), JobType.MANUAL)

        jobs.cancel(job_id)

        assert jobs.is_cancelled(job_id)
        assert load_job(job_id).execution_time == 0

    def test_terminal_job_is_immutable(self, jobs, make_source):
        job_id = jobs.create(make_source(), JobType.MANUAL)
        jobs.start(job_id)
        jobs.cancel(job_id)

        with pytest.raises(JobStateError):
            jobs.complete(job_id, updates_found=1, new_updates=1, pages_scraped=1)

        job = load_job(job_id)
        assert job.status == JobStatus.CANCELLED
        assert job.new_updates == 0

    def test_cannot_complete_pending_job(self, jobs, make_source):
        job_id = jobs.create(make_source(), JobType.MANUAL)
        with pytest.raises(JobStateError):
            jobs.complete(job_id, updates_found=0, new_updates=0, pages_scraped=0)

    def test_unknown_job(self, jobs, test_db):
        with pytest.raises(RecordNotFoundError):
            jobs.get_status(999)
        with pytest.raises(RecordNotFoundError):
            jobs.start(999)


class TestSourceFeedback:
    def test_completion_raises_reliability_and_reschedules(self, jobs, make_source):
        source_id = make_source(reliability=0.5)
        job_id = jobs.create(source_id, JobType.SCHEDULED)
        jobs.start(job_id)
        jobs.complete(job_id, updates_found=0, new_updates=0, pages_scraped=1)

        source = load_source(source_id)
        assert source.reliability == pytest.approx(0.6)
        assert source.last_crawled is not None
        assert as_utc(source.next_crawl) - as_utc(source.last_crawled) == timedelta(hours=24)

    def test_reliability_capped(self, jobs, make_source):
        source_id = make_source(reliability=1.0)
        job_id = jobs.create(source_id, JobType.SCHEDULED)
        jobs.start(job_id)
        jobs.complete(job_id, updates_found=0, new_updates=0, pages_scraped=1)

        assert load_source(source_id).reliability == 1.0

    def test_failure_lowers_reliability_to_floor(self, jobs, make_source):
        source_id = make_source(reliability=0.15)
        job_id = jobs.create(source_id, JobType.SCHEDULED)
        jobs.start(job_id)
        jobs.fail(job_id, "boom")

        assert load_source(source_id).reliability == pytest.approx(0.1)

    def test_cancel_keeps_reliability(self, jobs, make_source):
        source_id = make_source(reliability=0.7)
        job_id = jobs.create(source_id, JobType.MANUAL)
        jobs.start(job_id)
        jobs.cancel(job_id)

        source = load_source(source_id)
        assert source.reliability == pytest.approx(0.7)
        assert source.next_crawl is not None

    def test_update_frequency_honored_when_enabled(self, make_source):
        config = CrawlerConfig(_env_file=None, honor_update_frequency=True)
        jobs = JobLifecycleManager(SourceFeedbackPolicy(config))
        source_id = make_source(update_frequency=UpdateFrequency.WEEKLY)
        job_id = jobs.create(source_id, JobType.SCHEDULED)
        jobs.start(job_id)
        jobs.complete(job_id, updates_found=0, new_updates=0, pages_scraped=1)

        source = load_source(source_id)
        assert as_utc(source.next_crawl) - as_utc(source.last_crawled) == timedelta(days=7)

    def test_crawl_interval(self, crawler_config):
        policy = SourceFeedbackPolicy(crawler_config)
        assert policy.crawl_interval(UpdateFrequency.HOURLY) == timedelta(hours=24)

        honoring = SourceFeedbackPolicy(
            CrawlerConfig(_env_file=None, honor_update_frequency=True)
        )
        assert honoring.crawl_interval(UpdateFrequency.HOURLY) == timedelta(hours=1)
        assert honoring.crawl_interval(None) == timedelta(hours=24)

    def test_no_feedback_without_policy(self, make_source):
        source_id = make_source(reliability=0.5)
        jobs = JobLifecycleManager()
        job_id = jobs.create(source_id, JobType.MANUAL)
        jobs.start(job_id)
        jobs.fail(job_id, "boom")

        source = load_source(source_id)
        assert source.reliability == 0.5
        assert source.last_crawled is None
