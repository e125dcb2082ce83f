"""Tests for the periodic crawl scheduler."""

import json
from unittest.mock import MagicMock, patch

import pytest

from regwatch.crawler.models import CrawlResult
from regwatch.crawler.scheduler import CrawlScheduler
from regwatch.crawler.service import RegulatoryCrawlerService
from regwatch.storage.database.models import JobStatus, JobType
from tests.conftest import RecordingAssessor, StubFetcher


class FakeService:
    """Stands in for ``RegulatoryCrawlerService`` inside the scheduler."""

    instances: list["FakeService"] = []

    def __init__(self, config, summary=None, error=None):
        self.config = config
        self.summary = summary
        self.error = error
        self.closed = False
        self.crawled: list[tuple[int, JobType]] = []
        FakeService.instances.append(self)

    async def run_scheduled_crawls(self):
        if self.error:
            raise self.error
        return self.summary

    async def crawl_source(self, source_id, job_type=JobType.MANUAL):
        self.crawled.append((source_id, job_type))
        return CrawlResult(success=True, status=JobStatus.COMPLETED, job_id=1, source_id=source_id)

    async def close(self):
        self.closed = True


@pytest.fixture(autouse=True)
def reset_fake_services():
    FakeService.instances = []


@pytest.fixture
def mock_background():
    with patch("regwatch.crawler.scheduler.BackgroundScheduler") as cls:
        instance = MagicMock()
        instance.get_job.return_value = None
        cls.return_value = instance
        yield instance


class TestLifecycle:
    def test_start_registers_interval_job(self, crawler_config, mock_background):
        scheduler = CrawlScheduler(crawler_config, service_factory=FakeService)

        scheduler.start()

        assert scheduler.running
        mock_background.start.assert_called_once()
        kwargs = mock_background.add_job.call_args.kwargs
        assert kwargs["id"] == "regulatory_crawl_sweep"
        assert kwargs["max_instances"] == 1
        assert kwargs["coalesce"] is True
        assert kwargs["trigger"].interval.total_seconds() == 60 * 60

    def test_start_twice_is_noop(self, crawler_config, mock_background):
        scheduler = CrawlScheduler(crawler_config, service_factory=FakeService)
        scheduler.start()
        scheduler.start()
        assert mock_background.add_job.call_count == 1

    def test_stop(self, crawler_config, mock_background):
        scheduler = CrawlScheduler(crawler_config, service_factory=FakeService)
        scheduler.start()
        scheduler.stop()

        assert not scheduler.running
        mock_background.shutdown.assert_called_once_with(wait=True)

    def test_stop_when_not_running(self, crawler_config, mock_background):
        CrawlScheduler(crawler_config, service_factory=FakeService).stop()
        mock_background.shutdown.assert_not_called()

    def test_status(self, crawler_config, mock_background):
        scheduler = CrawlScheduler(crawler_config, service_factory=FakeService)
        status = scheduler.get_status()

        assert status["running"] is False
        assert status["interval_minutes"] == crawler_config.schedule_interval_minutes
        assert status["last_run_time"] is None
        assert status["next_run_time"] is None
        json.dumps(status)


class TestSweep:
    def test_sweep_records_summary_without_results(self, crawler_config, mock_background):
        summary = {
            "sources": 2,
            "completed": 1,
            "failed": 1,
            "cancelled": 0,
            "new_updates": 3,
            "results": ["..."],
        }
        scheduler = CrawlScheduler(
            crawler_config, service_factory=lambda config: FakeService(config, summary=summary)
        )

        scheduler._sweep()

        assert scheduler.last_summary == {
            "sources": 2,
            "completed": 1,
            "failed": 1,
            "cancelled": 0,
            "new_updates": 3,
        }
        assert scheduler.last_run_time is not None
        assert not scheduler.sweep_in_progress
        assert FakeService.instances[0].closed

    def test_sweep_failure_is_contained(self, crawler_config, mock_background):
        scheduler = CrawlScheduler(
            crawler_config,
            service_factory=lambda config: FakeService(config, error=RuntimeError("db down")),
        )

        scheduler._sweep()

        assert scheduler.last_summary is None
        assert not scheduler.sweep_in_progress
        assert FakeService.instances[0].closed

    def test_overlapping_sweep_skipped(self, crawler_config, mock_background):
        scheduler = CrawlScheduler(crawler_config, service_factory=FakeService)
        scheduler.sweep_in_progress = True

        scheduler._sweep()

        assert FakeService.instances == []

    def test_each_sweep_gets_fresh_service(self, crawler_config, mock_background):
        scheduler = CrawlScheduler(
            crawler_config,
            service_factory=lambda config: FakeService(config, summary={"sources": 0}),
        )
        scheduler._sweep()
        scheduler._sweep()

        assert len(FakeService.instances) == 2


class TestTriggerSource:
    def test_manual_trigger(self, crawler_config, mock_background):
        scheduler = CrawlScheduler(crawler_config, service_factory=FakeService)

        result = scheduler.trigger_source(5, JobType.RETRY)

        assert result.success
        assert FakeService.instances[0].crawled == [(5, JobType.RETRY)]
        assert FakeService.instances[0].closed

    def test_trigger_with_real_service(self, crawler_config, make_source, mock_background):
        source_id = make_source()
        fetcher = StubFetcher(
            {
                "https://api.example.org/updates": json.dumps(
                    {"items": [{"title": "GDPR guidance", "url": "https://x/1"}]}
                )
            }
        )
        scheduler = CrawlScheduler(
            crawler_config,
            service_factory=lambda config: RegulatoryCrawlerService(
                config, fetcher=fetcher, assessor=RecordingAssessor()
            ),
        )

        result = scheduler.trigger_source(source_id)

        assert result.status == JobStatus.COMPLETED
        assert result.new_updates == 1
        assert fetcher.closed
