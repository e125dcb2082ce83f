"""Periodic crawl scheduler.

APScheduler-based scheduler that sweeps due sources on a fixed interval.

Example:
    >>> scheduler = CrawlScheduler()
    >>> scheduler.start()
    >>> scheduler.get_status()
    >>> scheduler.trigger_source(3, JobType.RETRY)
    >>> scheduler.stop()
"""

from collections.abc import Callable
from datetime import datetime
from typing import Any

from apscheduler.schedulers.background import BackgroundScheduler  # type: ignore[import-untyped]
from apscheduler.triggers.interval import IntervalTrigger  # type: ignore[import-untyped]

from ..storage.database.models import JobType
from ..utils.async_bridge import run_async
from ..utils.datetime import utc_now
from ..utils.logging import get_logger
from .config import CrawlerConfig, get_crawler_config
from .models import CrawlResult
from .service import RegulatoryCrawlerService

logger = get_logger(__name__)

ServiceFactory = Callable[[CrawlerConfig], RegulatoryCrawlerService]


class CrawlScheduler:
    """Runs ``run_scheduled_crawls`` every ``schedule_interval_minutes``.

    Each sweep runs in a fresh event loop on the scheduler thread, with a
    service built for that loop (HTTP clients and browsers are loop-bound).
    """

    def __init__(
        self,
        config: CrawlerConfig | None = None,
        service_factory: ServiceFactory = RegulatoryCrawlerService,
    ):
        self.config = config or get_crawler_config()
        self.service_factory = service_factory

        self.scheduler = BackgroundScheduler()

        self.running = False
        self.sweep_in_progress = False
        self.last_run_time: datetime | None = None
        self.last_summary: dict[str, Any] | None = None

        logger.info(
            "crawl_scheduler_initialized", interval_minutes=self.config.schedule_interval_minutes
        )

    def start(self) -> None:
        if self.running:
            logger.warning("scheduler_already_running")
            return

        self.scheduler.add_job(
            func=self._sweep,
            trigger=IntervalTrigger(minutes=self.config.schedule_interval_minutes),
            id="regulatory_crawl_sweep",
            name="Crawl Due Regulatory Sources",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            next_run_time=utc_now(),
        )

        self.scheduler.start()
        self.running = True

        logger.info("crawl_scheduler_started", interval_minutes=self.config.schedule_interval_minutes)

    def stop(self) -> None:
        if not self.running:
            logger.warning("scheduler_not_running")
            return

        self.scheduler.shutdown(wait=True)
        self.running = False

        logger.info("crawl_scheduler_stopped")

    async def _run_with_service(self, action: Callable[[RegulatoryCrawlerService], Any]) -> Any:
        service = self.service_factory(self.config)
        try:
            return await action(service)
        finally:
            await service.close()

    def _run(self, action: Callable[[RegulatoryCrawlerService], Any]) -> Any:
        return run_async(self._run_with_service(action))

    def _sweep(self) -> None:
        """Scheduled job: crawl every due source."""
        if self.sweep_in_progress:
            logger.warning("crawl_sweep_skipped", reason="previous sweep still running")
            return

        self.sweep_in_progress = True
        self.last_run_time = utc_now()
        logger.info("crawl_sweep_started")

        try:
            summary = self._run(lambda service: service.run_scheduled_crawls())
            self.last_summary = {k: v for k, v in summary.items() if k != "results"}
        except Exception as e:
            logger.error("crawl_sweep_failed", error=str(e), exc_info=True)
        finally:
            self.sweep_in_progress = False

    def trigger_source(self, source_id: int, job_type: JobType = JobType.MANUAL) -> CrawlResult:
        """Crawl one source now, outside the interval (manual or retry run)."""
        logger.info("manual_crawl_triggered", source_id=source_id, job_type=job_type.value)
        return self._run(lambda service: service.crawl_source(source_id, job_type))

    def get_status(self) -> dict[str, Any]:
        job = self.scheduler.get_job("regulatory_crawl_sweep") if self.running else None
        return {
            "running": self.running,
            "sweep_in_progress": self.sweep_in_progress,
            "interval_minutes": self.config.schedule_interval_minutes,
            "last_run_time": self.last_run_time.isoformat() if self.last_run_time else None,
            "next_run_time": (
                job.next_run_time.isoformat() if job and job.next_run_time else None
            ),
            "last_summary": self.last_summary,
        }
