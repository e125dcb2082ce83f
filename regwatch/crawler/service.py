"""Regulatory crawler service: the per-source pipeline and scheduled sweeps.

One crawl runs strictly sequentially::

    job created ─> job running ─> extract ─> relevance gate ─> classify
        ─> dedup ─> persist ─> job completed ─> impact fan-out

A cancelled crawl still fans out the updates it committed before the
cancellation was observed.

Independent sources run concurrently up to ``max_concurrent_crawls``. Every
collaborator (fetcher, classifier, impact assessor, store) is injected, so
tests drive the whole pipeline with stubs.
"""

from __future__ import annotations

import asyncio
from typing import Any

from ..exceptions import CrawlCancelledError, JobStateError
from ..storage.database.models import JobStatus, JobType
from ..storage.session import SessionFactory, db_session
from ..utils.logging import LogPerformance, clear_correlation_id, get_logger, set_correlation_id
from .classifier import ClassificationFilter, ContentClassifier, create_classifier
from .config import CrawlerConfig, get_crawler_config
from .dedup import Deduplicator
from .fetcher import CrawlSession, PageFetcher, create_fetcher
from .jobs import JobLifecycleManager, SourceFeedbackPolicy
from .models import CrawlResult, ExtractedUpdate, RawCandidate, SourceSnapshot
from .notifier import ImpactAssessor, NotificationFanout, create_impact_assessor
from .persister import PersistedUpdate, UpdatePersister
from .registry import SourceRegistry, UpdateQueries
from .strategies import (
    ExtractionStrategy,
    StrategyRegistry,
    default_registry,
    fetch_detail_content,
    run_strategy,
)

logger = get_logger(__name__)


class RegulatoryCrawlerService:
    """Crawls regulatory sources and records genuinely new updates."""

    def __init__(
        self,
        config: CrawlerConfig | None = None,
        *,
        fetcher: PageFetcher | None = None,
        classifier: ContentClassifier | None = None,
        assessor: ImpactAssessor | None = None,
        strategies: StrategyRegistry | None = None,
        session_factory: SessionFactory = db_session,
    ):
        self.config = config or get_crawler_config()
        self.fetcher = fetcher or create_fetcher(self.config)
        self.assessor = assessor or create_impact_assessor(self.config)
        self.strategies = strategies or default_registry()

        self.sources = SourceRegistry(session_factory)
        self.queries = UpdateQueries(session_factory)
        self.jobs = JobLifecycleManager(SourceFeedbackPolicy(self.config), session_factory)
        self.filter = ClassificationFilter(
            classifier if classifier is not None else create_classifier(self.config),
            timeout_seconds=self.config.classifier_timeout_seconds,
            content_chars=self.config.classifier_content_chars,
        )
        self.deduplicator = Deduplicator(session_factory)
        self.persister = UpdatePersister(session_factory)
        self.fanout = NotificationFanout(self.assessor)

    async def close(self) -> None:
        await self.fetcher.close()
        close = getattr(self.assessor, "close", None)
        if close is not None:
            await close()

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def sources_due_for_crawling(self) -> list[SourceSnapshot]:
        return self.sources.sources_due()

    async def run_scheduled_crawls(self) -> dict[str, Any]:
        """Crawl every due source, bounded by ``max_concurrent_crawls``.

        One source failing never stops the others.

        Returns:
            Run summary with per-status counts and per-source results
        """
        due = self.sources_due_for_crawling()
        logger.info("scheduled_crawls_started", sources=len(due))

        semaphore = asyncio.Semaphore(self.config.max_concurrent_crawls)

        async def _bounded(source: SourceSnapshot) -> CrawlResult:
            async with semaphore:
                logger.info("crawling_source", source_id=source.id, name=source.name)
                return await self.crawl_source(source.id, JobType.SCHEDULED)

        outcomes = await asyncio.gather(*(_bounded(s) for s in due), return_exceptions=True)

        summary: dict[str, Any] = {
            "sources": len(due),
            "completed": 0,
            "failed": 0,
            "cancelled": 0,
            "new_updates": 0,
            "results": [],
        }
        for source, outcome in zip(due, outcomes, strict=True):
            if isinstance(outcome, BaseException):
                logger.error(
                    "scheduled_crawl_crashed",
                    source_id=source.id,
                    error=str(outcome),
                    error_type=type(outcome).__name__,
                )
                summary["failed"] += 1
                continue

            summary["results"].append(outcome)
            summary["new_updates"] += outcome.new_updates
            if outcome.status == JobStatus.COMPLETED:
                summary["completed"] += 1
            elif outcome.status == JobStatus.CANCELLED:
                summary["cancelled"] += 1
            else:
                summary["failed"] += 1

        logger.info(
            "scheduled_crawls_completed",
            sources=summary["sources"],
            completed=summary["completed"],
            failed=summary["failed"],
            cancelled=summary["cancelled"],
            new_updates=summary["new_updates"],
        )
        return summary

    # ------------------------------------------------------------------
    # Per-source pipeline
    # ------------------------------------------------------------------

    def _ensure_not_cancelled(self, job_id: int) -> None:
        if self.jobs.is_cancelled(job_id):
            raise CrawlCancelledError("Crawl job was cancelled", context={"job_id": job_id})

    async def _attach_detail_content(
        self, session: CrawlSession, candidates: list[RawCandidate]
    ) -> list[RawCandidate]:
        enriched = []
        for candidate in candidates:
            if session.remaining_pages > 0:
                content = await fetch_detail_content(session, candidate.link)
                candidate = candidate.model_copy(update={"content": content})
            enriched.append(candidate)
        return enriched

    def _sample(self, updates: list[ExtractedUpdate]) -> list[dict[str, Any]]:
        return [
            update.model_dump(mode="json", exclude={"content"})
            for update in updates[: self.config.extracted_sample_size]
        ]

    async def _run_pipeline(
        self,
        source: SourceSnapshot,
        strategy: ExtractionStrategy,
        session: CrawlSession,
        job_id: int,
    ) -> tuple[int, list[ExtractedUpdate], list[PersistedUpdate]]:
        raw = await run_strategy(strategy, session)
        relevant = self.filter.filter_relevant(raw, strategy.vocabulary)
        logger.info(
            "relevance_filtered", source_id=source.id, candidates=len(raw), relevant=len(relevant)
        )

        if strategy.follow_detail_pages:
            relevant = await self._attach_detail_content(session, relevant)

        classified = await self.filter.classify_all(relevant, strategy.fallback_update_type)
        fresh = self.deduplicator.filter_new(classified)

        persisted = self.persister.persist(
            source.id, fresh, before_each=lambda: self._ensure_not_cancelled(job_id)
        )
        return len(raw), classified, persisted

    async def crawl_source(self, source_id: int, job_type: JobType = JobType.MANUAL) -> CrawlResult:
        """Run one crawl attempt for a source.

        Never raises for pipeline failures: the outcome is recorded on the
        job row and returned as a ``CrawlResult``.
        """
        set_correlation_id()
        try:
            return await self._crawl_source(source_id, job_type)
        finally:
            clear_correlation_id()

    async def _crawl_source(self, source_id: int, job_type: JobType) -> CrawlResult:
        source = self.sources.get(source_id)
        if source is None:
            logger.warning("crawl_source_not_found", source_id=source_id)
            return CrawlResult(
                success=False, source_id=source_id, error_message=f"Source {source_id} not found"
            )

        job_id = self.jobs.create(source.id, job_type)
        try:
            self.jobs.start(job_id)
        except JobStateError:
            logger.info("crawl_cancelled_before_start", job_id=job_id, source_id=source.id)
            return CrawlResult(
                success=False, status=JobStatus.CANCELLED, job_id=job_id, source_id=source.id
            )

        strategy = self.strategies.resolve(source)
        session = CrawlSession(
            source,
            self.fetcher,
            self.config,
            cancel_check=lambda: self._ensure_not_cancelled(job_id),
        )
        logger.info(
            "crawl_started",
            job_id=job_id,
            source_id=source.id,
            source=source.name,
            strategy=strategy.name,
            job_type=job_type.value,
        )

        updates_found = 0
        persisted: list[PersistedUpdate] = []
        try:
            with LogPerformance(
                "crawl_pipeline",
                logger,
                expected_errors=(CrawlCancelledError,),
                source_id=source.id,
                job_id=job_id,
            ):
                updates_found, classified, persisted = await self._run_pipeline(
                    source, strategy, session, job_id
                )
            job = self.jobs.complete(
                job_id,
                updates_found=updates_found,
                new_updates=len(persisted),
                pages_scraped=session.pages_scraped,
                sample=self._sample(classified),
            )
        except (CrawlCancelledError, JobStateError) as e:
            if isinstance(e, CrawlCancelledError):
                persisted = e.persisted
            logger.info(
                "crawl_cancelled",
                job_id=job_id,
                source_id=source.id,
                committed_updates=len(persisted),
            )
            # Committed rows are deduplicated away next time, so signal them now
            await self._notify(job_id, persisted)
            return CrawlResult(
                success=False,
                status=JobStatus.CANCELLED,
                job_id=job_id,
                source_id=source.id,
                updates_found=updates_found,
                new_updates=len(persisted),
                pages_scraped=session.pages_scraped,
                new_update_ids=[update.id for update in persisted],
            )
        except Exception as e:
            return self._record_failure(job_id, source, e, updates_found, session.pages_scraped)

        await self._notify(job_id, persisted)

        logger.info(
            "crawl_completed",
            job_id=job_id,
            source_id=source.id,
            updates_found=updates_found,
            new_updates=len(persisted),
            pages_scraped=session.pages_scraped,
        )
        return CrawlResult(
            success=True,
            status=JobStatus.COMPLETED,
            job_id=job_id,
            source_id=source.id,
            updates_found=updates_found,
            new_updates=len(persisted),
            pages_scraped=session.pages_scraped,
            execution_time=job.execution_time or 0,
            new_update_ids=[update.id for update in persisted],
            extracted_data=classified,
        )

    async def _notify(self, job_id: int, persisted: list[PersistedUpdate]) -> None:
        failures = await self.fanout.notify(persisted)
        if failures:
            logger.warning("impact_fanout_incomplete", job_id=job_id, failures=failures)

    def _record_failure(
        self,
        job_id: int,
        source: SourceSnapshot,
        error: Exception,
        updates_found: int,
        pages_scraped: int,
    ) -> CrawlResult:
        message = str(error) or type(error).__name__
        logger.error(
            "crawl_failed",
            job_id=job_id,
            source_id=source.id,
            error=message,
            error_type=type(error).__name__,
        )
        try:
            job = self.jobs.fail(
                job_id, message, updates_found=updates_found, pages_scraped=pages_scraped
            )
        except JobStateError:
            # Cancelled while failing; the cancel already finalized the job
            return CrawlResult(
                success=False,
                status=JobStatus.CANCELLED,
                job_id=job_id,
                source_id=source.id,
                error_message=message,
            )

        return CrawlResult(
            success=False,
            status=JobStatus.FAILED,
            job_id=job_id,
            source_id=source.id,
            updates_found=updates_found,
            pages_scraped=pages_scraped,
            execution_time=job.execution_time or 0,
            error_message=message,
        )

    # ------------------------------------------------------------------
    # Operator actions and queries
    # ------------------------------------------------------------------

    def cancel_job(self, job_id: int) -> None:
        self.jobs.cancel(job_id)
        logger.info("crawl_job_cancelled", job_id=job_id)

    def get_recent_updates(self, limit: int = 50) -> list[dict[str, Any]]:
        return self.queries.recent_updates(limit)

    def get_pending_updates(self) -> list[dict[str, Any]]:
        return self.queries.pending_updates()

    def get_crawler_stats(self) -> dict[str, Any]:
        return self.queries.crawler_stats()
