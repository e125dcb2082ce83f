"""Regulatory crawler: source registry, extraction, classification and job tracking.

Example:
    >>> from regwatch.crawler import RegulatoryCrawlerService
    >>> service = RegulatoryCrawlerService()
    >>> summary = await service.run_scheduled_crawls()
"""

from .classifier import ClassificationFilter, ContentClassifier, OpenAIContentClassifier
from .config import CrawlerConfig, get_crawler_config
from .dedup import Deduplicator
from .fetcher import CrawlSession, FetchOptions, FetchedPage, HttpPageFetcher, PageFetcher
from .jobs import JobLifecycleManager, SourceFeedbackPolicy
from .models import CrawlResult, ExtractedUpdate, RawCandidate, SourceSnapshot
from .notifier import ImpactAssessor, NotificationFanout
from .persister import UpdatePersister
from .registry import SourceRegistry, UpdateQueries
from .scheduler import CrawlScheduler
from .service import RegulatoryCrawlerService
from .strategies import ExtractionStrategy, StrategyRegistry, default_registry

__all__ = [
    "ClassificationFilter",
    "ContentClassifier",
    "CrawlResult",
    "CrawlScheduler",
    "CrawlSession",
    "CrawlerConfig",
    "Deduplicator",
    "ExtractedUpdate",
    "ExtractionStrategy",
    "FetchOptions",
    "FetchedPage",
    "HttpPageFetcher",
    "ImpactAssessor",
    "JobLifecycleManager",
    "NotificationFanout",
    "OpenAIContentClassifier",
    "PageFetcher",
    "RawCandidate",
    "RegulatoryCrawlerService",
    "SourceFeedbackPolicy",
    "SourceRegistry",
    "SourceSnapshot",
    "StrategyRegistry",
    "UpdatePersister",
    "UpdateQueries",
    "default_registry",
    "get_crawler_config",
]
