"""
Pytest configuration and global fixtures.

This module provides shared fixtures used across all tests: an in-memory
database, crawler configuration, and deterministic stand-ins for the page
fetcher, the content classifier and the impact assessor.
"""

from collections.abc import Generator
from typing import Any

import pytest
from sqlalchemy.engine import Engine

from regwatch.crawler.config import CrawlerConfig
from regwatch.crawler.fetcher import FetchedPage, FetchOptions
from regwatch.crawler.models import ClassificationRequest, ClassificationResult
from regwatch.exceptions import FetchError
from regwatch.storage.database.base import dispose_db, init_db
from regwatch.storage.database.models import (
    RegulatorySource,
    SourceType,
    UpdateFrequency,
)
from regwatch.storage.session import db_session


class StubFetcher:
    """Serves canned pages keyed by URL; unknown URLs raise FetchError (404)."""

    def __init__(self, pages: dict[str, Any] | None = None):
        self.pages: dict[str, Any] = dict(pages or {})
        self.calls: list[tuple[str, FetchOptions]] = []
        self.closed = False

    async def fetch(self, url: str, options: FetchOptions) -> FetchedPage:
        self.calls.append((url, options))
        response = self.pages.get(url)
        if response is None:
            raise FetchError("Unexpected HTTP status 404", url=url, status_code=404)
        if isinstance(response, Exception):
            raise response
        return FetchedPage(url=url, status_code=200, content=response)

    async def close(self) -> None:
        self.closed = True

    @property
    def urls(self) -> list[str]:
        return [url for url, _ in self.calls]


class StubClassifier:
    """Returns a fixed result, or raises the configured error."""

    def __init__(
        self,
        result: ClassificationResult | None = None,
        error: Exception | None = None,
    ):
        self.result = result
        self.error = error
        self.requests: list[ClassificationRequest] = []

    async def classify(self, request: ClassificationRequest) -> ClassificationResult:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        assert self.result is not None
        return self.result


class RecordingAssessor:
    """Records impact assessment calls; optionally fails on ``assess``."""

    def __init__(self, fail_on: set[int] | None = None):
        self.fail_on = fail_on or set()
        self.assessed: list[int] = []
        self.predicted: list[int] = []

    async def assess(self, update_id: int) -> None:
        self.assessed.append(update_id)
        if update_id in self.fail_on:
            raise RuntimeError(f"assessor unavailable for {update_id}")

    async def assess_predictive(self, update_id: int) -> None:
        self.predicted.append(update_id)


@pytest.fixture(scope="function")
def test_db() -> Generator[Engine, None, None]:
    """Initialize a fresh in-memory database for one test."""
    engine = init_db("sqlite:///:memory:")
    yield engine
    dispose_db()


@pytest.fixture
def crawler_config() -> CrawlerConfig:
    """Crawler configuration isolated from the environment."""
    return CrawlerConfig(
        _env_file=None,
        database_url="sqlite:///:memory:",
        classifier_enabled=False,
        openai_api_key=None,
        fetch_retry_attempts=0,
        impact_webhook_url=None,
        max_concurrent_crawls=2,
    )


@pytest.fixture
def stub_fetcher() -> StubFetcher:
    return StubFetcher()


@pytest.fixture
def recording_assessor() -> RecordingAssessor:
    return RecordingAssessor()


@pytest.fixture
def make_source(test_db):
    """Factory creating ``RegulatorySource`` rows; returns the new id."""

    def _make(
        name: str = "Test Regulator",
        source_type: SourceType = SourceType.API,
        base_url: str = "https://api.example.org/updates",
        crawl_config: dict[str, Any] | None = None,
        selectors: dict[str, str] | None = None,
        **overrides: Any,
    ) -> int:
        values: dict[str, Any] = {
            "name": name,
            "jurisdiction": "UK",
            "source_type": source_type,
            "base_url": base_url,
            "crawl_config": crawl_config or {},
            "selectors": selectors or {},
            "update_frequency": UpdateFrequency.DAILY,
            "reliability": 1.0,
            "priority": 5,
            "tags": [],
        }
        values.update(overrides)
        with db_session() as db:
            source = RegulatorySource(**values)
            db.add(source)
            db.commit()
            return source.id

    return _make
