"""Transient models for the regulatory crawl pipeline.

Persistent entities live in ``regwatch.storage.database.models``; the
pydantic models here carry data between pipeline stages without holding a
database session open.
"""

from datetime import datetime
from typing import Any, Literal
from urllib.parse import urlparse

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from ..storage.database.models import JobStatus, SourceType, UpdateFrequency


class CrawlConfig(BaseModel):
    """Per-source crawl parameters stored in ``RegulatorySource.crawl_config``.

    Accepts both snake_case and the camelCase keys used by older registry
    exports (``delay``, ``timeout``, ``userAgent``...).
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    max_pages: int = Field(
        default=10, ge=1, le=100, validation_alias=AliasChoices("max_pages", "maxPages")
    )
    delay_ms: int = Field(default=0, ge=0, validation_alias=AliasChoices("delay_ms", "delay"))
    timeout_ms: int | None = Field(
        default=None, ge=1_000, validation_alias=AliasChoices("timeout_ms", "timeout")
    )
    retry_attempts: int | None = Field(
        default=None, ge=0, le=10, validation_alias=AliasChoices("retry_attempts", "retryAttempts")
    )
    user_agent: str | None = Field(
        default=None, validation_alias=AliasChoices("user_agent", "userAgent")
    )

    # JSON API sources
    api_endpoint: str | None = Field(
        default=None, validation_alias=AliasChoices("api_endpoint", "apiEndpoint")
    )
    items_path: str | None = Field(
        default=None, validation_alias=AliasChoices("items_path", "itemsPath")
    )
    next_field: str = Field(default="next", validation_alias=AliasChoices("next_field", "nextField"))


class SourceSelectors(BaseModel):
    """CSS selector overrides for the generic extraction strategy."""

    model_config = ConfigDict(extra="ignore")

    title: str | None = None
    link: str | None = None
    date: str | None = None
    description: str | None = None


class SourceSnapshot(BaseModel):
    """Detached, read-only view of a ``RegulatorySource`` row."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: int
    name: str
    jurisdiction: str
    source_type: SourceType
    base_url: str
    crawl_config: CrawlConfig = Field(default_factory=CrawlConfig)
    selectors: SourceSelectors = Field(default_factory=SourceSelectors)
    update_frequency: UpdateFrequency = UpdateFrequency.DAILY
    is_active: bool = True
    last_crawled: datetime | None = None
    next_crawl: datetime | None = None
    reliability: float = 1.0
    priority: int = 5
    tags: list[str] = Field(default_factory=list)

    @field_validator("crawl_config", mode="before")
    @classmethod
    def default_crawl_config(cls, v: Any) -> Any:
        return v if v is not None else {}

    @field_validator("selectors", mode="before")
    @classmethod
    def default_selectors(cls, v: Any) -> Any:
        return v if v is not None else {}

    @field_validator("tags", mode="before")
    @classmethod
    def default_tags(cls, v: Any) -> Any:
        return v if v is not None else []

    @property
    def domain(self) -> str:
        """Host name of the base URL, lower-cased (``www.gov.uk``)."""
        return (urlparse(self.base_url).hostname or "").lower()


class RawCandidate(BaseModel):
    """A ``{title, description, link, date}`` tuple produced by a strategy."""

    title: str
    description: str = ""
    link: str
    date: str = ""
    content: str | None = None


class ClassificationRequest(BaseModel):
    """Bounded input for the content classifier."""

    title: str
    description: str = ""
    content: str = ""


class ClassificationResult(BaseModel):
    """Structured classifier output (``{updateType, keywords, confidence, summary}``)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    update_type: str = Field(validation_alias=AliasChoices("update_type", "updateType"))
    keywords: list[str] = Field(default_factory=list)
    confidence: float | None = None
    summary: str | None = None

    @field_validator("update_type")
    @classmethod
    def normalize_update_type(cls, v: str) -> str:
        v = v.strip().lower().replace(" ", "_").replace("-", "_")
        if not v:
            raise ValueError("update_type must not be empty")
        return v

    @field_validator("keywords", mode="before")
    @classmethod
    def normalize_keywords(cls, v: Any) -> list[str]:
        if isinstance(v, str):
            v = v.split(",")
        if not isinstance(v, list):
            raise ValueError("keywords must be a list of strings")
        cleaned: list[str] = []
        for item in v:
            if not isinstance(item, str):
                continue
            keyword = item.strip().lower()
            if len(keyword) > 2 and keyword not in cleaned:
                cleaned.append(keyword)
        return cleaned[:10]

    @field_validator("confidence")
    @classmethod
    def clamp_confidence(cls, v: float | None) -> float | None:
        if v is None:
            return v
        return min(max(float(v), 0.0), 1.0)


class ExtractedUpdate(BaseModel):
    """A classified candidate, ready for dedup and persistence."""

    title: str
    description: str | None = None
    content: str | None = None
    summary: str | None = None
    update_type: str
    published_date: datetime | None = None
    effective_date: datetime | None = None
    source_url: str
    document_url: str | None = None
    keywords: list[str] = Field(default_factory=list)
    confidence: float = Field(ge=0.0, le=1.0)
    classified_by: Literal["llm", "rules"] = "rules"

    @property
    def dedup_key(self) -> tuple[str, str]:
        """Identity of an update: exact (title, source_url)."""
        return (self.title, self.source_url)


class CrawlResult(BaseModel):
    """Outcome of one ``crawl_source`` call."""

    success: bool
    status: JobStatus | None = None
    job_id: int | None = None
    source_id: int
    updates_found: int = 0
    new_updates: int = 0
    pages_scraped: int = 0
    execution_time: int = 0
    error_message: str | None = None
    new_update_ids: list[int] = Field(default_factory=list)
    extracted_data: list[ExtractedUpdate] = Field(default_factory=list)
