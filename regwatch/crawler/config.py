"""Crawler configuration for regulatory update monitoring.

Environment Variables (prefix ``REGWATCH_CRAWLER_``):
- REGWATCH_CRAWLER_DATABASE_URL: SQLAlchemy database URL
- REGWATCH_CRAWLER_FETCHER_BACKEND: ``http`` or ``playwright``
- REGWATCH_CRAWLER_FETCH_TIMEOUT_MS: Page fetch timeout (default: 30000)
- REGWATCH_CRAWLER_MAX_CONCURRENT_CRAWLS: Sources crawled in parallel (default: 3)
- REGWATCH_CRAWLER_CLASSIFIER_ENABLED: Use the LLM classifier (default: true)
- REGWATCH_CRAWLER_OPENAI_API_KEY / OPENAI_API_KEY: Key for the LLM classifier
- REGWATCH_CRAWLER_HONOR_UPDATE_FREQUENCY: Schedule by source frequency (default: false)
- REGWATCH_CRAWLER_IMPACT_WEBHOOK_URL: Impact assessor endpoint (optional)
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal
from urllib.parse import urlparse

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class CrawlerConfig(BaseSettings):
    """Configuration for the regulatory crawl pipeline.

    Controls fetching, classification, job feedback and scheduling.
    """

    model_config = SettingsConfigDict(
        env_prefix="REGWATCH_CRAWLER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Storage
    database_url: str = Field(
        default="sqlite:///./regwatch.db", description="SQLAlchemy database URL"
    )

    sources_config_path: Path = Field(
        default=Path(__file__).parent / "sources.json",
        description="JSON file with the regulatory source registry",
    )

    # Fetching
    fetcher_backend: Literal["http", "playwright"] = Field(
        default="http", description="Page fetcher implementation"
    )

    browser_type: Literal["chromium", "firefox", "webkit"] = Field(
        default="chromium", description="Browser type for Playwright"
    )

    headless: bool = Field(default=True, description="Run browser in headless mode")

    user_agent: str = Field(
        default="regwatch/0.3 (Regulatory Update Monitor)",
        description="Default User-Agent, overridable per source",
    )

    fetch_timeout_ms: int = Field(
        default=30_000, ge=1_000, le=300_000, description="Page fetch timeout in milliseconds"
    )

    fetch_retry_attempts: int = Field(
        default=2, ge=0, le=10, description="Retries on transport errors per fetch"
    )

    max_concurrent_crawls: int = Field(
        default=3, ge=1, le=32, description="Maximum sources crawled concurrently"
    )

    # Extraction bounds
    max_api_pages: int = Field(
        default=5, ge=1, le=5, description="Hard cap on JSON API pages followed"
    )

    max_items_per_page: int = Field(
        default=100, ge=1, le=1000, description="Items read from one API page"
    )

    extracted_sample_size: int = Field(
        default=5, ge=0, le=50, description="Candidates kept on the job row for audit"
    )

    # AI classification
    classifier_enabled: bool = Field(default=True, description="Use the LLM content classifier")

    openai_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("REGWATCH_CRAWLER_OPENAI_API_KEY", "OPENAI_API_KEY"),
        description="API key for the LLM classifier",
    )

    ai_model: str = Field(default="gpt-4o-mini", description="Model used for classification")

    classifier_timeout_seconds: float = Field(
        default=15.0, gt=0, le=120, description="Hard timeout for one classification call"
    )

    classifier_content_chars: int = Field(
        default=1000, ge=0, le=4000, description="Content characters sent to the classifier"
    )

    # Job feedback
    default_crawl_interval_hours: int = Field(
        default=24, ge=1, le=168, description="Hours until the next crawl of a source"
    )

    honor_update_frequency: bool = Field(
        default=False, description="Use each source's update_frequency for next_crawl"
    )

    reliability_success_delta: float = Field(default=0.1, ge=0.0, le=1.0)
    reliability_failure_delta: float = Field(default=0.2, ge=0.0, le=1.0)
    reliability_floor: float = Field(default=0.1, ge=0.0, le=1.0)

    # Scheduling
    schedule_interval_minutes: int = Field(
        default=60, ge=1, le=1440, description="Minutes between scheduled crawl sweeps"
    )

    # Downstream impact assessment
    impact_webhook_url: str | None = Field(
        default=None, description="Base URL of the impact assessment service"
    )

    impact_timeout_seconds: float = Field(default=10.0, gt=0, le=120)

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    json_logs: bool = Field(default=False, description="Emit JSON logs")

    @field_validator("impact_webhook_url")
    @classmethod
    def validate_webhook_url(cls, v: str | None) -> str | None:
        """Only http(s) endpoints are accepted."""
        if v is None:
            return v
        parsed = urlparse(v)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"Invalid impact webhook URL: {v}")
        return v.rstrip("/")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in allowed:
            raise ValueError(f"log_level must be one of {sorted(allowed)}, got {v}")
        return v.upper()

    @property
    def classifier_available(self) -> bool:
        """Whether the LLM classifier can be used at all."""
        return self.classifier_enabled and bool(self.openai_api_key)


@lru_cache
def get_crawler_config() -> CrawlerConfig:
    """Get crawler configuration from environment variables (cached)."""
    return CrawlerConfig()
