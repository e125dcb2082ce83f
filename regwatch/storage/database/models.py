"""SQLAlchemy models for the regulatory monitoring pipeline."""

from __future__ import annotations

from datetime import datetime
from enum import Enum as PyEnum
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Enum, Float, ForeignKey, Integer, String, Text
from sqlalchemy import UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, IntPKMixin


class SourceType(str, PyEnum):
    """Kind of regulatory source; drives extraction strategy dispatch."""

    GOVERNMENT = "government"
    REGULATOR = "regulator"
    LEGAL_PUBLISHER = "legal_publisher"
    API = "api"


class UpdateFrequency(str, PyEnum):
    """How often a source publishes (used for next-crawl scheduling if enabled)."""

    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"


class JobType(str, PyEnum):
    """Why a crawl attempt was started."""

    SCHEDULED = "scheduled"
    MANUAL = "manual"
    RETRY = "retry"


class JobStatus(str, PyEnum):
    """Crawler job lifecycle states."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


class UpdateType(str, PyEnum):
    """Classification tag of a regulatory update."""

    AMENDMENT = "amendment"
    NEW_REGULATION = "new_regulation"
    GUIDANCE = "guidance"
    CONSULTATION = "consultation"
    PENDING = "pending"  # Draft / proposed


class UpdateStatus(str, PyEnum):
    """Human review status of a persisted update."""

    PENDING = "pending"
    REVIEWED = "reviewed"
    IMPLEMENTED = "implemented"
    IGNORED = "ignored"


class ImpactLevel(str, PyEnum):
    """Severity assigned by the downstream impact pipeline."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RegulatorySource(IntPKMixin, Base):
    """A monitored regulatory source (government portal, regulator, API...)."""

    __tablename__ = "regulatory_sources"

    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    jurisdiction: Mapped[str] = mapped_column(String(100), nullable=False)  # UK, EU, US, Global
    source_type: Mapped[SourceType] = mapped_column(Enum(SourceType), nullable=False)
    base_url: Mapped[str] = mapped_column(String(1024), nullable=False)

    # Extraction configuration
    crawl_config: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    selectors: Mapped[dict[str, str] | None] = mapped_column(JSON)

    # Scheduling
    update_frequency: Mapped[UpdateFrequency] = mapped_column(
        Enum(UpdateFrequency), default=UpdateFrequency.DAILY, nullable=False
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)
    last_crawled: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    next_crawl: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), index=True)

    # Reputation (0.1 - 1.0 once crawled) and ordering
    reliability: Mapped[float] = mapped_column(Float, default=1.0, nullable=False)
    priority: Mapped[int] = mapped_column(Integer, default=5, nullable=False)
    tags: Mapped[list[str]] = mapped_column(JSON, default=list)

    jobs: Mapped[list[CrawlerJob]] = relationship(back_populates="source")
    updates: Mapped[list[RegulatoryUpdate]] = relationship(back_populates="source")

    def __repr__(self) -> str:
        return f"<RegulatorySource(id={self.id}, name='{self.name}', type='{self.source_type.value}')>"


class CrawlerJob(IntPKMixin, Base):
    """One row per crawl attempt; append-only once terminal."""

    __tablename__ = "crawler_jobs"

    source_id: Mapped[int] = mapped_column(
        ForeignKey("regulatory_sources.id"), nullable=False, index=True
    )
    source: Mapped[RegulatorySource] = relationship(back_populates="jobs")

    job_type: Mapped[JobType] = mapped_column(Enum(JobType), nullable=False)
    status: Mapped[JobStatus] = mapped_column(
        Enum(JobStatus), nullable=False, default=JobStatus.PENDING, index=True
    )

    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # Counters
    updates_found: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    new_updates: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    pages_scraped: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    execution_time: Mapped[int | None] = mapped_column(Integer)  # Milliseconds

    error_message: Mapped[str | None] = mapped_column(Text)
    data_extracted: Mapped[dict[str, Any] | None] = mapped_column(JSON)  # Audit sample

    def __repr__(self) -> str:
        return (
            f"<CrawlerJob(id={self.id}, source_id={self.source_id}, "
            f"type='{self.job_type.value}', status='{self.status.value}')>"
        )


class RegulatoryUpdate(IntPKMixin, Base):
    """A detected regulatory change that survived filtering and dedup."""

    __tablename__ = "regulatory_updates"
    __table_args__ = (UniqueConstraint("title", "source_url", name="uq_regulatory_updates_dedup"),)

    source_id: Mapped[int] = mapped_column(
        ForeignKey("regulatory_sources.id"), nullable=False, index=True
    )
    source: Mapped[RegulatorySource] = relationship(back_populates="updates")
    regulation_id: Mapped[int | None] = mapped_column(Integer)

    # Content
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    content: Mapped[str | None] = mapped_column(Text)
    summary: Mapped[str | None] = mapped_column(Text)
    update_type: Mapped[str | None] = mapped_column(String(100), index=True)

    # Dates
    published_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    effective_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # Links
    source_url: Mapped[str] = mapped_column(String(1024), nullable=False)
    document_url: Mapped[str | None] = mapped_column(String(1024))

    # Review & impact
    status: Mapped[UpdateStatus] = mapped_column(
        Enum(UpdateStatus), nullable=False, default=UpdateStatus.PENDING, index=True
    )
    impact: Mapped[ImpactLevel | None] = mapped_column(Enum(ImpactLevel))
    keywords: Mapped[list[str]] = mapped_column(JSON, default=list)
    confidence: Mapped[float] = mapped_column(Float, default=1.0, nullable=False)

    extra_metadata: Mapped[dict[str, Any] | None] = mapped_column(JSON)

    def __repr__(self) -> str:
        return f"<RegulatoryUpdate(id={self.id}, title='{self.title[:50]}', type='{self.update_type}')>"
