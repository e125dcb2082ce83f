"""Regulatory source registry and read-side queries."""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from sqlalchemy import func, or_, select

from ..exceptions import ConfigurationError
from ..storage.database.models import (
    CrawlerJob,
    RegulatorySource,
    RegulatoryUpdate,
    SourceType,
    UpdateFrequency,
    UpdateStatus,
)
from ..storage.session import SessionFactory, db_session
from ..utils.datetime import utc_now
from ..utils.logging import get_logger
from .models import CrawlConfig, SourceSelectors, SourceSnapshot

logger = get_logger(__name__)


class SourceDefinition(BaseModel):
    """One entry of a source registry file."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    name: str = Field(min_length=1, max_length=255)
    jurisdiction: str = Field(min_length=1, max_length=100)
    source_type: SourceType = Field(alias="sourceType")
    base_url: str = Field(alias="baseUrl")
    crawl_config: CrawlConfig = Field(default_factory=CrawlConfig, alias="crawlConfig")
    selectors: SourceSelectors = Field(default_factory=SourceSelectors)
    update_frequency: UpdateFrequency = Field(
        default=UpdateFrequency.DAILY, alias="updateFrequency"
    )
    is_active: bool = Field(default=True, alias="isActive")
    priority: int = Field(default=5, ge=1, le=10)
    reliability: float = Field(default=1.0, ge=0.1, le=1.0)
    tags: list[str] = Field(default_factory=list)

    def column_values(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "jurisdiction": self.jurisdiction,
            "source_type": self.source_type,
            "base_url": self.base_url,
            "crawl_config": self.crawl_config.model_dump(exclude_none=True),
            "selectors": self.selectors.model_dump(exclude_none=True),
            "update_frequency": self.update_frequency,
            "is_active": self.is_active,
            "priority": self.priority,
            "tags": self.tags,
        }


class SourceRegistry:
    """Reads and seeds the monitored sources."""

    def __init__(self, session_factory: SessionFactory = db_session):
        self.session_factory = session_factory

    def load_from_file(self, path: Path | str) -> tuple[int, int]:
        """Upsert sources from a ``{"sources": [...]}`` JSON file, keyed by name.

        Crawl state (``last_crawled``, ``next_crawl``, ``reliability``) of
        existing sources is preserved.

        Returns:
            (created, updated) counts

        Raises:
            ConfigurationError: If the file is missing or invalid
        """
        path = Path(path)
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
            entries = payload["sources"] if isinstance(payload, dict) else payload
            definitions = [SourceDefinition.model_validate(entry) for entry in entries]
        except FileNotFoundError as e:
            raise ConfigurationError(
                f"Source registry file not found: {path}", setting="sources_config_path"
            ) from e
        except (json.JSONDecodeError, KeyError, TypeError, ValidationError) as e:
            raise ConfigurationError(
                f"Invalid source registry file {path}: {e}",
                setting="sources_config_path",
                original_error=e,
            ) from e

        created = updated = 0
        with self.session_factory() as db:
            for definition in definitions:
                source = db.execute(
                    select(RegulatorySource).where(RegulatorySource.name == definition.name)
                ).scalar_one_or_none()
                if source is None:
                    db.add(
                        RegulatorySource(
                            **definition.column_values(), reliability=definition.reliability
                        )
                    )
                    created += 1
                else:
                    for key, value in definition.column_values().items():
                        setattr(source, key, value)
                    updated += 1
            db.commit()

        logger.info("sources_loaded", path=str(path), created=created, updated=updated)
        return created, updated

    def get(self, source_id: int) -> SourceSnapshot | None:
        with self.session_factory() as db:
            source = db.get(RegulatorySource, source_id)
            return SourceSnapshot.model_validate(source) if source else None

    def active_sources(self) -> list[SourceSnapshot]:
        with self.session_factory() as db:
            rows = db.execute(
                select(RegulatorySource)
                .where(RegulatorySource.is_active.is_(True))
                .order_by(RegulatorySource.priority.desc(), RegulatorySource.id)
            ).scalars()
            return [SourceSnapshot.model_validate(row) for row in rows]

    def all_sources(self) -> list[SourceSnapshot]:
        with self.session_factory() as db:
            rows = db.execute(select(RegulatorySource).order_by(RegulatorySource.id)).scalars()
            return [SourceSnapshot.model_validate(row) for row in rows]

    def sources_due(self, now: datetime | None = None) -> list[SourceSnapshot]:
        """Active sources never crawled or whose ``next_crawl`` has passed.

        Highest priority first.
        """
        now = now or utc_now()
        with self.session_factory() as db:
            rows = db.execute(
                select(RegulatorySource)
                .where(
                    RegulatorySource.is_active.is_(True),
                    or_(RegulatorySource.next_crawl.is_(None), RegulatorySource.next_crawl <= now),
                )
                .order_by(RegulatorySource.priority.desc(), RegulatorySource.id)
            ).scalars()
            return [SourceSnapshot.model_validate(row) for row in rows]


class UpdateQueries:
    """Read-side queries over updates and jobs."""

    def __init__(self, session_factory: SessionFactory = db_session):
        self.session_factory = session_factory

    def recent_updates(self, limit: int = 50) -> list[dict[str, Any]]:
        with self.session_factory() as db:
            rows = db.execute(
                select(RegulatoryUpdate)
                .order_by(RegulatoryUpdate.created_at.desc(), RegulatoryUpdate.id.desc())
                .limit(limit)
            ).scalars()
            return [row.to_dict() for row in rows]

    def pending_updates(self, limit: int | None = None) -> list[dict[str, Any]]:
        with self.session_factory() as db:
            stmt = (
                select(RegulatoryUpdate)
                .where(RegulatoryUpdate.status == UpdateStatus.PENDING)
                .order_by(RegulatoryUpdate.created_at.desc(), RegulatoryUpdate.id.desc())
            )
            if limit is not None:
                stmt = stmt.limit(limit)
            return [row.to_dict() for row in db.execute(stmt).scalars()]

    def crawler_stats(self) -> dict[str, Any]:
        with self.session_factory() as db:
            total_sources = db.scalar(select(func.count(RegulatorySource.id))) or 0
            active_sources = (
                db.scalar(
                    select(func.count(RegulatorySource.id)).where(
                        RegulatorySource.is_active.is_(True)
                    )
                )
                or 0
            )
            pending = (
                db.scalar(
                    select(func.count(RegulatoryUpdate.id)).where(
                        RegulatoryUpdate.status == UpdateStatus.PENDING
                    )
                )
                or 0
            )
            recent_jobs = db.execute(
                select(CrawlerJob).order_by(CrawlerJob.id.desc()).limit(10)
            ).scalars()

            return {
                "total_sources": total_sources,
                "active_sources": active_sources,
                "pending_updates": pending,
                "recent_jobs": [job.to_dict() for job in recent_jobs],
            }
