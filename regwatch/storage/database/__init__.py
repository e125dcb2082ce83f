"""Database models and engine configuration."""

from .base import Base, dispose_db, get_session, init_db
from .models import (
    CrawlerJob,
    ImpactLevel,
    JobStatus,
    JobType,
    RegulatorySource,
    RegulatoryUpdate,
    SourceType,
    UpdateFrequency,
    UpdateStatus,
    UpdateType,
)

__all__ = [
    "Base",
    "init_db",
    "dispose_db",
    "get_session",
    "RegulatorySource",
    "CrawlerJob",
    "RegulatoryUpdate",
    "SourceType",
    "UpdateFrequency",
    "JobType",
    "JobStatus",
    "UpdateType",
    "UpdateStatus",
    "ImpactLevel",
]
