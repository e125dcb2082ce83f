"""Deduplication of classified candidates on exact ``(title, source_url)``."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..storage.database.models import RegulatoryUpdate
from ..storage.session import SessionFactory, db_session
from ..utils.logging import get_logger
from .models import ExtractedUpdate

logger = get_logger(__name__)


def update_exists(db: Session, title: str, source_url: str) -> bool:
    """Whether an update with this exact dedup key is already stored."""
    stmt = (
        select(RegulatoryUpdate.id)
        .where(RegulatoryUpdate.title == title, RegulatoryUpdate.source_url == source_url)
        .limit(1)
    )
    return db.execute(stmt).first() is not None


class Deduplicator:
    """Drops in-batch duplicates, then anything already in the store.

    The store check is advisory: two concurrent crawls can both pass it, so
    the persister re-checks and the unique constraint has the final word.
    """

    def __init__(self, session_factory: SessionFactory = db_session):
        self.session_factory = session_factory

    @staticmethod
    def dedupe_batch(updates: list[ExtractedUpdate]) -> list[ExtractedUpdate]:
        """Keep the first occurrence of each dedup key, preserving order."""
        seen: set[tuple[str, str]] = set()
        unique: list[ExtractedUpdate] = []
        for update in updates:
            if update.dedup_key in seen:
                continue
            seen.add(update.dedup_key)
            unique.append(update)
        return unique

    def filter_new(self, updates: list[ExtractedUpdate]) -> list[ExtractedUpdate]:
        batch = self.dedupe_batch(updates)
        if not batch:
            return []

        with self.session_factory() as db:
            fresh = [u for u in batch if not update_exists(db, u.title, u.source_url)]

        logger.debug(
            "dedup_completed",
            candidates=len(updates),
            unique_in_batch=len(batch),
            new=len(fresh),
        )
        return fresh
