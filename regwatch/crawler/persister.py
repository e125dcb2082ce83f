"""Atomic per-candidate persistence of new regulatory updates."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..exceptions import CrawlCancelledError, DatabaseIntegrityError
from ..storage.database.models import RegulatoryUpdate, UpdateStatus
from ..storage.session import SessionFactory, db_session
from ..utils.logging import get_logger, log_update_persisted
from .dedup import update_exists
from .models import ExtractedUpdate

logger = get_logger(__name__)


@dataclass(frozen=True)
class PersistedUpdate:
    """Identity of an update inserted by this crawl."""

    id: int
    title: str
    update_type: str


class UpdatePersister:
    """Inserts each candidate in its own short transaction.

    A failed insert (including a lost race on the dedup unique constraint)
    rolls back and skips that candidate only.
    """

    def __init__(self, session_factory: SessionFactory = db_session):
        self.session_factory = session_factory

    def _insert(self, source_id: int, update: ExtractedUpdate) -> PersistedUpdate | None:
        with self.session_factory() as db:
            if update_exists(db, update.title, update.source_url):
                logger.debug("update_already_stored", title=update.title[:80])
                return None

            row = RegulatoryUpdate(
                source_id=source_id,
                title=update.title,
                description=update.description,
                content=update.content,
                summary=update.summary,
                update_type=update.update_type,
                published_date=update.published_date,
                effective_date=update.effective_date,
                source_url=update.source_url,
                document_url=update.document_url,
                keywords=update.keywords,
                confidence=update.confidence,
                status=UpdateStatus.PENDING,
                extra_metadata={"classified_by": update.classified_by},
            )
            db.add(row)
            try:
                db.commit()
            except IntegrityError as e:
                db.rollback()
                raise DatabaseIntegrityError(
                    "Regulatory update already stored",
                    context={"title": update.title[:80], "source_url": update.source_url},
                    original_error=e,
                ) from e

            db.refresh(row)
            return PersistedUpdate(id=row.id, title=row.title, update_type=row.update_type or "")

    def persist(
        self,
        source_id: int,
        updates: list[ExtractedUpdate],
        before_each: Callable[[], None] | None = None,
    ) -> list[PersistedUpdate]:
        """Persist candidates, returning those actually inserted.

        Args:
            source_id: Owning source
            updates: Deduplicated candidates
            before_each: Hook run before every insert (cancellation check).
                A ``CrawlCancelledError`` it raises stops the loop and
                carries the updates committed so far in ``persisted``.
        """
        persisted: list[PersistedUpdate] = []
        for update in updates:
            if before_each:
                try:
                    before_each()
                except CrawlCancelledError as e:
                    e.persisted = list(persisted)
                    raise
            try:
                saved = self._insert(source_id, update)
            except DatabaseIntegrityError:
                logger.info("update_insert_race_lost", title=update.title[:80])
                continue
            except SQLAlchemyError as e:
                logger.error(
                    "update_persist_failed",
                    source_id=source_id,
                    title=update.title[:80],
                    error=str(e),
                )
                continue

            if saved is not None:
                log_update_persisted(
                    logger,
                    update_id=saved.id,
                    source_id=source_id,
                    title=saved.title,
                    update_type=saved.update_type,
                )
                persisted.append(saved)
        return persisted
