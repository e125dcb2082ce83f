"""Fan-out of newly persisted updates to impact assessment.

Every new update is assessed once. Draft (``pending``) and ``consultation``
updates are additionally sent for predictive assessment, since they describe
obligations that do not exist yet. Delivery is best effort: failures are
logged and never retried, and they never affect the crawl job.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

import httpx

from ..exceptions import NetworkError
from ..storage.database.models import UpdateType
from ..utils.logging import get_logger
from .config import CrawlerConfig
from .persister import PersistedUpdate

logger = get_logger(__name__)

PREDICTIVE_UPDATE_TYPES = frozenset({UpdateType.PENDING.value, UpdateType.CONSULTATION.value})


@runtime_checkable
class ImpactAssessor(Protocol):
    """Downstream impact assessment consumer."""

    async def assess(self, update_id: int) -> None: ...

    async def assess_predictive(self, update_id: int) -> None: ...


class LoggingImpactAssessor:
    """Records assessment requests in the log only."""

    async def assess(self, update_id: int) -> None:
        logger.info("impact_assessment_requested", update_id=update_id)

    async def assess_predictive(self, update_id: int) -> None:
        logger.info("predictive_assessment_requested", update_id=update_id)


class WebhookImpactAssessor:
    """POSTs ``{"update_id": ...}`` to an external assessment service."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=5.0),
            headers={"User-Agent": "regwatch/0.3"},
            transport=transport,
        )

    async def _post(self, path: str, update_id: int) -> None:
        url = f"{self.base_url}{path}"
        try:
            response = await self.client.post(url, json={"update_id": update_id})
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise NetworkError(
                f"Impact webhook failed: {e}",
                context={"url": url, "update_id": update_id},
                original_error=e,
            ) from e

    async def assess(self, update_id: int) -> None:
        await self._post("/assess", update_id)

    async def assess_predictive(self, update_id: int) -> None:
        await self._post("/assess/predictive", update_id)

    async def close(self) -> None:
        await self.client.aclose()


def create_impact_assessor(config: CrawlerConfig) -> ImpactAssessor:
    if config.impact_webhook_url:
        return WebhookImpactAssessor(config.impact_webhook_url, config.impact_timeout_seconds)
    return LoggingImpactAssessor()


class NotificationFanout:
    """Calls the impact assessor for each new update of a completed crawl."""

    def __init__(self, assessor: ImpactAssessor):
        self.assessor = assessor

    async def notify(self, updates: list[PersistedUpdate]) -> int:
        """Notify for each update; returns the number of failed calls."""
        failures = 0
        for update in updates:
            try:
                await self.assessor.assess(update.id)
            except Exception as e:
                failures += 1
                logger.error("impact_assessment_failed", update_id=update.id, error=str(e))

            if update.update_type in PREDICTIVE_UPDATE_TYPES:
                try:
                    await self.assessor.assess_predictive(update.id)
                except Exception as e:
                    failures += 1
                    logger.error(
                        "predictive_assessment_failed", update_id=update.id, error=str(e)
                    )
        return failures
