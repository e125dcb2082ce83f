"""Tests for impact assessment fan-out."""

import json

import httpx
import pytest

from regwatch.crawler.config import CrawlerConfig
from regwatch.crawler.notifier import (
    LoggingImpactAssessor,
    NotificationFanout,
    WebhookImpactAssessor,
    create_impact_assessor,
)
from regwatch.crawler.persister import PersistedUpdate
from regwatch.exceptions import NetworkError
from tests.conftest import RecordingAssessor


def persisted(update_id: int, update_type: str) -> PersistedUpdate:
    return PersistedUpdate(id=update_id, title=f"Update {update_id}", update_type=update_type)


class TestNotificationFanout:
    @pytest.mark.asyncio
    async def test_predictive_only_for_pending_and_consultation(self):
        assessor = RecordingAssessor()
        failures = await NotificationFanout(assessor).notify(
            [
                persisted(1, "guidance"),
                persisted(2, "consultation"),
                persisted(3, "pending"),
                persisted(4, "amendment"),
            ]
        )

        assert failures == 0
        assert assessor.assessed == [1, 2, 3, 4]
        assert assessor.predicted == [2, 3]

    @pytest.mark.asyncio
    async def test_failures_counted_and_do_not_stop_fanout(self):
        assessor = RecordingAssessor(fail_on={1})
        failures = await NotificationFanout(assessor).notify(
            [persisted(1, "consultation"), persisted(2, "guidance")]
        )

        assert failures == 1
        assert assessor.assessed == [1, 2]
        # Predictive assessment still attempted after the main call failed
        assert assessor.predicted == [1]

    @pytest.mark.asyncio
    async def test_nothing_to_notify(self):
        assessor = RecordingAssessor()
        assert await NotificationFanout(assessor).notify([]) == 0
        assert assessor.assessed == []


class TestWebhookImpactAssessor:
    @pytest.mark.asyncio
    async def test_posts_update_ids(self):
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(202)

        assessor = WebhookImpactAssessor(
            "https://impact.example.org/api/", transport=httpx.MockTransport(handler)
        )
        try:
            await assessor.assess(7)
            await assessor.assess_predictive(7)
        finally:
            await assessor.close()

        assert [str(r.url) for r in requests] == [
            "https://impact.example.org/api/assess",
            "https://impact.example.org/api/assess/predictive",
        ]
        assert json.loads(requests[0].content) == {"update_id": 7}

    @pytest.mark.asyncio
    async def test_error_status_raises_network_error(self):
        assessor = WebhookImpactAssessor(
            "https://impact.example.org",
            transport=httpx.MockTransport(lambda request: httpx.Response(503)),
        )
        try:
            with pytest.raises(NetworkError) as exc_info:
                await assessor.assess(1)
        finally:
            await assessor.close()

        assert exc_info.value.context["update_id"] == 1


class TestCreateImpactAssessor:
    def test_logging_by_default(self, crawler_config):
        assert isinstance(create_impact_assessor(crawler_config), LoggingImpactAssessor)

    @pytest.mark.asyncio
    async def test_webhook_when_configured(self):
        config = CrawlerConfig(_env_file=None, impact_webhook_url="https://impact.example.org/")
        assessor = create_impact_assessor(config)
        try:
            assert isinstance(assessor, WebhookImpactAssessor)
            assert assessor.base_url == "https://impact.example.org"
        finally:
            await assessor.close()

    def test_invalid_webhook_url_rejected(self):
        with pytest.raises(ValueError):
            CrawlerConfig(_env_file=None, impact_webhook_url="ftp://impact")
