"""Tests for the relevance gate, rule-based classification and the LLM path."""

import asyncio
import json
from datetime import UTC, datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from regwatch.crawler.classifier import (
    ClassificationFilter,
    OpenAIContentClassifier,
    calculate_confidence,
    classify_update_type,
    create_classifier,
    extract_basic_keywords,
    is_relevant,
)
from regwatch.crawler.config import CrawlerConfig
from regwatch.crawler.models import ClassificationRequest, ClassificationResult, RawCandidate
from regwatch.exceptions import ClassificationError
from regwatch.storage.database.models import UpdateType
from tests.conftest import StubClassifier


def candidate(title: str, description: str = "", **kwargs) -> RawCandidate:
    return RawCandidate(
        title=title, description=description, link="https://example.org/item", **kwargs
    )


def _completion(content: str | None) -> SimpleNamespace:
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


# ============================================================================
# Relevance gate
# ============================================================================


class TestRelevance:
    def test_regulatory_vocabulary(self):
        assert is_relevant("New GDPR guidance published", "")
        assert is_relevant("Quarterly bulletin", "Health and Safety at work")

    def test_case_insensitive(self):
        assert is_relevant("DATA PROTECTION UPDATE", None)

    def test_irrelevant(self):
        assert not is_relevant("Office closure over the holidays", "See you in January")

    def test_data_protection_vocabulary_is_narrower(self):
        assert is_relevant("Enforcement notice issued", "", "regulatory")
        assert not is_relevant("Enforcement notice issued", "", "data_protection")
        assert is_relevant("Reporting a personal data breach", "", "data_protection")

    def test_filter_relevant_preserves_order(self):
        flt = ClassificationFilter()
        kept = flt.filter_relevant(
            [
                candidate("Consultation on privacy"),
                candidate("Team away day"),
                candidate("Fire safety compliance"),
            ]
        )
        assert [c.title for c in kept] == ["Consultation on privacy", "Fire safety compliance"]


# ============================================================================
# Rule-based classification
# ============================================================================


class TestUpdateTypeRules:
    @pytest.mark.parametrize(
        "title,expected",
        [
            ("Amendment to the Data Protection Act", "amendment"),
            ("Revised code of practice", "amendment"),
            ("Government introduces product safety bill", "new_regulation"),
            ("Consultation on cookie rules", "consultation"),
            ("Call for views on AI regulation", "consultation"),
            ("Draft statutory instrument", "pending"),
            ("Proposed changes to reporting", "pending"),
            ("Advice for small businesses", "guidance"),
        ],
    )
    def test_rules(self, title, expected):
        assert classify_update_type(title, "") == expected

    def test_first_matching_rule_wins(self):
        # "updated" (amendment) precedes "consultation" in the rule order
        assert classify_update_type("Updated consultation response", "") == "amendment"

    def test_default_when_no_rule_matches(self):
        assert classify_update_type("Statement on enforcement", "") == "guidance"
        assert (
            classify_update_type("Statement on enforcement", "", UpdateType.CONSULTATION)
            == "consultation"
        )


class TestKeywords:
    def test_most_frequent_long_words(self):
        assert extract_basic_keywords("the data data protection rules rules rules ico") == [
            "rules",
            "data",
            "protection",
        ]

    def test_punctuation_and_limit(self):
        text = ", ".join(f"word{i:02d}" for i in range(20))
        keywords = extract_basic_keywords(text, limit=10)
        assert len(keywords) == 10
        assert keywords[0] == "word00"

    def test_short_words_dropped(self):
        assert extract_basic_keywords("a an the act law") == []


class TestConfidence:
    def test_base(self):
        assert calculate_confidence("Quarterly bulletin", "") == 0.5

    def test_signals_add_up(self):
        assert calculate_confidence("ICO fines company under GDPR", "") == pytest.approx(0.8)

    def test_capped_at_one(self):
        score = calculate_confidence(
            "Data protection regulation amendment", "ICO guidance on GDPR compliance"
        )
        assert score == 1.0

    def test_authority_is_whole_word(self):
        # "hse" inside another word is not an authority mention
        assert calculate_confidence("Warehouse news", "") == 0.5


# ============================================================================
# ClassificationResult normalization
# ============================================================================


class TestClassificationResult:
    def test_camel_case_keys(self):
        result = ClassificationResult.model_validate(
            {"updateType": "New Regulation", "keywords": ["GDPR"], "confidence": 0.7}
        )
        assert result.update_type == "new_regulation"
        assert result.keywords == ["gdpr"]

    def test_keywords_cleaned(self):
        result = ClassificationResult(update_type="guidance", keywords="a, GDPR, gdpr, privacy")
        assert result.keywords == ["gdpr", "privacy"]

    def test_confidence_clamped(self):
        assert ClassificationResult(update_type="guidance", confidence=1.7).confidence == 1.0
        assert ClassificationResult(update_type="guidance", confidence=-2).confidence == 0.0


# ============================================================================
# ClassificationFilter
# ============================================================================


class TestClassificationFilter:
    def test_fallback_record(self):
        flt = ClassificationFilter()
        update = flt.fallback(
            candidate("Revised GDPR guidance", "", date="2024-03-05T09:00:00Z")
        )

        assert update.update_type == "amendment"
        assert update.description is None
        assert update.source_url == update.document_url == "https://example.org/item"
        assert update.published_date == datetime(2024, 3, 5, 9, 0, tzinfo=UTC)
        assert update.classified_by == "rules"
        assert "revised" in update.keywords

    @pytest.mark.asyncio
    async def test_without_classifier_uses_rules(self):
        update = await ClassificationFilter().classify(candidate("Consultation on privacy"))
        assert update.update_type == "consultation"
        assert update.classified_by == "rules"

    @pytest.mark.asyncio
    async def test_llm_result_merged(self):
        stub = StubClassifier(
            ClassificationResult(
                update_type="guidance",
                keywords=["dpia", "gdpr"],
                confidence=0.5,
                summary="ICO explains DPIAs.",
            )
        )
        flt = ClassificationFilter(stub)

        update = await flt.classify(
            candidate("Guidance on data protection impact assessments", "ICO guidance")
        )

        assert update.classified_by == "llm"
        assert update.update_type == "guidance"
        assert update.keywords[:2] == ["dpia", "gdpr"]
        assert len(update.keywords) <= 10
        assert len(update.keywords) == len(set(update.keywords))
        # Rule score 0.9 beats the model's 0.5
        assert update.confidence == pytest.approx(0.9)
        assert update.summary == "ICO explains DPIAs."

    @pytest.mark.asyncio
    async def test_llm_can_raise_confidence(self):
        stub = StubClassifier(ClassificationResult(update_type="amendment", confidence=0.95))
        update = await ClassificationFilter(stub).classify(candidate("Privacy notice"))
        assert update.confidence == pytest.approx(0.95)
        assert update.update_type == "amendment"

    @pytest.mark.asyncio
    async def test_request_content_truncated(self):
        stub = StubClassifier(ClassificationResult(update_type="guidance"))
        flt = ClassificationFilter(stub, content_chars=10)

        await flt.classify(candidate("Privacy", "desc", content="x" * 50))

        assert stub.requests[0].content == "x" * 10
        assert stub.requests[0].description == "desc"

    @pytest.mark.asyncio
    async def test_classifier_error_falls_back(self):
        stub = StubClassifier(error=ClassificationError("quota exceeded", provider="openai"))
        update = await ClassificationFilter(stub).classify(candidate("Consultation on privacy"))

        assert update.classified_by == "rules"
        assert update.update_type == "consultation"

    @pytest.mark.asyncio
    async def test_unexpected_classifier_error_falls_back(self):
        stub = StubClassifier(error=RuntimeError("provider exploded"))
        update = await ClassificationFilter(stub).classify(candidate("Draft privacy bill"))

        assert update.classified_by == "rules"
        assert update.update_type == "pending"

    @pytest.mark.asyncio
    async def test_classifier_timeout_falls_back(self):
        class SlowClassifier:
            async def classify(self, request):
                await asyncio.sleep(5)

        flt = ClassificationFilter(SlowClassifier(), timeout_seconds=0.01)
        update = await flt.classify(candidate("GDPR fines"))

        assert update.classified_by == "rules"
        assert update.confidence == pytest.approx(0.7)

    @pytest.mark.asyncio
    async def test_classify_all_keeps_order(self):
        flt = ClassificationFilter()
        updates = await flt.classify_all(
            [candidate("Draft privacy bill"), candidate("Consultation on privacy")],
            UpdateType.GUIDANCE,
        )
        assert [u.update_type for u in updates] == ["pending", "consultation"]


# ============================================================================
# OpenAI classifier
# ============================================================================


class TestOpenAIContentClassifier:
    def _classifier(self, create: AsyncMock) -> OpenAIContentClassifier:
        client = MagicMock()
        client.chat.completions.create = create
        return OpenAIContentClassifier(api_key="sk-test", model="gpt-4o-mini", client=client)

    @pytest.mark.asyncio
    async def test_parses_json_response(self):
        payload = {
            "updateType": "consultation",
            "keywords": ["cookies", "consent"],
            "confidence": 0.82,
            "summary": "Views sought on cookie consent.",
        }
        create = AsyncMock(return_value=_completion(json.dumps(payload)))
        classifier = self._classifier(create)

        result = await classifier.classify(
            ClassificationRequest(title="Cookie consultation", description="", content="")
        )

        assert result.update_type == "consultation"
        assert result.keywords == ["cookies", "consent"]
        assert result.confidence == pytest.approx(0.82)

        kwargs = create.await_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["response_format"] == {"type": "json_object"}
        prompt = kwargs["messages"][0]["content"]
        assert "Title: Cookie consultation" in prompt
        assert "Description: N/A" in prompt
        assert "updateType, keywords, confidence, summary" in prompt

    @pytest.mark.asyncio
    async def test_request_failure_wrapped(self):
        classifier = self._classifier(AsyncMock(side_effect=RuntimeError("connection reset")))

        with pytest.raises(ClassificationError) as exc_info:
            await classifier.classify(ClassificationRequest(title="x"))

        assert exc_info.value.context["provider"] == "openai"

    @pytest.mark.asyncio
    async def test_empty_choices_wrapped(self):
        create = AsyncMock(return_value=SimpleNamespace(choices=[]))
        classifier = self._classifier(create)

        with pytest.raises(ClassificationError) as exc_info:
            await classifier.classify(ClassificationRequest(title="x"))

        assert isinstance(exc_info.value.original_error, IndexError)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("content", ["not json", json.dumps({"keywords": []}), None])
    async def test_malformed_response(self, content):
        classifier = self._classifier(AsyncMock(return_value=_completion(content)))

        with pytest.raises(ClassificationError):
            await classifier.classify(ClassificationRequest(title="x"))


class TestCreateClassifier:
    def test_disabled(self, crawler_config):
        assert create_classifier(crawler_config) is None

    def test_enabled_without_key(self):
        config = CrawlerConfig(_env_file=None, classifier_enabled=True, openai_api_key=None)
        assert create_classifier(config) is None

    def test_enabled_with_key(self):
        config = CrawlerConfig(_env_file=None, classifier_enabled=True, openai_api_key="sk-test")
        classifier = create_classifier(config)
        assert isinstance(classifier, OpenAIContentClassifier)
        assert classifier.model == config.ai_model
