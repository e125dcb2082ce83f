"""Relevance gate, content classification and the rule-based fallback.

The LLM classifier is optional. Every candidate that passes the relevance
gate gets a deterministic rule-based classification first; a successful
LLM call may then refine the update type, keywords and summary, and can
only raise the confidence.
"""

from __future__ import annotations

import asyncio
import json
import re
from collections import Counter
from typing import Protocol, runtime_checkable

from openai import AsyncOpenAI
from pydantic import ValidationError

from ..exceptions import ClassificationError
from ..storage.database.models import UpdateType
from ..utils.logging import get_logger
from .config import CrawlerConfig
from .models import ClassificationRequest, ClassificationResult, ExtractedUpdate, RawCandidate
from .strategies import Vocabulary, parse_date

logger = get_logger(__name__)

REGULATORY_VOCABULARY = (
    "regulation",
    "compliance",
    "gdpr",
    "data protection",
    "privacy",
    "health and safety",
    "dpa 2018",
    "ico",
    "hse",
    "amendment",
    "guidance",
    "consultation",
    "enforcement",
    "penalty",
    "fine",
    "policy",
    "legislation",
    "law",
    "act",
    "directive",
    "code of practice",
)

DATA_PROTECTION_VOCABULARY = (
    "gdpr",
    "data protection",
    "privacy",
    "dpa 2018",
    "personal data",
    "consent",
    "breach",
    "subject access",
    "right to erasure",
    "portability",
)

VOCABULARIES: dict[str, tuple[str, ...]] = {
    "regulatory": REGULATORY_VOCABULARY,
    "data_protection": DATA_PROTECTION_VOCABULARY,
}

# Ordered: first matching rule wins
UPDATE_TYPE_RULES: tuple[tuple[tuple[str, ...], UpdateType], ...] = (
    (("amendment", "updated", "revised"), UpdateType.AMENDMENT),
    (("new", "introduces"), UpdateType.NEW_REGULATION),
    (("consultation", "call for views"), UpdateType.CONSULTATION),
    (("draft", "proposed"), UpdateType.PENDING),
    (("guidance", "advice"), UpdateType.GUIDANCE),
)

AUTHORITY_PATTERN = re.compile(r"\b(ico|hse|fca)\b")
_NON_WORD = re.compile(r"[^\w\s]")


def _text(title: str, description: str | None) -> str:
    return f"{title} {description or ''}".lower()


def is_relevant(title: str, description: str | None, vocabulary: Vocabulary = "regulatory") -> bool:
    """Case-insensitive substring match against the chosen vocabulary."""
    text = _text(title, description)
    return any(term in text for term in VOCABULARIES[vocabulary])


def classify_update_type(
    title: str, description: str | None, default: UpdateType = UpdateType.GUIDANCE
) -> str:
    text = _text(title, description)
    for terms, update_type in UPDATE_TYPE_RULES:
        if any(term in text for term in terms):
            return update_type.value
    return default.value


def extract_basic_keywords(text: str, limit: int = 10) -> list[str]:
    """Most frequent lower-cased words longer than 3 characters.

    Ties keep first-occurrence order, so the result is deterministic.
    """
    words = _NON_WORD.sub(" ", text.lower()).split()
    counts = Counter(word for word in words if len(word) > 3)
    return [word for word, _ in counts.most_common(limit)]


def calculate_confidence(title: str, description: str | None) -> float:
    text = _text(title, description)
    confidence = 0.5

    if "regulation" in text or "compliance" in text:
        confidence += 0.2
    if "gdpr" in text or "data protection" in text:
        confidence += 0.2
    if "amendment" in text or "guidance" in text:
        confidence += 0.1
    if AUTHORITY_PATTERN.search(text):
        confidence += 0.1

    return round(min(confidence, 1.0), 4)


@runtime_checkable
class ContentClassifier(Protocol):
    """Classification capability (an LLM in production, a stub in tests)."""

    async def classify(self, request: ClassificationRequest) -> ClassificationResult: ...


class OpenAIContentClassifier:
    """Content classifier backed by the OpenAI chat completions API."""

    PROMPT_TEMPLATE = """Analyze this regulatory update and classify it:

Title: {title}
Description: {description}
Content: {content}

Please provide:
1. Update type (amendment, new_regulation, guidance, consultation, pending)
2. Keywords (5-10 relevant terms)
3. Confidence score (0-1)
4. Brief summary

Return as JSON with keys: updateType, keywords, confidence, summary"""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        max_tokens: int = 300,
        client: AsyncOpenAI | None = None,
    ):
        self.model = model
        self.max_tokens = max_tokens
        self.client = client or AsyncOpenAI(api_key=api_key)

    def build_prompt(self, request: ClassificationRequest) -> str:
        return self.PROMPT_TEMPLATE.format(
            title=request.title,
            description=request.description or "N/A",
            content=request.content or "N/A",
        )

    async def classify(self, request: ClassificationRequest) -> ClassificationResult:
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": self.build_prompt(request)}],
                response_format={"type": "json_object"},
                max_tokens=self.max_tokens,
            )
        except Exception as e:
            raise ClassificationError(
                f"OpenAI request failed: {e}", provider="openai", original_error=e
            ) from e

        try:
            raw = response.choices[0].message.content or "{}"
            return ClassificationResult.model_validate(json.loads(raw))
        except (AttributeError, IndexError, TypeError, json.JSONDecodeError, ValidationError) as e:
            raise ClassificationError(
                "Malformed classifier response", provider="openai", original_error=e
            ) from e


def create_classifier(config: CrawlerConfig) -> ContentClassifier | None:
    """Build the LLM classifier, or None when disabled or unconfigured."""
    if not config.classifier_available:
        logger.info("classifier_disabled", enabled=config.classifier_enabled)
        return None
    return OpenAIContentClassifier(api_key=config.openai_api_key or "", model=config.ai_model)


class ClassificationFilter:
    """Turns relevant raw candidates into ``ExtractedUpdate`` records."""

    def __init__(
        self,
        classifier: ContentClassifier | None = None,
        timeout_seconds: float = 15.0,
        content_chars: int = 1000,
    ):
        self.classifier = classifier
        self.timeout_seconds = timeout_seconds
        self.content_chars = content_chars

    def filter_relevant(
        self, candidates: list[RawCandidate], vocabulary: Vocabulary = "regulatory"
    ) -> list[RawCandidate]:
        return [c for c in candidates if is_relevant(c.title, c.description, vocabulary)]

    def fallback(
        self, candidate: RawCandidate, default_type: UpdateType = UpdateType.GUIDANCE
    ) -> ExtractedUpdate:
        """Deterministic rule-based classification."""
        return ExtractedUpdate(
            title=candidate.title,
            description=candidate.description or None,
            content=candidate.content,
            update_type=classify_update_type(candidate.title, candidate.description, default_type),
            published_date=parse_date(candidate.date),
            source_url=candidate.link,
            document_url=candidate.link,
            keywords=extract_basic_keywords(f"{candidate.title} {candidate.description}"),
            confidence=calculate_confidence(candidate.title, candidate.description),
            classified_by="rules",
        )

    async def _call_classifier(self, candidate: RawCandidate) -> ClassificationResult | None:
        if self.classifier is None:
            return None

        request = ClassificationRequest(
            title=candidate.title,
            description=candidate.description,
            content=(candidate.content or "")[: self.content_chars],
        )
        try:
            return await asyncio.wait_for(
                self.classifier.classify(request), timeout=self.timeout_seconds
            )
        except TimeoutError:
            logger.warning(
                "classifier_timeout", title=candidate.title[:80], timeout=self.timeout_seconds
            )
        except (ClassificationError, ValidationError) as e:
            logger.warning("classifier_failed", title=candidate.title[:80], error=str(e))
        except Exception as e:
            # Injected classifiers may raise anything; the rules result stands
            logger.warning(
                "classifier_failed",
                title=candidate.title[:80],
                error=str(e),
                error_type=type(e).__name__,
            )
        return None

    async def classify(
        self, candidate: RawCandidate, default_type: UpdateType = UpdateType.GUIDANCE
    ) -> ExtractedUpdate:
        """Classify one candidate; classifier errors fall back to rules."""
        update = self.fallback(candidate, default_type)
        result = await self._call_classifier(candidate)
        if result is None:
            return update

        keywords = list(result.keywords)
        keywords += [k for k in update.keywords if k not in keywords]
        confidence = update.confidence
        if result.confidence is not None:
            confidence = max(confidence, result.confidence)

        return update.model_copy(
            update={
                "update_type": result.update_type,
                "keywords": keywords[:10],
                "confidence": confidence,
                "summary": result.summary or None,
                "classified_by": "llm",
            }
        )

    async def classify_all(
        self, candidates: list[RawCandidate], default_type: UpdateType = UpdateType.GUIDANCE
    ) -> list[ExtractedUpdate]:
        updates = []
        for candidate in candidates:
            updates.append(await self.classify(candidate, default_type))
        return updates
