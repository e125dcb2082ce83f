"""Extraction strategies and the dispatch table that selects them.

A strategy turns a source's pages into ``RawCandidate`` items. Strategies are
registered against a ``(source_type, domain pattern)`` key; the first
matching entry wins and anything unmatched falls back to the generic
heading-based extractor::

    registry = default_registry()
    strategy = registry.resolve(source)
    candidates = await strategy.extract(session)

Strategies only raise for fetch failures of the first page. Malformed
markup, bad selector overrides or malformed JSON yield zero candidates.
"""

from __future__ import annotations

import json
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal
from urllib.parse import urljoin

import soupsieve
from bs4 import BeautifulSoup, Tag
from dateutil import parser as date_parser

from ..exceptions import ExtractionError, FetchError
from ..storage.database.models import SourceType, UpdateType
from ..utils.datetime import as_utc
from ..utils.logging import get_logger
from .fetcher import JSON_ACCEPT, CrawlSession
from .models import RawCandidate, SourceSnapshot

logger = get_logger(__name__)

Vocabulary = Literal["regulatory", "data_protection"]
ExtractFn = Callable[[CrawlSession], Awaitable[list[RawCandidate]]]

GOV_UK_BASE = "https://www.gov.uk"
GOV_UK_ITEMS = "article, .gem-c-document-list__item, .govuk-summary-list__row"
GOV_UK_TITLE = "h2, h3, .govuk-link, a"
GOV_UK_DESCRIPTION = "p, .govuk-body, .gem-c-metadata__definition"
GOV_UK_DATE = "time, .gem-c-metadata__date"

ICO_NEWS_PATH = "/about-the-ico/news-and-updates/"
ICO_ITEMS = ".view-content article, .news-item"
ICO_TITLE = "h2 a, h3 a, .title a"
ICO_DESCRIPTION = ".summary, .excerpt, p"
ICO_DATE = ".date, time"

GENERIC_TITLE = "h1, h2, h3, .title, .headline"
GENERIC_CONTAINER = "article, .item, .post, .news-item"
GENERIC_DESCRIPTION = "p"
GENERIC_DATE = "time, .date, .published"

DETAIL_CONTENT = "main, .content, article, .post-content"

_WHITESPACE = re.compile(r"\s+")
_ORDINAL_SUFFIX = re.compile(r"(\d)(st|nd|rd|th)\b", re.IGNORECASE)


@dataclass(frozen=True)
class ExtractionStrategy:
    """A named extractor plus the filter hints it carries.

    Attributes:
        name: Strategy identifier (logged and stored on the job sample)
        extract: Coroutine producing raw candidates for one crawl session
        vocabulary: Relevance vocabulary the filter should apply
        fallback_update_type: Update type used when rules find no signal
        follow_detail_pages: Fetch each relevant item's page for full content
    """

    name: str
    extract: ExtractFn
    vocabulary: Vocabulary = "regulatory"
    fallback_update_type: UpdateType = UpdateType.GUIDANCE
    follow_detail_pages: bool = False


class StrategyRegistry:
    """Ordered ``(source_type, domain pattern) -> strategy`` table."""

    def __init__(self, default: ExtractionStrategy):
        self.default = default
        self._entries: list[tuple[SourceType | None, str | None, ExtractionStrategy]] = []

    def register(
        self,
        strategy: ExtractionStrategy,
        source_type: SourceType | None = None,
        domain: str | None = None,
    ) -> None:
        """Register a strategy. ``None`` matches any type or domain."""
        self._entries.append((source_type, domain.lower() if domain else None, strategy))

    def resolve(self, source: SourceSnapshot) -> ExtractionStrategy:
        for source_type, domain, strategy in self._entries:
            if source_type is not None and source.source_type != source_type:
                continue
            if domain is not None and not _domain_matches(source.domain, domain):
                continue
            return strategy
        return self.default

    def __len__(self) -> int:
        return len(self._entries)


def _domain_matches(host: str, pattern: str) -> bool:
    return host == pattern or host.endswith("." + pattern)


# =============================================================================
# Parsing helpers
# =============================================================================


def parse_html(content: str) -> BeautifulSoup:
    return BeautifulSoup(content, "html.parser")


def _select(root: Tag, selector: str) -> list[Tag]:
    try:
        return root.select(selector)
    except soupsieve.SelectorSyntaxError as e:
        raise ExtractionError(
            f"Invalid CSS selector: {selector}", context={"selector": selector}, original_error=e
        ) from e


def _select_one(root: Tag, selector: str) -> Tag | None:
    try:
        return root.select_one(selector)
    except soupsieve.SelectorSyntaxError as e:
        raise ExtractionError(
            f"Invalid CSS selector: {selector}", context={"selector": selector}, original_error=e
        ) from e


def _closest(tag: Tag, selector: str) -> Tag | None:
    """Nearest ancestor (or the tag itself) matching ``selector``."""
    node: Tag | None = tag
    while isinstance(node, Tag) and node.name != "[document]":
        if node.css.match(selector):
            return node
        node = node.parent
    return None


def clean_text(tag: Tag | None) -> str:
    if tag is None:
        return ""
    return _WHITESPACE.sub(" ", tag.get_text(" ", strip=True)).strip()


def _date_text(tag: Tag | None) -> str:
    if tag is None:
        return ""
    machine = tag.get("datetime")
    if isinstance(machine, str) and machine.strip():
        return machine.strip()
    return clean_text(tag)


def parse_date(value: str | None) -> datetime | None:
    """Parse a loosely formatted publication date ("3rd March 2024", ISO...).

    Returns None when the text is not a date.
    """
    if not value or not value.strip():
        return None
    text = value.strip()
    try:
        return as_utc(date_parser.isoparse(text))
    except ValueError:
        pass

    # dayfirst would swap month and day of ISO dates, so only used here
    text = _ORDINAL_SUFFIX.sub(r"\1", text)
    try:
        parsed = date_parser.parse(text, dayfirst=True, fuzzy=True)
    except (ValueError, OverflowError):
        return None
    return as_utc(parsed)


# =============================================================================
# HTML strategies
# =============================================================================


async def extract_gov_uk(session: CrawlSession) -> list[RawCandidate]:
    """GOV.UK document list pages."""
    page = await session.fetch(session.source.base_url)
    soup = parse_html(page.content)

    candidates: list[RawCandidate] = []
    for item in _select(soup, GOV_UK_ITEMS):
        title_el = _select_one(item, GOV_UK_TITLE)
        link_el = title_el if title_el is not None and title_el.name == "a" else None
        link_el = link_el or _select_one(item, "a")
        title = clean_text(title_el)
        href = link_el.get("href") if link_el is not None else None
        if not title or not isinstance(href, str) or not href.strip():
            continue

        candidates.append(
            RawCandidate(
                title=title,
                description=clean_text(_select_one(item, GOV_UK_DESCRIPTION)),
                link=urljoin(GOV_UK_BASE, href.strip()),
                date=_date_text(_select_one(item, GOV_UK_DATE)),
            )
        )

    return candidates


async def extract_ico(session: CrawlSession) -> list[RawCandidate]:
    """ICO news and updates listing."""
    base_url = session.source.base_url
    page = await session.fetch(base_url.rstrip("/") + ICO_NEWS_PATH)
    soup = parse_html(page.content)

    candidates: list[RawCandidate] = []
    for item in _select(soup, ICO_ITEMS):
        title_el = _select_one(item, ICO_TITLE)
        if title_el is None:
            continue
        title = clean_text(title_el)
        href = title_el.get("href")
        if not title or not isinstance(href, str) or not href.strip():
            continue

        candidates.append(
            RawCandidate(
                title=title,
                description=clean_text(_select_one(item, ICO_DESCRIPTION)),
                link=urljoin(page.url or base_url, href.strip()),
                date=_date_text(_select_one(item, ICO_DATE)),
            )
        )

    return candidates


async def extract_generic(session: CrawlSession) -> list[RawCandidate]:
    """Heading-based extraction honoring per-source selector overrides."""
    source = session.source
    selectors = source.selectors
    page = await session.fetch(source.base_url)
    soup = parse_html(page.content)

    link_selector = selectors.link or "a"
    description_selector = selectors.description or GENERIC_DESCRIPTION
    date_selector = selectors.date or GENERIC_DATE

    candidates: list[RawCandidate] = []
    for title_el in _select(soup, selectors.title or GENERIC_TITLE):
        title = clean_text(title_el)
        if not title:
            continue

        container = _closest(title_el, GENERIC_CONTAINER) or title_el.parent
        if not isinstance(container, Tag):
            container = title_el

        if title_el.name == "a":
            link_el: Tag | None = title_el
        else:
            link_el = _select_one(container, link_selector) or _select_one(title_el, "a")
        href = link_el.get("href") if link_el is not None else None
        if not isinstance(href, str) or not href.strip():
            continue

        candidates.append(
            RawCandidate(
                title=title,
                description=clean_text(_select_one(container, description_selector)),
                link=urljoin(page.url or source.base_url, href.strip()),
                date=_date_text(_select_one(container, date_selector)),
            )
        )

    return candidates


async def fetch_detail_content(session: CrawlSession, url: str) -> str | None:
    """Fetch an item's own page and return its main text.

    A failed detail fetch only loses the content, never the candidate.
    """
    try:
        page = await session.fetch(url)
    except FetchError as e:
        logger.warning("detail_fetch_failed", url=url, error=str(e))
        return None

    soup = parse_html(page.content)
    text = clean_text(soup.select_one(DETAIL_CONTENT))
    return text or None


# =============================================================================
# JSON API strategy
# =============================================================================


def _dig(data: Any, path: str) -> Any:
    """Follow a dotted path (``data.results``) through dicts and lists."""
    current = data
    for part in path.split("."):
        if isinstance(current, dict):
            current = current.get(part)
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return None
    return current


def _api_items(data: Any, items_path: str | None) -> list[Any]:
    if items_path:
        items = _dig(data, items_path)
    elif isinstance(data, list):
        items = data
    elif isinstance(data, dict):
        items = data.get("items")
    else:
        items = None
    return items if isinstance(items, list) else []


def _first_text(item: dict[str, Any], *keys: str) -> str:
    for key in keys:
        value = item.get(key)
        if value is not None and str(value).strip():
            return str(value).strip()
    return ""


def api_item_to_candidate(item: Any, page_url: str) -> RawCandidate | None:
    if not isinstance(item, dict):
        return None
    title = _first_text(item, "title")
    link = _first_text(item, "url", "link")
    if not title or not link:
        return None
    return RawCandidate(
        title=title,
        description=_first_text(item, "summary", "description"),
        link=urljoin(page_url, link),
        date=_first_text(item, "date", "published_at", "published"),
    )


async def extract_api(session: CrawlSession) -> list[RawCandidate]:
    """Paginated JSON API extraction.

    Follows ``next_field`` for at most ``min(max_pages, max_api_pages)``
    pages. A fetch failure after the first page stops pagination and keeps
    what was already read.
    """
    crawl_config = session.source.crawl_config
    page_limit = min(crawl_config.max_pages, session.config.max_api_pages)
    url: str | None = crawl_config.api_endpoint or session.source.base_url
    seen_urls: set[str] = set()
    pages_read = 0

    candidates: list[RawCandidate] = []
    while url and pages_read < page_limit and url not in seen_urls:
        seen_urls.add(url)
        try:
            page = await session.fetch(url, accept=JSON_ACCEPT)
        except FetchError as e:
            if pages_read == 0:
                raise
            logger.warning("api_pagination_stopped", url=url, pages_read=pages_read, error=str(e))
            break
        pages_read += 1

        try:
            data = json.loads(page.content)
        except json.JSONDecodeError as e:
            logger.warning("api_payload_malformed", url=url, error=str(e))
            break

        items = _api_items(data, crawl_config.items_path)
        for raw in items[: session.config.max_items_per_page]:
            candidate = api_item_to_candidate(raw, page.url or url)
            if candidate is not None:
                candidates.append(candidate)

        next_value = _dig(data, crawl_config.next_field) if isinstance(data, dict) else None
        url = urljoin(url, next_value) if isinstance(next_value, str) and next_value else None

    return candidates


# =============================================================================
# Registry
# =============================================================================


GOV_UK_STRATEGY = ExtractionStrategy(
    name="gov_uk", extract=extract_gov_uk, follow_detail_pages=True
)
ICO_STRATEGY = ExtractionStrategy(
    name="ico",
    extract=extract_ico,
    vocabulary="data_protection",
    fallback_update_type=UpdateType.GUIDANCE,
)
API_STRATEGY = ExtractionStrategy(name="api", extract=extract_api)
GENERIC_STRATEGY = ExtractionStrategy(name="generic", extract=extract_generic)


def default_registry() -> StrategyRegistry:
    """Strategy table for the bundled UK/EU sources."""
    registry = StrategyRegistry(default=GENERIC_STRATEGY)
    registry.register(GOV_UK_STRATEGY, source_type=SourceType.GOVERNMENT, domain="gov.uk")
    registry.register(ICO_STRATEGY, source_type=SourceType.REGULATOR, domain="ico.org.uk")
    registry.register(API_STRATEGY, source_type=SourceType.API)
    return registry


async def run_strategy(
    strategy: ExtractionStrategy, session: CrawlSession
) -> list[RawCandidate]:
    """Run a strategy, mapping parse problems to an empty result.

    Raises:
        FetchError: If the first page could not be fetched
        CrawlCancelledError: If the job was cancelled during extraction
    """
    try:
        candidates = await strategy.extract(session)
    except ExtractionError as e:
        logger.warning(
            "extraction_parse_failed",
            source_id=session.source.id,
            strategy=strategy.name,
            error=str(e),
        )
        return []

    logger.info(
        "extraction_completed",
        source_id=session.source.id,
        strategy=strategy.name,
        candidates=len(candidates),
        pages=session.pages_scraped,
    )
    return candidates
