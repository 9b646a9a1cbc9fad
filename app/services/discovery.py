"""Discovery orchestration: cache, provider attempts, rotation and fallback."""

from __future__ import annotations

import asyncio
import json
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Iterable

from pydantic import ValidationError

from ..config import Settings
from ..models import ContentItem, SearchFilters, SearchQuery, SearchResult
from ..utils import parse_rating, parse_year
from .omdb import OMDbClient, RotatableProviderError, SystemicProviderError
from .openrouter import OpenRouterClient
from .session_cache import SessionCache

logger = logging.getLogger(__name__)

# Bump whenever normalization or mapping changes so older cache entries are
# never read back into the new shape.
CACHE_SCHEMA_VERSION = "v5-omdb"
RANK_YEAR_DIVISOR = 1_000
DEFAULT_QUERY_RETRIES = 1
DEFAULT_SIMILAR_GENRE = "Action"
SIMILAR_LIMIT = 8
MAX_TRACKED_CHANNELS = 1_024


def rank_score(item: ContentItem) -> float:
    """Composite score: rating first, recency as a fractional tie-breaker."""

    year = parse_year(item.year) or 0
    return parse_rating(item.rating) + year / RANK_YEAR_DIVISOR


def rank_items(items: Iterable[ContentItem]) -> list[ContentItem]:
    """Sort by descending score; equal scores keep provider order."""

    return sorted(items, key=rank_score, reverse=True)


@dataclass(slots=True)
class CandidateBatch:
    """Merged raw records from one round of concurrent page fetches."""

    records: list[dict[str, Any]] = field(default_factory=list)
    rotatable: bool = False
    systemic: bool = False


class DiscoveryService:
    """Façade used by callers to search the catalogue.

    ``search`` never raises. Every failure path resolves to a (possibly
    empty) :class:`SearchResult` whose ``provenance`` says whether the
    items came from the metadata provider or the fallback generator.
    """

    def __init__(
        self,
        settings: Settings,
        provider: OMDbClient,
        generator: OpenRouterClient,
        cache: SessionCache,
    ):
        self._settings = settings
        self._provider = provider
        self._generator = generator
        self._cache = cache
        self._generations: OrderedDict[str, int] = OrderedDict()

    def build_query(
        self, raw_text: str | None, filters: SearchFilters | None = None
    ) -> SearchQuery:
        return SearchQuery.build(
            raw_text, filters, default_term=self._settings.default_search_term
        )

    def cache_key(self, query: SearchQuery) -> str:
        """Deterministic key for a normalized query on the current node."""

        return json.dumps(
            {
                "query": query.term,
                "filters": query.filters.model_dump(mode="json"),
                "node": self._provider.node_index,
                "v": CACHE_SCHEMA_VERSION,
            },
            sort_keys=True,
        )

    async def search(
        self, raw_text: str | None, filters: SearchFilters | None = None
    ) -> SearchResult:
        """Return ranked content items for the query."""

        try:
            return await self._search(raw_text, filters)
        except Exception:
            logger.exception("Discovery failed for %r", raw_text)
            return SearchResult(items=[], provenance="provider")

    async def _search(
        self, raw_text: str | None, filters: SearchFilters | None
    ) -> SearchResult:
        query = self.build_query(raw_text, filters)
        default_query = self.build_query(
            self._settings.default_search_term, query.filters.kind_only()
        )

        retries_left = DEFAULT_QUERY_RETRIES
        while True:
            result = await self._run_pipeline(query)
            if result.items or result.provenance == "generator":
                return result
            if retries_left <= 0 or query.term == default_query.term:
                return result
            retries_left -= 1
            logger.info(
                "No usable results for %r, retrying with default term %r",
                query.term,
                default_query.term,
            )
            query = default_query

    async def _run_pipeline(self, query: SearchQuery) -> SearchResult:
        cached = await self._cache.get(self.cache_key(query))
        if cached is not None:
            try:
                return SearchResult.model_validate(cached)
            except ValidationError:
                logger.warning("Ignoring malformed cache entry for %r", query.term)

        candidates = await self._collect_candidates(query)
        if not candidates:
            logger.info("Falling back to generated results for %r", query.term)
            items = await self._generator.generate(query.term, query.filters.kind)
            return SearchResult(items=items, provenance="generator")

        items = await self._enrich(candidates)
        result = SearchResult(items=rank_items(items), provenance="provider")
        if result.items:
            await self._cache.set(
                self.cache_key(query),
                result.model_dump(mode="json", by_alias=True),
                ttl=self._settings.response_cache_seconds,
            )
        return result

    async def _collect_candidates(self, query: SearchQuery) -> list[dict[str, Any]]:
        """Fetch, merge and deduplicate candidates, rotating nodes on auth failures."""

        attempts = min(self._provider.node_count, self._settings.node_attempt_limit)
        for attempt in range(attempts):
            batch = await self._fetch_pages(query)
            if batch.records:
                return self._select_candidates(batch.records)
            if batch.rotatable:
                logger.warning(
                    "OMDb node %s unusable for %r (attempt %s/%s)",
                    self._provider.node_index,
                    query.term,
                    attempt + 1,
                    attempts,
                )
                self._provider.rotate()
                continue
            if batch.systemic:
                logger.warning("OMDb unreachable while searching %r", query.term)
            return []
        return []

    async def _fetch_pages(self, query: SearchQuery) -> CandidateBatch:
        pages = list(range(1, self._settings.search_pages + 1))
        results = await asyncio.gather(
            *(self._provider.fetch_page(query, page) for page in pages),
            return_exceptions=True,
        )

        batch = CandidateBatch()
        for page, result in zip(pages, results):
            if isinstance(result, RotatableProviderError):
                batch.rotatable = True
                continue
            if isinstance(result, SystemicProviderError):
                batch.systemic = True
                continue
            if isinstance(result, BaseException):
                logger.warning("OMDb page %s raised unexpectedly: %r", page, result)
                batch.systemic = True
                continue
            batch.records.extend(result.records)
        return batch

    def _select_candidates(self, records: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Keep the first usable occurrence of each native id."""

        seen: set[str] = set()
        selected: list[dict[str, Any]] = []
        for record in records:
            native_id = OMDbClient.native_id(record)
            if native_id is None or native_id in seen:
                continue
            if not OMDbClient.has_artwork(record):
                continue
            seen.add(native_id)
            selected.append(record)
        return selected[: self._settings.candidate_limit]

    async def _enrich(self, candidates: list[dict[str, Any]]) -> list[ContentItem]:
        results = await asyncio.gather(
            *(
                self._provider.fetch_details(
                    OMDbClient.native_id(candidate), candidate.get("Title")
                )
                for candidate in candidates
            ),
            return_exceptions=True,
        )

        items: list[ContentItem] = []
        seen: set[str] = set()
        for candidate, result in zip(candidates, results):
            if isinstance(result, BaseException):
                logger.warning(
                    "Detail enrichment raised for %s: %r",
                    OMDbClient.native_id(candidate),
                    result,
                )
                continue
            if result is None:
                continue
            item = OMDbClient.to_content_item(result)
            if item is None or item.id in seen:
                continue
            seen.add(item.id)
            items.append(item)

        dropped = len(candidates) - len(items)
        if dropped:
            logger.info("Dropped %s of %s candidates during enrichment", dropped, len(candidates))
        return items

    async def lookup(self, content_id: str) -> ContentItem | None:
        """Return a single title by its provider id."""

        key = json.dumps({"title": content_id, "v": CACHE_SCHEMA_VERSION}, sort_keys=True)
        try:
            cached = await self._cache.get(key)
            if cached is not None:
                try:
                    return ContentItem.model_validate(cached)
                except ValidationError:
                    logger.warning("Ignoring malformed cached title %s", content_id)

            details = await self._provider.fetch_details(content_id)
            item = OMDbClient.to_content_item(details) if details else None
            if item is not None:
                await self._cache.set(
                    key,
                    item.to_payload(),
                    ttl=self._settings.response_cache_seconds,
                )
            return item
        except Exception:
            logger.exception("Title lookup failed for %s", content_id)
            return None

    async def similar(
        self, item: ContentItem, *, limit: int = SIMILAR_LIMIT
    ) -> list[ContentItem]:
        """Return titles sharing the item's leading genre and kind."""

        genre = item.genres[0] if item.genres else DEFAULT_SIMILAR_GENRE
        result = await self.search(genre, SearchFilters(kind=item.kind))
        return [candidate for candidate in result.items if candidate.id != item.id][:limit]

    def begin_request(self, channel: str = "default") -> int:
        """Issue a new generation token; older tokens on the channel go stale."""

        token = self._generations.get(channel, 0) + 1
        self._generations[channel] = token
        self._generations.move_to_end(channel)
        while len(self._generations) > MAX_TRACKED_CHANNELS:
            self._generations.popitem(last=False)
        return token

    def is_current(self, channel: str, token: int) -> bool:
        return self._generations.get(channel) == token
