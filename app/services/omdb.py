"""Client for the OMDb metadata provider with credential rotation."""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Sequence

import httpx
from pydantic import ValidationError

from ..config import Settings
from ..models import ContentItem, SearchQuery

logger = logging.getLogger(__name__)

ROTATABLE_ERROR_RE = re.compile(
    r"api key|unauthori[sz]ed|limit reached|request limit|quota|not found",
    re.IGNORECASE,
)
ROTATABLE_STATUS_CODES = frozenset({401, 403, 429})


class ProviderError(RuntimeError):
    """Base class for metadata provider failures."""


class RotatableProviderError(ProviderError):
    """The current credential node is unusable (auth, quota or not found)."""


class SystemicProviderError(ProviderError):
    """The provider could not be reached at all (network or timeout)."""


@dataclass(slots=True)
class PageResult:
    """One page of raw search candidates."""

    page: int
    node_index: int
    records: list[dict[str, Any]] = field(default_factory=list)
    total: int = 0


class OMDbClient:
    """Wrapper around the OMDb search and detail endpoints.

    The client owns an ordered list of API keys ("nodes") and a rotation
    cursor. Callers rotate explicitly; the next request uses the new node.
    """

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient,
        *,
        api_keys: Sequence[str] | None = None,
    ):
        self._settings = settings
        self._client = http_client
        self._nodes: tuple[str, ...] = tuple(
            api_keys if api_keys is not None else settings.omdb_api_keys
        )
        self._node_index = 0
        self._timeout = settings.request_timeout_seconds

    @property
    def node_count(self) -> int:
        return len(self._nodes)

    @property
    def node_index(self) -> int:
        return self._node_index

    def rotate(self) -> int:
        """Advance to the next credential node, wrapping around."""

        if not self._nodes:
            return self._node_index
        self._node_index = (self._node_index + 1) % len(self._nodes)
        logger.info("Rotated OMDb credentials to node %s", self._node_index)
        return self._node_index

    async def fetch_page(self, query: SearchQuery, page: int) -> PageResult:
        """Return one page of search candidates for the normalized query."""

        node_index = self._node_index
        params: dict[str, Any] = {"s": query.term, "page": page}
        if query.filters.kind != "all":
            params["type"] = query.filters.kind
        if query.filters.year:
            params["y"] = query.filters.year

        payload = await self._request(params, node_index=node_index)
        if str(payload.get("Response", "")).lower() != "true":
            error = str(payload.get("Error") or "Unknown provider error")
            logger.warning("OMDb search page %s failed: %s", page, error)
            if ROTATABLE_ERROR_RE.search(error):
                raise RotatableProviderError(error)
            return PageResult(page=page, node_index=node_index)

        records = payload.get("Search") or []
        if not isinstance(records, list):
            records = []
        try:
            total = int(payload.get("totalResults") or 0)
        except (TypeError, ValueError):
            total = 0
        return PageResult(
            page=page,
            node_index=node_index,
            records=[record for record in records if isinstance(record, dict)],
            total=total,
        )

    async def fetch_details(
        self, native_id: str | None, title: str | None = None
    ) -> dict[str, Any] | None:
        """Fetch the full record by id, falling back to a title lookup."""

        if native_id:
            params: dict[str, Any] = {"i": native_id, "plot": "full"}
        elif title:
            params = {"t": title, "plot": "full"}
        else:
            return None

        try:
            payload = await self._request(params, node_index=self._node_index)
        except ProviderError as exc:
            logger.debug("OMDb detail fetch failed for %s: %s", native_id or title, exc)
            return None
        if str(payload.get("Response", "")).lower() != "true":
            logger.debug(
                "OMDb detail fetch for %s returned %s",
                native_id or title,
                payload.get("Error"),
            )
            return None
        return payload

    async def _request(self, params: dict[str, Any], *, node_index: int) -> dict[str, Any]:
        if not self._nodes:
            raise RotatableProviderError("No OMDb API key configured")
        query = {"apikey": self._nodes[node_index], **params}
        try:
            response = await asyncio.wait_for(
                self._client.get("/", params=query), timeout=self._timeout
            )
        except asyncio.TimeoutError as exc:
            raise SystemicProviderError("OMDb request timed out") from exc
        except httpx.HTTPError as exc:
            raise SystemicProviderError(f"OMDb request failed: {exc}") from exc

        if response.status_code in ROTATABLE_STATUS_CODES:
            raise RotatableProviderError(
                f"OMDb rejected node {node_index} with {response.status_code}"
            )
        if response.status_code >= 500:
            raise SystemicProviderError(
                f"OMDb returned server error {response.status_code}"
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise SystemicProviderError("OMDb returned an undecodable body") from exc
        if not isinstance(payload, dict):
            raise SystemicProviderError("OMDb returned an unexpected payload")
        return payload

    @staticmethod
    def has_artwork(record: dict[str, Any]) -> bool:
        poster = record.get("Poster")
        return isinstance(poster, str) and poster.startswith("http")

    @staticmethod
    def native_id(record: dict[str, Any]) -> str | None:
        value = record.get("imdbID")
        if isinstance(value, str) and value.strip():
            return value.strip()
        return None

    @staticmethod
    def to_content_item(record: dict[str, Any]) -> ContentItem | None:
        """Map a full OMDb record into the content model."""

        native_id = OMDbClient.native_id(record)
        payload = {
            "id": native_id,
            "imdb_id": native_id,
            "kind": record.get("Type"),
            "title": record.get("Title"),
            "year": record.get("Year"),
            "rating": record.get("imdbRating"),
            "synopsis": record.get("Plot"),
            "poster_url": record.get("Poster"),
            "genres": record.get("Genre"),
            "director": record.get("Director"),
            "cast": record.get("Actors"),
            "runtime": record.get("Runtime"),
        }
        try:
            return ContentItem.model_validate(payload)
        except ValidationError:
            logger.debug("Discarding malformed OMDb record %s", native_id)
            return None
