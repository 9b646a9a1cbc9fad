"""Integration helpers for the OpenRouter API."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx
from pydantic import ValidationError

from ..config import Settings
from ..models import ContentItem, KindFilter
from ..utils import extract_json_object, synthetic_content_id

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are CineVault, an expert film and television archivist. You always respond "
    "with a single JSON object that matches the documented schema and never include "
    "commentary outside JSON."
)

FALLBACK_REQUEST_TEMPLATE = """
The primary catalogue is unavailable. Recommend titles for a viewer searching for: "{query}".

Rules:
1. Recommend EXACTLY {item_target} {content_label} that genuinely match the search.
2. Only include real, released productions with accurate release years.
3. Keep every synopsis to one or two sentences.
4. Use "movie" or "series" for the kind field.
5. Leave posterUrl empty unless you are certain of a direct image URL.

Respond strictly with JSON:
{{
  "items": [
    {{
      "title": "",
      "kind": "{kind_hint}",
      "year": "2024",
      "rating": "7.5",
      "synopsis": "",
      "genres": [""],
      "director": "",
      "cast": [""],
      "runtime": "120 min",
      "posterUrl": ""
    }}
  ]
}}
"""


class OpenRouterClient:
    """Client responsible for generating fallback titles through OpenRouter."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._settings = settings
        self._client = http_client

    async def generate(self, query: str, kind: KindFilter = "all") -> list[ContentItem]:
        """Return a batch of synthetic content items for ``query``.

        Any failure (missing key, HTTP error, timeout, malformed output)
        degrades to an empty list.
        """

        api_key = self._settings.openrouter_api_key
        if not api_key:
            logger.info("OpenRouter API key missing, skipping fallback generation")
            return []

        try:
            content = await asyncio.wait_for(
                self._request_completion(query, kind, api_key=api_key),
                timeout=self._settings.generator_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning("Fallback generation timed out for %r", query)
            return []
        except (httpx.HTTPError, RuntimeError) as exc:
            logger.warning("Fallback generation failed for %r: %s", query, exc)
            return []

        try:
            parsed = extract_json_object(content)
        except ValueError as exc:
            logger.warning("Fallback generation returned malformed JSON: %s", exc)
            return []
        return self._parse_items(parsed, kind)

    async def _request_completion(self, query: str, kind: KindFilter, *, api_key: str) -> str:
        item_target = self._settings.fallback_batch_size
        payload = {
            "model": self._settings.openrouter_model,
            "temperature": 0.4,
            "max_output_tokens": self._estimate_token_budget(item_target),
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": self._build_prompt(query, kind, item_target)},
            ],
        }
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            "X-Title": self._settings.app_name,
        }

        response = await self._client.post("/chat/completions", json=payload, headers=headers)
        if response.status_code >= 400:
            raise RuntimeError(response.text)

        try:
            data = response.json()
        except ValueError as exc:
            raise RuntimeError("OpenRouter returned an undecodable body") from exc
        choices = data.get("choices") if isinstance(data, dict) else None
        if not choices:
            raise RuntimeError("Model returned no choices")
        message = choices[0].get("message", {})
        content = message.get("content")
        if not isinstance(content, str):
            raise RuntimeError("Model response missing content")
        return content

    def _build_prompt(self, query: str, kind: KindFilter, item_target: int) -> str:
        if kind == "movie":
            content_label, kind_hint = "movies", "movie"
        elif kind == "series":
            content_label, kind_hint = "series", "series"
        else:
            content_label, kind_hint = "movies or series", "movie"
        return FALLBACK_REQUEST_TEMPLATE.format(
            query=query.strip(),
            item_target=item_target,
            content_label=content_label,
            kind_hint=kind_hint,
        )

    @staticmethod
    def _estimate_token_budget(item_target: int) -> int:
        return max(1_500, min(8_000, 600 + item_target * 180))

    def _parse_items(self, parsed: Any, kind: KindFilter) -> list[ContentItem]:
        raw_items: list[dict[str, Any]] = []
        if isinstance(parsed, dict):
            candidate = parsed.get("items") or parsed.get("movies")
            if isinstance(candidate, list):
                raw_items = [entry for entry in candidate if isinstance(entry, dict)]

        items: list[ContentItem] = []
        seen: set[str] = set()
        for entry in raw_items:
            title = str(entry.get("title") or entry.get("name") or "").strip()
            if not title:
                continue
            payload = {key: value for key, value in entry.items() if key != "id"}
            payload["title"] = title
            payload["id"] = synthetic_content_id(title, entry.get("year"))
            if kind != "all":
                payload["kind"] = kind
            try:
                item = ContentItem.model_validate(payload)
            except ValidationError:
                continue
            if item.id in seen:
                continue
            seen.add(item.id)
            items.append(item)
            if len(items) >= self._settings.fallback_batch_size:
                break
        return items
