"""Utility helpers for the CineVault service."""

from __future__ import annotations

import json
import math
import re
import unicodedata
from typing import Any


JSON_BLOCK_RE = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL)
BARE_JSON_RE = re.compile(r"\{.*\}", re.DOTALL)
YEAR_RE = re.compile(r"(18|19|20|21)\d{2}")


def slugify(value: str) -> str:
    """Return a URL-friendly slug."""

    value = unicodedata.normalize("NFKD", value)
    value = value.encode("ascii", "ignore").decode("ascii")
    value = re.sub(r"[^a-zA-Z0-9]+", "-", value)
    value = value.strip("-")
    value = re.sub(r"-+", "-", value)
    return value.lower() or "title"


def extract_json_object(content: str) -> dict[str, Any]:
    """Extract and parse the first JSON object from the model response."""

    match = JSON_BLOCK_RE.search(content)
    if match:
        payload = match.group(1)
    else:
        match = BARE_JSON_RE.search(content)
        if not match:
            raise ValueError("No JSON object found in response")
        payload = match.group(0)

    try:
        return json.loads(payload)
    except json.JSONDecodeError as exc:
        raise ValueError("Invalid JSON payload produced by the model") from exc


def synthetic_content_id(title: str, year: str | None = None) -> str:
    """Derive a stable identifier for generated titles.

    The identifier only depends on the title text (and year when present) so
    the same title always maps to the same id.
    """

    base = slugify(title)
    parsed_year = parse_year(year)
    if parsed_year is not None:
        return f"ai-{base}-{parsed_year}"
    return f"ai-{base}"


def parse_year(value: Any) -> int | None:
    """Return the first plausible four digit year contained in ``value``."""

    if isinstance(value, int):
        return value
    if not value:
        return None
    match = YEAR_RE.search(str(value))
    if not match:
        return None
    return int(match.group(0))


def parse_rating(value: Any) -> float:
    """Return a numeric rating, treating unknown values as zero."""

    try:
        rating = float(str(value).strip())
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(rating) or math.isinf(rating):
        return 0.0
    return rating


def split_csv(value: Any) -> list[str]:
    """Split OMDb style ``"A, B, C"`` strings into clean lists."""

    if isinstance(value, list):
        return [str(part).strip() for part in value if str(part).strip()]
    if not isinstance(value, str) or value.strip() in {"", "N/A"}:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]
