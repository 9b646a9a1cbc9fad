"""Pydantic models describing discovery and playback payloads."""

from __future__ import annotations

from typing import Literal

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)

from .moods import resolve_mood
from .utils import parse_rating, split_csv

ContentKind = Literal["movie", "series"]
KindFilter = Literal["all", "movie", "series"]
Provenance = Literal["provider", "generator"]

PLACEHOLDER_POSTER = (
    "https://images.unsplash.com/photo-1440404653325-ab127d49abc1"
    "?q=80&w=2070&auto=format&fit=crop"
)
UNRATED = "unrated"
DEFAULT_SYNOPSIS = "No synopsis available for this title."
UNKNOWN_DIRECTOR = "Unknown"
UNKNOWN_RUNTIME = "N/A"
MISSING_MARKERS = {"", "n/a", "none", "null"}


def _is_missing(value: object) -> bool:
    return value is None or str(value).strip().casefold() in MISSING_MARKERS


class ContentItem(BaseModel):
    """Canonical, immutable unit of discoverable media."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str = Field(min_length=1)
    kind: ContentKind = Field(
        default="movie",
        validation_alias=AliasChoices("kind", "contentType", "type"),
    )
    title: str = Field(min_length=1)
    year: str = ""
    rating: str = UNRATED
    synopsis: str = Field(
        default=DEFAULT_SYNOPSIS,
        validation_alias=AliasChoices("synopsis", "description", "plot"),
    )
    poster_url: str = Field(
        default=PLACEHOLDER_POSTER,
        validation_alias=AliasChoices("poster_url", "posterUrl", "poster"),
        serialization_alias="posterUrl",
    )
    genres: tuple[str, ...] = Field(
        default=(), validation_alias=AliasChoices("genres", "genre")
    )
    director: str = UNKNOWN_DIRECTOR
    cast: tuple[str, ...] = ()
    runtime: str = UNKNOWN_RUNTIME
    imdb_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("imdb_id", "imdbId"),
        serialization_alias="imdbId",
    )

    @field_validator("kind", mode="before")
    @classmethod
    def _normalise_kind(cls, value: object) -> str:
        text = str(value or "").strip().casefold()
        if text in {"series", "tv", "show", "episode"}:
            return "series"
        return "movie"

    @field_validator("title", mode="before")
    @classmethod
    def _strip_title(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("year", mode="before")
    @classmethod
    def _normalise_year(cls, value: object) -> str:
        if _is_missing(value):
            return ""
        return str(value).strip()

    @field_validator("rating", mode="before")
    @classmethod
    def _normalise_rating(cls, value: object) -> str:
        if _is_missing(value):
            return UNRATED
        text = str(value).strip()
        if parse_rating(text) == 0.0 and text not in {"0", "0.0"}:
            return UNRATED
        return text

    @field_validator("synopsis", mode="before")
    @classmethod
    def _default_synopsis(cls, value: object) -> str:
        if _is_missing(value):
            return DEFAULT_SYNOPSIS
        return str(value).strip()

    @field_validator("poster_url", mode="before")
    @classmethod
    def _ensure_poster(cls, value: object) -> str:
        if isinstance(value, str) and value.strip().startswith("http"):
            return value.strip()
        return PLACEHOLDER_POSTER

    @field_validator("genres", "cast", mode="before")
    @classmethod
    def _split_lists(cls, value: object) -> list[str]:
        return split_csv(value)

    @field_validator("director", mode="before")
    @classmethod
    def _default_director(cls, value: object) -> str:
        if isinstance(value, list):
            value = ", ".join(str(part) for part in value)
        if _is_missing(value):
            return UNKNOWN_DIRECTOR
        return str(value).strip()

    @field_validator("runtime", mode="before")
    @classmethod
    def _default_runtime(cls, value: object) -> str:
        if _is_missing(value):
            return UNKNOWN_RUNTIME
        return str(value).strip()

    @field_validator("imdb_id", mode="before")
    @classmethod
    def _blank_imdb_id(cls, value: object) -> object:
        if _is_missing(value):
            return None
        return value

    def to_payload(self) -> dict[str, object]:
        """Return the JSON payload exposed to presentation clients."""

        return self.model_dump(mode="json", by_alias=True)


class SearchFilters(BaseModel):
    """Optional constraints applied to a discovery search."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    kind: KindFilter = Field(
        default="all", validation_alias=AliasChoices("kind", "type")
    )
    year: str | None = None
    genre: str | None = None

    @field_validator("kind", mode="before")
    @classmethod
    def _normalise_kind(cls, value: object) -> object:
        if value is None or value == "":
            return "all"
        if isinstance(value, str):
            text = value.strip().casefold()
            return "series" if text == "tv" else text
        return value

    @field_validator("year", "genre", mode="before")
    @classmethod
    def _strip_blank(cls, value: object) -> object:
        if value is None:
            return None
        if isinstance(value, (str, int)):
            stripped = str(value).strip()
            return stripped or None
        return value

    def kind_only(self) -> "SearchFilters":
        """Return a copy that keeps only the content kind constraint."""

        return SearchFilters(kind=self.kind)


class SearchQuery(BaseModel):
    """A raw search request together with its normalized provider term."""

    model_config = ConfigDict(frozen=True)

    raw_text: str
    filters: SearchFilters = Field(default_factory=SearchFilters)
    term: str

    @classmethod
    def build(
        cls,
        raw_text: str | None,
        filters: SearchFilters | None = None,
        *,
        default_term: str,
    ) -> "SearchQuery":
        """Normalise the free text into the term sent to the provider.

        Empty text resolves to ``default_term``; mood keywords such as
        ``Eerie`` are replaced by their search term; a genre filter is
        appended; very short terms are padded so the provider accepts them.
        """

        resolved_filters = filters or SearchFilters()
        text = (raw_text or "").strip()
        term = text or default_term
        term = resolve_mood(term) or term
        if resolved_filters.genre:
            term = f"{term} {resolved_filters.genre}"
        if len(term) < 3:
            term = f"{term} movie"
        return cls(raw_text=text, filters=resolved_filters, term=term)


class SearchResult(BaseModel):
    """Result set returned by the discovery orchestrator."""

    items: list[ContentItem] = Field(default_factory=list)
    provenance: Provenance = "provider"

    def to_payload(self) -> dict[str, object]:
        return {
            "items": [item.to_payload() for item in self.items],
            "provenance": self.provenance,
        }


class ResumeState(BaseModel):
    """Persisted playback position for a single title."""

    model_config = ConfigDict(populate_by_name=True)

    season: int = Field(default=1, ge=1)
    episode: int = Field(default=1, ge=1)
    server_id: str = Field(
        validation_alias=AliasChoices("server_id", "serverId"),
        serialization_alias="serverId",
    )

    def to_payload(self) -> dict[str, object]:
        return self.model_dump(mode="json", by_alias=True)
