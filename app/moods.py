"""Mood and category keywords understood by the discovery search."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class MoodDefinition:
    """Maps a user-facing mood or category label onto a provider search term."""

    key: str
    label: str
    search_term: str


MOODS: tuple[MoodDefinition, ...] = (
    MoodDefinition(key="adrenaline", label="Adrenaline", search_term="action"),
    MoodDefinition(key="noir", label="Noir", search_term="noir"),
    MoodDefinition(key="cerebral", label="Cerebral", search_term="sci-fi"),
    MoodDefinition(key="zen", label="Zen", search_term="slice of life"),
    MoodDefinition(key="eerie", label="Eerie", search_term="horror"),
    MoodDefinition(key="popular", label="Popular", search_term="2024"),
    MoodDefinition(key="trending", label="Trending", search_term="2025"),
    MoodDefinition(key="cinema", label="Cinema", search_term="movie"),
    MoodDefinition(key="series", label="Series", search_term="series"),
)

MOOD_MAP: dict[str, MoodDefinition] = {mood.key: mood for mood in MOODS}


def resolve_mood(text: str) -> str | None:
    """Return the internal search term for a mood keyword, if recognised."""

    mood = MOOD_MAP.get(text.strip().casefold())
    if mood is None:
        return None
    return mood.search_term
