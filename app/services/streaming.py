"""Static registry of embeddable streaming servers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import AbstractSet, Literal, Sequence

from ..models import ContentItem

Reliability = Literal["high", "medium", "variable"]

RELIABILITY_RANK: dict[str, int] = {"high": 0, "medium": 1, "variable": 2}


@dataclass(frozen=True)
class StreamingServer:
    """An embed host reachable through deterministic URL templates."""

    id: str
    display_name: str
    reliability: Reliability
    movie_template: str
    series_template: str

    def movie_url(self, content_id: str) -> str:
        return self.movie_template.format(id=content_id)

    def series_url(self, content_id: str, season: int, episode: int) -> str:
        return self.series_template.format(id=content_id, season=season, episode=episode)

    def to_payload(self) -> dict[str, str]:
        return {
            "id": self.id,
            "displayName": self.display_name,
            "reliability": self.reliability,
        }


STREAMING_SERVERS: tuple[StreamingServer, ...] = (
    StreamingServer(
        id="vidsrc-to",
        display_name="VidSrc.to",
        reliability="high",
        movie_template="https://vidsrc.to/embed/movie/{id}",
        series_template="https://vidsrc.to/embed/tv/{id}/{season}/{episode}",
    ),
    StreamingServer(
        id="vidsrc-me",
        display_name="VidSrc.me",
        reliability="high",
        movie_template="https://vidsrc.me/embed/movie?tmdb={id}",
        series_template="https://vidsrc.me/embed/tv?tmdb={id}&sea={season}&epi={episode}",
    ),
    StreamingServer(
        id="vidlink",
        display_name="VidLink.pro",
        reliability="high",
        movie_template="https://vidlink.pro/movie/{id}",
        series_template="https://vidlink.pro/tv/{id}/{season}/{episode}",
    ),
    StreamingServer(
        id="embed-su",
        display_name="Embed.su",
        reliability="medium",
        movie_template="https://embed.su/embed/movie/{id}",
        series_template="https://embed.su/embed/tv/{id}/{season}/{episode}",
    ),
    StreamingServer(
        id="vidsrc-icu",
        display_name="VidSrc.icu",
        reliability="medium",
        movie_template="https://vidsrc.icu/embed/movie/{id}",
        series_template="https://vidsrc.icu/embed/tv/{id}/{season}/{episode}",
    ),
    StreamingServer(
        id="autoembed",
        display_name="AutoEmbed.cc",
        reliability="medium",
        movie_template="https://autoembed.cc/embed/movie/{id}",
        series_template="https://autoembed.cc/embed/tv/{id}/{season}/{episode}",
    ),
)


class ServerRegistry:
    """Lookup helpers over an immutable server table."""

    def __init__(self, servers: Sequence[StreamingServer] = STREAMING_SERVERS):
        self._servers: tuple[StreamingServer, ...] = tuple(servers)
        self._by_id = {server.id: server for server in self._servers}

    def __len__(self) -> int:
        return len(self._servers)

    def __contains__(self, server_id: object) -> bool:
        return server_id in self._by_id

    def list(self) -> tuple[StreamingServer, ...]:
        return self._servers

    def ids(self) -> frozenset[str]:
        return frozenset(self._by_id)

    def get(self, server_id: str) -> StreamingServer:
        try:
            return self._by_id[server_id]
        except KeyError:
            raise KeyError(f"Unknown streaming server {server_id}") from None

    def select_best(self, broken: AbstractSet[str] = frozenset()) -> StreamingServer | None:
        """Pick the most reliable server not marked broken.

        Ties keep table order. When every server is broken the first server
        is returned; ``None`` only for an empty registry.
        """

        available = [server for server in self._servers if server.id not in broken]
        if available:
            return min(available, key=lambda server: RELIABILITY_RANK[server.reliability])
        if self._servers:
            return self._servers[0]
        return None

    @staticmethod
    def url_for(
        server: StreamingServer, item: ContentItem, season: int = 1, episode: int = 1
    ) -> str:
        """Build the embed URL for the item, dispatching on its kind."""

        if item.kind == "series":
            return server.series_url(item.id, season, episode)
        return server.movie_url(item.id)
