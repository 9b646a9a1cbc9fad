from __future__ import annotations

import pytest

from app.models import ContentItem
from app.services.streaming import STREAMING_SERVERS, ServerRegistry, StreamingServer


def _server(server_id: str, reliability: str) -> StreamingServer:
    return StreamingServer(
        id=server_id,
        display_name=server_id.title(),
        reliability=reliability,  # type: ignore[arg-type]
        movie_template=f"https://{server_id}.example/movie/{{id}}",
        series_template=f"https://{server_id}.example/tv/{{id}}/{{season}}/{{episode}}",
    )


def test_default_table_has_unique_ids_and_known_tiers() -> None:
    ids = [server.id for server in STREAMING_SERVERS]

    assert len(ids) == len(set(ids))
    assert {server.reliability for server in STREAMING_SERVERS} <= {"high", "medium", "variable"}


def test_select_best_prefers_most_reliable_in_table_order() -> None:
    registry = ServerRegistry(
        [_server("slow", "variable"), _server("ok", "medium"), _server("fast", "high"), _server("fast2", "high")]
    )

    assert registry.select_best().id == "fast"
    assert registry.select_best({"fast"}).id == "fast2"
    assert registry.select_best({"fast", "fast2"}).id == "ok"
    assert registry.select_best({"fast", "fast2", "ok"}).id == "slow"


def test_select_best_with_every_server_broken_returns_first() -> None:
    registry = ServerRegistry([_server("a", "medium"), _server("b", "high")])

    assert registry.select_best({"a", "b"}).id == "a"


def test_empty_registry_selects_nothing() -> None:
    registry = ServerRegistry([])

    assert len(registry) == 0
    assert registry.select_best() is None


def test_get_unknown_server_raises_key_error() -> None:
    registry = ServerRegistry()

    with pytest.raises(KeyError, match="Unknown streaming server nope"):
        registry.get("nope")
    assert "vidsrc-to" in registry
    assert "nope" not in registry


def test_url_for_dispatches_on_kind() -> None:
    server = _server("host", "high")
    movie = ContentItem(id="tt1", title="Heat", kind="movie")
    series = ContentItem(id="tt2", title="Dark", kind="series")

    assert ServerRegistry.url_for(server, movie, 3, 4) == "https://host.example/movie/tt1"
    assert ServerRegistry.url_for(server, series, 2, 5) == "https://host.example/tv/tt2/2/5"


def test_payload_uses_display_fields() -> None:
    assert STREAMING_SERVERS[0].to_payload() == {
        "id": "vidsrc-to",
        "displayName": "VidSrc.to",
        "reliability": "high",
    }
