"""Pytest configuration and test helpers."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Any


# Ensure the application package is importable when running tests without an
# editable install. This mirrors the expected runtime layout where ``app`` sits
# at the project root.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


import httpx  # noqa: E402

POSTER = "https://img.example.com/poster.jpg"


def search_record(
    imdb_id: str,
    title: str | None = None,
    *,
    year: str = "2020",
    kind: str = "movie",
    poster: str = POSTER,
) -> dict[str, Any]:
    """Return a record shaped like an OMDb search hit."""

    return {
        "imdbID": imdb_id,
        "Title": title or f"Title {imdb_id}",
        "Year": year,
        "Type": kind,
        "Poster": poster,
    }


def detail_record(
    imdb_id: str,
    title: str | None = None,
    *,
    year: str = "2020",
    rating: str = "7.0",
    kind: str = "movie",
    poster: str = POSTER,
) -> dict[str, Any]:
    """Return a record shaped like a full OMDb detail response."""

    return {
        "Response": "True",
        "imdbID": imdb_id,
        "Title": title or f"Title {imdb_id}",
        "Year": year,
        "Type": kind,
        "imdbRating": rating,
        "Plot": "A story.",
        "Poster": poster,
        "Genre": "Horror, Thriller",
        "Director": "Jane Doe",
        "Actors": "A. Actor, B. Actor",
        "Runtime": "101 min",
    }


class FakeOMDb:
    """In-process stand-in for the OMDb HTTP API."""

    def __init__(self) -> None:
        self.searches: dict[str, dict[int, list[dict[str, Any]]]] = {}
        self.details: dict[str, dict[str, Any]] = {}
        self.bad_keys: set[str] = set()
        self.calls: list[dict[str, str]] = []
        self.hang = False
        self.network_down = False

    def add_search(self, term: str, page: int, records: list[dict[str, Any]]) -> None:
        self.searches.setdefault(term, {})[page] = records

    def add_details(self, *records: dict[str, Any]) -> None:
        for record in records:
            self.details[record["imdbID"]] = record

    @property
    def search_calls(self) -> list[dict[str, str]]:
        return [call for call in self.calls if "s" in call]

    async def handler(self, request: httpx.Request) -> httpx.Response:
        params = dict(request.url.params)
        self.calls.append(params)
        if self.hang:
            await asyncio.sleep(3_600)
        if self.network_down:
            raise httpx.ConnectError("connection refused", request=request)
        if params.get("apikey") in self.bad_keys:
            return httpx.Response(
                401, json={"Response": "False", "Error": "Invalid API key!"}
            )
        if "s" in params:
            records = self.searches.get(params["s"], {}).get(int(params.get("page", 1)))
            if not records:
                return httpx.Response(
                    200, json={"Response": "False", "Error": "Movie not found!"}
                )
            return httpx.Response(
                200,
                json={
                    "Response": "True",
                    "Search": records,
                    "totalResults": str(len(records)),
                },
            )
        key = params.get("i") or params.get("t")
        record = self.details.get(key or "")
        if record is None:
            return httpx.Response(
                200, json={"Response": "False", "Error": "Incorrect IMDb ID."}
            )
        return httpx.Response(200, json=record)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url="https://omdb.example.com",
            transport=httpx.MockTransport(self.handler),
        )
