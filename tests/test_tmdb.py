"""Tests for the TMDB candidate search client."""

from __future__ import annotations

from typing import Any

import httpx
import pytest

from app.config import Settings
from app.models import MAX_CANDIDATES, CatalogEntry
from app.services.tmdb import TMDBClient


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO tests to run on asyncio without requiring trio."""

    return "asyncio"


def build_settings(**overrides: Any) -> Settings:
    base: dict[str, Any] = {"TMDB_API_KEY": "tmdb-key"}
    base.update(overrides)
    return Settings(_env_file=None, **base)  # type: ignore[arg-type]


def _result(tmdb_id: int, popularity: float, release_date: str = "2001-01-01") -> dict[str, Any]:
    return {
        "id": tmdb_id,
        "title": f"Film {tmdb_id}",
        "release_date": release_date,
        "popularity": popularity,
        "overview": "An overview",
        "poster_path": f"/{tmdb_id}.jpg",
    }


def test_client_requires_an_api_key() -> None:
    with pytest.raises(ValueError):
        TMDBClient(Settings(_env_file=None, TMDB_API_KEY=""), httpx.AsyncClient())


@pytest.mark.anyio("asyncio")
async def test_search_candidates_widens_the_year_window() -> None:
    """The release year and the years either side should each be searched once."""

    years: list[str | None] = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/3/search/movie"
        assert request.url.params["api_key"] == "tmdb-key"
        assert request.url.params["query"] == "Amelie"
        year = request.url.params.get("year")
        years.append(year)
        if year == "2001":
            return httpx.Response(200, json={"results": [_result(194, 30.0), _result(7, 1.0)]})
        if year == "2002":
            return httpx.Response(200, json={"results": [_result(194, 99.0), _result(8, 50.0, "2002-05-05")]})
        return httpx.Response(200, json={"results": []})

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(
        transport=transport, base_url="https://api.themoviedb.org/3"
    ) as http_client:
        client = TMDBClient(build_settings(), http_client)
        candidates = await client.search_candidates("Amelie", 2001)

    assert years == ["2001", "2002", "2000"]
    assert [candidate.tmdb_id for candidate in candidates] == [8, 194, 7]
    assert candidates[1].popularity == 30.0
    assert candidates[0].year == 2002
    assert candidates[0].poster_url == "https://image.tmdb.org/t/p/w500/8.jpg"


@pytest.mark.anyio("asyncio")
async def test_search_without_year_runs_a_single_query() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(
            200,
            json={"results": [_result(index, float(index)) for index in range(1, 15)]},
        )

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport, base_url="https://tmdb.test") as http_client:
        client = TMDBClient(build_settings(), http_client)
        candidates = await client.search_candidates("Anything", None)

    assert len(requests) == 1
    assert "year" not in requests[0].url.params
    assert len(candidates) == MAX_CANDIDATES
    assert candidates[0].tmdb_id == 14


@pytest.mark.anyio("asyncio")
async def test_lookup_returns_ambiguous_identities_only_for_hits() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        query = request.url.params["query"]
        if query == "Known":
            return httpx.Response(200, json={"results": [_result(1, 5.0)]})
        if query == "Broken":
            return httpx.Response(500, json={"status_message": "oops"})
        return httpx.Response(200, json={"results": []})

    entries = [
        CatalogEntry(source_id=1, title="Known"),
        CatalogEntry(source_id=2, title="Unknown"),
        CatalogEntry(source_id=3, title="Broken"),
        CatalogEntry(source_id=4, title=""),
    ]
    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport, base_url="https://tmdb.test") as http_client:
        client = TMDBClient(build_settings(SEARCH_CONCURRENCY=2), http_client)
        identities = await client.lookup(entries)

    assert list(identities) == [1]
    assert [candidate.tmdb_id for candidate in identities[1].candidates] == [1]


@pytest.mark.anyio("asyncio")
async def test_malformed_result_does_not_discard_its_neighbours() -> None:
    """A single unparseable row is dropped; valid rows from the same page survive."""

    def handler(_: httpx.Request) -> httpx.Response:
        broken = _result(2, 90.0)
        broken["overview"] = 123
        return httpx.Response(200, json={"results": [_result(1, 10.0), broken]})

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport, base_url="https://tmdb.test") as http_client:
        client = TMDBClient(build_settings(), http_client)
        identities = await client.lookup([CatalogEntry(source_id=7, title="Mixed", year=1999)])

    assert list(identities) == [7]
    assert [candidate.tmdb_id for candidate in identities[7].candidates] == [1]
