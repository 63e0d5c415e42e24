"""Title/year searches against The Movie Database (TMDB)."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Sequence

import httpx
from pydantic import ValidationError

from ..config import Settings
from ..errors import ExternalLookupFailure, MalformedUpstreamPayload
from ..models import Ambiguous, CandidateMatch, CatalogEntry, rank_candidates

logger = logging.getLogger(__name__)


class TMDBClient:
    """Client responsible for searching TMDB for candidate matches.

    Search is heuristic, so results are only ever offered as candidates and
    never written to an entry as a resolved id.
    """

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        if not settings.tmdb_api_key:
            raise ValueError("TMDB API key is required when initialising TMDBClient")
        self._settings = settings
        self._client = http_client
        self._semaphore = asyncio.Semaphore(settings.search_concurrency)

    async def lookup(self, entries: Sequence[CatalogEntry]) -> dict[int, Ambiguous]:
        """Attach ranked candidates to every entry with at least one hit."""

        searchable = [entry for entry in entries if entry.title]
        results = await asyncio.gather(
            *(self._search_entry(entry) for entry in searchable),
            return_exceptions=True,
        )

        found: dict[int, Ambiguous] = {}
        for entry, result in zip(searchable, results):
            if isinstance(result, Exception):
                logger.warning(
                    "TMDB search failed for %s (kpId=%s): %s",
                    entry.title,
                    entry.source_id,
                    result,
                )
                continue
            if result:
                found[entry.source_id] = Ambiguous(candidates=result)
        return found

    async def _search_entry(self, entry: CatalogEntry) -> tuple[CandidateMatch, ...]:
        async with self._semaphore:
            return await self.search_candidates(entry.title, entry.year)

    async def search_candidates(
        self, title: str, year: int | None
    ) -> tuple[CandidateMatch, ...]:
        """Search around ``year`` (one year either side) and rank the union."""

        years: list[int | None] = [year, year + 1, year - 1] if year else [None]
        collected: list[CandidateMatch] = []
        for search_year in years:
            try:
                collected.extend(await self._search(title, year=search_year))
            except ExternalLookupFailure as exc:
                logger.warning(
                    "TMDB search for %s (%s) returned nothing usable: %s",
                    title,
                    search_year,
                    exc,
                )
        return rank_candidates(collected)

    async def _search(self, title: str, *, year: int | None) -> list[CandidateMatch]:
        params: dict[str, Any] = {
            "query": title,
            "include_adult": "false",
            "page": 1,
            "api_key": self._settings.tmdb_api_key,
        }
        if year:
            params["year"] = year

        try:
            response = await self._client.get("/search/movie", params=params)
        except httpx.HTTPError as exc:
            raise ExternalLookupFailure("tmdb", exc.__class__.__name__) from exc
        if response.status_code >= 400:
            raise ExternalLookupFailure("tmdb", f"HTTP {response.status_code}")
        try:
            data = response.json()
        except ValueError as exc:
            raise MalformedUpstreamPayload("tmdb", "non-JSON response") from exc
        results = data.get("results") if isinstance(data, dict) else None
        if not isinstance(results, list):
            raise MalformedUpstreamPayload("tmdb", "missing results list")

        candidates: list[CandidateMatch] = []
        for result in results:
            try:
                candidate = self._to_candidate(result)
            except ValidationError as exc:
                logger.warning(
                    "Skipping malformed TMDB result for %s: %s", title, exc
                )
                continue
            if candidate is not None:
                candidates.append(candidate)
        return candidates

    @classmethod
    def _to_candidate(cls, result: Any) -> CandidateMatch | None:
        if not isinstance(result, dict):
            return None
        tmdb_id = result.get("id")
        if not isinstance(tmdb_id, int) or isinstance(tmdb_id, bool):
            return None
        popularity = result.get("popularity")
        if not isinstance(popularity, (int, float)) or isinstance(popularity, bool):
            popularity = None
        return CandidateMatch(
            title=str(result.get("title") or result.get("original_title") or ""),
            year=cls._extract_year(result),
            tmdb_id=tmdb_id,
            popularity=popularity,
            overview=result.get("overview") or None,
            poster_path=result.get("poster_path") or None,
        )

    @staticmethod
    def _extract_year(result: dict[str, Any]) -> int | None:
        date_value = result.get("release_date")
        if not isinstance(date_value, str) or len(date_value) < 4:
            return None
        try:
            return int(date_value[:4])
        except ValueError:
            return None
