"""Batched Kinopoisk to TMDB lookups against the Wikidata SPARQL endpoint."""

from __future__ import annotations

import logging
from typing import Any, Sequence

import httpx

from ..config import Settings
from ..errors import ExternalLookupFailure, MalformedUpstreamPayload
from ..models import CatalogEntry, Resolved
from ..utils import chunked, parse_numeric_id

logger = logging.getLogger(__name__)

# P2603: Kinopoisk film ID, P4947: TMDB movie ID.
SPARQL_TEMPLATE = """
SELECT ?kpId ?tmdbId WHERE {{
  VALUES ?kpId {{ {values} }}
  ?film wdt:P2603 ?kpId .
  OPTIONAL {{ ?film wdt:P4947 ?tmdbId . }}
}}
""".strip()


def _binding_value(binding: dict[str, Any], key: str) -> Any:
    cell = binding.get(key)
    if isinstance(cell, dict):
        return cell.get("value")
    return None


def build_sparql_query(source_ids: Sequence[int]) -> str:
    values = " ".join(f'"{source_id}"' for source_id in source_ids)
    return SPARQL_TEMPLATE.format(values=values)


class WikidataClient:
    """Resolve TMDB ids through the public Wikidata graph."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._settings = settings
        self._client = http_client

    async def lookup(self, entries: Sequence[CatalogEntry]) -> dict[int, Resolved]:
        """Return TMDB ids for every entry Wikidata knows about."""

        source_ids = list(dict.fromkeys(entry.source_id for entry in entries))
        mappings: dict[int, int] = {}
        for chunk in chunked(source_ids, self._settings.wikidata_chunk_size):
            try:
                chunk_mappings = await self._fetch_chunk(chunk)
            except ExternalLookupFailure as exc:
                logger.warning(
                    "Wikidata query for %s id(s) failed, treating as unmapped: %s",
                    len(chunk),
                    exc,
                )
                continue
            for source_id, tmdb_id in chunk_mappings.items():
                mappings.setdefault(source_id, tmdb_id)

        return {
            source_id: Resolved(tmdb_id=tmdb_id)
            for source_id, tmdb_id in mappings.items()
        }

    async def _fetch_chunk(self, source_ids: Sequence[int]) -> dict[int, int]:
        try:
            response = await self._client.post(
                str(self._settings.wikidata_sparql_url),
                data={"query": build_sparql_query(source_ids)},
                headers={
                    "Accept": "application/sparql-results+json",
                    "User-Agent": self._settings.user_agent,
                },
            )
        except httpx.HTTPError as exc:
            raise ExternalLookupFailure("wikidata", exc.__class__.__name__) from exc
        if response.status_code >= 400:
            raise ExternalLookupFailure(
                "wikidata", f"HTTP {response.status_code}"
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise MalformedUpstreamPayload("wikidata", "non-JSON response") from exc
        return self._parse_bindings(payload)

    @staticmethod
    def _parse_bindings(payload: Any) -> dict[int, int]:
        results = payload.get("results") if isinstance(payload, dict) else None
        bindings = results.get("bindings") if isinstance(results, dict) else None
        if not isinstance(bindings, list):
            raise MalformedUpstreamPayload("wikidata", "missing results.bindings")

        mappings: dict[int, int] = {}
        for binding in bindings:
            if not isinstance(binding, dict):
                continue
            source_id = parse_numeric_id(_binding_value(binding, "kpId"))
            tmdb_id = parse_numeric_id(_binding_value(binding, "tmdbId"))
            if source_id is None or tmdb_id is None:
                continue
            mappings.setdefault(source_id, tmdb_id)
        return mappings
