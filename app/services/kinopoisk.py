"""Per-title lookups against the token-gated kinopoisk.dev API."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Sequence

import httpx

from ..config import Settings
from ..errors import ExternalLookupFailure, MalformedUpstreamPayload
from ..models import CatalogEntry, Resolved
from ..utils import normalise_imdb_id, parse_numeric_id

logger = logging.getLogger(__name__)


class KinopoiskClient:
    """Resolve external ids one title at a time with the user's API token.

    The free plan enforces a hard rate limit, so calls are strictly serial with
    a fixed pause between them.
    """

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._settings = settings
        self._client = http_client

    async def lookup(
        self, entries: Sequence[CatalogEntry], token: str
    ) -> dict[int, Resolved]:
        """Return identifiers for every movie kinopoisk.dev could map."""

        if not token:
            raise ValueError("A kinopoisk.dev token is required for lookups")

        found: dict[int, Resolved] = {}
        first_call = True
        for entry in entries:
            if entry.kind != "movie" or entry.is_resolved:
                continue
            if not first_call:
                await asyncio.sleep(self._settings.kinopoisk_request_delay)
            first_call = False
            try:
                identity = await self._fetch(entry.source_id, token)
            except ExternalLookupFailure as exc:
                logger.warning(
                    "kinopoisk.dev lookup failed for kpId=%s: %s", entry.source_id, exc
                )
                continue
            if identity is not None:
                found[entry.source_id] = identity
        return found

    async def _fetch(self, source_id: int, token: str) -> Resolved | None:
        try:
            response = await self._client.get(
                f"/movie/{source_id}",
                headers={"X-API-KEY": token, "Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            raise ExternalLookupFailure("kinopoisk.dev", exc.__class__.__name__) from exc

        if response.status_code in {401, 403}:
            raise ExternalLookupFailure("kinopoisk.dev", "token rejected")
        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise ExternalLookupFailure(
                "kinopoisk.dev", f"HTTP {response.status_code}"
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise MalformedUpstreamPayload("kinopoisk.dev", "non-JSON response") from exc
        return self._extract_identity(payload)

    @staticmethod
    def _extract_identity(payload: Any) -> Resolved | None:
        if not isinstance(payload, dict):
            raise MalformedUpstreamPayload("kinopoisk.dev", "unexpected body")
        # Series and other title types cannot be imported.
        if payload.get("type") != "movie":
            return None
        external = payload.get("externalId")
        if not isinstance(external, dict):
            return None
        tmdb_id = parse_numeric_id(external.get("tmdb"))
        imdb_id = normalise_imdb_id(external.get("imdb"))
        if tmdb_id is None and imdb_id is None:
            return None
        return Resolved(imdb_id=imdb_id, tmdb_id=tmdb_id)
