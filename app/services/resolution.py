"""Chain the identifier sources into a single resolution pass."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Awaitable, Callable, Mapping, Sequence

from ..errors import CredentialMissing
from ..models import Ambiguous, CatalogEntry, Resolved
from .kinopoisk import KinopoiskClient
from .local_reference import LocalReferenceLookup
from .tmdb import TMDBClient
from .wikidata import WikidataClient

logger = logging.getLogger(__name__)


class ResolutionStage(str, Enum):
    """Lookup stages in the order they run."""

    LOCAL_REFERENCE = "local-reference"
    CROSS_REFERENCE = "cross-reference"
    COMMERCIAL_CATALOG = "commercial-catalog"
    FUZZY_SEARCH = "fuzzy-search"


STAGE_ORDER: tuple[ResolutionStage, ...] = tuple(ResolutionStage)

# The identity variant each stage is allowed to write.
STAGE_OUTPUT: dict[ResolutionStage, type[Resolved] | type[Ambiguous]] = {
    ResolutionStage.LOCAL_REFERENCE: Resolved,
    ResolutionStage.CROSS_REFERENCE: Resolved,
    ResolutionStage.COMMERCIAL_CATALOG: Resolved,
    ResolutionStage.FUZZY_SEARCH: Ambiguous,
}


def needs_lookup(entry: CatalogEntry) -> bool:
    """Only unresolved movies are worth a lookup; Letterboxd has no series."""

    return not entry.is_resolved and entry.kind == "movie"


StageRunner = Callable[
    [Sequence[CatalogEntry]], Awaitable[Mapping[int, Resolved | Ambiguous]]
]


class ResolutionOrchestrator:
    """Run the identifier sources in a fixed order over a shrinking working set.

    Every stage only sees entries the previous stages left unresolved. The
    orchestrator keeps no state between calls: a paused run is resumed by
    passing the partially resolved entries back with ``resume_from``.
    """

    def __init__(
        self,
        local_reference: LocalReferenceLookup,
        cross_reference: WikidataClient,
        commercial: KinopoiskClient,
        fuzzy_search: TMDBClient | None = None,
    ):
        self._local_reference = local_reference
        self._cross_reference = cross_reference
        self._commercial = commercial
        self._fuzzy_search = fuzzy_search

    async def resolve(
        self,
        entries: Sequence[CatalogEntry],
        credential: str | None = None,
        *,
        resume_from: ResolutionStage = ResolutionStage.LOCAL_REFERENCE,
    ) -> list[CatalogEntry]:
        """Return new entries with as many identities settled as possible.

        Raises :class:`CredentialMissing` before the commercial stage when it
        has work to do and no credential was supplied.
        """

        working: dict[int, CatalogEntry] = {}
        for entry in entries:
            if entry.source_id in working:
                raise ValueError(f"Duplicate source id {entry.source_id} in entry set")
            working[entry.source_id] = entry

        start = STAGE_ORDER.index(resume_from)
        for stage in STAGE_ORDER[start:]:
            pending = [entry for entry in working.values() if needs_lookup(entry)]
            if not pending:
                logger.info("%s: nothing to look up, skipping", stage.value)
                continue

            runner = self._runner_for(stage, credential, working)
            if runner is None:
                continue

            logger.info("%s: %s film(s) need lookup", stage.value, len(pending))
            identities = await runner(pending)
            merged = self._merge(stage, working, pending, identities)
            logger.info(
                "%s: %s attempted, %s newly settled", stage.value, len(pending), merged
            )

        return list(working.values())

    def _runner_for(
        self,
        stage: ResolutionStage,
        credential: str | None,
        working: Mapping[int, CatalogEntry],
    ) -> StageRunner | None:
        if stage is ResolutionStage.LOCAL_REFERENCE:
            return self._local_reference.lookup
        if stage is ResolutionStage.CROSS_REFERENCE:
            return self._cross_reference.lookup
        if stage is ResolutionStage.COMMERCIAL_CATALOG:
            token = (credential or "").strip()
            if not token:
                raise CredentialMissing(stage, list(working.values()))

            async def _commercial(
                subset: Sequence[CatalogEntry],
            ) -> Mapping[int, Resolved]:
                return await self._commercial.lookup(subset, token)

            return _commercial
        if self._fuzzy_search is None:
            logger.warning("TMDB API key not configured, skipping %s", stage.value)
            return None
        return self._fuzzy_search.lookup

    @staticmethod
    def _merge(
        stage: ResolutionStage,
        working: dict[int, CatalogEntry],
        pending: Sequence[CatalogEntry],
        identities: Mapping[int, Resolved | Ambiguous],
    ) -> int:
        allowed = STAGE_OUTPUT[stage]
        pending_ids = {entry.source_id for entry in pending}
        merged = 0
        for source_id, identity in identities.items():
            if source_id not in pending_ids:
                logger.warning(
                    "%s returned kpId=%s which was not requested, ignoring",
                    stage.value,
                    source_id,
                )
                continue
            if not isinstance(identity, allowed):
                logger.warning(
                    "%s may not produce %s identities, ignoring kpId=%s",
                    stage.value,
                    type(identity).__name__,
                    source_id,
                )
                continue
            working[source_id] = working[source_id].with_identity(identity)
            merged += 1
        return merged
