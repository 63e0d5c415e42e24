"""Offline Kinopoisk to IMDb lookups backed by a bundled SQLite file."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Sequence

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import create_async_engine

from ..models import CatalogEntry, Resolved
from ..utils import normalise_imdb_id

logger = logging.getLogger(__name__)


class LocalReferenceLookup:
    """Reads the ``kinopoisk_mapping`` table of the reference database.

    The ``tmdbId`` column of that table holds IMDb ids despite its name; it is
    kept as-is because the file is produced by an external export.
    """

    _QUERY = text(
        "SELECT tmdbId AS imdb_id FROM kinopoisk_mapping "
        "WHERE kinopoiskId = :source_id LIMIT 1"
    )

    def __init__(self, database_path: str | Path):
        self._path = Path(database_path)

    async def lookup(self, entries: Sequence[CatalogEntry]) -> dict[int, Resolved]:
        """Return IMDb ids for the entries found in the reference table."""

        if not entries:
            return {}
        if not self._path.is_file():
            logger.warning(
                "Local reference database %s not found, skipping lookup", self._path
            )
            return {}

        engine = create_async_engine(f"sqlite+aiosqlite:///{self._path}")
        found: dict[int, Resolved] = {}
        try:
            async with engine.connect() as connection:
                for entry in entries:
                    try:
                        result = await connection.execute(
                            self._QUERY, {"source_id": entry.source_id}
                        )
                        row = result.first()
                    except SQLAlchemyError as exc:
                        logger.warning(
                            "Local reference lookup failed for kpId=%s: %s",
                            entry.source_id,
                            exc,
                        )
                        continue
                    if row is None:
                        continue
                    imdb_id = normalise_imdb_id(row.imdb_id)
                    if imdb_id:
                        found[entry.source_id] = Resolved(imdb_id=imdb_id)
        except (SQLAlchemyError, OSError) as exc:
            logger.warning(
                "Could not open local reference database %s: %s", self._path, exc
            )
        finally:
            await engine.dispose()
        return found
