from __future__ import annotations

import csv
import io
from datetime import date

from app.models import Ambiguous, CandidateMatch, CatalogEntry, Resolved
from app.services.export import (
    LETTERBOXD_COLUMNS,
    build_stats_report,
    compute_stats,
    generate_letterboxd_csv,
)


def _entries() -> list[CatalogEntry]:
    return [
        CatalogEntry(
            source_id=1,
            title='Lock, Stock and "Two" Smoking Barrels',
            year=1998,
            rating=8,
            watched_date=date(2024, 2, 29),
            identity=Resolved(imdb_id="tt0120735", tmdb_id=100),
        ),
        CatalogEntry(source_id=2, title="Stalker", identity=Resolved(tmdb_id=1398)),
        CatalogEntry(
            source_id=3,
            title="Brat",
            identity=Ambiguous(candidates=(CandidateMatch(title="Brat", tmdb_id=20992),)),
        ),
        CatalogEntry(source_id=4, title="", year=2010),
        CatalogEntry(source_id=5, title="Twin Peaks", kind="series"),
    ]


def test_csv_contains_only_resolved_entries() -> None:
    rows = list(csv.reader(io.StringIO(generate_letterboxd_csv(_entries()))))

    assert tuple(rows[0]) == LETTERBOXD_COLUMNS
    assert rows[1] == [
        'Lock, Stock and "Two" Smoking Barrels',
        "1998",
        "8",
        "2024-02-29",
        "100",
        "tt0120735",
    ]
    assert rows[2] == ["Stalker", "", "", "", "1398", ""]
    assert len(rows) == 3


def test_csv_for_empty_run_has_only_the_header() -> None:
    assert generate_letterboxd_csv([]) == ",".join(LETTERBOXD_COLUMNS) + "\n"


def test_stats_count_exportable_and_rated_entries() -> None:
    stats = compute_stats(_entries())

    assert stats.total_entries == 5
    assert stats.exportable_count == 2
    assert stats.skipped_count == 3
    assert stats.series_count == 1
    assert stats.unmatched_film_count == 2
    assert stats.rated_count == 1
    assert stats.unrated_count == 1
    assert stats.average_rating == 8.0


def test_report_lists_unmatched_films_and_series() -> None:
    report = build_stats_report(_entries())

    assert "https://letterboxd.com/import/" in report.message
    assert "Average rating: 8.00" in report.message
    assert report.not_found is not None
    assert report.not_found[0] == "# Films"
    assert "## Brat" in report.not_found
    assert "## Kinopoisk 4" in report.not_found
    assert "# Series" in report.not_found
    assert "Kinopoisk: https://www.kinopoisk.ru/series/5/" in report.not_found


def test_report_without_skips_has_no_not_found_section() -> None:
    report = build_stats_report(_entries()[:2])

    assert report.not_found is None
    assert "could not be exported" not in report.message
