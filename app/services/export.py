"""Letterboxd CSV export and the end-of-run statistics report."""

from __future__ import annotations

import csv
import io
from dataclasses import asdict, dataclass
from typing import Sequence

from ..models import CatalogEntry

LETTERBOXD_COLUMNS = ("Title", "Year", "Rating10", "WatchedDate", "tmdbID", "imdbID")
LETTERBOXD_IMPORT_URL = "https://letterboxd.com/import/"


@dataclass(slots=True)
class ExportStats:
    total_entries: int
    exportable_count: int
    skipped_count: int
    series_count: int
    unmatched_film_count: int
    rated_count: int
    unrated_count: int
    average_rating: float

    def to_payload(self) -> dict[str, object]:
        return asdict(self)


@dataclass(slots=True)
class StatsReport:
    message: str
    stats: ExportStats
    not_found: list[str] | None = None


def _has_rating(entry: CatalogEntry) -> bool:
    return entry.rating is not None and entry.rating > 0


def generate_letterboxd_csv(entries: Sequence[CatalogEntry]) -> str:
    """Return an import CSV holding every entry with a cross-reference id."""

    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(LETTERBOXD_COLUMNS)
    for entry in entries:
        if not entry.is_resolved:
            continue
        writer.writerow(
            (
                entry.title,
                entry.year if entry.year is not None else "",
                entry.rating if _has_rating(entry) else "",
                entry.watched_date.isoformat() if entry.watched_date else "",
                entry.tmdb_id if entry.tmdb_id is not None else "",
                entry.imdb_id or "",
            )
        )
    return buffer.getvalue()


def compute_stats(entries: Sequence[CatalogEntry]) -> ExportStats:
    exportable = [entry for entry in entries if entry.is_resolved]
    rated = [entry for entry in exportable if _has_rating(entry)]
    average = (
        sum(entry.rating or 0 for entry in rated) / len(rated) if rated else 0.0
    )
    return ExportStats(
        total_entries=len(entries),
        exportable_count=len(exportable),
        skipped_count=len(entries) - len(exportable),
        series_count=sum(1 for entry in entries if entry.kind == "series"),
        unmatched_film_count=sum(
            1 for entry in entries if entry.kind == "movie" and not entry.is_resolved
        ),
        rated_count=len(rated),
        unrated_count=len(exportable) - len(rated),
        average_rating=average,
    )


def _describe_entry(entry: CatalogEntry) -> list[str]:
    return [
        f"## {entry.display_title()}",
        f"Type: {entry.kind}",
        f"Release year: {entry.year if entry.year is not None else '-'}",
        f"Kinopoisk: {entry.kinopoisk_url}",
        f"Your rating: {entry.rating if _has_rating(entry) else '-'}",
        f"Watched on: {entry.watched_date.isoformat() if entry.watched_date else '-'}",
        "",
    ]


def build_stats_report(entries: Sequence[CatalogEntry]) -> StatsReport:
    """Summarise the run and list the titles that could not be exported."""

    stats = compute_stats(entries)
    lines = [
        "Your Kinopoisk export is ready. Import the CSV on Letterboxd: "
        f"{LETTERBOXD_IMPORT_URL}",
        "",
        f"• Entries in the Kinopoisk profile: {stats.total_entries}",
        f"• Entries that will reach Letterboxd: {stats.exportable_count}",
        f"• Rated: {stats.rated_count}",
        f"• Unrated: {stats.unrated_count}",
        f"• Average rating: {stats.average_rating:.2f}",
    ]
    if stats.skipped_count:
        lines.extend(["", f"Entries that could not be exported: {stats.skipped_count}."])
        if stats.series_count:
            lines.append(
                f"• Series: {stats.series_count} (Letterboxd does not support series)"
            )
        if stats.unmatched_film_count:
            lines.append(
                f"• Films that could not be matched: {stats.unmatched_film_count}. "
                "They are listed separately so you can add them by hand."
            )

    not_found: list[str] | None = None
    if stats.unmatched_film_count or stats.series_count:
        not_found = []
        if stats.unmatched_film_count:
            not_found.extend(["# Films", ""])
            for entry in entries:
                if entry.kind == "movie" and not entry.is_resolved:
                    not_found.extend(_describe_entry(entry))
        if stats.series_count:
            not_found.extend(["# Series", ""])
            for entry in entries:
                if entry.kind == "series":
                    not_found.extend(_describe_entry(entry))

    return StatsReport(message="\n".join(lines), stats=stats, not_found=not_found)
