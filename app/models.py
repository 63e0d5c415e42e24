"""Pydantic models describing catalog entries and selection state."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Annotated, Any, Iterable, Literal, Sequence, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

ContentKind = Literal["movie", "series"]
PromptKind = Literal["single-confirm", "multi-choice", "free-text-request"]

# A single chat screen fits nine numbered buttons.
MAX_CANDIDATES = 9

POSTER_BASE_URL = "https://image.tmdb.org/t/p/w500"


class CandidateMatch(BaseModel):
    """One ranked guess produced by title/year search."""

    model_config = ConfigDict(frozen=True)

    title: str
    year: int | None = None
    tmdb_id: int = Field(validation_alias=AliasChoices("tmdb_id", "tmdbId", "externalId"))
    popularity: float | None = None
    overview: str | None = Field(
        default=None, validation_alias=AliasChoices("overview", "description", "synopsis")
    )
    poster_path: str | None = Field(
        default=None, validation_alias=AliasChoices("poster_path", "posterPath")
    )

    @property
    def tmdb_url(self) -> str:
        return f"https://www.themoviedb.org/movie/{self.tmdb_id}"

    @property
    def poster_url(self) -> str | None:
        if not self.poster_path:
            return None
        if self.poster_path.startswith("http"):
            return self.poster_path
        return f"{POSTER_BASE_URL}{self.poster_path}"

    def to_payload(self) -> dict[str, object]:
        payload = self.model_dump(mode="json")
        payload["tmdb_url"] = self.tmdb_url
        payload["poster_url"] = self.poster_url
        return payload


def rank_candidates(candidates: Iterable[CandidateMatch]) -> tuple[CandidateMatch, ...]:
    """Deduplicate by TMDB id, order by popularity and keep the top results."""

    unique: dict[int, CandidateMatch] = {}
    for candidate in candidates:
        unique.setdefault(candidate.tmdb_id, candidate)
    ranked = sorted(
        unique.values(),
        key=lambda candidate: (
            candidate.popularity is None,
            -(candidate.popularity or 0.0),
        ),
    )
    return tuple(ranked[:MAX_CANDIDATES])


class Resolved(BaseModel):
    """The entry carries at least one cross-reference identifier."""

    model_config = ConfigDict(frozen=True)

    state: Literal["resolved"] = "resolved"
    imdb_id: str | None = None
    tmdb_id: int | None = None

    @field_validator("imdb_id", mode="before")
    @classmethod
    def _strip_blank(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip() or None
        return value

    @model_validator(mode="after")
    def _require_identifier(self) -> "Resolved":
        if self.imdb_id is None and self.tmdb_id is None:
            raise ValueError("A resolved entry needs an IMDb or TMDB identifier")
        return self


class Ambiguous(BaseModel):
    """No identifier yet, but search produced candidates awaiting a human."""

    model_config = ConfigDict(frozen=True)

    state: Literal["ambiguous"] = "ambiguous"
    candidates: tuple[CandidateMatch, ...]

    @field_validator("candidates")
    @classmethod
    def _rank(cls, value: tuple[CandidateMatch, ...]) -> tuple[CandidateMatch, ...]:
        ranked = rank_candidates(value)
        if not ranked:
            raise ValueError("An ambiguous entry needs at least one candidate")
        return ranked


class Unresolved(BaseModel):
    """Neither identifiers nor candidates."""

    model_config = ConfigDict(frozen=True)

    state: Literal["unresolved"] = "unresolved"


EntryIdentity = Annotated[
    Union[Resolved, Ambiguous, Unresolved], Field(discriminator="state")
]


class CatalogEntry(BaseModel):
    """One watched or rated title exported from Kinopoisk."""

    model_config = ConfigDict(frozen=True)

    source_id: int = Field(
        validation_alias=AliasChoices("source_id", "sourceId", "kinopoiskId")
    )
    title: str = ""
    year: int | None = Field(
        default=None, validation_alias=AliasChoices("year", "releaseYear")
    )
    rating: int | None = Field(
        default=None,
        ge=0,
        le=10,
        validation_alias=AliasChoices("rating", "userRating"),
    )
    watched_date: date | None = Field(
        default=None,
        validation_alias=AliasChoices("watched_date", "watchedDate", "watchDate"),
    )
    kind: ContentKind = Field(
        default="movie", validation_alias=AliasChoices("kind", "type")
    )
    identity: EntryIdentity = Field(default_factory=Unresolved)

    @model_validator(mode="before")
    @classmethod
    def _lift_flat_identifiers(cls, data: Any) -> Any:
        """Accept ``imdbId``/``tmdbId``/``candidates`` at the top level."""

        if not isinstance(data, dict) or "identity" in data:
            return data
        payload = dict(data)
        imdb_id = payload.get("imdb_id") or payload.get("imdbId")
        tmdb_id = payload.get("tmdb_id") or payload.get("tmdbId")
        candidates = payload.get("candidates") or payload.get("potentialMatches")
        if imdb_id or tmdb_id:
            payload["identity"] = {
                "state": "resolved",
                "imdb_id": imdb_id,
                "tmdb_id": tmdb_id,
            }
        elif candidates:
            payload["identity"] = {"state": "ambiguous", "candidates": candidates}
        return payload

    @field_validator("kind", mode="before")
    @classmethod
    def _normalise_kind(cls, value: object) -> object:
        if isinstance(value, str) and value.strip().lower() == "film":
            return "movie"
        return value

    @field_validator("title", mode="before")
    @classmethod
    def _strip_title(cls, value: object) -> object:
        if value is None:
            return ""
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("year", "rating", mode="before")
    @classmethod
    def _blank_to_none(cls, value: object) -> object:
        if value == "":
            return None
        return value

    @property
    def imdb_id(self) -> str | None:
        if isinstance(self.identity, Resolved):
            return self.identity.imdb_id
        return None

    @property
    def tmdb_id(self) -> int | None:
        if isinstance(self.identity, Resolved):
            return self.identity.tmdb_id
        return None

    @property
    def candidates(self) -> tuple[CandidateMatch, ...]:
        if isinstance(self.identity, Ambiguous):
            return self.identity.candidates
        return ()

    @property
    def is_resolved(self) -> bool:
        return isinstance(self.identity, Resolved)

    @property
    def is_ambiguous(self) -> bool:
        return isinstance(self.identity, Ambiguous)

    @property
    def is_unresolved(self) -> bool:
        return isinstance(self.identity, Unresolved)

    @property
    def kinopoisk_url(self) -> str:
        section = "series" if self.kind == "series" else "film"
        return f"https://www.kinopoisk.ru/{section}/{self.source_id}/"

    def display_title(self) -> str:
        """Return a human-friendly title, falling back to the source id."""

        return self.title or f"Kinopoisk {self.source_id}"

    def with_identity(self, identity: Resolved | Ambiguous | Unresolved) -> "CatalogEntry":
        """Return a copy of the entry carrying ``identity``."""

        return self.model_copy(update={"identity": identity})

    def confirm(self, candidate: CandidateMatch) -> "CatalogEntry":
        """Return a copy resolved to ``candidate``.

        The known release year survives when the candidate has none.
        """

        update: dict[str, Any] = {
            "title": candidate.title or self.title,
            "identity": Resolved(tmdb_id=candidate.tmdb_id),
        }
        if candidate.year is not None:
            update["year"] = candidate.year
        return self.model_copy(update=update)


@dataclass(slots=True)
class EntryPartition:
    """Entries grouped by identity state."""

    resolved: list[CatalogEntry] = field(default_factory=list)
    ambiguous: list[CatalogEntry] = field(default_factory=list)
    unresolved: list[CatalogEntry] = field(default_factory=list)


def partition_entries(entries: Iterable[CatalogEntry]) -> EntryPartition:
    partition = EntryPartition()
    for entry in entries:
        if entry.is_resolved:
            partition.resolved.append(entry)
        elif entry.is_ambiguous:
            partition.ambiguous.append(entry)
        else:
            partition.unresolved.append(entry)
    return partition


class DisambiguationQueue(BaseModel):
    """Resumable cursor over the entries still waiting for a decision."""

    entries: list[CatalogEntry]
    pending_indexes: list[int]
    cursor: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def _check_bounds(self) -> "DisambiguationQueue":
        size = len(self.entries)
        if any(index < 0 or index >= size for index in self.pending_indexes):
            raise ValueError("Pending indexes must point into the entry list")
        if self.cursor > len(self.pending_indexes):
            raise ValueError("Cursor is past the end of the pending queue")
        return self

    @classmethod
    def from_entries(cls, entries: Sequence[CatalogEntry]) -> "DisambiguationQueue":
        """Queue every ambiguous entry in the order it appears."""

        items = list(entries)
        pending = [index for index, entry in enumerate(items) if entry.is_ambiguous]
        return cls(entries=items, pending_indexes=pending)

    @property
    def current_index(self) -> int | None:
        if self.is_complete:
            return None
        return self.pending_indexes[self.cursor]

    @property
    def current_entry(self) -> CatalogEntry | None:
        index = self.current_index
        if index is None:
            return None
        return self.entries[index]

    @property
    def remaining(self) -> int:
        return len(self.pending_indexes) - self.cursor

    @property
    def is_complete(self) -> bool:
        return self.cursor >= len(self.pending_indexes)

    def advance(self, replacement: CatalogEntry | None = None) -> None:
        """Move past the current entry, optionally storing its new value."""

        index = self.current_index
        if index is None:
            return
        if replacement is not None:
            self.entries[index] = replacement
        self.cursor += 1

    def abandon(self) -> None:
        """Drop every remaining decision, leaving those entries unresolved."""

        for index in self.pending_indexes[self.cursor :]:
            self.entries[index] = self.entries[index].with_identity(Unresolved())
        self.cursor = len(self.pending_indexes)


class UserSession(BaseModel):
    """Everything persisted between two chat turns of a single user."""

    queue: DisambiguationQueue | None = None
    paused_entries: list[CatalogEntry] | None = None
    awaiting_credential: bool = False
    credential: str | None = None


class Prompt(BaseModel):
    """Platform-neutral prompt the transport turns into a chat message."""

    kind: PromptKind
    message: str
    entry_index: int | None = None
    title: str | None = None
    year: int | None = None
    candidates: list[CandidateMatch] = Field(default_factory=list)
    position: int | None = None
    total: int | None = None
    allow_skip: bool = False
    allow_skip_all: bool = False

    def to_payload(self) -> dict[str, object]:
        payload = self.model_dump(mode="json", exclude={"candidates"})
        payload["event"] = "prompt"
        payload["candidates"] = [candidate.to_payload() for candidate in self.candidates]
        return payload


class WorkflowCompleted(BaseModel):
    """Emitted once when the selection queue has been drained."""

    entries: list[CatalogEntry]
    nothing_to_resolve: bool = False
