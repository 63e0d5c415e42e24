"""Utility helpers for the KinoBoxd service."""

from __future__ import annotations

import re
from typing import Any, Iterable, Iterator, TypeVar

T = TypeVar("T")

IMDB_ID_RE = re.compile(r"^tt\d{5,10}$")


def chunked(values: Iterable[T], size: int) -> Iterator[list[T]]:
    """Yield ``values`` in lists of at most ``size`` items."""

    if size < 1:
        raise ValueError("Chunk size must be positive")
    batch: list[T] = []
    for value in values:
        batch.append(value)
        if len(batch) >= size:
            yield batch
            batch = []
    if batch:
        yield batch


def parse_numeric_id(value: Any) -> int | None:
    """Return ``value`` as a positive integer id, or ``None`` when it is not one."""

    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if isinstance(value, str) and value.strip().isdigit():
        parsed = int(value.strip())
        return parsed if parsed > 0 else None
    return None


def normalise_imdb_id(value: Any) -> str | None:
    """Return a ``tt``-prefixed IMDb id, or ``None`` for anything else.

    Bare numbers are zero-padded to the seven digit form IMDb uses.
    """

    numeric = parse_numeric_id(value)
    if numeric is not None:
        return f"tt{numeric:07d}"
    if not isinstance(value, str):
        return None
    candidate = value.strip()
    if IMDB_ID_RE.match(candidate):
        return candidate
    return None
