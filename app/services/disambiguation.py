"""Interactive, resumable selection among fuzzy-search candidates."""

from __future__ import annotations

import asyncio
import logging
from typing import Sequence

from ..errors import InvalidSelection
from ..models import (
    CatalogEntry,
    DisambiguationQueue,
    Prompt,
    Unresolved,
    UserSession,
    WorkflowCompleted,
)
from .sessions import SessionManager

logger = logging.getLogger(__name__)


class DisambiguationWorkflow:
    """Per-user state machine walking ambiguous entries one at a time.

    A user is either idle (no queue stored) or awaiting a decision on
    ``queue.entries[queue.pending_indexes[queue.cursor]]``. The queue is written
    back after every transition, so a restart only loses the prompt that was
    in flight. Every decision names the entry it was made for; a decision for
    an entry that is no longer current is rejected and changes nothing.

    Transitions for one user run one at a time, so two decisions racing for
    the same entry cannot both pass the check.
    """

    def __init__(self, sessions: SessionManager, *, skip_all_threshold: int = 1):
        self._sessions = sessions
        self._skip_all_threshold = skip_all_threshold
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = self._locks[user_id] = asyncio.Lock()
        return lock

    async def start(
        self, user_id: str, entries: Sequence[CatalogEntry]
    ) -> Prompt | WorkflowCompleted:
        """Queue the ambiguous entries and return the first prompt."""

        async with self._lock_for(user_id):
            state = await self._sessions.load(user_id)
            if state.queue is not None:
                logger.info("Replacing unfinished selection queue for %s", user_id)

            queue = DisambiguationQueue.from_entries(entries)
            if queue.is_complete:
                state.queue = None
                await self._sessions.save(user_id, state)
                return WorkflowCompleted(entries=list(entries), nothing_to_resolve=True)

            state.queue = queue
            await self._sessions.save(user_id, state)
            logger.info(
                "Started selection for %s with %s ambiguous film(s)",
                user_id,
                len(queue.pending_indexes),
            )
            return self._build_prompt(queue)

    async def present_current(self, user_id: str) -> Prompt | None:
        """Return the prompt for the current entry, or ``None`` when idle."""

        state = await self._sessions.load(user_id)
        if state.queue is None or state.queue.is_complete:
            return None
        return self._build_prompt(state.queue)

    async def confirm(
        self, user_id: str, entry_index: int, candidate_index: int
    ) -> Prompt | WorkflowCompleted:
        """Accept candidate ``candidate_index`` for the current entry."""

        async with self._lock_for(user_id):
            state, queue = await self._active_queue(user_id, entry_index)
            entry = queue.entries[entry_index]
            candidates = entry.candidates
            if not 0 <= candidate_index < len(candidates):
                raise InvalidSelection(
                    "invalid_choice",
                    f"Candidate {candidate_index} does not exist for this film",
                )
            queue.advance(entry.confirm(candidates[candidate_index]))
            return await self._after_transition(user_id, state, queue)

    async def decline(
        self, user_id: str, entry_index: int
    ) -> Prompt | WorkflowCompleted:
        """Reject the offered match; the entry is left unresolved."""

        async with self._lock_for(user_id):
            state, queue = await self._active_queue(user_id, entry_index)
            entry = queue.entries[entry_index]
            queue.advance(entry.with_identity(Unresolved()))
            return await self._after_transition(user_id, state, queue)

    async def skip_one(
        self, user_id: str, entry_index: int
    ) -> Prompt | WorkflowCompleted:
        """Leave the current entry undecided and move on."""

        return await self.decline(user_id, entry_index)

    async def skip_all(self, user_id: str) -> WorkflowCompleted | None:
        """Abandon every remaining decision; a no-op when nothing is queued."""

        async with self._lock_for(user_id):
            state = await self._sessions.load(user_id)
            queue = state.queue
            if queue is None:
                return None
            logger.info(
                "User %s skipped %s remaining selection(s)", user_id, queue.remaining
            )
            queue.abandon()
            state.queue = None
            await self._sessions.save(user_id, state)
            return WorkflowCompleted(entries=list(queue.entries))

    async def _active_queue(
        self, user_id: str, entry_index: int
    ) -> tuple[UserSession, DisambiguationQueue]:
        state = await self._sessions.load(user_id)
        queue = state.queue
        if queue is None or queue.current_index != entry_index:
            raise InvalidSelection(
                "no_active_selection", "There is no active selection for this film"
            )
        return state, queue

    async def _after_transition(
        self, user_id: str, state: UserSession, queue: DisambiguationQueue
    ) -> Prompt | WorkflowCompleted:
        if queue.is_complete:
            state.queue = None
            await self._sessions.save(user_id, state)
            logger.info("Selection finished for %s", user_id)
            return WorkflowCompleted(entries=list(queue.entries))

        state.queue = queue
        await self._sessions.save(user_id, state)
        return self._build_prompt(queue)

    def _build_prompt(self, queue: DisambiguationQueue) -> Prompt:
        entry_index = queue.current_index
        entry = queue.current_entry
        if entry_index is None or entry is None:
            raise RuntimeError("Cannot build a prompt for a drained queue")

        candidates = list(entry.candidates)
        allow_skip_all = queue.remaining > self._skip_all_threshold
        title = entry.display_title()
        year_part = f" ({entry.year})" if entry.year else ""
        common = {
            "entry_index": entry_index,
            "title": entry.title,
            "year": entry.year,
            "candidates": candidates,
            "position": queue.cursor + 1,
            "total": len(queue.pending_indexes),
            "allow_skip_all": allow_skip_all,
        }
        if len(candidates) == 1:
            return Prompt(
                kind="single-confirm",
                message=f"Only one possible match was found for {title}{year_part}. Is it this one?",
                allow_skip=False,
                **common,
            )
        return Prompt(
            kind="multi-choice",
            message=f"Pick the right match for {title}{year_part}",
            allow_skip=True,
            **common,
        )
