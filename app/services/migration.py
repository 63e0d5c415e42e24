"""High level orchestration of a user's Kinopoisk to Letterboxd run."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Sequence

from ..errors import CredentialMissing, InvalidSelection
from ..models import CatalogEntry, Prompt, WorkflowCompleted, partition_entries
from .disambiguation import DisambiguationWorkflow
from .export import StatsReport, build_stats_report, generate_letterboxd_csv
from .resolution import ResolutionOrchestrator, ResolutionStage
from .sessions import SessionManager

logger = logging.getLogger(__name__)

CREDENTIAL_PROMPT_MESSAGE = (
    "Some films could not be matched offline. Send your kinopoisk.dev API token "
    "(get one from @kinopoiskdev_bot) to continue."
)


@dataclass(slots=True)
class MigrationReport:
    """Final outcome of a run, handed to the transport exactly once."""

    entries: list[CatalogEntry]
    report: StatsReport
    csv: str
    nothing_to_resolve: bool = False

    def to_payload(self) -> dict[str, Any]:
        return {
            "event": "completed",
            "nothing_to_resolve": self.nothing_to_resolve,
            "message": self.report.message,
            "stats": self.report.stats.to_payload(),
            "not_found": self.report.not_found,
            "csv": self.csv,
            "entries": [entry.model_dump(mode="json") for entry in self.entries],
        }


class MigrationService:
    """Tie resolution, the credential pause and manual selection together."""

    def __init__(
        self,
        orchestrator: ResolutionOrchestrator,
        workflow: DisambiguationWorkflow,
        sessions: SessionManager,
    ):
        self._orchestrator = orchestrator
        self._workflow = workflow
        self._sessions = sessions

    async def start_run(
        self,
        user_id: str,
        entries: Sequence[CatalogEntry],
        credential: str | None = None,
    ) -> Prompt | MigrationReport:
        """Resolve ``entries`` from scratch and begin manual selection."""

        state = await self._sessions.load(user_id)
        supplied = (credential or "").strip()
        if supplied:
            state.credential = supplied
        state.queue = None
        state.paused_entries = None
        state.awaiting_credential = False

        try:
            resolved = await self._orchestrator.resolve(entries, state.credential)
        except CredentialMissing as exc:
            state.paused_entries = exc.entries
            state.awaiting_credential = True
            await self._sessions.save(user_id, state)
            logger.info(
                "Run for %s paused before %s, waiting for a token",
                user_id,
                exc.stage.value,
            )
            return Prompt(kind="free-text-request", message=CREDENTIAL_PROMPT_MESSAGE)

        await self._sessions.save(user_id, state)
        return await self._begin_selection(user_id, resolved)

    async def provide_credential(
        self, user_id: str, token: str
    ) -> Prompt | MigrationReport:
        """Resume a paused run at the commercial stage with ``token``."""

        state = await self._sessions.load(user_id)
        if not state.awaiting_credential or state.paused_entries is None:
            raise InvalidSelection(
                "no_pending_run", "No run is waiting for a kinopoisk.dev token"
            )
        cleaned = (token or "").strip()
        if not cleaned:
            raise InvalidSelection("invalid_credential", "The token may not be empty")

        resolved = await self._orchestrator.resolve(
            state.paused_entries,
            cleaned,
            resume_from=ResolutionStage.COMMERCIAL_CATALOG,
        )
        state.credential = cleaned
        state.paused_entries = None
        state.awaiting_credential = False
        await self._sessions.save(user_id, state)
        return await self._begin_selection(user_id, resolved)

    async def current_prompt(self, user_id: str) -> Prompt | None:
        state = await self._sessions.load(user_id)
        if state.awaiting_credential:
            return Prompt(kind="free-text-request", message=CREDENTIAL_PROMPT_MESSAGE)
        return await self._workflow.present_current(user_id)

    async def confirm(
        self, user_id: str, entry_index: int, candidate_index: int
    ) -> Prompt | MigrationReport:
        result = await self._workflow.confirm(user_id, entry_index, candidate_index)
        return self._settle(result)

    async def decline(self, user_id: str, entry_index: int) -> Prompt | MigrationReport:
        return self._settle(await self._workflow.decline(user_id, entry_index))

    async def skip_one(self, user_id: str, entry_index: int) -> Prompt | MigrationReport:
        return self._settle(await self._workflow.skip_one(user_id, entry_index))

    async def skip_all(self, user_id: str) -> MigrationReport | None:
        result = await self._workflow.skip_all(user_id)
        if result is None:
            return None
        return self._complete(result)

    async def _begin_selection(
        self, user_id: str, entries: Sequence[CatalogEntry]
    ) -> Prompt | MigrationReport:
        partition = partition_entries(entries)
        logger.info(
            "Resolution for %s: %s resolved, %s ambiguous, %s unresolved",
            user_id,
            len(partition.resolved),
            len(partition.ambiguous),
            len(partition.unresolved),
        )
        return self._settle(await self._workflow.start(user_id, entries))

    def _settle(self, result: Prompt | WorkflowCompleted) -> Prompt | MigrationReport:
        if isinstance(result, WorkflowCompleted):
            return self._complete(result)
        return result

    @staticmethod
    def _complete(completed: WorkflowCompleted) -> MigrationReport:
        entries = list(completed.entries)
        return MigrationReport(
            entries=entries,
            report=build_stats_report(entries),
            csv=generate_letterboxd_csv(entries),
            nothing_to_resolve=completed.nothing_to_resolve,
        )
