"""Exceptions shared by the resolution pipeline and the selection workflow."""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal, Sequence

if TYPE_CHECKING:
    from .models import CatalogEntry
    from .services.resolution import ResolutionStage


class CredentialMissing(RuntimeError):
    """Raised when a stage needs the user's API token before it can run.

    The partially resolved entries travel with the exception so the caller can
    park them and resume at ``stage`` once the token arrives.
    """

    def __init__(
        self, stage: "ResolutionStage", entries: Sequence["CatalogEntry"]
    ) -> None:
        self.stage = stage
        self.entries = list(entries)
        super().__init__(f"A credential is required to run the {stage.value} stage")


class ExternalLookupFailure(RuntimeError):
    """A single upstream lookup failed; callers degrade the affected item."""

    def __init__(self, source: str, detail: str) -> None:
        self.source = source
        self.detail = detail
        super().__init__(f"{source}: {detail}")


class MalformedUpstreamPayload(ExternalLookupFailure):
    """The upstream answered, but not with anything we can parse."""


SelectionErrorReason = Literal[
    "no_active_selection", "invalid_choice", "no_pending_run", "invalid_credential"
]


class InvalidSelection(ValueError):
    """A user action that cannot be applied to the current workflow state."""

    def __init__(self, reason: SelectionErrorReason, description: str) -> None:
        self.reason = reason
        self.description = description
        super().__init__(description)
