from __future__ import annotations

from typing import Any, Mapping, Sequence, cast

from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.main import register_routes
from app.models import Ambiguous, CandidateMatch, CatalogEntry, Resolved
from app.services.disambiguation import DisambiguationWorkflow
from app.services.kinopoisk import KinopoiskClient
from app.services.local_reference import LocalReferenceLookup
from app.services.migration import MigrationService
from app.services.resolution import ResolutionOrchestrator
from app.services.sessions import MemorySessionStore, SessionManager
from app.services.tmdb import TMDBClient
from app.services.wikidata import WikidataClient


class FixedSource:
    """Lookup stub that answers every request with the same identities."""

    def __init__(self, answers: Mapping[int, Any] | None = None):
        self.answers = dict(answers or {})

    async def lookup(self, entries: Sequence[CatalogEntry], token: str | None = None):
        requested = {entry.source_id for entry in entries}
        return {key: value for key, value in self.answers.items() if key in requested}


def build_app() -> FastAPI:
    sessions = SessionManager(MemorySessionStore())
    fuzzy = FixedSource(
        {
            20: Ambiguous(
                candidates=(
                    CandidateMatch(title="Twenty", year=2020, tmdb_id=200, popularity=2.0),
                    CandidateMatch(title="Twenty Again", year=2021, tmdb_id=201, popularity=1.0),
                )
            ),
            30: Ambiguous(candidates=(CandidateMatch(title="Thirty", tmdb_id=300),)),
        }
    )
    orchestrator = ResolutionOrchestrator(
        cast(LocalReferenceLookup, FixedSource({10: Resolved(imdb_id="tt0000010")})),
        cast(WikidataClient, FixedSource()),
        cast(KinopoiskClient, FixedSource()),
        cast(TMDBClient, fuzzy),
    )
    app = FastAPI()
    register_routes(app)
    app.state.migration_service = MigrationService(
        orchestrator, DisambiguationWorkflow(sessions), sessions
    )
    return app


RUN_BODY = {
    "entries": [
        {"kinopoiskId": 10, "title": "Ten", "year": 2010, "userRating": 9},
        {"kinopoiskId": 20, "title": "Twenty", "year": 2020},
        {"kinopoiskId": 30, "title": "Thirty"},
    ]
}


def test_healthcheck() -> None:
    with TestClient(build_app()) as client:
        response = client.get("/healthz")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_run_pauses_for_credential_then_walks_selection() -> None:
    with TestClient(build_app()) as client:
        paused = client.post("/api/users/u1/runs", json=RUN_BODY)
        assert paused.status_code == 200
        assert paused.json()["event"] == "prompt"
        assert paused.json()["kind"] == "free-text-request"

        prompt = client.post("/api/users/u1/credential", json={"token": "kp"})
        body = prompt.json()
        assert body["kind"] == "multi-choice"
        assert body["entry_index"] == 1
        assert [candidate["tmdb_id"] for candidate in body["candidates"]] == [200, 201]
        assert body["allow_skip_all"] is True

        current = client.get("/api/users/u1/selection")
        assert current.json() == body

        single = client.post(
            "/api/users/u1/selection/confirm",
            json={"entryIndex": 1, "candidateIndex": 1},
        )
        assert single.json()["kind"] == "single-confirm"
        assert single.json()["entry_index"] == 2

        stale = client.post("/api/users/u1/selection/decline", json={"entryIndex": 1})
        assert stale.status_code == 409
        assert stale.json()["error"] == "no_active_selection"

        completed = client.post("/api/users/u1/selection/decline", json={"entryIndex": 2})
        report = completed.json()
        assert report["event"] == "completed"
        assert report["stats"]["exportable_count"] == 2
        assert "Twenty Again,2021,,,201," in report["csv"]

        idle = client.get("/api/users/u1/selection")
        assert idle.status_code == 404

        skip_all = client.post("/api/users/u1/selection/skip-all")
        assert skip_all.json() == {"event": "idle"}


def test_invalid_choice_is_reported_as_conflict() -> None:
    with TestClient(build_app()) as client:
        client.post("/api/users/u2/runs", json={**RUN_BODY, "credential": "kp"})
        response = client.post(
            "/api/users/u2/selection/confirm",
            json={"entryIndex": 1, "candidateIndex": 8},
        )

    assert response.status_code == 409
    assert response.json()["error"] == "invalid_choice"


def test_credential_without_paused_run_is_a_conflict() -> None:
    with TestClient(build_app()) as client:
        response = client.post("/api/users/u3/credential", json={"token": "kp"})

    assert response.status_code == 409
    assert response.json()["error"] == "no_pending_run"


def test_invalid_payloads_are_rejected() -> None:
    with TestClient(build_app()) as client:
        missing = client.post("/api/users/u4/runs", json={"entries": [{"title": "No id"}]})
        duplicate = client.post(
            "/api/users/u4/runs",
            json={"entries": [{"kinopoiskId": 1}, {"kinopoiskId": 1}], "credential": "kp"},
        )
        bad_index = client.post("/api/users/u4/selection/skip", json={"entryIndex": -1})

    assert missing.status_code == 400
    assert duplicate.status_code == 400
    assert bad_index.status_code == 400
