from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

from app.database import Database
from app.db_models import SessionRecord
from app.models import UserSession
from app.services.sessions import (
    DatabaseSessionStore,
    MemorySessionStore,
    SessionManager,
)


def test_database_store_round_trips_and_expires(tmp_path) -> None:
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'sessions.db'}")

    async def runner() -> None:
        try:
            await exercise()
        finally:
            await database.dispose()

    async def exercise() -> None:
        await database.create_all()
        store = DatabaseSessionStore(database.session_factory, ttl_seconds=3600)

        await store.set("user-1", {"awaiting_credential": True})
        await store.set("user-1", {"awaiting_credential": False, "credential": "abc"})
        assert await store.get("user-1") == {
            "awaiting_credential": False,
            "credential": "abc",
        }

        async with database.session_factory() as session:
            record = await session.get(SessionRecord, "user-1")
            assert record is not None
            record.expires_at = datetime.now(timezone.utc) - timedelta(seconds=1)
            await session.commit()

        assert await store.get("user-1") is None
        async with database.session_factory() as session:
            assert await session.get(SessionRecord, "user-1") is None

        await store.set("user-2", {"credential": "x"})
        await store.delete("user-2")
        await store.delete("user-2")
        assert await store.get("user-2") is None

    asyncio.run(runner())


def test_session_manager_drops_blank_sessions() -> None:
    store = MemorySessionStore()
    manager = SessionManager(store)

    async def runner() -> None:
        state = UserSession(credential="token")
        await manager.save("user", state)
        assert await store.get("user") == state.model_dump(mode="json")

        await manager.save("user", UserSession())
        assert await store.get("user") is None

    asyncio.run(runner())


def test_session_manager_discards_unreadable_payloads() -> None:
    store = MemorySessionStore()
    manager = SessionManager(store)

    async def runner() -> None:
        await store.set("user", {"queue": {"entries": "not-a-list"}})
        assert await manager.load("user") == UserSession()

    asyncio.run(runner())
