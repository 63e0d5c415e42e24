"""Key/value session storage and the typed per-user session helper."""

from __future__ import annotations

import copy
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import SessionRecord
from ..models import UserSession

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    # SQLite drops the offset on read; stored values are always UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SessionStore(Protocol):
    """Minimal async key/value contract the workflow persists through."""

    async def get(self, key: str) -> dict[str, Any] | None: ...

    async def set(self, key: str, value: dict[str, Any]) -> None: ...

    async def delete(self, key: str) -> None: ...


class MemorySessionStore:
    """Process-local store for development and tests."""

    def __init__(self) -> None:
        self._data: dict[str, dict[str, Any]] = {}

    async def get(self, key: str) -> dict[str, Any] | None:
        value = self._data.get(key)
        return copy.deepcopy(value) if value is not None else None

    async def set(self, key: str, value: dict[str, Any]) -> None:
        self._data[key] = copy.deepcopy(value)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)


class DatabaseSessionStore:
    """SQL-backed store; rows past their expiry read as missing."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        ttl_seconds: int = 86_400,
    ):
        self._session_factory = session_factory
        self._ttl = timedelta(seconds=ttl_seconds)

    async def get(self, key: str) -> dict[str, Any] | None:
        async with self._session_factory() as session:
            record = await session.get(SessionRecord, key)
            if record is None:
                return None
            if _as_utc(record.expires_at) <= datetime.now(timezone.utc):
                await session.delete(record)
                await session.commit()
                logger.info("Session for %s expired, discarding", key)
                return None
            return dict(record.payload)

    async def set(self, key: str, value: dict[str, Any]) -> None:
        expires_at = datetime.now(timezone.utc) + self._ttl
        async with self._session_factory() as session:
            record = await session.get(SessionRecord, key)
            if record is None:
                session.add(
                    SessionRecord(user_id=key, payload=value, expires_at=expires_at)
                )
            else:
                record.payload = value
                record.expires_at = expires_at
            await session.commit()

    async def delete(self, key: str) -> None:
        async with self._session_factory() as session:
            record = await session.get(SessionRecord, key)
            if record is None:
                return
            await session.delete(record)
            await session.commit()


class SessionManager:
    """Load and persist :class:`UserSession` objects through a store."""

    def __init__(self, store: SessionStore):
        self._store = store

    async def load(self, user_id: str) -> UserSession:
        """Return the stored session or a blank one."""

        raw = await self._store.get(user_id)
        if raw is None:
            return UserSession()
        try:
            return UserSession.model_validate(raw)
        except ValidationError as exc:
            logger.warning("Discarding unreadable session for %s: %s", user_id, exc)
            return UserSession()

    async def save(self, user_id: str, state: UserSession) -> None:
        """Persist ``state``, dropping the key entirely once nothing is left."""

        if state == UserSession():
            await self._store.delete(user_id)
            return
        await self._store.set(user_id, state.model_dump(mode="json"))

