"""
Durable history snapshots.

Load and save never raise: failures come back as an unsuccessful
``StoreResult`` and the caller keeps working with an empty or unsaved history.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from ..models import ChatSnapshot, init_database
from .entries import ConversationEntry, dump_entries, load_entries

logger = structlog.get_logger()


@dataclass
class StoreResult:
    """Outcome of a snapshot load or save."""

    success: bool
    entries: list[ConversationEntry] = field(default_factory=list)
    error: str | None = None


class BaseHistoryStore(ABC):
    """Key/value store of chat history snapshots."""

    @abstractmethod
    async def load(self, session_key: str) -> StoreResult:
        """Load the snapshot for a session; missing data is an empty history."""
        pass

    @abstractmethod
    async def save(self, session_key: str, entries: list[ConversationEntry]) -> StoreResult:
        """Replace the snapshot for a session."""
        pass

    @abstractmethod
    async def delete(self, session_key: str) -> StoreResult:
        """Remove the snapshot for a session."""
        pass

    async def close(self) -> None:
        """Release store resources."""
        pass


class InMemoryHistoryStore(BaseHistoryStore):
    """Process-local store, holding the serialized JSON like a real backend."""

    def __init__(self):
        self._snapshots: dict[str, str] = {}

    async def load(self, session_key: str) -> StoreResult:
        return StoreResult(success=True, entries=load_entries(self._snapshots.get(session_key)))

    async def save(self, session_key: str, entries: list[ConversationEntry]) -> StoreResult:
        self._snapshots[session_key] = dump_entries(entries)
        return StoreResult(success=True, entries=entries)

    async def delete(self, session_key: str) -> StoreResult:
        self._snapshots.pop(session_key, None)
        return StoreResult(success=True)

    def raw(self, session_key: str) -> str | None:
        """The stored JSON for a session."""
        return self._snapshots.get(session_key)

    def put_raw(self, session_key: str, raw: str) -> None:
        """Store JSON as-is."""
        self._snapshots[session_key] = raw


class SQLHistoryStore(BaseHistoryStore):
    """Snapshots in the ``chat_snapshots`` table via SQLAlchemy async."""

    def __init__(self, database_url: str):
        self.database_url = database_url
        self._engine: AsyncEngine | None = None
        self._session_maker: async_sessionmaker | None = None

    async def _get_session_maker(self) -> async_sessionmaker:
        if self._session_maker is None:
            self._engine, self._session_maker = await init_database(self.database_url)
        return self._session_maker

    async def load(self, session_key: str) -> StoreResult:
        try:
            session_maker = await self._get_session_maker()
            async with session_maker() as db:
                result = await db.execute(
                    select(ChatSnapshot).where(ChatSnapshot.session_key == session_key)
                )
                snapshot = result.scalar_one_or_none()
        except (SQLAlchemyError, OSError) as e:
            logger.error("Error loading history snapshot", session_key=session_key, error=str(e))
            return StoreResult(success=False, error=str(e))

        if snapshot is None:
            return StoreResult(success=True)

        return StoreResult(success=True, entries=load_entries(snapshot.entries))

    async def save(self, session_key: str, entries: list[ConversationEntry]) -> StoreResult:
        try:
            payload = dump_entries(entries)
        except (TypeError, ValueError) as e:
            logger.error("History is not serializable", session_key=session_key, error=str(e))
            return StoreResult(success=False, error=str(e))

        try:
            session_maker = await self._get_session_maker()
            async with session_maker() as db:
                snapshot = await db.get(ChatSnapshot, session_key)
                if snapshot is None:
                    snapshot = ChatSnapshot(session_key=session_key)
                    db.add(snapshot)
                snapshot.entries = payload
                snapshot.entry_count = len(entries)
                await db.commit()
        except (SQLAlchemyError, OSError) as e:
            logger.error("Error saving history snapshot", session_key=session_key, error=str(e))
            return StoreResult(success=False, error=str(e))

        return StoreResult(success=True, entries=entries)

    async def delete(self, session_key: str) -> StoreResult:
        try:
            session_maker = await self._get_session_maker()
            async with session_maker() as db:
                snapshot = await db.get(ChatSnapshot, session_key)
                if snapshot is not None:
                    await db.delete(snapshot)
                    await db.commit()
        except (SQLAlchemyError, OSError) as e:
            logger.error("Error deleting history snapshot", session_key=session_key, error=str(e))
            return StoreResult(success=False, error=str(e))

        return StoreResult(success=True)

    async def list_sessions(self) -> list[tuple[str, int]]:
        """Session keys with their entry counts, most recently updated first."""
        session_maker = await self._get_session_maker()
        async with session_maker() as db:
            result = await db.execute(
                select(ChatSnapshot.session_key, ChatSnapshot.entry_count)
                .order_by(ChatSnapshot.updated_at.desc())
            )
            return [(key, count) for key, count in result.all()]

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_maker = None
