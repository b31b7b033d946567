"""
Database models for design-chat-stream

Uses SQLAlchemy 2.0 async ORM for the chat history snapshot table.
"""

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, Text, func
from sqlalchemy.ext.asyncio import AsyncAttrs, AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(AsyncAttrs, DeclarativeBase):
    """Base class for all models."""
    pass


class ChatSnapshot(Base):
    """Serialized conversation history of one chat session."""

    __tablename__ = "chat_snapshots"

    session_key: Mapped[str] = mapped_column(String(255), primary_key=True)

    # JSON list of conversation entries
    entries: Mapped[str] = mapped_column(Text, default="[]")
    entry_count: Mapped[int] = mapped_column(Integer, default=0)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())


def _ensure_sqlite_dir(database_url: str) -> None:
    """Create the parent directory of a file-backed SQLite database."""
    from pathlib import Path

    prefix = "sqlite+aiosqlite:///"
    if not database_url.startswith(prefix):
        return
    path = database_url[len(prefix):]
    if path and path != ":memory:":
        Path(path).expanduser().parent.mkdir(parents=True, exist_ok=True)


async def init_database(database_url: str) -> tuple[AsyncEngine, async_sessionmaker]:
    """Initialize the database and return the engine and session maker."""
    _ensure_sqlite_dir(database_url)
    engine = create_async_engine(database_url, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    return engine, async_sessionmaker(engine, expire_on_commit=False)
