"""Async SQLAlchemy session factory for the session-state store.

The sync daemon builds one factory from `DATABASE_URL` and hands it to
`SqlAlchemySessionStateRepository`, which persists the sync cursor,
credential and transaction counter between processes.
"""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine


def create_session_factory(database_url: str) -> async_sessionmaker[AsyncSession]:
    """Create the async session factory backing the session-state repository."""

    engine = create_async_engine(database_url)
    return async_sessionmaker(engine, expire_on_commit=False)
