"""SQLAlchemy adapter for session credential and sync cursor persistence."""

from __future__ import annotations

import logging
from typing import Any, cast

import sqlalchemy as sa
from sqlalchemy.engine import CursorResult
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from matrix_sync.application.ports.session_state_repository_port import (
    SessionStateRecord,
    SessionStateRepositoryPort,
)
from matrix_sync.infrastructure.db.metadata import session_state

logger = logging.getLogger(__name__)


class SqlAlchemySessionStateRepository(SessionStateRepositoryPort):
    """Session state repository backed by SQLAlchemy async sessions."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def load(self, *, user_id: str) -> SessionStateRecord | None:
        statement = sa.select(
            session_state.c.user_id,
            session_state.c.device_id,
            session_state.c.access_token,
            session_state.c.next_batch,
            session_state.c.transaction_counter,
        ).where(session_state.c.user_id == user_id)

        async with self._session_factory() as session:
            result = await session.execute(statement)
            row = result.mappings().first()

        if row is None:
            return None
        return SessionStateRecord(
            user_id=cast(str, row["user_id"]),
            device_id=cast(str | None, row["device_id"]),
            access_token=cast(str | None, row["access_token"]),
            next_batch=cast(str | None, row["next_batch"]),
            transaction_counter=int(row["transaction_counter"]),
        )

    async def save(self, record: SessionStateRecord) -> None:
        """Update the user's row, inserting it on first save."""

        values = {
            "device_id": record.device_id,
            "access_token": record.access_token,
            "next_batch": record.next_batch,
            "transaction_counter": record.transaction_counter,
            "updated_at": sa.func.current_timestamp(),
        }
        update_statement = (
            sa.update(session_state)
            .where(session_state.c.user_id == record.user_id)
            .values(**values)
        )
        async with self._session_factory() as session:
            result = cast(CursorResult[Any], await session.execute(update_statement))
            inserted = False
            if int(result.rowcount or 0) == 0:
                await session.execute(
                    sa.insert(session_state).values(user_id=record.user_id, **values)
                )
                inserted = True
            await session.commit()

        logger.debug(
            "session_state_saved user_id=%s inserted=%s next_batch=%s",
            record.user_id,
            inserted,
            record.next_batch,
        )

    async def delete(self, *, user_id: str) -> None:
        statement = sa.delete(session_state).where(session_state.c.user_id == user_id)
        async with self._session_factory() as session:
            await session.execute(statement)
            await session.commit()
        logger.info("session_state_deleted user_id=%s", user_id)
