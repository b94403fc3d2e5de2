"""Port for persisting session credentials and the sync resumption cursor."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class SessionStateRecord:
    """Process-lifetime session state a collaborator may carry across restarts."""

    user_id: str
    device_id: str | None
    access_token: str | None
    next_batch: str | None
    transaction_counter: int


class SessionStateRepositoryPort(Protocol):
    """Async session state repository contract."""

    async def load(self, *, user_id: str) -> SessionStateRecord | None:
        """Return stored state for one user id, if any."""

    async def save(self, record: SessionStateRecord) -> None:
        """Insert or replace stored state for the record's user id."""

    async def delete(self, *, user_id: str) -> None:
        """Remove stored state for one user id."""
