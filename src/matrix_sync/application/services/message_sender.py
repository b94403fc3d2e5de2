"""Idempotent room message sends keyed by per-session transaction ids."""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from typing import Any

from matrix_sync.application.services.dispatch import dispatch
from matrix_sync.application.services.session import Session
from matrix_sync.domain.room import Room

SEND_TIMEOUT_SECONDS = 30.0
_MAX_TRACKED_OUTCOMES = 256
logger = logging.getLogger(__name__)


def normalize_msgtype(msgtype: str) -> str:
    """Expand short message types such as `text` to `m.text`."""

    return msgtype if "." in msgtype else f"m.{msgtype}"


class MessageSender:
    """Send `m.room.message` events without awaiting the homeserver.

    Completion is normally observed through the sync timeline; `outcome()`
    exposes the request future for callers that need the created event id or
    the failure.
    """

    def __init__(
        self,
        *,
        session: Session,
        timeout_seconds: float = SEND_TIMEOUT_SECONDS,
    ) -> None:
        self._session = session
        self._timeout_seconds = timeout_seconds
        self._outcomes: OrderedDict[int, asyncio.Future[str]] = OrderedDict()

    async def send(
        self,
        room: Room,
        body: str,
        *,
        msgtype: str = "text",
        override_transaction_id: int | None = None,
        extra_content: dict[str, Any] | None = None,
    ) -> int:
        """Dispatch one message and return its transaction id immediately."""

        access_token = self._session.require_access_token()
        transaction_id = (
            override_transaction_id
            if override_transaction_id is not None
            else self._session.next_transaction_id()
        )
        content: dict[str, object] = {"msgtype": normalize_msgtype(msgtype), "body": body}
        if extra_content:
            content.update(extra_content)

        future = await dispatch(
            self._put(
                room_id=room.room_id,
                transaction_id=transaction_id,
                content=content,
                access_token=access_token,
            ),
            label=f"send:{room.room_id}:{transaction_id}",
        )
        self._track(transaction_id, future)
        return transaction_id

    async def resend(
        self,
        room: Room,
        transaction_id: int,
        body: str,
        *,
        msgtype: str = "text",
        extra_content: dict[str, Any] | None = None,
    ) -> int:
        """Send again under an existing transaction id; the server deduplicates it."""

        return await self.send(
            room,
            body,
            msgtype=msgtype,
            override_transaction_id=transaction_id,
            extra_content=extra_content,
        )

    def outcome(self, transaction_id: int) -> asyncio.Future[str] | None:
        """Return the future of a recent send, resolving to the created event id."""

        return self._outcomes.get(transaction_id)

    async def _put(
        self,
        *,
        room_id: str,
        transaction_id: int,
        content: dict[str, object],
        access_token: str,
    ) -> str:
        event_id = await self._session.client.send_event(
            access_token=access_token,
            room_id=room_id,
            transaction_id=str(transaction_id),
            content=content,
            timeout_seconds=self._timeout_seconds,
        )
        logger.info(
            "message_sent room_id=%s transaction_id=%s event_id=%s",
            room_id,
            transaction_id,
            event_id,
        )
        return event_id

    def _track(self, transaction_id: int, future: asyncio.Future[str]) -> None:
        self._outcomes[transaction_id] = future
        self._outcomes.move_to_end(transaction_id)
        while len(self._outcomes) > _MAX_TRACKED_OUTCOMES:
            self._outcomes.popitem(last=False)
