"""Application of per-room sync deltas to the session's Room entities."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from matrix_sync.application.services.dispatch import dispatch, synchronous_requests_enabled
from matrix_sync.application.services.event_router import EventRouter
from matrix_sync.application.services.gap_filler import GapFiller
from matrix_sync.application.services.session import Session
from matrix_sync.domain.notifications import NotificationKind
from matrix_sync.domain.room import Room
from matrix_sync.infrastructure.matrix.sync_events import (
    JoinedRoomDelta,
    iter_left_room_ids,
    parse_invited_rooms,
    parse_joined_rooms,
)

RoomSectionHandler = Callable[[Room, JoinedRoomDelta, str | None], Awaitable[None]]
logger = logging.getLogger(__name__)


class RoomUpdater:
    """Apply joined/invited/left room sections of a sync response."""

    def __init__(
        self,
        *,
        session: Session,
        router: EventRouter | None = None,
        gap_filler: GapFiller | None = None,
        backfill_limit: int = 10,
    ) -> None:
        self._session = session
        self._router = router or EventRouter()
        self._gap_filler = gap_filler or GapFiller(session=session)
        self._backfill_limit = backfill_limit
        self._section_handlers: tuple[tuple[str, RoomSectionHandler], ...] = (
            ("state", self._apply_state),
            ("timeline", self._apply_timeline),
            ("ephemeral", self._apply_ephemeral),
            ("account_data", self._apply_account_data),
            ("unread_notifications", self._apply_unread_notifications),
        )

    @property
    def router(self) -> EventRouter:
        return self._router

    async def apply_joined_rooms(self, section: object, *, next_batch: str | None) -> int:
        """Apply every joined room delta; one failing room does not stop the others."""

        applied = 0
        for delta in parse_joined_rooms(section):
            try:
                await self.apply_joined_room(delta, next_batch=next_batch)
            except Exception:  # noqa: BLE001
                logger.exception("room_delta_failed room_id=%s", delta.room_id)
                continue
            applied += 1
        return applied

    async def apply_joined_room(self, delta: JoinedRoomDelta, *, next_batch: str | None) -> Room:
        """Run every section handler, even for empty sections, then notify once."""

        room = self._session.get_or_create_room(delta.room_id)
        self._session.invites.pop(delta.room_id, None)
        for section_name, handler in self._section_handlers:
            try:
                await handler(room, delta, next_batch)
            except Exception:  # noqa: BLE001
                logger.exception(
                    "room_section_failed room_id=%s section=%s",
                    room.room_id,
                    section_name,
                )
        room.notify_updated()
        return room

    async def apply_invited_rooms(self, section: object, *, next_batch: str | None) -> int:
        invites = parse_invited_rooms(section)
        for room_id, invite_state in invites.items():
            self._session.invites[room_id] = invite_state
            inviter = _find_inviter(invite_state, user_id=self._session.user_id)
            logger.info("room_invite_received room_id=%s inviter=%s", room_id, inviter)
            self._session.notifications.emit(
                NotificationKind.ROOM_INVITED,
                room_id=room_id,
                inviter=inviter,
            )
        return len(invites)

    async def apply_left_rooms(self, section: object, *, next_batch: str | None) -> int:
        left = 0
        for room_id in iter_left_room_ids(section):
            self._session.invites.pop(room_id, None)
            if self._session.remove_room(room_id) is None:
                continue
            left += 1
            self._session.notifications.emit(NotificationKind.ROOM_LEFT, room_id=room_id)
        return left

    async def _apply_state(
        self,
        room: Room,
        delta: JoinedRoomDelta,
        next_batch: str | None,
    ) -> None:
        for event in delta.state_events:
            if room.state.append(event):
                self._router.route(room, event)

    async def _apply_timeline(
        self,
        room: Room,
        delta: JoinedRoomDelta,
        next_batch: str | None,
    ) -> None:
        timeline = delta.timeline
        for event in timeline.events:
            if not room.timeline.append(event):
                continue
            event_id = event.get("event_id")
            if isinstance(event_id, str) and event_id:
                room.last_event_id = event_id
            self._router.route(room, event)

        if timeline.prev_batch is not None:
            room.prev_batch = timeline.prev_batch

        if not timeline.limited:
            room.last_full_sync = next_batch
            return

        if room.last_full_sync is None:
            logger.info("timeline_limited_without_cursor room_id=%s", room.room_id)
            return

        logger.info(
            "timeline_gap_detected room_id=%s prev_batch=%s last_full_sync=%s",
            room.room_id,
            room.prev_batch,
            room.last_full_sync,
        )
        await dispatch(
            self._gap_filler.fetch_history(
                room,
                limit=self._backfill_limit,
                to_token=room.last_full_sync,
                # Inline backfill lands before the room-level notification of this delta.
                notify=not synchronous_requests_enabled(),
            ),
            label=f"backfill:{room.room_id}",
        )

    async def _apply_ephemeral(
        self,
        room: Room,
        delta: JoinedRoomDelta,
        next_batch: str | None,
    ) -> None:
        for event in delta.ephemeral_events:
            room.ephemeral.append(event)
            if event.get("type") != "m.typing":
                continue
            content = event.get("content")
            user_ids = content.get("user_ids") if isinstance(content, dict) else None
            if isinstance(user_ids, list):
                room.typing_users = [user_id for user_id in user_ids if isinstance(user_id, str)]

    async def _apply_account_data(
        self,
        room: Room,
        delta: JoinedRoomDelta,
        next_batch: str | None,
    ) -> None:
        for event in delta.account_data_events:
            event_type = event.get("type")
            content = event.get("content")
            if isinstance(event_type, str) and isinstance(content, dict):
                room.account_data[event_type] = content

    async def _apply_unread_notifications(
        self,
        room: Room,
        delta: JoinedRoomDelta,
        next_batch: str | None,
    ) -> None:
        if delta.unread_notifications:
            room.unread_notifications = dict(delta.unread_notifications)


def _find_inviter(invite_state: list[dict[str, Any]], *, user_id: str) -> str | None:
    for event in invite_state:
        if event.get("type") != "m.room.member" or event.get("state_key") != user_id:
            continue
        sender = event.get("sender")
        return sender if isinstance(sender, str) else None
    return None
